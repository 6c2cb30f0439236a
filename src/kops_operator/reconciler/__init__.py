"""Reconciliation core: comparison, decision and the external client."""

from .comparator import (
    InstanceGroupDiff,
    cluster_up_to_date,
    diff_instance_groups,
    instance_groups_up_to_date,
)
from .decision import Errored, NeedsCreate, NeedsDelete, NeedsUpdate, NoOp, decide
from .external import Connector, ExternalClient

__all__ = [
    "cluster_up_to_date",
    "instance_groups_up_to_date",
    "diff_instance_groups",
    "InstanceGroupDiff",
    "decide",
    "NoOp",
    "NeedsCreate",
    "NeedsUpdate",
    "NeedsDelete",
    "Errored",
    "Connector",
    "ExternalClient",
]
