"""Comparison of desired and observed cluster state."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..config import UnmatchedPolicy
from ..constants import DERIVED_CLUSTER_FIELDS, LABEL_INSTANCE_GROUP
from ..models import InstanceGroup


def cluster_up_to_date(
    desired: dict[str, Any],
    observed: dict[str, Any],
    derived_fields: Iterable[str] = DERIVED_CLUSTER_FIELDS,
) -> bool:
    """Return True if the observed cluster spec matches the desired one.

    Fields the state store assigns on its own are dropped from the observed
    spec first. Everything else must be structurally equal.
    """
    normalized = copy.deepcopy(observed)
    for name in derived_fields:
        normalized.pop(name, None)
    return desired == normalized


@dataclass(frozen=True)
class InstanceGroupDiff:
    """Label-keyed difference between desired and observed instance groups."""

    added: frozenset[str] = field(default_factory=frozenset)
    removed: frozenset[str] = field(default_factory=frozenset)
    changed: frozenset[str] = field(default_factory=frozenset)

    @property
    def empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def _by_label(groups: list[InstanceGroup], label: str) -> dict[str, InstanceGroup]:
    keyed = {}
    for group in groups:
        value = group.label(label)
        if value:
            keyed[value] = group
    return keyed


def diff_instance_groups(
    desired: list[InstanceGroup],
    observed: list[InstanceGroup],
    label: str = LABEL_INSTANCE_GROUP,
) -> InstanceGroupDiff:
    """Diff instance groups matched by the value of their ``label`` node label.

    Groups without the label are not matched at all.
    """
    wanted = _by_label(desired, label)
    present = _by_label(observed, label)
    return InstanceGroupDiff(
        added=frozenset(wanted.keys() - present.keys()),
        removed=frozenset(present.keys() - wanted.keys()),
        changed=frozenset(k for k in wanted.keys() & present.keys() if wanted[k].spec != present[k].spec),
    )


def instance_groups_up_to_date(
    desired: list[InstanceGroup],
    observed: list[InstanceGroup],
    policy: UnmatchedPolicy = UnmatchedPolicy.IGNORE,
    label: str = LABEL_INSTANCE_GROUP,
) -> bool:
    """Return True if no label-matched instance group differs.

    With ``UnmatchedPolicy.IGNORE`` groups present on only one side do not
    count. With ``UnmatchedPolicy.UPDATE`` a desired group missing from the
    store counts, since an update writes it. Stored groups that are no longer
    desired never count: an update does not remove them.
    """
    diff = diff_instance_groups(desired, observed, label)
    if diff.changed:
        return False
    if policy is UnmatchedPolicy.UPDATE and diff.added:
        return False
    return True
