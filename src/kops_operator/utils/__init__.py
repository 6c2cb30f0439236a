"""Utility functions for the Kops Operator."""

from .conditions import (
    get_condition,
    set_available_condition,
    set_creating_condition,
    set_deleting_condition,
    set_synced_condition,
    set_unavailable_condition,
    update_condition,
)
from .context import (
    ReconcileContext,
    get_context_dict,
    get_correlation_id,
    propagate_trace_context,
    set_correlation_id,
    with_correlation_id,
)
from .events import emit_event
from .secrets import owner_reference, publish_connection_details

__all__ = [
    "update_condition",
    "get_condition",
    "set_available_condition",
    "set_unavailable_condition",
    "set_creating_condition",
    "set_deleting_condition",
    "set_synced_condition",
    "emit_event",
    "owner_reference",
    "publish_connection_details",
    "ReconcileContext",
    "set_correlation_id",
    "get_correlation_id",
    "with_correlation_id",
    "get_context_dict",
    "propagate_trace_context",
]
