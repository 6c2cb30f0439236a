"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_READY,
    COND_SYNCED,
    REASON_AVAILABLE,
    REASON_CREATING,
    REASON_DELETING,
    REASON_RECONCILE_ERROR,
    REASON_RECONCILE_SUCCESS,
    REASON_UNAVAILABLE,
)


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        observed_generation: Generation when condition was observed

    Returns:
        Updated list of conditions
    """
    now = datetime.now(timezone.utc).isoformat()

    existing_idx = None
    for idx, cond in enumerate(conditions):
        if cond.get("type") == condition_type:
            existing_idx = idx
            break

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }

    if observed_generation is not None:
        new_condition["observedGeneration"] = observed_generation

    if existing_idx is not None:
        existing = conditions[existing_idx]
        # Only update lastTransitionTime if status changed
        if existing.get("status") == status:
            new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
        conditions[existing_idx] = new_condition
    else:
        conditions.append(new_condition)

    return conditions


def get_condition(conditions: list[dict[str, Any]], condition_type: str) -> dict[str, Any] | None:
    """Return the condition of the given type, if present."""
    for cond in conditions:
        if cond.get("type") == condition_type:
            return cond
    return None


def set_available_condition(
    conditions: list[dict[str, Any]],
    message: str = "Cluster is available",
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set Ready=True with reason Available."""
    return update_condition(conditions, COND_READY, "True", REASON_AVAILABLE, message, observed_generation)


def set_unavailable_condition(
    conditions: list[dict[str, Any]],
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set Ready=False with reason Unavailable."""
    return update_condition(conditions, COND_READY, "False", REASON_UNAVAILABLE, message, observed_generation)


def set_creating_condition(
    conditions: list[dict[str, Any]],
    message: str = "Cluster is being created",
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set Ready=False with reason Creating."""
    return update_condition(conditions, COND_READY, "False", REASON_CREATING, message, observed_generation)


def set_deleting_condition(
    conditions: list[dict[str, Any]],
    message: str = "Cluster is being deleted",
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set Ready=False with reason Deleting."""
    return update_condition(conditions, COND_READY, "False", REASON_DELETING, message, observed_generation)


def set_synced_condition(
    conditions: list[dict[str, Any]],
    success: bool,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Synced condition."""
    return update_condition(
        conditions,
        COND_SYNCED,
        "True" if success else "False",
        REASON_RECONCILE_SUCCESS if success else REASON_RECONCILE_ERROR,
        message,
        observed_generation,
    )
