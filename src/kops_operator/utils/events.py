"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_CLUSTER_CREATED,
    EVENT_REASON_CLUSTER_DELETED,
    EVENT_REASON_CLUSTER_UPDATED,
    EVENT_REASON_CONNECTION_PUBLISHED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_VALIDATE_FAILED,
    EVENT_REASON_VALIDATE_SUCCEEDED,
)


def emit_event(
    body: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        body: Resource body (or metadata) the event refers to
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        body,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_reconcile_started(body: dict[str, Any]) -> None:
    """Emit reconcile started event."""
    emit_event(body, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_failed(body: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    emit_event(body, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_validate_succeeded(body: dict[str, Any], cluster_name: str) -> None:
    """Emit validation succeeded event."""
    emit_event(body, EVENT_REASON_VALIDATE_SUCCEEDED, f"Cluster {cluster_name} passed validation")


def emit_validate_failed(body: dict[str, Any], message: str) -> None:
    """Emit validation failed event."""
    emit_event(body, EVENT_REASON_VALIDATE_FAILED, message, type_="Warning")


def emit_cluster_created(body: dict[str, Any], cluster_name: str) -> None:
    """Emit cluster created event."""
    emit_event(body, EVENT_REASON_CLUSTER_CREATED, f"Cluster {cluster_name} created")


def emit_cluster_updated(body: dict[str, Any], cluster_name: str) -> None:
    """Emit cluster updated event."""
    emit_event(body, EVENT_REASON_CLUSTER_UPDATED, f"Cluster {cluster_name} updated")


def emit_cluster_deleted(body: dict[str, Any], cluster_name: str) -> None:
    """Emit cluster deleted event."""
    emit_event(body, EVENT_REASON_CLUSTER_DELETED, f"Cluster {cluster_name} deleted")


def emit_connection_published(body: dict[str, Any], secret_name: str) -> None:
    """Emit connection details published event."""
    emit_event(body, EVENT_REASON_CONNECTION_PUBLISHED, f"Connection details written to secret {secret_name}")
