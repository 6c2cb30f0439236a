"""Tests for Kubernetes event emission."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from kops_operator.utils.events import (
    emit_cluster_created,
    emit_cluster_deleted,
    emit_cluster_updated,
    emit_connection_published,
    emit_event,
    emit_reconcile_failed,
    emit_reconcile_started,
    emit_validate_failed,
    emit_validate_succeeded,
)


class TestEmitEvent:
    """Test cases for emit_event."""

    @patch("kops_operator.utils.events.kopf.event")
    def test_emit_event_normal(self, mock_event):
        """Test emitting a normal event."""
        body = {"metadata": {"name": "demo"}}

        emit_event(body, "TestReason", "Test message")

        mock_event.assert_called_once_with(body, reason="TestReason", message="Test message", type="Normal")

    @patch("kops_operator.utils.events.kopf.event")
    def test_emit_event_warning(self, mock_event):
        """Test emitting a warning event."""
        emit_event({}, "TestReason", "Test message", type_="Warning")

        assert mock_event.call_args.kwargs["type"] == "Warning"


class TestEmitHelpers:
    """Test cases for the named event helpers."""

    @pytest.mark.parametrize(
        "emit,args,reason,event_type",
        [
            (emit_reconcile_started, (), "ReconcileStarted", "Normal"),
            (emit_reconcile_failed, ("boom",), "ReconcileFailed", "Warning"),
            (emit_validate_succeeded, ("demo.example.com",), "ValidateSucceeded", "Normal"),
            (emit_validate_failed, ("node a condition is False",), "ValidateFailed", "Warning"),
            (emit_cluster_created, ("demo.example.com",), "ClusterCreated", "Normal"),
            (emit_cluster_updated, ("demo.example.com",), "ClusterUpdated", "Normal"),
            (emit_cluster_deleted, ("demo.example.com",), "ClusterDeleted", "Normal"),
            (emit_connection_published, ("demo-kubeconfig",), "ConnectionDetailsPublished", "Normal"),
        ],
    )
    @patch("kops_operator.utils.events.kopf.event")
    def test_reason_and_type(self, mock_event, emit, args, reason, event_type):
        """Test that each helper uses its reason and type."""
        body = {"metadata": {"name": "demo"}}

        emit(body, *args)

        kwargs = mock_event.call_args.kwargs
        assert kwargs["reason"] == reason
        assert kwargs["type"] == event_type

    @patch("kops_operator.utils.events.kopf.event")
    def test_cluster_name_in_message(self, mock_event):
        """Test that the cluster name appears in the message."""
        emit_cluster_created({}, "demo.example.com")

        assert mock_event.call_args.kwargs["message"] == "Cluster demo.example.com created"
