"""Shared utilities for handlers."""

from __future__ import annotations

import time
from typing import Any

from kubernetes import client, config

from .. import metrics
from ..constants import API_GROUP, PLURAL_CLUSTER


def load_kube_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def get_k8s_client() -> client.CustomObjectsApi:
    """Get Kubernetes CustomObjectsApi client."""
    load_kube_config()
    return client.CustomObjectsApi()


def get_core_client() -> client.CoreV1Api:
    """Get Kubernetes CoreV1Api client."""
    load_kube_config()
    return client.CoreV1Api()


def patch_at_provider(
    api: Any,
    name: str,
    namespace: str | None,
    at_provider: dict[str, Any],
) -> None:
    """Write ``status.atProvider`` immediately, outside the handler's patch.

    Used to record that a write sequence is starting, so the record survives
    even if the operator dies before the handler returns.

    Args:
        api: Kubernetes CustomObjectsApi instance
        name: Name of the Kops resource
        namespace: Namespace of the resource, None for cluster-scoped resources
        at_provider: Fields to merge into status.atProvider
    """
    body = {"status": {"atProvider": at_provider}}
    group, version = API_GROUP, "v1alpha1"
    start_time = time.time()
    try:
        if namespace:
            api.patch_namespaced_custom_object_status(group, version, namespace, PLURAL_CLUSTER, name, body)
        else:
            api.patch_cluster_custom_object_status(group, version, PLURAL_CLUSTER, name, body)
        metrics.api_call_total.labels(api_type="k8s", operation="patch_status", result="success").inc()
    except Exception:
        metrics.api_call_total.labels(api_type="k8s", operation="patch_status", result="error").inc()
        raise
    finally:
        duration = time.time() - start_time
        metrics.api_call_duration_seconds.labels(api_type="k8s", operation="patch_status").observe(duration)
