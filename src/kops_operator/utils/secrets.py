"""Utilities for publishing connection details to Kubernetes secrets."""

from __future__ import annotations

import base64
from typing import Any

from kubernetes import client

from ..constants import API_GROUP_VERSION, FIELD_MANAGER, KIND_CLUSTER, LABEL_MANAGED_BY


def owner_reference(name: str, uid: str) -> dict[str, Any]:
    """Build an owner reference pointing at a Kops resource."""
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_CLUSTER,
        "name": name,
        "uid": uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def _encode(data: dict[str, bytes]) -> dict[str, str]:
    return {k: base64.b64encode(v).decode("ascii") for k, v in data.items()}


def publish_connection_details(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
    details: dict[str, bytes],
    owner_references: list[dict[str, Any]] | None = None,
) -> None:
    """Create or update the connection secret of a cluster.

    Args:
        api: Kubernetes API client
        namespace: Namespace for the secret
        secret_name: Name of the secret
        details: Connection details keyed by secret field name
        owner_references: Owner references for the secret
    """
    secret = client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=secret_name,
            namespace=namespace,
            owner_references=owner_references or [],
            labels={LABEL_MANAGED_BY: FIELD_MANAGER},
        ),
        type="connection.crossplane.io/v1alpha1",
        data=_encode(details),
    )

    try:
        api.create_namespaced_secret(
            namespace=namespace,
            body=secret,
            field_manager=FIELD_MANAGER,
        )
    except client.exceptions.ApiException as e:
        if e.status != 409:
            raise
        api.patch_namespaced_secret(
            name=secret_name,
            namespace=namespace,
            body={"data": _encode(details)},
            field_manager=FIELD_MANAGER,
        )
