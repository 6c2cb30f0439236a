"""Kubeconfig documents built from connection descriptors."""

from __future__ import annotations

import base64
from typing import Any

import yaml

from .issuer import ConnectionDescriptor


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def kubeconfig_dict(connection: ConnectionDescriptor) -> dict[str, Any]:
    """Build a single-context kubeconfig named after the cluster."""
    name = connection.cluster_name
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": name,
                "cluster": {
                    "server": connection.server,
                    "certificate-authority-data": _b64(connection.ca_certificate),
                },
            }
        ],
        "users": [
            {
                "name": name,
                "user": {
                    "client-certificate-data": _b64(connection.client_certificate),
                    "client-key-data": _b64(connection.client_key),
                },
            }
        ],
        "contexts": [{"name": name, "context": {"cluster": name, "user": name}}],
        "current-context": name,
    }


def generate_kubeconfig(connection: ConnectionDescriptor) -> bytes:
    """Serialize the kubeconfig of a connection as YAML."""
    return yaml.safe_dump(kubeconfig_dict(connection), default_flow_style=False, sort_keys=False).encode("utf-8")
