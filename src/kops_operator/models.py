"""Models for Kops clusters, instance groups and reconcile results."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from .constants import (
    DELETION_POLICY_DELETE,
    KOPS_API_VERSION,
    KOPS_KIND_CLUSTER,
    KOPS_KIND_INSTANCE_GROUP,
    LABEL_INSTANCE_GROUP,
    LABEL_KOPS_CLUSTER,
)


@dataclass
class EtcdMemberStatus:
    """Volume backing one etcd member."""

    name: str
    volume_id: str


@dataclass
class EtcdClusterStatus:
    """Discovered state of one etcd cluster."""

    name: str
    members: list[EtcdMemberStatus] = field(default_factory=list)


@dataclass
class ClusterStatus:
    """Provider-side status of a cluster, as reported by the cloud."""

    etcd_clusters: list[EtcdClusterStatus] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "etcdClusters": [
                {
                    "name": etcd.name,
                    "members": [{"name": m.name, "volumeId": m.volume_id} for m in etcd.members],
                }
                for etcd in self.etcd_clusters
            ]
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ClusterStatus:
        data = data or {}
        return cls(
            etcd_clusters=[
                EtcdClusterStatus(
                    name=etcd.get("name", ""),
                    members=[
                        EtcdMemberStatus(name=m.get("name", ""), volume_id=m.get("volumeId", ""))
                        for m in etcd.get("members", [])
                    ],
                )
                for etcd in data.get("etcdClusters", [])
            ]
        )


@dataclass
class Cluster:
    """A kops Cluster object as stored in the state store."""

    name: str
    spec: dict[str, Any] = field(default_factory=dict)
    status: ClusterStatus | None = None

    def to_manifest(self) -> dict[str, Any]:
        manifest: dict[str, Any] = {
            "apiVersion": KOPS_API_VERSION,
            "kind": KOPS_KIND_CLUSTER,
            "metadata": {"name": self.name},
            "spec": copy.deepcopy(self.spec),
        }
        if self.status is not None:
            manifest["status"] = self.status.to_dict()
        return manifest

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> Cluster:
        status = manifest.get("status")
        return cls(
            name=manifest.get("metadata", {}).get("name", ""),
            spec=manifest.get("spec") or {},
            status=ClusterStatus.from_dict(status) if status is not None else None,
        )


@dataclass
class InstanceGroup:
    """A kops InstanceGroup object as stored in the state store."""

    name: str
    spec: dict[str, Any] = field(default_factory=dict)
    cluster_name: str | None = None

    def label(self, label_key: str = LABEL_INSTANCE_GROUP) -> str | None:
        """Return the instance-group label value used to match groups."""
        return (self.spec.get("nodeLabels") or {}).get(label_key)

    def to_manifest(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": self.name}
        if self.cluster_name:
            metadata["labels"] = {LABEL_KOPS_CLUSTER: self.cluster_name}
        return {
            "apiVersion": KOPS_API_VERSION,
            "kind": KOPS_KIND_INSTANCE_GROUP,
            "metadata": metadata,
            "spec": copy.deepcopy(self.spec),
        }

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> InstanceGroup:
        metadata = manifest.get("metadata", {})
        return cls(
            name=metadata.get("name", ""),
            spec=manifest.get("spec") or {},
            cluster_name=(metadata.get("labels") or {}).get(LABEL_KOPS_CLUSTER),
        )


@dataclass(frozen=True)
class DesiredClusterSpec:
    """Desired state of one cluster, read from the managed resource."""

    name: str
    domain: str
    state_bucket: str
    region: str
    cluster_spec: dict[str, Any]
    instance_groups: list[dict[str, Any]]
    certificate_ttl: timedelta | None = None

    @property
    def cluster_name(self) -> str:
        """Deterministic external identity, stable across cycles."""
        return f"{self.name}.{self.domain}"

    @property
    def config_base(self) -> str:
        return f"{self.state_bucket.rstrip('/')}/{self.cluster_name}"


@dataclass
class ManagedCluster:
    """View of a Kops custom resource handed to the reconciler.

    Conditions are mutated in place by the reconciler and patched back by the
    handler.
    """

    name: str
    namespace: str | None
    uid: str
    generation: int
    desired: DesiredClusterSpec
    conditions: list[dict[str, Any]] = field(default_factory=list)
    deletion_policy: str = DELETION_POLICY_DELETE
    connection_secret_ref: dict[str, str] | None = None
    provisioning_state: str | None = None


@dataclass
class ExternalObservation:
    """Result of observing the external cluster."""

    resource_exists: bool
    resource_up_to_date: bool = False
    connection_details: dict[str, bytes] = field(default_factory=dict)


@dataclass
class ExternalCreation:
    """Result of creating the external cluster."""

    connection_details: dict[str, bytes] = field(default_factory=dict)


@dataclass
class ExternalUpdate:
    """Result of updating the external cluster."""

    connection_details: dict[str, bytes] = field(default_factory=dict)
