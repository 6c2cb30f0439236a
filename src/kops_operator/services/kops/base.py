"""Interfaces of the kops state store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from ...models import Cluster, ClusterStatus, InstanceGroup

if TYPE_CHECKING:
    from ...credentials.pki import Keyset


class InstanceGroupClient(Protocol):
    """Instance groups of one cluster."""

    def list(self) -> list[InstanceGroup]:
        """List every instance group of the cluster."""
        ...

    def create(self, instance_group: InstanceGroup) -> InstanceGroup:
        """Create an instance group; fails if it already exists."""
        ...

    def update(self, instance_group: InstanceGroup) -> InstanceGroup:
        """Write the full instance group, replacing any stored copy."""
        ...


class KeyStore(Protocol):
    """Read access to the keysets of one cluster."""

    def find_keyset(self, name: str) -> Keyset | None:
        """Return the named keyset, or None if it does not exist."""
        ...


class Clientset(Protocol):
    """Cluster-state backend.

    ``get_cluster`` raises ``NotFoundError`` for an absent cluster. Other
    failures propagate unchanged.
    """

    state_store: str

    def get_cluster(self, name: str) -> Cluster:
        """Fetch a cluster by name."""
        ...

    def create_cluster(self, cluster: Cluster) -> Cluster:
        """Store a new cluster."""
        ...

    def update_cluster(self, cluster: Cluster, status: ClusterStatus | None) -> Cluster:
        """Replace a stored cluster together with its provider status."""
        ...

    def delete_cluster(self, cluster: Cluster) -> None:
        """Remove a cluster and everything stored under it."""
        ...

    def instance_groups_for(self, cluster: Cluster) -> InstanceGroupClient:
        """Return the instance-group client of a cluster."""
        ...

    def key_store(self, cluster: Cluster) -> KeyStore:
        """Return the key store of a cluster."""
        ...
