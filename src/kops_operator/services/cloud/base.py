"""Cloud collaborator interfaces and the data they exchange."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from ...models import Cluster, ClusterStatus, InstanceGroup
from ..kops.base import Clientset


@dataclass
class CloudInstance:
    """One machine of a cloud group."""

    id: str
    node_name: str | None = None


@dataclass
class CloudGroup:
    """Cloud-side backing of an instance group."""

    name: str
    instance_group: str
    min_size: int
    max_size: int
    members: list[CloudInstance] = field(default_factory=list)


@dataclass
class Resource:
    """A provider resource owned by a cluster."""

    id: str
    type: str
    name: str = ""
    arn: str | None = None


class Cloud(Protocol):
    """Handle on the cloud a cluster runs in."""

    provider_id: str
    region: str

    def get_cloud_groups(
        self,
        cluster: Cluster,
        instance_groups: list[InstanceGroup],
    ) -> dict[str, CloudGroup]:
        """Return the cloud groups of a cluster keyed by instance-group name."""
        ...


class CloudResolver(Protocol):
    """Builds cloud handles and fills in provider-assigned cluster fields."""

    def build_cloud(self, cluster: Cluster, region: str | None = None) -> Cloud:
        """Resolve a cloud handle for the cluster's provider."""
        ...

    def perform_assignments(self, cluster: Cluster, cloud: Cloud) -> None:
        """Default and assign provider-specific fields of the cluster in place."""
        ...

    def find_cluster_status(self, cluster: Cluster, cloud: Cloud) -> ClusterStatus | None:
        """Discover the provider status of a cluster."""
        ...


class ResourceOps(Protocol):
    """Enumerates and deletes provider resources owned by a cluster."""

    def list_resources(self, cloud: Cloud, cluster_name: str, region: str) -> list[Resource]:
        """List every resource owned by the cluster."""
        ...

    def delete_resources(self, cloud: Cloud, resources: list[Resource]) -> None:
        """Delete the given resources in dependency order."""
        ...


class ProvisioningEngine(Protocol):
    """Applies a stored cluster to real infrastructure."""

    def apply(
        self,
        cloud: Cloud,
        cluster: Cluster,
        clientset: Clientset,
        target: str,
        timeout: float | None = None,
    ) -> None:
        """Run the engine to completion; raises on failure."""
        ...
