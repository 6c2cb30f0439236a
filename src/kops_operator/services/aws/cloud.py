"""AWS cloud handle and resolver."""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Callable

import boto3

from ...exceptions import KopsOperatorError, UnsupportedCloudError
from ...models import Cluster, ClusterStatus, EtcdClusterStatus, EtcdMemberStatus, InstanceGroup
from ..cloud.base import CloudGroup, CloudInstance

logger = logging.getLogger(__name__)

PROVIDER_AWS = "aws"
DEFAULT_NETWORK_CIDR = "172.20.0.0/16"
ETCD_TAG_PREFIX = "k8s.io/etcd/"
CLUSTER_TAG = "KubernetesCluster"
SUBNET_TYPE_UTILITY = "Utility"

_DESCRIBE_INSTANCES_BATCH = 100


def cloud_provider_of(spec: dict[str, Any]) -> str:
    """Return the provider id of a cluster spec.

    Accepts both ``cloudProvider: aws`` and ``cloudProvider: {aws: {...}}``.
    """
    provider = spec.get("cloudProvider")
    if isinstance(provider, str):
        return provider.lower()
    if isinstance(provider, dict) and provider:
        return next(iter(provider)).lower()
    return ""


def region_from_zone(zone: str) -> str:
    """``us-east-1a`` -> ``us-east-1``."""
    return zone[:-1]


class AWSCloud:
    """Boto3 clients for one region, created on first use."""

    provider_id = PROVIDER_AWS

    def __init__(self, region: str, session: Any | None = None) -> None:
        self.region = region
        self.session = session or boto3.session.Session(region_name=region)
        self._clients: dict[tuple[str, str], Any] = {}

    def client(self, service: str, region: str | None = None) -> Any:
        key = (service, region or self.region)
        if key not in self._clients:
            self._clients[key] = self.session.client(service, region_name=key[1])
        return self._clients[key]

    def get_cloud_groups(
        self,
        cluster: Cluster,
        instance_groups: list[InstanceGroup],
    ) -> dict[str, CloudGroup]:
        """Match the cluster's autoscaling groups to its instance groups.

        kops names each autoscaling group ``<instance group>.<cluster>``.
        """
        by_asg_name = {f"{ig.name}.{cluster.name}": ig for ig in instance_groups}
        groups: dict[str, CloudGroup] = {}

        paginator = self.client("autoscaling").get_paginator("describe_auto_scaling_groups")
        pages = paginator.paginate(Filters=[{"Name": f"tag:{CLUSTER_TAG}", "Values": [cluster.name]}])
        for page in pages:
            for asg in page.get("AutoScalingGroups", []):
                ig = by_asg_name.get(asg["AutoScalingGroupName"])
                if ig is None:
                    logger.debug(f"Ignoring autoscaling group {asg['AutoScalingGroupName']} with no instance group")
                    continue
                groups[ig.name] = CloudGroup(
                    name=asg["AutoScalingGroupName"],
                    instance_group=ig.name,
                    min_size=int(asg.get("MinSize", 0)),
                    max_size=int(asg.get("MaxSize", 0)),
                    members=[
                        CloudInstance(id=i["InstanceId"])
                        for i in asg.get("Instances", [])
                        if i.get("LifecycleState") == "InService"
                    ],
                )

        self._resolve_node_names(groups)
        return groups

    def _resolve_node_names(self, groups: dict[str, CloudGroup]) -> None:
        members = {m.id: m for g in groups.values() for m in g.members}
        ids = sorted(members)
        ec2 = self.client("ec2")
        for start in range(0, len(ids), _DESCRIBE_INSTANCES_BATCH):
            response = ec2.describe_instances(InstanceIds=ids[start : start + _DESCRIBE_INSTANCES_BATCH])
            for reservation in response.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    member = members.get(instance["InstanceId"])
                    if member is not None:
                        member.node_name = instance.get("PrivateDnsName") or None


class AWSCloudResolver:
    """Builds AWS cloud handles and performs kops field assignment."""

    def __init__(self, session_factory: Callable[[str], Any] | None = None) -> None:
        """Initialize the resolver.

        Args:
            session_factory: Returns a boto3 session for a region (defaults to
                ``boto3.session.Session``)
        """
        self._session_factory = session_factory

    def build_cloud(self, cluster: Cluster, region: str | None = None) -> AWSCloud:
        """Resolve the cloud of a cluster.

        The region comes from the subnet zones; ``region`` is used when no
        subnet carries a zone and must agree with them otherwise.

        Raises:
            UnsupportedCloudError: If the cluster is not an AWS cluster
            KopsOperatorError: If no single region can be determined
        """
        provider = cloud_provider_of(cluster.spec)
        if provider != PROVIDER_AWS:
            raise UnsupportedCloudError(f"cloud provider {provider or 'unset'!r} is not supported")

        zone_regions = {
            region_from_zone(subnet["zone"])
            for subnet in cluster.spec.get("subnets") or []
            if subnet.get("zone")
        }
        if len(zone_regions) > 1:
            raise KopsOperatorError(f"clusters cannot span multiple regions (found {', '.join(sorted(zone_regions))})")

        derived = next(iter(zone_regions), None)
        if derived and region and derived != region:
            raise KopsOperatorError(f"subnet zones are in region {derived!r} but the cluster declares {region!r}")

        resolved = derived or region
        if not resolved:
            raise KopsOperatorError("cannot determine region: no subnet zones and no region given")

        session = self._session_factory(resolved) if self._session_factory else None
        return AWSCloud(resolved, session=session)

    def perform_assignments(self, cluster: Cluster, cloud: AWSCloud) -> None:
        """Fill in provider-assigned fields of the cluster spec in place."""
        spec = cluster.spec
        if not spec.get("masterPublicName") and cluster.name:
            spec["masterPublicName"] = f"api.{cluster.name}"

        if not spec.get("networkCIDR"):
            if spec.get("networkID"):
                spec["networkCIDR"] = self._vpc_cidr(cloud, spec["networkID"])
            else:
                spec["networkCIDR"] = DEFAULT_NETWORK_CIDR

        subnets = spec.get("subnets") or []
        if any(not subnet.get("zone") for subnet in subnets):
            assign_subnet_zones(subnets, self._available_zones(cloud))
        assign_subnet_cidrs(spec["networkCIDR"], subnets)

    def find_cluster_status(self, cluster: Cluster, cloud: AWSCloud) -> ClusterStatus:
        """Discover etcd clusters from the tags of the cluster's volumes.

        Volumes carry ``k8s.io/etcd/<etcd cluster>=<member>/<all members>``.
        """
        members: dict[str, list[EtcdMemberStatus]] = {}
        paginator = cloud.client("ec2").get_paginator("describe_volumes")
        for page in paginator.paginate(Filters=[{"Name": f"tag:{CLUSTER_TAG}", "Values": [cluster.name]}]):
            for volume in page.get("Volumes", []):
                for tag in volume.get("Tags", []):
                    if not tag["Key"].startswith(ETCD_TAG_PREFIX):
                        continue
                    etcd_name = tag["Key"][len(ETCD_TAG_PREFIX) :]
                    member_name = tag["Value"].split("/", 1)[0]
                    members.setdefault(etcd_name, []).append(
                        EtcdMemberStatus(name=member_name, volume_id=volume["VolumeId"])
                    )

        return ClusterStatus(
            etcd_clusters=[
                EtcdClusterStatus(name=name, members=sorted(found, key=lambda m: m.name))
                for name, found in sorted(members.items())
            ]
        )

    def _vpc_cidr(self, cloud: AWSCloud, vpc_id: str) -> str:
        response = cloud.client("ec2").describe_vpcs(VpcIds=[vpc_id])
        vpcs = response.get("Vpcs", [])
        if not vpcs:
            raise KopsOperatorError(f"VPC {vpc_id!r} not found")
        return vpcs[0]["CidrBlock"]

    def _available_zones(self, cloud: AWSCloud) -> list[str]:
        response = cloud.client("ec2").describe_availability_zones(
            Filters=[{"Name": "state", "Values": ["available"]}]
        )
        return sorted(z["ZoneName"] for z in response.get("AvailabilityZones", []))


def assign_subnet_zones(subnets: list[dict[str, Any]], zones: list[str]) -> None:
    """Give subnets without a zone one of ``zones``, round robin."""
    if not zones:
        raise KopsOperatorError("no availability zones available for subnet assignment")
    missing = [subnet for subnet in subnets if not subnet.get("zone")]
    for idx, subnet in enumerate(missing):
        subnet["zone"] = zones[idx % len(zones)]


def assign_subnet_cidrs(network_cidr: str, subnets: list[dict[str, Any]]) -> None:
    """Give subnets without a CIDR a block of the network.

    The network is split into eight blocks. The first block is never used.
    Utility subnets are carved from the last block, split eight ways again,
    and every other subnet takes a whole block.
    """
    network = ipaddress.ip_network(network_cidr, strict=False)
    taken = [ipaddress.ip_network(s["cidr"], strict=False) for s in subnets if s.get("cidr")]
    big = [s for s in subnets if not s.get("cidr") and s.get("type") != SUBNET_TYPE_UTILITY]
    little = [s for s in subnets if not s.get("cidr") and s.get("type") == SUBNET_TYPE_UTILITY]
    if not big and not little:
        return

    blocks = list(network.subnets(prefixlen_diff=3))[1:]
    if little:
        _assign_blocks(little, list(blocks.pop().subnets(prefixlen_diff=3)), taken)
    _assign_blocks(big, blocks, taken)


def _assign_blocks(subnets: list[dict[str, Any]], pool: list[Any], taken: list[Any]) -> None:
    free = [block for block in pool if not any(block.overlaps(t) for t in taken)]
    if len(free) < len(subnets):
        raise KopsOperatorError(f"not enough free CIDR blocks for {len(subnets)} subnets")
    for subnet, block in zip(subnets, free):
        subnet["cidr"] = str(block)
        taken.append(block)
