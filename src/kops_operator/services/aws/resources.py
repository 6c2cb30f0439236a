"""Enumeration and deletion of the AWS resources a cluster owns."""

from __future__ import annotations

import logging
from typing import Any, Callable

from botocore.exceptions import ClientError

from ...exceptions import UnsupportedResourceError
from ..cloud.base import Resource
from .cloud import CLUSTER_TAG, AWSCloud

logger = logging.getLogger(__name__)

OWNED_TAG_TEMPLATE = "kubernetes.io/cluster/{name}"
TYPE_AUTOSCALING_GROUP = "autoscaling:autoScalingGroup"


def parse_arn(arn: str) -> tuple[str, str, str]:
    """Return (service, resource type, resource id) of an ARN.

    Raises:
        ValueError: If the string is not an ARN
    """
    parts = arn.split(":", 5)
    if len(parts) != 6 or parts[0] != "arn":
        raise ValueError(f"not an ARN: {arn!r}")
    service, resource = parts[2], parts[5]
    for sep in ("/", ":"):
        if sep in resource:
            resource_type, resource_id = resource.split(sep, 1)
            return service, resource_type, resource_id
    return service, "", resource


def _name_tag(tags: list[dict[str, str]]) -> str:
    for tag in tags:
        if tag.get("Key") == "Name":
            return tag.get("Value", "")
    return ""


def _delete_autoscaling_group(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("autoscaling").delete_auto_scaling_group(AutoScalingGroupName=resource.id, ForceDelete=True)


def _terminate_instance(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").terminate_instances(InstanceIds=[resource.id])


def _delete_load_balancer(cloud: AWSCloud, resource: Resource) -> None:
    # Classic load balancers are addressed by name, v2 ones by ARN.
    if "/" in resource.id:
        cloud.client("elbv2").delete_load_balancer(LoadBalancerArn=resource.arn)
    else:
        cloud.client("elb").delete_load_balancer(LoadBalancerName=resource.id)


def _delete_target_group(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("elbv2").delete_target_group(TargetGroupArn=resource.arn)


def _delete_launch_template(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").delete_launch_template(LaunchTemplateId=resource.id)


def _delete_nat_gateway(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").delete_nat_gateway(NatGatewayId=resource.id)


def _release_address(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").release_address(AllocationId=resource.id)


def _delete_volume(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").delete_volume(VolumeId=resource.id)


def _delete_key_pair(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").delete_key_pair(KeyPairId=resource.id)


def _delete_internet_gateway(cloud: AWSCloud, resource: Resource) -> None:
    ec2 = cloud.client("ec2")
    response = ec2.describe_internet_gateways(InternetGatewayIds=[resource.id])
    for gateway in response.get("InternetGateways", []):
        for attachment in gateway.get("Attachments", []):
            ec2.detach_internet_gateway(InternetGatewayId=resource.id, VpcId=attachment["VpcId"])
    ec2.delete_internet_gateway(InternetGatewayId=resource.id)


def _delete_route_table(cloud: AWSCloud, resource: Resource) -> None:
    ec2 = cloud.client("ec2")
    response = ec2.describe_route_tables(RouteTableIds=[resource.id])
    for table in response.get("RouteTables", []):
        for association in table.get("Associations", []):
            if not association.get("Main"):
                ec2.disassociate_route_table(AssociationId=association["RouteTableAssociationId"])
    ec2.delete_route_table(RouteTableId=resource.id)


def _delete_subnet(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").delete_subnet(SubnetId=resource.id)


def _delete_security_group(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").delete_security_group(GroupId=resource.id)


def _delete_dhcp_options(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").delete_dhcp_options(DhcpOptionsId=resource.id)


def _delete_vpc(cloud: AWSCloud, resource: Resource) -> None:
    cloud.client("ec2").delete_vpc(VpcId=resource.id)


# Ordered so that dependents go before what they depend on
DELETERS: dict[str, Callable[[AWSCloud, Resource], None]] = {
    TYPE_AUTOSCALING_GROUP: _delete_autoscaling_group,
    "ec2:instance": _terminate_instance,
    "elasticloadbalancing:loadbalancer": _delete_load_balancer,
    "elasticloadbalancing:targetgroup": _delete_target_group,
    "ec2:launch-template": _delete_launch_template,
    "ec2:natgateway": _delete_nat_gateway,
    "ec2:elastic-ip": _release_address,
    "ec2:volume": _delete_volume,
    "ec2:key-pair": _delete_key_pair,
    "ec2:internet-gateway": _delete_internet_gateway,
    "ec2:route-table": _delete_route_table,
    "ec2:subnet": _delete_subnet,
    "ec2:security-group": _delete_security_group,
    "ec2:dhcp-options": _delete_dhcp_options,
    "ec2:vpc": _delete_vpc,
}
DELETE_ORDER = {resource_type: rank for rank, resource_type in enumerate(DELETERS)}


def _is_gone(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "").endswith("NotFound")


class AWSResourceOps:
    """Lists resources through the tagging API and deletes them in order."""

    def list_resources(self, cloud: AWSCloud, cluster_name: str, region: str) -> list[Resource]:
        """List every resource tagged as owned by the cluster.

        Matches both ``kubernetes.io/cluster/<name>=owned`` and the legacy
        ``KubernetesCluster=<name>`` tag. Autoscaling groups are not covered by
        the tagging API and are listed separately.
        """
        found: dict[str, Resource] = {}
        tagging = cloud.client("resourcegroupstaggingapi", region)
        tag_filters = (
            {"Key": OWNED_TAG_TEMPLATE.format(name=cluster_name), "Values": ["owned"]},
            {"Key": CLUSTER_TAG, "Values": [cluster_name]},
        )
        for tag_filter in tag_filters:
            for page in tagging.get_paginator("get_resources").paginate(TagFilters=[tag_filter]):
                for mapping in page.get("ResourceTagMappingList", []):
                    arn = mapping["ResourceARN"]
                    service, resource_type, resource_id = parse_arn(arn)
                    found[arn] = Resource(
                        id=resource_id,
                        type=f"{service}:{resource_type}",
                        name=_name_tag(mapping.get("Tags", [])),
                        arn=arn,
                    )

        autoscaling = cloud.client("autoscaling", region)
        pages = autoscaling.get_paginator("describe_auto_scaling_groups").paginate(
            Filters=[{"Name": f"tag:{CLUSTER_TAG}", "Values": [cluster_name]}]
        )
        for page in pages:
            for asg in page.get("AutoScalingGroups", []):
                name = asg["AutoScalingGroupName"]
                found[asg.get("AutoScalingGroupARN") or name] = Resource(
                    id=name,
                    type=TYPE_AUTOSCALING_GROUP,
                    name=name,
                    arn=asg.get("AutoScalingGroupARN"),
                )

        return sorted(found.values(), key=lambda r: (DELETE_ORDER.get(r.type, len(DELETE_ORDER)), r.id))

    def delete_resources(self, cloud: AWSCloud, resources: list[Resource]) -> None:
        """Delete resources in dependency order.

        Raises:
            UnsupportedResourceError: If any resource type has no deleter; raised
                before anything is deleted
        """
        unknown = sorted({r.type for r in resources if r.type not in DELETERS})
        if unknown:
            raise UnsupportedResourceError(unknown)

        for resource in sorted(resources, key=lambda r: (DELETE_ORDER[r.type], r.id)):
            logger.info(f"Deleting {resource.type} {resource.id}")
            try:
                DELETERS[resource.type](cloud, resource)
            except ClientError as e:
                if _is_gone(e):
                    logger.info(f"{resource.type} {resource.id} is already gone")
                    continue
                logger.error(f"Failed to delete {resource.type} {resource.id}: {e}")
                raise
