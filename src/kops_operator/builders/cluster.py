"""Builders for desired cluster state and kops objects."""

from __future__ import annotations

import copy
from datetime import timedelta
from typing import Any, Mapping

from ..constants import (
    ANNOTATION_EXTERNAL_NAME,
    API_GROUP_VERSION,
    DELETION_POLICY_DELETE,
    DELETION_POLICY_ORPHAN,
    KIND_CLUSTER,
    LABEL_INSTANCE_GROUP,
)
from ..exceptions import WrongKindError
from ..models import Cluster, DesiredClusterSpec, InstanceGroup, ManagedCluster


def managed_cluster_from_body(
    body: Mapping[str, Any],
    label: str = LABEL_INSTANCE_GROUP,
) -> ManagedCluster:
    """Read a Kops custom resource into a ManagedCluster.

    Args:
        body: Full resource body
        label: Node label naming each instance group

    Returns:
        The managed cluster view of the resource

    Raises:
        WrongKindError: If the body is not a Kops resource
        ValueError: If a field the reconciler needs is missing or invalid
    """
    if body.get("kind") != KIND_CLUSTER or body.get("apiVersion") != API_GROUP_VERSION:
        raise WrongKindError(
            f"managed resource is not a Kops custom resource: {body.get('apiVersion')}/{body.get('kind')}"
        )

    meta = body.get("metadata") or {}
    spec = body.get("spec") or {}
    status = body.get("status") or {}
    for_provider = spec.get("forProvider") or {}

    for field_name in ("domain", "stateBucket"):
        if not for_provider.get(field_name):
            raise ValueError(f"spec.forProvider.{field_name} is required")

    instance_groups = copy.deepcopy(list(for_provider.get("instanceGroupSpec") or []))
    for idx, ig_spec in enumerate(instance_groups):
        if not (ig_spec.get("nodeLabels") or {}).get(label):
            raise ValueError(f"spec.forProvider.instanceGroupSpec[{idx}] has no nodeLabels[{label!r}]")

    ttl_hours = for_provider.get("kubernetesApiCertificateTTL") or 0
    try:
        ttl_hours = int(ttl_hours)
    except (TypeError, ValueError):
        raise ValueError(f"spec.forProvider.kubernetesApiCertificateTTL must be an integer, got {ttl_hours!r}") from None
    if ttl_hours < 0:
        raise ValueError("spec.forProvider.kubernetesApiCertificateTTL must not be negative")

    deletion_policy = spec.get("deletionPolicy") or DELETION_POLICY_DELETE
    if deletion_policy not in (DELETION_POLICY_DELETE, DELETION_POLICY_ORPHAN):
        raise ValueError(f"spec.deletionPolicy must be Delete or Orphan, got {deletion_policy!r}")

    annotations = meta.get("annotations") or {}
    name = meta.get("name", "")
    desired = DesiredClusterSpec(
        name=annotations.get(ANNOTATION_EXTERNAL_NAME) or name,
        domain=for_provider["domain"],
        state_bucket=for_provider["stateBucket"],
        region=for_provider.get("region", ""),
        cluster_spec=copy.deepcopy(dict(for_provider.get("clusterSpec") or {})),
        instance_groups=instance_groups,
        certificate_ttl=timedelta(hours=ttl_hours) if ttl_hours else None,
    )

    connection_ref = spec.get("writeConnectionSecretToRef")
    return ManagedCluster(
        name=name,
        namespace=meta.get("namespace"),
        uid=meta.get("uid", ""),
        generation=meta.get("generation", 0),
        desired=desired,
        conditions=[dict(c) for c in status.get("conditions") or []],
        deletion_policy=deletion_policy,
        connection_secret_ref=dict(connection_ref) if connection_ref else None,
        provisioning_state=(status.get("atProvider") or {}).get("provisioningState"),
    )


def create_cluster(desired: DesiredClusterSpec) -> Cluster:
    """Build the kops Cluster object for a desired spec."""
    spec = copy.deepcopy(desired.cluster_spec)
    spec["configBase"] = desired.config_base
    return Cluster(name=desired.cluster_name, spec=spec)


def create_instance_groups(
    desired: DesiredClusterSpec,
    label: str = LABEL_INSTANCE_GROUP,
) -> list[InstanceGroup]:
    """Build kops InstanceGroup objects in desired-list order.

    Each group is named after its ``label`` node label.
    """
    groups = []
    for ig_spec in desired.instance_groups:
        spec = copy.deepcopy(ig_spec)
        groups.append(
            InstanceGroup(
                name=spec["nodeLabels"][label],
                spec=spec,
                cluster_name=desired.cluster_name,
            )
        )
    return groups
