"""Cluster health validation."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlparse

from kubernetes import client, config

from .credentials.issuer import ConnectionDescriptor
from .credentials.kubeconfig import kubeconfig_dict
from .models import Cluster, InstanceGroup
from .services.cloud.base import Cloud, CloudGroup, CloudResolver

logger = logging.getLogger(__name__)

# Address kops writes into the API DNS record until dns-controller replaces it
PLACEHOLDER_IP = "203.0.113.123"

CRITICAL_PRIORITY_CLASSES = ("system-cluster-critical", "system-node-critical")
SYSTEM_NAMESPACE = "kube-system"
CONTROL_PLANE_ROLE_LABELS = ("node-role.kubernetes.io/control-plane", "node-role.kubernetes.io/master")
ZONE_LABEL = "topology.kubernetes.io/zone"


@dataclass
class ValidationFailure:
    """A structural problem found while validating."""

    kind: str
    name: str
    message: str


@dataclass
class ValidationNode:
    """A node and the status of its Ready condition."""

    name: str
    role: str = "node"
    zone: str = ""
    status: str = ""


@dataclass
class ValidationCluster:
    failures: list[ValidationFailure] = field(default_factory=list)
    nodes: list[ValidationNode] = field(default_factory=list)

    def add_failure(self, kind: str, name: str, message: str) -> None:
        self.failures.append(ValidationFailure(kind=kind, name=name, message=message))


@dataclass
class ValidationResult:
    ok: bool
    messages: list[str] = field(default_factory=list)


def evaluate_validation_result(cluster: ValidationCluster) -> ValidationResult:
    """Reduce raw validation data to pass/fail and messages.

    Failures come first in source order, then every node whose Ready
    condition is exactly ``False``. Unknown or missing conditions pass.
    """
    ok = not cluster.failures
    messages = [failure.message for failure in cluster.failures]
    for node in cluster.nodes:
        if node.status == "False":
            ok = False
            messages.append(f"node {node.name} condition is {node.status}")
    return ValidationResult(ok=ok, messages=messages)


def resolve_addresses(host: str) -> list[str]:
    """Return every IPv4 address a host name resolves to."""
    return socket.gethostbyname_ex(host)[2]


def new_api_client(connection: ConnectionDescriptor) -> client.ApiClient:
    """Build a Kubernetes API client from a connection descriptor."""
    return config.new_client_from_config_dict(kubeconfig_dict(connection), persist_config=False)


def _ready_status(node: Any) -> str:
    for condition in (node.status.conditions if node.status else None) or []:
        if condition.type == "Ready":
            return condition.status or ""
    return ""


class ClusterValidator:
    """Checks one cluster against its cloud groups and system pods."""

    def __init__(
        self,
        cluster: Cluster,
        cloud: Cloud,
        instance_groups: list[InstanceGroup],
        api_url: str,
        core_api: client.CoreV1Api,
        resolve_host: Callable[[str], list[str]] = resolve_addresses,
    ) -> None:
        self.cluster = cluster
        self.cloud = cloud
        self.instance_groups = instance_groups
        self.api_url = api_url
        self.core_api = core_api
        self.resolve_host = resolve_host

    def validate(self) -> ValidationCluster:
        result = ValidationCluster()
        # Nothing else can be reached until the API name resolves.
        if not self._validate_dns(result):
            return result

        nodes = self.core_api.list_node().items
        for node in nodes:
            labels = node.metadata.labels or {}
            role = "control-plane" if any(k in labels for k in CONTROL_PLANE_ROLE_LABELS) else "node"
            result.nodes.append(
                ValidationNode(
                    name=node.metadata.name,
                    role=role,
                    zone=labels.get(ZONE_LABEL, ""),
                    status=_ready_status(node),
                )
            )

        cloud_groups = self.cloud.get_cloud_groups(self.cluster, self.instance_groups)
        self._validate_cloud_groups(result, nodes, cloud_groups)
        self._validate_pods(result)
        return result

    def _validate_dns(self, result: ValidationCluster) -> bool:
        host = urlparse(self.api_url).hostname or ""
        try:
            addresses = self.resolve_host(host)
        except OSError as e:
            result.add_failure("dns", "apiserver", f"cannot resolve API server name {host}: {e}")
            return False

        if PLACEHOLDER_IP in addresses:
            result.add_failure(
                "dns",
                "apiserver",
                f"API server name {host} still resolves to the placeholder address {PLACEHOLDER_IP}; "
                "dns-controller has not updated it yet",
            )
            return False
        return True

    def _validate_cloud_groups(
        self,
        result: ValidationCluster,
        nodes: list[Any],
        cloud_groups: dict[str, CloudGroup],
    ) -> None:
        ready_by_name: dict[str, bool] = {}
        for node in nodes:
            ready = _ready_status(node) == "True"
            ready_by_name[node.metadata.name] = ready
            provider_id = (node.spec.provider_id if node.spec else None) or ""
            if provider_id:
                ready_by_name[provider_id.rsplit("/", 1)[-1]] = ready

        for ig in self.instance_groups:
            group = cloud_groups.get(ig.name)
            if group is None:
                result.add_failure("InstanceGroup", ig.name, f"InstanceGroup {ig.name!r} is missing from the cloud provider")
                continue

            ready_count = 0
            for member in group.members:
                joined = [ready_by_name[k] for k in (member.node_name, member.id) if k and k in ready_by_name]
                if not joined:
                    result.add_failure("Machine", member.id, f"machine {member.id!r} has not yet joined cluster")
                elif joined[0]:
                    ready_count += 1

            if ready_count < group.min_size:
                result.add_failure(
                    "InstanceGroup",
                    ig.name,
                    f"InstanceGroup {ig.name!r} did not have enough nodes {ready_count} vs {group.min_size}",
                )

    def _validate_pods(self, result: ValidationCluster) -> None:
        pods = self.core_api.list_namespaced_pod(SYSTEM_NAMESPACE).items
        for pod in pods:
            priority = pod.spec.priority_class_name if pod.spec else None
            if priority not in CRITICAL_PRIORITY_CLASSES:
                continue
            name = f"{SYSTEM_NAMESPACE}/{pod.metadata.name}"
            phase = pod.status.phase if pod.status else None
            if phase == "Succeeded":
                continue
            if phase == "Pending":
                result.add_failure("Pod", name, f"{priority} pod {pod.metadata.name!r} is pending")
                continue
            not_ready = [cs.name for cs in (pod.status.container_statuses or []) if not cs.ready]
            if not_ready:
                result.add_failure(
                    "Pod",
                    name,
                    f"{priority} pod {pod.metadata.name!r} is not ready ({', '.join(not_ready)})",
                )


class Validator:
    """Validates a cluster through a short-lived API client."""

    def __init__(
        self,
        cloud_resolver: CloudResolver,
        api_client_factory: Callable[[ConnectionDescriptor], Any] = new_api_client,
        resolve_host: Callable[[str], list[str]] = resolve_addresses,
    ) -> None:
        self.cloud_resolver = cloud_resolver
        self.api_client_factory = api_client_factory
        self.resolve_host = resolve_host

    def validate(
        self,
        connection: ConnectionDescriptor,
        cluster: Cluster,
        instance_groups: list[InstanceGroup],
        region: str | None = None,
    ) -> ValidationResult:
        """Validate a cluster and reduce the outcome to a ValidationResult."""
        api_url = f"https://api.{cluster.name}:443"
        cloud = self.cloud_resolver.build_cloud(cluster, region)
        with self.api_client_factory(connection.with_server(api_url)) as api_client:
            validator = ClusterValidator(
                cluster,
                cloud,
                instance_groups,
                api_url,
                client.CoreV1Api(api_client),
                resolve_host=self.resolve_host,
            )
            validation = validator.validate()
        result = evaluate_validation_result(validation)
        logger.debug(f"Validation of {cluster.name}: ok={result.ok} failures={len(validation.failures)}")
        return result
