"""Tests for the external client and its connector."""

from __future__ import annotations

import copy
import threading
from unittest.mock import Mock

import pytest
import yaml

from kops_operator.builders.cluster import managed_cluster_from_body
from kops_operator.config import OperatorConfig, UnmatchedPolicy
from kops_operator.credentials.issuer import ConnectionDescriptor
from kops_operator.exceptions import (
    AlreadyExistsError,
    CANotFoundError,
    ErrorKind,
    KopsOperatorError,
    NotFoundError,
    ReconcileCancelled,
    Stage,
    StageError,
)
from kops_operator.models import Cluster, ClusterStatus, InstanceGroup
from kops_operator.reconciler.external import Connector, ExternalClient
from kops_operator.services.aws.cloud import AWSCloudResolver
from kops_operator.services.cloud.base import Resource
from kops_operator.utils.conditions import get_condition
from kops_operator.utils.context import ReconcileContext
from kops_operator.validation import ValidationResult

CLUSTER_NAME = "demo.example.com"


@pytest.fixture
def managed(kops_body):
    return managed_cluster_from_body(kops_body)


@pytest.fixture
def connection():
    return ConnectionDescriptor(
        cluster_name=CLUSTER_NAME,
        server=f"https://api.{CLUSTER_NAME}",
        ca_certificate=b"ca",
        client_certificate=b"cert",
        client_key=b"key",
    )


@pytest.fixture
def deps(connection):
    clientset = Mock()
    clientset.state_store = "s3://kops-state"
    cloud = Mock(region="us-east-1")
    cloud_resolver = Mock()
    cloud_resolver.build_cloud.return_value = cloud
    cloud_resolver.find_cluster_status.return_value = ClusterStatus()
    issuer = Mock()
    issuer.build_connection.return_value = connection
    validator = Mock()
    validator.validate.return_value = ValidationResult(ok=True)
    return {
        "clientset": clientset,
        "cloud": cloud,
        "cloud_resolver": cloud_resolver,
        "resource_ops": Mock(),
        "engine": Mock(),
        "issuer": issuer,
        "validator": validator,
    }


def _client(deps, config: OperatorConfig | None = None) -> ExternalClient:
    return ExternalClient(
        deps["clientset"],
        deps["cloud_resolver"],
        deps["resource_ops"],
        deps["engine"],
        deps["issuer"],
        deps["validator"],
        config or OperatorConfig(),
    )


def _observed(managed) -> tuple[Cluster, list[InstanceGroup]]:
    desired = managed.desired
    spec = copy.deepcopy(desired.cluster_spec)
    spec["configBase"] = desired.config_base
    spec["masterPublicName"] = f"api.{CLUSTER_NAME}"
    groups = [
        InstanceGroup(name=ig["nodeLabels"]["kops.k8s.io/instancegroup"], spec=copy.deepcopy(ig))
        for ig in desired.instance_groups
    ]
    return Cluster(name=CLUSTER_NAME, spec=spec), groups


class TestObserve:
    """Test cases for ExternalClient.observe."""

    def test_absent_cluster(self, deps, managed):
        """Test that a NotFound from the state store reports a missing cluster."""
        deps["clientset"].get_cluster.side_effect = NotFoundError("missing")

        observation = _client(deps).observe(ReconcileContext(), managed)

        assert observation.resource_exists is False
        deps["issuer"].build_connection.assert_not_called()

    def test_get_cluster_backend_error(self, deps, managed):
        """Test that other state store failures propagate with their stage."""
        deps["clientset"].get_cluster.side_effect = RuntimeError("access denied")

        with pytest.raises(StageError) as exc_info:
            _client(deps).observe(ReconcileContext(), managed)

        assert exc_info.value.stage is Stage.GET_CLUSTER
        assert exc_info.value.kind is ErrorKind.BACKEND

    def test_up_to_date(self, deps, managed, connection):
        """Test that a matching, healthy cluster is up to date and available."""
        cluster, groups = _observed(managed)
        deps["clientset"].get_cluster.return_value = cluster
        deps["clientset"].instance_groups_for.return_value.list.return_value = groups

        observation = _client(deps).observe(ReconcileContext(), managed)

        assert observation.resource_exists is True
        assert observation.resource_up_to_date is True
        kubeconfig = yaml.safe_load(observation.connection_details["kubeconfig"])
        assert kubeconfig["current-context"] == CLUSTER_NAME
        assert get_condition(managed.conditions, "Ready")["reason"] == "Available"
        deps["validator"].validate.assert_called_once_with(connection, cluster, groups, "us-east-1")

    def test_credentials_issued_with_desired_ttl(self, deps, kops_body):
        """Test that the desired certificate TTL reaches the issuer."""
        kops_body["spec"]["forProvider"]["kubernetesApiCertificateTTL"] = 4
        managed = managed_cluster_from_body(kops_body)
        cluster, groups = _observed(managed)
        deps["clientset"].get_cluster.return_value = cluster
        deps["clientset"].instance_groups_for.return_value.list.return_value = groups

        _client(deps).observe(ReconcileContext(), managed)

        args = deps["issuer"].build_connection.call_args.args
        assert args[1] is cluster
        assert args[2].total_seconds() == 4 * 3600

    def test_cluster_drift(self, deps, managed):
        """Test that a changed cluster spec is reported as out of date."""
        cluster, groups = _observed(managed)
        cluster.spec["kubernetesVersion"] = "1.27.0"
        deps["clientset"].get_cluster.return_value = cluster
        deps["clientset"].instance_groups_for.return_value.list.return_value = groups

        observation = _client(deps).observe(ReconcileContext(), managed)

        assert observation.resource_exists is True
        assert observation.resource_up_to_date is False
        assert get_condition(managed.conditions, "Ready") is None

    def test_instance_group_drift(self, deps, managed):
        """Test that a changed label-matched instance group is reported as out of date."""
        cluster, groups = _observed(managed)
        groups[1].spec["minSize"] = 5
        deps["clientset"].get_cluster.return_value = cluster
        deps["clientset"].instance_groups_for.return_value.list.return_value = groups

        observation = _client(deps).observe(ReconcileContext(), managed)

        assert observation.resource_up_to_date is False

    def test_unmatched_group_with_update_policy(self, deps, managed):
        """Test that a missing instance group counts as drift with the update policy."""
        cluster, groups = _observed(managed)
        deps["clientset"].get_cluster.return_value = cluster
        deps["clientset"].instance_groups_for.return_value.list.return_value = groups[:1]
        config = OperatorConfig(unmatched_instance_groups=UnmatchedPolicy.UPDATE)

        assert _client(deps).observe(ReconcileContext(), managed).resource_up_to_date is True
        assert _client(deps, config).observe(ReconcileContext(), managed).resource_up_to_date is False

    def test_validation_failure(self, deps, managed):
        """Test that a failed validation raises instead of reporting drift."""
        cluster, groups = _observed(managed)
        deps["clientset"].get_cluster.return_value = cluster
        deps["clientset"].instance_groups_for.return_value.list.return_value = groups
        deps["validator"].validate.return_value = ValidationResult(
            ok=False, messages=["node ip-10-0-0-1 condition is False"]
        )

        with pytest.raises(StageError) as exc_info:
            _client(deps).observe(ReconcileContext(), managed)

        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert exc_info.value.stage is Stage.EVALUATE_CLUSTER_STATE
        assert "node ip-10-0-0-1 condition is False" in str(exc_info.value)

    def test_ca_not_found(self, deps, managed):
        """Test that a missing CA keeps its own kind through the stage wrapper."""
        cluster, groups = _observed(managed)
        deps["clientset"].get_cluster.return_value = cluster
        deps["clientset"].instance_groups_for.return_value.list.return_value = groups
        deps["issuer"].build_connection.side_effect = CANotFoundError("kubernetes-ca")

        with pytest.raises(StageError) as exc_info:
            _client(deps).observe(ReconcileContext(), managed)

        assert exc_info.value.kind is ErrorKind.CA_NOT_FOUND
        assert exc_info.value.stage is Stage.ISSUE_CREDENTIALS
        deps["validator"].validate.assert_not_called()

    def test_validator_error(self, deps, managed):
        """Test that a validator that cannot run reports the validate stage."""
        cluster, groups = _observed(managed)
        deps["clientset"].get_cluster.return_value = cluster
        deps["clientset"].instance_groups_for.return_value.list.return_value = groups
        deps["validator"].validate.side_effect = ConnectionError("refused")

        with pytest.raises(StageError) as exc_info:
            _client(deps).observe(ReconcileContext(), managed)

        assert exc_info.value.stage is Stage.VALIDATE_CLUSTER
        assert exc_info.value.kind is ErrorKind.BACKEND


class TestCreate:
    """Test cases for ExternalClient.create."""

    def test_create_sequence(self, deps, managed):
        """Test that the cluster is stored once, groups in order, then applied."""
        clientset = deps["clientset"]
        clientset.create_cluster.side_effect = lambda cluster: cluster
        ig_client = clientset.instance_groups_for.return_value

        _client(deps).create(ReconcileContext(), managed)

        clientset.create_cluster.assert_called_once()
        stored = clientset.create_cluster.call_args.args[0]
        assert stored.name == CLUSTER_NAME
        assert stored.spec["configBase"] == "s3://kops-state/demo.example.com"
        assert [c.args[0].name for c in ig_client.create.call_args_list] == ["control-plane-us-east-1a", "nodes"]
        deps["cloud_resolver"].perform_assignments.assert_called_once_with(stored, deps["cloud"])
        deps["engine"].apply.assert_called_once_with(deps["cloud"], stored, clientset, "direct", timeout=None)
        assert get_condition(managed.conditions, "Ready")["reason"] == "Creating"

    def test_instance_group_failure_aborts(self, deps, managed):
        """Test that the first failing group stops creation without rollback."""
        clientset = deps["clientset"]
        clientset.create_cluster.side_effect = lambda cluster: cluster
        ig_client = clientset.instance_groups_for.return_value
        ig_client.create.side_effect = AlreadyExistsError("control-plane-us-east-1a exists")

        with pytest.raises(StageError) as exc_info:
            _client(deps).create(ReconcileContext(), managed)

        assert exc_info.value.stage is Stage.CREATE_INSTANCE_GROUP_STATE
        assert ig_client.create.call_count == 1
        clientset.delete_cluster.assert_not_called()
        deps["cloud_resolver"].build_cloud.assert_not_called()
        deps["engine"].apply.assert_not_called()

    def test_apply_failure(self, deps, managed):
        """Test that a failing engine reports the apply stage."""
        deps["clientset"].create_cluster.side_effect = lambda cluster: cluster
        deps["engine"].apply.side_effect = KopsOperatorError("exit status 1")

        with pytest.raises(StageError) as exc_info:
            _client(deps).create(ReconcileContext(), managed)

        assert exc_info.value.stage is Stage.APPLY_CREATE

    def test_configured_target(self, deps, managed):
        """Test that the configured apply target is used."""
        deps["clientset"].create_cluster.side_effect = lambda cluster: cluster

        _client(deps, OperatorConfig(apply_target="terraform")).create(ReconcileContext(), managed)

        assert deps["engine"].apply.call_args.args[3] == "terraform"


class TestUpdate:
    """Test cases for ExternalClient.update."""

    def test_update_sequence(self, deps, managed):
        """Test that the cluster is rebuilt from the desired spec and applied."""
        clientset = deps["clientset"]
        clientset.update_cluster.side_effect = lambda cluster, status: cluster
        status = ClusterStatus()
        deps["cloud_resolver"].find_cluster_status.return_value = status
        ig_client = clientset.instance_groups_for.return_value

        _client(deps).update(ReconcileContext(), managed)

        cluster, passed_status = clientset.update_cluster.call_args.args
        assert cluster.spec["kubernetesVersion"] == "1.28.0"
        assert passed_status is status
        assert [c.args[0].name for c in ig_client.update.call_args_list] == ["control-plane-us-east-1a", "nodes"]
        deps["engine"].apply.assert_called_once()
        clientset.get_cluster.assert_not_called()

    def test_assignments_not_stored(self, deps, managed):
        """Test that cloud assignments feed the status lookup but are not written."""
        clientset = deps["clientset"]
        clientset.update_cluster.side_effect = lambda cluster, status: cluster
        deps["cloud_resolver"].perform_assignments.side_effect = AWSCloudResolver().perform_assignments

        _client(deps).update(ReconcileContext(), managed)

        assigned = deps["cloud_resolver"].find_cluster_status.call_args.args[0]
        assert assigned.spec["networkCIDR"] == "172.20.0.0/16"
        stored = clientset.update_cluster.call_args.args[0]
        assert "networkCIDR" not in stored.spec
        assert "cidr" not in stored.spec["subnets"][0]

    def test_observe_after_update_is_up_to_date(self, deps, managed):
        """Test that a cluster written by update is observed as up to date."""
        clientset = deps["clientset"]
        ig_client = clientset.instance_groups_for.return_value
        stored = {}
        stored_groups = {}

        def store_cluster(cluster, status):
            stored["cluster"] = Cluster.from_manifest(yaml.safe_load(yaml.safe_dump(cluster.to_manifest())))
            return cluster

        def store_group(group):
            stored_groups[group.name] = group
            return group

        clientset.update_cluster.side_effect = store_cluster
        ig_client.update.side_effect = store_group
        deps["cloud_resolver"].perform_assignments.side_effect = AWSCloudResolver().perform_assignments
        client = _client(deps)

        client.update(ReconcileContext(), managed)
        clientset.get_cluster.side_effect = lambda name: stored["cluster"]
        ig_client.list.side_effect = lambda: list(stored_groups.values())
        observation = client.observe(ReconcileContext(), managed)

        assert observation.resource_exists is True
        assert observation.resource_up_to_date is True

    def test_stored_only_group_does_not_block_convergence(self, deps, managed):
        """Test that a stored group no longer desired is left alone and not reported as drift."""
        clientset = deps["clientset"]
        cluster, groups = _observed(managed)
        old = InstanceGroup(name="old", spec={"nodeLabels": {"kops.k8s.io/instancegroup": "old"}})
        clientset.get_cluster.return_value = cluster
        clientset.instance_groups_for.return_value.list.return_value = groups + [old]
        client = _client(deps, OperatorConfig(unmatched_instance_groups=UnmatchedPolicy.UPDATE))

        client.update(ReconcileContext(), managed)
        observation = client.observe(ReconcileContext(), managed)

        written = [c.args[0].name for c in clientset.instance_groups_for.return_value.update.call_args_list]
        assert "old" not in written
        assert observation.resource_up_to_date is True

    def test_assignment_failure_writes_nothing(self, deps, managed):
        """Test that a failed cloud assignment leaves the state store untouched."""
        deps["cloud_resolver"].perform_assignments.side_effect = KopsOperatorError("no zones")

        with pytest.raises(StageError) as exc_info:
            _client(deps).update(ReconcileContext(), managed)

        assert exc_info.value.stage is Stage.CLOUD_ASSIGNMENT
        deps["clientset"].update_cluster.assert_not_called()
        deps["clientset"].instance_groups_for.return_value.update.assert_not_called()
        deps["engine"].apply.assert_not_called()

    def test_status_failure(self, deps, managed):
        """Test that a failed status lookup stops before the write."""
        deps["cloud_resolver"].find_cluster_status.side_effect = RuntimeError("throttled")

        with pytest.raises(StageError) as exc_info:
            _client(deps).update(ReconcileContext(), managed)

        assert exc_info.value.stage is Stage.GET_CLUSTER_STATUS
        deps["clientset"].update_cluster.assert_not_called()


class TestDelete:
    """Test cases for ExternalClient.delete."""

    def test_delete_order(self, deps, managed):
        """Test that cloud resources go before the stored cluster."""
        calls = []
        cluster = Cluster(name=CLUSTER_NAME, spec={"cloudProvider": "aws"})
        resources = [Resource(id="vpc-1", type="ec2:vpc")]
        clientset = deps["clientset"]
        clientset.get_cluster.side_effect = lambda name: calls.append("get") or cluster
        deps["resource_ops"].list_resources.side_effect = lambda *a: calls.append("list") or resources
        deps["resource_ops"].delete_resources.side_effect = lambda *a: calls.append("delete_resources")
        clientset.delete_cluster.side_effect = lambda c: calls.append("delete_cluster")

        _client(deps).delete(ReconcileContext(), managed)

        assert calls == ["get", "list", "delete_resources", "delete_cluster"]
        deps["resource_ops"].list_resources.assert_called_once_with(deps["cloud"], CLUSTER_NAME, "us-east-1")
        deps["resource_ops"].delete_resources.assert_called_once_with(deps["cloud"], resources)
        assert get_condition(managed.conditions, "Ready")["reason"] == "Deleting"

    def test_absent_cluster(self, deps, managed):
        """Test that a missing cluster surfaces as NotFound."""
        deps["clientset"].get_cluster.side_effect = NotFoundError("missing")

        with pytest.raises(StageError) as exc_info:
            _client(deps).delete(ReconcileContext(), managed)

        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        deps["resource_ops"].list_resources.assert_not_called()

    def test_resource_failure_keeps_cluster(self, deps, managed):
        """Test that the stored cluster survives a failed resource deletion."""
        deps["clientset"].get_cluster.return_value = Cluster(name=CLUSTER_NAME)
        deps["resource_ops"].list_resources.return_value = []
        deps["resource_ops"].delete_resources.side_effect = RuntimeError("DependencyViolation")

        with pytest.raises(StageError) as exc_info:
            _client(deps).delete(ReconcileContext(), managed)

        assert exc_info.value.stage is Stage.DELETE_RESOURCES
        deps["clientset"].delete_cluster.assert_not_called()


class TestCancellation:
    """Test cases for cancellation between steps."""

    def test_stopped_before_any_call(self, deps, managed):
        """Test that a set stop flag prevents every external call."""
        stopped = threading.Event()
        stopped.set()
        ctx = ReconcileContext(stop_flag=stopped)

        with pytest.raises(ReconcileCancelled):
            _client(deps).create(ctx, managed)

        deps["clientset"].create_cluster.assert_not_called()

    def test_stopped_between_steps(self, deps, managed):
        """Test that cancellation is observed before the next step."""
        stopped = threading.Event()
        ctx = ReconcileContext(stop_flag=stopped)
        deps["clientset"].get_cluster.return_value = Cluster(name=CLUSTER_NAME)

        def list_and_stop(*args):
            stopped.set()
            return []

        deps["resource_ops"].list_resources.side_effect = list_and_stop

        with pytest.raises(ReconcileCancelled):
            _client(deps).delete(ctx, managed)

        deps["resource_ops"].delete_resources.assert_not_called()
        deps["clientset"].delete_cluster.assert_not_called()

    def test_expired_deadline(self, deps, managed):
        """Test that an expired deadline cancels observation."""
        ctx = ReconcileContext.with_timeout(0)

        with pytest.raises(ReconcileCancelled) as exc_info:
            _client(deps).observe(ctx, managed)

        assert exc_info.value.kind is ErrorKind.CANCELLED
        deps["clientset"].get_cluster.assert_not_called()


class TestConnector:
    """Test cases for Connector."""

    def test_connect_uses_state_bucket(self, deps, managed):
        """Test that the clientset is bound to the desired state bucket."""
        factory = Mock(return_value=deps["clientset"])
        connector = Connector(
            OperatorConfig(),
            clientset_factory=factory,
            cloud_resolver=deps["cloud_resolver"],
            resource_ops=deps["resource_ops"],
            engine=deps["engine"],
            issuer=deps["issuer"],
            validator=deps["validator"],
        )

        external = connector.connect(ReconcileContext(), managed)

        factory.assert_called_once_with("s3://kops-state")
        assert external.clientset is deps["clientset"]
        assert external.engine is deps["engine"]

    def test_connect_failure(self, managed):
        """Test that a clientset that cannot be built reports the new-client stage."""
        connector = Connector(OperatorConfig(), clientset_factory=Mock(side_effect=ValueError("bad url")))

        with pytest.raises(StageError) as exc_info:
            connector.connect(ReconcileContext(), managed)

        assert exc_info.value.stage is Stage.NEW_CLIENT
        assert "cannot create Kops clientset" in str(exc_info.value)
