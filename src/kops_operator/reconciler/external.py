"""External client driving a kops cluster through its lifecycle."""

from __future__ import annotations

import copy
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from .. import metrics
from ..builders.cluster import create_cluster, create_instance_groups
from ..config import OperatorConfig
from ..constants import KIND_CLUSTER
from ..credentials.issuer import CredentialIssuer
from ..credentials.kubeconfig import generate_kubeconfig
from ..exceptions import ClusterValidationError, Stage, StageError, is_not_found
from ..models import ExternalCreation, ExternalObservation, ExternalUpdate, ManagedCluster
from ..services.aws.cloud import AWSCloudResolver
from ..services.aws.resources import AWSResourceOps
from ..services.cloud.base import CloudResolver, ProvisioningEngine, ResourceOps
from ..services.kops.apply import KopsApplyCommand
from ..services.kops.base import Clientset
from ..services.kops.vfs import S3Clientset
from ..tracing import trace_span
from ..utils.conditions import (
    set_available_condition,
    set_creating_condition,
    set_deleting_condition,
)
from ..utils.context import ReconcileContext
from ..validation import Validator
from .comparator import cluster_up_to_date, diff_instance_groups, instance_groups_up_to_date

logger = logging.getLogger(__name__)

_STATE_STORE_STAGES = {
    Stage.GET_CLUSTER,
    Stage.GET_INSTANCE_GROUP,
    Stage.CREATE_CLUSTER_STATE,
    Stage.CREATE_INSTANCE_GROUP_STATE,
    Stage.UPDATE_CLUSTER_STATE,
    Stage.UPDATE_INSTANCE_GROUP_STATE,
    Stage.DELETE_CLUSTER,
}
_KOPS_STAGES = {Stage.APPLY_CREATE, Stage.APPLY_UPDATE}
_LOCAL_STAGES = {Stage.GET_KUBECONFIG, Stage.EVALUATE_CLUSTER_STATE}


def _api_type(stage: Stage) -> str:
    if stage in _STATE_STORE_STAGES:
        return "state_store"
    if stage in _KOPS_STAGES:
        return "kops"
    if stage is Stage.VALIDATE_CLUSTER:
        return "k8s"
    if stage is Stage.ISSUE_CREDENTIALS:
        return "pki"
    return "cloud"


class ExternalClient:
    """Observe, create, update and delete one cluster.

    Every collaborator call goes through ``_call`` so that cancellation is
    checked first and failures come out as a ``StageError``.
    """

    def __init__(
        self,
        clientset: Clientset,
        cloud_resolver: CloudResolver,
        resource_ops: ResourceOps,
        engine: ProvisioningEngine,
        issuer: CredentialIssuer,
        validator: Validator,
        config: OperatorConfig,
    ) -> None:
        self.clientset = clientset
        self.cloud_resolver = cloud_resolver
        self.resource_ops = resource_ops
        self.engine = engine
        self.issuer = issuer
        self.validator = validator
        self.config = config

    def _call(self, ctx: ReconcileContext, stage: Stage, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        ctx.check(stage.value)
        operation = stage.name.lower()
        if stage in _LOCAL_STAGES:
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                error = StageError(stage, e)
                metrics.stage_failures_total.labels(stage=operation, error_kind=error.kind.value).inc()
                raise error from e

        api_type = _api_type(stage)
        start_time = time.time()
        try:
            result = fn(*args, **kwargs)
            metrics.api_call_total.labels(api_type=api_type, operation=operation, result="success").inc()
            return result
        except Exception as e:
            error = StageError(stage, e)
            metrics.api_call_total.labels(api_type=api_type, operation=operation, result="error").inc()
            metrics.stage_failures_total.labels(stage=operation, error_kind=error.kind.value).inc()
            raise error from e
        finally:
            duration = time.time() - start_time
            metrics.api_call_duration_seconds.labels(api_type=api_type, operation=operation).observe(duration)

    @contextmanager
    def _operation(self, operation: str, cluster_name: str) -> Iterator[None]:
        with trace_span(f"{operation}_cluster", kind=KIND_CLUSTER, attributes={"cluster.name": cluster_name}):
            try:
                yield
            except Exception:
                metrics.cluster_operations_total.labels(operation=operation, result="failed").inc()
                raise
            metrics.cluster_operations_total.labels(operation=operation, result="success").inc()

    def observe(self, ctx: ReconcileContext, managed: ManagedCluster) -> ExternalObservation:
        """Observe the external cluster.

        An absent cluster is reported as not existing. A cluster that fails
        validation raises instead of being reported as out of date.

        Raises:
            StageError: If any step fails
        """
        desired = managed.desired
        label = self.config.instance_group_label

        with trace_span("observe_cluster", kind=KIND_CLUSTER, attributes={"cluster.name": desired.cluster_name}):
            try:
                cluster = self._call(ctx, Stage.GET_CLUSTER, self.clientset.get_cluster, desired.cluster_name)
            except StageError as e:
                if is_not_found(e):
                    logger.info(f"Cluster {desired.cluster_name} does not exist")
                    return ExternalObservation(resource_exists=False)
                raise

            ig_client = self.clientset.instance_groups_for(cluster)
            observed_groups = self._call(ctx, Stage.GET_INSTANCE_GROUP, ig_client.list)

            connection = self._call(
                ctx,
                Stage.ISSUE_CREDENTIALS,
                self.issuer.build_connection,
                self.clientset,
                cluster,
                desired.certificate_ttl,
            )
            result = self._call(
                ctx,
                Stage.VALIDATE_CLUSTER,
                self.validator.validate,
                connection,
                cluster,
                observed_groups,
                desired.region or None,
            )
            metrics.validation_total.labels(result="passed" if result.ok else "failed").inc()
            if not result.ok:
                error = ClusterValidationError(result.messages)
                metrics.stage_failures_total.labels(
                    stage=Stage.EVALUATE_CLUSTER_STATE.name.lower(), error_kind=error.kind.value
                ).inc()
                raise StageError(Stage.EVALUATE_CLUSTER_STATE, error)

            desired_groups = create_instance_groups(desired, label)
            cluster_current = cluster_up_to_date(desired.cluster_spec, cluster.spec)
            groups_current = instance_groups_up_to_date(
                desired_groups,
                observed_groups,
                self.config.unmatched_instance_groups,
                label,
            )
            if not cluster_current:
                metrics.drift_detected_total.labels(kind=KIND_CLUSTER, resource_type="cluster").inc()
                logger.info(f"Cluster {cluster.name} spec differs from the desired spec")
            diff = diff_instance_groups(desired_groups, observed_groups, label)
            if not diff.empty:
                metrics.drift_detected_total.labels(kind=KIND_CLUSTER, resource_type="instance_group").inc()
                logger.info(
                    f"Instance groups of {cluster.name} differ: added={sorted(diff.added)} "
                    f"removed={sorted(diff.removed)} changed={sorted(diff.changed)}"
                )

            kubeconfig = self._call(ctx, Stage.GET_KUBECONFIG, generate_kubeconfig, connection)

            up_to_date = cluster_current and groups_current
            if up_to_date:
                set_available_condition(managed.conditions, observed_generation=managed.generation)
            return ExternalObservation(
                resource_exists=True,
                resource_up_to_date=up_to_date,
                connection_details={self.config.connection_secret_key: kubeconfig},
            )

    def create(self, ctx: ReconcileContext, managed: ManagedCluster) -> ExternalCreation:
        """Store the cluster and its instance groups, then apply them.

        Instance groups are created in desired-list order and the first
        failure aborts the rest. Nothing is rolled back.
        """
        desired = managed.desired
        set_creating_condition(managed.conditions, observed_generation=managed.generation)

        with self._operation("create", desired.cluster_name):
            cluster = create_cluster(desired)
            groups = create_instance_groups(desired, self.config.instance_group_label)

            created = self._call(ctx, Stage.CREATE_CLUSTER_STATE, self.clientset.create_cluster, cluster)
            ig_client = self.clientset.instance_groups_for(created)
            for group in groups:
                self._call(ctx, Stage.CREATE_INSTANCE_GROUP_STATE, ig_client.create, group)

            cloud = self._call(ctx, Stage.NEW_CLOUD, self.cloud_resolver.build_cloud, created, desired.region or None)
            self._call(ctx, Stage.CLOUD_ASSIGNMENT, self.cloud_resolver.perform_assignments, created, cloud)
            self._call(
                ctx,
                Stage.APPLY_CREATE,
                self.engine.apply,
                cloud,
                created,
                self.clientset,
                self.config.apply_target,
                timeout=ctx.remaining(),
            )

        logger.info(f"Created cluster {desired.cluster_name} with {len(groups)} instance groups")
        return ExternalCreation()

    def update(self, ctx: ReconcileContext, managed: ManagedCluster) -> ExternalUpdate:
        """Rewrite the cluster from the desired spec and apply it.

        The cluster is rebuilt from the desired spec, never from the observed
        object. Cloud assignments are made on a copy and only feed the status
        lookup, so the stored spec is the one ``create`` stores. Every step is
        safe to run again after a partial update.
        """
        desired = managed.desired

        with self._operation("update", desired.cluster_name):
            cluster = create_cluster(desired)
            groups = create_instance_groups(desired, self.config.instance_group_label)

            assigned = copy.deepcopy(cluster)
            cloud = self._call(ctx, Stage.NEW_CLOUD, self.cloud_resolver.build_cloud, assigned, desired.region or None)
            self._call(ctx, Stage.CLOUD_ASSIGNMENT, self.cloud_resolver.perform_assignments, assigned, cloud)
            status = self._call(ctx, Stage.GET_CLUSTER_STATUS, self.cloud_resolver.find_cluster_status, assigned, cloud)
            updated = self._call(ctx, Stage.UPDATE_CLUSTER_STATE, self.clientset.update_cluster, cluster, status)

            ig_client = self.clientset.instance_groups_for(updated)
            for group in groups:
                self._call(ctx, Stage.UPDATE_INSTANCE_GROUP_STATE, ig_client.update, group)

            self._call(
                ctx,
                Stage.APPLY_UPDATE,
                self.engine.apply,
                cloud,
                updated,
                self.clientset,
                self.config.apply_target,
                timeout=ctx.remaining(),
            )

        logger.info(f"Updated cluster {desired.cluster_name}")
        return ExternalUpdate()

    def delete(self, ctx: ReconcileContext, managed: ManagedCluster) -> None:
        """Delete the cloud resources of the cluster, then the cluster itself.

        Raises:
            StageError: If the cluster does not exist (kind NOT_FOUND) or any
                step fails
        """
        desired = managed.desired
        set_deleting_condition(managed.conditions, observed_generation=managed.generation)

        with self._operation("delete", desired.cluster_name):
            cluster = self._call(ctx, Stage.GET_CLUSTER, self.clientset.get_cluster, desired.cluster_name)
            cloud = self._call(ctx, Stage.NEW_CLOUD, self.cloud_resolver.build_cloud, cluster, desired.region or None)
            resources = self._call(
                ctx,
                Stage.LIST_RESOURCES,
                self.resource_ops.list_resources,
                cloud,
                cluster.name,
                desired.region or cloud.region,
            )
            logger.info(f"Deleting {len(resources)} cloud resources of cluster {cluster.name}")
            self._call(ctx, Stage.DELETE_RESOURCES, self.resource_ops.delete_resources, cloud, resources)
            self._call(ctx, Stage.DELETE_CLUSTER, self.clientset.delete_cluster, cluster)

        logger.info(f"Deleted cluster {desired.cluster_name}")


class Connector:
    """Creates an ExternalClient for a managed cluster."""

    def __init__(
        self,
        config: OperatorConfig,
        clientset_factory: Callable[[str], Clientset] = S3Clientset,
        cloud_resolver: CloudResolver | None = None,
        resource_ops: ResourceOps | None = None,
        engine: ProvisioningEngine | None = None,
        issuer: CredentialIssuer | None = None,
        validator: Validator | None = None,
    ) -> None:
        self.config = config
        self.clientset_factory = clientset_factory
        self.cloud_resolver = cloud_resolver or AWSCloudResolver()
        self.resource_ops = resource_ops or AWSResourceOps()
        self.engine = engine or KopsApplyCommand(config.kops_binary)
        self.issuer = issuer or CredentialIssuer.from_config(config)
        self.validator = validator or Validator(self.cloud_resolver)

    def connect(self, ctx: ReconcileContext, managed: ManagedCluster) -> ExternalClient:
        """Build a client bound to the state store of the managed cluster.

        Raises:
            StageError: If the clientset cannot be created
        """
        ctx.check(Stage.NEW_CLIENT.value)
        try:
            clientset = self.clientset_factory(managed.desired.state_bucket)
        except Exception as e:
            raise StageError(Stage.NEW_CLIENT, e) from e
        return ExternalClient(
            clientset,
            self.cloud_resolver,
            self.resource_ops,
            self.engine,
            self.issuer,
            self.validator,
            self.config,
        )
