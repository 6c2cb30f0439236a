"""Handler for the Kops CRD."""

from __future__ import annotations

from typing import Any, Callable

import kopf

from ..builders.cluster import managed_cluster_from_body
from ..config import OperatorConfig
from ..constants import (
    API_GROUP_VERSION,
    DELETION_POLICY_ORPHAN,
    INCOMPLETE_PROVISIONING_STATES,
    KIND_CLUSTER,
    PROVISIONING_APPLIED,
    PROVISIONING_CREATING,
    PROVISIONING_DELETING,
    PROVISIONING_UPDATING,
)
from ..exceptions import ErrorKind, KopsOperatorError, Stage, StageError, WrongKindError
from ..models import ManagedCluster
from ..reconciler.decision import Errored, NeedsCreate, NeedsUpdate, NoOp, decide
from ..reconciler.external import Connector, ExternalClient
from ..tracing import add_span_attribute, trace_span
from ..utils.conditions import set_synced_condition, set_unavailable_condition
from ..utils.context import ReconcileContext, with_correlation_id
from ..utils.errors import sanitize_exception
from ..utils.events import (
    emit_cluster_created,
    emit_cluster_deleted,
    emit_cluster_updated,
    emit_connection_published,
    emit_validate_failed,
    emit_validate_succeeded,
)
from ..utils.secrets import owner_reference, publish_connection_details
from .base import BaseHandler
from .shared import get_core_client, get_k8s_client, patch_at_provider


class ClusterHandler(BaseHandler):
    """Handler for Kops resources."""

    def __init__(
        self,
        config: OperatorConfig | None = None,
        connector: Connector | None = None,
        custom_api_factory: Callable[[], Any] = get_k8s_client,
        core_api_factory: Callable[[], Any] = get_core_client,
    ):
        super().__init__(KIND_CLUSTER)
        self.config = config or OperatorConfig.from_env()
        self.connector = connector or Connector(self.config)
        self.custom_api_factory = custom_api_factory
        self.core_api_factory = core_api_factory

    def load(self, body: dict[str, Any], meta: dict[str, Any]) -> ManagedCluster:
        """Read the resource, turning bad input into permanent failures."""
        try:
            return managed_cluster_from_body(body, self.config.instance_group_label)
        except WrongKindError as e:
            self.log_error(meta, str(e), error=e, reason="WrongKind")
            raise kopf.PermanentError(str(e)) from e
        except ValueError as e:
            self.handle_validation_error(meta, str(e))
            raise

    def _context(self, stopped: Any = None) -> ReconcileContext:
        return ReconcileContext.with_timeout(self.config.reconcile_timeout_seconds, stopped)

    def reconcile(
        self,
        body: dict[str, Any],
        meta: dict[str, Any],
        patch: kopf.Patch,
        stopped: Any = None,
    ) -> None:
        """Observe the cluster, decide, and converge it."""
        managed = self.load(body, meta)
        cluster_name = managed.desired.cluster_name
        ctx = self._context(stopped)

        with with_correlation_id(f"{managed.uid}-{managed.generation}"):
            try:
                with trace_span("reconcile_kops", kind=KIND_CLUSTER, attributes={"cluster.name": cluster_name}):
                    ready = self._converge(ctx, managed, meta)
            except KopsOperatorError as e:
                self._fail(managed, meta, patch, e)

            set_synced_condition(managed.conditions, True, "Reconciled", managed.generation)
            self.update_resource_status(
                patch,
                meta,
                ready=ready,
                status_data={
                    "conditions": managed.conditions,
                    "atProvider": {"name": cluster_name, "provisioningState": managed.provisioning_state},
                },
            )

    def _converge(self, ctx: ReconcileContext, managed: ManagedCluster, meta: dict[str, Any]) -> bool:
        cluster_name = managed.desired.cluster_name
        external = self.connector.connect(ctx, managed)

        observation, error = None, None
        try:
            observation = external.observe(ctx, managed)
        except KopsOperatorError as e:
            error = e

        action = decide(
            observation,
            error,
            resume_incomplete=managed.provisioning_state in INCOMPLETE_PROVISIONING_STATES,
        )
        add_span_attribute("kops.decision", type(action).__name__)
        self.log_info(
            meta,
            f"Cluster {cluster_name}: {type(action).__name__}",
            event="decision",
            reason="Decided",
            cluster_name=cluster_name,
            provisioning_state=managed.provisioning_state,
        )

        if isinstance(action, Errored):
            raise action.error
        if observation is not None and observation.resource_exists:
            self._publish(managed, meta, observation.connection_details)
        if isinstance(action, NeedsCreate):
            self._write(ctx, managed, PROVISIONING_CREATING, external.create)
            emit_cluster_created(meta, cluster_name)
            return False
        if isinstance(action, NeedsUpdate):
            self._write(ctx, managed, PROVISIONING_UPDATING, external.update)
            emit_cluster_updated(meta, cluster_name)
            return False

        emit_validate_succeeded(meta, cluster_name)
        managed.provisioning_state = PROVISIONING_APPLIED
        return True

    def _write(
        self,
        ctx: ReconcileContext,
        managed: ManagedCluster,
        state: str,
        operation: Callable[[ReconcileContext, ManagedCluster], Any],
    ) -> None:
        """Run a write sequence bracketed by provisioning-state markers.

        The marker is stored before the first write so an interrupted
        sequence is detected and resumed by a later pass.
        """
        patch_at_provider(
            self.custom_api_factory(),
            managed.name,
            managed.namespace,
            {"name": managed.desired.cluster_name, "provisioningState": state},
        )
        managed.provisioning_state = state
        operation(ctx, managed)
        managed.provisioning_state = PROVISIONING_APPLIED

    def _publish(self, managed: ManagedCluster, meta: dict[str, Any], details: dict[str, bytes]) -> None:
        ref = managed.connection_secret_ref
        if not ref or not ref.get("name"):
            return
        namespace = ref.get("namespace") or managed.namespace or "default"
        try:
            publish_connection_details(
                self.core_api_factory(),
                namespace,
                ref["name"],
                details,
                owner_references=[owner_reference(managed.name, managed.uid)],
            )
        except Exception as e:
            raise StageError(Stage.PUBLISH_CONNECTION, e) from e
        emit_connection_published(meta, ref["name"])

    def _fail(
        self,
        managed: ManagedCluster,
        meta: dict[str, Any],
        patch: kopf.Patch,
        error: KopsOperatorError,
    ) -> None:
        """Write failure conditions and raise the matching kopf error."""
        message = sanitize_exception(error)
        set_synced_condition(managed.conditions, False, message, managed.generation)
        if error.kind is ErrorKind.VALIDATION:
            set_unavailable_condition(managed.conditions, message, managed.generation)
            emit_validate_failed(meta, message)
        self.handle_reconciliation_error(meta, patch, error, managed.conditions)

    def delete(
        self,
        body: dict[str, Any],
        meta: dict[str, Any],
        patch: kopf.Patch,
        stopped: Any = None,
    ) -> None:
        """Delete the external cluster unless the resource orphans it."""
        try:
            managed = managed_cluster_from_body(body, self.config.instance_group_label)
        except WrongKindError as e:
            raise kopf.PermanentError(str(e)) from e
        except ValueError as e:
            # An invalid resource never reached the state store.
            self.log_warning(meta, f"Releasing invalid resource without external deletion: {e}", reason="Invalid")
            self.remove_finalizer(meta, patch)
            return

        cluster_name = managed.desired.cluster_name
        if managed.deletion_policy == DELETION_POLICY_ORPHAN:
            self.log_info(
                meta,
                f"Orphaning cluster {cluster_name} per deletionPolicy={DELETION_POLICY_ORPHAN}",
                reason="ClusterOrphaned",
                cluster_name=cluster_name,
            )
            self.remove_finalizer(meta, patch)
            return

        ctx = self._context(stopped)
        try:
            with trace_span("delete_kops", kind=KIND_CLUSTER, attributes={"cluster.name": cluster_name}):
                external = self.connector.connect(ctx, managed)
                self._delete_external(ctx, external, managed, meta)
        except KopsOperatorError as e:
            self._fail(managed, meta, patch, e)

        self.remove_finalizer(meta, patch)

    def _delete_external(
        self,
        ctx: ReconcileContext,
        external: ExternalClient,
        managed: ManagedCluster,
        meta: dict[str, Any],
    ) -> None:
        cluster_name = managed.desired.cluster_name
        patch_at_provider(
            self.custom_api_factory(),
            managed.name,
            managed.namespace,
            {"name": cluster_name, "provisioningState": PROVISIONING_DELETING},
        )
        try:
            external.delete(ctx, managed)
        except KopsOperatorError as e:
            if not isinstance(decide(None, e, deleting=True), NoOp):
                raise
            self.log_info(meta, f"Cluster {cluster_name} is already gone", reason="ClusterNotFound")
            return
        emit_cluster_deleted(meta, cluster_name)
        self.log_info(meta, f"Deleted cluster {cluster_name}", reason="ClusterDeleted", cluster_name=cluster_name)


# Global handler instance
_handler = ClusterHandler()


@kopf.on.create(API_GROUP_VERSION, KIND_CLUSTER)
@kopf.on.update(API_GROUP_VERSION, KIND_CLUSTER)
@kopf.on.resume(API_GROUP_VERSION, KIND_CLUSTER)
@kopf.timer(API_GROUP_VERSION, KIND_CLUSTER, interval=_handler.config.poll_interval_seconds)
def handle_cluster(
    body: kopf.Body,
    meta: dict[str, Any],
    patch: kopf.Patch,
    **kwargs: Any,
) -> None:
    """Handle Kops resource reconciliation."""
    _handler.ensure_finalizer(meta, patch)
    _handler.reconcile_with_metrics(
        meta, lambda: _handler.reconcile(body, meta, patch, stopped=kwargs.get("stopped"))
    )


@kopf.on.delete(API_GROUP_VERSION, KIND_CLUSTER)
def handle_cluster_delete(
    body: kopf.Body,
    meta: dict[str, Any],
    patch: kopf.Patch,
    **kwargs: Any,
) -> None:
    """Handle Kops resource deletion."""
    _handler.reconcile_with_metrics(
        meta, lambda: _handler.delete(body, meta, patch, stopped=kwargs.get("stopped"))
    )
