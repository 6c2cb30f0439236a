"""Error taxonomy shared by the reconciler and its collaborators."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Structured classification carried across every collaborator boundary."""

    NOT_FOUND = "NotFound"
    CA_NOT_FOUND = "CANotFound"
    VALIDATION = "Validation"
    BACKEND = "Backend"
    CANCELLED = "Cancelled"
    WRONG_KIND = "WrongKind"


class Stage(str, Enum):
    """Reconciliation step an error was raised from."""

    NEW_CLIENT = "cannot create Kops clientset"
    GET_CLUSTER = "cannot get Kops cluster from API"
    GET_INSTANCE_GROUP = "cannot get Kops instance group from API"
    ISSUE_CREDENTIALS = "cannot issue Kops cluster credentials"
    VALIDATE_CLUSTER = "cannot validate Kops cluster"
    EVALUATE_CLUSTER_STATE = "cannot evaluate Kops cluster state"
    GET_KUBECONFIG = "cannot get KubeConfig"
    CREATE_CLUSTER_STATE = "cannot create Kops cluster state"
    CREATE_INSTANCE_GROUP_STATE = "cannot create Kops instance group state"
    UPDATE_INSTANCE_GROUP_STATE = "cannot update Kops instance group state"
    NEW_CLOUD = "cannot create Kops cloud"
    CLOUD_ASSIGNMENT = "cannot assign Kops cloud"
    GET_CLUSTER_STATUS = "cannot get Kops cluster status"
    UPDATE_CLUSTER_STATE = "cannot update Kops cluster state"
    APPLY_CREATE = "cannot create Kops cluster"
    APPLY_UPDATE = "cannot update Kops cluster"
    LIST_RESOURCES = "cannot list Kops resources"
    DELETE_RESOURCES = "cannot delete Kops resources"
    DELETE_CLUSTER = "cannot delete Kops cluster from API"
    PUBLISH_CONNECTION = "cannot publish connection details"


class KopsOperatorError(Exception):
    """Base class for all operator errors."""

    kind: ErrorKind = ErrorKind.BACKEND


class NotFoundError(KopsOperatorError):
    """The requested object does not exist in the backend."""

    kind = ErrorKind.NOT_FOUND


class AlreadyExistsError(KopsOperatorError):
    """The object being created is already present in the backend."""


class KeyStoreError(KopsOperatorError):
    """The cluster key store could not be resolved."""

    def __init__(self, cause: Exception):
        super().__init__(f"cannot access key store: {cause}")
        self.cause = cause


class CANotFoundError(KopsOperatorError):
    """The key store is reachable but holds no certificate authority.

    A provisioned cluster without its CA points at a corrupt state store, so
    this is kept apart from a plain lookup miss.
    """

    kind = ErrorKind.CA_NOT_FOUND

    def __init__(self, signer_id: str):
        super().__init__(f"cannot find CA certificate {signer_id!r}")
        self.signer_id = signer_id


class ClusterValidationError(KopsOperatorError):
    """The cluster exists but failed its health validation."""

    kind = ErrorKind.VALIDATION

    def __init__(self, messages: list[str]):
        super().__init__("; ".join(messages) if messages else "cluster validation failed")
        self.messages = list(messages)


class WrongKindError(KopsOperatorError):
    """The resource handed to the reconciler is not a Kops resource."""

    kind = ErrorKind.WRONG_KIND

    def __init__(self, message: str = "managed resource is not a Kops custom resource"):
        super().__init__(message)


class ReconcileCancelled(KopsOperatorError):
    """The reconcile deadline passed or the operator is stopping."""

    kind = ErrorKind.CANCELLED


class UnsupportedCloudError(KopsOperatorError):
    """The cluster targets a cloud provider this operator cannot drive."""


class UnsupportedResourceError(KopsOperatorError):
    """A cloud resource owned by the cluster has no known deletion routine."""

    def __init__(self, resource_types: list[str]):
        super().__init__(f"cannot delete resources of type: {', '.join(sorted(resource_types))}")
        self.resource_types = resource_types


class ProvisioningError(KopsOperatorError):
    """The provisioning engine exited unsuccessfully."""


class StageError(KopsOperatorError):
    """An external-call failure tagged with the stage it happened in.

    The kind comes from a structured cause when there is one, so a NotFound
    raised deep inside a collaborator still reads as NotFound to the caller.
    """

    def __init__(self, stage: Stage, cause: Exception):
        super().__init__(f"{stage.value}: {cause}")
        self.stage = stage
        self.cause = cause
        self.kind = cause.kind if isinstance(cause, KopsOperatorError) else ErrorKind.BACKEND


def is_not_found(error: BaseException) -> bool:
    """Return True if the error reports an absent object."""
    return isinstance(error, KopsOperatorError) and error.kind is ErrorKind.NOT_FOUND
