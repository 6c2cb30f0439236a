"""Stateless decision of the next reconcile action."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from ..exceptions import ErrorKind, KopsOperatorError
from ..models import ExternalObservation

# Errors an interrupted create or update leaves behind: the cluster object is
# stored but the infrastructure, and with it the CA, is not applied yet.
RESUMABLE_KINDS = (ErrorKind.VALIDATION, ErrorKind.CA_NOT_FOUND)


@dataclass(frozen=True)
class NoOp:
    pass


@dataclass(frozen=True)
class NeedsCreate:
    pass


@dataclass(frozen=True)
class NeedsUpdate:
    pass


@dataclass(frozen=True)
class NeedsDelete:
    pass


@dataclass(frozen=True)
class Errored:
    kind: ErrorKind
    error: BaseException | None = field(default=None, compare=False)


Action = Union[NoOp, NeedsCreate, NeedsUpdate, NeedsDelete, Errored]


def error_kind(error: BaseException) -> ErrorKind:
    if isinstance(error, KopsOperatorError):
        return error.kind
    return ErrorKind.BACKEND


def decide(
    observation: ExternalObservation | None,
    error: BaseException | None = None,
    *,
    deleting: bool = False,
    resume_incomplete: bool = False,
) -> Action:
    """Decide what to do from one observation.

    Args:
        observation: Result of Observe, None if it raised
        error: Error raised by Observe (or Delete), if any
        deleting: The managed resource is being deleted
        resume_incomplete: A previous create or update did not finish

    Returns:
        The action to execute
    """
    if error is not None:
        kind = error_kind(error)
        if kind is ErrorKind.NOT_FOUND:
            return NoOp() if deleting else NeedsCreate()
        if resume_incomplete and not deleting and kind in RESUMABLE_KINDS:
            return NeedsUpdate()
        return Errored(kind, error)

    if observation is None or not observation.resource_exists:
        return NoOp() if deleting else NeedsCreate()
    if deleting:
        return NeedsDelete()
    if not observation.resource_up_to_date:
        return NeedsUpdate()
    return NoOp()
