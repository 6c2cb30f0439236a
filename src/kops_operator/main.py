"""Main entry point for the Kops Operator.

Run with ``kopf run -m kops_operator.main``.
"""

from __future__ import annotations

import logging
from typing import Any

import kopf

from . import handlers  # noqa: F401
from . import health
from . import logging as structured_logging
from . import tracing
from .config import OperatorConfig

logger = logging.getLogger(__name__)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure the operator."""
    structured_logging.setup_structured_logging()
    config = OperatorConfig.from_env()

    # Use annotations so progress does not collide with status updates
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage()
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage()

    settings.posting.level = logging.INFO
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = 4

    tracing.initialize_tracing()
    health.start_metrics_server(config.metrics_port)
    health.mark_ready()
    logger.info(f"Kops operator started, metrics on port {config.metrics_port}")


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    """Flag the operator as not ready while it stops."""
    health.mark_not_ready()
