"""Handler modules for CRD resources."""

# Import handlers to register them via @kopf decorators
from . import cluster  # noqa: F401
