"""Operator configuration loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Mapping

from .constants import (
    DEFAULT_ADMIN_COMMON_NAME,
    DEFAULT_ADMIN_GROUP,
    DEFAULT_APPLY_TARGET,
    DEFAULT_CA_SIGNER_ID,
    DEFAULT_CERTIFICATE_TTL_HOURS,
    DEFAULT_CONNECTION_SECRET_KEY,
    LABEL_INSTANCE_GROUP,
)


class UnmatchedPolicy(str, Enum):
    """How desired groups missing from the store affect up-to-date checks."""

    IGNORE = "ignore"
    UPDATE = "update"


APPLY_TARGETS = ("direct", "terraform", "cloudformation", "dryrun")


@dataclass(frozen=True)
class OperatorConfig:
    """Tunable values for the reconciler and its collaborators."""

    ca_signer_id: str = DEFAULT_CA_SIGNER_ID
    admin_common_name: str = DEFAULT_ADMIN_COMMON_NAME
    admin_group: str = DEFAULT_ADMIN_GROUP
    default_certificate_ttl: timedelta = timedelta(hours=DEFAULT_CERTIFICATE_TTL_HOURS)
    apply_target: str = DEFAULT_APPLY_TARGET
    instance_group_label: str = LABEL_INSTANCE_GROUP
    unmatched_instance_groups: UnmatchedPolicy = UnmatchedPolicy.IGNORE
    kops_binary: str = "kops"
    reconcile_timeout_seconds: float | None = None
    poll_interval_seconds: float = 300.0
    metrics_port: int = 8080
    connection_secret_key: str = DEFAULT_CONNECTION_SECRET_KEY

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OperatorConfig:
        """Build a configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Parsed configuration

        Raises:
            ValueError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ

        ttl_hours = _parse_float(env, "KOPS_DEFAULT_CERT_TTL_HOURS", DEFAULT_CERTIFICATE_TTL_HOURS)
        if ttl_hours <= 0:
            raise ValueError("KOPS_DEFAULT_CERT_TTL_HOURS must be positive")

        apply_target = env.get("KOPS_APPLY_TARGET", DEFAULT_APPLY_TARGET)
        if apply_target not in APPLY_TARGETS:
            raise ValueError(f"KOPS_APPLY_TARGET must be one of {', '.join(APPLY_TARGETS)}")

        policy_value = env.get("KOPS_UNMATCHED_INSTANCE_GROUPS", UnmatchedPolicy.IGNORE.value)
        try:
            policy = UnmatchedPolicy(policy_value.lower())
        except ValueError:
            raise ValueError(
                f"KOPS_UNMATCHED_INSTANCE_GROUPS must be 'ignore' or 'update', got {policy_value!r}"
            ) from None

        timeout = env.get("RECONCILE_TIMEOUT_SECONDS")
        reconcile_timeout = _parse_float(env, "RECONCILE_TIMEOUT_SECONDS", 0.0) if timeout else None
        if reconcile_timeout is not None and reconcile_timeout <= 0:
            raise ValueError("RECONCILE_TIMEOUT_SECONDS must be positive")

        return cls(
            ca_signer_id=env.get("KOPS_CA_SIGNER_ID", DEFAULT_CA_SIGNER_ID),
            admin_common_name=env.get("KOPS_ADMIN_COMMON_NAME", DEFAULT_ADMIN_COMMON_NAME),
            admin_group=env.get("KOPS_ADMIN_GROUP", DEFAULT_ADMIN_GROUP),
            default_certificate_ttl=timedelta(hours=ttl_hours),
            apply_target=apply_target,
            instance_group_label=env.get("KOPS_INSTANCE_GROUP_LABEL", LABEL_INSTANCE_GROUP),
            unmatched_instance_groups=policy,
            kops_binary=env.get("KOPS_BINARY", "kops"),
            reconcile_timeout_seconds=reconcile_timeout,
            poll_interval_seconds=_parse_float(env, "POLL_INTERVAL_SECONDS", 300.0),
            metrics_port=_parse_int(env, "METRICS_PORT", 8080),
            connection_secret_key=env.get("CONNECTION_SECRET_KEY", DEFAULT_CONNECTION_SECRET_KEY),
        )


def _parse_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return float(default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
