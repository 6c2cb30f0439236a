"""Provisioning engine driving the ``kops`` binary."""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Any, Callable

from ...exceptions import ProvisioningError, ReconcileCancelled
from ...models import Cluster
from ...utils.errors import sanitize_error_message
from ..cloud.base import Cloud
from .base import Clientset

logger = logging.getLogger(__name__)

TARGET_DRYRUN = "dryrun"


def build_update_args(
    cluster_name: str,
    state_store: str,
    target: str,
    kops_path: str = "kops",
) -> list[str]:
    """Build the ``kops update cluster`` command line for a target."""
    args = [kops_path, "update", "cluster", "--name", cluster_name, "--state", state_store]
    # Without --yes kops only previews the changes.
    if target != TARGET_DRYRUN:
        args.extend(["--yes", "--target", target])
    return args


class KopsApplyCommand:
    """Runs ``kops update cluster`` synchronously."""

    def __init__(
        self,
        kops_path: str = "kops",
        runner: Callable[..., Any] = subprocess.run,
    ) -> None:
        self._kops_path = kops_path
        self._runner = runner

    def apply(
        self,
        cloud: Cloud,
        cluster: Cluster,
        clientset: Clientset,
        target: str,
        timeout: float | None = None,
    ) -> None:
        """Apply a stored cluster to its cloud.

        Args:
            cloud: Cloud the cluster runs in
            cluster: Cluster to apply
            clientset: State store holding the cluster
            target: kops target (direct, terraform, cloudformation, dryrun)
            timeout: Seconds to wait before giving up

        Raises:
            ReconcileCancelled: If the command outlives the timeout
            ProvisioningError: If kops cannot be run or exits non-zero
        """
        args = build_update_args(cluster.name, clientset.state_store, target, self._kops_path)
        env = {**os.environ, "AWS_REGION": cloud.region, "KOPS_STATE_STORE": clientset.state_store}

        logger.info(f"Running kops update for cluster {cluster.name} with target {target}")
        try:
            result = self._runner(
                args,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            raise ReconcileCancelled(f"kops update cluster timed out after {timeout}s") from None
        except OSError as e:
            raise ProvisioningError(f"cannot run {self._kops_path}: {e}") from e

        if result.returncode != 0:
            stderr = sanitize_error_message((result.stderr or "").strip())
            raise ProvisioningError(f"kops update cluster exited with status {result.returncode}: {stderr}")
