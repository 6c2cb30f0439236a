"""Administrative connection credentials for a managed cluster."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from ..config import OperatorConfig
from ..constants import (
    DEFAULT_ADMIN_COMMON_NAME,
    DEFAULT_ADMIN_GROUP,
    DEFAULT_CA_SIGNER_ID,
    DEFAULT_CERTIFICATE_TTL_HOURS,
)
from ..exceptions import CANotFoundError, KeyStoreError
from ..models import Cluster
from ..services.kops.base import Clientset
from .pki import (
    CERT_TYPE_CLIENT,
    IssueCertRequest,
    certificate_to_pem,
    issue_cert,
    private_key_to_pem,
    subject_name,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Credentials and endpoint granting administrative access to a cluster.

    Held for one reconciliation pass only.
    """

    cluster_name: str
    server: str
    ca_certificate: bytes
    client_certificate: bytes
    client_key: bytes

    def with_server(self, server: str) -> ConnectionDescriptor:
        return dataclasses.replace(self, server=server)


class CredentialIssuer:
    """Issues short-lived client certificates signed by a cluster's CA."""

    def __init__(
        self,
        signer_id: str = DEFAULT_CA_SIGNER_ID,
        common_name: str = DEFAULT_ADMIN_COMMON_NAME,
        group: str = DEFAULT_ADMIN_GROUP,
        default_ttl: timedelta = timedelta(hours=DEFAULT_CERTIFICATE_TTL_HOURS),
        issue: Callable[..., tuple] = issue_cert,
    ) -> None:
        self.signer_id = signer_id
        self.common_name = common_name
        self.group = group
        self.default_ttl = default_ttl
        self._issue = issue

    @classmethod
    def from_config(cls, config: OperatorConfig) -> CredentialIssuer:
        return cls(
            signer_id=config.ca_signer_id,
            common_name=config.admin_common_name,
            group=config.admin_group,
            default_ttl=config.default_certificate_ttl,
        )

    def build_connection(
        self,
        clientset: Clientset,
        cluster: Cluster,
        ttl: timedelta | None = None,
        now: datetime | None = None,
    ) -> ConnectionDescriptor:
        """Build a connection descriptor for a cluster.

        Args:
            clientset: State store holding the cluster's key store
            cluster: Cluster to connect to
            ttl: Certificate validity; zero or None means the default
            now: Start of the validity window

        Returns:
            A complete connection descriptor

        Raises:
            KeyStoreError: If the key store cannot be resolved
            CANotFoundError: If the key store holds no CA keyset
        """
        try:
            key_store = clientset.key_store(cluster)
        except Exception as e:
            raise KeyStoreError(e) from e

        keyset = key_store.find_keyset(self.signer_id)
        if keyset is None:
            raise CANotFoundError(self.signer_id)

        validity = ttl or self.default_ttl
        request = IssueCertRequest(
            signer=self.signer_id,
            type=CERT_TYPE_CLIENT,
            subject=subject_name(self.common_name, [self.group]),
            validity=validity,
        )
        certificate, private_key = self._issue(request, key_store, now)
        logger.debug(f"Issued client certificate for {cluster.name} valid for {validity}")

        return ConnectionDescriptor(
            cluster_name=cluster.name,
            server=f"https://api.{cluster.name}",
            ca_certificate=keyset.to_certificate_bytes(),
            client_certificate=certificate_to_pem(certificate),
            client_key=private_key_to_pem(private_key),
        )
