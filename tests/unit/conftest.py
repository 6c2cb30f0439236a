"""Shared fixtures for unit tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from kops_operator.credentials.pki import Keypair, Keyset


def make_ca_keypair(common_name: str = "kubernetes-ca", keypair_id: str = "1") -> Keypair:
    """Build a self-signed CA keypair."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return Keypair(id=keypair_id, certificate=certificate, private_key=key)


class FakeKeyStore:
    """In-memory key store."""

    def __init__(self, keysets: dict[str, Keyset] | None = None):
        self.keysets = keysets or {}

    def find_keyset(self, name: str) -> Keyset | None:
        return self.keysets.get(name)


@pytest.fixture(scope="session")
def ca_keypair() -> Keypair:
    return make_ca_keypair()


@pytest.fixture
def ca_keyset(ca_keypair: Keypair) -> Keyset:
    return Keyset(name="kubernetes-ca", primary_id=ca_keypair.id, items={ca_keypair.id: ca_keypair})


@pytest.fixture
def key_store(ca_keyset: Keyset) -> FakeKeyStore:
    return FakeKeyStore({"kubernetes-ca": ca_keyset})


@pytest.fixture
def kops_body() -> dict[str, Any]:
    """A valid Kops resource body."""
    return {
        "apiVersion": "kops.cloud37.dev/v1alpha1",
        "kind": "Kops",
        "metadata": {
            "name": "demo",
            "uid": "uid-123",
            "generation": 2,
            "finalizers": [],
        },
        "spec": {
            "forProvider": {
                "domain": "example.com",
                "stateBucket": "s3://kops-state",
                "region": "us-east-1",
                "clusterSpec": {
                    "cloudProvider": "aws",
                    "kubernetesVersion": "1.28.0",
                    "subnets": [{"name": "us-east-1a", "zone": "us-east-1a", "type": "Public"}],
                },
                "instanceGroupSpec": [
                    {
                        "role": "Master",
                        "minSize": 1,
                        "maxSize": 1,
                        "nodeLabels": {"kops.k8s.io/instancegroup": "control-plane-us-east-1a"},
                    },
                    {
                        "role": "Node",
                        "minSize": 2,
                        "maxSize": 3,
                        "nodeLabels": {"kops.k8s.io/instancegroup": "nodes"},
                    },
                ],
            },
            "writeConnectionSecretToRef": {"name": "demo-kubeconfig", "namespace": "clusters"},
        },
    }


@pytest.fixture
def ca_factory():
    """Factory for additional CA keypairs."""
    return make_ca_keypair
