"""Keysets and client certificate issuance."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..constants import KOPS_API_VERSION, KOPS_KIND_KEYSET
from ..exceptions import CANotFoundError, KopsOperatorError

if TYPE_CHECKING:
    from ..services.kops.base import KeyStore

CERT_TYPE_CLIENT = "client"
CERT_TYPE_SERVER = "server"

RSA_KEY_SIZE = 2048


@dataclass
class Keypair:
    """One certificate of a keyset, with its private key when available."""

    id: str
    certificate: x509.Certificate
    private_key: CertificateIssuerPrivateKeyTypes | None = None


@dataclass
class Keyset:
    """A named set of keypairs, one of which is primary."""

    name: str
    primary_id: str
    items: dict[str, Keypair] = field(default_factory=dict)

    @property
    def primary(self) -> Keypair:
        return self.items[self.primary_id]

    def to_certificate_bytes(self) -> bytes:
        """PEM bundle of every certificate, primary first, then by id."""
        ordered = [self.primary] + [
            item for item_id, item in sorted(self.items.items()) if item_id != self.primary_id
        ]
        return b"".join(certificate_to_pem(item.certificate) for item in ordered)

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> Keyset:
        """Parse a kops ``Keyset`` manifest.

        Raises:
            KopsOperatorError: If the manifest is malformed
        """
        spec = manifest.get("spec") or {}
        name = (manifest.get("metadata") or {}).get("name", "")
        items: dict[str, Keypair] = {}
        for key in spec.get("keys") or []:
            key_id = str(key.get("id", ""))
            public = key.get("publicMaterial")
            if not key_id or not public:
                raise KopsOperatorError(f"keyset {name!r} has an entry without id or certificate")
            certificate = x509.load_pem_x509_certificate(base64.b64decode(public))
            private_key = None
            if key.get("privateMaterial"):
                private_key = serialization.load_pem_private_key(
                    base64.b64decode(key["privateMaterial"]), password=None
                )
            items[key_id] = Keypair(id=key_id, certificate=certificate, private_key=private_key)

        if not items:
            raise KopsOperatorError(f"keyset {name!r} has no keys")
        primary_id = str(spec.get("primaryID") or max(items))
        if primary_id not in items:
            raise KopsOperatorError(f"keyset {name!r} primary {primary_id!r} is missing")
        return cls(name=name, primary_id=primary_id, items=items)

    def to_manifest(self) -> dict[str, Any]:
        keys = []
        for item_id, item in sorted(self.items.items()):
            entry = {
                "id": item_id,
                "publicMaterial": base64.b64encode(certificate_to_pem(item.certificate)).decode("ascii"),
            }
            if item.private_key is not None:
                entry["privateMaterial"] = base64.b64encode(private_key_to_pem(item.private_key)).decode("ascii")
            keys.append(entry)
        return {
            "apiVersion": KOPS_API_VERSION,
            "kind": KOPS_KIND_KEYSET,
            "metadata": {"name": self.name},
            "spec": {"type": "Keypair", "primaryID": self.primary_id, "keys": keys},
        }


@dataclass(frozen=True)
class IssueCertRequest:
    """Parameters of a certificate to be signed by a keyset."""

    signer: str
    type: str
    subject: x509.Name
    validity: timedelta


def subject_name(common_name: str, organizations: list[str] | None = None) -> x509.Name:
    """Build an x509 subject from a common name and organizations."""
    attributes = [x509.NameAttribute(NameOID.ORGANIZATION_NAME, org) for org in organizations or []]
    attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    return x509.Name(attributes)


def certificate_to_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


def private_key_to_pem(private_key: Any) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def issue_cert(
    request: IssueCertRequest,
    key_store: KeyStore,
    now: datetime | None = None,
) -> tuple[x509.Certificate, rsa.RSAPrivateKey]:
    """Issue a certificate signed by the primary key of ``request.signer``.

    Args:
        request: What to issue
        key_store: Key store holding the signer keyset
        now: Start of the validity window (defaults to the current time)

    Returns:
        Tuple of (certificate, private key)

    Raises:
        CANotFoundError: If the signer keyset does not exist
        KopsOperatorError: If the signer keyset has no private key
    """
    keyset = key_store.find_keyset(request.signer)
    if keyset is None:
        raise CANotFoundError(request.signer)
    signer = keyset.primary
    if signer.private_key is None:
        raise KopsOperatorError(f"keyset {request.signer!r} has no private key to sign with")

    not_before = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)

    if request.type == CERT_TYPE_CLIENT:
        usage = x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH])
    elif request.type == CERT_TYPE_SERVER:
        usage = x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH])
    else:
        raise KopsOperatorError(f"unknown certificate type {request.type!r}")

    builder = (
        x509.CertificateBuilder()
        .subject_name(request.subject)
        .issuer_name(signer.certificate.subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + request.validity)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(usage, critical=False)
    )
    certificate = builder.sign(signer.private_key, hashes.SHA256())
    return certificate, private_key
