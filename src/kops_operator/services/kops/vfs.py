"""kops state store backed by S3.

Objects follow the kops VFS layout under ``s3://<bucket>/<prefix>``::

    <cluster>/config
    <cluster>/instancegroup/<name>
    <cluster>/pki/private/<keyset>/keyset.yaml
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

import boto3
import yaml
from botocore.exceptions import ClientError

from ...credentials.pki import Keyset
from ...exceptions import AlreadyExistsError, NotFoundError
from ...models import Cluster, ClusterStatus, InstanceGroup

logger = logging.getLogger(__name__)

_MISSING_CODES = ("NoSuchKey", "404", "NotFound")
_DELETE_BATCH = 1000


def parse_state_store(location: str) -> tuple[str, str]:
    """Split ``s3://bucket/prefix`` into bucket and key prefix.

    Raises:
        ValueError: If the location is not an S3 URL
    """
    parsed = urlparse(location)
    if parsed.scheme != "s3" or not parsed.netloc:
        raise ValueError(f"state store must be an s3:// URL, got {location!r}")
    return parsed.netloc, parsed.path.strip("/")


def _join(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p)


def _is_missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") in _MISSING_CODES


class _ObjectStore:
    """YAML documents in one bucket."""

    def __init__(self, client: Any, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def read(self, key: str) -> dict[str, Any] | None:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return None
            logger.error(f"Failed to read s3://{self.bucket}/{key}: {e}")
            raise
        return yaml.safe_load(response["Body"].read()) or {}

    def write(self, key: str, document: dict[str, Any]) -> None:
        body = yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
        self.client.put_object(Bucket=self.bucket, Key=key, Body=body.encode("utf-8"))

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return False
            raise
        return True

    def list_keys(self, prefix: str) -> list[str]:
        paginator = self.client.get_paginator("list_objects_v2")
        keys: list[str] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def delete_prefix(self, prefix: str) -> int:
        keys = self.list_keys(prefix)
        for start in range(0, len(keys), _DELETE_BATCH):
            batch = keys[start : start + _DELETE_BATCH]
            self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
        return len(keys)


class S3InstanceGroupClient:
    """Instance groups stored under ``<cluster>/instancegroup/``."""

    def __init__(self, objects: _ObjectStore, base: str, cluster_name: str) -> None:
        self._objects = objects
        self._prefix = _join(base, "instancegroup") + "/"
        self.cluster_name = cluster_name

    def _key(self, name: str) -> str:
        return self._prefix + name

    def list(self) -> list[InstanceGroup]:
        groups = []
        for key in sorted(self._objects.list_keys(self._prefix)):
            manifest = self._objects.read(key)
            if manifest is None:
                continue
            group = InstanceGroup.from_manifest(manifest)
            group.cluster_name = group.cluster_name or self.cluster_name
            groups.append(group)
        return groups

    def create(self, instance_group: InstanceGroup) -> InstanceGroup:
        key = self._key(instance_group.name)
        if self._objects.exists(key):
            raise AlreadyExistsError(
                f"instance group {instance_group.name!r} already exists in cluster {self.cluster_name!r}"
            )
        return self._write(instance_group)

    def update(self, instance_group: InstanceGroup) -> InstanceGroup:
        return self._write(instance_group)

    def _write(self, instance_group: InstanceGroup) -> InstanceGroup:
        instance_group.cluster_name = self.cluster_name
        self._objects.write(self._key(instance_group.name), instance_group.to_manifest())
        return instance_group


class S3KeyStore:
    """Keysets stored under ``<cluster>/pki/private/``."""

    def __init__(self, objects: _ObjectStore, base: str) -> None:
        self._objects = objects
        self._base = _join(base, "pki", "private")

    def find_keyset(self, name: str) -> Keyset | None:
        manifest = self._objects.read(_join(self._base, name, "keyset.yaml"))
        if manifest is None:
            return None
        return Keyset.from_manifest(manifest)


class S3Clientset:
    """Cluster-state backend reading and writing a kops S3 state store."""

    def __init__(self, state_store: str, s3_client: Any | None = None) -> None:
        """Initialize the clientset.

        Args:
            state_store: State store URL, e.g. ``s3://my-bucket/prefix``
            s3_client: boto3 S3 client (created from the environment if omitted)

        Raises:
            ValueError: If the state store URL is invalid
        """
        self.state_store = state_store.rstrip("/")
        bucket, self._prefix = parse_state_store(self.state_store)
        self._objects = _ObjectStore(s3_client or boto3.client("s3"), bucket)

    def _base(self, cluster_name: str) -> str:
        return _join(self._prefix, cluster_name)

    def _config_key(self, cluster_name: str) -> str:
        return _join(self._base(cluster_name), "config")

    def get_cluster(self, name: str) -> Cluster:
        manifest = self._objects.read(self._config_key(name))
        if manifest is None:
            raise NotFoundError(f"cluster {name!r} not found in {self.state_store}")
        return Cluster.from_manifest(manifest)

    def create_cluster(self, cluster: Cluster) -> Cluster:
        key = self._config_key(cluster.name)
        if self._objects.exists(key):
            raise AlreadyExistsError(f"cluster {cluster.name!r} already exists in {self.state_store}")
        self._objects.write(key, cluster.to_manifest())
        logger.info(f"Stored cluster {cluster.name} in {self.state_store}")
        return cluster

    def update_cluster(self, cluster: Cluster, status: ClusterStatus | None) -> Cluster:
        key = self._config_key(cluster.name)
        if not self._objects.exists(key):
            raise NotFoundError(f"cluster {cluster.name!r} not found in {self.state_store}")
        cluster.status = status
        self._objects.write(key, cluster.to_manifest())
        return cluster

    def delete_cluster(self, cluster: Cluster) -> None:
        removed = self._objects.delete_prefix(self._base(cluster.name) + "/")
        logger.info(f"Removed {removed} objects of cluster {cluster.name} from {self.state_store}")

    def instance_groups_for(self, cluster: Cluster) -> S3InstanceGroupClient:
        return S3InstanceGroupClient(self._objects, self._base(cluster.name), cluster.name)

    def key_store(self, cluster: Cluster) -> S3KeyStore:
        return S3KeyStore(self._objects, self._base(cluster.name))
