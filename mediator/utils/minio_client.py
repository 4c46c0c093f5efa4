"""MinIO (S3-compatible) client utilities for the mediator.

Bucket and object operations go through a boto3 S3 client. Bucket
notifications use MinIO's ListenBucketNotification extension, which is
only exposed by the MinIO SDK.
"""

import logging
from typing import Callable, Iterable, List, Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from minio import Minio

from mediator.config.mediator_config import MinIOConfig
from mediator.utils.locks import NamedLocks

log = logging.getLogger(__name__)

OBJECT_CREATED_EVENTS = ("s3:ObjectCreated:*",)

_MISSING_BUCKET_CODES = ("404", "NoSuchBucket", "NotFound")

_client = None
_notification_client = None


class BucketDoesNotExist(Exception):
    """Raised when a bucket is missing and creating it was not requested."""


def get_minio_client(config: Optional[MinIOConfig] = None):
    """Create or return a cached boto3 S3 client configured for MinIO.

    Uses connection pooling via module-level caching. Credentials are read
    from environment variables unless *config* is given, in which case a
    fresh, uncached client is returned.
    """
    global _client
    if _client is not None and config is None:
        return _client

    cfg = config or MinIOConfig()

    boto_config = Config(
        retries={"max_attempts": 3, "mode": "standard"},
        max_pool_connections=10,
    )

    client = boto3.client(
        "s3",
        endpoint_url=cfg.endpoint_url,
        aws_access_key_id=cfg.access_key,
        aws_secret_access_key=cfg.secret_key,
        region_name=cfg.region,
        config=boto_config,
    )
    if config is None:
        _client = client
    return client


def get_notification_client(config: Optional[MinIOConfig] = None) -> Minio:
    """Create or return a cached MinIO SDK client used for event listening."""
    global _notification_client
    if _notification_client is not None and config is None:
        return _notification_client

    cfg = config or MinIOConfig()
    parsed = urlparse(cfg.endpoint_url)

    client = Minio(
        endpoint=parsed.netloc or parsed.path,
        access_key=cfg.access_key,
        secret_key=cfg.secret_key,
        secure=parsed.scheme == "https",
        region=cfg.region,
    )
    if config is None:
        _notification_client = client
    return client


def _is_missing_bucket(exc: ClientError) -> bool:
    code = exc.response.get("Error", {}).get("Code")
    return str(code) in _MISSING_BUCKET_CODES


class ObjectStoreGateway:
    """Thin capability over the object store.

    Args:
        client: boto3 S3 client (defaults to the cached MinIO client).
        notification_client: MinIO SDK client used by ``subscribe``.
        default_region: Region used when ``ensure_bucket`` gets none.
    """

    def __init__(
        self,
        client=None,
        notification_client: Optional[Minio] = None,
        default_region: str = "us-east-1",
    ):
        self._client = client or get_minio_client()
        self._notification_client = notification_client
        self.default_region = default_region
        self._listener_registrar: Optional[Callable[[List[str]], object]] = None
        self._bucket_locks = NamedLocks()

    @classmethod
    def from_config(cls, config: MinIOConfig) -> "ObjectStoreGateway":
        return cls(
            client=get_minio_client(config),
            notification_client=get_notification_client(config),
            default_region=config.region,
        )

    def set_listener_registrar(self, registrar: Callable[[List[str]], object]) -> None:
        """Set the callable that starts watching newly ensured buckets."""
        self._listener_registrar = registrar

    def list_buckets(self) -> List[str]:
        response = self._client.list_buckets()
        return [b["Name"] for b in response.get("Buckets", [])]

    def bucket_exists(self, bucket_name: str) -> bool:
        """Return whether *bucket_name* exists.

        Only a not-found response means ``False``; any other client error
        is re-raised so transport failures are never read as absence.
        """
        try:
            self._client.head_bucket(Bucket=bucket_name)
            return True
        except ClientError as exc:
            if _is_missing_bucket(exc):
                return False
            raise

    def ensure_bucket(
        self,
        bucket_name: str,
        region: Optional[str] = None,
        create_if_missing: bool = False,
    ) -> bool:
        """Make sure a bucket exists, optionally creating it.

        When *create_if_missing* is set, the bucket is also handed to the
        listener registrar so it is watched for new objects.

        Args:
            bucket_name: Bucket to check.
            region: Region for a newly created bucket.
            create_if_missing: Create the bucket when it doesn't exist.

        Returns:
            True if the bucket was created by this call.

        Raises:
            BucketDoesNotExist: The bucket is missing and
                *create_if_missing* is False.
        """
        created = False
        with self._bucket_locks.hold(bucket_name):
            if not self.bucket_exists(bucket_name):
                if not create_if_missing:
                    raise BucketDoesNotExist(f"Bucket '{bucket_name}' does not exist")
                self._create_bucket(bucket_name, region or self.default_region)
                created = True
            else:
                log.debug("Bucket %s already exists", bucket_name)

        if create_if_missing and self._listener_registrar is not None:
            self._listener_registrar([bucket_name])
        return created

    def _create_bucket(self, bucket_name: str, region: str) -> None:
        kwargs = {"Bucket": bucket_name}
        if region and region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
        try:
            self._client.create_bucket(**kwargs)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                log.debug("Bucket %s was created concurrently", bucket_name)
                return
            raise
        log.info("Created bucket %s in region %s", bucket_name, region)

    def fetch_object(self, bucket_name: str, object_name: str, file_path: str) -> str:
        """Download an object to a local file and return the path."""
        self._client.download_file(Bucket=bucket_name, Key=object_name, Filename=file_path)
        log.info("Downloaded %s/%s to %s", bucket_name, object_name, file_path)
        return file_path

    def put_object(
        self,
        bucket_name: str,
        object_name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload raw bytes as an object and return its key."""
        self._client.put_object(
            Bucket=bucket_name,
            Key=object_name,
            Body=data,
            ContentType=content_type,
        )
        log.info("Uploaded %d bytes to %s/%s", len(data), bucket_name, object_name)
        return object_name

    def subscribe(
        self,
        bucket_name: str,
        prefix: str = "",
        suffix: str = "",
        events: Iterable[str] = OBJECT_CREATED_EVENTS,
    ):
        """Open a notification stream for a bucket.

        Returns:
            A closeable iterable of raw notification payloads, each a dict
            with a ``Records`` list.
        """
        if self._notification_client is None:
            self._notification_client = get_notification_client()
        log.info(
            "Listening for %s on bucket %s (prefix=%r, suffix=%r)",
            ",".join(events), bucket_name, prefix, suffix,
        )
        return self._notification_client.listen_bucket_notification(
            bucket_name=bucket_name,
            prefix=prefix,
            suffix=suffix,
            events=tuple(events),
        )
