"""Local staging of object-store files and object URL helpers.

Usage:
    from mediator.utils.storage import staged_object, object_url

    with staged_object(gateway, "sales", "orders.csv", tmp_dir) as path:
        data = read_bytes(path)

    url = object_url("http://minio:9000", "sales", "orders.csv")
"""

import logging
import os
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator
from urllib.parse import quote

log = logging.getLogger(__name__)


def object_url(base_url: str, bucket: str, object_key: str) -> str:
    """Build the path-style HTTP URL of an object.

    Args:
        base_url: Object store base URL, e.g. ``http://minio:9000``.
        bucket: Bucket name.
        object_key: Object key within the bucket.

    Returns:
        URL such as ``http://minio:9000/sales/orders.csv``.
    """
    return f"{base_url.rstrip('/')}/{bucket}/{quote(object_key, safe='/')}"


def staging_path(tmp_dir: str, object_key: str) -> str:
    """Return a unique local path for staging *object_key*.

    Two events for objects with the same base name never share a path.
    """
    base_name = os.path.basename(object_key) or "object"
    return os.path.join(tmp_dir, f"{uuid.uuid4().hex}-{base_name}")


@contextmanager
def staged_object(gateway, bucket: str, object_key: str, tmp_dir: str) -> Iterator[str]:
    """Download an object to local disk for the duration of the block.

    The staged file is removed on every exit path, including exceptions
    raised by the download itself or by the caller.

    Args:
        gateway: ObjectStoreGateway used to fetch the object.
        bucket: Bucket containing the object.
        object_key: Object key to stage.
        tmp_dir: Directory for staged files (created if missing).

    Yields:
        The local file path.
    """
    os.makedirs(tmp_dir, exist_ok=True)
    path = staging_path(tmp_dir, object_key)
    try:
        gateway.fetch_object(bucket, object_key, path)
        yield path
    finally:
        if os.path.exists(path):
            os.unlink(path)
            log.debug("Removed staged file %s", path)


def read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


@dataclass(frozen=True)
class S3Credentials:
    """Access credentials ClickHouse uses to read objects directly."""

    access_key: str
    secret_key: str = field(repr=False)
