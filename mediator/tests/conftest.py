"""Pytest configuration and shared fixtures for mediator tests."""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest

# Ensure the mediator package is importable without installation
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from mediator.utils.storage import S3Credentials  # noqa: E402

MEDIATOR_ENV_VARS = (
    "MINIO_ENDPOINT_URL", "MINIO_ACCESS_KEY", "MINIO_SECRET_KEY", "MINIO_REGION",
    "MINIO_BUCKETS", "MINIO_PREFIX", "MINIO_SUFFIX", "MINIO_S3_URL",
    "CLICKHOUSE_HOST", "CLICKHOUSE_PORT", "CLICKHOUSE_USER", "CLICKHOUSE_PASSWORD", "CLICKHOUSE_DB",
    "OPENHIM_MEDIATOR_URL", "OPENHIM_USERNAME", "OPENHIM_PASSWORD",
    "OPENHIM_TRANSACTION_URL", "OPENHIM_CLIENT_TOKEN",
    "TRUST_SELF_SIGNED", "REGISTER_MEDIATOR", "HEARTBEAT_INTERVAL",
    "MODE", "LOG_LEVEL", "HTTP_HOST", "HTTP_PORT",
    "DISPATCH_MODE", "SCHEMA_SOURCE", "INGEST_WORKERS", "INGEST_QUEUE_SIZE", "TMP_DIR",
)


@pytest.fixture
def clean_env():
    """Remove every mediator environment variable for the test."""
    env = {k: v for k, v in os.environ.items() if k not in MEDIATOR_ENV_VARS}
    with patch.dict(os.environ, env, clear=True):
        yield


@pytest.fixture
def minio_env(clean_env):
    """Set MinIO environment variables for testing."""
    env_vars = {
        "MINIO_ENDPOINT_URL": "http://localhost:9000",
        "MINIO_ACCESS_KEY": "test-key",
        "MINIO_SECRET_KEY": "test-secret",
        "MINIO_BUCKETS": "sales,climate",
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def clickhouse_env(clean_env):
    """Set ClickHouse environment variables for testing."""
    env_vars = {
        "CLICKHOUSE_HOST": "clickhouse",
        "CLICKHOUSE_PORT": "8123",
        "CLICKHOUSE_USER": "test-user",
        "CLICKHOUSE_PASSWORD": "test-password",
        "CLICKHOUSE_DB": "climate",
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def mock_s3_client():
    """Create a mock boto3 S3 client with common operations stubbed."""
    client = MagicMock()
    client.list_buckets.return_value = {
        "Buckets": [
            {"Name": "sales", "CreationDate": "2024-01-01T00:00:00Z"},
            {"Name": "climate", "CreationDate": "2024-01-01T00:00:00Z"},
        ]
    }
    client.head_bucket.return_value = {}
    return client


@pytest.fixture
def credentials():
    return S3Credentials("minio", "minio123")


@pytest.fixture
def mock_gateway():
    """A gateway whose fetch_object writes the bytes set in ``gateway.objects``."""
    gateway = MagicMock()
    gateway.objects = {}

    def fetch_object(bucket, key, file_path):
        with open(file_path, "wb") as f:
            f.write(gateway.objects[(bucket, key)])
        return file_path

    gateway.fetch_object.side_effect = fetch_object
    return gateway


@pytest.fixture
def mock_engine():
    """Create a mock SQLAlchemy engine and expose its connection."""
    engine = MagicMock()
    conn = MagicMock()
    engine.connect.return_value = conn
    engine.conn = conn
    return engine


@pytest.fixture
def orders_csv():
    return b"id,name,age\n1,Alice,30\n2,Bob,25\n"


@pytest.fixture
def payload_json():
    return b'{"main": {"x": 1}, "y": "z"}'
