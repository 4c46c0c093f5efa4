"""Configuration management for the climate mediator.

Provides typed configuration classes that load values from environment
variables. Every field can also be passed explicitly, which is how the
tests build isolated configurations.
"""

import os
from dataclasses import dataclass, field
from typing import List

LOCAL_MODE = "testing"

DISPATCH_DIRECT = "direct"
DISPATCH_CALLBACK = "callback"

SCHEMA_SOURCE_LOCAL = "local"
SCHEMA_SOURCE_REMOTE = "remote"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in ("false", "0", "no")


@dataclass
class MinIOConfig:
    """MinIO connection and notification settings."""

    endpoint_url: str = ""
    access_key: str = ""
    secret_key: str = ""
    region: str = ""
    buckets: str = ""
    prefix: str = ""
    suffix: str = ""
    s3_url: str = ""

    def __post_init__(self):
        self.endpoint_url = self.endpoint_url or os.environ.get("MINIO_ENDPOINT_URL", "http://localhost:9000")
        self.access_key = self.access_key or os.environ.get("MINIO_ACCESS_KEY", "minioadmin")
        self.secret_key = self.secret_key or os.environ.get("MINIO_SECRET_KEY", "minioadmin")
        self.region = self.region or os.environ.get("MINIO_REGION", "us-east-1")
        self.buckets = self.buckets or os.environ.get("MINIO_BUCKETS", "climate-mediator")
        self.prefix = self.prefix or os.environ.get("MINIO_PREFIX", "")
        self.suffix = self.suffix or os.environ.get("MINIO_SUFFIX", "")
        # Base URL ClickHouse uses to reach MinIO; differs from endpoint_url
        # when the two services resolve each other on a private network.
        self.s3_url = self.s3_url or os.environ.get("MINIO_S3_URL", self.endpoint_url)

    @property
    def bucket_list(self) -> List[str]:
        return [b.strip() for b in self.buckets.split(",") if b.strip()]


@dataclass
class ClickHouseConfig:
    """ClickHouse connection configuration."""

    host: str = ""
    port: int = 8123
    user: str = ""
    password: str = ""
    database: str = ""

    def __post_init__(self):
        self.host = self.host or os.environ.get("CLICKHOUSE_HOST", "localhost")
        self.port = int(os.environ.get("CLICKHOUSE_PORT", str(self.port)))
        self.user = self.user or os.environ.get("CLICKHOUSE_USER", "default")
        self.password = self.password or os.environ.get("CLICKHOUSE_PASSWORD", "")
        self.database = self.database or os.environ.get("CLICKHOUSE_DB", "default")

    @property
    def connection_string(self) -> str:
        return f"clickhousedb://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class OpenHIMConfig:
    """OpenHIM (remote config service) settings."""

    mediator_url: str = ""
    username: str = ""
    password: str = ""
    transaction_url: str = ""
    client_token: str = ""
    trust_self_signed: bool = True
    register_mediator: bool = True
    heartbeat_interval: float = 10.0

    def __post_init__(self):
        self.mediator_url = self.mediator_url or os.environ.get("OPENHIM_MEDIATOR_URL", "https://localhost:8080")
        self.username = self.username or os.environ.get("OPENHIM_USERNAME", "root@openhim.org")
        self.password = self.password or os.environ.get("OPENHIM_PASSWORD", "instant101")
        self.transaction_url = self.transaction_url or os.environ.get(
            "OPENHIM_TRANSACTION_URL", "http://localhost:5001"
        )
        self.client_token = self.client_token or os.environ.get("OPENHIM_CLIENT_TOKEN", "")
        self.trust_self_signed = _env_bool("TRUST_SELF_SIGNED", self.trust_self_signed)
        self.register_mediator = _env_bool("REGISTER_MEDIATOR", self.register_mediator)
        self.heartbeat_interval = float(os.environ.get("HEARTBEAT_INTERVAL", str(self.heartbeat_interval)))


@dataclass
class IngestionConfig:
    """Dispatch and ingestion settings."""

    dispatch_mode: str = ""
    schema_source: str = ""
    workers: int = 4
    queue_size: int = 100
    tmp_dir: str = ""

    def __post_init__(self):
        self.dispatch_mode = (self.dispatch_mode or os.environ.get("DISPATCH_MODE", DISPATCH_DIRECT)).lower()
        self.schema_source = (self.schema_source or os.environ.get("SCHEMA_SOURCE", SCHEMA_SOURCE_LOCAL)).lower()
        self.workers = int(os.environ.get("INGEST_WORKERS", str(self.workers)))
        self.queue_size = int(os.environ.get("INGEST_QUEUE_SIZE", str(self.queue_size)))
        self.tmp_dir = self.tmp_dir or os.environ.get("TMP_DIR", os.path.join(os.getcwd(), "tmp"))


@dataclass
class MediatorConfig:
    """Top-level mediator configuration combining all sub-configs."""

    mode: str = ""
    log_level: str = ""
    http_host: str = ""
    http_port: int = 3000
    minio: MinIOConfig = field(default_factory=MinIOConfig)
    clickhouse: ClickHouseConfig = field(default_factory=ClickHouseConfig)
    openhim: OpenHIMConfig = field(default_factory=OpenHIMConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)

    def __post_init__(self):
        self.mode = self.mode or os.environ.get("MODE", "")
        self.log_level = self.log_level or os.environ.get("LOG_LEVEL", "INFO")
        self.http_host = self.http_host or os.environ.get("HTTP_HOST", "0.0.0.0")
        self.http_port = int(os.environ.get("HTTP_PORT", str(self.http_port)))

    @property
    def is_local(self) -> bool:
        """True when the bucket registry comes from MINIO_BUCKETS instead of OpenHIM."""
        return self.mode == LOCAL_MODE

    def validate(self) -> list:
        """Validate required configuration parameters.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        if not self.minio.endpoint_url:
            errors.append("MinIO endpoint URL is required")
        if not self.minio.access_key:
            errors.append("MinIO access key is required")
        if not self.clickhouse.host:
            errors.append("ClickHouse host is required")
        if self.ingestion.dispatch_mode not in (DISPATCH_DIRECT, DISPATCH_CALLBACK):
            errors.append(f"Unknown dispatch mode '{self.ingestion.dispatch_mode}'")
        if self.ingestion.schema_source not in (SCHEMA_SOURCE_LOCAL, SCHEMA_SOURCE_REMOTE):
            errors.append(f"Unknown schema source '{self.ingestion.schema_source}'")
        if self.ingestion.workers < 1:
            errors.append("At least one ingestion worker is required")
        if self.ingestion.dispatch_mode == DISPATCH_CALLBACK and not self.openhim.transaction_url:
            errors.append("OpenHIM transaction URL is required in callback mode")

        return errors


def get_config() -> MediatorConfig:
    """Create and validate the mediator configuration.

    Returns:
        Validated MediatorConfig instance.

    Raises:
        ValueError: If required configuration is missing.
    """
    config = MediatorConfig()
    errors = config.validate()
    if errors:
        raise ValueError(f"Configuration errors: {'; '.join(errors)}")
    return config
