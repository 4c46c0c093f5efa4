"""Climate mediator: loads data files from MinIO buckets into ClickHouse."""

__version__ = "1.0.0"
