"""Ingestion of object-store files into ClickHouse.

Modules:
    schema_detector: Derive column schemas from CSV and JSON files.
    table_provisioner: Create target tables once, idempotently.
    file_ingestor: Run stage, infer, provision and load for one object.
"""

from .schema_detector import (
    InferredSchema,
    SchemaDetectionError,
    infer_schema,
    sanitize_table_name,
)
from .table_provisioner import ProvisionResult, TableProbe, TableProvisioner
from .file_ingestor import IngestionError, IngestionResult, ObjectIngestor

__all__ = [
    # Schema detection
    "InferredSchema",
    "SchemaDetectionError",
    "infer_schema",
    "sanitize_table_name",
    # Table provisioning
    "ProvisionResult",
    "TableProbe",
    "TableProvisioner",
    # Ingestion runs
    "IngestionError",
    "IngestionResult",
    "ObjectIngestor",
]
