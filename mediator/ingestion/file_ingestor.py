"""Object ingestion for the mediator.

Runs one ingestion for an object that arrived in a watched bucket: the
object is staged locally, its schema inferred, the target table
provisioned if absent, and the rows bulk-loaded by ClickHouse straight
from the object store. The staged file is removed on every exit path.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .schema_detector import (
    FORMAT_JSON,
    InferredSchema,
    SchemaDetectionError,
    file_format_for,
    infer_schema,
    sanitize_table_name,
)
from .table_provisioner import ProvisionResult, TableProvisioner
from mediator.config.mediator_config import SCHEMA_SOURCE_LOCAL
from mediator.loaders.s3_to_clickhouse import load_object_into_table
from mediator.utils.logging_config import event_logging_context
from mediator.utils.responses import create_error_response, create_success_response
from mediator.utils.storage import S3Credentials, object_url, read_bytes, staged_object

log = logging.getLogger(__name__)

STATUS_LOADED = "loaded"
STATUS_SKIPPED = "skipped"
STATUS_INVALID = "invalid"
STATUS_FAILED = "failed"


class IngestionError(Exception):
    """Raised when an ingestion run cannot complete."""


@dataclass
class IngestionResult:
    """Outcome of one ingestion run."""

    bucket: str
    object_key: str
    table_name: str
    status: str
    message: str = ""
    provision: Optional[ProvisionResult] = None
    schema: Optional[InferredSchema] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_LOADED


class ObjectIngestor:
    """Ingests objects from the object store into ClickHouse.

    Args:
        gateway: ObjectStoreGateway used to stage objects.
        provisioner: TableProvisioner that creates target tables.
        credentials: Credentials ClickHouse uses to read from MinIO.
        s3_url: Object store base URL as seen by ClickHouse.
        tmp_dir: Directory for staged files.
        schema_source: ``local`` to build DDL from the inferred schema,
            ``remote`` to let ClickHouse describe the object.
        engine: Optional SQLAlchemy engine for the load statement.
    """

    def __init__(
        self,
        gateway,
        provisioner: TableProvisioner,
        credentials: S3Credentials,
        s3_url: str,
        tmp_dir: str,
        schema_source: str = SCHEMA_SOURCE_LOCAL,
        engine=None,
    ):
        self.gateway = gateway
        self.provisioner = provisioner
        self.credentials = credentials
        self.s3_url = s3_url
        self.tmp_dir = tmp_dir
        self.schema_source = schema_source
        self.engine = engine

    def ingest(self, bucket: str, object_key: str, table_name: Optional[str] = None) -> IngestionResult:
        """Run one ingestion for ``bucket/object_key``.

        Args:
            bucket: Bucket the object arrived in.
            object_key: Key of the new object.
            table_name: Target table; defaults to the bucket name. Always
                sanitized.

        Returns:
            IngestionResult describing what happened. Expected failures
            (unsupported file, invalid content, provisioning or load
            failure) are reported in the result rather than raised.

        Raises:
            IngestionError: If the object could not be staged.
        """
        target = sanitize_table_name(table_name or bucket)

        with event_logging_context(bucket, object_key, target):
            file_format = file_format_for(object_key)
            if file_format is None:
                log.warning("Skipping unsupported file type: %s", object_key)
                return IngestionResult(bucket, object_key, target, STATUS_SKIPPED,
                                       message=f"Unsupported file type: {object_key}")

            try:
                with staged_object(self.gateway, bucket, object_key, self.tmp_dir) as path:
                    data = read_bytes(path)
                    log.info("File downloaded - type: %s", file_format)
                    return self._ingest_staged(bucket, object_key, target, file_format, data)
            except IngestionError:
                raise
            except Exception as exc:
                raise IngestionError(f"Failed to ingest '{bucket}/{object_key}': {exc}") from exc

    def _ingest_staged(
        self,
        bucket: str,
        object_key: str,
        table_name: str,
        file_format: str,
        data: bytes,
    ) -> IngestionResult:
        try:
            schema = infer_schema(data, file_format, source=object_key)
        except SchemaDetectionError as exc:
            log.error("Skipping %s/%s: %s", bucket, object_key, exc)
            return IngestionResult(bucket, object_key, table_name, STATUS_INVALID, message=str(exc))

        url = object_url(self.s3_url, bucket, object_key)

        # Remotely described tables take the object's own columns as-is
        columns = extracts = None
        if self.schema_source == SCHEMA_SOURCE_LOCAL:
            provision = self.provisioner.ensure_table(table_name, schema)
            columns = schema.column_names
            if file_format == FORMAT_JSON:
                extracts = schema.extracts
        else:
            provision = self.provisioner.ensure_table_from_object(
                table_name, url, self.credentials, file_format
            )

        if provision is ProvisionResult.FAILED:
            return IngestionResult(bucket, object_key, table_name, STATUS_FAILED,
                                   message=f"Could not provision table '{table_name}'",
                                   provision=provision, schema=schema)

        loaded = load_object_into_table(
            table_name,
            url,
            self.credentials,
            file_format,
            columns=columns,
            extracts=extracts,
            engine=self.engine,
        )
        if not loaded:
            return IngestionResult(bucket, object_key, table_name, STATUS_FAILED,
                                   message=f"Could not load '{object_key}' into '{table_name}'",
                                   provision=provision, schema=schema)

        log.info("Ingestion complete: %s/%s -> %s (%s)", bucket, object_key, table_name, provision.value)
        return IngestionResult(bucket, object_key, table_name, STATUS_LOADED,
                               message=f"Loaded '{object_key}' into '{table_name}'",
                               provision=provision, schema=schema)

    def process_request(
        self,
        bucket: Optional[str],
        file: Optional[str],
        table_name: Optional[str] = None,
    ) -> Tuple[int, Dict[str, str]]:
        """Handle a synchronous ``GET /process-climate-data`` request.

        Returns:
            ``(http_status, body)`` where body is ``{status, code, message}``.
        """
        if not bucket or not file:
            return 400, create_error_response("MISSING_PARAMS", "Both 'bucket' and 'file' are required")

        try:
            result = self.ingest(bucket, file, table_name)
        except IngestionError as exc:
            log.error("Processing request failed: %s", exc)
            return 500, create_error_response("INGESTION_ERROR", str(exc))

        if result.status == STATUS_LOADED:
            return 200, create_success_response("INGESTED", result.message)
        if result.status == STATUS_SKIPPED:
            return 400, create_error_response("UNSUPPORTED_FILE", result.message)
        if result.status == STATUS_INVALID:
            return 400, create_error_response("INVALID_FILE", result.message)
        return 500, create_error_response("INGESTION_FAILED", result.message)
