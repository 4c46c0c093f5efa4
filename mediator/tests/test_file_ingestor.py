"""Tests for the object ingestion run."""

import os
from unittest.mock import MagicMock, patch

import pytest

from mediator.config.mediator_config import SCHEMA_SOURCE_REMOTE
from mediator.ingestion.file_ingestor import (
    STATUS_FAILED,
    STATUS_INVALID,
    STATUS_LOADED,
    STATUS_SKIPPED,
    IngestionError,
    ObjectIngestor,
)
from mediator.ingestion.table_provisioner import ProvisionResult, TableProvisioner


class UnknownTable(Exception):
    def __init__(self):
        super().__init__("Code: 60. DB::Exception: Table does not exist. (UNKNOWN_TABLE)")


@pytest.fixture
def ingestor(mock_gateway, credentials, tmp_path):
    return ObjectIngestor(
        gateway=mock_gateway,
        provisioner=TableProvisioner(engine=object()),
        credentials=credentials,
        s3_url="http://minio:9000",
        tmp_dir=str(tmp_path),
    )


@pytest.fixture
def db():
    """Patch every statement the ingestion run sends to ClickHouse."""
    with patch("mediator.ingestion.table_provisioner.execute_query") as probe, \
            patch("mediator.ingestion.table_provisioner.execute_statement") as ddl, \
            patch("mediator.loaders.s3_to_clickhouse.execute_statement") as load:
        probe.side_effect = UnknownTable()
        yield MagicMock(probe=probe, ddl=ddl, load=load)


class TestIngest:
    """Tests for ObjectIngestor.ingest."""

    def test_orders_csv_end_to_end(self, ingestor, mock_gateway, orders_csv, db, tmp_path):
        mock_gateway.objects[("sales", "orders.csv")] = orders_csv

        result = ingestor.ingest("sales", "orders.csv")

        assert result.status == STATUS_LOADED
        assert result.ok
        assert result.table_name == "sales"
        assert result.provision is ProvisionResult.CREATED

        ddl = db.ddl.call_args.args[0]
        assert ddl == (
            "CREATE TABLE IF NOT EXISTS `sales` ("
            "`table_id` UUID DEFAULT generateUUIDv4(), "
            "`id` VARCHAR, `name` VARCHAR, `age` VARCHAR) "
            "ENGINE = MergeTree ORDER BY (`table_id`)"
        )
        load = db.load.call_args.args[0]
        assert load.startswith("INSERT INTO `sales` (`id`, `name`, `age`) SELECT * FROM s3(")
        assert "'http://minio:9000/sales/orders.csv'" in load
        assert os.listdir(tmp_path) == []

    def test_payload_json_end_to_end(self, ingestor, mock_gateway, payload_json, db):
        mock_gateway.objects[("events", "payload.json")] = payload_json

        result = ingestor.ingest("events", "payload.json")

        assert result.status == STATUS_LOADED
        assert result.schema.column_names == ["x", "y"]
        load = db.load.call_args.args[0]
        assert "INSERT INTO `events` (`x`, `y`)" in load
        assert "JSONExtract(json, 'main', 'x', 'Int64') AS `x`" in load
        assert "JSONExtract(json, 'y', 'String') AS `y`" in load
        assert load.endswith("'JSONAsString')")

    def test_existing_table_is_loaded_without_ddl(self, ingestor, mock_gateway, orders_csv, db):
        mock_gateway.objects[("sales", "orders.csv")] = orders_csv
        db.probe.side_effect = None

        result = ingestor.ingest("sales", "orders.csv")

        assert result.provision is ProvisionResult.ALREADY_EXISTED
        db.ddl.assert_not_called()
        db.load.assert_called_once()

    def test_table_name_is_sanitized(self, ingestor, mock_gateway, orders_csv, db):
        mock_gateway.objects[("sales-2024", "orders.csv")] = orders_csv

        result = ingestor.ingest("sales-2024", "orders.csv")

        assert result.table_name == "sales_2024"

    def test_unsupported_file_is_skipped(self, ingestor, mock_gateway, db):
        result = ingestor.ingest("sales", "report.parquet")

        assert result.status == STATUS_SKIPPED
        mock_gateway.fetch_object.assert_not_called()

    def test_invalid_json_leaves_no_temp_file(self, ingestor, mock_gateway, db, tmp_path):
        mock_gateway.objects[("events", "broken.json")] = b"{not json"

        result = ingestor.ingest("events", "broken.json")

        assert result.status == STATUS_INVALID
        assert os.listdir(tmp_path) == []
        db.ddl.assert_not_called()
        db.load.assert_not_called()

    def test_temp_file_removed_after_forced_inference_error(self, ingestor, mock_gateway, orders_csv, db, tmp_path):
        mock_gateway.objects[("sales", "orders.csv")] = orders_csv

        with patch("mediator.ingestion.file_ingestor.infer_schema", side_effect=RuntimeError("boom")):
            with pytest.raises(IngestionError):
                ingestor.ingest("sales", "orders.csv")

        assert os.listdir(tmp_path) == []

    def test_probe_failure_skips_load(self, ingestor, mock_gateway, orders_csv, db):
        mock_gateway.objects[("sales", "orders.csv")] = orders_csv
        db.probe.side_effect = ConnectionError("connection refused")

        result = ingestor.ingest("sales", "orders.csv")

        assert result.status == STATUS_FAILED
        db.load.assert_not_called()

    def test_load_failure(self, ingestor, mock_gateway, orders_csv, db):
        mock_gateway.objects[("sales", "orders.csv")] = orders_csv
        db.load.side_effect = RuntimeError("Cannot parse input")

        result = ingestor.ingest("sales", "orders.csv")

        assert result.status == STATUS_FAILED

    def test_download_failure_raises(self, ingestor, db):
        with pytest.raises(IngestionError, match="sales/missing.csv"):
            ingestor.ingest("sales", "missing.csv")

    def test_remote_schema_source(self, ingestor, mock_gateway, orders_csv, db):
        mock_gateway.objects[("sales", "orders.csv")] = orders_csv
        ingestor.schema_source = SCHEMA_SOURCE_REMOTE

        with patch("mediator.ingestion.table_provisioner.detect_remote_schema") as detect:
            detect.return_value = [("id", "Nullable(Int64)"), ("name", "Nullable(String)")]
            result = ingestor.ingest("sales", "orders.csv")

        assert result.status == STATUS_LOADED
        assert detect.call_args.args[0] == "http://minio:9000/sales/orders.csv"
        assert db.ddl.call_args.args[0].endswith("ORDER BY tuple()")
        assert db.load.call_args.args[0].startswith("INSERT INTO `sales` SELECT * FROM s3(")


class TestProcessRequest:
    """Tests for ObjectIngestor.process_request."""

    def test_missing_params(self, ingestor):
        status, body = ingestor.process_request("sales", None)

        assert status == 400
        assert body["status"] == "error"
        assert body["code"] == "MISSING_PARAMS"

    def test_success(self, ingestor, mock_gateway, orders_csv, db):
        mock_gateway.objects[("sales", "orders.csv")] = orders_csv

        status, body = ingestor.process_request("sales", "orders.csv", "orders")

        assert status == 200
        assert body == {"status": "success", "code": "INGESTED", "message": "Loaded 'orders.csv' into 'orders'"}

    def test_invalid_file(self, ingestor, mock_gateway, db):
        mock_gateway.objects[("events", "broken.json")] = b"{not json"

        status, body = ingestor.process_request("events", "broken.json")

        assert status == 400
        assert body["code"] == "INVALID_FILE"

    def test_unsupported_file(self, ingestor, db):
        status, body = ingestor.process_request("sales", "report.parquet")

        assert status == 400
        assert body["code"] == "UNSUPPORTED_FILE"

    def test_load_failure_is_server_error(self, ingestor, mock_gateway, orders_csv, db):
        mock_gateway.objects[("sales", "orders.csv")] = orders_csv
        db.load.side_effect = RuntimeError("Cannot parse input")

        status, body = ingestor.process_request("sales", "orders.csv")

        assert status == 500
        assert body["code"] == "INGESTION_FAILED"

    def test_unexpected_error_is_server_error(self, ingestor, db):
        status, body = ingestor.process_request("sales", "missing.csv")

        assert status == 500
        assert body["code"] == "INGESTION_ERROR"
