"""Idempotent provisioning of ClickHouse tables for ingested files.

A table is created once, from the first file that arrives for it, and is
never re-created or altered afterwards. Existence is probed on every call
rather than cached.
"""

import logging
import re
from enum import Enum
from typing import Callable, Sequence, Tuple

from .schema_detector import FORMAT_CSV, InferredSchema, detect_remote_schema
from mediator.utils.clickhouse_client import (
    execute_query,
    execute_statement,
    is_unknown_table_error,
    quote_identifier,
)
from mediator.utils.locks import NamedLocks
from mediator.utils.storage import S3Credentials

log = logging.getLogger(__name__)

# Business columns used as the sort key of remotely described tables
BUSINESS_ORDER_COLUMNS = ("organizational_unit", "period")

_NULLABLE = re.compile(r"^Nullable\((.*)\)$")


class TableProbe(Enum):
    """Outcome of a table existence probe."""

    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    PROBE_FAILED = "probe_failed"


class ProvisionResult(Enum):
    CREATED = "created"
    ALREADY_EXISTED = "already_existed"
    FAILED = "failed"


def generate_ddl(table_name: str, schema: InferredSchema) -> str:
    """Generate a guarded CREATE TABLE statement from an inferred schema.

    CSV columns are uniformly ``VARCHAR``; JSON columns use their
    inferred types. A surrogate key, when present, is prepended as a
    generated UUID.

    Example:
        CREATE TABLE IF NOT EXISTS `sales` (`table_id` UUID DEFAULT generateUUIDv4(),
        `id` VARCHAR, `name` VARCHAR) ENGINE = MergeTree ORDER BY (`table_id`)
    """
    definitions = []
    if schema.surrogate_key:
        definitions.append(f"{quote_identifier(schema.surrogate_key)} UUID DEFAULT generateUUIDv4()")
    for column in schema.columns:
        col_type = "VARCHAR" if schema.file_format == FORMAT_CSV else column.type.value
        definitions.append(f"{quote_identifier(column.name)} {col_type}")

    return (
        f"CREATE TABLE IF NOT EXISTS {quote_identifier(table_name)} "
        f"({', '.join(definitions)}) "
        f"ENGINE = MergeTree ORDER BY ({quote_identifier(schema.order_by)})"
    )


def _strip_nullable(col_type: str) -> str:
    match = _NULLABLE.match(col_type)
    return match.group(1) if match else col_type


def generate_remote_ddl(table_name: str, columns: Sequence[Tuple[str, str]]) -> str:
    """Generate a CREATE TABLE statement from a ClickHouse ``DESC`` of an object.

    The table is ordered by the business columns when the file has all
    of them (sort-key columns lose their ``Nullable`` wrapper), and has no
    sort key otherwise.
    """
    names = [name for name, _ in columns]
    keyed = all(c in names for c in BUSINESS_ORDER_COLUMNS)

    definitions = []
    for name, col_type in columns:
        if keyed and name in BUSINESS_ORDER_COLUMNS:
            col_type = _strip_nullable(col_type)
        definitions.append(f"{quote_identifier(name)} {col_type}")

    if keyed:
        order_by = "(" + ", ".join(quote_identifier(c) for c in BUSINESS_ORDER_COLUMNS) + ")"
    else:
        order_by = "tuple()"

    return (
        f"CREATE TABLE IF NOT EXISTS {quote_identifier(table_name)} "
        f"({', '.join(definitions)}) "
        f"ENGINE = MergeTree ORDER BY {order_by}"
    )


class TableProvisioner:
    """Ensures target tables exist before data is loaded into them.

    Creation attempts for the same table name are serialized within the
    process; the DDL itself carries ``IF NOT EXISTS`` for races with other
    processes.

    Args:
        engine: Optional SQLAlchemy engine (defaults to the cached one).
    """

    def __init__(self, engine=None):
        self.engine = engine
        self._table_locks = NamedLocks()

    def probe_table(self, table_name: str) -> TableProbe:
        """Check whether a table exists using ``DESC``.

        Only ClickHouse's UNKNOWN_TABLE error counts as absence; any other
        failure is reported as PROBE_FAILED.
        """
        try:
            execute_query(f"DESC {quote_identifier(table_name)}", engine=self.engine)
        except Exception as exc:
            if is_unknown_table_error(exc):
                log.debug("Table %s does not exist", table_name)
                return TableProbe.NOT_EXISTS
            log.warning("Could not probe table %s: %s", table_name, exc)
            return TableProbe.PROBE_FAILED
        return TableProbe.EXISTS

    def ensure_table(self, table_name: str, schema: InferredSchema) -> ProvisionResult:
        """Create *table_name* from an explicit schema unless it already exists."""
        return self._ensure(table_name, lambda: generate_ddl(table_name, schema))

    def ensure_table_from_object(
        self,
        table_name: str,
        url: str,
        credentials: S3Credentials,
        file_format: str,
    ) -> ProvisionResult:
        """Create *table_name* from ClickHouse's own description of an object."""

        def build_ddl() -> str:
            columns = detect_remote_schema(url, credentials, file_format, engine=self.engine)
            return generate_remote_ddl(table_name, columns)

        return self._ensure(table_name, build_ddl)

    def _ensure(self, table_name: str, build_ddl: Callable[[], str]) -> ProvisionResult:
        with self._table_locks.hold(table_name):
            probe = self.probe_table(table_name)
            if probe is TableProbe.EXISTS:
                log.info("Table %s already exists, leaving it unchanged", table_name)
                return ProvisionResult.ALREADY_EXISTED
            if probe is TableProbe.PROBE_FAILED:
                log.error("Not creating table %s: existence could not be determined", table_name)
                return ProvisionResult.FAILED

            try:
                ddl = build_ddl()
                execute_statement(ddl, engine=self.engine)
            except Exception as exc:
                log.error("Failed to create table %s: %s", table_name, exc)
                return ProvisionResult.FAILED

        log.info("Created table %s", table_name)
        return ProvisionResult.CREATED

