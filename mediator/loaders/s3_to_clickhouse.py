"""Loader that has ClickHouse pull an object straight from MinIO.

Rows are read through ClickHouse's ``s3()`` table function, so the data
never passes through the mediator.

Usage:
    from mediator.loaders.s3_to_clickhouse import load_object_into_table

    ok = load_object_into_table(
        table_name="sales",
        url="http://minio:9000/sales/orders.csv",
        credentials=S3Credentials("minio", "minio123"),
        file_format="csv",
        columns=["id", "name", "age"],
    )
"""

import logging
from typing import Optional, Sequence, Tuple, Union

from mediator.utils.clickhouse_client import (
    execute_statement,
    input_format,
    quote_identifier,
    quote_literal,
)
from mediator.utils.storage import S3Credentials

log = logging.getLogger(__name__)

# Reads each JSON document as one row with a single String column named json
RAW_JSON_FORMAT = "JSONAsString"
RAW_JSON_COLUMN = "json"

# (column name, source path, ClickHouse type)
Extract = Tuple[str, Sequence[Union[str, int]], str]


def build_s3_function(
    url: str,
    credentials: S3Credentials,
    file_format: str,
    format_name: Optional[str] = None,
) -> str:
    """Render an ``s3(url, key, secret, format)`` call.

    *format_name* overrides the input format derived from *file_format*.
    """
    args = [
        quote_literal(url),
        quote_literal(credentials.access_key),
        quote_literal(credentials.secret_key),
        quote_literal(format_name or input_format(file_format)),
    ]
    return f"s3({', '.join(args)})"


def build_json_extract(name: str, path: Sequence[Union[str, int]], col_type: str) -> str:
    """Render one ``JSONExtract(json, ...) AS name`` projection.

    String path parts are object keys; integers are 1-based array indices.
    """
    args = [RAW_JSON_COLUMN]
    for part in path:
        args.append(str(part) if isinstance(part, int) else quote_literal(part))
    args.append(quote_literal(col_type))
    return f"JSONExtract({', '.join(args)}) AS {quote_identifier(name)}"


def build_load_statement(
    table_name: str,
    url: str,
    credentials: S3Credentials,
    file_format: str,
    columns: Optional[Sequence[str]] = None,
    extracts: Optional[Sequence[Extract]] = None,
) -> str:
    """Build the INSERT ... SELECT statement that ingests one object.

    Args:
        table_name: Target table.
        url: HTTP URL of the object.
        credentials: Object store credentials for ClickHouse.
        file_format: ``csv`` or ``json``.
        columns: Target columns, in file order. Required when the table
            has generated columns such as a surrogate key.
        extracts: ``(name, source_path, type)`` per column. When given, the
            object is read as raw JSON documents and each column is
            extracted from its source path, so nested fields land in
            their flattened columns.

    Returns:
        The rendered SQL statement.
    """
    if extracts:
        columns = columns or [name for name, _, _ in extracts]
        projection = ", ".join(build_json_extract(*e) for e in extracts)
        source = build_s3_function(url, credentials, file_format, RAW_JSON_FORMAT)
    else:
        projection = "*"
        source = build_s3_function(url, credentials, file_format)

    target = quote_identifier(table_name)
    if columns:
        target += " (" + ", ".join(quote_identifier(c) for c in columns) + ")"
    return f"INSERT INTO {target} SELECT {projection} FROM {source}"


def load_object_into_table(
    table_name: str,
    url: str,
    credentials: S3Credentials,
    file_format: str,
    columns: Optional[Sequence[str]] = None,
    extracts: Optional[Sequence[Extract]] = None,
    engine=None,
) -> bool:
    """Load an object-store file into a ClickHouse table.

    Failures are logged and reported as ``False``; the load is never
    retried, since tables are append-only and a retry could duplicate rows.

    Returns:
        True if the load statement succeeded.
    """
    try:
        sql = build_load_statement(table_name, url, credentials, file_format, columns, extracts)
        execute_statement(sql, engine=engine, description=f"load {url} into {table_name}")
    except Exception as exc:
        log.error("Failed to load %s into %s: %s", url, table_name, exc)
        return False

    log.info("Loaded %s into %s (format=%s)", url, table_name, file_format)
    return True
