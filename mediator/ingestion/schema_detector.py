"""Schema detection for files arriving in watched buckets.

Derives a column schema from a sample file: the header row of a CSV
file, or the flattened keys of a JSON document. Can also ask ClickHouse
to describe an object directly through the ``s3()`` table function.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from mediator.utils.clickhouse_client import fetch_dataframe, input_format
from mediator.utils.storage import S3Credentials

log = logging.getLogger(__name__)

FORMAT_CSV = "csv"
FORMAT_JSON = "json"

SURROGATE_KEY = "table_id"

# Legacy envelope key whose children are flattened without a prefix
_UNWRAPPED_KEY = "main"

_EXTENSION_FORMATS = {
    ".csv": FORMAT_CSV,
    ".json": FORMAT_JSON,
}


class SchemaDetectionError(Exception):
    """Raised when a schema cannot be derived from a file."""


class ColumnType(Enum):
    """Column types the inferencer can produce."""

    STRING = "String"
    INT64 = "Int64"
    FLOAT64 = "Float64"
    BOOLEAN = "Boolean"


@dataclass(frozen=True)
class Column:
    """One output column.

    ``path`` locates the sample value in the source document: object keys,
    and 1-based indices for array elements.
    """

    name: str
    type: ColumnType = ColumnType.STRING
    path: Tuple[Union[str, int], ...] = ()


@dataclass
class InferredSchema:
    """Columns to create for a file, in file order.

    ``surrogate_key`` is set when no natural key is known; the table then
    carries a generated UUID column of that name and is ordered by it.
    """

    file_format: str
    columns: List[Column] = field(default_factory=list)
    order_by: str = ""
    surrogate_key: Optional[str] = None

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def extracts(self) -> List[Tuple[str, Tuple[Union[str, int], ...], str]]:
        """``(name, source_path, type)`` for projecting each column out of a raw document."""
        return [(c.name, c.path or (c.name,), c.type.value) for c in self.columns]


def file_format_for(object_key: str) -> Optional[str]:
    """Classify an object by extension; ``None`` when unsupported."""
    ext = os.path.splitext(object_key)[1].lower()
    return _EXTENSION_FORMATS.get(ext)


def sanitize_table_name(name: str) -> str:
    """Replace every character that is not alphanumeric or ``_`` with ``_``."""
    return re.sub(r"[^A-Za-z0-9_]", "_", name)


def _decode(data: bytes) -> str:
    return data.decode("utf-8-sig")


def get_csv_headers(data: bytes) -> List[str]:
    """Return the header row of a CSV file, split on commas.

    The line separator is ``\\r\\n`` when the file contains one anywhere,
    otherwise ``\\n``.

    Raises:
        SchemaDetectionError: If the file is not text or has no header.
    """
    try:
        text = _decode(data)
    except UnicodeDecodeError as exc:
        raise SchemaDetectionError(f"CSV file is not valid UTF-8: {exc}") from exc

    newline = "\r\n" if "\r\n" in text else "\n"
    first_line = text.split(newline)[0]
    if not first_line.strip():
        raise SchemaDetectionError("CSV file has no header row")
    return first_line.split(",")


def infer_csv_schema(data: bytes) -> InferredSchema:
    """Build a schema from a CSV header.

    Every column is an opaque string. No semantic key is known, so the
    table is keyed by a generated surrogate, renamed with leading
    underscores if a header already uses its name.
    """
    headers = get_csv_headers(data)
    surrogate = SURROGATE_KEY
    while surrogate in headers:
        surrogate = "_" + surrogate
    schema = InferredSchema(
        file_format=FORMAT_CSV,
        columns=[Column(h, ColumnType.STRING) for h in headers],
        order_by=surrogate,
        surrogate_key=surrogate,
    )
    log.info("Detected CSV schema: %d columns", len(schema.columns))
    return schema


def validate_json(data: bytes) -> bool:
    try:
        _load_json(data)
    except SchemaDetectionError:
        return False
    return True


def _load_json(data: bytes, source: str = "file") -> Any:
    """Parse a JSON document, falling back to newline-delimited JSON."""
    try:
        text = _decode(data)
    except UnicodeDecodeError as exc:
        raise SchemaDetectionError(f"'{source}' is not a valid JSON file") from exc

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    records = []
    try:
        for line in text.splitlines():
            line = line.strip()
            if line:
                records.append(json.loads(line))
    except json.JSONDecodeError as exc:
        raise SchemaDetectionError(f"'{source}' is not a valid JSON file") from exc
    if not records:
        raise SchemaDetectionError(f"'{source}' is not a valid JSON file")
    return records


def _flatten(value: Any, name: Tuple[str, ...], source: tuple, out: List[tuple]) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            child_source = source + (str(key),)
            if isinstance(child, (dict, list)):
                child_name = name if key == _UNWRAPPED_KEY else name + (str(key),)
                _flatten(child, child_name, child_source, out)
            else:
                out.append(("_".join(name + (str(key),)), child_source, child))
    elif isinstance(value, list):
        # Array elements share the array's column name: no index segment
        for index, item in enumerate(value, 1):
            if isinstance(item, (dict, list)):
                _flatten(item, name, source + (index,), out)
            elif name:
                out.append(("_".join(name), source + (index,), item))
    elif name:
        out.append(("_".join(name), source, value))


def _flatten_document(document: Any) -> List[Tuple[str, tuple, Any]]:
    """Flatten to ``(name, source_path, sample)``, deduplicated by name."""
    leaves: List[Tuple[str, tuple, Any]] = []
    # Items of a top-level array are rows, so their paths start empty
    rows = document if isinstance(document, list) else [document]
    for row in rows:
        _flatten(row, (), (), leaves)

    samples = {}
    for name, source, value in leaves:
        if name not in samples or (samples[name][1] is None and value is not None):
            samples[name] = (source, value)
    return [(name, source, value) for name, (source, value) in samples.items()]


def flatten_json(document: Any) -> List[Tuple[str, Any]]:
    """Flatten a JSON document into ``(field_path, sample_value)`` pairs.

    Nested keys are joined with ``_``. Children of a ``main`` key are
    flattened without a prefix, and arrays never introduce an index.
    Names are deduplicated in first-seen order; the sample value is the
    first non-null one seen for that name.
    """
    return [(name, value) for name, _, value in _flatten_document(document)]


def flatten_field_names(document: Any) -> List[str]:
    return [name for name, _ in flatten_json(document)]


def column_type_for(value: Any) -> ColumnType:
    """Map a JSON leaf value to a column type."""
    # bool is a subclass of int
    if isinstance(value, bool):
        return ColumnType.BOOLEAN
    if isinstance(value, int):
        return ColumnType.INT64
    if isinstance(value, float):
        return ColumnType.INT64 if value.is_integer() else ColumnType.FLOAT64
    return ColumnType.STRING


def infer_json_schema(data: bytes, source: str = "file") -> InferredSchema:
    """Build a typed schema from a JSON (or newline-delimited JSON) file.

    The table is ordered by the first field observed.

    Raises:
        SchemaDetectionError: If the file is not valid JSON or has no fields.
    """
    document = _load_json(data, source)
    columns = [
        Column(name, column_type_for(value), path)
        for name, path, value in _flatten_document(document)
    ]
    if not columns:
        raise SchemaDetectionError(f"JSON file '{source}' contains no fields")

    schema = InferredSchema(
        file_format=FORMAT_JSON,
        columns=columns,
        order_by=columns[0].name,
    )
    log.info("Detected JSON schema for '%s': %d columns", source, len(columns))
    return schema


def infer_schema(data: bytes, file_format: str, source: str = "file") -> InferredSchema:
    """Infer a schema for *data* according to its declared format."""
    if file_format == FORMAT_CSV:
        return infer_csv_schema(data)
    if file_format == FORMAT_JSON:
        return infer_json_schema(data, source)
    raise SchemaDetectionError(f"Unsupported file format '{file_format}'")


def detect_remote_schema(
    url: str,
    credentials: S3Credentials,
    file_format: str,
    engine=None,
) -> List[Tuple[str, str]]:
    """Ask ClickHouse to describe an object-store file.

    Args:
        url: HTTP URL of the object.
        credentials: Object store credentials for ClickHouse.
        file_format: ``csv`` or ``json``.
        engine: Optional SQLAlchemy engine.

    Returns:
        List of ``(column_name, clickhouse_type)`` pairs in file order.

    Raises:
        SchemaDetectionError: If ClickHouse cannot describe the object.
    """
    sql = "DESC s3(:url, :access_key, :secret_key, :format)"
    try:
        df = fetch_dataframe(
            sql,
            params={
                "url": url,
                "access_key": credentials.access_key,
                "secret_key": credentials.secret_key,
                "format": input_format(file_format),
            },
            engine=engine,
        )
    except Exception as exc:
        raise SchemaDetectionError(f"Failed to describe '{url}': {exc}") from exc

    if df.empty:
        raise SchemaDetectionError(f"'{url}' has no columns")

    columns = [(row["name"], row["type"]) for _, row in df.iterrows()]
    log.info("Detected remote schema for '%s': %d columns", url, len(columns))
    return columns
