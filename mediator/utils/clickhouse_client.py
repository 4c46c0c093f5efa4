"""ClickHouse client utilities for the mediator.

Queries go through a SQLAlchemy engine backed by the clickhouse-connect
HTTP dialect.
"""

import logging
from contextlib import contextmanager
from typing import Any, Optional

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from mediator.config.mediator_config import ClickHouseConfig

log = logging.getLogger(__name__)

_engine: Optional[Engine] = None

# ClickHouse server error code for a missing table
UNKNOWN_TABLE_CODE = 60


def get_clickhouse_engine(connection_string: Optional[str] = None) -> Engine:
    """Create or return a cached SQLAlchemy engine.

    Args:
        connection_string: Optional explicit connection string. If not
            provided, it is built from the CLICKHOUSE_* environment
            variables and the resulting engine is cached.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine
    if _engine is not None and connection_string is None:
        return _engine

    cache = connection_string is None
    if connection_string is None:
        connection_string = ClickHouseConfig().connection_string

    engine = create_engine(
        connection_string,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )

    if cache:
        _engine = engine

    log.info("ClickHouse engine created")
    return engine


@contextmanager
def _get_connection(engine: Optional[Engine] = None):
    """Context manager for database connections with automatic cleanup."""
    eng = engine or get_clickhouse_engine()
    conn = eng.connect()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def execute_query(sql: str, params: Optional[dict] = None, engine: Optional[Engine] = None) -> Any:
    """Execute a SQL statement and return the result.

    Args:
        sql: SQL statement string.
        params: Optional bound parameters.
        engine: Optional SQLAlchemy engine (uses default if not provided).

    Returns:
        Query result proxy.
    """
    with _get_connection(engine) as conn:
        result = conn.execute(text(sql), params or {})
        log.info("Executed query: %s", sql[:100])
        return result


def execute_statement(sql: str, engine: Optional[Engine] = None, description: Optional[str] = None) -> Any:
    """Execute a fully rendered statement without bind-parameter parsing.

    Used for generated DDL and load statements whose identifiers and
    literals are already quoted, and may legitimately contain ``:`` or
    ``%`` characters. Pass *description* to log instead of the SQL text
    when the statement embeds credentials.
    """
    with _get_connection(engine) as conn:
        result = conn.exec_driver_sql(sql)
        log.info("Executed statement: %s", description or sql[:100])
        return result


def fetch_dataframe(sql: str, params: Optional[dict] = None, engine: Optional[Engine] = None) -> pd.DataFrame:
    """Execute a SQL query and return results as a pandas DataFrame.

    Args:
        sql: SQL query string.
        params: Optional bound parameters.
        engine: Optional SQLAlchemy engine.

    Returns:
        pandas DataFrame with query results.
    """
    eng = engine or get_clickhouse_engine()
    df = pd.read_sql(text(sql), eng, params=params or {})
    log.info("Fetched DataFrame with %d rows from query: %s", len(df), sql[:100])
    return df


def is_unknown_table_error(exc: BaseException) -> bool:
    """Return whether *exc* is ClickHouse reporting a missing table."""
    message = str(getattr(exc, "orig", None) or exc)
    return "UNKNOWN_TABLE" in message or f"Code: {UNKNOWN_TABLE_CODE}." in message


def quote_identifier(name: str) -> str:
    """Quote a column or table identifier with backticks."""
    return "`" + name.replace("\\", "\\\\").replace("`", "\\`") + "`"


def quote_literal(value: str) -> str:
    """Render a string as a single-quoted ClickHouse literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


# Input formats used when reading objects through the s3() table function
_INPUT_FORMATS = {
    "csv": "CSVWithNames",
    "json": "JSONEachRow",
}


def input_format(file_format: str) -> str:
    """Map a file format (``csv``/``json``) to a ClickHouse input format."""
    try:
        return _INPUT_FORMATS[file_format]
    except KeyError:
        raise ValueError(f"Unsupported file format '{file_format}'") from None
