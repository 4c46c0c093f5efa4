"""Shared utility functions for the mediator."""

from mediator.utils.clickhouse_client import execute_query, execute_statement, fetch_dataframe, get_clickhouse_engine
from mediator.utils.logging_config import event_logging_context, get_logger, setup_logging
from mediator.utils.minio_client import BucketDoesNotExist, ObjectStoreGateway, get_minio_client

__all__ = [
    "execute_query",
    "execute_statement",
    "fetch_dataframe",
    "get_clickhouse_engine",
    "event_logging_context",
    "get_logger",
    "setup_logging",
    "BucketDoesNotExist",
    "ObjectStoreGateway",
    "get_minio_client",
]
