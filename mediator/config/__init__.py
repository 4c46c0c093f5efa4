"""Mediator configuration loaded from environment variables."""

import json
import os

from .mediator_config import (
    ClickHouseConfig,
    IngestionConfig,
    MediatorConfig,
    MinIOConfig,
    OpenHIMConfig,
    get_config,
)

MEDIATOR_DOCUMENT_PATH = os.path.join(os.path.dirname(__file__), "mediator.json")


def load_mediator_document(path: str = MEDIATOR_DOCUMENT_PATH) -> dict:
    """Load the OpenHIM mediator registration document."""
    with open(path, "r") as f:
        return json.load(f)


__all__ = [
    "ClickHouseConfig",
    "IngestionConfig",
    "MediatorConfig",
    "MinIOConfig",
    "OpenHIMConfig",
    "get_config",
    "load_mediator_document",
    "MEDIATOR_DOCUMENT_PATH",
]
