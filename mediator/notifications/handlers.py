"""Event handlers run by the dispatcher workers.

``direct`` mode ingests the object in-process. ``callback`` mode asks the
mediator's own HTTP route, through OpenHIM, to process the object so the
run shows up as an OpenHIM transaction.
"""

from typing import Optional

import requests

from mediator.config.mediator_config import DISPATCH_CALLBACK, MediatorConfig
from mediator.ingestion.file_ingestor import IngestionResult, ObjectIngestor
from mediator.utils.logging_config import get_logger

from .dispatcher import NotificationEvent

PROCESS_PATH = "/process-climate-data"


class IngestionHandler:
    """Runs an ingestion for every created object."""

    def __init__(self, ingestor: ObjectIngestor):
        self.ingestor = ingestor

    def __call__(self, event: NotificationEvent) -> IngestionResult:
        get_logger(__name__, bucket=event.bucket, object_key=event.object_key).info(
            "File created: %s/%s", event.bucket, event.object_key
        )
        return self.ingestor.ingest(event.bucket, event.object_key)


class CallbackHandler:
    """Forwards created-object events to the processing endpoint.

    Args:
        transaction_url: OpenHIM transaction base URL.
        client_token: Token sent as ``Authorization: Custom <token>``.
        timeout: Request timeout in seconds.
        session: Optional requests session.
    """

    def __init__(
        self,
        transaction_url: str,
        client_token: str = "",
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.url = transaction_url.rstrip("/") + PROCESS_PATH
        self.timeout = timeout
        self.session = session or requests.Session()
        if client_token:
            self.session.headers.update({"Authorization": f"Custom {client_token}"})

    def __call__(self, event: NotificationEvent) -> bool:
        event_log = get_logger(__name__, bucket=event.bucket, object_key=event.object_key)
        params = {
            "bucket": event.bucket,
            "file": event.object_key,
            "tableName": event.bucket,
        }
        try:
            response = self.session.get(self.url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            event_log.error("Processing callback failed for %s/%s: %s", event.bucket, event.object_key, exc)
            return False

        event_log.info("Processing callback accepted for %s/%s", event.bucket, event.object_key)
        return True


def build_event_handler(config: MediatorConfig, ingestor: ObjectIngestor):
    """Select the event handler for the configured dispatch mode."""
    if config.ingestion.dispatch_mode == DISPATCH_CALLBACK:
        return CallbackHandler(config.openhim.transaction_url, config.openhim.client_token)
    return IngestionHandler(ingestor)
