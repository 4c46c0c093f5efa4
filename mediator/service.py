"""Composition and lifecycle of the mediator process."""

import logging
from typing import Optional

from mediator.config import load_mediator_document
from mediator.config.mediator_config import MediatorConfig
from mediator.ingestion.file_ingestor import ObjectIngestor
from mediator.ingestion.table_provisioner import TableProvisioner
from mediator.notifications.dispatcher import NotificationDispatcher
from mediator.notifications.handlers import build_event_handler
from mediator.registry.heartbeat import HeartbeatMonitor
from mediator.registry.openhim_client import OpenHIMClient, OpenHIMError
from mediator.registry.reconciler import BucketRegistryReconciler
from mediator.utils.clickhouse_client import get_clickhouse_engine
from mediator.utils.minio_client import ObjectStoreGateway
from mediator.utils.storage import S3Credentials

log = logging.getLogger(__name__)


class Mediator:
    """The running mediator: listeners, workers, registry sync and heartbeat."""

    def __init__(
        self,
        config: MediatorConfig,
        gateway: ObjectStoreGateway,
        ingestor: ObjectIngestor,
        dispatcher: NotificationDispatcher,
        reconciler: BucketRegistryReconciler,
        client: Optional[OpenHIMClient] = None,
        heartbeat: Optional[HeartbeatMonitor] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.ingestor = ingestor
        self.dispatcher = dispatcher
        self.reconciler = reconciler
        self.client = client
        self.heartbeat = heartbeat

    def start(self) -> None:
        """Start the mediator.

        Raises:
            Exception: If the object store cannot be reached.
        """
        buckets = self.gateway.list_buckets()
        log.info("Connected to object store (%d buckets)", len(buckets))

        self.dispatcher.start()

        if self.client is not None and self.config.openhim.register_mediator:
            try:
                self.client.register_mediator(load_mediator_document())
            except OpenHIMError as exc:
                log.error("Mediator registration failed: %s", exc)

        self.reconciler.reconcile()

        if self.heartbeat is not None:
            self.heartbeat.start()
        log.info("Mediator started (mode=%s)", self.config.mode or "openhim")

    def stop(self) -> None:
        if self.heartbeat is not None:
            self.heartbeat.stop()
        self.dispatcher.stop()
        log.info("Mediator stopped")


def build_mediator(config: MediatorConfig) -> Mediator:
    """Wire every component from *config*."""
    gateway = ObjectStoreGateway.from_config(config.minio)
    engine = get_clickhouse_engine(config.clickhouse.connection_string)

    ingestor = ObjectIngestor(
        gateway=gateway,
        provisioner=TableProvisioner(engine),
        credentials=S3Credentials(config.minio.access_key, config.minio.secret_key),
        s3_url=config.minio.s3_url,
        tmp_dir=config.ingestion.tmp_dir,
        schema_source=config.ingestion.schema_source,
        engine=engine,
    )

    dispatcher = NotificationDispatcher(
        gateway,
        build_event_handler(config, ingestor),
        prefix=config.minio.prefix,
        suffix=config.minio.suffix,
        workers=config.ingestion.workers,
        queue_size=config.ingestion.queue_size,
    )
    gateway.set_listener_registrar(dispatcher.register_listeners)

    client = None
    heartbeat = None
    if not config.is_local:
        client = OpenHIMClient.from_config(config.openhim)

    reconciler = BucketRegistryReconciler(
        gateway,
        dispatcher,
        client=client,
        local_buckets=config.minio.bucket_list,
        local=config.is_local,
    )

    if client is not None:
        heartbeat = HeartbeatMonitor(client, reconciler.on_config_pushed, config.openhim.heartbeat_interval)

    return Mediator(config, gateway, ingestor, dispatcher, reconciler, client, heartbeat)
