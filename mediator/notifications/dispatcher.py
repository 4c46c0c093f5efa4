"""Bucket notification dispatch.

One listener thread per watched bucket reads MinIO's notification stream
and puts ``NotificationEvent`` items on a bounded queue. A fixed pool of
worker threads takes events off the queue and hands each one to the
configured event handler. A full queue blocks the listeners, which is the
only backpressure applied to the object store's notifications.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import unquote_plus

log = logging.getLogger(__name__)

EVENT_CREATED = "created"

_CREATED_PREFIX = "s3:ObjectCreated:"

# Queue sentinel telling a worker to exit
_STOP = object()


@dataclass(frozen=True)
class NotificationEvent:
    bucket: str
    object_key: str
    event_type: str = EVENT_CREATED


def parse_notification(payload: dict) -> List[NotificationEvent]:
    """Extract object-created events from a raw S3 notification payload.

    Records for other event types, and malformed records, are dropped.
    Object keys arrive URL-encoded and are decoded here.
    """
    events = []
    for record in payload.get("Records") or []:
        if not str(record.get("eventName", "")).startswith(_CREATED_PREFIX):
            continue
        try:
            bucket = record["s3"]["bucket"]["name"]
            key = unquote_plus(record["s3"]["object"]["key"])
        except (KeyError, TypeError):
            log.warning("Ignoring malformed notification record: %s", record)
            continue
        events.append(NotificationEvent(bucket=bucket, object_key=key))
    return events


class ListenerRegistry:
    """Thread-safe set of bucket names with an active subscription."""

    def __init__(self):
        self._lock = threading.Lock()
        self._names = set()

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._names

    def add(self, name: str) -> bool:
        """Add *name*; returns False if it was already present."""
        with self._lock:
            if name in self._names:
                return False
            self._names.add(name)
            return True

    def remove(self, name: str) -> bool:
        with self._lock:
            if name not in self._names:
                return False
            self._names.discard(name)
            return True

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._names)


class NotificationDispatcher:
    """Subscribes to bucket notifications and drives one handler call per event.

    Args:
        gateway: ObjectStoreGateway providing ``subscribe``.
        handler: Callable invoked with each NotificationEvent.
        registry: Listener registry; a fresh one is created if omitted.
        prefix: Object key prefix filter for subscriptions.
        suffix: Object key suffix filter for subscriptions.
        workers: Number of worker threads.
        queue_size: Maximum number of pending events.
    """

    def __init__(
        self,
        gateway,
        handler: Callable[[NotificationEvent], object],
        registry: Optional[ListenerRegistry] = None,
        prefix: str = "",
        suffix: str = "",
        workers: int = 4,
        queue_size: int = 100,
    ):
        self.gateway = gateway
        self.handler = handler
        self.registry = registry if registry is not None else ListenerRegistry()
        self.prefix = prefix
        self.suffix = suffix
        self.worker_count = workers
        self.events: "queue.Queue" = queue.Queue(maxsize=queue_size)

        self._streams: Dict[str, object] = {}
        self._streams_lock = threading.Lock()
        self._workers: List[threading.Thread] = []
        self._stopping = threading.Event()

    # Listener management

    def register_listeners(self, bucket_names: Iterable[str]) -> List[str]:
        """Start watching every bucket in *bucket_names* not already watched.

        Re-registering an active bucket is a no-op.

        Returns:
            The names that were newly registered.
        """
        registered = []
        for name in bucket_names:
            if not self.registry.add(name):
                log.debug("Listener already registered for bucket %s", name)
                continue
            try:
                stream = self.gateway.subscribe(name, prefix=self.prefix, suffix=self.suffix)
            except Exception as exc:
                self.registry.remove(name)
                log.error("Failed to subscribe to bucket %s: %s", name, exc)
                continue

            with self._streams_lock:
                self._streams[name] = stream
            thread = threading.Thread(
                target=self._listen,
                args=(name, stream),
                name=f"listener-{name}",
                daemon=True,
            )
            thread.start()
            registered.append(name)
            log.info("Registered listener for bucket %s", name)
        return registered

    def unregister_listener(self, bucket_name: str) -> bool:
        """Stop watching *bucket_name*; returns False if it was not watched."""
        if not self.registry.remove(bucket_name):
            return False
        with self._streams_lock:
            stream = self._streams.pop(bucket_name, None)
        self._close_stream(bucket_name, stream)
        log.info("Removed listener for bucket %s", bucket_name)
        return True

    def _close_stream(self, bucket_name: str, stream) -> None:
        close = getattr(stream, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception as exc:
            log.warning("Error closing notification stream for %s: %s", bucket_name, exc)

    def _listen(self, bucket_name: str, stream) -> None:
        try:
            for payload in stream:
                for event in parse_notification(payload or {}):
                    self.events.put(event)
        except Exception as exc:
            if self.registry.has(bucket_name) and not self._stopping.is_set():
                log.error("Notification stream for bucket %s failed: %s", bucket_name, exc)
        finally:
            # A stream that ends on its own leaves the bucket unwatched so the
            # next reconciliation can register it again.
            with self._streams_lock:
                if self._streams.get(bucket_name) is stream:
                    del self._streams[bucket_name]
                    self.registry.remove(bucket_name)
                    log.warning("Listener for bucket %s stopped", bucket_name)

    # Workers

    def start(self) -> None:
        """Start the worker threads."""
        self._stopping.clear()
        for i in range(self.worker_count):
            thread = threading.Thread(target=self._work, name=f"ingest-worker-{i}", daemon=True)
            thread.start()
            self._workers.append(thread)
        log.info("Started %d ingestion workers", self.worker_count)

    def stop(self, timeout: float = 5.0) -> None:
        """Close every notification stream and stop the workers."""
        self._stopping.set()
        for name in self.registry.names():
            self.unregister_listener(name)
        for _ in self._workers:
            self.events.put(_STOP)
        for thread in self._workers:
            thread.join(timeout)
        self._workers = []
        log.info("Notification dispatcher stopped")

    def _work(self) -> None:
        while True:
            event = self.events.get()
            try:
                if event is _STOP:
                    return
                self.dispatch(event)
            finally:
                self.events.task_done()

    def dispatch(self, event: NotificationEvent) -> bool:
        """Run the handler for one event, containing any failure.

        Returns:
            True if the handler completed without raising.
        """
        try:
            self.handler(event)
        except Exception:
            log.exception("Failed to handle %s event for %s/%s",
                          event.event_type, event.bucket, event.object_key)
            return False
        return True
