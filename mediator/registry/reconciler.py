"""Bucket registry reconciliation.

Keeps the buckets and their listeners consistent with the registry held
in OpenHIM (or, in local mode, with ``MINIO_BUCKETS``). Each cycle fetches
the registry, validates bucket names, ensures every valid bucket exists
and is watched, drops listeners for invalid names, and removes invalid
names from the remote registry.
"""

import logging
import mimetypes
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from urllib.parse import urlparse

from .openhim_client import REGISTRY_KEY, OpenHIMClient, OpenHIMError, RegistryNotFound

log = logging.getLogger(__name__)

# Charset and length only. Reserved prefixes such as "xn--" are accepted.
BUCKET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")


@dataclass(frozen=True)
class BucketEntry:
    """One bucket in the registry, with an optional seed file."""

    name: str
    region: Optional[str] = None
    url: Optional[str] = None
    file_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BucketEntry":
        return cls(
            name=str(data.get("bucket") or ""),
            region=data.get("region") or None,
            url=data.get("url") or None,
            file_name=data.get("fileName") or None,
        )

    def to_dict(self) -> Dict[str, str]:
        data = {"bucket": self.name}
        if self.region:
            data["region"] = self.region
        if self.url:
            data["url"] = self.url
        if self.file_name:
            data["fileName"] = self.file_name
        return data


@dataclass
class RegistryDiff:
    valid: List[BucketEntry] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)

    @property
    def valid_names(self) -> List[str]:
        return [e.name for e in self.valid]


def validate_bucket_name(name: str) -> bool:
    return bool(name) and BUCKET_NAME_PATTERN.match(name) is not None


def _coerce(entry: Union[BucketEntry, Dict[str, Any], str]) -> BucketEntry:
    if isinstance(entry, BucketEntry):
        return entry
    if isinstance(entry, str):
        return BucketEntry(name=entry)
    return BucketEntry.from_dict(entry)


def partition_registry(entries: Iterable[Union[BucketEntry, Dict[str, Any], str]]) -> RegistryDiff:
    """Split registry entries into valid entries and invalid names.

    Duplicate names collapse to their first entry, and each invalid name
    is reported once.
    """
    diff = RegistryDiff()
    seen = set()
    for raw in entries:
        entry = _coerce(raw)
        if entry.name in seen:
            continue
        seen.add(entry.name)
        if validate_bucket_name(entry.name):
            diff.valid.append(entry)
        else:
            diff.invalid.append(entry.name)
    return diff


class BucketRegistryReconciler:
    """Applies the bucket registry to the object store and the listeners.

    Cycles are serialized: a trigger arriving during a cycle waits for it.

    Args:
        gateway: ObjectStoreGateway; its listener registrar must be set.
        dispatcher: NotificationDispatcher whose listeners are managed.
        client: OpenHIMClient; unused in local mode.
        local_buckets: Registry used in local mode.
        local: Read the registry from *local_buckets* instead of OpenHIM.
    """

    def __init__(
        self,
        gateway,
        dispatcher,
        client: Optional[OpenHIMClient] = None,
        local_buckets: Sequence[str] = (),
        local: bool = False,
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.client = client
        self.local_buckets = list(local_buckets)
        self.local = local or client is None
        self._cycle_lock = threading.Lock()

    def fetch_registry(self) -> Optional[List[BucketEntry]]:
        """Fetch the current registry; None when it cannot be read."""
        if self.local:
            return [BucketEntry(name=name) for name in self.local_buckets]
        try:
            return [BucketEntry.from_dict(e) for e in self.client.get_registry()]
        except RegistryNotFound:
            log.warning("Bucket registry not provisioned in OpenHIM yet")
        except OpenHIMError as exc:
            log.error("Failed to fetch bucket registry: %s", exc)
        return None

    def reconcile(self, entries: Optional[Iterable] = None) -> Optional[RegistryDiff]:
        """Run one reconciliation cycle.

        Args:
            entries: Registry to apply; fetched when omitted.

        Returns:
            The applied RegistryDiff, or None when the registry could not
            be fetched (listeners are left untouched).
        """
        with self._cycle_lock:
            if entries is None:
                entries = self.fetch_registry()
                if entries is None:
                    return None

            diff = partition_registry(entries)
            for name in diff.invalid:
                log.warning("Invalid bucket name in registry: %r", name)

            for entry in diff.valid:
                try:
                    self.gateway.ensure_bucket(entry.name, entry.region, create_if_missing=True)
                except Exception as exc:
                    log.error("Failed to ensure bucket %s: %s", entry.name, exc)

            for name in diff.invalid:
                self.dispatcher.unregister_listener(name)

            # Buckets watched locally but no longer in the registry
            removed = set(self.dispatcher.registry.names()) - set(diff.valid_names) - set(diff.invalid)
            for name in sorted(removed):
                log.info("Bucket %s was removed from the registry", name)
                self.dispatcher.unregister_listener(name)

            if diff.invalid and not self.local:
                self._remove_from_registry(diff.invalid)

            log.info(
                "Reconciled bucket registry: %d valid, %d invalid",
                len(diff.valid), len(diff.invalid),
            )
            return diff

    def _remove_from_registry(self, names: Sequence[str]) -> bool:
        # Fresh read then full-list write; a concurrent edit in between is lost.
        drop = set(names)
        try:
            current = self.client.get_registry()
            kept = [e for e in current if str(e.get("bucket") or "") not in drop]
            if len(kept) != len(current):
                self.client.put_registry(kept)
        except OpenHIMError as exc:
            log.error("Failed to remove %s from bucket registry: %s", ", ".join(names), exc)
            return False
        return True

    def on_config_pushed(self, config: Dict[str, Any]) -> Optional[RegistryDiff]:
        """Apply a config pushed by OpenHIM in a heartbeat response."""
        entries = config.get(REGISTRY_KEY)
        if entries is None:
            return None
        diff = self.reconcile(entries)
        if diff is not None:
            self.sync_seed_files(diff.valid)
        return diff

    def sync_seed_files(self, entries: Iterable[BucketEntry]) -> int:
        """Upload the seed file of every entry that declares one.

        Returns:
            The number of files uploaded.
        """
        uploaded = 0
        for entry in entries:
            if not entry.url and not entry.file_name:
                continue
            if not entry.url or not entry.file_name:
                log.warning("Seed file for bucket %s needs both url and fileName", entry.name)
                continue
            if urlparse(entry.url).scheme not in ("http", "https"):
                log.warning("Invalid seed file URL for bucket %s: %s", entry.name, entry.url)
                continue
            if self.client is None:
                continue

            try:
                data = self.client.download(entry.url)
                content_type = mimetypes.guess_type(entry.file_name)[0] or "application/octet-stream"
                self.gateway.put_object(entry.name, entry.file_name, data, content_type)
            except Exception as exc:
                log.error("Failed to seed %s/%s from %s: %s", entry.name, entry.file_name, entry.url, exc)
                continue
            uploaded += 1
        return uploaded

    def register_bucket(self, name: str, region: Optional[str] = None) -> bool:
        """Add a bucket to the remote registry.

        Entry point for adding buckets from outside the registry UI, such
        as an upload route. The bucket itself is created, and watched, by
        the reconciliation that follows OpenHIM pushing the new config.

        Returns:
            True when the bucket was added, or always in local mode. False
            for an invalid name, an unreachable registry, or a bucket that
            is already registered.
        """
        if self.local:
            return True
        if not validate_bucket_name(name):
            log.warning("Refusing to register invalid bucket name %r", name)
            return False
        try:
            current = self.client.get_registry()
            if any(e.get("bucket") == name for e in current):
                log.info("Bucket %s is already registered", name)
                return False
            current.append(BucketEntry(name=name, region=region).to_dict())
            self.client.put_registry(current)
        except OpenHIMError as exc:
            log.error("Failed to register bucket %s: %s", name, exc)
            return False
        log.info("Registered bucket %s", name)
        return True

    def remove_buckets(self, names: Sequence[str]) -> bool:
        """Stop watching *names* and remove them from the remote registry."""
        for name in names:
            self.dispatcher.unregister_listener(name)
        if self.local:
            return True
        return self._remove_from_registry(names)
