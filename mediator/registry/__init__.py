"""Bucket registry kept in OpenHIM, and the mediator's OpenHIM presence."""

from .heartbeat import HeartbeatMonitor
from .openhim_client import (
    OpenHIMClient,
    OpenHIMError,
    RegistryAuthError,
    RegistryNotFound,
    RegistryUnavailable,
)
from .reconciler import BucketEntry, BucketRegistryReconciler, RegistryDiff, partition_registry, validate_bucket_name

__all__ = [
    "HeartbeatMonitor",
    "OpenHIMClient",
    "OpenHIMError",
    "RegistryAuthError",
    "RegistryNotFound",
    "RegistryUnavailable",
    "BucketEntry",
    "BucketRegistryReconciler",
    "RegistryDiff",
    "partition_registry",
    "validate_bucket_name",
]
