"""Tests for bucket registry reconciliation."""

import threading
from unittest.mock import MagicMock

import pytest

from mediator.notifications.dispatcher import NotificationDispatcher
from mediator.registry.openhim_client import RegistryNotFound, RegistryUnavailable
from mediator.registry.reconciler import (
    BucketEntry,
    BucketRegistryReconciler,
    partition_registry,
    validate_bucket_name,
)


class TestValidateBucketName:
    """Tests for validate_bucket_name."""

    @pytest.mark.parametrize("name", ["my-bucket.01", "abc", "sales", "xn--abc", "a" * 63])
    def test_accepted(self, name):
        assert validate_bucket_name(name) is True

    @pytest.mark.parametrize("name", ["AB", "ab", "", "-sales", "sales-", "Sales", "sa_les", "a" * 64])
    def test_rejected(self, name):
        assert validate_bucket_name(name) is False


class TestPartitionRegistry:
    """Tests for partition_registry."""

    def test_splits_valid_and_invalid(self):
        diff = partition_registry([{"bucket": "aaa"}, {"bucket": "B_b"}, {"bucket": "ccc"}])

        assert diff.valid_names == ["aaa", "ccc"]
        assert diff.invalid == ["B_b"]

    def test_invalid_reported_once(self):
        diff = partition_registry(["aaa", "B_b", "B_b", "aaa"])

        assert diff.valid_names == ["aaa"]
        assert diff.invalid == ["B_b"]

    def test_keeps_entry_fields(self):
        diff = partition_registry([{"bucket": "sales", "region": "af-south-1", "url": "https://x/y.csv", "fileName": "y.csv"}])

        assert diff.valid == [BucketEntry("sales", "af-south-1", "https://x/y.csv", "y.csv")]


class TestBucketEntry:
    def test_to_dict_omits_empty_fields(self):
        assert BucketEntry("sales").to_dict() == {"bucket": "sales"}

    def test_round_trip_field_names(self):
        data = {"bucket": "sales", "region": "us-east-1", "url": "https://x/y.csv", "fileName": "y.csv"}
        assert BucketEntry.from_dict(data).to_dict() == data


@pytest.fixture
def gateway():
    return MagicMock()


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def client():
    client = MagicMock()
    client.get_registry.return_value = [{"bucket": "aaa"}, {"bucket": "B_b"}, {"bucket": "ccc"}]
    return client


@pytest.fixture
def reconciler(gateway, dispatcher, client):
    return BucketRegistryReconciler(gateway, dispatcher, client=client)


class TestReconcile:
    """Tests for BucketRegistryReconciler.reconcile."""

    def test_applies_registry(self, reconciler, gateway, dispatcher, client):
        diff = reconciler.reconcile()

        assert diff.valid_names == ["aaa", "ccc"]
        assert diff.invalid == ["B_b"]
        gateway.ensure_bucket.assert_any_call("aaa", None, create_if_missing=True)
        gateway.ensure_bucket.assert_any_call("ccc", None, create_if_missing=True)
        assert gateway.ensure_bucket.call_count == 2
        dispatcher.unregister_listener.assert_called_once_with("B_b")

    def test_invalid_names_pushed_back(self, reconciler, client):
        reconciler.reconcile()

        client.put_registry.assert_called_once_with([{"bucket": "aaa"}, {"bucket": "ccc"}])

    def test_no_push_back_when_all_valid(self, reconciler, client):
        client.get_registry.return_value = [{"bucket": "aaa"}]

        reconciler.reconcile()

        client.put_registry.assert_not_called()

    def test_bucket_failure_does_not_abort_others(self, reconciler, gateway):
        gateway.ensure_bucket.side_effect = [RuntimeError("denied"), True]

        diff = reconciler.reconcile()

        assert diff.valid_names == ["aaa", "ccc"]
        assert gateway.ensure_bucket.call_count == 2

    @pytest.mark.parametrize("error", [RegistryNotFound("404"), RegistryUnavailable("down")])
    def test_fetch_failure_leaves_listeners_untouched(self, reconciler, gateway, dispatcher, client, error):
        client.get_registry.side_effect = error

        assert reconciler.reconcile() is None
        gateway.ensure_bucket.assert_not_called()
        dispatcher.unregister_listener.assert_not_called()

    def test_push_back_failure_is_logged(self, reconciler, client):
        client.put_registry.side_effect = RegistryUnavailable("down")

        diff = reconciler.reconcile()

        assert diff.invalid == ["B_b"]

    def test_explicit_entries_skip_fetch(self, reconciler, client, gateway):
        reconciler.reconcile([{"bucket": "sales", "region": "af-south-1"}])

        gateway.ensure_bucket.assert_called_once_with("sales", "af-south-1", create_if_missing=True)

    def test_local_mode_uses_bucket_list(self, gateway, dispatcher):
        reconciler = BucketRegistryReconciler(gateway, dispatcher, local_buckets=["sales", "climate"], local=True)

        diff = reconciler.reconcile()

        assert diff.valid_names == ["sales", "climate"]
        assert gateway.ensure_bucket.call_count == 2

    def test_bucket_removed_upstream_is_unwatched(self, reconciler, gateway, dispatcher):
        dispatcher.registry.names.return_value = ["aaa", "bbb"]

        reconciler.reconcile([{"bucket": "aaa"}])

        dispatcher.unregister_listener.assert_called_once_with("bbb")

    def test_fetch_failure_keeps_watched_buckets(self, reconciler, dispatcher, client):
        dispatcher.registry.names.return_value = ["aaa", "bbb"]
        client.get_registry.side_effect = RegistryUnavailable("down")

        reconciler.reconcile()

        dispatcher.unregister_listener.assert_not_called()


class BlockingStream:
    """Notification stream that yields nothing until closed."""

    def __init__(self):
        self.closed = threading.Event()

    def __iter__(self):
        self.closed.wait(5)
        return iter(())

    def close(self):
        self.closed.set()


class TestListenerLifecycle:
    """Reconciliation against a real dispatcher."""

    def test_listener_follows_registry(self, gateway):
        gateway.subscribe.side_effect = lambda name, **kwargs: BlockingStream()
        dispatcher = NotificationDispatcher(gateway, MagicMock())
        gateway.ensure_bucket.side_effect = (
            lambda name, region=None, create_if_missing=False: dispatcher.register_listeners([name])
        )
        reconciler = BucketRegistryReconciler(gateway, dispatcher, local=True)

        try:
            reconciler.reconcile([{"bucket": "aaa"}, {"bucket": "bbb"}])
            assert dispatcher.registry.names() == ["aaa", "bbb"]

            reconciler.reconcile([{"bucket": "aaa"}])
            assert dispatcher.registry.names() == ["aaa"]
        finally:
            dispatcher.stop()


class TestOnConfigPushed:
    """Tests for configs pushed in heartbeat responses."""

    def test_reconciles_pushed_registry(self, reconciler, gateway, client):
        reconciler.on_config_pushed({"minio_buckets_registry": [{"bucket": "sales"}]})

        client.get_registry.assert_not_called()
        gateway.ensure_bucket.assert_called_once_with("sales", None, create_if_missing=True)

    def test_ignores_unrelated_config(self, reconciler, gateway):
        assert reconciler.on_config_pushed({"other": 1}) is None
        gateway.ensure_bucket.assert_not_called()

    def test_uploads_seed_files(self, reconciler, gateway, client):
        client.download.return_value = b"a,b\n1,2\n"

        reconciler.on_config_pushed({
            "minio_buckets_registry": [
                {"bucket": "sales", "url": "https://example.org/seed.csv", "fileName": "seed.csv"},
            ]
        })

        client.download.assert_called_once_with("https://example.org/seed.csv")
        gateway.put_object.assert_called_once_with("sales", "seed.csv", b"a,b\n1,2\n", "text/csv")


class TestSyncSeedFiles:
    """Tests for sync_seed_files."""

    def test_skips_incomplete_entries(self, reconciler, client):
        entries = [
            BucketEntry("sales", url="https://example.org/seed.csv"),
            BucketEntry("climate", file_name="seed.csv"),
            BucketEntry("plain"),
        ]

        assert reconciler.sync_seed_files(entries) == 0
        client.download.assert_not_called()

    def test_skips_invalid_url(self, reconciler, client):
        assert reconciler.sync_seed_files([BucketEntry("sales", url="ftp://host/seed.csv", file_name="seed.csv")]) == 0
        client.download.assert_not_called()

    def test_download_failure_is_contained(self, reconciler, client, gateway):
        entries = [
            BucketEntry("sales", url="https://example.org/a.csv", file_name="a.csv"),
            BucketEntry("climate", url="https://example.org/b.json", file_name="b.json"),
        ]
        client.download.side_effect = [RegistryUnavailable("timeout"), b"{}"]

        assert reconciler.sync_seed_files(entries) == 1
        gateway.put_object.assert_called_once_with("climate", "b.json", b"{}", "application/json")


class TestRegisterBucket:
    """Tests for register_bucket and remove_buckets."""

    def test_adds_new_bucket(self, reconciler, client):
        assert reconciler.register_bucket("ddd", "af-south-1") is True

        client.put_registry.assert_called_once_with([
            {"bucket": "aaa"}, {"bucket": "B_b"}, {"bucket": "ccc"},
            {"bucket": "ddd", "region": "af-south-1"},
        ])

    def test_existing_bucket(self, reconciler, client):
        assert reconciler.register_bucket("aaa") is False
        client.put_registry.assert_not_called()

    def test_invalid_name(self, reconciler, client):
        assert reconciler.register_bucket("AB") is False
        client.get_registry.assert_not_called()

    def test_registry_unavailable(self, reconciler, client):
        client.get_registry.side_effect = RegistryUnavailable("down")
        assert reconciler.register_bucket("ddd") is False

    def test_local_mode_is_noop(self, gateway, dispatcher):
        reconciler = BucketRegistryReconciler(gateway, dispatcher, local=True)
        assert reconciler.register_bucket("ddd") is True

    def test_remove_buckets(self, reconciler, client, dispatcher):
        assert reconciler.remove_buckets(["aaa"]) is True

        dispatcher.unregister_listener.assert_called_once_with("aaa")
        client.put_registry.assert_called_once_with([{"bucket": "B_b"}, {"bucket": "ccc"}])
