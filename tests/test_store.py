"""Firestore store adapter against mocked client objects."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from google.api_core.exceptions import ServiceUnavailable

from devicegate.common.errors import StoreTransactionError
from devicegate.common.events import ChangeType
from devicegate.services.bridge import store as store_module
from devicegate.services.bridge.store import FirestoreDecisionStore, build_credentials


def _change(kind: str, doc_id: str, data: dict | None):
    return SimpleNamespace(
        type=SimpleNamespace(name=kind),
        document=SimpleNamespace(id=doc_id, to_dict=lambda: data),
    )


@pytest.fixture
def firestore_store():
    return FirestoreDecisionStore(MagicMock())


def test_subscription_translates_changes_and_releases_once(firestore_store):
    received = []
    subscription = firestore_store.subscribe_pending(received.append)
    on_snapshot = firestore_store.requests.on_snapshot.call_args.args[0]

    on_snapshot(None, [_change("ADDED", "dev-1", {"username": "alice"}), _change("REMOVED", "dev-0", None)], None)

    assert [(e.change_type, e.key, e.data) for e in received] == [
        (ChangeType.ADDED, "dev-1", {"username": "alice"}),
        (ChangeType.REMOVED, "dev-0", {}),
    ]
    watch = firestore_store.requests.on_snapshot.return_value
    subscription.close()
    subscription.close()
    watch.unsubscribe.assert_called_once_with()


def test_callback_error_does_not_break_listener(firestore_store):
    received = []

    def callback(event):
        if event.key == "dev-1":
            raise RuntimeError("boom")
        received.append(event.key)

    firestore_store.subscribe_pending(callback)
    on_snapshot = firestore_store.requests.on_snapshot.call_args.args[0]
    on_snapshot(None, [_change("ADDED", "dev-1", {}), _change("ADDED", "dev-2", {})], None)

    assert received == ["dev-2"]


@pytest.mark.asyncio
async def test_get_pending_maps_snapshot(firestore_store):
    snapshot = SimpleNamespace(exists=True, id="dev-1", to_dict=lambda: {"deviceName": "Phone"})
    firestore_store.requests.document.return_value.get.return_value = snapshot

    request = await firestore_store.get_pending("dev-1")

    assert request.device_id == "dev-1"
    assert request.username == "Unknown User"
    assert request.device_name == "Phone"


@pytest.mark.asyncio
async def test_finalize_wraps_store_errors(firestore_store, monkeypatch):
    def failing(*args, **kwargs):
        raise ServiceUnavailable("firestore down")

    monkeypatch.setattr(store_module, "_finalize_in_transaction", failing)

    with pytest.raises(StoreTransactionError):
        await firestore_store.finalize("dev-1", approved=True, decided_at=datetime.now(timezone.utc))


def test_missing_key_file_is_rejected(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_credentials(str(tmp_path / "missing.json"))
