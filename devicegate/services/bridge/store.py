"""Decision store: pending requests + finalized devices in Firestore.

The bridge depends only on the `DecisionStore` protocol. The Firestore
implementation uses the synchronous client (its `on_snapshot` listener runs
on a background thread) and pushes blocking calls onto worker threads.
"""

import asyncio
import os
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

import google.auth
from google.api_core.exceptions import GoogleAPIError
from google.cloud import firestore
from google.oauth2 import service_account

from devicegate.common.errors import StoreTransactionError
from devicegate.common.events import ChangeEvent, ChangeType
from devicegate.common.logging import logger
from devicegate.services.bridge.models import DeviceRecord, PendingRequest


SCOPES = ["https://www.googleapis.com/auth/cloud-platform", "https://www.googleapis.com/auth/datastore"]


class Subscription:
    """Owned handle on one live change subscription.

    `close()` releases the underlying listener exactly once.
    """

    def __init__(self, release: Callable[[], None], name: str = "") -> None:
        self._release = release
        self._lock = threading.Lock()
        self._closed = False
        self.name = name

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._release()


class DecisionStore(Protocol):
    def subscribe_pending(self, callback: Callable[[ChangeEvent], None]) -> Subscription: ...

    async def get_pending(self, device_id: str) -> PendingRequest | None: ...

    async def list_pending(self, limit: int = 100) -> list[PendingRequest]: ...

    async def finalize(self, device_id: str, approved: bool, decided_at: datetime) -> DeviceRecord | None: ...


def build_credentials(key_path: str | None):
    """Service-account file when configured, else application-default creds."""

    if key_path:
        if not os.path.exists(key_path):
            raise FileNotFoundError(f"Firebase key file not found: {key_path}")
        return service_account.Credentials.from_service_account_file(key_path, scopes=SCOPES)
    creds, _ = google.auth.default(scopes=SCOPES)
    return creds


@firestore.transactional
def _finalize_in_transaction(
    transaction,
    request_ref,
    device_ref,
    approved: bool,
    decided_at: datetime,
) -> DeviceRecord | None:
    """Read the pending request and, only if it still exists, write + delete.

    Firestore re-runs this function when a concurrent transaction touched the
    same documents, so a losing click re-reads and sees no pending request.
    """

    snapshot = request_ref.get(transaction=transaction)
    if not snapshot.exists:
        return None
    request = PendingRequest.from_snapshot(snapshot.id, snapshot.to_dict())
    record = DeviceRecord.from_request(request, approved=approved, decided_at=decided_at)
    transaction.set(device_ref, record.to_document())
    transaction.delete(request_ref)
    return record


class FirestoreDecisionStore:
    """`DecisionStore` backed by two Firestore collections."""

    def __init__(
        self,
        client: firestore.Client,
        requests_collection: str = "requests",
        devices_collection: str = "devices",
    ) -> None:
        self.client = client
        self.requests = client.collection(requests_collection)
        self.devices = client.collection(devices_collection)

    @classmethod
    def from_settings(cls, settings) -> "FirestoreDecisionStore":
        credentials = build_credentials(settings.firebase_key)
        project = settings.firebase_project or getattr(credentials, "project_id", None)
        client = firestore.Client(project=project, credentials=credentials)
        return cls(client, settings.requests_collection, settings.devices_collection)

    def subscribe_pending(self, callback: Callable[[ChangeEvent], None]) -> Subscription:
        """Listen on the requests collection; `callback` runs on the listener thread."""

        def on_snapshot(_docs, changes, _read_time) -> None:
            for change in changes:
                try:
                    event = ChangeEvent(
                        change_type=ChangeType(change.type.name.lower()),
                        key=change.document.id,
                        data=change.document.to_dict() or {},
                    )
                    callback(event)
                except Exception as exc:
                    logger.exception("snapshot_change_error key=%s error=%s", change.document.id, exc)

        watch = self.requests.on_snapshot(on_snapshot)
        return Subscription(watch.unsubscribe, name=self.requests.id)

    async def get_pending(self, device_id: str) -> PendingRequest | None:
        try:
            snapshot = await asyncio.to_thread(self.requests.document(device_id).get)
        except GoogleAPIError as exc:
            raise StoreTransactionError(f"read failed for {device_id}: {exc}") from exc
        if not snapshot.exists:
            return None
        return PendingRequest.from_snapshot(snapshot.id, snapshot.to_dict())

    async def list_pending(self, limit: int = 100) -> list[PendingRequest]:
        def _list() -> list[PendingRequest]:
            return [
                PendingRequest.from_snapshot(doc.id, doc.to_dict())
                for doc in self.requests.limit(limit).stream()
            ]

        try:
            return await asyncio.to_thread(_list)
        except GoogleAPIError as exc:
            raise StoreTransactionError(f"list failed: {exc}") from exc

    async def finalize(self, device_id: str, approved: bool, decided_at: datetime) -> DeviceRecord | None:
        """Atomically move a pending request into the devices collection."""

        def _run() -> DeviceRecord | None:
            return _finalize_in_transaction(
                self.client.transaction(),
                self.requests.document(device_id),
                self.devices.document(device_id),
                approved,
                decided_at,
            )

        try:
            return await asyncio.to_thread(_run)
        # ValueError: the client gave up after exhausting transaction retries.
        except (GoogleAPIError, ValueError) as exc:
            raise StoreTransactionError(f"transaction failed for {device_id}: {exc}") from exc
