"""Shared fixtures: in-memory decision store and recording chat doubles."""

import os

os.environ.setdefault("DISCORD_TOKEN", "test-token")
os.environ.setdefault("CHANNEL_ID", "1234")
os.environ.setdefault("API_KEY", "test-api-key")

import asyncio

import pytest

from devicegate.common.errors import PublishError, StoreTransactionError
from devicegate.common.events import ChangeEvent, ChangeType
from devicegate.services.bridge.models import DeviceRecord, PendingRequest
from devicegate.services.bridge.store import Subscription


class InMemoryDecisionStore:
    """Dict-backed store; `finalize` is atomic under an asyncio lock."""

    def __init__(self) -> None:
        self.requests: dict[str, dict] = {}
        self.devices: dict[str, dict] = {}
        self.device_writes: list[str] = []
        self.request_deletes: list[str] = []
        self.calls: list[tuple[str, str]] = []
        self.subscribers: list = []
        self.subscribe_count = 0
        self.fail_finalize = False
        self._lock = asyncio.Lock()

    def subscribe_pending(self, callback) -> Subscription:
        self.subscribe_count += 1
        self.subscribers.append(callback)
        return Subscription(lambda: self.subscribers.remove(callback), name="requests")

    def append(self, key: str, data: dict | None = None) -> None:
        data = data or {}
        self.requests[key] = data
        self.emit(ChangeEvent(change_type=ChangeType.ADDED, key=key, data=data))

    def emit(self, event: ChangeEvent) -> None:
        for callback in list(self.subscribers):
            callback(event)

    async def get_pending(self, device_id: str) -> PendingRequest | None:
        self.calls.append(("get_pending", device_id))
        data = self.requests.get(device_id)
        return None if data is None else PendingRequest.from_snapshot(device_id, data)

    async def list_pending(self, limit: int = 100) -> list[PendingRequest]:
        self.calls.append(("list_pending", str(limit)))
        return [PendingRequest.from_snapshot(key, data) for key, data in list(self.requests.items())[:limit]]

    async def finalize(self, device_id, approved, decided_at) -> DeviceRecord | None:
        self.calls.append(("finalize", device_id))
        if self.fail_finalize:
            raise StoreTransactionError("firestore unavailable")
        async with self._lock:
            data = self.requests.get(device_id)
            # Yield mid-transaction so concurrent callers really interleave.
            await asyncio.sleep(0)
            if data is None:
                return None
            request = PendingRequest.from_snapshot(device_id, data)
            record = DeviceRecord.from_request(request, approved=approved, decided_at=decided_at)
            self.devices[device_id] = record.to_document()
            self.device_writes.append(device_id)
            del self.requests[device_id]
            self.request_deletes.append(device_id)
            return record


class RecordingChannel:
    """Notification channel that keeps every published prompt."""

    def __init__(self) -> None:
        self.prompts = []
        self.fail_next = 0

    async def publish(self, prompt) -> str:
        if self.fail_next:
            self.fail_next -= 1
            raise PublishError("channel not found")
        self.prompts.append(prompt)
        return str(len(self.prompts))


class RecordingActor:
    def __init__(self, actor_id: str = "operator-1", fail: bool = False) -> None:
        self.actor_id = actor_id
        self.replies: list[tuple[str, bool]] = []
        self.dismissed = False
        self.fail = fail

    async def reply(self, text: str, private: bool = True) -> None:
        if self.fail:
            raise RuntimeError("interaction expired")
        self.replies.append((text, private))

    async def dismiss(self) -> None:
        if self.fail:
            raise RuntimeError("interaction expired")
        self.dismissed = True


async def drain(pipeline) -> None:
    """Let thread-safe submissions land, then wait for the workers."""

    await asyncio.sleep(0)
    await pipeline.join()


@pytest.fixture
def store() -> InMemoryDecisionStore:
    return InMemoryDecisionStore()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def actor() -> RecordingActor:
    return RecordingActor()
