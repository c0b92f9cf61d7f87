"""Request watcher: pending-request additions -> operator prompts."""

import asyncio
from contextlib import asynccontextmanager

from devicegate.common.channel import NotificationChannel, Prompt, PromptAction
from devicegate.common.config import settings
from devicegate.common.errors import InvalidDeviceIdError, PublishError
from devicegate.common.events import ChangeEvent, ChangeType, EventPipeline
from devicegate.common.logging import log_context, logger
from devicegate.common.metrics import (
    notify_failures_total,
    requests_notified_total,
    watcher_subscriptions_active,
)
from devicegate.services.bridge.correlation import encode_token, validate_device_id
from devicegate.services.bridge.models import Action, PendingRequest
from devicegate.services.bridge.store import DecisionStore, Subscription


PROMPT_TITLE = "New Device Registration Request"


def build_prompt(request: PendingRequest) -> Prompt:
    """Render one pending request as a two-button prompt."""

    return Prompt(
        title=PROMPT_TITLE,
        description=(
            f"**Username:** {request.username}\n"
            f"**Device Name:** {request.device_name}\n"
            f"**Device ID:** `{request.device_id}`"
        ),
        actions=[
            PromptAction(token=encode_token(Action.APPROVE, request.device_id), label="Approve", style="success"),
            PromptAction(token=encode_token(Action.DENY, request.device_id), label="Deny", style="danger"),
        ],
    )


class RequestWatcher:
    """Owns the single subscription to the pending-request record set.

    Change events are handed to `pipeline`, whose handler should be
    `handle_change`; publishing therefore never runs on the listener thread.
    Opening and releasing the listener can block (the Firestore watch joins
    its consumer thread on close), so both run in worker threads.
    """

    def __init__(self, store: DecisionStore, channel: NotificationChannel, pipeline: EventPipeline | None = None) -> None:
        self.store = store
        self.channel = channel
        self.pipeline = pipeline
        self._subscription: Subscription | None = None
        self._lock = asyncio.Lock()

    @property
    def active(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    async def start(self) -> Subscription:
        """Subscribe, releasing any previous subscription first."""

        async with self._lock:
            await self._release()
            logger.info("watcher_subscribing")
            self._subscription = await asyncio.to_thread(self.store.subscribe_pending, self._on_change)
            watcher_subscriptions_active.labels(service=settings.service_name).set(1)
            return self._subscription

    async def restart(self) -> Subscription:
        return await self.start()

    async def stop(self) -> None:
        async with self._lock:
            await self._release()

    @asynccontextmanager
    async def watching(self):
        """Hold a subscription for the duration of the block."""

        subscription = await self.start()
        try:
            yield subscription
        finally:
            await self.stop()

    async def _release(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await asyncio.to_thread(subscription.close)
            logger.info("watcher_unsubscribed")
        watcher_subscriptions_active.labels(service=settings.service_name).set(0)

    def _on_change(self, event: ChangeEvent) -> None:
        # Runs on the store's listener thread.
        if event.change_type is not ChangeType.ADDED:
            logger.debug("change_ignored type=%s key=%s", event.change_type.value, event.key)
            return
        if self.pipeline is None:
            raise RuntimeError("watcher has no pipeline to receive changes")
        self.pipeline.submit_threadsafe(event)

    async def handle_change(self, event: ChangeEvent) -> bool:
        """Publish one prompt for an added request; True when published.

        Failures are logged and counted, never retried.
        """

        request = PendingRequest.from_snapshot(event.key, event.data)
        with log_context(device_id=request.device_id):
            logger.info(
                "request_received username=%s device_name=%s",
                request.username,
                request.device_name,
            )
            try:
                validate_device_id(request.device_id)
            except InvalidDeviceIdError as exc:
                logger.warning("request_not_correlatable error=%s", exc)
                notify_failures_total.labels(service=settings.service_name, reason="invalid_device_id").inc()
                return False
            try:
                await self.channel.publish(build_prompt(request))
            except PublishError as exc:
                logger.error("prompt_publish_failed error=%s", exc)
                notify_failures_total.labels(service=settings.service_name, reason="publish_error").inc()
                return False
            except Exception as exc:
                logger.exception("prompt_publish_failed error=%s", exc)
                notify_failures_total.labels(service=settings.service_name, reason="unexpected").inc()
                return False
            requests_notified_total.labels(service=settings.service_name).inc()
            logger.info("prompt_published")
            return True
