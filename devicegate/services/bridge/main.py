"""Bridge process: Firestore request feed <-> Discord approval prompts.

Runs the Discord gateway client, the request watcher and the decision
pipeline inside the FastAPI application lifecycle, and exposes health,
metrics and a few ops endpoints.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException, Query

from devicegate.common.channel import DiscordChannel, NotificationChannel
from devicegate.common.config import settings
from devicegate.common.errors import StoreTransactionError
from devicegate.common.events import EventPipeline
from devicegate.common.logging import configure_logging, logger
from devicegate.common.metrics import metrics_response
from devicegate.common.startup import check_startup, log_startup_config
from devicegate.common.tracing import instrument_app, setup_tracing
from devicegate.services.bridge.decisions import DecisionHandler
from devicegate.services.bridge.store import DecisionStore, FirestoreDecisionStore
from devicegate.services.bridge.watcher import RequestWatcher


class Bridge:
    """Wires store, channel, watcher and decision handler together."""

    def __init__(self, store: DecisionStore, channel: NotificationChannel) -> None:
        self.store = store
        self.channel = channel
        self.watcher = RequestWatcher(store, channel)
        self.decisions = DecisionHandler(store)
        self.notify_pipeline = EventPipeline(
            "notify",
            self.watcher.handle_change,
            maxsize=settings.notify_queue_size,
            workers=settings.notify_workers,
        )
        self.decision_pipeline = EventPipeline(
            "decisions",
            self.decisions.handle,
            maxsize=settings.decision_queue_size,
            workers=settings.decision_workers,
            on_drop=self.decisions.on_dropped,
        )
        self.watcher.pipeline = self.notify_pipeline

    async def on_ready(self) -> None:
        # Fires again after every gateway reconnect; restart keeps one subscription.
        await self.watcher.restart()

    def on_action(self, event) -> None:
        self.decision_pipeline.submit(event)

    def start_pipelines(self) -> None:
        self.notify_pipeline.start()
        self.decision_pipeline.start()

    async def shutdown(self) -> None:
        await self.watcher.stop()
        await self.notify_pipeline.stop()
        await self.decision_pipeline.stop()


def build_bridge() -> tuple[Bridge, DiscordChannel]:
    store = FirestoreDecisionStore.from_settings(settings)
    channel = DiscordChannel(settings.discord_token, settings.channel_id)
    bridge = Bridge(store, channel)
    channel.on_action = bridge.on_action
    channel.on_ready = bridge.on_ready
    return bridge, channel


def _log_gateway_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    if task.exception() is not None:
        logger.error("discord_gateway_exited error=%s", task.exception())


def enforce_api_key(x_api_key: str | None) -> None:
    """Simple API-key gate for ops endpoints."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def create_app(bridge: Bridge, channel: DiscordChannel | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Run pipelines + Discord gateway with application lifecycle."""

        bridge.start_pipelines()
        gateway_task = None
        if channel is not None:
            gateway_task = asyncio.create_task(channel.start())
            gateway_task.add_done_callback(_log_gateway_exit)
        yield
        await bridge.shutdown()
        if channel is not None:
            await channel.close()
        if gateway_task is not None:
            gateway_task.cancel()
            await asyncio.gather(gateway_task, return_exceptions=True)
        logger.info("bridge_stopped")

    app = FastAPI(title="DeviceGate Bridge", lifespan=lifespan)
    instrument_app(app)

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {
            "ok": True,
            "watcher_active": bridge.watcher.active,
            "discord_ready": channel.ready if channel is not None else False,
        }

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/ops/requests")
    async def list_requests(
        limit: int = Query(default=100, ge=1, le=500),
        x_api_key: str | None = Header(default=None),
    ):
        """List pending requests still awaiting a decision."""

        enforce_api_key(x_api_key)
        try:
            rows = await bridge.store.list_pending(limit=limit)
        except StoreTransactionError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return [
            {"device_id": row.device_id, "username": row.username, "device_name": row.device_name}
            for row in rows
        ]

    @app.get("/ops/requests/{device_id}")
    async def get_request(device_id: str, x_api_key: str | None = Header(default=None)):
        """Fetch one pending request; 404 once it has been decided."""

        enforce_api_key(x_api_key)
        try:
            row = await bridge.store.get_pending(device_id)
        except StoreTransactionError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        if row is None:
            raise HTTPException(status_code=404, detail="request not found")
        return {"device_id": row.device_id, "username": row.username, "device_name": row.device_name}

    @app.post("/ops/watcher/restart")
    async def restart_watcher(x_api_key: str | None = Header(default=None)):
        """Drop and re-establish the request subscription."""

        enforce_api_key(x_api_key)
        await bridge.watcher.restart()
        return {"watcher_active": bridge.watcher.active}

    return app


def main_app() -> FastAPI:
    """ASGI factory: `uvicorn devicegate.services.bridge.main:main_app --factory`."""

    configure_logging()
    setup_tracing(settings.service_name)
    log_startup_config(
        settings.service_name,
        [
            "SERVICE_NAME",
            "CHANNEL_ID",
            "DISCORD_TOKEN",
            "FIREBASE_KEY",
            "REQUESTS_COLLECTION",
            "DEVICES_COLLECTION",
        ],
    )
    check_startup(settings)
    bridge, channel = build_bridge()
    return create_app(bridge, channel)
