"""Decision handler: one approve/deny click -> at most one device record.

The read of the pending request, the device-record write and the pending
delete happen in a single conditional store transaction, so the first click
to commit wins and every later click for the same device is a no-op.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from time import perf_counter

from devicegate.common.channel import ActionSelected, ActorContext
from devicegate.common.config import settings
from devicegate.common.errors import MalformedCorrelationError, NotFoundError, StoreTransactionError
from devicegate.common.logging import log_context, logger
from devicegate.common.metrics import decision_latency_seconds, decisions_total, malformed_tokens_total
from devicegate.common.state_machine import NO_REQUEST, PENDING, decision_state, validate_transition
from devicegate.common.tracing import tracer
from devicegate.services.bridge.correlation import parse_token
from devicegate.services.bridge.models import Action, DeviceRecord
from devicegate.services.bridge.store import DecisionStore


NOT_FOUND_REPLY = "Request not found or already processed."
FAILURE_REPLY = "Something went wrong while updating the device registry."
BUSY_REPLY = "The bridge is busy, please try again."


class DecisionOutcome(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def confirmation_text(record: DeviceRecord) -> str:
    verb = "Approved" if record.approved else "Denied"
    return f"{verb} **{record.username}** ({record.device_name})"


class DecisionHandler:
    """Applies operator decisions to the store and acknowledges privately."""

    def __init__(self, store: DecisionStore, now: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.now = now

    async def handle(self, event: ActionSelected) -> DecisionOutcome:
        """Pipeline entrypoint."""

        return await self.on_action_selected(event.token, event.actor)

    async def on_action_selected(self, token: str, actor: ActorContext) -> DecisionOutcome:
        with log_context(actor_id=getattr(actor, "actor_id", "")):
            try:
                action, device_id = parse_token(token)
            except MalformedCorrelationError as exc:
                logger.warning("decision_rejected error=%s", exc)
                malformed_tokens_total.labels(service=settings.service_name).inc()
                await self._dismiss(actor)
                return DecisionOutcome.MALFORMED

            with log_context(device_id=device_id):
                try:
                    return await self._apply(action, device_id, actor)
                except NotFoundError:
                    logger.info("decision_skipped action=%s reason=not_found_or_processed", action.value)
                    decisions_total.labels(service=settings.service_name, outcome=DecisionOutcome.NOT_FOUND.value).inc()
                    await self._reply(actor, NOT_FOUND_REPLY)
                    return DecisionOutcome.NOT_FOUND

    async def _apply(self, action: Action, device_id: str, actor: ActorContext) -> DecisionOutcome:
        approved = action is Action.APPROVE
        start = perf_counter()
        try:
            with tracer.start_as_current_span("decision.finalize") as span:
                span.set_attribute("device.id", device_id)
                span.set_attribute("decision.action", action.value)
                record = await self.store.finalize(device_id, approved=approved, decided_at=self.now())
        except StoreTransactionError as exc:
            logger.error("decision_failed action=%s error=%s", action.value, exc)
            return await self._fail(actor)
        except Exception as exc:
            logger.exception("decision_failed action=%s error=%s", action.value, exc)
            return await self._fail(actor)
        finally:
            decision_latency_seconds.labels(service=settings.service_name).observe(perf_counter() - start)

        # The transaction only writes when it read a pending request.
        current = PENDING if record is not None else NO_REQUEST
        try:
            validate_transition(current, decision_state(approved))
        except ValueError as exc:
            raise NotFoundError(device_id) from exc

        outcome = DecisionOutcome.APPROVED if record.approved else DecisionOutcome.DENIED
        decisions_total.labels(service=settings.service_name, outcome=outcome.value).inc()
        logger.info(
            "decision_applied outcome=%s username=%s device_name=%s",
            outcome.value,
            record.username,
            record.device_name,
        )
        await self._reply(actor, confirmation_text(record))
        return outcome

    async def _fail(self, actor: ActorContext) -> DecisionOutcome:
        decisions_total.labels(service=settings.service_name, outcome=DecisionOutcome.FAILED.value).inc()
        await self._reply(actor, FAILURE_REPLY)
        return DecisionOutcome.FAILED

    async def _reply(self, actor: ActorContext, text: str) -> None:
        # A lost acknowledgement never undoes a committed decision.
        try:
            await actor.reply(text, private=True)
        except Exception as exc:
            logger.error("reply_failed error=%s", exc)

    async def _dismiss(self, actor: ActorContext) -> None:
        try:
            await actor.dismiss()
        except Exception as exc:
            logger.error("dismiss_failed error=%s", exc)

    async def on_dropped(self, event: ActionSelected) -> None:
        """Tell the operator their click was shed under load."""

        logger.warning("decision_dropped token=%s", event.token)
        await self._reply(event.actor, BUSY_REPLY)
