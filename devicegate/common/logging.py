"""JSON logs tagged with the device, event and operator being handled.

Pipelines and handlers wrap each unit of work in `log_context(...)`; every
record emitted inside the block carries those identifiers.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from devicegate.common.config import settings


device_id_ctx: ContextVar[str] = ContextVar("device_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
actor_id_ctx: ContextVar[str] = ContextVar("actor_id", default="")

CONTEXT_FIELDS: dict[str, ContextVar[str]] = {
    "device_id": device_id_ctx,
    "event_id": event_id_ctx,
    "actor_id": actor_id_ctx,
}

# Client libraries that log every gateway heartbeat / RPC at INFO.
NOISY_LOGGERS = ("discord", "google.api_core", "google.auth", "urllib3")


@contextmanager
def log_context(**fields: str | None) -> Iterator[None]:
    """Tag records in this block; `None` values leave a field untouched."""

    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise KeyError(f"unknown log context fields: {sorted(unknown)}")
    tokens = [
        (CONTEXT_FIELDS[name], CONTEXT_FIELDS[name].set(value))
        for name, value in fields.items()
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for name, var in CONTEXT_FIELDS.items():
            setattr(record, name, var.get())
        return True


def configure_logging(level: str | None = None) -> None:
    """Install the JSON handler on the root logger (idempotent)."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    fields = " ".join(f"%({name})s" for name in ("asctime", "levelname", "service_name", *CONTEXT_FIELDS, "message"))
    handler.setFormatter(JsonFormatter(fields))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("devicegate")
