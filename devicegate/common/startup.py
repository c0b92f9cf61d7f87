"""Startup-time helpers: redacted config logging and fail-fast checks."""

import os

from devicegate.common.logging import logger


SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN")


def _redact(name: str, value: str | None) -> str:
    if value is None:
        return "<unset>"
    if any(secret in name.upper() for secret in SECRET_MARKERS):
        return "<redacted>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected env keys once, secrets redacted, for troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _redact(key, os.getenv(key))
    logger.info("startup_config=%s", config)


def check_startup(settings) -> None:
    """Refuse to start when credentials the bridge needs are unusable.

    Exits the process with a logged reason instead of failing later inside
    the gateway task or the first Firestore call.
    """

    problems = []
    if not settings.discord_token.strip():
        problems.append("DISCORD_TOKEN is empty")
    if settings.channel_id <= 0:
        problems.append("CHANNEL_ID must be a positive channel snowflake")
    if settings.firebase_key and not os.path.exists(settings.firebase_key):
        problems.append(f"Firebase key file not found: {settings.firebase_key}")
    for problem in problems:
        logger.error("startup_check_failed reason=%s", problem)
    if problems:
        raise SystemExit(1)
