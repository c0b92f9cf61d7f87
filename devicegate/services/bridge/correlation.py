"""Correlation tokens linking a prompt button back to a pending request.

Tokens are `<action>_<device_id>`. Device ids are restricted to a character
set without the `_` separator so parsing is never ambiguous; 92 characters
keeps `approve_<id>` within Discord's 100-character `custom_id` limit.
"""

import re

from devicegate.common.errors import InvalidDeviceIdError, MalformedCorrelationError
from devicegate.services.bridge.models import Action


SEPARATOR = "_"
MAX_DEVICE_ID_LENGTH = 92
DEVICE_ID_PATTERN = re.compile(r"[A-Za-z0-9.:-]{1,%d}" % MAX_DEVICE_ID_LENGTH)


def is_valid_device_id(device_id: str) -> bool:
    return bool(DEVICE_ID_PATTERN.fullmatch(device_id))


def validate_device_id(device_id: str) -> str:
    """Return the id unchanged or raise `InvalidDeviceIdError`."""

    if not is_valid_device_id(device_id):
        raise InvalidDeviceIdError(device_id)
    return device_id


def encode_token(action: Action, device_id: str) -> str:
    return f"{action.value}{SEPARATOR}{validate_device_id(device_id)}"


def parse_token(token: str) -> tuple[Action, str]:
    """Split a token into `(action, device_id)`.

    Raises `MalformedCorrelationError` for a missing separator, an unknown
    action, or a device id outside the allowed character set.
    """

    action_raw, sep, device_id = token.partition(SEPARATOR)
    if not sep:
        raise MalformedCorrelationError(token, "missing separator")
    try:
        action = Action(action_raw)
    except ValueError as exc:
        raise MalformedCorrelationError(token, f"unknown action {action_raw!r}") from exc
    if not device_id:
        raise MalformedCorrelationError(token, "empty device id")
    if not is_valid_device_id(device_id):
        raise MalformedCorrelationError(token, "device id outside allowed character set")
    return action, device_id
