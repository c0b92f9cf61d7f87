"""Error taxonomy for the request-relay and decision paths.

Every error here is terminal to the single event being processed. Pipelines
log whatever escapes a handler, so none of these reach the subscription or
the process.
"""


class DeviceGateError(Exception):
    """Base class for bridge errors."""


class NotFoundError(DeviceGateError):
    """Decision referenced a device with no pending request."""

    def __init__(self, device_id: str) -> None:
        super().__init__(f"pending request not found: {device_id}")
        self.device_id = device_id


class MalformedCorrelationError(DeviceGateError):
    """Correlation token does not parse into a known action and device id."""

    def __init__(self, token: str, reason: str) -> None:
        super().__init__(f"malformed correlation token {token!r}: {reason}")
        self.token = token
        self.reason = reason


class InvalidDeviceIdError(DeviceGateError):
    """Device id falls outside the character set tokens can carry."""

    def __init__(self, device_id: str) -> None:
        super().__init__(f"device id not correlatable: {device_id!r}")
        self.device_id = device_id


class PublishError(DeviceGateError):
    """Outbound notification could not be delivered."""


class StoreTransactionError(DeviceGateError):
    """Read/write/delete against the decision store failed."""
