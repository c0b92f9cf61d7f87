"""Pending-request and device-record shapes stored in Firestore."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_USERNAME = "Unknown User"
DEFAULT_DEVICE_NAME = "Unnamed Device"


def _display_text(value: Any, default: str) -> str:
    # Documents are written by untrusted clients; any non-empty value renders.
    if value is None or value == "" or value is False:
        return default
    return value if isinstance(value, str) else str(value)


class Action(str, Enum):
    APPROVE = "approve"
    DENY = "deny"


class PendingRequest(BaseModel):
    """A submitted, not-yet-decided device registration.

    Keyed by device id; the id is caller-supplied and untrusted.
    """

    device_id: str
    username: str = DEFAULT_USERNAME
    device_name: str = DEFAULT_DEVICE_NAME

    @classmethod
    def from_snapshot(cls, key: str, data: dict[str, Any] | None) -> "PendingRequest":
        """Build from a record key + field snapshot, defaulting blank fields."""

        data = data or {}
        return cls(
            device_id=key,
            username=_display_text(data.get("username"), DEFAULT_USERNAME),
            device_name=_display_text(data.get("deviceName"), DEFAULT_DEVICE_NAME),
        )


class DeviceRecord(BaseModel):
    """Finalized registration written exactly once per winning decision."""

    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field(alias="deviceId")
    username: str
    device_name: str = Field(alias="deviceName")
    approved: bool
    decided_at: datetime = Field(alias="decidedAt")

    @classmethod
    def from_request(cls, request: PendingRequest, approved: bool, decided_at: datetime) -> "DeviceRecord":
        return cls(
            device_id=request.device_id,
            username=request.username,
            device_name=request.device_name,
            approved=approved,
            decided_at=decided_at,
        )

    def to_document(self) -> dict[str, Any]:
        """Full-replace payload for the devices collection."""

        return self.model_dump(by_alias=True)
