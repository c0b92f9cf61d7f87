from datetime import datetime, timezone

from devicegate.services.bridge.models import DeviceRecord, PendingRequest


def test_pending_request_defaults_for_missing_or_blank_fields():
    for data in ({}, None, {"username": "", "deviceName": None}):
        request = PendingRequest.from_snapshot("dev-9", data)
        assert request.username == "Unknown User"
        assert request.device_name == "Unnamed Device"


def test_pending_request_keeps_supplied_fields():
    request = PendingRequest.from_snapshot("dev-1", {"username": "alice", "deviceName": "Phone"})
    assert (request.device_id, request.username, request.device_name) == ("dev-1", "alice", "Phone")


def test_device_record_document_is_full_replace_payload():
    decided_at = datetime(2026, 1, 2, tzinfo=timezone.utc)
    request = PendingRequest(device_id="dev-1", username="alice", device_name="Phone")
    record = DeviceRecord.from_request(request, approved=True, decided_at=decided_at)
    assert record.to_document() == {
        "deviceId": "dev-1",
        "username": "alice",
        "deviceName": "Phone",
        "approved": True,
        "decidedAt": decided_at,
    }


def test_pending_request_renders_non_string_fields():
    request = PendingRequest.from_snapshot("dev-1", {"username": 12345, "deviceName": False})
    assert request.username == "12345"
    assert request.device_name == "Unnamed Device"
