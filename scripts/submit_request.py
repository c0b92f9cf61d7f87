"""Append one pending device-registration request to Firestore.

Useful for manual end-to-end checks of the Discord approval flow, including
duplicate submissions for the same device id.
"""

import argparse

import google.auth
from google.cloud import firestore
from google.oauth2 import service_account


def submit(
    key_path: str | None,
    project: str | None,
    collection: str,
    device_id: str,
    username: str | None,
    device_name: str | None,
) -> None:
    """Write the request document; blank optional fields are left out."""

    if key_path:
        credentials = service_account.Credentials.from_service_account_file(key_path)
    else:
        credentials, _ = google.auth.default()
    client = firestore.Client(project=project or getattr(credentials, "project_id", None), credentials=credentials)
    payload = {"deviceId": device_id}
    if username:
        payload["username"] = username
    if device_name:
        payload["deviceName"] = device_name
    client.collection(collection).document(device_id).set(payload)


def main() -> None:
    """Parse CLI args and submit one request."""

    parser = argparse.ArgumentParser(description="Submit a pending device registration request.")
    parser.add_argument("--key", default=None, help="Service-account JSON (default: application credentials)")
    parser.add_argument("--project", default=None)
    parser.add_argument("--collection", default="requests")
    parser.add_argument("--device-id", required=True)
    parser.add_argument("--username", default=None)
    parser.add_argument("--device-name", default=None)
    args = parser.parse_args()

    submit(args.key, args.project, args.collection, args.device_id, args.username, args.device_name)
    print(f"Submitted request device_id={args.device_id} collection={args.collection}")


if __name__ == "__main__":
    main()
