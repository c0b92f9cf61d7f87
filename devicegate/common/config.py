"""Central environment-driven settings for the bridge process.

The process loads this once at startup. Credentials and the notification
destination come from environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "devicegate"
    log_level: str = "INFO"
    discord_token: str
    channel_id: int
    api_key: str
    firebase_key: str | None = None
    firebase_project: str | None = None
    requests_collection: str = "requests"
    devices_collection: str = "devices"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    notify_queue_size: int = 256
    notify_workers: int = 4
    decision_queue_size: int = 256
    decision_workers: int = 4
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
