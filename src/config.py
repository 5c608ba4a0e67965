from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gateway.handshake import ClientInfo


class Settings(BaseSettings):
    # Load environment variables from .env and system environment
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    # Server settings
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=3000, validation_alias="PORT")

    # Debug mode
    debug: bool = Field(default=False, validation_alias="DEBUG")

    # Gateway endpoints
    gateway_url: str = Field(
        default="http://127.0.0.1:18789", validation_alias="OPENCLAW_GATEWAY_URL"
    )
    gateway_ws: str = Field(
        default="ws://127.0.0.1:18789", validation_alias="OPENCLAW_GATEWAY_WS"
    )
    gateway_token: str = Field(default="", validation_alias="OPENCLAW_GATEWAY_TOKEN")

    # Device identity
    device_file: Path = Field(
        default=Path(".openclaw-device.json"), validation_alias="OPENCLAW_DEVICE_FILE"
    )

    # Connect descriptor
    client_id: str = Field(default="gateway-client", validation_alias="OPENCLAW_CLIENT_ID")
    client_mode: str = Field(default="backend", validation_alias="OPENCLAW_CLIENT_MODE")
    client_display_name: str = Field(
        default="kanban-board", validation_alias="OPENCLAW_CLIENT_NAME"
    )
    role: str = Field(default="operator", validation_alias="OPENCLAW_ROLE")
    scopes: List[str] = Field(
        default_factory=lambda: ["operator.read"], validation_alias="OPENCLAW_SCOPES"
    )

    # Polling and timeouts
    poll_interval: float = Field(default=1.0, validation_alias="POLL_INTERVAL_SECONDS")
    sessions_limit: int = Field(default=200, validation_alias="SESSIONS_LIMIT")
    handshake_timeout: float = Field(default=7.0, validation_alias="HANDSHAKE_TIMEOUT_SECONDS")
    http_timeout: float = Field(default=10.0, validation_alias="GATEWAY_HTTP_TIMEOUT_SECONDS")
    stream_max_seconds: float = Field(default=30.0, validation_alias="CHAT_STREAM_MAX_SECONDS")

    # Upstream reconnection (off: a lost upstream stays lost until the subscriber reconnects)
    auto_reconnect: bool = Field(default=False, validation_alias="GATEWAY_AUTO_RECONNECT")
    reconnect_delay: float = Field(
        default=2.0, validation_alias="GATEWAY_RECONNECT_DELAY_SECONDS"
    )

    # Per-subscriber outbound buffer
    subscriber_queue_size: int = Field(default=100, validation_alias="SUBSCRIBER_QUEUE_SIZE")

    # Logfire settings
    logfire_enabled: bool = Field(default=False, validation_alias="LOGFIRE_ENABLED")
    logfire_token: Optional[str] = Field(default=None, validation_alias="LOGFIRE_TOKEN")
    logfire_service_name: str = Field(
        default="clawbridge", validation_alias="LOGFIRE_SERVICE_NAME"
    )

    @property
    def has_token(self) -> bool:
        return bool(self.gateway_token)

    def client_info(self) -> ClientInfo:
        return ClientInfo(
            id=self.client_id,
            mode=self.client_mode,
            display_name=self.client_display_name,
        )


def get_settings() -> Settings:
    """Instantiate and return the Settings object."""
    return Settings()
