"""
Durable queue configuration.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vetcall.config import get_settings

EXECUTE_CALL_PATH = "/api/webhooks/execute-call"
EXECUTE_EMAIL_PATH = "/api/webhooks/execute-email"


class QueueConfig(BaseSettings):
    """QStash configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="QSTASH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    token: str = Field(default="", description="QStash API token (Bearer).")
    url: str = Field(default="https://qstash.upstash.io")
    current_signing_key: str = Field(default="")
    next_signing_key: str = Field(default="")
    execution_base_url: str = Field(
        default="",
        description="Base URL the queue calls back. Defaults to PUBLIC_BASE_URL.",
    )
    request_timeout_seconds: float = Field(default=10.0, ge=1.0, le=60.0)

    def resolved_execution_base_url(self) -> str:
        return (self.execution_base_url or get_settings().public_base_url).rstrip("/")

    def execution_url(self, kind: str) -> str:
        path = EXECUTE_CALL_PATH if kind == "call" else EXECUTE_EMAIL_PATH
        return f"{self.resolved_execution_base_url()}{path}"


def get_queue_config() -> QueueConfig:
    return QueueConfig()
