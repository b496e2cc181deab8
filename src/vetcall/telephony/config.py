"""
Voice provider configuration.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported voice provider types."""

    VAPI = "vapi"
    MOCK = "mock"


class VoiceProviderConfig(BaseSettings):
    """Voice provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="VAPI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.VAPI)

    private_key: str = Field(default="", description="Server-side API key (Bearer).")
    base_url: str = Field(default="https://api.vapi.ai")
    phone_number_id: str = Field(
        default="",
        description="Default outbound phone number id when a call row has none.",
    )
    assistant_id: str = Field(
        default="",
        description="Default outbound assistant id for scheduled calls.",
    )
    request_timeout_seconds: float = Field(default=30.0, ge=1.0, le=120.0)

    def get_api_url(self, path: str) -> str:
        base = self.base_url.rstrip("/")
        return f"{base}{path}"


def get_voice_provider_config() -> VoiceProviderConfig:
    return VoiceProviderConfig()
