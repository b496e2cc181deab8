"""
Voice provider factory.

Configuration comes from VoiceProviderConfig (env + .env). The process-wide
throttle is attached here so every call placement shares one queue.
"""

from __future__ import annotations

import logging

from vetcall.config import get_settings
from vetcall.telephony.config import ProviderType, VoiceProviderConfig, get_voice_provider_config
from vetcall.telephony.interface import VoiceProvider
from vetcall.telephony.mock_adapter import MockVoiceProvider
from vetcall.telephony.throttle import RequestThrottle
from vetcall.telephony.vapi_adapter import VapiAdapter

logger = logging.getLogger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


def build_throttle() -> RequestThrottle:
    settings = get_settings()
    return RequestThrottle(
        max_concurrent=settings.throttle_max_concurrent,
        delay_seconds=settings.throttle_delay_seconds,
    )


def build_voice_provider(
    config: VoiceProviderConfig | None = None,
    throttle: RequestThrottle | None = None,
) -> VoiceProvider:
    """Create a voice provider for the configured provider type."""
    cfg = config or get_voice_provider_config()

    logger.info(
        "Voice provider config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "private_key": _mask(cfg.private_key),
            "base_url": cfg.base_url,
            "phone_number_id": cfg.phone_number_id,
        },
    )

    if cfg.provider_type == ProviderType.VAPI:
        return VapiAdapter(cfg, throttle=throttle)

    if cfg.provider_type == ProviderType.MOCK:
        return MockVoiceProvider(throttle=throttle)

    raise ValueError(f"Unsupported voice provider_type: {cfg.provider_type}")
