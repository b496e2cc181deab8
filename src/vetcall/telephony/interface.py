"""
Voice provider interface definition.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import anyio

from vetcall.telephony.throttle import RequestThrottle


@dataclass(frozen=True)
class CallInitiationRequest:
    """Request to place an outbound assistant call."""

    assistant_id: str
    phone_number_id: str
    customer_number: str
    customer_name: str | None = None
    variable_values: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallInitiationResponse:
    """Response from call initiation."""

    provider_call_id: str
    status: str
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


class VoiceProviderError(Exception):
    """Base exception for voice provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}
        self.status_code = status_code


class CallInitiationError(VoiceProviderError):
    """Error during call initiation."""


class AssistantApiError(VoiceProviderError):
    """Error reading or updating a remote assistant."""


class VoiceProvider(ABC):
    """Abstract interface for the voice-call provider.

    Concrete adapters implement the blocking ``*_sync`` methods; the async
    entrypoints run them in a worker thread. Call placement additionally
    goes through the process throttle when one is attached.
    """

    throttle: RequestThrottle | None = None

    async def create_call(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Place an outbound call (throttled)."""
        if self.throttle is None:
            return await anyio.to_thread.run_sync(self.create_call_sync, request)
        return await self.throttle.enqueue(
            lambda: anyio.to_thread.run_sync(self.create_call_sync, request)
        )

    async def get_assistant(self, assistant_id: str) -> dict[str, Any]:
        return await anyio.to_thread.run_sync(self.get_assistant_sync, assistant_id)

    async def update_assistant(self, assistant_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        return await anyio.to_thread.run_sync(self.update_assistant_sync, assistant_id, patch)

    @abstractmethod
    def create_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        ...

    @abstractmethod
    def get_assistant_sync(self, assistant_id: str) -> dict[str, Any]:
        ...

    @abstractmethod
    def update_assistant_sync(self, assistant_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        ...

    def close(self) -> None:
        """Release transport resources."""
