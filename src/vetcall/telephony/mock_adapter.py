"""
In-memory voice provider for local development and tests.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from vetcall.telephony.interface import (
    AssistantApiError,
    CallInitiationRequest,
    CallInitiationResponse,
    VoiceProvider,
)
from vetcall.telephony.throttle import RequestThrottle


class MockVoiceProvider(VoiceProvider):
    """Records calls and serves assistants from a dict instead of the network."""

    def __init__(
        self,
        assistants: dict[str, dict[str, Any]] | None = None,
        throttle: RequestThrottle | None = None,
    ) -> None:
        self.assistants: dict[str, dict[str, Any]] = assistants or {}
        self.calls: list[CallInitiationRequest] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_next_call: Exception | None = None
        self.throttle = throttle

    def create_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        if self.fail_next_call is not None:
            error, self.fail_next_call = self.fail_next_call, None
            raise error
        self.calls.append(request)
        return CallInitiationResponse(
            provider_call_id=f"mock-call-{uuid4().hex[:12]}",
            status="queued",
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True},
        )

    def get_assistant_sync(self, assistant_id: str) -> dict[str, Any]:
        if assistant_id not in self.assistants:
            raise AssistantApiError(
                f"Assistant {assistant_id} not found",
                error_code="404",
                status_code=404,
            )
        return copy.deepcopy(self.assistants[assistant_id])

    def update_assistant_sync(self, assistant_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        current = self.get_assistant_sync(assistant_id)
        current.update(copy.deepcopy(patch))
        self.assistants[assistant_id] = current
        self.updates.append((assistant_id, patch))
        return copy.deepcopy(current)
