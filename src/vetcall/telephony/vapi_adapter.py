"""
Vapi voice provider adapter.

Uses a blocking httpx client; the async entrypoints inherited from
VoiceProvider run these methods in a worker thread.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from vetcall.telephony.config import VoiceProviderConfig, get_voice_provider_config
from vetcall.telephony.interface import (
    AssistantApiError,
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    VoiceProvider,
)
from vetcall.telephony.throttle import RequestThrottle

logger = logging.getLogger(__name__)


def _error_body(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {"message": response.text}
    return data if isinstance(data, dict) else {"message": data}


def _error_message(data: dict[str, Any], default: str) -> str:
    message = data.get("message") or data.get("error") or default
    if isinstance(message, list):
        message = "; ".join(str(m) for m in message)
    return str(message)


class VapiAdapter(VoiceProvider):
    """Vapi REST API adapter."""

    def __init__(
        self,
        config: VoiceProviderConfig | None = None,
        http_client: httpx.Client | None = None,
        throttle: RequestThrottle | None = None,
    ) -> None:
        self._config = config or get_voice_provider_config()
        self._http_client = http_client
        self._owns_client = http_client is None
        self.throttle = throttle

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(
                timeout=httpx.Timeout(self._config.request_timeout_seconds)
            )
        return self._http_client

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.private_key}",
            "Content-Type": "application/json",
        }

    def create_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Place an outbound call via POST /call."""
        client = self._get_client()

        payload: dict[str, Any] = {
            "assistantId": request.assistant_id,
            "phoneNumberId": request.phone_number_id or self._config.phone_number_id,
            "customer": {"number": request.customer_number},
        }
        if request.customer_name:
            payload["customer"]["name"] = request.customer_name
        if request.variable_values:
            payload["assistantOverrides"] = {"variableValues": request.variable_values}
        if request.metadata:
            payload["metadata"] = request.metadata

        logger.info(
            "Initiating Vapi call",
            extra={
                "assistant_id": request.assistant_id,
                "customer_number": request.customer_number,
            },
        )

        try:
            response = client.post(
                self._config.get_api_url("/call"),
                json=payload,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.exception(
                "HTTP error during Vapi call initiation",
                extra={"assistant_id": request.assistant_id},
            )
            raise CallInitiationError(
                message=f"HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        if response.status_code >= 400:
            error_data = _error_body(response)
            logger.error(
                "Vapi call initiation failed",
                extra={
                    "status_code": response.status_code,
                    "error": error_data,
                    "assistant_id": request.assistant_id,
                },
            )
            raise CallInitiationError(
                message=_error_message(error_data, "Call initiation failed"),
                error_code=str(response.status_code),
                provider_response=error_data,
                status_code=response.status_code,
            )

        try:
            data = response.json()
            created_at = data.get("createdAt")
            return CallInitiationResponse(
                provider_call_id=str(data["id"]),
                status=data.get("status", "queued"),
                created_at=datetime.fromisoformat(created_at.replace("Z", "+00:00"))
                if created_at
                else datetime.now(timezone.utc),
                raw_response=data,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(
                "Unreadable Vapi call response",
                extra={"status_code": response.status_code, "assistant_id": request.assistant_id},
            )
            raise CallInitiationError(
                message=f"Invalid call response: {e!s}",
                error_code="INVALID_RESPONSE",
                provider_response={"body": response.text},
                status_code=response.status_code,
            ) from e

    def get_assistant_sync(self, assistant_id: str) -> dict[str, Any]:
        """Fetch an assistant via GET /assistant/{id}."""
        return self._assistant_request("GET", assistant_id)

    def update_assistant_sync(self, assistant_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Partially update an assistant via PATCH /assistant/{id}."""
        logger.info(
            "Updating Vapi assistant",
            extra={"assistant_id": assistant_id, "fields": sorted(patch.keys())},
        )
        return self._assistant_request("PATCH", assistant_id, patch)

    def _assistant_request(
        self,
        method: str,
        assistant_id: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = client.request(
                method,
                self._config.get_api_url(f"/assistant/{assistant_id}"),
                json=body,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise AssistantApiError(
                message=f"HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        if response.status_code >= 400:
            error_data = _error_body(response)
            logger.error(
                "Vapi assistant request failed",
                extra={
                    "method": method,
                    "status_code": response.status_code,
                    "assistant_id": assistant_id,
                    "error": error_data,
                },
            )
            raise AssistantApiError(
                message=_error_message(error_data, f"Assistant {method} failed"),
                error_code=str(response.status_code),
                provider_response=error_data,
                status_code=response.status_code,
            )
        return response.json()
