"""
Executors run by the queue callbacks at the scheduled time.

Each executor checks the persisted status first and reports an
already-processed job instead of acting twice; the queue itself gives no
such guarantee.
"""

from dataclasses import dataclass
from functools import partial
from typing import Any, Protocol
from uuid import UUID

import anyio
import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.calls.lifecycle import map_vapi_status
from vetcall.calls.models import CallStatus, EmailStatus
from vetcall.calls.repository import ScheduledCallRepository, ScheduledEmailRepository
from vetcall.config import Settings, get_settings
from vetcall.shared.clock import utcnow
from vetcall.shared.exceptions import ConfigurationError, NotFoundError, UpstreamError
from vetcall.shared.logging import get_logger
from vetcall.telephony.interface import CallInitiationRequest, VoiceProvider, VoiceProviderError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExecutionOutcome:
    target_id: UUID
    status: str
    executed: bool = False
    already_processed: bool = False
    provider_id: str | None = None


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str | None = None
    to_name: str | None = None


class EmailSender(Protocol):
    """Outbound email delivery."""

    async def send(self, message: EmailMessage) -> str:
        """Send ``message`` and return the provider's message id."""
        ...


class EmailDeliveryError(UpstreamError):
    """The email provider rejected or never received a message."""


class HttpEmailSender:
    """Sends through a Resend-style JSON API (``POST {from, to, subject, html}``)."""

    def __init__(self, settings: Settings | None = None, http_client: httpx.Client | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = http_client

    def send_sync(self, message: EmailMessage) -> str:
        if not self._settings.email_api_key:
            raise ConfigurationError("EMAIL_API_KEY is not configured")

        recipient = f"{message.to_name} <{message.to}>" if message.to_name else message.to
        payload: dict[str, Any] = {
            "from": self._settings.email_from_address,
            "to": [recipient],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text
        headers = {"Authorization": f"Bearer {self._settings.email_api_key}"}

        try:
            if self._client is not None:
                response = self._client.post(self._settings.email_api_url, json=payload, headers=headers)
            else:
                with httpx.Client(timeout=15.0) as client:
                    response = client.post(self._settings.email_api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Email request failed: {e}") from e

        if response.status_code >= 400:
            raise EmailDeliveryError(
                f"Email provider returned HTTP {response.status_code}",
                status_code=response.status_code,
                provider_response={"raw": response.text[:500]},
            )
        return str(response.json().get("id") or "")

    async def send(self, message: EmailMessage) -> str:
        return await anyio.to_thread.run_sync(partial(self.send_sync, message))


class CallExecutor:
    """Places a scheduled call through the (throttled) voice provider."""

    def __init__(
        self,
        session: AsyncSession,
        provider: VoiceProvider,
        default_phone_number_id: str = "",
    ) -> None:
        self._session = session
        self._calls = ScheduledCallRepository(session)
        self._provider = provider
        self._default_phone_number_id = default_phone_number_id

    async def execute(self, call_id: UUID) -> ExecutionOutcome:
        """Place the call unless it was already processed.

        Raises:
            NotFoundError: no such call.
            ConfigurationError: the row has no assistant or phone number.
            UpstreamError: the provider refused the call (row marked failed).
        """
        call = await self._calls.get_by_id(call_id)
        if call is None:
            raise NotFoundError(f"Scheduled call not found: {call_id}")

        if call.status != CallStatus.QUEUED or call.executed_at is not None:
            logger.warning(
                "Call already processed",
                extra={"call_id": str(call_id), "status": call.status.value},
            )
            return ExecutionOutcome(target_id=call_id, status=call.status.value, already_processed=True)

        phone_number_id = call.phone_number_id or self._default_phone_number_id
        if not call.assistant_id:
            raise ConfigurationError("Missing assistant_id configuration")
        if not phone_number_id:
            raise ConfigurationError("Missing phone_number_id configuration")

        executed_at = utcnow()
        if not await self._calls.claim_for_execution(call_id, executed_at):
            return ExecutionOutcome(target_id=call_id, status=call.status.value, already_processed=True)
        await self._session.commit()

        metadata = dict(call.extra_metadata or {})
        request = CallInitiationRequest(
            assistant_id=call.assistant_id,
            phone_number_id=phone_number_id,
            customer_number=call.customer_phone,
            customer_name=call.customer_name,
            variable_values=dict(call.dynamic_variables or {}),
            metadata={"scheduled_call_id": str(call_id), "case_id": str(call.case_id) if call.case_id else None},
        )

        try:
            response = await self._provider.create_call(request)
        except VoiceProviderError as exc:
            await self._mark_failed(call_id, metadata, str(exc))
            logger.error(
                "Call placement failed",
                extra={"call_id": str(call_id), "error_code": exc.error_code},
            )
            raise UpstreamError(
                "Failed to place call",
                status_code=exc.status_code,
                provider_response=exc.provider_response,
            ) from exc
        except Exception as exc:
            # A claimed row never stays queued.
            await self._mark_failed(call_id, metadata, str(exc) or type(exc).__name__)
            logger.exception("Unexpected error placing call", extra={"call_id": str(call_id)})
            raise

        status = map_vapi_status(response.status)
        metadata["executed_at"] = executed_at.isoformat()
        await self._calls.update_fields(
            call_id,
            {"provider_call_id": response.provider_call_id, "status": status, "metadata": metadata},
        )
        await self._session.commit()

        logger.info(
            "Call executed",
            extra={
                "call_id": str(call_id),
                "provider_call_id": response.provider_call_id,
                "status": status.value,
            },
        )
        return ExecutionOutcome(
            target_id=call_id,
            status=status.value,
            executed=True,
            provider_id=response.provider_call_id,
        )

    async def _mark_failed(self, call_id: UUID, metadata: dict[str, Any], error: str) -> None:
        metadata["last_error"] = error
        await self._calls.update_fields(
            call_id,
            {"status": CallStatus.FAILED, "ended_reason": "call-start-error", "metadata": metadata},
        )
        await self._session.commit()


class EmailExecutor:
    """Sends a scheduled email."""

    def __init__(self, session: AsyncSession, sender: EmailSender) -> None:
        self._session = session
        self._emails = ScheduledEmailRepository(session)
        self._sender = sender

    async def execute(self, email_id: UUID) -> ExecutionOutcome:
        email = await self._emails.get_by_id(email_id)
        if email is None:
            raise NotFoundError(f"Scheduled email not found: {email_id}")

        if email.status != EmailStatus.QUEUED:
            logger.warning(
                "Email already processed",
                extra={"email_id": str(email_id), "status": email.status.value},
            )
            return ExecutionOutcome(target_id=email_id, status=email.status.value, already_processed=True)

        message = EmailMessage(
            to=email.recipient_email,
            to_name=email.recipient_name,
            subject=email.subject,
            html=email.html_content,
            text=email.text_content,
        )
        try:
            message_id = await self._sender.send(message)
        except UpstreamError as exc:
            await self._emails.update_fields(
                email_id,
                {"status": EmailStatus.FAILED, "last_error": str(exc)},
            )
            await self._session.commit()
            logger.error("Email send failed", extra={"email_id": str(email_id), "error": str(exc)})
            raise

        await self._emails.update_fields(
            email_id,
            {"status": EmailStatus.SENT, "sent_at": utcnow(), "provider_message_id": message_id or None},
        )
        await self._session.commit()
        logger.info("Email sent", extra={"email_id": str(email_id), "provider_message_id": message_id})
        return ExecutionOutcome(
            target_id=email_id,
            status=EmailStatus.SENT.value,
            executed=True,
            provider_id=message_id or None,
        )
