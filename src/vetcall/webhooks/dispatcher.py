"""
Webhook dispatcher.

Routes a parsed webhook message to its handler. The provider pauses the call
until synchronous types (tool-calls, assistant-request,
transfer-destination-request, function-call) get a response, so their handler
result is returned to the caller exactly as produced. Every other type is
acknowledged regardless of what its handler does; handler failures are logged
and never reach the provider.
"""

from typing import Any, assert_never

from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.calls.updater import CallStateUpdater, RetryScheduler
from vetcall.clinics.repository import ClinicRepository
from vetcall.shared.logging import get_logger
from vetcall.tools.executor import (
    DEFAULT_TOOL_TIMEOUT_SECONDS,
    ExecutionContext,
    execute_function_call,
    execute_tool_calls,
)
from vetcall.tools.registry import ToolRegistry
from vetcall.webhooks.events import (
    AssistantRequestMessage,
    ConversationUpdateMessage,
    EndOfCallReportMessage,
    FunctionCallMessage,
    HangMessage,
    ModelOutputMessage,
    SpeechUpdateMessage,
    StatusUpdateMessage,
    ToolCallsMessage,
    TranscriptMessage,
    TransferDestinationRequestMessage,
    TransferUpdateMessage,
    UnknownMessage,
    WebhookMessage,
    WebhookPayload,
)

logger = get_logger(__name__)

WEBHOOK_PROCESSED: dict[str, Any] = {"success": True, "message": "Webhook processed"}


def unhandled_response(message_type: str) -> dict[str, Any]:
    return {"success": True, "message": f"Unhandled message type: {message_type}"}


class WebhookDispatcher:
    """Dispatches webhook messages by type."""

    def __init__(
        self,
        registry: ToolRegistry,
        retry_scheduler: RetryScheduler | None = None,
        tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
        max_retries: int | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            registry: Tools available to tool-calls and function-call messages.
            retry_scheduler: Passed to the call state updater for retries.
            tool_timeout_seconds: Per-invocation tool deadline.
            max_retries: Default call retry budget.
        """
        self._registry = registry
        self._retry_scheduler = retry_scheduler
        self._tool_timeout_seconds = tool_timeout_seconds
        self._max_retries = max_retries

    def call_state_updater(self, session: AsyncSession) -> CallStateUpdater:
        if self._max_retries is None:
            return CallStateUpdater(session, retry_scheduler=self._retry_scheduler)
        return CallStateUpdater(
            session,
            retry_scheduler=self._retry_scheduler,
            max_retries=self._max_retries,
        )

    async def dispatch(self, payload: WebhookPayload, session: AsyncSession) -> dict[str, Any]:
        """Handle one webhook and build the response body.

        Raises:
            Exception: only from synchronous handlers; the provider must see
                those as a failed request.
        """
        message = payload.message
        logger.info(
            "Webhook received",
            extra={"message_type": message.type, "call_id": message.call_id},
        )

        match message:
            case ToolCallsMessage():
                return await self._handle_tool_calls(message)
            case FunctionCallMessage():
                return await execute_function_call(
                    message.function_call,
                    self._execution_context(message),
                    self._registry,
                    self._tool_timeout_seconds,
                )
            case AssistantRequestMessage():
                return await self._handle_assistant_request(message, session)
            case TransferDestinationRequestMessage():
                return await self._handle_transfer_destination(message, session)
            case StatusUpdateMessage() | EndOfCallReportMessage() | HangMessage():
                await self._run_background_handler(message, session)
                return dict(WEBHOOK_PROCESSED)
            case (
                TranscriptMessage()
                | SpeechUpdateMessage()
                | TransferUpdateMessage()
                | ConversationUpdateMessage()
                | ModelOutputMessage()
            ):
                logger.debug("Informational webhook", extra={"message_type": message.type})
                return dict(WEBHOOK_PROCESSED)
            case UnknownMessage():
                logger.info("Unhandled webhook type", extra={"message_type": message.type})
                return unhandled_response(message.type)
            case _:
                assert_never(message)

    @staticmethod
    def _execution_context(message: WebhookMessage) -> ExecutionContext:
        return ExecutionContext(call_id=message.call_id, assistant_id=message.assistant_id)

    async def _handle_tool_calls(self, message: ToolCallsMessage) -> dict[str, Any]:
        tool_calls = message.tool_call_list
        if not tool_calls and message.tool_with_tool_call_list:
            tool_calls = [
                entry.get("toolCall", entry)
                for entry in message.tool_with_tool_call_list
                if isinstance(entry, dict)
            ]
        return await execute_tool_calls(
            tool_calls,
            self._execution_context(message),
            self._registry,
            self._tool_timeout_seconds,
        )

    async def _handle_assistant_request(
        self, message: AssistantRequestMessage, session: AsyncSession
    ) -> dict[str, Any]:
        phone_number_id = (message.phone_number or {}).get("id") or (
            message.call.phone_number_id if message.call else None
        )
        if not phone_number_id:
            logger.warning("Assistant request without phone number")
            return {"error": "No phone number on assistant request"}

        mapping = await ClinicRepository(session).get_mapping_by_phone_number_id(phone_number_id)
        if mapping is None:
            logger.warning(
                "No assistant mapped to phone number",
                extra={"phone_number_id": phone_number_id},
            )
            return {"error": "No assistant configured for this phone number"}

        logger.info(
            "Assistant resolved",
            extra={"phone_number_id": phone_number_id, "assistant_id": mapping.assistant_id},
        )
        return {"assistantId": mapping.assistant_id}

    async def _handle_transfer_destination(
        self, message: TransferDestinationRequestMessage, session: AsyncSession
    ) -> dict[str, Any]:
        assistant_id = message.assistant_id
        clinic = (
            await ClinicRepository(session).get_clinic_for_assistant(assistant_id)
            if assistant_id
            else None
        )
        if clinic is None or not clinic.transfer_phone_number:
            logger.warning(
                "No transfer destination available",
                extra={"assistant_id": assistant_id, "call_id": message.call_id},
            )
            return {"error": "No transfer destination configured"}

        return {
            "destination": {
                "type": "number",
                "number": clinic.transfer_phone_number,
                "message": f"Transferring you to {clinic.name} now.",
            }
        }

    async def _run_background_handler(
        self,
        message: StatusUpdateMessage | EndOfCallReportMessage | HangMessage,
        session: AsyncSession,
    ) -> None:
        updater = self.call_state_updater(session)
        try:
            match message:
                case StatusUpdateMessage():
                    await updater.handle_status_update(message)
                case EndOfCallReportMessage():
                    await updater.handle_end_of_call_report(message)
                case HangMessage():
                    await updater.handle_hang(message)
        except Exception:
            await session.rollback()
            logger.exception(
                "Webhook handler failed",
                extra={"message_type": message.type, "call_id": message.call_id},
            )
