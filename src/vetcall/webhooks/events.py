"""
Voice provider webhook payloads.

Every webhook is ``{"message": {"type": ..., "call": {...}, ...}}``. Known
types are parsed into one model per type through a pydantic discriminated
union; anything else becomes ``UnknownMessage`` so new provider event types
never fail parsing.
"""

import json
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from vetcall.shared.logging import get_logger

logger = get_logger(__name__)


class MessageType(str, Enum):
    TOOL_CALLS = "tool-calls"
    ASSISTANT_REQUEST = "assistant-request"
    TRANSFER_DESTINATION_REQUEST = "transfer-destination-request"
    FUNCTION_CALL = "function-call"
    STATUS_UPDATE = "status-update"
    END_OF_CALL_REPORT = "end-of-call-report"
    HANG = "hang"
    TRANSCRIPT = "transcript"
    SPEECH_UPDATE = "speech-update"
    TRANSFER_UPDATE = "transfer-update"
    CONVERSATION_UPDATE = "conversation-update"
    MODEL_OUTPUT = "model-output"


# The call is paused until the HTTP response for these arrives.
SYNC_MESSAGE_TYPES: frozenset[MessageType] = frozenset(
    {
        MessageType.TOOL_CALLS,
        MessageType.ASSISTANT_REQUEST,
        MessageType.TRANSFER_DESTINATION_REQUEST,
        MessageType.FUNCTION_CALL,
    }
)

ASYNC_MESSAGE_TYPES: frozenset[MessageType] = frozenset(set(MessageType) - SYNC_MESSAGE_TYPES)


class _Model(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class CallInfo(_Model):
    """The ``call`` object embedded in most messages."""

    id: str | None = None
    assistant_id: str | None = Field(default=None, alias="assistantId")
    phone_number_id: str | None = Field(default=None, alias="phoneNumberId")
    type: str | None = None
    status: str | None = None
    started_at: str | None = Field(default=None, alias="startedAt")
    ended_at: str | None = Field(default=None, alias="endedAt")
    ended_reason: str | None = Field(default=None, alias="endedReason")
    recording_url: str | None = Field(default=None, alias="recordingUrl")
    transcript: str | None = None
    messages: list[Any] | None = None
    costs: list[dict[str, Any]] | None = None
    cost: float | None = None
    analysis: dict[str, Any] | None = None
    artifact: dict[str, Any] | None = None
    customer: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class _BaseMessage(_Model):
    call: CallInfo | None = None
    timestamp: Any = None

    @property
    def call_id(self) -> str | None:
        return self.call.id if self.call else None

    @property
    def assistant_id(self) -> str | None:
        return self.call.assistant_id if self.call else None


class ToolCallsMessage(_BaseMessage):
    type: Literal["tool-calls"]
    tool_call_list: list[Any] = Field(default_factory=list, alias="toolCallList")
    tool_with_tool_call_list: list[Any] | None = Field(default=None, alias="toolWithToolCallList")


class AssistantRequestMessage(_BaseMessage):
    type: Literal["assistant-request"]
    phone_number: dict[str, Any] | None = Field(default=None, alias="phoneNumber")


class TransferDestinationRequestMessage(_BaseMessage):
    type: Literal["transfer-destination-request"]


class FunctionCallMessage(_BaseMessage):
    type: Literal["function-call"]
    function_call: dict[str, Any] = Field(default_factory=dict, alias="functionCall")


class StatusUpdateMessage(_BaseMessage):
    type: Literal["status-update"]
    status: str | None = None
    ended_reason: str | None = Field(default=None, alias="endedReason")


class EndOfCallReportMessage(_BaseMessage):
    type: Literal["end-of-call-report"]
    ended_reason: str | None = Field(default=None, alias="endedReason")
    started_at: str | None = Field(default=None, alias="startedAt")
    ended_at: str | None = Field(default=None, alias="endedAt")
    recording_url: str | None = Field(default=None, alias="recordingUrl")
    transcript: str | None = None
    messages: list[Any] | None = None
    summary: str | None = None
    cost: float | None = None
    costs: list[dict[str, Any]] | None = None
    analysis: dict[str, Any] | None = None
    artifact: dict[str, Any] | None = None


class HangMessage(_BaseMessage):
    type: Literal["hang"]


class TranscriptMessage(_BaseMessage):
    type: Literal["transcript"]
    role: str | None = None
    transcript: str | None = None
    transcript_type: str | None = Field(default=None, alias="transcriptType")


class SpeechUpdateMessage(_BaseMessage):
    type: Literal["speech-update"]
    status: str | None = None
    role: str | None = None


class TransferUpdateMessage(_BaseMessage):
    type: Literal["transfer-update"]
    destination: dict[str, Any] | None = None


class ConversationUpdateMessage(_BaseMessage):
    type: Literal["conversation-update"]
    messages: list[Any] | None = None


class ModelOutputMessage(_BaseMessage):
    type: Literal["model-output"]
    output: Any = None


class UnknownMessage(_BaseMessage):
    """Any message type this service does not recognize."""

    type: str


KnownMessage = Annotated[
    Union[
        ToolCallsMessage,
        AssistantRequestMessage,
        TransferDestinationRequestMessage,
        FunctionCallMessage,
        StatusUpdateMessage,
        EndOfCallReportMessage,
        HangMessage,
        TranscriptMessage,
        SpeechUpdateMessage,
        TransferUpdateMessage,
        ConversationUpdateMessage,
        ModelOutputMessage,
    ],
    Field(discriminator="type"),
]

WebhookMessage = Union[
    ToolCallsMessage,
    AssistantRequestMessage,
    TransferDestinationRequestMessage,
    FunctionCallMessage,
    StatusUpdateMessage,
    EndOfCallReportMessage,
    HangMessage,
    TranscriptMessage,
    SpeechUpdateMessage,
    TransferUpdateMessage,
    ConversationUpdateMessage,
    ModelOutputMessage,
    UnknownMessage,
]

_known_message_adapter: TypeAdapter[Any] = TypeAdapter(KnownMessage)
_KNOWN_TYPES = frozenset(member.value for member in MessageType)
_SYNC_TYPES = frozenset(member.value for member in SYNC_MESSAGE_TYPES)


class WebhookPayload(BaseModel):
    """Parsed webhook envelope."""

    message: WebhookMessage
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def message_type(self) -> str:
        return self.message.type


def parse_message(message: dict[str, Any]) -> WebhookMessage:
    """Validate a raw ``message`` object into its typed model.

    Raises:
        pydantic.ValidationError: if a known type has malformed fields.
    """
    if message.get("type") in _KNOWN_TYPES:
        return _known_message_adapter.validate_python(message)
    return UnknownMessage.model_validate(message)


def parse_payload(raw_body: str | bytes | None) -> WebhookPayload | None:
    """Parse a raw webhook body.

    Returns None, never raises, for an empty body, malformed JSON, a
    non-object body, a missing or non-object ``message`` or a missing
    ``message.type``. A message with malformed fields is also None when
    the provider waits on the response; fire-and-forget types degrade to an
    ``UnknownMessage`` carrying only the type, so they are acknowledged
    rather than redelivered.
    """
    if not raw_body:
        return None
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
        logger.warning("Webhook body is not valid JSON")
        return None

    if not isinstance(data, dict):
        return None
    message = data.get("message")
    if not isinstance(message, dict):
        return None
    message_type = message.get("type")
    if not isinstance(message_type, str) or not message_type:
        return None

    try:
        parsed: WebhookMessage = parse_message(message)
    except PydanticValidationError as exc:
        logger.warning(
            "Webhook message failed validation",
            extra={"message_type": message_type, "errors": exc.errors(include_url=False)},
        )
        if message_type in _SYNC_TYPES:
            return None
        parsed = UnknownMessage(type=message_type)

    return WebhookPayload(message=parsed, raw=data)
