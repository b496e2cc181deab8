"""
Call lifecycle rules.

Pure functions mapping voice-provider call data onto the persisted
``CallStatus`` and deciding which transitions are allowed.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from vetcall.calls.models import CallStatus
from vetcall.shared.clock import parse_timestamp

DEFAULT_MAX_RETRIES = 3

# Provider call.status -> persisted status
PROVIDER_STATUS_MAP: dict[str, CallStatus] = {
    "queued": CallStatus.QUEUED,
    "ringing": CallStatus.RINGING,
    "in-progress": CallStatus.IN_PROGRESS,
    "forwarding": CallStatus.IN_PROGRESS,
    "ended": CallStatus.COMPLETED,
}

FAILED_ENDED_REASONS: tuple[str, ...] = (
    "dial-busy",
    "dial-failed",
    "dial-no-answer",
    "assistant-error",
    "exceeded-max-duration",
    "voicemail",
    "assistant-not-found",
    "assistant-not-invalid",
    "assistant-not-provided",
    "assistant-request-failed",
    "assistant-request-returned-error",
    "assistant-request-returned-unspeakable-error",
    "assistant-request-returned-invalid-json",
    "assistant-request-returned-no-content",
    "twilio-failed-to-connect-call",
    "vonage-rejected",
)

RETRYABLE_REASONS: tuple[str, ...] = ("dial-busy", "dial-no-answer", "voicemail")

SUCCESSFUL_ENDED_REASONS: frozenset[str] = frozenset({"assistant-ended-call", "customer-ended-call"})

TERMINAL_STATUSES: frozenset[CallStatus] = frozenset({CallStatus.FAILED, CallStatus.CANCELED})

ENDED_STATUSES: frozenset[CallStatus] = TERMINAL_STATUSES | {CallStatus.COMPLETED}

_LIFECYCLE_ORDER: dict[CallStatus, int] = {
    CallStatus.QUEUED: 0,
    CallStatus.RINGING: 1,
    CallStatus.IN_PROGRESS: 2,
    CallStatus.COMPLETED: 3,
}


def map_vapi_status(status: str | None) -> CallStatus:
    """Map a provider call status to the persisted status (unknown -> queued)."""
    if not status:
        return CallStatus.QUEUED
    return PROVIDER_STATUS_MAP.get(status, CallStatus.QUEUED)


def _voicemail_outcome(ended_reason: str, metadata: Mapping[str, Any] | None) -> bool | None:
    """Hung-up-on-voicemail flag when voicemail detection governs this call.

    None means the call's voicemail settings do not apply and the regular
    reason lists decide.
    """
    if "voicemail" not in ended_reason.lower():
        return None
    if not metadata or metadata.get("voicemail_detection_enabled") is not True:
        return None
    return metadata.get("voicemail_hangup_on_detection") is True


def should_mark_as_failed(ended_reason: str | None, metadata: Mapping[str, Any] | None = None) -> bool:
    """Whether ``ended_reason`` contains a known failure reason.

    With voicemail detection enabled, a voicemail ending only counts as a
    failure when the assistant hung up instead of leaving a message.
    """
    if not ended_reason:
        return False
    hung_up = _voicemail_outcome(ended_reason, metadata)
    if hung_up is not None:
        return hung_up
    lowered = ended_reason.lower()
    return any(reason in lowered for reason in FAILED_ENDED_REASONS)


def map_ended_reason_to_status(ended_reason: str | None, metadata: Mapping[str, Any] | None = None) -> CallStatus:
    """Derive the final status from the provider's ``endedReason``.

    ``metadata`` is the call's stored metadata; its voicemail settings
    decide whether a voicemail ending is a completed call or a failure.
    """
    if not ended_reason:
        return CallStatus.COMPLETED
    if ended_reason in SUCCESSFUL_ENDED_REASONS:
        return CallStatus.COMPLETED
    if "cancelled" in ended_reason or "canceled" in ended_reason:
        return CallStatus.CANCELED
    if should_mark_as_failed(ended_reason, metadata):
        return CallStatus.FAILED
    return CallStatus.COMPLETED


def should_retry(ended_reason: str | None, metadata: Mapping[str, Any] | None = None) -> bool:
    if not ended_reason:
        return False
    hung_up = _voicemail_outcome(ended_reason, metadata)
    if hung_up is not None:
        return hung_up
    lowered = ended_reason.lower()
    return any(reason in lowered for reason in RETRYABLE_REASONS)


def calculate_retry_delay(retry_count: int) -> int:
    """Exponential backoff in minutes: 5, 10, 20, ..."""
    return (2**retry_count) * 5


def is_forward_transition(current: CallStatus | None, new: CallStatus) -> bool:
    """Whether moving from ``current`` to ``new`` is allowed.

    Forward order is queued -> ringing -> in_progress -> completed. Failed
    and canceled can be entered from any non-terminal state and never left.
    Re-applying the same status is allowed so that field updates carried by
    duplicate events still land.
    """
    if current is None:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if new in TERMINAL_STATUSES:
        return True
    if current == CallStatus.COMPLETED:
        return new == CallStatus.COMPLETED
    return _LIFECYCLE_ORDER[new] >= _LIFECYCLE_ORDER[current]


def calculate_duration(started_at: str | datetime | None, ended_at: str | datetime | None) -> int | None:
    start = parse_timestamp(started_at)
    end = parse_timestamp(ended_at)
    if start is None or end is None:
        return None
    return int((end - start).total_seconds())


def calculate_total_cost(costs: Iterable[Mapping[str, Any]] | None) -> float:
    if not costs:
        return 0.0
    total = 0.0
    for entry in costs:
        try:
            total += float(entry.get("cost") or 0)
        except (TypeError, ValueError):
            continue
    return total


def extract_sentiment(analysis: Mapping[str, Any] | None) -> str:
    """Collapse the provider's success evaluation into positive/negative/neutral."""
    if not analysis or not analysis.get("successEvaluation"):
        return "neutral"
    evaluation = str(analysis["successEvaluation"]).lower()
    if "success" in evaluation or "positive" in evaluation:
        return "positive"
    if "fail" in evaluation or "negative" in evaluation:
        return "negative"
    return "neutral"
