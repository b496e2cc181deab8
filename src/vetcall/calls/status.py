"""
Read-side status derivation for the outbound discharge list.

These functions never write; dashboards call them per case to summarize the
paired call and email.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from vetcall.shared.clock import as_utc, utcnow


class DischargeStatus(str, Enum):
    FAILED = "failed"
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    SCHEDULED = "scheduled"
    READY = "ready"
    PENDING_REVIEW = "pending_review"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    PENDING = "pending"
    FAILED = "failed"
    NOT_APPLICABLE = "not_applicable"


class FailureCategory(str, Enum):
    SILENCE_TIMEOUT = "silence_timeout"
    NO_ANSWER = "no_answer"
    CONNECTION_ERROR = "connection_error"
    VOICEMAIL = "voicemail"
    EMAIL_FAILED = "email_failed"
    OTHER = "other"


@dataclass(frozen=True)
class DischargeSnapshot:
    """Persisted state of one case's discharge call and email."""

    call_status: str | None = None
    call_scheduled_for: datetime | None = None
    email_status: str | None = None
    email_scheduled_for: datetime | None = None
    has_discharge_summary: bool = False
    case_status: str | None = None


def _is_future(value: datetime | None, now: datetime) -> bool:
    value = as_utc(value)
    return value is not None and value > now


def derive_discharge_status(snapshot: DischargeSnapshot, now: datetime | None = None) -> DischargeStatus:
    """Summarize a case's discharge delivery.

    Precedence is fixed: failed, completed, in_progress, scheduled, ready,
    then pending_review.
    """
    now = as_utc(now) or utcnow()
    call_status = snapshot.call_status
    email_status = snapshot.email_status

    if call_status == "failed" or email_status == "failed":
        return DischargeStatus.FAILED

    call_done = call_status in (None, "completed")
    email_done = email_status in (None, "sent")
    anything_happened = call_status == "completed" or email_status == "sent"
    if call_done and email_done and anything_happened:
        return DischargeStatus.COMPLETED

    if call_status in ("ringing", "in_progress"):
        return DischargeStatus.IN_PROGRESS

    queued_times = []
    if call_status == "queued":
        queued_times.append(snapshot.call_scheduled_for)
    if email_status == "queued":
        queued_times.append(snapshot.email_scheduled_for)

    if any(_is_future(scheduled_for, now) for scheduled_for in queued_times):
        return DischargeStatus.SCHEDULED
    if queued_times:
        return DischargeStatus.READY

    return DischargeStatus.PENDING_REVIEW


def derive_delivery_status(status: str | None, has_contact_info: bool) -> DeliveryStatus | None:
    """Per-channel column status for a call or email.

    None means the channel was never scheduled for a recipient we can reach.
    """
    if not has_contact_info:
        return DeliveryStatus.NOT_APPLICABLE
    match status:
        case "completed" | "sent":
            return DeliveryStatus.SENT
        case "queued" | "ringing" | "in_progress":
            return DeliveryStatus.PENDING
        case "failed":
            return DeliveryStatus.FAILED
        case _:
            return None


def categorize_failure(
    call_ended_reason: str | None,
    call_status: str | None,
    email_status: str | None,
) -> FailureCategory | None:
    """Bucket a failed discharge for the failures filter."""
    if call_status != "failed" and email_status != "failed":
        return None
    if email_status == "failed" and call_status != "failed":
        return FailureCategory.EMAIL_FAILED

    reason = (call_ended_reason or "").lower()
    if "silence-timed-out" in reason or "silence_timed_out" in reason:
        return FailureCategory.SILENCE_TIMEOUT
    if any(token in reason for token in ("no-answer", "did-not-answer", "no_answer")):
        return FailureCategory.NO_ANSWER
    if "voicemail" in reason:
        return FailureCategory.VOICEMAIL
    if any(token in reason for token in ("error", "failed-to-connect", "sip")):
        return FailureCategory.CONNECTION_ERROR
    return FailureCategory.OTHER
