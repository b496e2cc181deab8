"""
Call state updater for terminal and mid-call webhook events.

Webhook deliveries may arrive out of order or more than once, so every
handler reads the persisted row first and never moves a call backwards or
out of a terminal status.
"""

from datetime import timedelta
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.calls.attention import apply_attention, derive_attention
from vetcall.calls.lifecycle import (
    DEFAULT_MAX_RETRIES,
    ENDED_STATUSES,
    TERMINAL_STATUSES,
    calculate_duration,
    calculate_retry_delay,
    calculate_total_cost,
    extract_sentiment,
    is_forward_transition,
    map_ended_reason_to_status,
    map_vapi_status,
    should_retry,
)
from vetcall.calls.models import CallStatus, ScheduledCall
from vetcall.calls.repository import CaseRepository, ScheduledCallRepository
from vetcall.shared.clock import parse_timestamp, utcnow
from vetcall.shared.logging import get_logger
from vetcall.webhooks.events import (
    CallInfo,
    EndOfCallReportMessage,
    HangMessage,
    StatusUpdateMessage,
)

logger = get_logger(__name__)


class RetryScheduler(Protocol):
    """What the updater needs from the delayed job scheduler."""

    async def schedule_job(self, kind: str, target_id: UUID, scheduled_for: Any) -> str:
        ...


class CallStateUpdater:
    """Applies provider call events to the persisted ScheduledCall."""

    def __init__(
        self,
        session: AsyncSession,
        retry_scheduler: RetryScheduler | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        """Initialize the updater.

        Args:
            session: Async database session (committed by this class).
            retry_scheduler: Re-enqueues retryable failed calls. Without it,
                retryable failures stay failed.
            max_retries: Retry budget when the row does not carry its own.
        """
        self._session = session
        self._calls = ScheduledCallRepository(session)
        self._cases = CaseRepository(session)
        self._retry_scheduler = retry_scheduler
        self._max_retries = max_retries

    async def _find_call(self, call_info: CallInfo | None, event: str) -> ScheduledCall | None:
        provider_call_id = call_info.id if call_info else None
        if not provider_call_id:
            logger.warning("Webhook missing call data", extra={"event": event})
            return None
        call = await self._calls.get_by_provider_call_id(provider_call_id)
        if call is None:
            logger.warning(
                "Call not found in database",
                extra={"event": event, "provider_call_id": provider_call_id},
            )
        return call

    async def handle_status_update(self, message: StatusUpdateMessage) -> bool:
        """Move the call forward on a provider status change.

        Returns:
            True if the row was updated.
        """
        call = await self._find_call(message.call, "status-update")
        if call is None:
            return False

        raw_status = message.status or (message.call.status if message.call else None)
        new_status = map_vapi_status(raw_status)
        if not is_forward_transition(call.status, new_status):
            logger.info(
                "Ignoring out-of-order status update",
                extra={
                    "call_id": str(call.id),
                    "current_status": call.status.value,
                    "incoming_status": new_status.value,
                },
            )
            return False

        values: dict[str, Any] = {"status": new_status}
        started_at = parse_timestamp(message.call.started_at if message.call else None)
        if started_at is not None:
            values["started_at"] = started_at

        await self._calls.update_fields(call.id, values)
        await self._session.commit()

        logger.info(
            "Call status updated",
            extra={"call_id": str(call.id), "status": new_status.value, "provider_status": raw_status},
        )
        return True

    async def handle_hang(self, message: HangMessage) -> bool:
        """Record a hangup unless the call has already ended.

        A hang arriving after the end-of-call report must not replace the
        report's reason and end time.
        """
        call = await self._find_call(message.call, "hang")
        if call is None:
            return False

        reported = (call.extra_metadata or {}).get("reported_call_ids", [])
        if call.status in ENDED_STATUSES or call.provider_call_id in reported:
            logger.info(
                "Ignoring hang for ended call",
                extra={
                    "call_id": str(call.id),
                    "status": call.status.value,
                    "ended_reason": call.ended_reason,
                },
            )
            return False

        call_info = message.call or CallInfo()
        await self._calls.update_fields(
            call.id,
            {
                "ended_reason": call_info.ended_reason or "user-hangup",
                "ended_at": parse_timestamp(call_info.ended_at) or utcnow(),
            },
        )
        await self._session.commit()
        logger.info("Hangup processed", extra={"call_id": str(call.id)})
        return True

    async def handle_end_of_call_report(self, message: EndOfCallReportMessage) -> bool:
        """Persist the final report: outcome, timings, cost, analysis, attention.

        Returns:
            True if the row was updated, False for unknown calls and
            duplicate reports.
        """
        call = await self._find_call(message.call, "end-of-call-report")
        if call is None:
            return False

        call_info = message.call or CallInfo()
        provider_call_id = call_info.id
        # Captured up front: the escalation below may roll the session back.
        call_id = call.id
        case_id = call.case_id
        current_status = call.status
        metadata = dict(call.extra_metadata or {})

        reported = list(metadata.get("reported_call_ids", []))
        if provider_call_id in reported:
            logger.info(
                "Duplicate end-of-call report skipped",
                extra={"call_id": str(call_id), "provider_call_id": provider_call_id},
            )
            return False

        update = self._report_fields(message, call_info)
        ended_reason = update.get("ended_reason")

        final_status = map_ended_reason_to_status(ended_reason, metadata)
        re_armed = False
        if (
            final_status == CallStatus.FAILED
            and should_retry(ended_reason, metadata)
            and current_status not in TERMINAL_STATUSES
        ):
            re_armed = await self._schedule_retry(call_id, provider_call_id, ended_reason, metadata, update)
            if re_armed:
                final_status = CallStatus.QUEUED

        if re_armed or is_forward_transition(current_status, final_status):
            update["status"] = final_status
        else:
            logger.info(
                "Keeping terminal status on late end-of-call report",
                extra={
                    "call_id": str(call_id),
                    "current_status": current_status.value,
                    "incoming_status": final_status.value,
                },
            )

        reported.append(provider_call_id)
        metadata["reported_call_ids"] = reported
        update["metadata"] = metadata

        classification = derive_attention(update.get("structured_output"))
        await apply_attention(
            call_id=call_id,
            case_id=case_id,
            classification=classification,
            update_set=update,
            escalate=self._escalate_case,
        )

        await self._calls.update_fields(call_id, update)
        await self._session.commit()

        logger.info(
            "Call ended",
            extra={
                "call_id": str(call_id),
                "status": update.get("status", current_status).value,
                "ended_reason": ended_reason,
                "duration_seconds": update.get("duration_seconds"),
                "cost": update.get("cost"),
            },
        )
        return True

    def _report_fields(self, message: EndOfCallReportMessage, call_info: CallInfo) -> dict[str, Any]:
        analysis = message.analysis or call_info.analysis or {}
        artifact = message.artifact or call_info.artifact or {}
        started_at = message.started_at or call_info.started_at
        ended_at = message.ended_at or call_info.ended_at
        costs = message.costs or call_info.costs
        cost = message.cost if message.cost is not None else call_info.cost
        success_evaluation = analysis.get("successEvaluation")

        fields: dict[str, Any] = {
            "ended_reason": message.ended_reason or call_info.ended_reason,
            "started_at": parse_timestamp(started_at),
            "ended_at": parse_timestamp(ended_at),
            "duration_seconds": calculate_duration(started_at, ended_at),
            "recording_url": message.recording_url
            or call_info.recording_url
            or artifact.get("recordingUrl"),
            "transcript": message.transcript or call_info.transcript or artifact.get("transcript"),
            "transcript_messages": message.messages or call_info.messages or artifact.get("messages"),
            "call_analysis": analysis or None,
            "summary": analysis.get("summary") or message.summary,
            "success_evaluation": str(success_evaluation) if success_evaluation is not None else None,
            "user_sentiment": extract_sentiment(analysis),
            "cost": cost if cost is not None else calculate_total_cost(costs),
            "structured_output": analysis.get("structuredData") or artifact.get("structuredOutputs"),
        }
        return {key: value for key, value in fields.items() if value is not None}

    async def _schedule_retry(
        self,
        call_id: UUID,
        provider_call_id: str | None,
        ended_reason: str | None,
        metadata: dict[str, Any],
        update: dict[str, Any],
    ) -> bool:
        """Re-enqueue a retryable failure. Mutates ``metadata``/``update``."""
        retry_count = int(metadata.get("retry_count") or 0)
        row_budget = metadata.get("max_retries")
        max_retries = int(row_budget) if row_budget is not None else self._max_retries

        if retry_count >= max_retries:
            logger.info(
                "Max retries reached",
                extra={"call_id": str(call_id), "retry_count": retry_count, "max_retries": max_retries},
            )
            metadata["final_failure"] = True
            metadata["final_failure_reason"] = ended_reason
            return False

        if self._retry_scheduler is None:
            return False

        delay_minutes = calculate_retry_delay(retry_count)
        next_retry_at = utcnow() + timedelta(minutes=delay_minutes)
        try:
            durable_job_id = await self._retry_scheduler.schedule_job("call", call_id, next_retry_at)
        except Exception:
            logger.exception(
                "Failed to schedule retry",
                extra={"call_id": str(call_id), "retry_count": retry_count + 1},
            )
            return False

        previous = list(metadata.get("previous_provider_call_ids", []))
        if provider_call_id:
            previous.append(provider_call_id)
        metadata.update(
            retry_count=retry_count + 1,
            next_retry_at=next_retry_at.isoformat(),
            last_retry_reason=ended_reason,
            previous_provider_call_ids=previous,
        )
        update["scheduled_for"] = next_retry_at
        update["durable_job_id"] = durable_job_id
        update["provider_call_id"] = None
        update["executed_at"] = None

        logger.info(
            "Retry scheduled",
            extra={
                "call_id": str(call_id),
                "retry_count": retry_count + 1,
                "delay_minutes": delay_minutes,
                "durable_job_id": durable_job_id,
            },
        )
        return True

    async def _escalate_case(self, case_id: UUID) -> None:
        """Mark the parent case urgent in its own transaction."""
        try:
            await self._cases.mark_urgent(case_id)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
        logger.info("Case escalated to urgent", extra={"case_id": str(case_id)})
