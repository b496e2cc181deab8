"""
Delayed job scheduler.

A job is a scheduled_calls or scheduled_emails row plus a durable queue
message that calls the matching execution endpoint at ``scheduled_for``.
The queue delivers with zero transport retries: a redelivered placement is a
second real phone call, so retries are decided by the call state updater.

There is no distributed transaction between the database and the queue.
``create_and_schedule`` runs them as a saga: insert the pending row, enqueue,
and on enqueue failure delete the row again so no queued row exists without a
durable job behind it.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Any
from uuid import UUID

import anyio
import httpx

from vetcall.calls.models import ScheduledCall, ScheduledEmail
from vetcall.calls.repository import ScheduledCallRepository, ScheduledEmailRepository
from vetcall.config import get_settings
from vetcall.scheduling.config import QueueConfig
from vetcall.scheduling.qstash import QStashClient
from vetcall.shared.clock import as_utc, utcnow
from vetcall.shared.database import SessionScope
from vetcall.shared.exceptions import ConfigurationError, SchedulingError, UpstreamError
from vetcall.shared.logging import get_logger
from vetcall.shared.side_effects import run_best_effort

logger = get_logger(__name__)

IMMEDIATE_SECRET_HEADER = "X-Immediate-Execution-Secret"

ScheduledRow = ScheduledCall | ScheduledEmail


class JobKind(str, Enum):
    CALL = "call"
    EMAIL = "email"


@dataclass(frozen=True)
class ScheduledJob:
    """Scheduler-facing view of a persisted job."""

    id: UUID
    kind: JobKind
    target_id: UUID
    scheduled_for: datetime
    status: str
    durable_job_id: str | None = None
    retry_policy: str = "none"
    created_at: datetime | None = None


def compute_delay_seconds(scheduled_for: datetime, now: datetime | None = None) -> int:
    """Whole seconds from ``now`` (server clock) until ``scheduled_for``.

    Truncated toward zero: a time less than a second old is due now, a full
    second or more in the past is negative.
    """
    now = as_utc(now) or utcnow()
    return int((as_utc(scheduled_for) - now).total_seconds())


def _repository_for(kind: JobKind, session: Any) -> ScheduledCallRepository | ScheduledEmailRepository:
    if kind == JobKind.CALL:
        return ScheduledCallRepository(session)
    return ScheduledEmailRepository(session)


class DelayedJobScheduler:
    """Schedules call and email executions on the durable queue."""

    def __init__(
        self,
        queue: QStashClient,
        config: QueueConfig,
        session_scope: SessionScope | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            queue: Durable queue publisher.
            config: Queue configuration (execution URLs).
            session_scope: Session factory for ``create_and_schedule``; each
                saga step commits in its own session.
            http_client: Client for ``execute_immediately``, injected in tests.
        """
        self._queue = queue
        self._config = config
        self._session_scope = session_scope
        self._http_client = http_client

    async def schedule_job(
        self,
        kind: JobKind | str,
        target_id: UUID,
        scheduled_for: datetime,
        now: datetime | None = None,
    ) -> str:
        """Enqueue an execution of ``target_id`` at ``scheduled_for``.

        Returns:
            The durable job id.

        Raises:
            SchedulingError: ``scheduled_for`` is in the past (no I/O happens).
            QueuePublishError: the queue rejected the message.
        """
        kind = JobKind(kind)
        delay_seconds = compute_delay_seconds(scheduled_for, now)
        if delay_seconds < 0:
            raise SchedulingError("Scheduled time must be in the future")

        durable_job_id = await self._queue.publish_json(
            self._config.execution_url(kind.value),
            {"targetId": str(target_id)},
            delay_seconds=delay_seconds,
            retries=0,
        )
        logger.info(
            "Job scheduled",
            extra={
                "kind": kind.value,
                "target_id": str(target_id),
                "delay_seconds": delay_seconds,
                "durable_job_id": durable_job_id,
            },
        )
        return durable_job_id

    async def create_and_schedule(
        self,
        kind: JobKind | str,
        row_factory: Callable[[], ScheduledRow],
        scheduled_for: datetime,
    ) -> ScheduledJob:
        """Insert a pending row and enqueue its execution.

        Raises:
            SchedulingError: past ``scheduled_for`` (nothing written), or the
                enqueue failed (row deleted again, ``upstream=True``).
        """
        kind = JobKind(kind)
        if self._session_scope is None:
            raise ConfigurationError("DelayedJobScheduler has no session scope")
        if compute_delay_seconds(scheduled_for) < 0:
            raise SchedulingError("Scheduled time must be in the future")

        async with self._session_scope() as session:
            row = await _repository_for(kind, session).create(row_factory())
        row_id = row.id

        try:
            durable_job_id = await self.schedule_job(kind, row_id, scheduled_for)
        except SchedulingError:
            await self.rollback_pending_row(kind, row_id)
            raise
        except Exception as exc:
            logger.error(
                "Enqueue failed; rolling back pending row",
                extra={"kind": kind.value, "target_id": str(row_id), "error": str(exc)},
            )
            await self.rollback_pending_row(kind, row_id)
            raise SchedulingError(f"Failed to schedule {kind.value} execution", upstream=True) from exc

        await run_best_effort(
            "patch_durable_job_id",
            partial(self._patch_durable_job_id, kind, row_id, durable_job_id),
            kind=kind.value,
            target_id=str(row_id),
        )

        return ScheduledJob(
            id=row_id,
            kind=kind,
            target_id=row_id,
            scheduled_for=scheduled_for,
            status=row.status.value,
            durable_job_id=durable_job_id,
            created_at=row.created_at,
        )

    async def rollback_pending_row(self, kind: JobKind | str, row_id: UUID) -> bool:
        """Compensation for a failed enqueue: delete the pending row."""
        kind = JobKind(kind)

        async def _delete() -> bool:
            async with self._session_scope() as session:
                return await _repository_for(kind, session).delete(row_id)

        deleted = await run_best_effort(
            "rollback_pending_row",
            _delete,
            kind=kind.value,
            target_id=str(row_id),
        )
        if deleted:
            logger.info("Pending row rolled back", extra={"kind": kind.value, "target_id": str(row_id)})
        return bool(deleted)

    async def _patch_durable_job_id(self, kind: JobKind, row_id: UUID, durable_job_id: str) -> None:
        async with self._session_scope() as session:
            await _repository_for(kind, session).set_durable_job_id(row_id, durable_job_id)

    async def execute_immediately(self, kind: JobKind | str, target_id: UUID) -> bool:
        """Call the execution endpoint now, bypassing the queue.

        Returns:
            True when the endpoint answered 2xx.

        Raises:
            ConfigurationError: no immediate execution secret configured.
            UpstreamError: the endpoint could not be reached.
        """
        kind = JobKind(kind)
        secret = get_settings().immediate_execution_secret
        if not secret:
            raise ConfigurationError("IMMEDIATE_EXECUTION_SECRET is not configured")

        url = self._config.execution_url(kind.value)
        response = await anyio.to_thread.run_sync(
            partial(self._post_immediate, url, {"targetId": str(target_id)}, secret)
        )
        if response.is_success:
            logger.info("Immediate execution triggered", extra={"kind": kind.value, "target_id": str(target_id)})
            return True

        logger.warning(
            "Immediate execution rejected",
            extra={"kind": kind.value, "target_id": str(target_id), "status_code": response.status_code},
        )
        return False

    def _post_immediate(self, url: str, body: dict[str, Any], secret: str) -> httpx.Response:
        headers = {IMMEDIATE_SECRET_HEADER: secret, "Content-Type": "application/json"}
        try:
            if self._http_client is not None:
                return self._http_client.post(url, json=body, headers=headers)
            with httpx.Client(timeout=self._config.request_timeout_seconds) as client:
                return client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Immediate execution request failed: {e}") from e
