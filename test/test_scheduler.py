"""
Tests for DelayedJobScheduler: delay math, the create-then-enqueue saga and
the immediate execution bypass.
"""

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.calls.models import ScheduledCall, ScheduledEmail
from vetcall.scheduling.config import QueueConfig
from vetcall.scheduling.qstash import QueuePublishError
from vetcall.scheduling.scheduler import (
    IMMEDIATE_SECRET_HEADER,
    DelayedJobScheduler,
    JobKind,
    compute_delay_seconds,
)
from vetcall.shared.database import SessionScope
from vetcall.shared.exceptions import ConfigurationError, SchedulingError, UpstreamError

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeQueue:
    """Records publishes; optionally fails them."""

    def __init__(self, error: Exception | None = None) -> None:
        self.published: list[dict[str, Any]] = []
        self._error = error

    async def publish_json(self, url: str, body: dict[str, Any], delay_seconds: int = 0, retries: int = 0) -> str:
        if self._error is not None:
            raise self._error
        self.published.append({"url": url, "body": body, "delay_seconds": delay_seconds, "retries": retries})
        return f"msg-{len(self.published)}"


def call_row(scheduled_for: datetime) -> ScheduledCall:
    return ScheduledCall(
        customer_phone="+15555550123",
        assistant_id="asst-outbound-1",
        scheduled_for=scheduled_for,
        dynamic_variables={},
        extra_metadata={},
    )


async def count_rows(session: AsyncSession, model: type) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.fixture
def config() -> QueueConfig:
    return QueueConfig(token="t", execution_base_url="https://vetcall.test")


class TestComputeDelay:
    def test_whole_seconds(self) -> None:
        assert compute_delay_seconds(NOW + timedelta(seconds=90.9), NOW) == 90

    def test_past_is_negative(self) -> None:
        assert compute_delay_seconds(NOW - timedelta(seconds=1), NOW) < 0

    def test_sub_second_lateness_is_due_now(self) -> None:
        assert compute_delay_seconds(NOW - timedelta(milliseconds=400), NOW) == 0

    def test_naive_treated_as_utc(self) -> None:
        assert compute_delay_seconds((NOW + timedelta(minutes=1)).replace(tzinfo=None), NOW) == 60


class TestScheduleJob:
    @pytest.mark.asyncio
    async def test_publishes_with_zero_retries(self, config: QueueConfig) -> None:
        queue = FakeQueue()
        scheduler = DelayedJobScheduler(queue, config)
        target_id = uuid4()

        job_id = await scheduler.schedule_job(JobKind.CALL, target_id, NOW + timedelta(minutes=10), now=NOW)

        assert job_id == "msg-1"
        assert queue.published == [
            {
                "url": "https://vetcall.test/api/webhooks/execute-call",
                "body": {"targetId": str(target_id)},
                "delay_seconds": 600,
                "retries": 0,
            }
        ]

    @pytest.mark.asyncio
    async def test_past_time_rejected_without_io(self, config: QueueConfig) -> None:
        queue = FakeQueue()
        scheduler = DelayedJobScheduler(queue, config)

        with pytest.raises(SchedulingError) as exc_info:
            await scheduler.schedule_job("email", uuid4(), NOW - timedelta(seconds=5), now=NOW)

        assert exc_info.value.upstream is False
        assert queue.published == []

    @pytest.mark.asyncio
    async def test_due_now_is_allowed(self, config: QueueConfig) -> None:
        queue = FakeQueue()
        await DelayedJobScheduler(queue, config).schedule_job(JobKind.CALL, uuid4(), NOW, now=NOW)
        assert queue.published[0]["delay_seconds"] == 0


class TestCreateAndSchedule:
    @pytest.mark.asyncio
    async def test_inserts_row_and_records_durable_job_id(
        self,
        config: QueueConfig,
        session_scope: SessionScope,
        db_session: AsyncSession,
        future_time: datetime,
    ) -> None:
        scheduler = DelayedJobScheduler(FakeQueue(), config, session_scope=session_scope)

        job = await scheduler.create_and_schedule(JobKind.CALL, lambda: call_row(future_time), future_time)

        assert job.kind == JobKind.CALL
        assert job.status == "queued"
        assert job.durable_job_id == "msg-1"
        assert job.retry_policy == "none"
        row = await db_session.get(ScheduledCall, job.id)
        assert row is not None
        assert row.durable_job_id == "msg-1"

    @pytest.mark.asyncio
    async def test_enqueue_failure_leaves_no_row(
        self,
        config: QueueConfig,
        session_scope: SessionScope,
        db_session: AsyncSession,
        future_time: datetime,
    ) -> None:
        queue = FakeQueue(error=QueuePublishError("queue down", status_code=503))
        scheduler = DelayedJobScheduler(queue, config, session_scope=session_scope)

        with pytest.raises(SchedulingError) as exc_info:
            await scheduler.create_and_schedule(JobKind.CALL, lambda: call_row(future_time), future_time)

        assert exc_info.value.upstream is True
        assert isinstance(exc_info.value.__cause__, QueuePublishError)
        assert await count_rows(db_session, ScheduledCall) == 0

    @pytest.mark.asyncio
    async def test_past_time_writes_nothing(
        self,
        config: QueueConfig,
        session_scope: SessionScope,
        db_session: AsyncSession,
    ) -> None:
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        scheduler = DelayedJobScheduler(FakeQueue(), config, session_scope=session_scope)

        with pytest.raises(SchedulingError) as exc_info:
            await scheduler.create_and_schedule(JobKind.CALL, lambda: call_row(past), past)

        assert exc_info.value.user_message == "Scheduled time must be in the future"
        assert await count_rows(db_session, ScheduledCall) == 0

    @pytest.mark.asyncio
    async def test_durable_id_patch_failure_is_not_fatal(
        self,
        config: QueueConfig,
        session_scope: SessionScope,
        db_session: AsyncSession,
        future_time: datetime,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        scheduler = DelayedJobScheduler(FakeQueue(), config, session_scope=session_scope)

        async def broken_patch(*args: Any) -> None:
            raise RuntimeError("write failed")

        monkeypatch.setattr(scheduler, "_patch_durable_job_id", broken_patch)

        job = await scheduler.create_and_schedule(
            JobKind.EMAIL,
            lambda: ScheduledEmail(
                recipient_email="owner@example.com",
                subject="Discharge",
                html_content="<p>Hi</p>",
                scheduled_for=future_time,
                extra_metadata={},
            ),
            future_time,
        )

        assert job.durable_job_id == "msg-1"
        row = await db_session.get(ScheduledEmail, job.id)
        assert row is not None
        assert row.durable_job_id is None

    @pytest.mark.asyncio
    async def test_requires_session_scope(self, config: QueueConfig, future_time: datetime) -> None:
        with pytest.raises(ConfigurationError):
            await DelayedJobScheduler(FakeQueue(), config).create_and_schedule(
                JobKind.CALL, lambda: call_row(future_time), future_time
            )


class TestExecuteImmediately:
    @pytest.mark.asyncio
    async def test_posts_with_secret_header(self, config: QueueConfig, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMMEDIATE_EXECUTION_SECRET", "bypass-secret")
        http_client = MagicMock(spec=httpx.Client)
        http_client.post.return_value = httpx.Response(
            200, json={"success": True}, request=httpx.Request("POST", "https://vetcall.test")
        )
        scheduler = DelayedJobScheduler(FakeQueue(), config, http_client=http_client)
        target_id = uuid4()

        assert await scheduler.execute_immediately(JobKind.EMAIL, target_id) is True

        args, kwargs = http_client.post.call_args
        assert args[0] == "https://vetcall.test/api/webhooks/execute-email"
        assert kwargs["json"] == {"targetId": str(target_id)}
        assert kwargs["headers"][IMMEDIATE_SECRET_HEADER] == "bypass-secret"

    @pytest.mark.asyncio
    async def test_non_2xx_is_false(self, config: QueueConfig, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMMEDIATE_EXECUTION_SECRET", "bypass-secret")
        http_client = MagicMock(spec=httpx.Client)
        http_client.post.return_value = httpx.Response(
            500, json={"error": "boom"}, request=httpx.Request("POST", "https://vetcall.test")
        )

        scheduler = DelayedJobScheduler(FakeQueue(), config, http_client=http_client)

        assert await scheduler.execute_immediately(JobKind.CALL, uuid4()) is False

    @pytest.mark.asyncio
    async def test_transport_error(self, config: QueueConfig, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMMEDIATE_EXECUTION_SECRET", "bypass-secret")
        http_client = MagicMock(spec=httpx.Client)
        http_client.post.side_effect = httpx.ConnectError("refused")

        scheduler = DelayedJobScheduler(FakeQueue(), config, http_client=http_client)

        with pytest.raises(UpstreamError):
            await scheduler.execute_immediately(JobKind.CALL, uuid4())

    @pytest.mark.asyncio
    async def test_secret_required(self, config: QueueConfig) -> None:
        with pytest.raises(ConfigurationError):
            await DelayedJobScheduler(FakeQueue(), config).execute_immediately(JobKind.CALL, uuid4())
