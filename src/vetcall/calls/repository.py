"""
Repositories for scheduled calls, scheduled emails and cases.

Writes flush but never commit; the caller owns the transaction boundary.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.calls.models import CallStatus, EmailStatus, ScheduledCall, ScheduledEmail
from vetcall.clinics.models import Case


class ScheduledCallRepository:
    """Repository for scheduled call database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def create(self, call: ScheduledCall) -> ScheduledCall:
        """Insert a new scheduled call row."""
        self._session.add(call)
        await self._session.flush()
        await self._session.refresh(call)
        return call

    async def get_by_id(self, call_id: UUID) -> ScheduledCall | None:
        stmt = select(ScheduledCall).where(ScheduledCall.id == call_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_provider_call_id(self, provider_call_id: str) -> ScheduledCall | None:
        """Get a call by the voice provider's call id."""
        stmt = select(ScheduledCall).where(ScheduledCall.provider_call_id == provider_call_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_fields(self, call_id: UUID, values: dict[str, Any]) -> None:
        """Apply a partial update.

        Args:
            call_id: Row id.
            values: Column name to value mapping. ``metadata`` is accepted as
                an alias for the ``extra_metadata`` attribute.
        """
        if not values:
            return
        values = dict(values)
        if "metadata" in values:
            values["extra_metadata"] = values.pop("metadata")
        stmt = (
            update(ScheduledCall)
            .where(ScheduledCall.id == call_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def delete(self, call_id: UUID) -> bool:
        result = await self._session.execute(
            delete(ScheduledCall).where(ScheduledCall.id == call_id)
        )
        await self._session.flush()
        return bool(result.rowcount)

    async def set_durable_job_id(self, call_id: UUID, durable_job_id: str) -> None:
        await self.update_fields(call_id, {"durable_job_id": durable_job_id})

    async def claim_for_execution(self, call_id: UUID, executed_at: datetime) -> bool:
        """Atomically stamp ``executed_at`` on a queued, unexecuted call.

        Returns False if another delivery already claimed it.
        """
        result = await self._session.execute(
            update(ScheduledCall)
            .where(
                ScheduledCall.id == call_id,
                ScheduledCall.status == CallStatus.QUEUED,
                ScheduledCall.executed_at.is_(None),
            )
            .values(executed_at=executed_at)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.flush()
        return bool(result.rowcount)

    async def cancel(self, call_id: UUID) -> bool:
        """Mark a queued call canceled. Returns False if it was no longer queued."""
        result = await self._session.execute(
            update(ScheduledCall)
            .where(ScheduledCall.id == call_id, ScheduledCall.status == CallStatus.QUEUED)
            .values(status=CallStatus.CANCELED)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.flush()
        return bool(result.rowcount)


class ScheduledEmailRepository:
    """Repository for scheduled email database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, email: ScheduledEmail) -> ScheduledEmail:
        self._session.add(email)
        await self._session.flush()
        await self._session.refresh(email)
        return email

    async def get_by_id(self, email_id: UUID) -> ScheduledEmail | None:
        stmt = select(ScheduledEmail).where(ScheduledEmail.id == email_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_fields(self, email_id: UUID, values: dict[str, Any]) -> None:
        if not values:
            return
        stmt = (
            update(ScheduledEmail)
            .where(ScheduledEmail.id == email_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def delete(self, email_id: UUID) -> bool:
        result = await self._session.execute(
            delete(ScheduledEmail).where(ScheduledEmail.id == email_id)
        )
        await self._session.flush()
        return bool(result.rowcount)

    async def set_durable_job_id(self, email_id: UUID, durable_job_id: str) -> None:
        await self.update_fields(email_id, {"durable_job_id": durable_job_id})

    async def cancel(self, email_id: UUID) -> bool:
        result = await self._session.execute(
            update(ScheduledEmail)
            .where(ScheduledEmail.id == email_id, ScheduledEmail.status == EmailStatus.QUEUED)
            .values(status=EmailStatus.CANCELED)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.flush()
        return bool(result.rowcount)


class CaseRepository:
    """Repository for the case fields this service writes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, case_id: UUID) -> Case | None:
        result = await self._session.execute(select(Case).where(Case.id == case_id))
        return result.scalar_one_or_none()

    async def mark_urgent(self, case_id: UUID) -> None:
        """Flag a case as urgent (critical attention escalation)."""
        await self._session.execute(
            update(Case)
            .where(Case.id == case_id)
            .values(is_urgent=True)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.flush()
