"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file database so that the scheduler's session
scope, the API's per-request session and the test's own session behave like
separate connections, as they do against Postgres.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from vetcall.calls.models import CallStatus, ScheduledCall, ScheduledEmail
from vetcall.clinics.models import AssistantType, Case, Clinic, ClinicAssistant
from vetcall.shared.database import Base, SessionScope

BUSINESS_HOURS: dict[str, Any] = {
    "monday": {"open": "08:00", "close": "10:00"},
    "tuesday": {"open": "08:00", "close": "17:30"},
    "wednesday": {"open": "08:00", "close": "17:30"},
    "thursday": {"open": "08:00", "close": "17:30"},
    "friday": {"open": "09:00", "close": "13:00"},
    "saturday": {"open": "09:00", "close": "12:00"},
    "sunday": {"closed": True},
}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's .env or shell secrets out of the tests."""
    for name in (
        "VAPI_WEBHOOK_SECRET",
        "IMMEDIATE_EXECUTION_SECRET",
        "VAPI_ASSISTANT_ID",
        "VAPI_PHONE_NUMBER_ID",
        "VAPI_PROVIDER_TYPE",
        "QSTASH_TOKEN",
        "QSTASH_CURRENT_SIGNING_KEY",
        "QSTASH_NEXT_SIGNING_KEY",
        "QSTASH_EXECUTION_BASE_URL",
        "EMAIL_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://vetcall.test")


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vetcall.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_scope(session_factory: async_sessionmaker[AsyncSession]) -> SessionScope:
    """Same contract as DatabaseManager.session: commit on clean exit."""

    @asynccontextmanager
    async def _scope() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return _scope


@pytest.fixture
def future_time() -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=2)


@pytest_asyncio.fixture
async def clinic(db_session: AsyncSession) -> Clinic:
    clinic = Clinic(
        slug="happy-paws",
        name="Happy Paws Veterinary",
        transfer_phone_number="+15555550100",
        business_hours=BUSINESS_HOURS,
    )
    db_session.add(clinic)
    await db_session.commit()
    await db_session.refresh(clinic)
    return clinic


@pytest_asyncio.fixture
async def inbound_assistant(db_session: AsyncSession, clinic: Clinic) -> ClinicAssistant:
    mapping = ClinicAssistant(
        clinic_id=clinic.id,
        assistant_id="asst-inbound-1",
        assistant_type=AssistantType.INBOUND,
        phone_number_id="pn-inbound-1",
        system_prompt="You answer calls for Happy Paws.",
        tool_ids=["tool-hours", "tool-availability"],
    )
    db_session.add(mapping)
    await db_session.commit()
    await db_session.refresh(mapping)
    return mapping


@pytest_asyncio.fixture
async def case(db_session: AsyncSession, clinic: Clinic) -> Case:
    case = Case(clinic_id=clinic.id, patient_name="Biscuit", status="discharged")
    db_session.add(case)
    await db_session.commit()
    await db_session.refresh(case)
    return case


MakeCall = Callable[..., Awaitable[ScheduledCall]]


@pytest.fixture
def make_call(db_session: AsyncSession, future_time: datetime) -> MakeCall:
    """Insert a ScheduledCall with sensible defaults; keyword args override."""

    async def _make(**overrides: Any) -> ScheduledCall:
        values: dict[str, Any] = {
            "customer_phone": "+15555550123",
            "customer_name": "Jordan Lee",
            "assistant_id": "asst-outbound-1",
            "phone_number_id": "pn-outbound-1",
            "dynamic_variables": {"pet_name": "Biscuit"},
            "scheduled_for": future_time,
            "status": CallStatus.QUEUED,
            "extra_metadata": {},
        }
        values.update(overrides)
        call = ScheduledCall(**values)
        db_session.add(call)
        await db_session.commit()
        await db_session.refresh(call)
        return call

    return _make


@pytest.fixture
def make_email(db_session: AsyncSession, future_time: datetime) -> Callable[..., Awaitable[ScheduledEmail]]:
    async def _make(**overrides: Any) -> ScheduledEmail:
        values: dict[str, Any] = {
            "recipient_email": "owner@example.com",
            "recipient_name": "Jordan Lee",
            "subject": "Biscuit's discharge instructions",
            "html_content": "<p>Keep the cone on for 10 days.</p>",
            "scheduled_for": future_time,
            "extra_metadata": {},
        }
        values.update(overrides)
        email = ScheduledEmail(**values)
        db_session.add(email)
        await db_session.commit()
        await db_session.refresh(email)
        return email

    return _make
