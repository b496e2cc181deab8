"""
SQLAlchemy models for scheduled discharge calls and emails.

A row in either table doubles as the scheduler's job record: it is inserted
as ``queued`` and gets ``durable_job_id`` once the durable queue accepted it.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from vetcall.shared.database import Base, JSONType, enum_values


class CallStatus(str, Enum):
    """Persisted call lifecycle status."""

    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


class EmailStatus(str, Enum):
    """Persisted email delivery status."""

    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    CANCELED = "canceled"


class AttentionSeverity(str, Enum):
    CRITICAL = "critical"
    URGENT = "urgent"
    ROUTINE = "routine"


class ScheduledCall(Base):
    """Outbound discharge call (also the CallRecord mutated by webhooks)."""

    __tablename__ = "scheduled_calls"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    case_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("cases.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    clinic_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("clinics.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    provider_call_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        unique=True,
        index=True,
    )
    assistant_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone_number_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dynamic_variables: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    status: Mapped[CallStatus] = mapped_column(
        SQLEnum(CallStatus, name="call_status", values_callable=enum_values, native_enum=False),
        nullable=False,
        default=CallStatus.QUEUED,
        index=True,
    )
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    durable_job_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript_messages: Mapped[list[Any] | None] = mapped_column(JSONType, nullable=True)
    call_analysis: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    success_evaluation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_sentiment: Mapped[str | None] = mapped_column(String(16), nullable=True)
    structured_output: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)

    attention_types: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    attention_severity: Mapped[AttentionSeverity | None] = mapped_column(
        SQLEnum(
            AttentionSeverity,
            name="attention_severity",
            values_callable=enum_values,
            native_enum=False,
        ),
        nullable=True,
    )
    attention_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    attention_flagged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    extra_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduledCall(id={self.id}, status={self.status}, "
            f"provider_call_id={self.provider_call_id})>"
        )


class ScheduledEmail(Base):
    """Discharge email scheduled for delayed delivery."""

    __tablename__ = "scheduled_emails"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    case_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("cases.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    html_content: Mapped[str] = mapped_column(Text, nullable=False)
    text_content: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[EmailStatus] = mapped_column(
        SQLEnum(EmailStatus, name="email_status", values_callable=enum_values, native_enum=False),
        nullable=False,
        default=EmailStatus.QUEUED,
        index=True,
    )
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    durable_job_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_test: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    extra_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<ScheduledEmail(id={self.id}, status={self.status})>"
