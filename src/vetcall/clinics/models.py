"""
SQLAlchemy models for clinics, assistant mappings and cases.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vetcall.shared.database import Base, JSONType, enum_values


class AssistantType(str, Enum):
    """Direction an assistant is used for."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class AssistantEnvironment(str, Enum):
    PRODUCTION = "production"
    STAGING = "staging"


class Clinic(Base):
    """A veterinary clinic (tenant)."""

    __tablename__ = "clinics"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="America/Los_Angeles")
    transfer_phone_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    business_hours: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    assistants: Mapped[list["ClinicAssistant"]] = relationship(
        back_populates="clinic",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Clinic(id={self.id}, slug={self.slug})>"


class ClinicAssistant(Base):
    """Mapping row binding a clinic to a provider assistant.

    ``system_prompt`` and ``tool_ids`` hold the desired remote state used by
    assistant sync.
    """

    __tablename__ = "clinic_assistants"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    clinic_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assistant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    assistant_type: Mapped[AssistantType] = mapped_column(
        SQLEnum(AssistantType, name="assistant_type", values_callable=enum_values, native_enum=False),
        nullable=False,
    )
    environment: Mapped[AssistantEnvironment] = mapped_column(
        SQLEnum(
            AssistantEnvironment,
            name="assistant_environment",
            values_callable=enum_values,
            native_enum=False,
        ),
        nullable=False,
        default=AssistantEnvironment.PRODUCTION,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    phone_number_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    tool_ids: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)

    clinic: Mapped[Clinic] = relationship(back_populates="assistants")

    def __repr__(self) -> str:
        return (
            f"<ClinicAssistant(clinic_id={self.clinic_id}, "
            f"assistant_id={self.assistant_id}, type={self.assistant_type})>"
        )


class Case(Base):
    """Patient case a discharge call/email belongs to."""

    __tablename__ = "cases"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    clinic_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("clinics.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    patient_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_discharge_summary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Case(id={self.id}, status={self.status}, is_urgent={self.is_urgent})>"


class ClinicProvider(Base):
    """Veterinarian or technician whose schedule narrows availability.

    ``working_days`` lists lowercase weekday names; null means every open day.
    """

    __tablename__ = "clinic_providers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    clinic_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    working_days: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)

    def works_on(self, weekday: str) -> bool:
        return self.working_days is None or weekday in self.working_days

    def __repr__(self) -> str:
        return f"<ClinicProvider(clinic_id={self.clinic_id}, name={self.name})>"
