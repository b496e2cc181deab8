"""
Pydantic schemas for the scheduling API.
"""

import re
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vetcall.shared.clock import as_utc, utcnow

E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ScheduleCallRequest(_CamelModel):
    """Schedule an outbound call."""

    customer_phone: str = Field(..., alias="customerPhone", description="E.164 phone number")
    customer_name: str | None = Field(None, alias="customerName", max_length=255)
    scheduled_for: datetime = Field(default_factory=utcnow, alias="scheduledFor")
    case_id: UUID | None = Field(None, alias="caseId")
    clinic_id: UUID | None = Field(None, alias="clinicId")
    assistant_id: str | None = Field(None, alias="assistantId", max_length=100)
    phone_number_id: str | None = Field(None, alias="phoneNumberId", max_length=100)
    dynamic_variables: dict[str, Any] = Field(default_factory=dict, alias="dynamicVariables")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        v = v.strip()
        if not E164_PATTERN.match(v):
            raise ValueError("customerPhone must be in E.164 format")
        return v

    @field_validator("scheduled_for")
    @classmethod
    def normalize_scheduled_for(cls, v: datetime) -> datetime:
        return as_utc(v)


class ScheduleEmailRequest(_CamelModel):
    """Schedule an outbound email."""

    recipient_email: str = Field(..., alias="recipientEmail", max_length=255)
    recipient_name: str | None = Field(None, alias="recipientName", max_length=255)
    subject: str = Field(..., min_length=1, max_length=500)
    html_content: str = Field(..., alias="htmlContent", min_length=1)
    text_content: str | None = Field(None, alias="textContent")
    scheduled_for: datetime = Field(default_factory=utcnow, alias="scheduledFor")
    case_id: UUID | None = Field(None, alias="caseId")
    is_test: bool = Field(False, alias="isTest")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("recipient_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("recipientEmail must be a valid email address")
        return v

    @field_validator("scheduled_for")
    @classmethod
    def normalize_scheduled_for(cls, v: datetime) -> datetime:
        return as_utc(v)


class ScheduledJobData(_CamelModel):
    job_id: UUID = Field(..., serialization_alias="jobId")
    scheduled_for: datetime = Field(..., serialization_alias="scheduledFor")
    durable_job_id: str | None = Field(None, serialization_alias="durableJobId")


class ScheduleResponse(BaseModel):
    success: bool = True
    data: ScheduledJobData
