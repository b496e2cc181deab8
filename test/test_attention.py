"""
Tests for attention classification and escalation.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

import pytest

from vetcall.calls.attention import (
    NOT_FLAGGED,
    AttentionClassification,
    apply_attention,
    derive_attention,
    normalize_attention_types,
    parse_structured_output,
)
from vetcall.calls.models import AttentionSeverity


class TestParseStructuredOutput:
    def test_flat_payload_returned_as_is(self) -> None:
        data = {"needs_attention": True, "attention_severity": "urgent"}
        assert parse_structured_output(data) == data

    def test_keyed_outputs_flattened(self) -> None:
        data = {
            "5f1c": {"name": "needs_attention", "result": True},
            "9a2b": {"name": "attention_types", "result": {"attention_types": ["medication"]}},
            "ignored": "not an output",
        }
        assert parse_structured_output(data) == {
            "needs_attention": True,
            "attention_types": ["medication"],
        }

    def test_empty(self) -> None:
        assert parse_structured_output(None) == {}
        assert parse_structured_output({}) == {}


class TestNormalizeAttentionTypes:
    def test_list(self) -> None:
        assert normalize_attention_types(["pain", 3]) == ["pain", "3"]

    def test_json_string(self) -> None:
        assert normalize_attention_types('["pain", "vomiting"]') == ["pain", "vomiting"]

    def test_csv_string(self) -> None:
        assert normalize_attention_types("pain, vomiting ,") == ["pain", "vomiting"]

    def test_none(self) -> None:
        assert normalize_attention_types(None) == []


class TestDeriveAttention:
    def test_not_flagged(self) -> None:
        assert derive_attention({"needs_attention": False}) == NOT_FLAGGED
        assert derive_attention(None) == NOT_FLAGGED

    def test_string_true_accepted(self) -> None:
        result = derive_attention(
            {
                "needs_attention": "True",
                "attention_types": "pain,bleeding",
                "attention_severity": "CRITICAL",
                "attention_summary": "Incision is bleeding",
            }
        )
        assert result.needs_attention is True
        assert result.types == ["pain", "bleeding"]
        assert result.severity == AttentionSeverity.CRITICAL
        assert result.summary == "Incision is bleeding"

    def test_unknown_severity_falls_back_to_routine(self) -> None:
        result = derive_attention({"needs_attention": True, "attention_severity": "catastrophic"})
        assert result.severity == AttentionSeverity.ROUTINE


class TestApplyAttention:
    @pytest.mark.asyncio
    async def test_not_flagged_leaves_update_untouched(self) -> None:
        update: dict[str, Any] = {"status": "completed"}
        escalated: list[UUID] = []

        async def escalate(case_id: UUID) -> None:
            escalated.append(case_id)

        attempted = await apply_attention(
            call_id=uuid4(),
            case_id=uuid4(),
            classification=NOT_FLAGGED,
            update_set=update,
            escalate=escalate,
        )

        assert attempted is False
        assert update == {"status": "completed"}
        assert escalated == []

    @pytest.mark.asyncio
    async def test_urgent_sets_fields_without_escalation(self) -> None:
        update: dict[str, Any] = {}
        flagged_at = datetime(2025, 1, 1, tzinfo=timezone.utc)

        async def escalate(case_id: UUID) -> None:
            raise AssertionError("urgent calls must not escalate the case")

        attempted = await apply_attention(
            call_id=uuid4(),
            case_id=uuid4(),
            classification=AttentionClassification(
                needs_attention=True,
                types=["appetite"],
                severity=AttentionSeverity.URGENT,
            ),
            update_set=update,
            escalate=escalate,
            flagged_at=flagged_at,
        )

        assert attempted is False
        assert update["attention_types"] == ["appetite"]
        assert update["attention_severity"] == AttentionSeverity.URGENT
        assert update["attention_flagged_at"] == flagged_at

    @pytest.mark.asyncio
    async def test_critical_escalates_case(self) -> None:
        case_id = uuid4()
        escalated: list[UUID] = []

        async def escalate(target: UUID) -> None:
            escalated.append(target)

        attempted = await apply_attention(
            call_id=uuid4(),
            case_id=case_id,
            classification=AttentionClassification(needs_attention=True, severity=AttentionSeverity.CRITICAL),
            update_set={},
            escalate=escalate,
        )

        assert attempted is True
        assert escalated == [case_id]

    @pytest.mark.asyncio
    async def test_escalation_failure_does_not_propagate(self) -> None:
        update: dict[str, Any] = {}

        async def escalate(case_id: UUID) -> None:
            raise RuntimeError("database unavailable")

        attempted = await apply_attention(
            call_id=uuid4(),
            case_id=uuid4(),
            classification=AttentionClassification(needs_attention=True, severity=AttentionSeverity.CRITICAL),
            update_set=update,
            escalate=escalate,
        )

        assert attempted is True
        assert update["attention_severity"] == AttentionSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_critical_without_case_skips_escalation(self) -> None:
        async def escalate(case_id: UUID) -> None:
            raise AssertionError("no case to escalate")

        attempted = await apply_attention(
            call_id=uuid4(),
            case_id=None,
            classification=AttentionClassification(needs_attention=True, severity=AttentionSeverity.CRITICAL),
            update_set={},
            escalate=escalate,
        )

        assert attempted is False
