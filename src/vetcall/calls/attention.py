"""
Attention classification from provider structured outputs.

The voice assistant emits a structured output flagging calls that need staff
review. This module turns that payload into an ``AttentionClassification``
and folds it into a pending call update.
"""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from vetcall.calls.models import AttentionSeverity
from vetcall.shared.clock import utcnow
from vetcall.shared.logging import get_logger
from vetcall.shared.side_effects import run_best_effort

logger = get_logger(__name__)

EscalateCase = Callable[[UUID], Awaitable[None]]


@dataclass(frozen=True)
class AttentionClassification:
    """Whether a call needs human review, and how urgently."""

    needs_attention: bool
    types: list[str] = field(default_factory=list)
    severity: AttentionSeverity = AttentionSeverity.ROUTINE
    summary: str | None = None


NOT_FLAGGED = AttentionClassification(needs_attention=False)


def parse_structured_output(data: dict[str, Any] | None) -> dict[str, Any]:
    """Flatten provider structured outputs into ``{field_name: value}``.

    Two shapes are accepted. Flat payloads already carry ``needs_attention``
    and are returned as-is. Otherwise each value is expected to look like
    ``{"name": "<field>", "result": <value>}`` keyed by an opaque id; when
    ``result`` is itself an object containing ``<field>``, that inner value
    is used.
    """
    if not data or not isinstance(data, dict):
        return {}
    if "needs_attention" in data:
        return data

    parsed: dict[str, Any] = {}
    for value in data.values():
        if not isinstance(value, dict) or "name" not in value or "result" not in value:
            continue
        name = value["name"]
        result = value["result"]
        if isinstance(result, dict) and name in result:
            parsed[name] = result[name]
        else:
            parsed[name] = result
    return parsed


def normalize_attention_types(raw: Any) -> list[str]:
    """Normalize ``attention_types`` given as a list, JSON string or CSV string."""
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(item) for item in raw]
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return [part.strip() for part in raw.split(",") if part.strip()]
        if isinstance(decoded, list):
            return [str(item) for item in decoded]
        return [raw]
    return [str(raw)]


def _coerce_severity(raw: Any) -> AttentionSeverity:
    try:
        return AttentionSeverity(str(raw).lower()) if raw else AttentionSeverity.ROUTINE
    except ValueError:
        logger.warning("Unknown attention severity, using routine", extra={"severity": raw})
        return AttentionSeverity.ROUTINE


def _is_true(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def derive_attention(structured: dict[str, Any] | None) -> AttentionClassification:
    """Derive the attention classification from a structured output payload."""
    parsed = parse_structured_output(structured)
    if not _is_true(parsed.get("needs_attention")):
        return NOT_FLAGGED

    summary = parsed.get("attention_summary")
    return AttentionClassification(
        needs_attention=True,
        types=normalize_attention_types(parsed.get("attention_types")),
        severity=_coerce_severity(parsed.get("attention_severity")),
        summary=str(summary) if summary else None,
    )


async def apply_attention(
    *,
    call_id: UUID,
    case_id: UUID | None,
    classification: AttentionClassification,
    update_set: dict[str, Any],
    escalate: EscalateCase,
    flagged_at: datetime | None = None,
) -> bool:
    """Merge attention fields into ``update_set`` and escalate critical cases.

    No key is added when the call does not need attention. Escalation runs
    in its own error boundary and never fails the call update.

    Returns:
        True if the parent case escalation was attempted.
    """
    if not classification.needs_attention:
        return False

    update_set["attention_types"] = list(classification.types)
    update_set["attention_severity"] = classification.severity
    update_set["attention_summary"] = classification.summary
    update_set["attention_flagged_at"] = flagged_at or utcnow()

    logger.info(
        "Call flagged for attention",
        extra={
            "call_id": str(call_id),
            "attention_types": classification.types,
            "severity": classification.severity.value,
        },
    )

    if classification.severity != AttentionSeverity.CRITICAL or case_id is None:
        return False

    await run_best_effort(
        "escalate_case_urgency",
        lambda: escalate(case_id),
        call_id=str(call_id),
        case_id=str(case_id),
    )
    return True
