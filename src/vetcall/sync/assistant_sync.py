"""
Assistant configuration sync.

Compares the desired prompt and tool bindings stored on clinic assistant
mappings against the provider's assistant and patches the difference. The
patch merges into the assistant's existing ``model`` object so settings this
sync does not own (provider, temperature, voice) are never replaced.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.clinics.models import AssistantEnvironment, AssistantType, Clinic, ClinicAssistant
from vetcall.shared.logging import get_logger
from vetcall.telephony.interface import VoiceProvider, VoiceProviderError

logger = get_logger(__name__)


class ChangeAction(str, Enum):
    UPDATE = "update"
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class AssistantConfig:
    """Desired state of one remote assistant."""

    id: str
    system_prompt: str | None = None
    tool_ids: list[str] | None = None
    clinic_slug: str | None = None
    assistant_type: AssistantType | None = None


@dataclass(frozen=True)
class SyncChange:
    field: str
    action: ChangeAction
    old_value: Any = None
    new_value: Any = None


@dataclass(frozen=True)
class SyncOptions:
    dry_run: bool = False
    tools_only: bool = False
    prompts_only: bool = False


@dataclass
class SyncResult:
    assistant_id: str
    changes: list[SyncChange] = field(default_factory=list)
    applied: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def extract_system_prompt(assistant: dict[str, Any]) -> str | None:
    """Content of the first system-role message in ``model.messages``."""
    messages = (assistant.get("model") or {}).get("messages") or []
    for message in messages:
        if isinstance(message, dict) and message.get("role") == "system":
            return message.get("content")
    return None


def diff_prompt(assistant: dict[str, Any], desired: AssistantConfig) -> list[SyncChange]:
    if desired.system_prompt is None:
        return []
    current = extract_system_prompt(assistant)
    if current == desired.system_prompt:
        return []
    return [
        SyncChange(
            field="systemPrompt",
            action=ChangeAction.UPDATE,
            old_value=current,
            new_value=desired.system_prompt,
        )
    ]


def diff_tools(assistant: dict[str, Any], desired: AssistantConfig) -> list[SyncChange]:
    """One add/remove change per tool id present on only one side."""
    if desired.tool_ids is None:
        return []
    current = list((assistant.get("model") or {}).get("toolIds") or [])
    current_set = set(current)
    desired_set = set(desired.tool_ids)

    changes = [
        SyncChange(field="toolIds", action=ChangeAction.ADD, new_value=tool_id)
        for tool_id in desired.tool_ids
        if tool_id not in current_set
    ]
    changes.extend(
        SyncChange(field="toolIds", action=ChangeAction.REMOVE, old_value=tool_id)
        for tool_id in current
        if tool_id not in desired_set
    )
    return changes


def build_patch(
    assistant: dict[str, Any],
    desired: AssistantConfig,
    changes: list[SyncChange],
) -> dict[str, Any]:
    """Merge the changed fields into a copy of the current ``model``."""
    model = copy.deepcopy(assistant.get("model") or {})

    if any(change.field == "systemPrompt" for change in changes):
        messages = list(model.get("messages") or [])
        for index, message in enumerate(messages):
            if isinstance(message, dict) and message.get("role") == "system":
                messages[index] = {**message, "content": desired.system_prompt}
                break
        else:
            messages.insert(0, {"role": "system", "content": desired.system_prompt})
        model["messages"] = messages

    if any(change.field == "toolIds" for change in changes):
        model["toolIds"] = list(desired.tool_ids or [])

    return {"model": model}


class AssistantSyncService:
    """Syncs desired assistant configs to the voice provider."""

    def __init__(self, provider: VoiceProvider) -> None:
        self._provider = provider

    async def sync(self, desired: AssistantConfig, options: SyncOptions | None = None) -> SyncResult:
        """Diff and (unless dry-run) patch one assistant.

        Provider errors are captured in ``SyncResult.error``.
        """
        options = options or SyncOptions()
        result = SyncResult(assistant_id=desired.id)

        try:
            assistant = await self._provider.get_assistant(desired.id)

            if not options.tools_only:
                result.changes.extend(diff_prompt(assistant, desired))
            if not options.prompts_only:
                result.changes.extend(diff_tools(assistant, desired))

            if result.changes and not options.dry_run:
                await self._provider.update_assistant(
                    desired.id, build_patch(assistant, desired, result.changes)
                )
                result.applied = True
        except VoiceProviderError as exc:
            result.error = str(exc)
            logger.error(
                "Assistant sync failed",
                extra={"assistant_id": desired.id, "error": str(exc), "error_code": exc.error_code},
            )
            return result

        logger.info(
            "Assistant synced",
            extra={
                "assistant_id": desired.id,
                "change_count": len(result.changes),
                "applied": result.applied,
                "dry_run": options.dry_run,
            },
        )
        return result


async def load_assistant_configs(
    session: AsyncSession,
    clinic_slug: str | None = None,
    assistant_type: AssistantType | str | None = None,
) -> list[AssistantConfig]:
    """Active production mappings of active clinics, as desired configs."""
    stmt = (
        select(ClinicAssistant, Clinic)
        .join(Clinic, Clinic.id == ClinicAssistant.clinic_id)
        .where(
            ClinicAssistant.is_active.is_(True),
            ClinicAssistant.environment == AssistantEnvironment.PRODUCTION,
            Clinic.is_active.is_(True),
        )
        .order_by(Clinic.slug, ClinicAssistant.assistant_type)
    )
    if assistant_type is not None:
        stmt = stmt.where(ClinicAssistant.assistant_type == AssistantType(assistant_type))

    rows = (await session.execute(stmt)).all()
    configs = [
        AssistantConfig(
            id=mapping.assistant_id,
            system_prompt=mapping.system_prompt,
            tool_ids=list(mapping.tool_ids) if mapping.tool_ids is not None else None,
            clinic_slug=clinic.slug,
            assistant_type=mapping.assistant_type,
        )
        for mapping, clinic in rows
    ]
    if clinic_slug:
        configs = [config for config in configs if config.clinic_slug == clinic_slug]
    return configs


async def sync_all(
    service: AssistantSyncService,
    configs: list[AssistantConfig],
    options: SyncOptions | None = None,
) -> list[SyncResult]:
    return [await service.sync(config, options) for config in configs]
