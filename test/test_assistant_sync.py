"""
Tests for assistant prompt and tool sync.
"""

from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.clinics.models import AssistantEnvironment, AssistantType, Clinic, ClinicAssistant
from vetcall.sync.assistant_sync import (
    AssistantConfig,
    AssistantSyncService,
    ChangeAction,
    SyncOptions,
    build_patch,
    diff_prompt,
    diff_tools,
    extract_system_prompt,
    load_assistant_configs,
    sync_all,
)
from vetcall.telephony.mock_adapter import MockVoiceProvider


def remote_assistant(prompt: str = "Old prompt", tool_ids: list[str] | None = None) -> dict[str, Any]:
    return {
        "id": "asst-1",
        "name": "Discharge follow-up",
        "model": {
            "provider": "openai",
            "model": "gpt-4o",
            "temperature": 0.3,
            "messages": [{"role": "system", "content": prompt}],
            "toolIds": tool_ids if tool_ids is not None else ["tool-a", "tool-b"],
        },
        "voice": {"provider": "11labs", "voiceId": "sarah"},
    }


class TestDiff:
    def test_extract_system_prompt(self) -> None:
        assert extract_system_prompt(remote_assistant("Hello")) == "Hello"
        assert extract_system_prompt({"model": {"messages": [{"role": "user", "content": "x"}]}}) is None
        assert extract_system_prompt({}) is None

    def test_prompt_unchanged(self) -> None:
        desired = AssistantConfig(id="asst-1", system_prompt="Old prompt")
        assert diff_prompt(remote_assistant(), desired) == []

    def test_prompt_changed(self) -> None:
        desired = AssistantConfig(id="asst-1", system_prompt="New prompt")

        [change] = diff_prompt(remote_assistant(), desired)

        assert change.field == "systemPrompt"
        assert change.action == ChangeAction.UPDATE
        assert change.old_value == "Old prompt"
        assert change.new_value == "New prompt"

    def test_prompt_not_managed(self) -> None:
        assert diff_prompt(remote_assistant(), AssistantConfig(id="asst-1")) == []

    def test_tool_adds_and_removes(self) -> None:
        desired = AssistantConfig(id="asst-1", tool_ids=["tool-b", "tool-c"])

        changes = diff_tools(remote_assistant(), desired)

        assert [(c.action, c.new_value or c.old_value) for c in changes] == [
            (ChangeAction.ADD, "tool-c"),
            (ChangeAction.REMOVE, "tool-a"),
        ]

    def test_tool_order_is_not_a_change(self) -> None:
        desired = AssistantConfig(id="asst-1", tool_ids=["tool-b", "tool-a"])
        assert diff_tools(remote_assistant(), desired) == []


class TestBuildPatch:
    def test_preserves_unowned_model_fields(self) -> None:
        assistant = remote_assistant()
        desired = AssistantConfig(id="asst-1", system_prompt="New prompt", tool_ids=["tool-c"])
        changes = diff_prompt(assistant, desired) + diff_tools(assistant, desired)

        patch = build_patch(assistant, desired, changes)

        assert patch == {
            "model": {
                "provider": "openai",
                "model": "gpt-4o",
                "temperature": 0.3,
                "messages": [{"role": "system", "content": "New prompt"}],
                "toolIds": ["tool-c"],
            }
        }
        assert assistant["model"]["messages"][0]["content"] == "Old prompt"

    def test_inserts_missing_system_message(self) -> None:
        assistant = {"model": {"messages": [{"role": "assistant", "content": "Hi!"}]}}
        desired = AssistantConfig(id="asst-1", system_prompt="Be kind")

        patch = build_patch(assistant, desired, diff_prompt(assistant, desired))

        assert patch["model"]["messages"][0] == {"role": "system", "content": "Be kind"}
        assert len(patch["model"]["messages"]) == 2


class TestAssistantSyncService:
    @pytest.mark.asyncio
    async def test_applies_changes(self) -> None:
        provider = MockVoiceProvider({"asst-1": remote_assistant()})
        desired = AssistantConfig(id="asst-1", system_prompt="New prompt", tool_ids=["tool-a"])

        result = await AssistantSyncService(provider).sync(desired)

        assert result.success
        assert result.applied is True
        assert len(result.changes) == 2
        updated = provider.assistants["asst-1"]
        assert extract_system_prompt(updated) == "New prompt"
        assert updated["model"]["toolIds"] == ["tool-a"]
        assert updated["voice"] == {"provider": "11labs", "voiceId": "sarah"}

    @pytest.mark.asyncio
    async def test_dry_run_does_not_patch(self) -> None:
        provider = MockVoiceProvider({"asst-1": remote_assistant()})
        desired = AssistantConfig(id="asst-1", system_prompt="New prompt")

        result = await AssistantSyncService(provider).sync(desired, SyncOptions(dry_run=True))

        assert len(result.changes) == 1
        assert result.applied is False
        assert provider.updates == []

    @pytest.mark.asyncio
    async def test_scope_flags(self) -> None:
        provider = MockVoiceProvider({"asst-1": remote_assistant()})
        desired = AssistantConfig(id="asst-1", system_prompt="New prompt", tool_ids=["tool-z"])
        service = AssistantSyncService(provider)

        tools = await service.sync(desired, SyncOptions(dry_run=True, tools_only=True))
        prompts = await service.sync(desired, SyncOptions(dry_run=True, prompts_only=True))

        assert {c.field for c in tools.changes} == {"toolIds"}
        assert {c.field for c in prompts.changes} == {"systemPrompt"}

    @pytest.mark.asyncio
    async def test_up_to_date_makes_no_update(self) -> None:
        provider = MockVoiceProvider({"asst-1": remote_assistant()})
        desired = AssistantConfig(id="asst-1", system_prompt="Old prompt", tool_ids=["tool-a", "tool-b"])

        result = await AssistantSyncService(provider).sync(desired)

        assert result.changes == []
        assert result.applied is False
        assert provider.updates == []

    @pytest.mark.asyncio
    async def test_provider_error_captured(self) -> None:
        results = await sync_all(
            AssistantSyncService(MockVoiceProvider()),
            [AssistantConfig(id="missing", system_prompt="x")],
        )

        assert results[0].success is False
        assert "missing" in results[0].error


class TestLoadAssistantConfigs:
    @pytest.mark.asyncio
    async def test_loads_active_production_mappings(
        self,
        db_session: AsyncSession,
        clinic: Clinic,
        inbound_assistant: ClinicAssistant,
    ) -> None:
        db_session.add_all(
            [
                ClinicAssistant(
                    clinic_id=clinic.id,
                    assistant_id="asst-outbound-1",
                    assistant_type=AssistantType.OUTBOUND,
                    system_prompt="You call owners after discharge.",
                ),
                ClinicAssistant(
                    clinic_id=clinic.id,
                    assistant_id="asst-staging",
                    assistant_type=AssistantType.INBOUND,
                    environment=AssistantEnvironment.STAGING,
                ),
                ClinicAssistant(
                    clinic_id=clinic.id,
                    assistant_id="asst-retired",
                    assistant_type=AssistantType.INBOUND,
                    is_active=False,
                ),
            ]
        )
        await db_session.commit()

        configs = await load_assistant_configs(db_session)

        assert [c.id for c in configs] == ["asst-inbound-1", "asst-outbound-1"]
        inbound = configs[0]
        assert inbound.clinic_slug == "happy-paws"
        assert inbound.tool_ids == ["tool-hours", "tool-availability"]
        assert configs[1].tool_ids is None

    @pytest.mark.asyncio
    async def test_filters(
        self,
        db_session: AsyncSession,
        inbound_assistant: ClinicAssistant,
    ) -> None:
        assert await load_assistant_configs(db_session, clinic_slug="other-clinic") == []
        assert await load_assistant_configs(db_session, assistant_type="outbound") == []
        assert len(await load_assistant_configs(db_session, assistant_type=AssistantType.INBOUND)) == 1
