"""
Operational CLI for assistant sync.

    python -m vetcall.sync.cli --dry-run --clinic-slug happy-paws
"""

import argparse
import asyncio
import sys

from vetcall.clinics.models import AssistantType
from vetcall.shared.database import DatabaseManager
from vetcall.shared.logging import get_logger, setup_logging
from vetcall.sync.assistant_sync import (
    AssistantSyncService,
    SyncOptions,
    SyncResult,
    load_assistant_configs,
    sync_all,
)
from vetcall.telephony.factory import build_voice_provider
from vetcall.telephony.interface import VoiceProvider

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vetcall-sync-assistants",
        description="Sync clinic assistant prompts and tool bindings to the voice provider",
    )
    parser.add_argument("--dry-run", action="store_true", help="Show changes without applying them.")
    parser.add_argument("--clinic-slug", default=None, help="Only sync this clinic.")
    parser.add_argument(
        "--assistant-type",
        choices=[member.value for member in AssistantType],
        default=None,
        help="Only sync inbound or outbound assistants.",
    )
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--tools-only", action="store_true", help="Only sync tool bindings.")
    scope.add_argument("--prompts-only", action="store_true", help="Only sync system prompts.")
    return parser


def format_result(result: SyncResult) -> list[str]:
    if result.error:
        return [f"[FAIL] {result.assistant_id}: {result.error}"]
    if not result.changes:
        return [f"[ OK ] {result.assistant_id}: up to date"]
    state = "applied" if result.applied else "pending"
    lines = [f"[ OK ] {result.assistant_id}: {len(result.changes)} change(s) {state}"]
    for change in result.changes:
        if change.field == "systemPrompt":
            lines.append(f"         systemPrompt {change.action.value}")
        else:
            value = change.new_value if change.new_value is not None else change.old_value
            lines.append(f"         toolIds {change.action.value} {value}")
    return lines


async def run(
    args: argparse.Namespace,
    db: DatabaseManager | None = None,
    provider: VoiceProvider | None = None,
) -> int:
    db = db or DatabaseManager()
    provider = provider or build_voice_provider()
    options = SyncOptions(
        dry_run=args.dry_run,
        tools_only=args.tools_only,
        prompts_only=args.prompts_only,
    )

    try:
        async with db.session() as session:
            configs = await load_assistant_configs(
                session,
                clinic_slug=args.clinic_slug,
                assistant_type=args.assistant_type,
            )
        logger.info(
            "Assistant sync starting",
            extra={"assistant_count": len(configs), "dry_run": options.dry_run},
        )
        results = await sync_all(AssistantSyncService(provider), configs, options)
    finally:
        provider.close()
        await db.close()

    for result in results:
        for line in format_result(result):
            print(line)

    failed = sum(1 for result in results if not result.success)
    print(f"{len(results)} assistant(s), {failed} failed{' (dry run)' if options.dry_run else ''}")
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
