"""lorekeeper command-line entry point.

Usage:
    lorekeeper init
    lorekeeper import lorebook.json
    lorekeeper scan story.txt [--relationships-only] [--no-hybrid]
    lorekeeper feed passage.txt [--story story.txt]
    lorekeeper organize [--context summary.txt]
    lorekeeper create "a rival smuggler crew" [--category auto]
    lorekeeper enrich "give Kael a scar over his left eye"
    lorekeeper dismiss <cleanup-id>
    lorekeeper show-state
    lorekeeper reorder <id> <id> ...

Results are printed as JSON on stdout.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from lorekeeper.db import lorebook_store, scan_state_store
from lorekeeper.db.lorebook_store import StoreError
from lorekeeper.db.sqlite_db import init_db
from lorekeeper.extraction import enrich_tasks
from lorekeeper.infra.llm_client import get_llm_client, get_secondary_client
from lorekeeper.models.settings import DEFAULT_SETTINGS, LoreSettings
from lorekeeper.services.organize_service import LorebookOrganizer
from lorekeeper.services.scan_service import LoreScanner

logger = logging.getLogger(__name__)


def _print(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _read_text(path: str | None) -> str:
    return Path(path).read_text(encoding="utf-8") if path else ""


def _load_settings(path: str | None) -> LoreSettings:
    if not path:
        return DEFAULT_SETTINGS.model_copy(deep=True)
    return LoreSettings.model_validate_json(Path(path).read_text(encoding="utf-8"))


def _log_progress(progress) -> None:
    logger.info("phase: %s", progress.phase)


async def _cmd_init(args) -> None:
    _print({"ok": True})


async def _cmd_import(args) -> None:
    payload = json.loads(Path(args.file).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise StoreError("Lorebook file must contain a JSON object")
    count = await lorebook_store.import_lorebook(args.lorebook, payload)
    _print({"imported": count})


async def _run_scan(
    lorebook: str,
    story: str,
    settings: LoreSettings,
    comprehension: str | None = None,
    relationships_only: bool = False,
) -> None:
    entries = await lorebook_store.list_entries(lorebook)
    state = await scan_state_store.load_state(lorebook)
    scanner = LoreScanner(get_llm_client(), get_secondary_client())
    result = await scanner.scan(
        story, settings, entries, state,
        on_progress=_log_progress,
        comprehension=comprehension,
        relationships_only=relationships_only,
    )
    if result.error is None:
        await scan_state_store.save_state(lorebook, result.state)
    _print(result.model_dump(exclude={"state"}) | {
        "pending": {
            "entries": len(result.state.pending_entries),
            "merges": len(result.state.pending_merges),
            "updates": len(result.state.pending_updates),
        },
    })


async def _cmd_scan(args) -> None:
    settings = _load_settings(args.settings)
    if args.no_hybrid:
        settings.hybrid_enabled = False
    await _run_scan(
        args.lorebook, _read_text(args.story), settings,
        comprehension=_read_text(args.context) or None,
        relationships_only=args.relationships_only,
    )


async def _cmd_feed(args) -> None:
    """Count a newly written passage and scan once enough new text has piled up."""
    settings = _load_settings(args.settings)
    passage = _read_text(args.passage)
    state = await scan_state_store.add_chars_since_scan(args.lorebook, len(passage))
    if not settings.auto_scan or state.chars_since_last_scan < settings.min_new_chars_for_scan:
        _print({"chars_since_last_scan": state.chars_since_last_scan, "scanned": False})
        return
    logger.info("Auto-scan after %d new chars", state.chars_since_last_scan)
    await _run_scan(
        args.lorebook, _read_text(args.story) or passage, settings,
        comprehension=_read_text(args.context) or None,
    )


async def _cmd_organize(args) -> None:
    entries = await lorebook_store.list_entries(args.lorebook)
    category_map = await lorebook_store.get_category_map(args.lorebook)
    dismissed = await scan_state_store.get_dismissed_cleanups(args.lorebook)
    organizer = LorebookOrganizer(get_llm_client())
    result = await organizer.organize(
        entries, category_map, dismissed,
        comprehension=_read_text(args.context) or None,
        on_progress=_log_progress,
    )
    _print(result.model_dump())


async def _cmd_create(args) -> None:
    settings = _load_settings(args.settings)
    entries = await lorebook_store.list_entries(args.lorebook)
    drafts = await enrich_tasks.generate_entries_from_prompt(
        get_llm_client(), args.prompt, args.category, settings,
        existing_names=[e.display_name for e in entries if e.display_name],
        story_text=_read_text(args.story),
        comprehension=_read_text(args.context) or None,
    )
    if drafts:
        state = await scan_state_store.load_state(args.lorebook)
        state.pending_entries.extend(drafts)
        await scan_state_store.save_state(args.lorebook, state)
    _print([d.model_dump() for d in drafts])


async def _cmd_enrich(args) -> None:
    client = get_llm_client()
    entries = await lorebook_store.list_entries(args.lorebook)
    match = await enrich_tasks.match_prompt_to_entry(client, args.prompt, entries)
    if match is None:
        _print({"matched": None})
        return
    text = await enrich_tasks.generate_enriched_text(
        client, args.prompt, match.entry.text, match.entry.display_name,
    )
    _print({
        "matched": match.entry.display_name,
        "confidence": match.confidence,
        "updated_text": text,
    })


async def _cmd_dismiss(args) -> None:
    await scan_state_store.dismiss_cleanup(args.lorebook, args.cleanup_id)
    _print({"dismissed": args.cleanup_id})


async def _cmd_reorder(args) -> None:
    await lorebook_store.reorder_entries(args.lorebook, args.ids)
    _print({"reordered": len(args.ids)})


async def _cmd_show_state(args) -> None:
    state = await scan_state_store.load_state(args.lorebook)
    _print(state.model_dump())


async def _run(args) -> None:
    await init_db()
    await args.func(args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lorekeeper", description="LLM-assisted lorebook curation")
    parser.add_argument("--lorebook", default="default", help="lorebook id")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create the database").set_defaults(func=_cmd_init)

    p = sub.add_parser("import", help="load a lorebook JSON export")
    p.add_argument("file")
    p.set_defaults(func=_cmd_import)

    p = sub.add_parser("scan", help="scan story text for lore proposals")
    p.add_argument("story")
    p.add_argument("--settings", help="LoreSettings JSON file")
    p.add_argument("--context", help="story comprehension summary file")
    p.add_argument("--relationships-only", action="store_true")
    p.add_argument("--no-hybrid", action="store_true", help="ignore the secondary provider")
    p.set_defaults(func=_cmd_scan)

    p = sub.add_parser("feed", help="count newly written story text, scanning once enough has built up")
    p.add_argument("passage", help="file holding the newly written text")
    p.add_argument("--story", help="full story snapshot to scan (defaults to the passage)")
    p.add_argument("--settings", help="LoreSettings JSON file")
    p.add_argument("--context", help="story comprehension summary file")
    p.set_defaults(func=_cmd_feed)

    p = sub.add_parser("reorder", help="set the entry order")
    p.add_argument("ids", nargs="+", help="every entry id, in the new order")
    p.set_defaults(func=_cmd_reorder)

    p = sub.add_parser("organize", help="propose duplicate and category cleanups")
    p.add_argument("--context", help="story comprehension summary file")
    p.set_defaults(func=_cmd_organize)

    p = sub.add_parser("create", help="draft entries from a description")
    p.add_argument("prompt")
    p.add_argument("--category", default=enrich_tasks.AUTO_CATEGORY)
    p.add_argument("--story")
    p.add_argument("--settings")
    p.add_argument("--context")
    p.set_defaults(func=_cmd_create)

    p = sub.add_parser("enrich", help="revise the entry an instruction refers to")
    p.add_argument("prompt")
    p.set_defaults(func=_cmd_enrich)

    p = sub.add_parser("dismiss", help="never propose a cleanup id again")
    p.add_argument("cleanup_id")
    p.set_defaults(func=_cmd_dismiss)

    sub.add_parser("show-state", help="print pending proposals").set_defaults(func=_cmd_show_state)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        asyncio.run(_run(args))
    except StoreError as exc:
        logger.error("Store error: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
