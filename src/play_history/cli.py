"""play-history command line.

Run: play-history import-stable --stable-path ~/osu!
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import os
import sys
from typing import Optional

from .config import ImportConfig
from .core.models import ImportSummary
from .core.sources.dynamic_store import StoreEngine
from .ingestors import analyze_replay, run_dynamic_import, run_stable_import
from .store import Store

logger = logging.getLogger(__name__)

ENGINE_ENV = "PLAY_HISTORY_STORE_ENGINE"


def load_engine(reference: Optional[str]) -> Optional[StoreEngine]:
    """Build a store engine from a ``module:factory`` reference."""
    reference = reference or os.environ.get(ENGINE_ENV, "")
    if not reference:
        return None
    module_name, _, attr = reference.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Engine must be given as module:factory, got {reference!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory()


def _config(args: argparse.Namespace) -> ImportConfig:
    aliases = [a.strip() for a in (args.aliases or "").split(",") if a.strip()]
    return ImportConfig.from_env(
        data_dir=args.data_dir,
        stable_root=getattr(args, "stable_path", None),
        dynamic_store=getattr(args, "lazer_path", None),
        aliases=aliases or None,
        username=getattr(args, "username", None),
        analyze_replays=False if getattr(args, "no_replays", False) else None,
    )


def _print_summary(summary: ImportSummary) -> int:
    print(f"{summary.source}: {summary.added} added, {summary.skipped} skipped, "
          f"{summary.filtered} filtered, {summary.beatmaps} beatmaps")
    for warning in summary.warnings:
        print(f"warning: {warning}")
    if summary.error:
        print(f"error: {summary.error}", file=sys.stderr)
        return 1
    return 0


async def _import_stable(args: argparse.Namespace) -> int:
    config = _config(args)
    async with Store(config.db_path) as store:
        return _print_summary(await run_stable_import(config, store))


async def _import_lazer(args: argparse.Namespace) -> int:
    config = _config(args)
    try:
        engine = load_engine(args.engine)
    except (ImportError, AttributeError, ValueError) as exc:
        print(f"error: could not load store engine: {exc}", file=sys.stderr)
        return 1
    if engine is None:
        print(f"error: no store engine configured (use --engine or {ENGINE_ENV})", file=sys.stderr)
        return 1
    async with Store(config.db_path) as store:
        return _print_summary(await run_dynamic_import(config, store, engine))


async def _analyze(args: argparse.Namespace) -> int:
    analysis = await analyze_replay(args.beatmap, args.replay)
    print(json.dumps({
        "unstable_rate": round(analysis.unstable_rate, 2),
        "key_ratio": round(analysis.key_ratio, 3),
        "key_counts": analysis.key_counts,
        "hits": len(analysis.hit_errors),
    }, indent=2))
    return 0


async def _wipe(args: argparse.Namespace) -> int:
    config = _config(args)
    async with Store(config.db_path) as store:
        plays, beatmaps = await store.wipe()
    print(f"Removed {plays} plays and {beatmaps} beatmaps")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="play-history", description="Import and analyze osu! play history.")
    parser.add_argument("--data-dir", help="Directory holding history.db")
    parser.add_argument("--aliases", help="Comma-separated player names to import")
    sub = parser.add_subparsers(dest="command", required=True)

    stable = sub.add_parser("import-stable", help="Import scores.db from the stable client")
    stable.add_argument("--stable-path", help="Stable client folder")
    stable.add_argument("--no-replays", action="store_true", help="Skip replay analysis")
    stable.set_defaults(handler=_import_stable)

    lazer = sub.add_parser("import-lazer", help="Import scores from the lazer client store")
    lazer.add_argument("--lazer-path", help="client.realm or the folder holding it")
    lazer.add_argument("--username", help="Local player name")
    lazer.add_argument("--engine", help="Store engine factory as module:factory")
    lazer.add_argument("--no-replays", action="store_true", help="Skip replay analysis")
    lazer.set_defaults(handler=_import_lazer)

    analyze = sub.add_parser("analyze", help="Analyze a replay against its beatmap")
    analyze.add_argument("beatmap")
    analyze.add_argument("replay")
    analyze.set_defaults(handler=_analyze)

    wipe = sub.add_parser("wipe", help="Delete every stored play and beatmap")
    wipe.set_defaults(handler=_wipe)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI command."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    args = build_parser().parse_args(argv)
    return asyncio.run(args.handler(args))


if __name__ == "__main__":
    sys.exit(main())
