"""Command-line interface."""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from typing import Any, Sequence

from testarchitect.config import Settings
from testarchitect.factory import (
    build_healer,
    build_llm,
    build_orchestrator,
    build_updater,
    build_visual_comparator,
)
from testarchitect.failures import MaxStepsExceededError, PreconditionError, TestArchitectError
from testarchitect.tools.scenario_updater import UpdateMode
from testarchitect.tools.self_healing import scan_for_selectors
from testarchitect.util.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="testarchitect", description="Test Architect CLI")
    parser.add_argument("--log-level", dest="log_level", default="INFO")
    parser.add_argument("--mock", action="store_true", dest="mock", help="Use the offline mock LLM")
    parser.add_argument("--output-dir", dest="output_dir")
    parser.add_argument("--max-steps", type=int, dest="max_steps")
    parser.add_argument("--trace-dir", dest="trace_dir")
    sub = parser.add_subparsers(dest="command", required=True)

    generate = sub.add_parser("generate", help="Generate a test package for a feature")
    generate.add_argument("feature", help="Feature name, e.g. login-form")
    generate.add_argument("--team", required=True)
    generate.add_argument("--url", dest="url")
    generate.add_argument("--requirements", default="")
    generate.add_argument("--task", default=None)

    update_cmd = sub.add_parser("update", help="Merge new scenarios into an existing feature package")
    update_cmd.add_argument("feature_dir")
    update_cmd.add_argument("--requirements", required=True)
    update_cmd.add_argument(
        "--mode", choices=[mode.value for mode in UpdateMode], default=UpdateMode.MERGE.value
    )
    update_cmd.add_argument("--only", default="", help="Comma-separated scenario ids for selective mode")
    update_cmd.add_argument("--url", dest="url")
    update_cmd.add_argument("--no-backup", action="store_false", dest="backup")

    heal = sub.add_parser("heal", help="Repair a broken selector in a test file")
    heal.add_argument("url")
    heal.add_argument("selector")
    heal.add_argument("file")
    heal.add_argument("--context", default="")
    heal.add_argument("--cascade", action="store_true")

    scan = sub.add_parser("scan", help="List selectors used by test files")
    scan.add_argument("test_dir")

    visual = sub.add_parser("visual", help="Compare a page or element with its baseline")
    visual.add_argument("url")
    visual.add_argument("name")
    visual.add_argument("--selector")
    visual.add_argument("--full-page", action="store_true", dest="full_page")
    visual.add_argument("--threshold", type=float)

    update = sub.add_parser("update-baseline", help="Replace a check's baseline image")
    update.add_argument("name")
    update.add_argument("screenshot")

    cleanup = sub.add_parser("cleanup", help="Prune old captures and diffs of a check")
    cleanup.add_argument("name")
    cleanup.add_argument("--keep", type=int, default=5)
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    data: dict[str, Any] = settings.model_dump()
    if args.mock:
        data["llm_provider"] = "mock"
    if args.output_dir:
        data["output_dir"] = args.output_dir
    if args.max_steps:
        data["max_steps"] = args.max_steps
    if args.trace_dir:
        data["trace_dir"] = args.trace_dir
    if getattr(args, "cascade", False):
        data["heal_cascade"] = True
    return Settings(**data)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _generate(settings: Settings, args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator(settings, build_llm(settings))
    task = args.task or f"Generate a Playwright test suite for {args.feature}"
    try:
        result = await orchestrator.run(
            task,
            feature_name=args.feature,
            team_name=args.team,
            target_url=args.url,
            requirements=args.requirements,
        )
    except MaxStepsExceededError as exc:
        print(f"Generation failed: {exc}")
        return 1
    print(f"Steps: {result.steps}")
    print("Files:")
    for path in result.persisted_paths:
        print(f"  {path}")
    if result.trace_path:
        print(f"Trace: {result.trace_path}")
    return 0


async def _update(settings: Settings, args: argparse.Namespace) -> int:
    updater = build_updater(settings, build_llm(settings))
    try:
        result = await updater.update(
            args.feature_dir,
            args.requirements,
            mode=UpdateMode(args.mode),
            selected_ids=args.only.split(","),
            target_url=args.url,
            backup=args.backup,
        )
    except PreconditionError:
        raise
    except TestArchitectError as exc:
        print(f"Update failed: {exc}")
        return 1
    _print_json(asdict(result))
    return 0


async def _heal(settings: Settings, args: argparse.Namespace) -> int:
    healer = build_healer(settings, llm=build_llm(settings))
    result = await healer.heal(args.url, args.selector, args.file, args.context)
    _print_json(result.model_dump())
    return 0 if result.success or result.noop else 1


async def _visual(settings: Settings, args: argparse.Namespace) -> int:
    comparator = build_visual_comparator(settings)
    config = None
    if args.threshold is not None:
        config = comparator.config.model_copy(update={"threshold": args.threshold})
    result = await comparator.check(
        args.url, args.name, selector=args.selector, full_page=args.full_page, config=config
    )
    _print_json(result.model_dump())
    return 1 if result.has_differences else 0


def run_command(settings: Settings, args: argparse.Namespace) -> int:
    if args.command == "generate":
        return asyncio.run(_generate(settings, args))
    if args.command == "update":
        return asyncio.run(_update(settings, args))
    if args.command == "heal":
        return asyncio.run(_heal(settings, args))
    if args.command == "visual":
        return asyncio.run(_visual(settings, args))
    if args.command == "scan":
        _print_json([asdict(reference) for reference in scan_for_selectors(args.test_dir)])
        return 0
    comparator = build_visual_comparator(settings)
    if args.command == "update-baseline":
        print(f"Baseline updated: {comparator.update_baseline(args.name, args.screenshot)}")
        return 0
    removed = comparator.cleanup_old_files(args.name, keep=args.keep)
    print(f"Removed {len(removed)} old files")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    settings = apply_overrides(Settings(), args)
    try:
        return run_command(settings, args)
    except PreconditionError as exc:
        print(f"Error: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
