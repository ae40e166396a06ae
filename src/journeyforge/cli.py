"""CLI entry point: ``journeyforge generate|validate|verify|refine|llkb``."""

from __future__ import annotations

# Phase 1: Singleton logging, before any transitive litellm imports
from journeyforge.logging_config import setup_logging

setup_logging()

import argparse  # noqa: E402
import asyncio  # noqa: E402
import json  # noqa: E402
import sys  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import TYPE_CHECKING  # noqa: E402

from journeyforge import __version__  # noqa: E402
from journeyforge.config import Settings  # noqa: E402
from journeyforge.constants import GenerationStrategy  # noqa: E402
from journeyforge.logging_config import (  # noqa: E402
    cleanup_third_party_handlers,
    configure_from_settings,
)

if TYPE_CHECKING:
    from journeyforge.journey.models import Journey
    from journeyforge.services.journey_service import JourneyOutcome

# Phase 2: Clear litellm's duplicate handlers after all imports
cleanup_third_party_handlers()


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point; returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"journeyforge {__version__}")
        return 0
    if args.command is None:
        parser.print_help()
        return 2

    settings = Settings()
    configure_from_settings(settings, verbose=getattr(args, "verbose", False))
    if args.command == "generate":
        return _run_generate(args, settings)
    if args.command == "validate":
        return _run_validate(args)
    if args.command == "verify":
        return _run_verify(args, settings)
    if args.command == "llkb":
        return _run_llkb(args, settings)
    return _run_refine(args, settings)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="journeyforge",
        description=(
            "Turn structured user journeys into self-healing"
            " pytest-playwright tests."
        ),
    )
    parser.add_argument(
        "--version", action="store_true", help="Print version and exit"
    )
    sub = parser.add_subparsers(dest="command")

    generate = sub.add_parser("generate", help="Generate tests from journeys")
    _add_journey_args(generate)
    generate.add_argument(
        "--strategy",
        choices=[s.value for s in GenerationStrategy],
        default=GenerationStrategy.BLOCKS.value,
        help="Rewrite whole files or only managed blocks (default: blocks)",
    )

    validate = sub.add_parser("validate", help="Validate journey files")
    validate.add_argument("paths", nargs="+", type=Path)
    validate.add_argument(
        "--json", action="store_true", help="Print issues as JSON"
    )

    verify = sub.add_parser(
        "verify", help="Generate, run and optionally heal journey tests"
    )
    _add_journey_args(verify)
    verify.add_argument(
        "--no-heal",
        action="store_true",
        help="Report failures without running the refinement loop",
    )

    refine = sub.add_parser("refine", help="Heal a failing generated test")
    target = refine.add_mutually_exclusive_group(required=True)
    target.add_argument("--test-file", type=Path, help="Test module to heal")
    target.add_argument(
        "--resume", type=Path, help="Resume a persisted session file"
    )
    refine.add_argument(
        "--journey-id", default=None, help="Journey id (default: file stem)"
    )
    refine.add_argument("--verbose", "-v", action="store_true")

    llkb = sub.add_parser("llkb", help="Inspect and maintain learned lessons")
    llkb.add_argument("action", choices=["list", "stats", "export", "prune"])
    llkb.add_argument(
        "--output", "-o", type=Path, default=None, help="Export file (default: stdout)"
    )
    llkb.add_argument(
        "--limit", type=int, default=100, help="Lessons to export (default: 100)"
    )
    llkb.add_argument(
        "--min-confidence",
        type=float,
        default=0.2,
        help="Prune tested lessons below this confidence (default: 0.2)",
    )
    return parser


def _add_journey_args(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument(
        "paths", nargs="+", type=Path, help="Journey files or directories"
    )
    cmd.add_argument(
        "--output-dir",
        "-o",
        type=Path,
        default=Path("tests/e2e"),
        help="Where generated tests are written (default: tests/e2e)",
    )
    cmd.add_argument(
        "--no-llm",
        action="store_true",
        help="Never call a model (no planning, sampling or healing)",
    )
    cmd.add_argument("--verbose", "-v", action="store_true")


def _print_outcomes(outcomes: list[JourneyOutcome]) -> int:
    failed = 0
    for outcome in outcomes:
        line = f"  [{outcome.status.value}] {outcome.journey_id}"
        if outcome.test_file is not None:
            line += f" -> {outcome.test_file}"
        if outcome.confidence is not None:
            line += (
                f" (confidence {outcome.confidence.overall:.2f},"
                f" {outcome.confidence.verdict.value})"
            )
        print(line)
        if outcome.error:
            print(f"    Error: {outcome.error}")
        failed += not outcome.ok
    print(f"\nDone! {len(outcomes) - failed} ok, {failed} failed")
    return 1 if failed else 0


def _load(paths: list[Path]) -> list[Journey] | None:
    from journeyforge.journey.loader import JourneyLoadError, load_journeys

    try:
        return load_journeys(paths)
    except (FileNotFoundError, JourneyLoadError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return None


def _run_generate(args: argparse.Namespace, settings: Settings) -> int:
    from journeyforge.services.journey_service import (
        ServiceContext,
        generate_tests,
    )

    journeys = _load(args.paths)
    if journeys is None:
        return 1
    ctx = ServiceContext.create(settings, use_llm=not args.no_llm)
    try:
        outcomes = asyncio.run(
            generate_tests(
                journeys,
                ctx,
                args.output_dir,
                GenerationStrategy(args.strategy),
            )
        )
    finally:
        ctx.close()
    return _print_outcomes(outcomes)


def _run_validate(args: argparse.Namespace) -> int:
    from journeyforge.journey.loader import JOURNEY_SUFFIXES
    from journeyforge.services.journey_service import validate_journey_file

    files: list[Path] = []
    for path in args.paths:
        if path.is_dir():
            files.extend(
                sorted(p for p in path.rglob("*") if p.suffix in JOURNEY_SUFFIXES)
            )
        else:
            files.append(path)

    results = [validate_journey_file(f) for f in files]
    if args.json:
        print(
            json.dumps(
                [
                    {
                        "journey_id": r.journey_id,
                        "valid": r.valid,
                        "issues": [
                            {
                                "field": i.field,
                                "message": i.message,
                                "severity": i.severity.value,
                            }
                            for i in r.issues
                        ],
                    }
                    for r in results
                ],
                indent=2,
            )
        )
    else:
        for r in results:
            print(f"  [{'ok' if r.valid else 'INVALID'}] {r.journey_id}")
            for issue in r.issues:
                print(f"    {issue.severity.value}: {issue.field}: {issue.message}")
    return 0 if all(r.valid for r in results) else 1


def _run_verify(args: argparse.Namespace, settings: Settings) -> int:
    from journeyforge.services.journey_service import (
        ServiceContext,
        verify_journeys,
    )

    journeys = _load(args.paths)
    if journeys is None:
        return 1
    ctx = ServiceContext.create(settings, use_llm=not args.no_llm)
    try:
        outcomes = asyncio.run(
            verify_journeys(
                journeys,
                ctx,
                args.output_dir,
                heal=not args.no_heal,
            )
        )
    finally:
        ctx.close()
    return _print_outcomes(outcomes)


def _run_refine(args: argparse.Namespace, settings: Settings) -> int:
    from journeyforge.services.journey_service import (
        ServiceContext,
        resume_refinement,
        run_refinement,
    )

    source = args.resume or args.test_file
    if not source.exists():
        print(f"Error: {source} does not exist", file=sys.stderr)
        return 1

    ctx = ServiceContext.create(settings)
    try:
        if args.resume is not None:
            result = asyncio.run(resume_refinement(args.resume, ctx))
        else:
            journey_id = args.journey_id or args.test_file.stem
            result = asyncio.run(run_refinement(journey_id, args.test_file, ctx))
    finally:
        ctx.close()

    session = result.session
    status = session.final_status.value if session.final_status else "UNKNOWN"
    print(
        f"Refinement {status} after {len(session.attempts)} attempts"
        f" (session {session.session_id})"
    )
    for error in result.remaining_errors:
        print(f"    {error.category.value}: {error.message}")
    if result.dead_end is not None:
        print(f"    Suggested action: {result.dead_end.suggested_action.value}")
    return 0 if result.success else 1


def _run_llkb(args: argparse.Namespace, settings: Settings) -> int:
    from journeyforge.llkb.store import LessonStore

    with LessonStore(settings.llkb_path) as store:
        if args.action == "list":
            lessons = sorted(store.lessons, key=lambda x: x.confidence, reverse=True)
            if not lessons:
                print("No lessons recorded")
            for lesson in lessons:
                print(
                    f"  {lesson.confidence:.2f}  {lesson.success_count}/"
                    f"{lesson.applications}  [{lesson.type.value}] {lesson.pattern}"
                )
        elif args.action == "stats":
            print(json.dumps(store.stats().model_dump(), indent=2))
        elif args.action == "export":
            doc = store.export_top(args.limit)
            text = json.dumps(doc, indent=2)
            if args.output is None:
                print(text)
            else:
                args.output.parent.mkdir(parents=True, exist_ok=True)
                args.output.write_text(text, encoding="utf-8")
                print(f"Exported {len(doc['lessons'])} lessons to {args.output}")
        else:
            decayed = store.apply_decay()
            pruned = store.prune(min_confidence=args.min_confidence)
            print(f"Decayed {decayed}, pruned {pruned}, {len(store)} lessons left")
    return 0


if __name__ == "__main__":
    sys.exit(main())
