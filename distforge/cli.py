"""CLI entrypoints for distforge commands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, Sequence

from .errors import BuildError, DistforgeError
from .logging import configure_logging
from .orchestrator import Orchestrator


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=argparse.SUPPRESS if suppress_default else False,
        help="Log per-file detail.",
    )


def _add_path_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the project root (defaults to current directory).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="distforge",
        description="Build, link and publish JavaScript/TypeScript packages.",
    )
    _add_verbose_option(parser)
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Only log warnings and errors.",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Also write detailed logs to this file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Build the configured entries.")
    _add_verbose_option(build_parser, suppress_default=True)
    _add_path_argument(build_parser)
    build_parser.add_argument(
        "--stub",
        action="store_true",
        help="Link outputs to sources instead of building them.",
    )
    build_parser.add_argument(
        "--no-fail-on-warn",
        dest="fail_on_warn",
        action="store_false",
        default=None,
        help="Exit successfully even when the build reports warnings.",
    )
    build_parser.add_argument(
        "--parallel",
        action="store_true",
        default=None,
        help="Run builder backends concurrently.",
    )

    libs_parser = subparsers.add_parser(
        "libs", help="Build every configured library and link them together."
    )
    _add_verbose_option(libs_parser, suppress_default=True)
    _add_path_argument(libs_parser)

    publish_parser = subparsers.add_parser("publish", help="Publish built packages.")
    _add_verbose_option(publish_parser, suppress_default=True)
    _add_path_argument(publish_parser)
    publish_parser.add_argument(
        "--registry",
        action="append",
        choices=["npm", "jsr"],
        help="Registry to publish to (repeatable; defaults to every enabled registry).",
    )
    publish_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Ask the registry tooling to validate without uploading.",
    )

    return parser


def _build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if getattr(args, "fail_on_warn", None) is not None:
        overrides["fail_on_warn"] = args.fail_on_warn
    if getattr(args, "parallel", None):
        overrides["parallel"] = True
    return overrides


def _print_warnings(warnings: Sequence[str]) -> None:
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for distforge commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), quiet=bool(args.quiet), log_file=args.log_file)

    orchestrator = Orchestrator()
    root = Path(args.path)

    if args.command == "build":
        try:
            ctx = orchestrator.build(root, stub=bool(args.stub), overrides=_build_overrides(args))
        except BuildError as exc:
            _print_warnings(exc.warnings)
            parser.exit(1, f"error: {exc}\n")
        except DistforgeError as exc:
            parser.exit(1, f"error: {exc}\n")
        _print_warnings(ctx.warnings)
        print(f"Build complete: {len(ctx.manifest.entries)} files recorded")
    elif args.command == "libs":
        try:
            result = orchestrator.build_libraries(root)
        except DistforgeError as exc:
            parser.exit(1, f"error: {exc}\n")
        _print_warnings(result.warnings)
        print(
            f"Linked {len(result.roots)} library outputs; "
            f"{len(result.modified)} files rewritten, {len(result.copied)} copied"
        )
    elif args.command == "publish":
        try:
            results = orchestrator.publish(root, registries=args.registry, dry_run=bool(args.dry_run))
        except DistforgeError as exc:
            parser.exit(1, f"error: {exc}\n")
        failed = [directory for directory, ok in results.items() if not ok]
        for directory in results:
            status = "failed" if directory in failed else "published"
            print(f"{_relativize(directory)}: {status}")
        if failed:
            parser.exit(1, f"error: {len(failed)} publish step(s) failed\n")
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _relativize(path: Path) -> str:
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
