"""CLI entrypoints for solcov commands."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping

from .config import CoverageConfig, load_config
from .engine import Engine
from .errors import ConfigError, CoverageError
from .export import write_istanbul
from .identifiers import KINDS
from .logging import configure_logging
from .manifest import MANIFEST_NAME, BuildManifest
from .stores import CoverageStore


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_project_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the contracts directory (defaults to current directory).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file or directory holding .solcover.* (defaults to the contracts path).",
    )
    parser.add_argument("--out", type=Path, default=None, help="Output directory.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solcov",
        description="Instrument Solidity sources and aggregate coverage from test runs.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    instrument_parser = subparsers.add_parser(
        "instrument",
        help="Write an instrumented copy of the sources plus a manifest.",
    )
    _add_verbose_option(instrument_parser, suppress_default=True)
    _add_project_options(instrument_parser)

    compile_parser = subparsers.add_parser(
        "compile",
        help="Instrument, compile and verify that every probe survived.",
    )
    _add_verbose_option(compile_parser, suppress_default=True)
    _add_project_options(compile_parser)

    collect_parser = subparsers.add_parser(
        "collect",
        help="Turn NDJSON trace files (one run per file) into a coverage export.",
    )
    _add_verbose_option(collect_parser, suppress_default=True)
    collect_parser.add_argument("manifest", type=Path, help="Build manifest (file or directory).")
    collect_parser.add_argument("traces", type=Path, nargs="+", help="NDJSON trace files.")
    collect_parser.add_argument("--out", type=Path, default=Path("coverage.json"))
    collect_parser.add_argument("--store", type=Path, default=None, help="Cumulative coverage store.")
    collect_parser.add_argument("--istanbul", type=Path, default=None, help="Write istanbul coverage.json here.")
    collect_parser.add_argument("--workers", type=int, default=None)

    merge_parser = subparsers.add_parser("merge", help="Merge coverage exports of one build.")
    _add_verbose_option(merge_parser, suppress_default=True)
    merge_parser.add_argument("manifest", type=Path)
    merge_parser.add_argument("exports", type=Path, nargs="+")
    merge_parser.add_argument("--out", type=Path, default=Path("coverage.json"))

    serve_parser = subparsers.add_parser("serve", help="Run the aggregation service.")
    _add_verbose_option(serve_parser, suppress_default=True)
    serve_parser.add_argument("manifest", type=Path)
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--store", type=Path, default=None)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for solcov commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    try:
        if args.command in ("instrument", "compile"):
            _run_build(args)
        elif args.command == "collect":
            _run_collect(args)
        elif args.command == "merge":
            _run_merge(args)
        elif args.command == "serve":  # pragma: no cover - integration path
            from .service import run_service

            run_service(args.manifest, args.host, args.port, store_path=args.store)
        else:  # pragma: no cover - argparse enforces choices
            parser.exit(1, "Unknown command\n")
    except (FileNotFoundError, NotADirectoryError) as exc:
        parser.exit(1, f"{exc}\n")
    except CoverageError as exc:
        parser.exit(1, f"solcov {args.command} failed: {exc}\nRun with --verbose for more details.\n")


def _load_project_config(args: argparse.Namespace) -> CoverageConfig:
    source = Path(args.path).expanduser()
    config = load_config(args.config or source)
    config.root = source.resolve()
    if config.silent and not args.verbose:
        configure_logging(silent=True)
    for key in config.unknown_keys:
        print(f"warning: ignoring unknown option {key!r}", file=sys.stderr)
    return config


def _run_build(args: argparse.Namespace) -> None:
    config = _load_project_config(args)
    engine = Engine(config)
    if args.command == "instrument":
        out = args.out or config.root / ".coverage_contracts"
        result = engine.instrument()
        manifest = engine.write_instrumented(result, out)
        print(f"Instrumented {len(result.included)} of {len(result.units)} files into {_relativize(out)}")
    else:
        out = args.out or config.root / ".coverage_artifacts"
        build = engine.build()
        manifest = engine.manifest(build)
        manifest.save(out / MANIFEST_NAME)
        live = sum(len(item.live) for item in build.verification.values())
        eliminated = sum(len(item.eliminated) for item in build.verification.values())
        print(
            f"Compiled in {build.profile.mode} mode: {live} probes live, "
            f"{eliminated} eliminated; manifest at {_relativize(out / MANIFEST_NAME)}"
        )
    for diagnostic in manifest.diagnostics:
        print(f"{diagnostic.severity}: {diagnostic.message}", file=sys.stderr)


def _run_collect(args: argparse.Namespace) -> None:
    manifest = BuildManifest.load(args.manifest)
    config = load_config(Path(manifest.root))
    config.root = Path(manifest.root)
    if args.workers is not None:
        config.workers = args.workers
    engine = Engine(config)
    runs = {str(path): list(_read_records(path)) for path in args.traces}
    aggregator = manifest.aggregator()
    store = CoverageStore(args.store) if args.store is not None else None
    if store is not None:
        store.load_into(aggregator)
    engine.aggregate(aggregator, engine.collect(manifest.table, runs))
    if store is not None:
        store.update(aggregator)
        store.persist()
    _write_json(args.out, aggregator.export())
    istanbul = args.istanbul or config.istanbul_folder
    if istanbul is not None:
        write_istanbul(aggregator, istanbul, config.root)
    _print_summary(aggregator.summary())


def _run_merge(args: argparse.Namespace) -> None:
    manifest = BuildManifest.load(args.manifest)
    aggregator = manifest.aggregator()
    for path in args.exports:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Failed to parse {path}: {exc}") from exc
        aggregator.merge_export(payload)
    _write_json(args.out, aggregator.export())
    _print_summary(aggregator.summary())


def _read_records(path: Path) -> Iterator[Dict[str, Any]]:
    with path.open(encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"Malformed trace record at {path}:{number}: {exc}") from exc
            if not isinstance(record, dict):
                raise ConfigError(f"Trace record at {path}:{number} must be an object")
            yield record


def _write_json(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _print_summary(summary: Mapping[str, Mapping[str, Any]]) -> None:
    for kind in KINDS:
        entry = summary[kind]
        print(f"{kind:<10} {entry['hit']:>5}/{entry['total']:<5} {entry['pct']:6.2f}%")


def _relativize(path: Path) -> str:
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
