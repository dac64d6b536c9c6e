"""CLI behaviour tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from solcov.cli import _build_parser, main
from tests._fixtures.contracts import SAMPLE
from tests._fixtures.runs import FLAG_TRUE_KEYS, probe_records
from tests._fixtures.source_builder import SourceTreeBuilder


def test_cli_accepts_verbose_before_command() -> None:
    parser = _build_parser()
    args = parser.parse_args(["--verbose", "instrument"])
    assert args.verbose is True
    assert args.command == "instrument"
    assert args.path == "."


def test_cli_accepts_verbose_after_command() -> None:
    parser = _build_parser()
    args = parser.parse_args(["compile", "contracts", "--verbose"])
    assert args.verbose is True
    assert args.command == "compile"
    assert args.path == "contracts"


def test_cli_collect_options() -> None:
    parser = _build_parser()
    args = parser.parse_args(["collect", "build", "a.ndjson", "b.ndjson", "--workers", "3"])
    assert args.traces == [Path("a.ndjson"), Path("b.ndjson")]
    assert args.out == Path("coverage.json")
    assert args.workers == 3
    assert args.verbose is False


def test_cli_serve_defaults() -> None:
    args = _build_parser().parse_args(["serve", "build"])
    assert args.host == "127.0.0.1"
    assert args.port == 8000
    assert args.store is None


def _write_trace(path: Path, records: list[dict[str, str]]) -> Path:
    path.write_text("\n".join(json.dumps(record) for record in records) + "\n", encoding="utf-8")
    return path


def test_instrument_collect_and_merge(
    source_builder: SourceTreeBuilder, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    source_builder.write({"Sample.sol": SAMPLE})
    build_dir = tmp_path / "build"

    main(["instrument", str(source_builder.path()), "--out", str(build_dir)])
    assert "Instrumented 1 of 1 files" in capsys.readouterr().out
    assert "__cov_" in (build_dir / "Sample.sol").read_text(encoding="utf-8")

    trace = _write_trace(tmp_path / "run.ndjson", probe_records("Sample.sol", FLAG_TRUE_KEYS))
    export = tmp_path / "coverage.json"
    store = tmp_path / "store.json"
    main(
        [
            "collect",
            str(build_dir),
            str(trace),
            "--out",
            str(export),
            "--store",
            str(store),
            "--istanbul",
            str(tmp_path / "istanbul"),
        ]
    )
    output = capsys.readouterr().out
    assert "branch" in output and "50.00%" in output
    payload = json.loads(export.read_text(encoding="utf-8"))
    assert payload["Sample.sol"]["counts"]["branch:0:0"] == 1
    assert store.exists()
    assert (tmp_path / "istanbul" / "coverage.json").exists()

    merged = tmp_path / "merged.json"
    main(["merge", str(build_dir), str(export), str(export), "--out", str(merged)])
    merged_payload = json.loads(merged.read_text(encoding="utf-8"))
    assert merged_payload["Sample.sol"]["counts"]["branch:0:0"] == 2


def test_collect_with_missing_manifest_exits(tmp_path: Path) -> None:
    trace = _write_trace(tmp_path / "run.ndjson", [])

    with pytest.raises(SystemExit) as excinfo:
        main(["collect", str(tmp_path / "nowhere"), str(trace)])

    assert excinfo.value.code == 1


def test_malformed_trace_exits(source_builder: SourceTreeBuilder, tmp_path: Path) -> None:
    source_builder.write({"Sample.sol": SAMPLE})
    build_dir = tmp_path / "build"
    main(["instrument", str(source_builder.path()), "--out", str(build_dir)])
    trace = tmp_path / "bad.ndjson"
    trace.write_text('{"probe": "0x1"}\nnot json\n', encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        main(["collect", str(build_dir), str(trace), "--out", str(tmp_path / "out.json")])

    assert excinfo.value.code == 1


def test_instrument_missing_path_exits(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["instrument", str(tmp_path / "missing")])

    assert excinfo.value.code == 1
