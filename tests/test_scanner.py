"""Tests for solcov.scanner."""

from __future__ import annotations

from pathlib import Path

import pytest

from solcov.scanner import SourceScanner, pattern_matches
from tests._fixtures.source_builder import SourceTreeBuilder


@pytest.mark.parametrize(
    ("path", "pattern", "expected"),
    [
        ("lib/external/Token.sol", "lib/external/", True),
        ("lib/externalized/Token.sol", "lib/external/", False),
        ("lib/external/deep/Token.sol", "lib/external/**", True),
        ("Mocks.sol", "Mocks.sol", True),
        ("test/Mocks.sol", "Mocks.sol", True),
        ("test/OtherMocks.sol", "Mocks.sol", False),
        ("mocks/A.sol", "mocks", True),
        ("mocks/A.sol", "./mocks/", True),
        ("a/b/Mock.sol", "**/Mock.sol", True),
        ("a/Token.sol", "a/*.sol", True),
        ("Token.sol", "", False),
    ],
)
def test_pattern_matches(path: str, pattern: str, expected: bool) -> None:
    assert pattern_matches(path, pattern) is expected


def test_scan_discovers_solidity_files(source_builder: SourceTreeBuilder) -> None:
    source_builder.write(
        {
            "Token.sol": "contract Token {}\n",
            "lib/external/Dep.sol": "contract Dep {}\n",
            "interfaces/IToken.sol": "interface IToken {}\n",
            "README.md": "# not solidity\n",
        }
    )

    result = source_builder.scan(["lib/external/"])

    assert [unit.path for unit in result.units] == [
        "Token.sol",
        "interfaces/IToken.sol",
        "lib/external/Dep.sol",
    ]
    assert [unit.path for unit in result.excluded] == ["lib/external/Dep.sol"]
    assert result.pattern_hits == {"lib/external/": 1}
    assert result.diagnostics == []
    assert result.unit("Token.sol").text == "contract Token {}\n"
    assert len(result.unit("Token.sol").hash) == 64


def test_scan_reports_unmatched_patterns(source_builder: SourceTreeBuilder) -> None:
    source_builder.write({"Token.sol": "contract Token {}\n"})

    result = source_builder.scan(["mocks/", "Token.sol"])

    assert result.excluded[0].path == "Token.sol"
    (diagnostic,) = result.diagnostics
    assert diagnostic.code == "config"
    assert diagnostic.stage == "scan"
    assert "mocks/" in diagnostic.message


def test_scan_prunes_generated_directories(source_builder: SourceTreeBuilder) -> None:
    source_builder.write(
        {
            "Token.sol": "contract Token {}\n",
            "node_modules/pkg/Dep.sol": "contract Dep {}\n",
            ".coverage_contracts/Token.sol": "contract Token {}\n",
        }
    )

    result = source_builder.scan()

    assert [unit.path for unit in result.units] == ["Token.sol"]


def test_scan_rejects_missing_root(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        SourceScanner().scan(tmp_path / "missing")

    file_path = tmp_path / "file.sol"
    file_path.write_text("", encoding="utf-8")
    with pytest.raises(NotADirectoryError):
        SourceScanner().scan(file_path)
