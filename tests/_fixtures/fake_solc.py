"""A stand-in for ``solc --standard-json`` used by compile tests."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Optional

from solcov.compile import RunResult

_PROBE_LITERAL = re.compile(r"0x[0-9a-f]{64}")


class FakeSolc:
    """Emits one push per probe literal found in each source.

    Every source becomes a single contract ``Main`` whose bytecode and
    deployed bytecode are identical, with a source map pointing each push
    at the literal's byte range. Probes listed in ``drop`` are left out, as
    an optimizer would. With ``shortest`` each literal is pushed with the
    narrowest PUSHn that holds it, as solc does for leading zero bytes.
    """

    def __init__(
        self,
        *,
        drop: Iterable[str] = (),
        shortest: bool = False,
        errors: Optional[List[str]] = None,
        original_errors: Optional[List[str]] = None,
    ) -> None:
        self.drop = set(drop)
        self.shortest = shortest
        self.errors = errors or []
        self.original_errors = original_errors or []
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, args, *, input_text, timeout, cancel=None, cwd=None) -> RunResult:  # type: ignore[no-untyped-def]
        payload = json.loads(input_text)
        self.calls.append(payload)
        sources = payload["sources"]
        instrumented = any("__cov_" in body["content"] for body in sources.values())
        errors = self.errors if instrumented else self.original_errors
        if errors:
            return RunResult(
                1,
                json.dumps(
                    {"errors": [{"severity": "error", "message": e, "formattedMessage": e} for e in errors]}
                ),
            )

        output: Dict[str, Any] = {"sources": {}, "contracts": {}}
        for file_id, (path, body) in enumerate(sorted(sources.items())):
            output["sources"][path] = {"id": file_id}
            text = body["content"]
            code: List[str] = []
            source_map: List[str] = []
            for match in _PROBE_LITERAL.finditer(text):
                if match.group(0) in self.drop:
                    continue
                start = len(text[: match.start()].encode("utf-8"))
                code.append(self._push(match.group(0)))
                source_map.append(f"{start}:{len(match.group(0))}:{file_id}")
            code.append("00")
            source_map.append("0:0:-1")
            evm = {"object": "".join(code), "sourceMap": ";".join(source_map)}
            output["contracts"][path] = {"Main": {"evm": {"bytecode": evm, "deployedBytecode": evm}}}
        return RunResult(0, json.dumps(output))

    def _push(self, literal: str) -> str:
        data = bytes.fromhex(literal[2:])
        if self.shortest:
            data = data.lstrip(b"\0") or b"\0"
        return f"{0x5F + len(data):02x}" + data.hex()


__all__ = ["FakeSolc"]
