"""Offset-based text injection with deterministic nesting order."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..models import ProbeSite


@dataclass(frozen=True)
class Injection:
    """Text inserted at ``offset`` of the original source.

    Openers wrap what follows them and closers what precedes them. At one
    offset closers go first (innermost first), then openers (outermost
    first); parents are always registered before their children, so the
    registration sequence decides nesting.
    """

    offset: int
    text: str
    closer: bool = False
    seq: int = 0
    probe: Optional[str] = None
    key: Optional[str] = None

    def sort_key(self) -> Tuple[int, int, int]:
        if self.closer:
            return self.offset, 0, -self.seq
        return self.offset, 1, self.seq


class InjectionPlan:
    def __init__(self, unit: str) -> None:
        self.unit = unit
        self._items: List[Injection] = []

    def __len__(self) -> int:
        return len(self._items)

    def insert(
        self,
        offset: int,
        text: str,
        *,
        closer: bool = False,
        probe: Optional[str] = None,
        key: Optional[str] = None,
    ) -> Injection:
        if "\n" in text:
            raise ValueError("Injected text must stay on one line")
        item = Injection(offset, text, closer, len(self._items), probe, key)
        self._items.append(item)
        return item

    def ordered(self) -> List[Injection]:
        return sorted(self._items, key=Injection.sort_key)

    def apply(self, text: str) -> Tuple[str, List[ProbeSite]]:
        """Return the instrumented text and the byte ranges of every probe literal."""
        pieces: List[str] = []
        sites: List[ProbeSite] = []
        cursor = 0
        byte_pos = 0
        for item in self.ordered():
            if item.offset < cursor or item.offset > len(text):
                raise ValueError(f"Injection offset {item.offset} out of order in {self.unit}")
            chunk = text[cursor : item.offset]
            pieces.append(chunk)
            byte_pos += len(chunk.encode("utf-8"))
            cursor = item.offset
            if item.probe is not None:
                at = item.text.index(item.probe)
                sites.append(
                    ProbeSite(
                        probe=item.probe,
                        key=item.key or "",
                        unit=self.unit,
                        start=byte_pos + len(item.text[:at].encode("utf-8")),
                        length=len(item.probe),
                    )
                )
            pieces.append(item.text)
            byte_pos += len(item.text.encode("utf-8"))
        pieces.append(text[cursor:])
        return "".join(pieces), sites


__all__ = ["Injection", "InjectionPlan"]
