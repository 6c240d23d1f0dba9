"""
Pairing state tracker
=====================
Finds "open" events left without a following "close" in one file, e.g. a
``Model::unguard()`` that is never followed by ``Model::reguard()``.

Opens are resolved in file order. For each open, closes at or before its
line are discarded (they belong to an earlier open), then the first
remaining close is consumed. An open with no close left is unresolved.
Each close resolves at most one open.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .models import PairEvent, PairKind


@dataclass(frozen=True)
class PairResolution:
    """Outcome of pairing one file's events."""
    resolved: Tuple[Tuple[PairEvent, PairEvent], ...]
    unresolved: Tuple[PairEvent, ...]


def resolve_pairs(events: Iterable[PairEvent]) -> PairResolution:
    """Pair open events with the closes that follow them."""
    events = list(events)
    opens = sorted((e for e in events if e.kind is PairKind.OPEN), key=lambda e: e.line)
    closes = sorted((e for e in events if e.kind is PairKind.CLOSE), key=lambda e: e.line)

    resolved: List[Tuple[PairEvent, PairEvent]] = []
    unresolved: List[PairEvent] = []
    cursor = 0
    for open_event in opens:
        while cursor < len(closes) and closes[cursor].line <= open_event.line:
            cursor += 1
        if cursor < len(closes):
            resolved.append((open_event, closes[cursor]))
            cursor += 1
        else:
            unresolved.append(open_event)
    return PairResolution(tuple(resolved), tuple(unresolved))


def unresolved_opens(open_lines: Iterable[int], close_lines: Iterable[int]) -> List[int]:
    """Line numbers of opens that no close resolves."""
    events = [PairEvent(PairKind.OPEN, line) for line in open_lines]
    events += [PairEvent(PairKind.CLOSE, line) for line in close_lines]
    return [e.line for e in resolve_pairs(events).unresolved]


class PairingTracker:
    """Collects events for one file, then resolves them in one go."""

    def __init__(self):
        self._events: List[PairEvent] = []
        self._result: Optional[PairResolution] = None

    def open(self, line: int):
        self._events.append(PairEvent(PairKind.OPEN, line))
        self._result = None

    def close(self, line: int):
        self._events.append(PairEvent(PairKind.CLOSE, line))
        self._result = None

    def resolve(self) -> PairResolution:
        if self._result is None:
            self._result = resolve_pairs(self._events)
        return self._result

    def unresolved(self) -> List[PairEvent]:
        return list(self.resolve().unresolved)
