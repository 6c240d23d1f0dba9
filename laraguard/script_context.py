"""
Script-context tracker
======================
Single forward pass over a template's lines telling, for each line, whether
it sits inside an embedded ``<script>`` region.

Per line:

- opening and closing marker: the line is inside, the state entering the
  next line is unchanged
- opening marker only: state becomes inside; the line itself is structural
  and gets no content checks
- closing marker only: the line keeps the current state, which becomes
  outside afterwards (a stray closing marker never puts a line inside)
"""

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Pattern, Union

SCRIPT_OPEN = re.compile(r'<script[^>]*>', re.IGNORECASE)
SCRIPT_CLOSE = re.compile(r'</script\s*>', re.IGNORECASE)


@dataclass(frozen=True)
class LineContext:
    number: int
    text: str
    inside: bool
    structural: bool = False


class ScriptContextTracker:
    """Line classifier for one embedded region kind (``<script>`` by default)."""

    def __init__(self, open_marker: Union[str, Pattern] = SCRIPT_OPEN,
                 close_marker: Union[str, Pattern] = SCRIPT_CLOSE):
        self.open_marker = re.compile(open_marker) if isinstance(open_marker, str) else open_marker
        self.close_marker = re.compile(close_marker) if isinstance(close_marker, str) else close_marker
        self.inside = False

    def reset(self):
        self.inside = False

    def step(self, number: int, text: str) -> LineContext:
        """Classify one line and advance the state."""
        has_open = self.open_marker.search(text) is not None
        has_close = self.close_marker.search(text) is not None

        if has_open and has_close:
            return LineContext(number, text, inside=True)
        if has_open:
            self.inside = True
            return LineContext(number, text, inside=True, structural=True)
        if has_close:
            ctx = LineContext(number, text, inside=self.inside)
            self.inside = False
            return ctx
        return LineContext(number, text, inside=self.inside)

    def classify(self, lines: Iterable[str], start: int = 1) -> Iterator[LineContext]:
        """Yield a LineContext for every line, numbering from ``start``."""
        self.reset()
        for number, text in enumerate(lines, start):
            yield self.step(number, text)
