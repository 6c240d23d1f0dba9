"""
Inline suppression
==================
Drops findings whose line, or the line directly above it, carries

- ``@laraguard-ignore``                 all detectors
- ``@laraguard-ignore id-one,id-two``   only the named detectors
- ``// nosec`` (configurable keyword)   all detectors
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from .models import Finding, RunResult, Status, status_for_findings

logger = logging.getLogger(__name__)

_IGNORE_RE = re.compile(r'@laraguard-ignore(?:[ \t]+([\w,-]+))?', re.IGNORECASE)


class InlineSuppressor:
    """Applies inline suppression comments to one result at a time."""

    def __init__(self, root: Union[str, Path], suppression_keyword: str = "nosec"):
        self.root = Path(root)
        self.keyword_re = None
        if suppression_keyword:
            self.keyword_re = re.compile(
                rf'(?://|#|/\*|--|\{{\{{--|<!--)\s*{re.escape(suppression_keyword)}\b')

    def line_suppresses(self, text: str, detector_id: str) -> bool:
        m = _IGNORE_RE.search(text)
        if m:
            if m.group(1) is None:
                return True
            ids = [part.strip() for part in m.group(1).split(',')]
            if detector_id in ids:
                return True
        return bool(self.keyword_re and self.keyword_re.search(text))

    def is_suppressed(self, finding: Finding, detector_id: str,
                      cache: Optional[Dict[str, List[str]]] = None) -> bool:
        line = finding.location.line
        if not line or line < 1:
            return False
        lines = self._lines(finding.location.path, cache if cache is not None else {})
        for index in (line - 1, line - 2):
            if 0 <= index < len(lines) and self.line_suppresses(lines[index], detector_id):
                return True
        return False

    def apply(self, result: RunResult) -> RunResult:
        """Result without suppressed findings; status re-derived when any were dropped."""
        if not result.findings or result.status not in (Status.FAILED, Status.WARNING, Status.PASSED):
            return result
        cache: Dict[str, List[str]] = {}
        kept = [f for f in result.findings if not self.is_suppressed(f, result.detector_id, cache)]
        dropped = len(result.findings) - len(kept)
        if not dropped:
            return result
        logger.debug("%s: %d finding(s) suppressed inline", result.detector_id, dropped)
        summary = result.summary
        if not kept:
            summary = f"{summary} ({dropped} suppressed inline)"
        return RunResult(result.detector_id, status_for_findings(kept), summary,
                         tuple(kept), result.elapsed)

    def _lines(self, path: str, cache: Dict[str, List[str]]) -> List[str]:
        if path in cache:
            return cache[path]
        full = Path(path)
        if not full.is_absolute():
            full = self.root / path
        try:
            with open(full, 'r', encoding='utf-8', errors='replace') as f:
                lines = f.read().splitlines()
        except (IOError, OSError):
            lines = []
        cache[path] = lines
        return lines
