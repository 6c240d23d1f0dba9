"""
Detector contract
=================
A detector is one independent check: a static descriptor, an applicability
gate, and ``run``. Services (source access, syntax front-end, resolver,
trackers, matcher) are composed inside detectors rather than inherited.

Detectors receive the EngineConfig at construction and an immutable
RunContext per run. They must not mutate the analysed project.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

from .config import EngineConfig
from .models import DetectorDescriptor, Finding, Location, RunResult, Severity
from .probe import with_scheme
from .source import ProjectSource
from .syntax import ParseFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

DOCS_PAGE = "docs/detectors.md"


def docs_url(detector_id: str) -> str:
    return f"{DOCS_PAGE}#{detector_id}"


@dataclass(frozen=True)
class RunContext:
    root: Path
    environment: str = "production"
    ci: bool = False


class ParseTally:
    """Files parsed and files that failed to parse during one detector run.

    Safe to share between the worker threads of ``collect_per_file``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.analysed = 0
        self.unparsable: List[str] = []

    def record(self, tree, relative_path: str) -> bool:
        """Count ``tree``; True when it can be analysed."""
        with self._lock:
            if isinstance(tree, ParseFailure):
                logger.debug("Skipping %s: %s", relative_path, tree.reason)
                self.unparsable.append(relative_path)
                return False
            self.analysed += 1
            return True

    def mark_analysed(self) -> None:
        """Count an input read without the syntax front-end (``.env``, plain text)."""
        with self._lock:
            self.analysed += 1

    @property
    def nothing_analysed(self) -> bool:
        return bool(self.unparsable) and self.analysed == 0

    def describe(self) -> str:
        names = sorted(self.unparsable)
        listed = ", ".join(names[:5])
        if len(names) > 5:
            listed += f" (and {len(names) - 5} more)"
        return f"Unable to parse {plural(len(names), 'file')}: {listed}"

    def annotate(self, summary: str) -> str:
        if not self.unparsable:
            return summary
        return f"{summary} ({plural(len(self.unparsable), 'file')} could not be parsed)"


class Detector:
    """Base for all detectors; subclasses set ``descriptor`` and implement ``run``."""

    descriptor: DetectorDescriptor

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    @property
    def id(self) -> str:
        return self.descriptor.id

    def source(self, context: RunContext) -> ProjectSource:
        return ProjectSource.from_config(context.root, self.config)

    def options(self) -> dict:
        return self.config.detector_options(self.id)

    def is_applicable(self, context: RunContext) -> bool:
        return True

    def skip_reason(self) -> str:
        return "Not applicable to this project"

    def run(self, context: RunContext) -> RunResult:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------

    def finding(self, source: ProjectSource, path, line: Optional[int], message: str,
                severity: Severity, recommendation: str, metadata: Optional[dict] = None,
                snippet: Optional[str] = None) -> Finding:
        """Build a Finding located relative to the project root, with a code snippet."""
        rel = source.relative(path) if path is not None else ""
        if snippet is None and path is not None and line:
            snippet = source.code_snippet(path, line)
        return Finding(
            message=message,
            location=Location(rel, line),
            severity=severity,
            recommendation=recommendation,
            code_snippet=snippet,
            metadata=metadata or {},
        )

    def remote_finding(self, where: str, message: str, severity: Severity,
                       recommendation: str, metadata: Optional[dict] = None) -> Finding:
        """Finding about something observed over the network (a URL, response headers).

        It has no line, so inline suppression never reads a local file for it.
        """
        return Finding(
            message=message,
            location=Location(where, None),
            severity=severity,
            recommendation=recommendation,
            metadata=metadata or {},
        )

    def app_url(self, context: RunContext) -> Optional[str]:
        """``app_url`` detector option, else APP_URL from the project's .env.

        A URL written without a scheme is taken as https.
        """
        url = self.options().get("app_url")
        if isinstance(url, str) and url.strip():
            return with_scheme(url)
        env = ProjectSource(context.root).read_env_file()
        if env and env.get("APP_URL") and env["APP_URL"].value.strip():
            return with_scheme(env["APP_URL"].value)
        return None

    def passed(self, summary: str) -> RunResult:
        return RunResult.passed(self.id, summary)

    def skipped(self, reason: str) -> RunResult:
        return RunResult.skipped(self.id, reason)

    def error(self, message: str) -> RunResult:
        return RunResult.error(self.id, message)

    def result(self, summary: str, findings: Sequence[Finding]) -> RunResult:
        return RunResult.from_findings(self.id, summary, findings)

    def conclude(self, tally: ParseTally, findings: Sequence[Finding],
                 clean_summary: str, summary: str) -> RunResult:
        """Passed or finding-derived result, or Error when no file in scope could be parsed."""
        if not findings:
            if tally.nothing_analysed:
                return self.error(tally.describe())
            return self.passed(tally.annotate(clean_summary))
        return self.result(tally.annotate(summary), findings)


def collect_per_file(files: Sequence[T], analyse: Callable[[T], Iterable[Finding]],
                     workers: int = 1) -> List[Finding]:
    """Run ``analyse`` over every file and concatenate in file order.

    Per-file work may run in parallel; the merged list is always in the
    order of ``files``.
    """
    if workers <= 1 or len(files) <= 1:
        per_file = [list(analyse(f)) for f in files]
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(files))) as pool:
            per_file = list(pool.map(lambda f: list(analyse(f)), files))
    merged: List[Finding] = []
    for findings in per_file:
        merged.extend(findings)
    return merged


def plural(count: int, word: str) -> str:
    return f"{count} {word}" + ("" if count == 1 else "s")
