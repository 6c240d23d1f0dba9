"""
Batch report: aggregation, JSON export and console rendering.
"""

import json
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from rich import box
from rich.align import Align
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from .models import DetectorDescriptor, Finding, RunResult, Status

console = Console()

SCHEMA_VERSION = "1.0"


@dataclass
class BatchReport:
    results: List[RunResult]
    descriptors: Dict[str, DetectorDescriptor] = field(default_factory=dict)
    dont_report: FrozenSet[str] = frozenset()
    environment: str = "production"
    ci: bool = False
    root: str = ""
    elapsed: float = 0.0

    def with_status(self, status: Status) -> List[RunResult]:
        return [r for r in self.results if r.status is status]

    @property
    def errors(self) -> List[RunResult]:
        return self.with_status(Status.ERROR)

    @property
    def overall_status(self) -> Status:
        """Failed beats Warning beats Passed; Error and Skipped results do not count."""
        statuses = {r.status for r in self.results}
        if Status.FAILED in statuses:
            return Status.FAILED
        if Status.WARNING in statuses:
            return Status.WARNING
        return Status.PASSED

    def counts(self) -> Dict[str, int]:
        return {
            "total": len(self.results),
            "passed": len(self.with_status(Status.PASSED)),
            "failed": len(self.with_status(Status.FAILED)),
            "warnings": len(self.with_status(Status.WARNING)),
            "skipped": len(self.with_status(Status.SKIPPED)),
            "errors": len(self.errors),
        }

    @property
    def score(self) -> int:
        if not self.results:
            return 100
        return round(len(self.with_status(Status.PASSED)) / len(self.results) * 100)

    @property
    def exit_code(self) -> int:
        """1 when any reportable detector failed."""
        for result in self.results:
            if result.status is Status.FAILED and result.detector_id not in self.dont_report:
                return 1
        return 0

    def findings(self) -> List[Finding]:
        return [f for r in self.results for f in r.findings]

    def to_dict(self) -> dict:
        summary = self.counts()
        summary["score"] = self.score
        return {
            "schema_version": SCHEMA_VERSION,
            "analyzed_at": datetime.now().isoformat(),
            "root": self.root,
            "environment": self.environment,
            "ci": self.ci,
            "elapsed": round(self.elapsed, 4),
            "status": self.overall_status.value,
            "exit_code": self.exit_code,
            "summary": summary,
            "results": [self._result_dict(r) for r in self.results],
        }

    def _result_dict(self, result: RunResult) -> dict:
        data = result.to_dict()
        descriptor = self.descriptors.get(result.detector_id)
        if descriptor is not None:
            data["metadata"] = descriptor.to_dict()
        data["reportable"] = result.detector_id not in self.dont_report
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)


# ============================================================================
# Console rendering
# ============================================================================

SEV_STYLES = {
    'CRITICAL': 'bold red', 'HIGH': 'red',
    'MEDIUM': 'yellow', 'LOW': 'green', 'INFO': 'dim'
}

STATUS_STYLES = {
    Status.PASSED: 'bold green',
    Status.FAILED: 'bold red',
    Status.WARNING: 'bold yellow',
    Status.ERROR: 'bold magenta',
    Status.SKIPPED: 'dim',
}


def _build_stats_panel(report: BatchReport) -> Panel:
    """Build the statistics panel."""
    stats = Table(show_header=False, box=None, padding=(0, 1), expand=True)
    stats.add_column("key", style="bold cyan", no_wrap=True, ratio=3)
    stats.add_column("value", style="white", ratio=1)

    counts = report.counts()
    stats.add_row("Detectors Run", str(counts["total"]))
    stats.add_row("Score", f"{report.score}%")
    stats.add_row("Analysis Time", f"{report.elapsed:.2f}s")
    stats.add_row("Environment", report.environment + (" (CI)" if report.ci else ""))
    stats.add_row("", "")

    for key, status in (("passed", Status.PASSED), ("failed", Status.FAILED),
                        ("warnings", Status.WARNING), ("skipped", Status.SKIPPED),
                        ("errors", Status.ERROR)):
        if counts[key]:
            stats.add_row(Text(key.capitalize(), style=STATUS_STYLES[status]), str(counts[key]))

    sev_counts = defaultdict(int)
    for f in report.findings():
        sev_counts[f.severity.value] += 1
    if sev_counts:
        stats.add_row("", "")
    for sev in ['CRITICAL', 'HIGH', 'MEDIUM', 'LOW', 'INFO']:
        count = sev_counts.get(sev, 0)
        if count > 0:
            stats.add_row(Text(sev, style=SEV_STYLES.get(sev, "white")), str(count))

    return Panel(
        stats,
        title="[bold white]Analysis Statistics[/bold white]",
        border_style="cyan",
        box=box.ROUNDED,
        padding=(1, 1),
    )


def _build_results_table(report: BatchReport) -> Table:
    table = Table(box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Detector", style="bold white", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Findings", justify="right")
    table.add_column("Summary", style="dim")
    for result in report.results:
        descriptor = report.descriptors.get(result.detector_id)
        name = descriptor.name if descriptor else result.detector_id
        status = Text(result.status.value.upper(), style=STATUS_STYLES[result.status])
        if result.detector_id in report.dont_report:
            status.append(" (not reported)", style="dim")
        table.add_row(name, status, str(len(result.findings)), result.summary)
    return table


def _lexer_for(path: str) -> str:
    if path.endswith(('.json', '.lock')):
        return "json"
    if path.endswith('.php'):
        return "php"
    return "text"


def _build_finding_panel(f: Finding, detector_id: str) -> Panel:
    """Build a Rich Panel for a single finding."""
    sev = f.severity.value
    border_map = {
        'CRITICAL': 'bold red', 'HIGH': 'red',
        'MEDIUM': 'yellow', 'LOW': 'green', 'INFO': 'dim white'
    }
    sev_style_map = {
        'CRITICAL': 'bold white on red', 'HIGH': 'bold red',
        'MEDIUM': 'bold yellow', 'LOW': 'bold green', 'INFO': 'dim'
    }

    title = Text()
    title.append(f" {sev} ", style=sev_style_map.get(sev, "white"))
    title.append(f" {f.message} ", style="bold white")
    title.append(f" {detector_id} ", style="dim")

    content_parts = []

    location = Text()
    location.append("Location: ", style="bold cyan")
    location.append(f.location.path or "-", style="white")
    if f.location.line:
        location.append(f":{f.location.line}", style="dim")
    content_parts.append(location)

    recommendation = Text()
    recommendation.append("\nFix: ", style="bold magenta")
    recommendation.append(f.recommendation, style="italic white")
    content_parts.append(recommendation)

    if f.code_snippet:
        content_parts.append(Text(""))
        content_parts.append(Syntax(f.code_snippet, _lexer_for(f.location.path), theme="monokai"))

    return Panel(
        Group(*content_parts),
        title=title,
        border_style=border_map.get(sev, 'white'),
        box=box.ROUNDED,
        padding=(1, 2),
    )


def render_console(report: BatchReport, out: Optional[Console] = None):
    """Print the report with Rich panels and tables."""
    out = out or console

    header_text = Text()
    header_text.append("Project: ", style="bold cyan")
    header_text.append(f"{report.root}  ", style="white")
    header_text.append("Date: ", style="bold cyan")
    header_text.append(datetime.now().strftime('%Y-%m-%d %H:%M:%S'), style="white")
    out.print(Panel(
        Align.center(header_text),
        title="[bold white]laraguard[/bold white]",
        border_style="blue",
        box=box.ROUNDED,
    ))
    out.print()
    out.print(_build_stats_panel(report))
    out.print()
    out.print(_build_results_table(report))

    flagged = [r for r in report.results if r.findings]
    if flagged:
        out.print(Rule("[bold white]Findings[/bold white]", style="red"))
        out.print()
        for result in flagged:
            for f in result.findings:
                out.print(_build_finding_panel(f, result.detector_id))
                out.print()

    if report.errors:
        out.print(Rule("[bold white]Detector Errors[/bold white]", style="magenta"))
        for result in report.errors:
            out.print(Text(f"  {result.detector_id}: {result.summary}", style="magenta"))
        out.print()

    overall = report.overall_status
    message = {
        Status.PASSED: "All checks passed.",
        Status.WARNING: "Completed with warnings.",
        Status.FAILED: "Security checks failed.",
    }[overall]
    out.print(Panel(
        Align.center(Text(message, style=STATUS_STYLES[overall])),
        border_style=STATUS_STYLES[overall].replace("bold ", ""),
        box=box.ROUNDED,
        padding=(1, 4),
    ))


def write_plain_text(report: BatchReport, file_path: str):
    """Plain text version of the report (for file output)."""
    with open(file_path, 'w', encoding='utf-8') as out:
        for result in report.results:
            out.write(f"\n{'=' * 70}\n")
            out.write(f"  [{result.status.value.upper()}] {result.detector_id}: {result.summary}\n")
            for f in result.findings:
                where = f.location.path + (f":{f.location.line}" if f.location.line else "")
                out.write(f"    - [{f.severity.value}] {f.message}\n")
                out.write(f"      at {where}\n")
                out.write(f"      fix: {f.recommendation}\n")
        counts = report.counts()
        out.write(f"\n{'=' * 70}\n")
        out.write("Summary: " + ", ".join(f"{k}={v}" for k, v in counts.items()))
        out.write(f", score={report.score}\n")
