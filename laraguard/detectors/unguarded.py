"""
Unguarded models
================
``Model::unguard()`` switches off mass assignment protection for every
model until ``Model::reguard()`` runs. Each unguard call must be followed,
later in the same file, by its own reguard call; the pairing tracker
decides which ones are left open.
"""

from pathlib import Path
from typing import List

from ..detector import Detector, ParseTally, RunContext, collect_per_file, docs_url
from ..models import Category, DetectorDescriptor, Finding, RunResult, Severity
from ..pairing import PairingTracker
from ..source import ProjectSource
from ..syntax import call_scope, find_calls_by_name, get_node_line, parse

ELOQUENT_CLASSES = {
    "model",
    "eloquent",
    "illuminate\\database\\eloquent\\model",
    "illuminate\\database\\eloquent\\eloquent",
}

_CRITICAL_CONTEXTS = ("app/http/controllers", "http/controllers", "app/models", "models",
                      "app/services", "services")
_MEDIUM_CONTEXTS = ("database/seeders", "database/seeds")
_LOW_CONTEXTS = ("tests", "test.php")


def is_eloquent_scope(scope) -> bool:
    """Static call scopes that address the Eloquent base model.

    Dynamic scopes (``$class::unguard()``) are assumed to.
    """
    if scope is None or scope.startswith('$'):
        return True
    return scope.lstrip('\\').lower() in ELOQUENT_CLASSES


def severity_for_path(relative_path: str) -> Severity:
    normalized = relative_path.replace('\\', '/').lower()
    if any(ctx in normalized for ctx in _CRITICAL_CONTEXTS):
        return Severity.CRITICAL
    if any(ctx in normalized for ctx in _MEDIUM_CONTEXTS):
        return Severity.MEDIUM
    if any(ctx in normalized for ctx in _LOW_CONTEXTS):
        return Severity.LOW
    return Severity.HIGH


class UnguardedModelsDetector(Detector):
    descriptor = DetectorDescriptor(
        id="unguarded-models",
        name="Unguarded Models",
        description="Detects Model::unguard() usage that disables mass assignment protection",
        category=Category.SECURITY,
        default_severity=Severity.HIGH,
        tags=frozenset({"eloquent", "mass-assignment", "models", "unguard"}),
        estimated_fix_minutes=20,
        docs_url=docs_url("unguarded-models"),
    )

    def is_applicable(self, context: RunContext) -> bool:
        return bool(self.source(context).list_files([".php"]))

    def skip_reason(self) -> str:
        return "No PHP files found to analyze"

    def run(self, context: RunContext) -> RunResult:
        source = self.source(context)
        files = source.list_files([".php"])
        tally = ParseTally()
        findings = collect_per_file(files, lambda f: self.check_file(source, f, tally),
                                    self.config.worker_count())
        return self.conclude(tally, findings, "No unguarded models detected",
                             f"Found {len(findings)} instances of unguarded models")

    def check_file(self, source: ProjectSource, file_path: Path, tally: ParseTally) -> List[Finding]:
        content = source.read_text(file_path)
        if content is None or "unguard" not in content:
            return []
        tree = parse(content, str(file_path))
        if not tally.record(tree, source.relative(file_path)):
            return []

        tracker = PairingTracker()
        labels = {}
        for call in find_calls_by_name(tree, "unguard"):
            scope = call_scope(call)
            if call.type != "scoped_call_expression" or not is_eloquent_scope(scope):
                continue
            line = get_node_line(call)
            tracker.open(line)
            labels.setdefault(line, scope if scope and not scope.startswith('$') else "Model")
        for call in find_calls_by_name(tree, "reguard"):
            if call.type == "scoped_call_expression" and is_eloquent_scope(call_scope(call)):
                tracker.close(get_node_line(call))

        relative = source.relative(file_path)
        severity = severity_for_path(relative)
        return [
            self.finding(
                source, file_path, event.line,
                f"Model mass assignment protection disabled without re-guarding ({labels[event.line]}::unguard())",
                severity,
                "Call Model::reguard() immediately after importing or use $fillable/forceFill() "
                "instead of globally unguarding models.",
                metadata={"file": relative, "context_severity": severity.value},
            )
            for event in tracker.unresolved()
        ]
