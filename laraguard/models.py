"""
Core data model
===============
Findings, detector descriptors, run results and the small value types the
engine services hand to detectors. Everything here is immutable once built.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple


# ============================================================================
# Enums
# ============================================================================

class Severity(Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER[self]

    @classmethod
    def from_label(cls, label: Optional[str], default: "Severity" = None) -> "Severity":
        """Map advisory/audit severity labels (``moderate``, ``warn``...) onto Severity."""
        if default is None:
            default = cls.CRITICAL
        if not isinstance(label, str):
            return default
        return _SEVERITY_ALIASES.get(label.strip().lower(), default)


SEVERITY_ORDER = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}

_SEVERITY_ALIASES = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "moderate": Severity.MEDIUM,
    "medium": Severity.MEDIUM,
    "low": Severity.LOW,
    "info": Severity.INFO,
    "none": Severity.INFO,
}


class Status(Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    ERROR = "error"
    SKIPPED = "skipped"


class Category(Enum):
    SECURITY = "security"
    PERFORMANCE = "performance"
    RELIABILITY = "reliability"
    CODE_QUALITY = "code_quality"
    BEST_PRACTICES = "best_practices"


def max_severity(severities: Iterable[Severity]) -> Optional[Severity]:
    """Highest severity in the iterable, or None when it is empty."""
    best = None
    for sev in severities:
        if best is None or SEVERITY_ORDER[sev] > SEVERITY_ORDER[best]:
            best = sev
    return best


# ============================================================================
# Findings
# ============================================================================

@dataclass(frozen=True)
class Location:
    path: str
    line: Optional[int] = None

    def to_dict(self) -> dict:
        return {"path": self.path, "line": self.line}


@dataclass(frozen=True)
class Finding:
    """One reported issue."""
    message: str
    location: Location
    severity: Severity
    recommendation: str
    code_snippet: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "location": self.location.to_dict(),
            "severity": self.severity.value,
            "recommendation": self.recommendation,
            "code": self.code_snippet,
            "metadata": dict(self.metadata),
        }


def status_for_findings(findings: Iterable[Finding]) -> Status:
    """Critical/High fail, Medium/Low warn, Info-only or nothing passes."""
    worst = max_severity(f.severity for f in findings)
    if worst is None or worst is Severity.INFO:
        return Status.PASSED
    if SEVERITY_ORDER[worst] >= SEVERITY_ORDER[Severity.HIGH]:
        return Status.FAILED
    return Status.WARNING


# ============================================================================
# Detector descriptor & run result
# ============================================================================

@dataclass(frozen=True)
class DetectorDescriptor:
    id: str
    name: str
    description: str
    category: Category
    default_severity: Severity
    tags: FrozenSet[str] = frozenset()
    estimated_fix_minutes: Optional[int] = None
    runs_in_ci: bool = True
    relevant_environments: Optional[FrozenSet[str]] = None
    docs_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "severity": self.default_severity.value,
            "tags": sorted(self.tags),
            "docsUrl": self.docs_url,
            "estimatedFixMinutes": self.estimated_fix_minutes,
            "runsInCI": self.runs_in_ci,
            "relevantEnvironments": sorted(self.relevant_environments)
            if self.relevant_environments is not None else None,
        }


@dataclass(frozen=True)
class RunResult:
    detector_id: str
    status: Status
    summary: str
    findings: Tuple[Finding, ...] = ()
    elapsed: float = 0.0

    @classmethod
    def passed(cls, detector_id: str, summary: str) -> "RunResult":
        return cls(detector_id, Status.PASSED, summary)

    @classmethod
    def skipped(cls, detector_id: str, reason: str) -> "RunResult":
        return cls(detector_id, Status.SKIPPED, reason)

    @classmethod
    def error(cls, detector_id: str, message: str) -> "RunResult":
        return cls(detector_id, Status.ERROR, message)

    @classmethod
    def from_findings(cls, detector_id: str, summary: str,
                      findings: Iterable[Finding]) -> "RunResult":
        """Derive the status from the worst finding severity."""
        findings = tuple(findings)
        return cls(detector_id, status_for_findings(findings), summary, findings)

    def with_elapsed(self, elapsed: float) -> "RunResult":
        return RunResult(self.detector_id, self.status, self.summary, self.findings, elapsed)

    def to_dict(self) -> dict:
        return {
            "detector": self.detector_id,
            "status": self.status.value,
            "summary": self.summary,
            "elapsed": round(self.elapsed, 4),
            "findings": [f.to_dict() for f in self.findings],
        }


# ============================================================================
# Engine service value types
# ============================================================================

class Resolution(Enum):
    LITERAL = "literal"
    ENV_DEFAULT = "env_default"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class ConfigEntry:
    """Statically resolved value of one configuration key."""
    resolution: Resolution
    value: Any = None
    source_line: int = 0

    @property
    def is_determinate(self) -> bool:
        return self.resolution is not Resolution.INDETERMINATE


class PairKind(Enum):
    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True)
class PairEvent:
    kind: PairKind
    line: int


@dataclass(frozen=True)
class MatchedAdvisory:
    title: str
    identifiers: Tuple[str, ...]
    severity: Severity
    affected_range: str
    link: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "identifiers": list(self.identifiers),
            "severity": self.severity.value,
            "affected_range": self.affected_range,
            "link": self.link,
        }


@dataclass(frozen=True)
class AdvisoryRecord:
    """All advisories matching one installed package, merged."""
    package: str
    installed_version: str
    matched_advisories: Tuple[MatchedAdvisory, ...]

    @property
    def severity(self) -> Severity:
        return max_severity(a.severity for a in self.matched_advisories) or Severity.INFO

    @property
    def identifiers(self) -> List[str]:
        seen: Dict[str, None] = {}
        for advisory in self.matched_advisories:
            for ident in advisory.identifiers:
                seen.setdefault(ident, None)
        return list(seen)
