"""
Audit tool output parsers
=========================
Normalises ``npm audit --json`` (v7+ ``vulnerabilities`` map, v6
``advisories`` map, ``metadata.vulnerabilities`` summary, plus a plain-text
"N vulnerabilities" fallback) and ``yarn audit --json`` (newline-delimited
``auditAdvisory`` / ``auditSummary`` events) into one AuditReport.

A parser returns None when the output carries nothing usable, so the caller
can treat the source as inconclusive.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .models import Severity

logger = logging.getLogger(__name__)

_PLAIN_TEXT_COUNT = re.compile(r'(\d+)\s+vulnerabilit', re.IGNORECASE)


@dataclass(frozen=True)
class AuditIssue:
    """One vulnerable package reported by an audit tool."""
    package: str
    title: str
    severity: Severity
    severity_label: str = "unknown"
    advisory_id: Optional[str] = None
    cves: Tuple[str, ...] = ()
    cwe: Optional[str] = None
    vulnerable_versions: Optional[str] = None
    patched_versions: Optional[str] = None
    url: Optional[str] = None
    recommendation: Optional[str] = None


@dataclass
class AuditReport:
    issues: List[AuditIssue] = field(default_factory=list)
    summary: Dict[str, int] = field(default_factory=dict)
    total: Optional[int] = None

    @property
    def summary_total(self) -> int:
        if self.total is not None:
            return self.total
        return sum(self.summary.values())


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _advisory_id(raw: Mapping[str, Any]) -> Optional[str]:
    for key in ('id', 'github_advisory_id', 'source'):
        value = raw.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
            return str(value)
    return None


def _fix_recommendation(package: str, raw: Mapping[str, Any]) -> Optional[str]:
    text = _str(raw.get('recommendation'))
    if text:
        return text
    fix = raw.get('fixAvailable')
    if isinstance(fix, dict):
        name, version = _str(fix.get('name')), _str(fix.get('version'))
        if name and version:
            if name == package:
                return f'Update "{package}" to version {version} or later'
            return f'Update "{name}" to version {version} to fix vulnerability in "{package}"'
    return None


def audit_issue(package: str, raw: Mapping[str, Any]) -> AuditIssue:
    """Build an AuditIssue from one advisory/vulnerability record."""
    # npm v7 nests the advisory objects under "via"
    via = next((v for v in raw.get('via') or [] if isinstance(v, dict)), {})
    title = _str(raw.get('title')) or _str(via.get('title'))
    label = raw.get('severity')
    cves = raw.get('cves')
    return AuditIssue(
        package=package,
        title=title or 'Known security vulnerability',
        severity=Severity.from_label(label),
        severity_label=label if isinstance(label, str) else 'unknown',
        advisory_id=_advisory_id(raw) or _advisory_id(via),
        cves=tuple(c for c in cves if isinstance(c, str)) if isinstance(cves, list) else (),
        cwe=_str(raw.get('cwe')),
        vulnerable_versions=_str(raw.get('vulnerable_versions')) or _str(raw.get('range')),
        patched_versions=_str(raw.get('patched_versions')),
        url=_str(raw.get('url')) or _str(via.get('url')),
        recommendation=_fix_recommendation(package, raw),
    )


def _numeric_breakdown(raw: Mapping[str, Any]) -> Dict[str, int]:
    breakdown = {}
    for key, value in raw.items():
        if key == 'total':
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            breakdown[key] = int(value)
        elif isinstance(value, str) and value.isdigit():
            breakdown[key] = int(value)
    return breakdown


# ============================================================================
# npm
# ============================================================================

def parse_npm_audit(output: str) -> Optional[AuditReport]:
    """Parse ``npm audit --json`` output, falling back to plain text."""
    if not output or not output.strip():
        return None
    try:
        decoded = json.loads(output)
    except json.JSONDecodeError:
        logger.debug("npm audit output is not JSON, trying plain text")
        return parse_npm_plain_text(output)
    if not isinstance(decoded, dict):
        return parse_npm_plain_text(output)

    report = AuditReport()
    vulnerabilities = decoded.get('vulnerabilities')
    if isinstance(vulnerabilities, dict):
        for package, raw in vulnerabilities.items():
            if isinstance(package, str) and isinstance(raw, dict):
                report.issues.append(audit_issue(package, raw))

    advisories = decoded.get('advisories')
    if isinstance(advisories, dict):
        for raw in advisories.values():
            if isinstance(raw, dict) and isinstance(raw.get('module_name'), str):
                report.issues.append(audit_issue(raw['module_name'], raw))

    metadata = decoded.get('metadata')
    if isinstance(metadata, dict) and isinstance(metadata.get('vulnerabilities'), dict):
        summary = metadata['vulnerabilities']
        report.summary = _numeric_breakdown(summary)
        total = summary.get('total')
        if isinstance(total, (int, float)) and not isinstance(total, bool):
            report.total = int(total)
    return report


def parse_npm_plain_text(output: str) -> Optional[AuditReport]:
    m = _PLAIN_TEXT_COUNT.search(output)
    if not m:
        return None
    count = int(m.group(1))
    if count <= 0:
        return None
    return AuditReport(total=count)


# ============================================================================
# yarn
# ============================================================================

def parse_yarn_audit(output: str) -> Optional[AuditReport]:
    """Parse newline-delimited ``yarn audit --json`` events."""
    report = AuditReport()
    seen_summary = False
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict):
            continue
        data = event.get('data')
        if event.get('type') == 'auditAdvisory' and isinstance(data, dict):
            advisory = data.get('advisory')
            if isinstance(advisory, dict):
                package = _str(advisory.get('module_name')) or 'Unknown'
                report.issues.append(audit_issue(package, advisory))
        elif event.get('type') == 'auditSummary' and isinstance(data, dict):
            seen_summary = True
            vulnerabilities = data.get('vulnerabilities')
            if isinstance(vulnerabilities, dict):
                breakdown = _numeric_breakdown(vulnerabilities)
                if 'info' in breakdown and 'low' not in breakdown:
                    breakdown['low'] = breakdown['info']
                    del breakdown['info']
                report.summary = breakdown
            elif isinstance(vulnerabilities, (int, float)) and not isinstance(vulnerabilities, bool):
                report.total = int(vulnerabilities)

    if not report.issues and not seen_summary:
        return None
    return report


def severity_from_summary(summary: Mapping[str, int], default: Severity = Severity.LOW) -> Severity:
    """Worst severity bucket with a non-zero count."""
    if summary.get('critical', 0) > 0:
        return Severity.CRITICAL
    if summary.get('high', 0) > 0:
        return Severity.HIGH
    if summary.get('moderate', 0) > 0 or summary.get('medium', 0) > 0:
        return Severity.MEDIUM
    return default
