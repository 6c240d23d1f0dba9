"""
Frontend vulnerable dependencies
================================
Runs ``npm audit`` (when ``package-lock.json`` exists) or ``yarn audit``
(when only ``yarn.lock`` does) under the configured command timeout and
turns the reported vulnerabilities into findings, each carrying the
installed version read from the lock file. When the tool reports only
totals, one summary finding is produced instead.

A timeout or output that cannot be parsed at all makes the check
inconclusive (Skipped). A missing executable or a lock file that cannot
be read is an Error.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..audit import (
    AuditIssue, AuditReport, parse_npm_audit, parse_npm_plain_text, parse_yarn_audit,
    severity_from_summary,
)
from ..detector import Detector, RunContext, docs_url, plural
from ..errors import LockFileError, ToolNotFoundError
from ..lockfiles import InstalledPackage, find_package_line, read_package_lock, read_yarn_lock
from ..models import Category, DetectorDescriptor, Finding, RunResult, Severity
from ..process import CommandOutcome, run_command
from ..source import ProjectSource

logger = logging.getLogger(__name__)

PACKAGE_JSON = "package.json"
PACKAGE_LOCK = "package-lock.json"
YARN_LOCK = "yarn.lock"

NPM_AUDIT = ["npm", "audit", "--json", "--ignore-scripts"]
YARN_AUDIT = ["yarn", "audit", "--json", "--no-progress"]

CommandRunner = Callable[..., Optional[CommandOutcome]]


class FrontendDependenciesDetector(Detector):
    descriptor = DetectorDescriptor(
        id="frontend-vulnerable-dependencies",
        name="Frontend Vulnerable Dependencies",
        description="Scans npm/yarn dependencies for known security vulnerabilities",
        category=Category.SECURITY,
        default_severity=Severity.CRITICAL,
        tags=frozenset({"dependencies", "npm", "yarn", "vulnerabilities", "frontend", "javascript"}),
        estimated_fix_minutes=60,
        docs_url=docs_url("frontend-vulnerable-dependencies"),
    )

    def __init__(self, config=None, command_runner: Optional[CommandRunner] = None):
        super().__init__(config)
        self.command_runner = command_runner or run_command

    def is_applicable(self, context: RunContext) -> bool:
        return self.source(context).exists(PACKAGE_JSON)

    def skip_reason(self) -> str:
        return "No package.json found - not a frontend project"

    def run(self, context: RunContext) -> RunResult:
        source = self.source(context)
        if source.exists(PACKAGE_LOCK):
            tool, lock_name, command, reader = "npm", PACKAGE_LOCK, NPM_AUDIT, read_package_lock
        elif source.exists(YARN_LOCK):
            tool, lock_name, command, reader = "yarn", YARN_LOCK, YARN_AUDIT, read_yarn_lock
        else:
            return self.result("Frontend dependency lock file not found", [self.finding(
                source, source.path(PACKAGE_JSON), None,
                "No package-lock.json or yarn.lock found",
                Severity.MEDIUM,
                'Run "npm install" or "yarn install" to generate lock file for dependency tracking',
                metadata={"issue_type": "missing_lock_file"},
            )])

        lock_path = source.path(lock_name)
        try:
            installed = reader(lock_path)
        except LockFileError as e:
            return self.error(f"Unable to read {lock_name}: {e}")
        logger.debug("%s lists %d installed packages", lock_name, len(installed))

        try:
            outcome = self.command_runner(command, cwd=source.root, timeout=self.config.command_timeout)
        except ToolNotFoundError as e:
            return self.error(str(e))
        if outcome is None:
            return self.skipped(f"{tool} audit timed out after {self.config.command_timeout:g}s; "
                                "frontend dependency check inconclusive")

        report = self.parse_output(tool, outcome)
        if report is None:
            logger.debug("%s audit produced no usable output (exit %s)", tool, outcome.returncode)
            return self.skipped(f"Unable to parse {tool} audit output; frontend dependency check inconclusive")

        findings = self.build_findings(source, tool, lock_path, report, installed)
        if not findings:
            return self.passed("No vulnerable frontend dependencies detected")
        return self.result(f"Found {plural(len(findings), 'frontend dependency security issue')}", findings)

    @staticmethod
    def parse_output(tool: str, outcome: CommandOutcome) -> Optional[AuditReport]:
        if tool == "yarn":
            return parse_yarn_audit(outcome.stdout)
        report = parse_npm_audit(outcome.stdout)
        if report is None:
            # Some npm versions print the human summary on stderr
            report = parse_npm_plain_text(outcome.output)
        return report

    def build_findings(self, source: ProjectSource, tool: str, lock_path: Path, report: AuditReport,
                       installed: Dict[str, InstalledPackage]) -> List[Finding]:
        ignored_packages = set(self.config.detector_option_list(self.id, "ignored_packages"))
        ignored_advisories = set(self.config.detector_option_list(self.id, "ignored_advisories"))
        lines = source.get_lines(lock_path)

        findings = []
        for issue in report.issues:
            if issue.package in ignored_packages:
                continue
            if issue.advisory_id and issue.advisory_id in ignored_advisories:
                continue
            line = find_package_line(lines, lock_path.name, issue.package)
            package = installed.get(issue.package)
            findings.append(self._issue_finding(source, lock_path, line, issue, package))

        if report.issues:
            return findings

        total = report.summary_total
        if total <= 0:
            return findings
        if report.summary:
            severity = severity_from_summary(report.summary)
        elif tool == "yarn":
            severity = Severity.HIGH
        else:
            severity = self.descriptor.default_severity
        if tool == "yarn":
            recommendation = 'Run "yarn audit" to see details and upgrade vulnerable packages'
        else:
            recommendation = 'Run "npm audit" to see details and "npm audit fix" to automatically fix vulnerabilities'
        findings.append(self.finding(
            source, lock_path, 1,
            f"Found {total} frontend package vulnerabilities",
            severity,
            recommendation,
            metadata={"total_vulnerabilities": total, "issue_type": "summary",
                      "breakdown": dict(report.summary), "installed_packages": len(installed)},
        ))
        return findings

    def _issue_finding(self, source: ProjectSource, lock_path: Path, line: int,
                       issue: AuditIssue, package: Optional[InstalledPackage] = None) -> Finding:
        metadata = {
            "package": issue.package,
            "severity": issue.severity_label,
            "issue_type": "vulnerability",
        }
        if package is not None:
            metadata["installed_version"] = package.version
            metadata["dev"] = package.dev
        if issue.advisory_id:
            metadata["advisory_id"] = issue.advisory_id
        if issue.cves:
            metadata["cves"] = list(issue.cves)
        if issue.cwe:
            metadata["cwe"] = issue.cwe
        if issue.vulnerable_versions:
            metadata["vulnerable_versions"] = issue.vulnerable_versions
        if issue.patched_versions:
            metadata["patched_versions"] = issue.patched_versions
        if issue.url:
            metadata["url"] = issue.url
        return self.finding(
            source, lock_path, line,
            f'Frontend package "{issue.package}" has a known vulnerability: {issue.title}',
            issue.severity,
            issue.recommendation or f'Update package "{issue.package}" to a patched version',
            metadata=metadata,
        )
