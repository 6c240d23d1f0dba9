"""
Vulnerable Composer dependencies
================================
Installed versions come from ``composer.lock``; advisories from the
configured JSON feed (``advisory_feed``) or, without one, from the OSV
batch API. Every matching advisory of a package is folded into a single
finding. Packages the lock file marks abandoned get their own Medium
finding.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..advisories import (
    AbandonedPackage, AdvisoryFeed, AdvisoryMatcher, OsvAdvisoryFetcher,
    load_advisory_feed, with_abandoned,
)
from ..detector import Detector, RunContext, docs_url
from ..errors import AdvisoryFeedError, LockFileError
from ..lockfiles import find_package_line, installed_versions, read_composer_lock
from ..models import AdvisoryRecord, Category, DetectorDescriptor, Finding, RunResult, Severity
from ..source import ProjectSource

logger = logging.getLogger(__name__)

COMPOSER_LOCK = "composer.lock"
MAX_LISTED_TITLES = 3


def format_recommendation(record: AdvisoryRecord) -> str:
    text = f'Update "{record.package}" (currently {record.installed_version}) to a patched version.'
    cves = [i for i in record.identifiers if i.upper().startswith("CVE-")]
    if cves:
        text += f" Known CVEs: {', '.join(cves)}."
    titles = [a.title for a in record.matched_advisories]
    if titles:
        text += " Vulnerabilities: " + "; ".join(titles[:MAX_LISTED_TITLES])
        if len(titles) > MAX_LISTED_TITLES:
            text += f" (and {len(titles) - MAX_LISTED_TITLES} more)"
        text += "."
    link = next((a.link for a in record.matched_advisories if a.link), None)
    if link:
        text += f" See {link} for details."
    return text


class VulnerableDependenciesDetector(Detector):
    descriptor = DetectorDescriptor(
        id="vulnerable-dependencies",
        name="Vulnerable Dependencies",
        description="Scans composer dependencies for known security vulnerabilities",
        category=Category.SECURITY,
        default_severity=Severity.CRITICAL,
        tags=frozenset({"dependencies", "composer", "vulnerabilities", "cve"}),
        estimated_fix_minutes=60,
        docs_url=docs_url("vulnerable-dependencies"),
    )

    def __init__(self, config=None, advisory_source=None, matcher: Optional[AdvisoryMatcher] = None):
        super().__init__(config)
        self.advisory_source = advisory_source or OsvAdvisoryFetcher(timeout=self.config.read_timeout * 2)
        self.matcher = matcher or AdvisoryMatcher()

    def is_applicable(self, context: RunContext) -> bool:
        return self.source(context).exists(COMPOSER_LOCK)

    def skip_reason(self) -> str:
        return "No composer.lock file found"

    def run(self, context: RunContext) -> RunResult:
        source = self.source(context)
        lock_path = source.path(COMPOSER_LOCK)
        try:
            packages = read_composer_lock(lock_path)
        except LockFileError as e:
            return self.error(f"Unable to read composer.lock: {e}")

        installed = installed_versions(packages)
        try:
            feed = self.load_feed(context, installed)
        except AdvisoryFeedError as e:
            return self.error(f"Unable to load advisory feed: {e}")
        if feed is None:
            return self.skipped("Security advisories could not be fetched; dependency check inconclusive")

        feed = with_abandoned(feed, {
            name: pkg.replacement for name, pkg in packages.items() if pkg.abandoned
        })
        report = self.matcher.match(installed, feed)

        lines = source.get_lines(lock_path)
        line_cache: Dict[str, int] = {}

        def line_of(package: str) -> int:
            if package not in line_cache:
                line_cache[package] = find_package_line(lines, COMPOSER_LOCK, package)
            return line_cache[package]

        findings: List[Finding] = []
        for record in report.records:
            findings.append(self._vulnerability_finding(source, lock_path, record, line_of(record.package)))
        for abandoned in report.abandoned:
            findings.append(self._abandoned_finding(source, lock_path, abandoned, line_of(abandoned.package)))

        if not findings:
            return self.passed("No vulnerable dependencies detected")
        return self.result(f"Found {len(findings)} dependency security issue(s)", findings)

    def load_feed(self, context: RunContext, installed: Dict[str, str]) -> Optional[AdvisoryFeed]:
        """Configured feed file when there is one, otherwise the advisory source."""
        if self.config.advisory_feed:
            path = Path(self.config.advisory_feed)
            if not path.is_absolute():
                path = Path(context.root) / path
            return load_advisory_feed(str(path))
        if not installed:
            return {}
        return self.advisory_source.fetch(installed)

    def _vulnerability_finding(self, source: ProjectSource, lock_path: Path,
                               record: AdvisoryRecord, line: int) -> Finding:
        count = len(record.matched_advisories)
        if count == 1:
            message = f'Package "{record.package}" ({record.installed_version}) has a known vulnerability'
        else:
            message = (f'Package "{record.package}" ({record.installed_version}) '
                       f'has {count} known vulnerabilities')
        return self.finding(
            source, lock_path, line, message, record.severity, format_recommendation(record),
            metadata={
                "package": record.package,
                "version": record.installed_version,
                "vulnerability_count": count,
                "identifiers": record.identifiers,
                "links": list(dict.fromkeys(a.link for a in record.matched_advisories if a.link)),
                "advisories": [a.to_dict() for a in record.matched_advisories],
            },
        )

    def _abandoned_finding(self, source: ProjectSource, lock_path: Path,
                           abandoned: AbandonedPackage, line: int) -> Finding:
        if abandoned.replacement:
            recommendation = f'Replace with "{abandoned.replacement}": composer require {abandoned.replacement}'
        else:
            recommendation = f'Find an alternative package and remove "{abandoned.package}"'
        return self.finding(
            source, lock_path, line,
            f'Package "{abandoned.package}" is abandoned and no longer maintained',
            Severity.MEDIUM,
            recommendation,
            metadata={"package": abandoned.package, "replacement": abandoned.replacement},
        )
