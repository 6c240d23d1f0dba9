"""
Advisory matcher
================
Matches installed ``package -> version`` maps against an advisory feed.

Feed JSON accepted by ``load_advisory_feed``::

    {
      "vendor/package": [
        {"title": "...", "affected": ">=1.0,<1.2.5", "severity": "high",
         "identifiers": ["CVE-2024-0001"], "link": "https://..."}
      ],
      "other/package": {
        "advisories": [...],
        "abandoned": true,
        "replacement": "new/package"
      }
    }

A top-level ``{"advisories": {...}}`` wrapper (Packagist style) is also
accepted, as are the ``affected_versions`` / ``affectedVersions`` /
``vulnerable_versions`` and ``cve`` field spellings.

All advisories matching one package are merged into one AdvisoryRecord.
Packages missing from the feed yield nothing.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from .errors import AdvisoryFeedError
from .models import AdvisoryRecord, MatchedAdvisory, Severity
from .versions import Version, matches

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Known vulnerability"
OSV_QUERYBATCH_URL = "https://api.osv.dev/v1/querybatch"


# ============================================================================
# Feed
# ============================================================================

@dataclass(frozen=True)
class Advisory:
    title: str
    affected: Tuple[str, ...]
    severity: Severity = Severity.CRITICAL
    identifiers: Tuple[str, ...] = ()
    link: Optional[str] = None

    @property
    def affected_range(self) -> str:
        return " || ".join(self.affected)


@dataclass(frozen=True)
class FeedEntry:
    """Everything the feed knows about one package."""
    package: str
    advisories: Tuple[Advisory, ...] = ()
    abandoned: bool = False
    replacement: Optional[str] = None


AdvisoryFeed = Dict[str, FeedEntry]


def _strings(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return []


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(v for v in values if v))


def parse_advisory(raw: Mapping[str, Any]) -> Advisory:
    """Build an Advisory from one feed record, tolerating field spellings."""
    affected: List[str] = []
    for key in ("affected", "affected_versions", "affectedVersions", "vulnerable_versions"):
        if key in raw:
            affected = _strings(raw[key])
            break

    identifiers = _strings(raw.get("identifiers"))
    for key in ("cve", "id", "advisoryId", "ghsa", "github_advisory_id"):
        identifiers += _strings(raw.get(key))

    title = raw.get("title")
    link = raw.get("link") or raw.get("url")
    return Advisory(
        title=title if isinstance(title, str) and title else DEFAULT_TITLE,
        affected=tuple(affected),
        severity=Severity.from_label(raw.get("severity")),
        identifiers=_unique(identifiers),
        link=link if isinstance(link, str) else None,
    )


def parse_advisory_feed(data: Any) -> AdvisoryFeed:
    if not isinstance(data, dict):
        raise AdvisoryFeedError("advisory feed must be a JSON object")
    if isinstance(data.get("advisories"), dict):
        data = data["advisories"]

    feed: AdvisoryFeed = {}
    for package, body in data.items():
        if not isinstance(package, str) or not package:
            continue
        abandoned, replacement = False, None
        if isinstance(body, dict):
            raw_advisories = body.get("advisories", [])
            flag = body.get("abandoned", False)
            abandoned = bool(flag)
            replacement = body.get("replacement") or (flag if isinstance(flag, str) else None)
        else:
            raw_advisories = body
        if isinstance(raw_advisories, dict):
            raw_advisories = list(raw_advisories.values())
        if not isinstance(raw_advisories, list):
            raise AdvisoryFeedError(f"advisories for {package!r} must be a list")
        advisories = tuple(parse_advisory(a) for a in raw_advisories if isinstance(a, dict))
        feed[package] = FeedEntry(package, advisories, abandoned,
                                  replacement if isinstance(replacement, str) else None)
    return feed


def load_advisory_feed(path: str) -> AdvisoryFeed:
    """Load a JSON advisory feed from disk."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise AdvisoryFeedError(f"{path} is not valid JSON: {e}") from e
    except OSError as e:
        raise AdvisoryFeedError(f"Unable to read advisory feed {path}: {e}") from e
    return parse_advisory_feed(data)


def with_abandoned(feed: Mapping[str, FeedEntry],
                   abandoned: Mapping[str, Optional[str]]) -> AdvisoryFeed:
    """Copy of ``feed`` where the given packages are flagged abandoned.

    ``abandoned`` maps package name to its suggested replacement (or None).
    """
    merged = dict(feed)
    for package, replacement in abandoned.items():
        entry = merged.get(package, FeedEntry(package))
        merged[package] = FeedEntry(
            package, entry.advisories, True, entry.replacement or replacement,
        )
    return merged


# ============================================================================
# Matching
# ============================================================================

@dataclass(frozen=True)
class AbandonedPackage:
    package: str
    installed_version: str
    replacement: Optional[str] = None


@dataclass(frozen=True)
class MatchReport:
    records: Tuple[AdvisoryRecord, ...] = ()
    abandoned: Tuple[AbandonedPackage, ...] = ()


class AdvisoryMatcher:
    """Evaluates every advisory range of a package against its installed version."""

    def match_package(self, package: str, installed_version: str,
                      entry: FeedEntry) -> Optional[AdvisoryRecord]:
        version = Version.parse(installed_version)
        if version is None:
            logger.debug("Cannot compare %s@%s against advisories", package, installed_version)
            return None
        matched = [
            MatchedAdvisory(
                title=advisory.title,
                identifiers=advisory.identifiers,
                severity=advisory.severity,
                affected_range=advisory.affected_range,
                link=advisory.link,
            )
            for advisory in entry.advisories
            if advisory.affected and matches(version, advisory.affected)
        ]
        if not matched:
            return None
        return AdvisoryRecord(package, installed_version, tuple(matched))

    def match(self, installed: Mapping[str, str], feed: Mapping[str, FeedEntry]) -> MatchReport:
        """Merged advisory records and abandoned packages, in installed order."""
        records: List[AdvisoryRecord] = []
        abandoned: List[AbandonedPackage] = []
        for package, installed_version in installed.items():
            entry = feed.get(package)
            if entry is None:
                continue
            record = self.match_package(package, installed_version, entry)
            if record is not None:
                records.append(record)
            if entry.abandoned:
                abandoned.append(AbandonedPackage(package, installed_version, entry.replacement))
        return MatchReport(tuple(records), tuple(abandoned))


# ============================================================================
# OSV fetcher
# ============================================================================

class OsvAdvisoryFetcher:
    """Builds a feed for the installed packages from the OSV batch API.

    Each returned vulnerability is pinned to the queried version, so the
    matcher sees it as affecting exactly what is installed.
    """

    def __init__(self, client: Optional[httpx.Client] = None, url: str = OSV_QUERYBATCH_URL,
                 ecosystem: str = "Packagist", timeout: float = 10.0):
        self.client = client
        self.url = url
        self.ecosystem = ecosystem
        self.timeout = timeout

    def fetch(self, installed: Mapping[str, str]) -> Optional[AdvisoryFeed]:
        """Feed for ``installed``; None when the service cannot be reached."""
        queries = [
            {"package": {"name": name, "ecosystem": self.ecosystem}, "version": version}
            for name, version in installed.items()
            if name and isinstance(version, str)
        ]
        if not queries:
            return {}

        try:
            if self.client is not None:
                response = self.client.post(self.url, json={"queries": queries}, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.url, json={"queries": queries})
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch security advisories: %s", e)
            return None

        if response.status_code != 200:
            logger.warning("Advisory service answered HTTP %s", response.status_code)
            return None
        try:
            decoded = response.json()
        except ValueError as e:
            logger.warning("Advisory service returned invalid JSON: %s", e)
            return None
        results = decoded.get("results") if isinstance(decoded, dict) else None
        if not isinstance(results, list):
            return None
        return self._map_results(results, queries)

    def _map_results(self, results: List[Any], queries: List[Dict[str, Any]]) -> AdvisoryFeed:
        feed: AdvisoryFeed = {}
        for query, result in zip(queries, results):
            vulns = result.get("vulns") if isinstance(result, dict) else None
            if not isinstance(vulns, list):
                continue
            package, version = query["package"]["name"], query["version"]
            advisories = tuple(
                self._advisory(v, version) for v in vulns if isinstance(v, dict)
            )
            if advisories:
                feed[package] = FeedEntry(package, advisories)
        return feed

    @staticmethod
    def _advisory(vuln: Mapping[str, Any], version: str) -> Advisory:
        aliases = _strings(vuln.get("aliases"))
        identifiers = [a for a in aliases if a.startswith("CVE-")] + _strings(vuln.get("id"))

        link = None
        for reference in vuln.get("references") or []:
            if isinstance(reference, dict) and isinstance(reference.get("url"), str):
                link = reference["url"]
                break

        summary = vuln.get("summary")
        if not isinstance(summary, str) or not summary:
            summary = vuln.get("id") if isinstance(vuln.get("id"), str) else DEFAULT_TITLE
        db_specific = vuln.get("database_specific")
        label = db_specific.get("severity") if isinstance(db_specific, dict) else None
        return Advisory(
            title=summary,
            affected=(version,),
            severity=Severity.from_label(label),
            identifiers=_unique(identifiers),
            link=link,
        )
