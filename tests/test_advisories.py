"""Tests for advisory feeds, matching and the OSV fetcher."""

import json

import httpx
import pytest

from laraguard.advisories import (
    Advisory, AdvisoryMatcher, FeedEntry, OsvAdvisoryFetcher, load_advisory_feed,
    parse_advisory_feed, with_abandoned,
)
from laraguard.errors import AdvisoryFeedError
from laraguard.models import Severity


def entry(*advisories, **kwargs):
    return FeedEntry("left-pad", tuple(advisories), **kwargs)


class TestMatcher:
    """Installed versions against advisory ranges."""

    def test_matching_range(self):
        feed = {"left-pad": entry(Advisory("Bad pad", ("<1.3.0",), Severity.HIGH))}
        report = AdvisoryMatcher().match({"left-pad": "1.2.0"}, feed)
        assert len(report.records) == 1
        record = report.records[0]
        assert record.package == "left-pad"
        assert record.installed_version == "1.2.0"
        assert record.severity is Severity.HIGH

    def test_non_matching_range(self):
        feed = {"left-pad": entry(Advisory("Old pad", ("<1.0.0",)))}
        assert AdvisoryMatcher().match({"left-pad": "1.2.0"}, feed).records == ()

    def test_absent_package(self):
        feed = {"other": FeedEntry("other", (Advisory("x", ("*",)),))}
        assert AdvisoryMatcher().match({"left-pad": "1.2.0"}, feed).records == ()

    def test_merges_all_matches(self):
        feed = {"left-pad": entry(
            Advisory("A", ("<2.0",), Severity.MEDIUM, ("CVE-2024-1",)),
            Advisory("B", (">=1.0,<1.5",), Severity.CRITICAL, ("CVE-2024-2",)),
            Advisory("C", ("<1.0",), Severity.LOW),
        )}
        report = AdvisoryMatcher().match({"left-pad": "1.2.0"}, feed)
        record = report.records[0]
        assert [a.title for a in record.matched_advisories] == ["A", "B"]
        assert record.severity is Severity.CRITICAL
        assert record.identifiers == ["CVE-2024-1", "CVE-2024-2"]

    def test_unparseable_installed_version(self):
        feed = {"left-pad": entry(Advisory("A", ("*",)))}
        assert AdvisoryMatcher().match({"left-pad": "dev-main"}, feed).records == ()

    def test_abandoned(self):
        feed = {"left-pad": entry(abandoned=True, replacement="right-pad")}
        report = AdvisoryMatcher().match({"left-pad": "1.2.0"}, feed)
        assert report.records == ()
        assert report.abandoned[0].replacement == "right-pad"

    def test_with_abandoned_keeps_advisories(self):
        feed = {"left-pad": entry(Advisory("A", ("<2",)))}
        merged = with_abandoned(feed, {"left-pad": "right-pad", "old/pkg": None})
        assert merged["left-pad"].abandoned
        assert merged["left-pad"].advisories == feed["left-pad"].advisories
        assert merged["old/pkg"].abandoned
        assert not feed["left-pad"].abandoned


class TestFeedParsing:
    def test_field_spellings(self):
        feed = parse_advisory_feed({
            "vendor/a": [{"title": "XSS", "affected_versions": ">=1.0,<1.2", "severity": "moderate",
                          "cve": "CVE-2023-1", "link": "https://example.test/a"}],
            "vendor/b": {"advisories": [{"affected": ["<1"]}], "abandoned": "vendor/c"},
        })
        a = feed["vendor/a"].advisories[0]
        assert a.affected == (">=1.0,<1.2",)
        assert a.severity is Severity.MEDIUM
        assert a.identifiers == ("CVE-2023-1",)
        b = feed["vendor/b"]
        assert b.advisories[0].title == "Known vulnerability"
        assert b.advisories[0].severity is Severity.CRITICAL
        assert b.abandoned and b.replacement == "vendor/c"

    def test_packagist_wrapper(self):
        feed = parse_advisory_feed({"advisories": {"vendor/a": [{"affectedVersions": "<2"}]}})
        assert list(feed) == ["vendor/a"]

    def test_bad_shapes(self):
        with pytest.raises(AdvisoryFeedError):
            parse_advisory_feed([])
        with pytest.raises(AdvisoryFeedError):
            parse_advisory_feed({"vendor/a": "nope"})

    def test_load_from_disk(self, tmp_path):
        path = tmp_path / "feed.json"
        path.write_text(json.dumps({"vendor/a": [{"affected": "<2"}]}))
        assert "vendor/a" in load_advisory_feed(str(path))

    def test_load_invalid_json(self, tmp_path):
        path = tmp_path / "feed.json"
        path.write_text("{nope")
        with pytest.raises(AdvisoryFeedError):
            load_advisory_feed(str(path))
        with pytest.raises(AdvisoryFeedError):
            load_advisory_feed(str(tmp_path / "missing.json"))


class TestOsvFetcher:
    """OSV batch queries through a mocked transport."""

    def fetcher(self, handler):
        return OsvAdvisoryFetcher(client=httpx.Client(transport=httpx.MockTransport(handler)))

    def test_maps_results(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"results": [
                {"vulns": [{
                    "id": "GHSA-aaaa",
                    "summary": "SQL injection",
                    "aliases": ["CVE-2024-9"],
                    "references": [{"url": "https://osv.dev/GHSA-aaaa"}],
                    "database_specific": {"severity": "HIGH"},
                }]},
                {},
            ]})

        feed = self.fetcher(handler).fetch({"laravel/framework": "10.0.0", "monolog/monolog": "3.0.0"})
        assert seen["body"]["queries"][0]["package"] == {"name": "laravel/framework", "ecosystem": "Packagist"}
        assert list(feed) == ["laravel/framework"]
        advisory = feed["laravel/framework"].advisories[0]
        assert advisory.title == "SQL injection"
        assert advisory.identifiers == ("CVE-2024-9", "GHSA-aaaa")
        assert advisory.severity is Severity.HIGH
        assert advisory.link == "https://osv.dev/GHSA-aaaa"

        report = AdvisoryMatcher().match({"laravel/framework": "10.0.0"}, feed)
        assert report.records[0].severity is Severity.HIGH

    def test_http_error_status(self):
        assert self.fetcher(lambda request: httpx.Response(503)).fetch({"a/b": "1.0.0"}) is None

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)
        assert self.fetcher(handler).fetch({"a/b": "1.0.0"}) is None

    def test_nothing_installed(self):
        assert self.fetcher(lambda request: httpx.Response(500)).fetch({}) == {}
