"""Tests for the core data model: severities, statuses and result shapes."""

import pytest

from laraguard.models import (
    AdvisoryRecord, Finding, Location, MatchedAdvisory, RunResult, Severity, Status,
    max_severity, status_for_findings,
)


def make_finding(severity, line=3):
    return Finding(
        message="Something is off",
        location=Location("config/session.php", line),
        severity=severity,
        recommendation="Fix it",
    )


class TestSeverity:
    """Ordering and label mapping."""

    def test_rank_order(self):
        ranks = [s.rank for s in (Severity.INFO, Severity.LOW, Severity.MEDIUM,
                                  Severity.HIGH, Severity.CRITICAL)]
        assert ranks == sorted(ranks)

    def test_from_label_aliases(self):
        assert Severity.from_label("moderate") is Severity.MEDIUM
        assert Severity.from_label(" HIGH ") is Severity.HIGH
        assert Severity.from_label("none") is Severity.INFO

    def test_from_label_default(self):
        assert Severity.from_label(None) is Severity.CRITICAL
        assert Severity.from_label("weird", Severity.LOW) is Severity.LOW

    def test_max_severity(self):
        assert max_severity([Severity.LOW, Severity.HIGH, Severity.MEDIUM]) is Severity.HIGH
        assert max_severity([]) is None


class TestStatusDerivation:
    """Worst finding decides the status."""

    def test_no_findings_pass(self):
        assert status_for_findings([]) is Status.PASSED

    def test_info_only_passes(self):
        assert status_for_findings([make_finding(Severity.INFO)]) is Status.PASSED

    def test_medium_and_low_warn(self):
        assert status_for_findings([make_finding(Severity.LOW)]) is Status.WARNING
        assert status_for_findings([make_finding(Severity.MEDIUM)]) is Status.WARNING

    def test_high_and_critical_fail(self):
        assert status_for_findings([make_finding(Severity.LOW),
                                    make_finding(Severity.HIGH)]) is Status.FAILED
        assert status_for_findings([make_finding(Severity.CRITICAL)]) is Status.FAILED

    def test_adding_findings_never_improves_status(self):
        order = [Status.PASSED, Status.WARNING, Status.FAILED]
        findings = []
        previous = status_for_findings(findings)
        for severity in (Severity.INFO, Severity.LOW, Severity.MEDIUM, Severity.LOW, Severity.CRITICAL):
            findings.append(make_finding(severity))
            current = status_for_findings(findings)
            assert order.index(current) >= order.index(previous)
            previous = current


class TestRunResult:
    """Factories and serialisation."""

    def test_from_findings(self):
        result = RunResult.from_findings("x", "s", [make_finding(Severity.MEDIUM)])
        assert result.status is Status.WARNING
        assert len(result.findings) == 1

    def test_skipped_and_error_have_no_findings(self):
        assert RunResult.skipped("x", "why").findings == ()
        assert RunResult.error("x", "boom").status is Status.ERROR

    def test_to_dict_shape(self):
        result = RunResult.from_findings("cookie-security", "Found 1", [make_finding(Severity.HIGH, 12)])
        data = result.with_elapsed(0.123456).to_dict()
        assert data["detector"] == "cookie-security"
        assert data["status"] == "failed"
        assert data["elapsed"] == 0.1235
        finding = data["findings"][0]
        assert finding["location"] == {"path": "config/session.php", "line": 12}
        assert finding["severity"] == "HIGH"
        assert finding["metadata"] == {}

    def test_finding_metadata_is_read_only(self):
        finding = Finding("m", Location("a.php", 1), Severity.LOW, "r", metadata={"k": 1})
        with pytest.raises(TypeError):
            finding.metadata["k"] = 2


class TestAdvisoryRecord:
    """Merged advisory properties."""

    def test_severity_and_identifiers(self):
        record = AdvisoryRecord("vendor/pkg", "1.0.0", (
            MatchedAdvisory("a", ("CVE-1", "GHSA-1"), Severity.MEDIUM, "<2.0"),
            MatchedAdvisory("b", ("CVE-1", "CVE-2"), Severity.HIGH, "<1.5"),
        ))
        assert record.severity is Severity.HIGH
        assert record.identifiers == ["CVE-1", "GHSA-1", "CVE-2"]
