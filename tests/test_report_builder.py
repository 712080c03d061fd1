"""Tests for building reports from scan results."""

import asyncio

import pytest

from kubescan.ecr.cancellation import Cancellation
from kubescan.ecr.exceptions import ImagePushError
from kubescan.ecr.models import Findings, ScanResult, Severity, Vulnerability
from kubescan.ecr.report.builder import build, build_image_report, sort_vulnerabilities


def results_queue(results) -> asyncio.Queue:
    queue = asyncio.Queue()
    for result in results:
        queue.put_nowait(result)
    return queue


class TestSortVulnerabilities:
    """Tests for vulnerability ordering."""

    def test_rank_then_score(self, sample_findings: Findings) -> None:
        vulnerabilities = sort_vulnerabilities(
            Vulnerability.from_finding(f) for f in sample_findings.findings
        )
        assert [v.name for v in vulnerabilities] == [
            "CVE-2023-0002",
            "CVE-2023-0001",
            "CVE-2023-0004",
            "CVE-2023-0003",
            "CVE-2023-0005",
        ]

    def test_ties_keep_input_order(self, finding) -> None:
        vulnerabilities = sort_vulnerabilities(
            Vulnerability.from_finding(finding(name, "HIGH", 5.0))
            for name in ["CVE-B", "CVE-A", "CVE-C"]
        )
        assert [v.name for v in vulnerabilities] == ["CVE-B", "CVE-A", "CVE-C"]


class TestBuildImageReport:
    """Tests for build_image_report."""

    def test_findings(self, sample_result: ScanResult) -> None:
        report = build_image_report(sample_result, Severity.HIGH)
        assert report.image_uri == "nginx:1.25"
        assert report.severity_counts == {"CRITICAL": 2, "HIGH": 1, "MEDIUM": 1}
        assert report.vulnerabilities[0].name == "CVE-2023-0002"
        assert report.error is None
        assert [v.name for v in report.reportable_vulnerabilities] == [
            "CVE-2023-0002",
            "CVE-2023-0001",
            "CVE-2023-0004",
        ]

    def test_error(self) -> None:
        result = ScanResult("quay.io/org/app:v1", None, ImagePushError("HTTP 403"))
        report = build_image_report(result, Severity.CRITICAL)
        assert report.vulnerabilities == []
        assert report.error.kind == "ImagePushError"
        assert report.error.detail == "HTTP 403"
        assert report.severity_threshold is Severity.CRITICAL

    def test_no_findings_without_error(self) -> None:
        report = build_image_report(ScanResult("nginx:1.25", None, None), Severity.HIGH)
        assert report.vulnerabilities == []
        assert report.error is None
        assert report.findings_available is False

    def test_clean_scan_has_findings(self) -> None:
        report = build_image_report(ScanResult("nginx:1.25", Findings({}, []), None), Severity.HIGH)
        assert report.vulnerabilities == []
        assert report.findings_available is True


class TestBuild:
    """Tests for the report build worker pool."""

    @pytest.mark.asyncio
    async def test_one_report_per_result_sorted_by_image(self, sample_findings: Findings) -> None:
        labels = ["redis:7", "nginx:1.25-arm64", "app:v1", "nginx:1.25-amd64", "zookeeper:3"]
        queue = results_queue(ScanResult(label, sample_findings, None) for label in labels)
        reports = await build(Cancellation(), Severity.HIGH, 3, queue)
        assert [r.image_uri for r in reports] == sorted(labels)
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_cancelled_run_still_reports_results(self, sample_result: ScanResult) -> None:
        cancellation = Cancellation()
        cancellation.cancel("timed out")
        reports = await build(cancellation, Severity.HIGH, 2, results_queue([sample_result]))
        assert [r.image_uri for r in reports] == ["nginx:1.25"]

    @pytest.mark.asyncio
    async def test_empty(self) -> None:
        assert await build(Cancellation(), Severity.HIGH, 5, asyncio.Queue()) == []
