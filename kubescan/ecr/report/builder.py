"""
Module for building vulnerability reports from raw scan results.
"""

import asyncio
import logging
from operator import attrgetter

from sortedcontainers import SortedKeyList

from ..models import ImageReport, ScanError, Vulnerability


logger = logging.getLogger(__name__)


def sort_vulnerabilities(vulnerabilities):
    """
    Sort vulnerabilities by severity rank then score, most severe first.
    """
    return sorted(vulnerabilities, key = lambda v: (v.rank, v.score), reverse = True)


def build_image_report(result, severity_threshold):
    """
    Build the ``ImageReport`` for a single ``ScanResult``.
    """
    findings = result.findings
    if findings is not None:
        vulnerabilities = sort_vulnerabilities(
            Vulnerability.from_finding(finding)
            for finding in findings.findings
        )
        severity_counts = dict(findings.severity_counts)
    else:
        vulnerabilities = []
        severity_counts = {}
    logger.debug(f'Sorted {len(vulnerabilities)} vulnerabilities for {result.label}')
    return ImageReport(
        image_uri = result.label,
        vulnerabilities = vulnerabilities,
        severity_counts = severity_counts,
        severity_threshold = severity_threshold,
        error = ScanError.from_exception(result.error) if result.error else None,
        findings_available = findings is not None
    )


async def build(cancellation, severity_threshold, concurrency, results):
    """
    Build one report per result in the given queue and return them sorted by image URI.

    Results that are already in the queue are always reported, even if the run was cancelled.
    """
    logger.info('Building vulnerability report')
    if cancellation.cancelled:
        logger.warning(f'Scan was cancelled ({cancellation.reason}); reporting partial results')
    reports = SortedKeyList(key = attrgetter('image_uri'))

    async def worker():
        while True:
            try:
                result = results.get_nowait()
            except asyncio.QueueEmpty:
                return
            reports.add(build_image_report(result, severity_threshold))
            # Give the other workers a chance to run
            await asyncio.sleep(0)

    await asyncio.gather(*(worker() for _ in range(concurrency)))
    logger.info(f'Sorted {len(reports)} reports')
    return list(reports)
