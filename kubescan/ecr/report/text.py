"""
Module providing an exporter that writes plain-text reports.
"""

import logging
import sys

from ..exceptions import ExportError

from .base import DATE_FORMAT, NO_RESULTS_TEXT, SUMMARY_SEVERITIES, Exporter


logger = logging.getLogger(__name__)


SEPARATOR = '-' * 40


def render_vulnerability(vulnerability):
    lines = [
        f'{vulnerability.severity}: {vulnerability.name} ({vulnerability.uri or ""})',
        f'Package: {vulnerability.package_name}:{vulnerability.package_version}',
    ]
    if vulnerability.score:
        lines.append(f'CVSS2 Score: {vulnerability.score:.1f}')
    if vulnerability.vectors:
        lines.append(f'CVSS2 Vectors: {vulnerability.vectors}')
    lines.append(f'Description: {vulnerability.description}')
    return lines


def render_image_report(report):
    """
    Render the section of the text report for a single image.
    """
    lines = [f'Image: {report.image_uri}']
    if report.error:
        lines.append(f'Scan failed: {report.error.title}: {report.error.detail}')
        lines.append(SEPARATOR)
        return lines
    if not report.findings_available:
        lines.append(NO_RESULTS_TEXT)
        lines.append(SEPARATOR)
        return lines
    lines.append('Summary:')
    for severity in SUMMARY_SEVERITIES:
        count = report.severity_counts.get(severity)
        if count:
            lines.append(f'{severity + ": ":>15}{count:5d}')
    lines.append(f'Reporting Threshold: {report.severity_threshold.value}')
    lines.append('Details:')
    vulnerabilities = report.reportable_vulnerabilities
    for vulnerability in vulnerabilities:
        lines.extend(render_vulnerability(vulnerability))
        lines.append('')
    if not vulnerabilities:
        lines.append(f'No vulnerabilities at {report.severity_threshold.value} or above detected!')
    lines.append(SEPARATOR)
    return lines


def render(report):
    """
    Render the given ``AggregateReport`` as text.
    """
    lines = [
        f'Kubernetes container security updates as of {report.generated_at.strftime(DATE_FORMAT)}',
        SEPARATOR,
    ]
    for image_report in report.reports:
        lines.extend(render_image_report(image_report))
    return '\n'.join(lines) + '\n'


class TextExporter(Exporter):
    """
    Exporter that writes a text report to a stream, standard output by default.
    """
    name = "text"

    def __init__(self, stream = None):
        self.stream = stream

    async def export(self, report):
        logger.info(f'Generating text report for {len(report.reports)} images')
        stream = self.stream or sys.stdout
        try:
            stream.write(render(report))
            stream.flush()
        except OSError as exc:
            raise ExportError(f'unable to write report: {exc}') from exc
