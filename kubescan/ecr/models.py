"""
Module containing the models that flow through the scan pipeline.
"""

import re
from collections import namedtuple
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, constr


class Severity(str, Enum):
    """
    Enum of the finding severities reported by the registry.
    """
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFORMATIONAL = "INFORMATIONAL"
    UNDEFINED = "UNDEFINED"


#: The rank of each known severity, used for sorting and threshold comparisons
SEVERITY_RANKS = {
    Severity.CRITICAL.value: 100,
    Severity.HIGH.value: 10,
    Severity.MEDIUM.value: 5,
    Severity.LOW.value: 2,
    Severity.INFORMATIONAL.value: 1,
    Severity.UNDEFINED.value: 0,
}

#: The rank given to any severity that is not recognised
UNKNOWN_SEVERITY_RANK = -1


def severity_rank(severity) -> int:
    """
    Return the rank of the given severity, which may be a ``Severity`` or a plain string.
    """
    return SEVERITY_RANKS.get(getattr(severity, 'value', severity), UNKNOWN_SEVERITY_RANK)


class ScanTarget(namedtuple('ScanTarget', ['original_reference', 'scan_reference'])):
    """
    A single unit of work for the scanning protocol.

    Attributes:
      original_reference: The human-facing label used in the final report.
      scan_reference: The reference that is actually submitted for scanning.
    """
    @property
    def label(self):
        return self.original_reference


class ScanResult(namedtuple('ScanResult', ['label', 'findings', 'error'])):
    """
    The raw outcome of scanning a single target.

    Attributes:
      label: The original reference of the scan target.
      findings: The ``Findings`` for the target, or ``None``.
      error: The exception that prevented the scan, or ``None``.
    """


class Findings(namedtuple('Findings', ['severity_counts', 'findings'])):
    """
    The findings reported by the registry for a single scan.

    Attributes:
      severity_counts: Dictionary of severity name -> count.
      findings: The raw finding records, as returned by the registry.
    """
    @classmethod
    def from_pages(cls, pages):
        """
        Build findings from one or more pages of a describe-findings response.
        """
        severity_counts = {}
        findings = []
        for page in pages:
            scan_findings = page.get('imageScanFindings', {})
            # The counts are repeated on every page
            severity_counts.update(scan_findings.get('findingSeverityCounts', {}))
            findings.extend(scan_findings.get('findings', []))
        return cls(severity_counts, findings)


#: Attribute keys used by the registry for package and CVSS information
KEY_PACKAGE_NAME = "package_name"
KEY_PACKAGE_VERSION = "package_version"
KEY_CVSS2_SCORE = "CVSS2_SCORE"
KEY_CVSS2_VECTOR = "CVSS2_VECTOR"


class Vulnerability(BaseModel):
    """
    Model for a single vulnerability found in an image.
    """
    model_config = ConfigDict(frozen = True)

    #: The name of the vulnerability, e.g. the CVE id
    name: str
    #: The severity as reported by the registry
    severity: str
    #: The description of the vulnerability
    description: str = ""
    #: The affected package
    package_name: str = ""
    #: The installed version of the affected package
    package_version: str = ""
    #: The CVSS score, 0 if not known
    score: float = 0.0
    #: The CVSS vector string
    vectors: str = ""
    #: The advisory URI, if it could be parsed
    uri: Optional[str] = None

    @property
    def rank(self):
        return severity_rank(self.severity)

    @classmethod
    def from_finding(cls, finding):
        """
        Build a vulnerability from a raw finding record.
        """
        attributes = {
            attribute['key']: attribute.get('value', '')
            for attribute in finding.get('attributes', [])
        }
        try:
            score = float(attributes[KEY_CVSS2_SCORE])
        except (KeyError, ValueError):
            score = 0.0
        # An unparseable URI is dropped rather than failing the whole report
        try:
            uri = str(httpx.URL(finding['uri'])) if finding.get('uri') else None
        except (TypeError, httpx.InvalidURL):
            uri = None
        return cls(
            name = finding.get('name', ''),
            severity = finding.get('severity', Severity.UNDEFINED.value),
            description = finding.get('description', ''),
            package_name = attributes.get(KEY_PACKAGE_NAME, ''),
            package_version = attributes.get(KEY_PACKAGE_VERSION, ''),
            score = score,
            vectors = attributes.get(KEY_CVSS2_VECTOR, ''),
            uri = uri
        )


class ScanError(BaseModel):
    """
    Model for an error that prevented an image from being scanned.
    """
    model_config = ConfigDict(frozen = True)

    #: The name of the exception class
    kind: constr(min_length = 1)
    #: Human readable title for the error
    title: constr(min_length = 1)
    #: The detail for the error
    detail: str = ""

    @classmethod
    def from_exception(cls, exc):
        # Convert the exception name to words for the title
        words = re.findall(r'[A-Z](?:[a-z]+|[A-Z]*(?=[A-Z]|$))', exc.__class__.__name__)
        title = ' '.join(words).lower().capitalize() or exc.__class__.__name__
        return cls(kind = exc.__class__.__name__, title = title, detail = str(exc))


class ImageReport(BaseModel):
    """
    Model for the vulnerability report of a single scan target.
    """
    model_config = ConfigDict(frozen = True)

    #: The image as labelled by the scan target
    image_uri: constr(min_length = 1)
    #: The vulnerabilities, most severe first
    vulnerabilities: List[Vulnerability] = Field(default_factory = list)
    #: Dictionary of severity name -> count
    severity_counts: Dict[str, int] = Field(default_factory = dict)
    #: The severity at or above which vulnerabilities are reported
    severity_threshold: Severity = Severity.HIGH
    #: The error that prevented the scan, if any
    error: Optional[ScanError] = None
    #: False if the scan produced no results, e.g. a reused scan with no prior result
    findings_available: bool = True

    @property
    def reportable_vulnerabilities(self):
        """
        The vulnerabilities whose severity is at or above the threshold.
        """
        threshold = severity_rank(self.severity_threshold)
        return [v for v in self.vulnerabilities if v.rank >= threshold]


class AggregateReport(BaseModel):
    """
    Model for the complete result of a scan run.
    """
    model_config = ConfigDict(frozen = True)

    #: The time at which the report was generated
    generated_at: datetime = Field(default_factory = lambda: datetime.now(timezone.utc))
    #: The image reports, sorted by image URI
    reports: List[ImageReport] = Field(default_factory = list)
