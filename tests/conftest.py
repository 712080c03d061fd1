"""Pytest configuration and fixtures."""

import pytest

from botocore.exceptions import ClientError

from kubescan.ecr.models import Findings, ScanResult


ECR_HOST = "123456789012.dkr.ecr.eu-west-1.amazonaws.com"


@pytest.fixture
def ecr_host() -> str:
    return ECR_HOST


@pytest.fixture
def client_error():
    """Return a factory for botocore client errors with a given code."""
    def factory(code: str, operation: str = "StartImageScan") -> ClientError:
        return ClientError(
            {"Error": {"Code": code, "Message": f"{code} raised"}},
            operation,
        )
    return factory


def make_finding(name, severity, score=None, uri=None, package="openssl", version="1.1.1"):
    attributes = [
        {"key": "package_name", "value": package},
        {"key": "package_version", "value": version},
    ]
    if score is not None:
        attributes.append({"key": "CVSS2_SCORE", "value": str(score)})
        attributes.append({"key": "CVSS2_VECTOR", "value": "AV:N/AC:L/Au:N/C:P/I:P/A:P"})
    finding = {
        "name": name,
        "severity": severity,
        "description": f"Description of {name}",
        "attributes": attributes,
    }
    if uri:
        finding["uri"] = uri
    return finding


@pytest.fixture
def finding():
    """Return the factory for raw finding records."""
    return make_finding


@pytest.fixture
def sample_findings() -> Findings:
    """Findings for an image with vulnerabilities of mixed severity."""
    return Findings(
        {"CRITICAL": 2, "HIGH": 1, "MEDIUM": 1},
        [
            make_finding("CVE-2023-0003", "MEDIUM", 4.3),
            make_finding("CVE-2023-0001", "CRITICAL", 7.5),
            make_finding("CVE-2023-0004", "HIGH", 6.8, uri="https://security-tracker.debian.org/tracker/CVE-2023-0004"),
            make_finding("CVE-2023-0002", "CRITICAL", 9.8),
            make_finding("CVE-2023-0005", "SOMETHING_NEW"),
        ],
    )


@pytest.fixture
def sample_result(sample_findings) -> ScanResult:
    return ScanResult("nginx:1.25", sample_findings, None)
