"""
Settings for the ECR image scanner.
"""

import os
import re
from datetime import timedelta
from typing import List, Optional

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    ValidationError,
    conint,
    constr,
    field_validator,
    model_validator
)

from flexi_settings import include

from .exceptions import ConfigurationError
from .models import Severity


#: Regex matching a duration such as 30m, 1h30m or 90s
DURATION_REGEX = re.compile(r'^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+(?:\.\d+)?)s)?$')


def parse_duration(value):
    """
    Parse a duration of the form used by Go, e.g. ``1h30m``, into a ``timedelta``.

    Returns ``None`` if the value is not of that form.
    """
    match = DURATION_REGEX.match(value.strip())
    if not match or not any(match.groups()):
        return None
    hours, minutes, seconds = match.groups()
    return timedelta(
        hours = int(hours or 0),
        minutes = int(minutes or 0),
        seconds = float(seconds or 0)
    )


class ExporterSettings(BaseModel):
    """
    Model defining settings for the report exporter.
    """
    #: The report format, one of text or slack
    format: constr(min_length = 1) = "text"
    #: The Slack channel that reports are posted to
    slack_channel_id: Optional[str] = None
    #: The Slack API token used to post messages
    slack_token: Optional[SecretStr] = None

    @field_validator('format', mode = 'before')
    @classmethod
    def lower_format(cls, value):
        return value.lower() if isinstance(value, str) else value

    @model_validator(mode = 'after')
    def check_slack_settings(self):
        if self.format == 'slack' and not (self.slack_channel_id and self.slack_token):
            raise ValueError('slack_channel_id and slack_token are required for the slack format')
        return self


class Settings(BaseModel):
    """
    Model defining settings for a scan run.
    """
    #: The AWS account id of the registry used to scan images
    #: If not given, the account of the current AWS credentials is used
    aws_account_id: Optional[constr(pattern = r'^\d{12}$')] = None
    #: The number of images that are processed concurrently
    concurrency: conint(ge = 1) = 5
    #: Whether images from other registries are copied to ECR for scanning
    include_non_ecr_images: bool = True
    #: Path to a kubeconfig file, used when not running inside the cluster
    kubeconfig_path: Optional[str] = None
    #: The namespaces to scan
    namespaces: List[constr(min_length = 1)] = Field(min_length = 1)
    #: The severity at or above which vulnerabilities are reported
    severity_threshold: Severity = Severity.HIGH
    #: The maximum duration of the scan
    timeout: timedelta = timedelta(minutes = 30)
    #: The interval between polls for scan completion, in seconds
    poll_interval: float = Field(5.0, gt = 0)
    #: The exporter settings
    exporter: ExporterSettings = Field(default_factory = ExporterSettings)

    @field_validator('namespaces', mode = 'before')
    @classmethod
    def split_namespaces(cls, value):
        # Namespaces from the environment are given as a comma-separated string
        if isinstance(value, str):
            return [ns.strip() for ns in value.split(',') if ns.strip()]
        return value

    @field_validator('severity_threshold', mode = 'before')
    @classmethod
    def upper_severity(cls, value):
        return value.upper() if isinstance(value, str) else value

    @field_validator('timeout', mode = 'before')
    @classmethod
    def parse_timeout(cls, value):
        # Fall back to the standard parsing (seconds or ISO 8601) for anything else
        if isinstance(value, str):
            return parse_duration(value) or value
        return value


def load_settings(config_file = None, **overrides):
    """
    Build a settings object from an optional config file and overrides.

    Overrides that are ``None`` are ignored, so that values from the file are kept.
    """
    config = dict()
    if config_file:
        if not os.path.exists(config_file):
            raise ConfigurationError(f'config file {config_file} does not exist')
        try:
            include(config_file, config)
        except OSError as exc:
            raise ConfigurationError(f'unable to read config file {config_file}: {exc}') from exc
    exporter = dict(config.get('exporter') or {})
    exporter.update({ k: v for k, v in overrides.pop('exporter', {}).items() if v is not None })
    config.update({ k: v for k, v in overrides.items() if v is not None })
    config['exporter'] = exporter
    try:
        return Settings(**{ k: v for k, v in config.items() if not k.startswith('_') })
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
