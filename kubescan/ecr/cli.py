"""
Command line interface for the ECR image scanner.
"""

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console

from .app import run
from .conf import load_settings
from .exceptions import ConfigurationError, DiscoveryError, ExportError, ScanCancelledError


logger = logging.getLogger(__name__)


app = typer.Typer(
    name = "kube-ecr-scanner",
    help = "Scan the container images running in a Kubernetes cluster using AWS ECR.",
    add_completion = False,
)

console = Console(stderr = True)


@app.command()
def scan(
    aws_account_id: Optional[str] = typer.Option(
        None,
        "--aws-account-id",
        envvar = "AWS_ACCOUNT_ID",
        help = "AWS Account ID of the registry used to scan images.",
    ),
    concurrency: Optional[int] = typer.Option(
        None,
        "--concurrency",
        "-c",
        envvar = "CONCURRENCY",
        help = "Number of concurrent images to download/scan (default: 5).",
    ),
    include_non_ecr_images: Optional[str] = typer.Option(
        None,
        "--include-non-ecr-images",
        envvar = "INCLUDE_NON_ECR_IMAGES",
        help = "Whether non-ECR images should be uploaded to ECR for scanning, true or false (default: true).",
    ),
    kubeconfig_path: Optional[str] = typer.Option(
        None,
        "--kube-config-path",
        envvar = "KUBE_CONFIG_PATH",
        help = "Path to a kubeconfig file, used when running outside of Kubernetes.",
    ),
    namespaces: Optional[str] = typer.Option(
        None,
        "--namespaces",
        envvar = "NAMESPACES",
        help = "Comma-separated list of namespaces to scan.",
    ),
    severity_threshold: Optional[str] = typer.Option(
        None,
        "--severity-threshold",
        "-s",
        envvar = "SEVERITY_THRESHOLD",
        help = "The severity that triggers a vulnerability report (default: HIGH).",
    ),
    timeout: Optional[str] = typer.Option(
        None,
        "--timeout",
        envvar = "TIMEOUT",
        help = "The maximum duration of the scan, e.g. 30m (default: 30m).",
    ),
    report_format: Optional[str] = typer.Option(
        None,
        "--format",
        "-f",
        envvar = "FORMAT",
        help = "The type of report to export, one of text or slack (default: text).",
    ),
    slack_channel_id: Optional[str] = typer.Option(
        None,
        "--slack-channel-id",
        envvar = "SLACK_CHANNEL_ID",
        help = "The Slack channel ID used to send reports. Required if --format=slack.",
    ),
    slack_token: Optional[str] = typer.Option(
        None,
        "--slack-token",
        envvar = "SLACK_TOKEN",
        help = "The Slack API token used to send messages. Required if --format=slack.",
    ),
    config_file: Optional[str] = typer.Option(
        None,
        "--config",
        envvar = "KUBE_ECR_SCANNER_CONFIG",
        help = "Settings file (Python, YAML or JSON); options given here take precedence.",
    ),
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        envvar = "LOG_LEVEL",
        help = "The log level.",
    ),
) -> None:
    """Scan every image running in the given namespaces and export a vulnerability report."""
    logging.basicConfig(
        level = log_level.upper(),
        format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        settings = load_settings(
            config_file,
            aws_account_id = aws_account_id,
            concurrency = concurrency,
            include_non_ecr_images = include_non_ecr_images,
            kubeconfig_path = kubeconfig_path,
            namespaces = namespaces,
            severity_threshold = severity_threshold,
            timeout = timeout,
            exporter = dict(
                format = report_format,
                slack_channel_id = slack_channel_id,
                slack_token = slack_token,
            ),
        )
    except ConfigurationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(2)

    try:
        asyncio.run(run(settings))
    except ConfigurationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(2)
    except DiscoveryError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)
    except ScanCancelledError as exc:
        console.print(f"[red]Scan cancelled:[/red] {exc}")
        raise typer.Exit(1)
    except ExportError as exc:
        # The scan itself succeeded, so export problems are reported but not fatal
        logger.error(f'Unable to export report: {exc}')
        console.print(f"[yellow]Warning:[/yellow] report could not be exported: {exc}")


def main():
    app()


if __name__ == "__main__":
    main()
