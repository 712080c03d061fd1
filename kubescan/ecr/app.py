"""
Module providing the entry point for a complete scan run.
"""

import logging

import boto3

from .cache import RegistryCache
from .cancellation import Cancellation
from .discovery import kube_api_client, list_running_images
from .ecr import AWS_ERRORS, EcrClient, lookup_account_id
from .exceptions import ConfigurationError
from .models import AggregateReport
from .multiarch import MultiArchResolver
from .orchestrator import ScanOrchestrator
from .registry import RegistryClient, load_docker_credentials
from .report import build, exporter_from_settings
from .scanner import ScanDriver


logger = logging.getLogger(__name__)


async def resolve_account_id(settings, session):
    """
    Return the configured account id, or the account of the current AWS credentials.
    """
    if settings.aws_account_id:
        return settings.aws_account_id
    try:
        return await lookup_account_id(session)
    except AWS_ERRORS as exc:
        logger.error('Unable to determine the AWS account id and aws_account_id was not set')
        raise ConfigurationError(f'unable to determine AWS account id: {exc}') from exc


async def discover_images(settings):
    """
    Return the set of container images running in the configured namespaces.
    """
    async with kube_api_client(settings.kubeconfig_path) as api_client:
        return await list_running_images(
            api_client,
            settings.namespaces,
            settings.include_non_ecr_images
        )


async def run(settings, exporter = None, session = None):
    """
    Scan every image running in the configured namespaces and export the report.

    Returns the ``AggregateReport``. Per-image errors are included in the report. Discovery
    errors, or a cancellation before discovery completes, abort the run. Export errors are
    raised after the report is built.
    """
    session = session or boto3.Session()
    cancellation = Cancellation()
    cancellation.cancel_after(settings.timeout.total_seconds())
    cancellation.cancel_on_signals()
    try:
        account_id = await resolve_account_id(settings, session)
        try:
            ecr = EcrClient.from_session(session)
        except AWS_ERRORS as exc:
            raise ConfigurationError(f'unable to create ECR client: {exc}') from exc
        # A cancellation during discovery aborts the run, as there is nothing to report yet
        images = await cancellation.guard(discover_images(settings))
        async with RegistryClient(load_docker_credentials()) as registry:
            # Allow the registry client to read from and push to the scanning registry
            try:
                registry.add_credentials(*(await ecr.get_authorization_token(account_id)))
            except AWS_ERRORS as exc:
                logger.warning(f'Unable to get ECR authorization token: {exc}')
            orchestrator = ScanOrchestrator(
                MultiArchResolver(registry),
                RegistryCache(ecr, registry, account_id),
                ScanDriver(ecr, poll_interval = settings.poll_interval)
            )
            results = await orchestrator.run(cancellation, images, settings.concurrency)
        reports = await build(
            cancellation,
            settings.severity_threshold,
            settings.concurrency,
            results
        )
    finally:
        cancellation.close()
    report = AggregateReport(reports = reports)
    exporter = exporter or exporter_from_settings(settings.exporter)
    await exporter.export(report)
    return report
