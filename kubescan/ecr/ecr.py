"""
Async adapter for the AWS ECR API.

boto3 clients are synchronous, so each call is run in the event loop's default executor.
"""

import asyncio
import base64
import functools
import logging
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError


logger = logging.getLogger(__name__)


#: The page size used when fetching scan findings
FINDINGS_PAGE_SIZE = 1000


def error_code(exc):
    """
    Return the AWS error code for the given exception, or ``None`` if it has none.
    """
    if isinstance(exc, ClientError):
        return exc.response.get('Error', {}).get('Code')
    return None


#: Exceptions that can be raised by any call through the adapter
AWS_ERRORS = (ClientError, BotoCoreError)


def registry_host(account_id, region):
    """
    Return the host of the private registry for the given account and region.
    """
    return f'{account_id}.dkr.ecr.{region}.amazonaws.com'


class EcrClient:
    """
    Class exposing the ECR operations used by the scanner as coroutines.
    """
    def __init__(self, client):
        self.client = client

    @classmethod
    def from_session(cls, session = None):
        session = session or boto3.Session()
        return cls(session.client('ecr'))

    @property
    def region(self):
        return self.client.meta.region_name

    async def _call(self, operation, **kwargs):
        loop = asyncio.get_running_loop()
        method = getattr(self.client, operation)
        return await loop.run_in_executor(None, functools.partial(method, **kwargs))

    async def start_image_scan(self, address):
        """
        Start a basic scan of the image at the given ``EcrAddress``.
        """
        return await self._call('start_image_scan', **address.api_params())

    async def describe_image_scan_findings(self, address, next_token = None):
        """
        Return a single page of the scan findings for the image at the given ``EcrAddress``.
        """
        params = dict(address.api_params(), maxResults = FINDINGS_PAGE_SIZE)
        if next_token:
            params.update(nextToken = next_token)
        return await self._call('describe_image_scan_findings', **params)

    async def describe_all_image_scan_findings(self, address, first_page = None):
        """
        Return every page of the scan findings, starting from an optional page already fetched.
        """
        page = first_page or await self.describe_image_scan_findings(address)
        pages = [page]
        while page.get('nextToken'):
            page = await self.describe_image_scan_findings(address, page['nextToken'])
            pages.append(page)
        return pages

    async def create_repository(self, repository_name):
        return await self._call('create_repository', repositoryName = repository_name)

    async def put_lifecycle_policy(self, repository_name, policy_text):
        return await self._call(
            'put_lifecycle_policy',
            repositoryName = repository_name,
            lifecyclePolicyText = policy_text
        )

    async def get_authorization_token(self, registry_id):
        """
        Return a tuple of (registry host, username, password) for the given registry.
        """
        response = await self._call('get_authorization_token', registryIds = [registry_id])
        data = response['authorizationData'][0]
        username, password = (
            base64.b64decode(data['authorizationToken']).decode().split(':', 1)
        )
        host = urlparse(data['proxyEndpoint']).netloc
        return host, username, password


async def lookup_account_id(session = None):
    """
    Return the AWS account id of the current credentials.
    """
    session = session or boto3.Session()
    sts = session.client('sts')
    loop = asyncio.get_running_loop()
    identity = await loop.run_in_executor(None, sts.get_caller_identity)
    return identity['Account']
