"""
Module providing the cache repositories used to scan images from third-party registries.
"""

import json
import logging

from .ecr import AWS_ERRORS, error_code, registry_host
from .exceptions import (
    CacheRepositoryError,
    ImagePullError,
    ImagePushError,
    RegistryError
)
from .registry import ImageName


logger = logging.getLogger(__name__)


#: The prefix for all cache repositories
CACHE_REPOSITORY_PREFIX = "kube-ecr-image-scanner-cache"

#: Lifecycle policy that removes cached images one day after they are pushed
CACHE_LIFECYCLE_POLICY = json.dumps({
    "rules": [
        {
            "rulePriority": 1,
            "description": "Expire all images after 1 day",
            "selection": {
                "tagStatus": "any",
                "countType": "sinceImagePushed",
                "countUnit": "days",
                "countNumber": 1,
            },
            "action": {
                "type": "expire",
            },
        },
    ],
})


def cache_repository_name(name):
    """
    Return the name of the cache repository for the given ``ImageName``.
    """
    return f'{CACHE_REPOSITORY_PREFIX}/{name.base_name}'


class RegistryCache:
    """
    Copies images from third-party registries into cache repositories in the scanning registry.
    """
    def __init__(self, ecr, registry, account_id, region = None):
        self.ecr = ecr
        self.registry = registry
        self.account_id = account_id
        self.region = region or ecr.region

    @property
    def host(self):
        return registry_host(self.account_id, self.region)

    async def ensure_repository(self, repository_name):
        """
        Create the given cache repository if required and apply the lifecycle policy.

        An existing repository is not an error, so this can safely be called concurrently.
        """
        logger.info(f'Creating cache repository {repository_name}...')
        try:
            await self.ecr.create_repository(repository_name)
        except AWS_ERRORS as exc:
            if error_code(exc) == 'RepositoryAlreadyExistsException':
                logger.info(f'Cache repository {repository_name} already exists')
            else:
                raise CacheRepositoryError(
                    f'unable to create cache repository {repository_name}: {exc}'
                ) from exc
        try:
            await self.ecr.put_lifecycle_policy(repository_name, CACHE_LIFECYCLE_POLICY)
        except AWS_ERRORS as exc:
            raise CacheRepositoryError(
                f'unable to set lifecycle policy on {repository_name}: {exc}'
            ) from exc

    async def stage(self, reference, cancellation):
        """
        Copy the image with the given reference into a cache repository and return the reference to scan.

        The cancellation is checked between the pull, repository creation and push, so no
        new registry work is started once the run is cancelled.
        """
        name = ImageName.parse(reference)
        logger.info(f'Pulling image from non-ECR source: {reference}')
        try:
            image = await self.registry.pull(name)
        except RegistryError as exc:
            raise ImagePullError(f'unable to pull image from {reference}: {exc}') from exc
        cancellation.check()
        repository_name = cache_repository_name(name)
        await self.ensure_repository(repository_name)
        cancellation.check()
        # Keep addressing the image the same way as the original reference
        destination = ImageName(self.host, repository_name, name.tag, name.digest)
        if destination.digest:
            destination = destination._replace(tag = None)
        logger.info(f'Pushing image to ECR: {destination}')
        try:
            await self.registry.push(image, destination, cancellation)
        except RegistryError as exc:
            raise ImagePushError(f'unable to push image to {destination}: {exc}') from exc
        # Images from different sources can share a cache repository and tag, so the
        # scan is pinned to the digest that was pushed rather than the tag
        return str(destination.with_reference(image.manifest.digest))
