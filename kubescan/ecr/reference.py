"""
Utilities for working with scanning registry (ECR) image addresses.
"""

import re
from collections import namedtuple

from .exceptions import MalformedReferenceError


#: Pattern matching references that already live in a registry capable of scanning
ECR_REFERENCE_PATTERN = re.compile(r'^public\.ecr\.aws.*|.*\.dkr\.ecr\.')


def is_ecr_reference(reference):
    """
    Return true if the given reference points at a public or private ECR registry.
    """
    return ECR_REFERENCE_PATTERN.search(reference) is not None


class EcrAddress(namedtuple('EcrAddress', ['registry', 'repository_name', 'tag', 'digest'])):
    """
    Class representing an image address in the scanning registry.

    Attributes:
      registry: The registry host, e.g. ``123456789012.dkr.ecr.eu-west-1.amazonaws.com``.
      repository_name: The repository within the registry.
      tag: The tag for the image. ``None`` if the image is addressed by digest.
      digest: The digest for the image. ``None`` if the image is addressed by tag.
    """
    @property
    def identifier(self):
        return self.digest or self.tag

    @property
    def registry_id(self):
        # The account id is the first dot-separated segment of the registry host
        return self.registry.split('.', 1)[0]

    @property
    def image_id(self):
        """
        The image identifier in the form expected by the registry API.
        """
        if self.digest:
            return dict(imageDigest = self.digest)
        else:
            return dict(imageTag = self.tag)

    def api_params(self):
        """
        The parameters that identify this image to the registry API.
        """
        return dict(
            registryId = self.registry_id,
            repositoryName = self.repository_name,
            imageId = self.image_id
        )

    def __str__(self):
        if self.digest:
            return f'{self.registry}/{self.repository_name}@{self.digest}'
        else:
            return f'{self.registry}/{self.repository_name}:{self.tag}'


def parse_ecr_address(reference):
    """
    Split the given reference into an ``EcrAddress``.

    The reference should be of the form ``registry/repository(':' tag | '@' digest)``.
    """
    if '@' in reference:
        name, _, digest = reference.partition('@')
        tag = None
        identifier = digest
    else:
        name, _, tag = reference.rpartition(':')
        digest = None
        identifier = tag
        # A colon inside the last path segment is the only valid tag separator
        if not name or '/' in tag:
            identifier = None
    if not identifier:
        raise MalformedReferenceError(f'no tag or digest in reference: {reference}')
    if '/' not in name:
        raise MalformedReferenceError(f'no repository in reference: {reference}')
    registry, repository_name = name.split('/', 1)
    if not registry or not repository_name:
        raise MalformedReferenceError(f'no repository in reference: {reference}')
    return EcrAddress(registry, repository_name, tag, digest)
