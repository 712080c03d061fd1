"""
Module for expanding multi-architecture images into one scan target per platform.
"""

import logging

from .exceptions import MalformedReferenceError, RegistryError
from .models import ScanTarget
from .registry import ImageName


logger = logging.getLogger(__name__)


#: The maximum number of platforms that are scanned for a single image
MAX_ARCHITECTURES = 10


def strip_reference(reference):
    """
    Return the given image reference without its tag or digest.
    """
    name, _, _ = reference.partition('@')
    head, sep, tail = name.rpartition('/')
    return head + sep + tail.split(':', 1)[0]


class MultiArchResolver:
    """
    Resolves image references to scan targets, expanding manifest lists.
    """
    def __init__(self, registry, max_architectures = MAX_ARCHITECTURES):
        self.registry = registry
        self.max_architectures = max_architectures

    async def resolve(self, reference):
        """
        Return the list of ``ScanTarget``s for the given image reference.
        """
        single = [ScanTarget(reference, reference)]
        # Not being able to fetch an index is the common case, not an error
        try:
            manifest = await self.registry.get_manifest(ImageName.parse(reference))
        except (MalformedReferenceError, RegistryError) as exc:
            logger.info(f'Unable to inspect manifest for {reference}, scanning as a single image: {exc}')
            return single
        if not manifest.is_index:
            logger.debug(f'Image {reference} is not a multi-arch image')
            return single
        base_name = strip_reference(reference)
        targets = []
        for entry in manifest.children:
            platform = entry.get('platform', {})
            architecture = platform.get('architecture', '')
            variant = platform.get('variant', '')
            # Attestation manifests are listed with an unknown platform
            if architecture in {'', 'unknown'}:
                logger.debug(f"Skipping non-image manifest {entry['digest']} in {reference}")
                continue
            if len(targets) == self.max_architectures:
                logger.warning(
                    f'Image {reference} has more than {self.max_architectures} platforms; '
                    f'skipping {architecture}{variant}'
                )
                continue
            logger.info(f'Detected image within multi-arch manifest {reference}: {architecture}{variant}')
            targets.append(ScanTarget(
                f'{reference}-{architecture}{variant}',
                f"{base_name}@{entry['digest']}"
            ))
        return targets or single
