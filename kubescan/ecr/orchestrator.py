"""
Module providing the worker pool that scans every discovered image.
"""

import asyncio
import logging
from datetime import datetime, timezone

from .models import ScanResult, ScanTarget
from .multiarch import MAX_ARCHITECTURES
from .reference import is_ecr_reference


logger = logging.getLogger(__name__)


class ScanOrchestrator:
    """
    Scans images concurrently using a fixed pool of workers reading from a shared queue.
    """
    def __init__(self, resolver, cache, driver):
        self.resolver = resolver
        self.cache = cache
        self.driver = driver

    async def scan_target(self, target, cancellation):
        """
        Stage and scan a single target, returning a ``ScanResult``.

        Errors are captured on the result rather than raised.
        """
        try:
            # Copy non-ECR images to ECR for scanning, keeping the original label
            if not is_ecr_reference(target.scan_reference):
                scan_reference = await self.cache.stage(target.scan_reference, cancellation)
                target = ScanTarget(target.original_reference, scan_reference)
            findings = await self.driver.drive(target, cancellation)
        except Exception as exc:
            logger.exception(f'Error scanning image {target.original_reference} ({target.scan_reference})')
            return ScanResult(target.original_reference, None, exc)
        else:
            return ScanResult(target.original_reference, findings, None)

    async def _worker(self, index, cancellation, images, results):
        while not cancellation.cancelled:
            # The queue is fully loaded before the workers start, so empty means done
            try:
                reference = images.get_nowait()
            except asyncio.QueueEmpty:
                logger.debug(f'Scan worker {index} finished')
                return
            try:
                targets = await self.resolver.resolve(reference)
            except Exception:
                logger.exception(f'Error resolving platforms for {reference}')
                targets = [ScanTarget(reference, reference)]
            for target in targets:
                if cancellation.cancelled:
                    break
                await results.put(await self.scan_target(target, cancellation))
        logger.info(f'Received cancellation signal, stopping scan worker {index}...')

    async def run(self, cancellation, image_references, concurrency):
        """
        Scan the given image references and return a queue containing one ``ScanResult`` per target.
        """
        image_references = list(image_references)
        # There must be enough room for the per-architecture results of multi-arch images
        results = asyncio.Queue(maxsize = max(len(image_references) * MAX_ARCHITECTURES, 1))
        if not image_references:
            logger.info('No images to scan; nothing to do.')
            return results
        logger.info(
            f'Started {len(image_references)} vulnerability scans at '
            f'{datetime.now(timezone.utc):%a, %d %b %Y %H:%M:%S %Z}'
        )
        images = asyncio.Queue()
        for reference in image_references:
            images.put_nowait(reference)
        workers = [
            self._worker(index, cancellation, images, results)
            for index in range(concurrency)
        ]
        await asyncio.gather(*workers)
        logger.info(f'All image scans completed: {results.qsize()} results')
        return results
