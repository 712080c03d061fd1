"""
Module providing the driver for the registry's image scanning protocol.
"""

import enum
import logging

from .ecr import AWS_ERRORS, error_code
from .exceptions import ScanLimitExceededError, ScanNotFoundError, ScanProtocolError
from .models import Findings
from .reference import parse_ecr_address


logger = logging.getLogger(__name__)


class ScanState(enum.Enum):
    """
    The states of a scan once it has been requested.
    """
    #: A new scan was started
    STARTED = "started"
    #: A scan of the same image was already run recently, so its results are reused
    REUSED = "reused"


#: Scan statuses that mean the scan has not finished yet
IN_PROGRESS_STATUSES = {"IN_PROGRESS", "PENDING"}


class ScanDriver:
    """
    Drives the start-scan, await-completion and fetch-findings protocol for a single target.

    The polling contract mirrors the ECR ``ImageScanComplete`` waiter.
    """
    def __init__(self, ecr, poll_interval = 5.0, max_attempts = 60):
        self.ecr = ecr
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts

    async def _start_image_scan(self, address):
        """
        Start a scan, translating the registry errors into scanner errors.
        """
        try:
            return await self.ecr.start_image_scan(address)
        except AWS_ERRORS as exc:
            code = error_code(exc)
            if code == 'LimitExceededException':
                raise ScanLimitExceededError(f'a scan of {address} was run recently') from exc
            elif code == 'ImageNotFoundException':
                logger.error(f'Image {address} not found')
                raise ScanNotFoundError(f'image {address} not found') from exc
            else:
                logger.error(f'Error when scanning repository {address}: {exc}')
                raise ScanProtocolError(f'unable to start scan of {address}: {exc}') from exc

    async def start(self, target):
        """
        Request a scan of the given target and return the resulting ``ScanState``.
        """
        address = parse_ecr_address(target.scan_reference)
        logger.info(f'Scanning image: {target.original_reference}')
        try:
            response = await self._start_image_scan(address)
        except ScanLimitExceededError:
            # Not a failure: the results of the recent scan are fetched instead
            logger.info(f'Retrieving existing AWS ECR image scan results for {address}')
            return ScanState.REUSED
        status = response.get('imageScanStatus', {}).get('status', 'unknown')
        logger.info(f'Started AWS ECR image scan on {address}: {status}')
        return ScanState.STARTED

    async def await_and_fetch(self, target, state, cancellation):
        """
        Wait for the scan of the given target to complete and return its ``Findings``.

        Returns ``None`` if the scan was reused but the registry has no result for it yet.
        """
        address = parse_ecr_address(target.scan_reference)
        logger.info(f'Waiting for scan results for image: {target.original_reference}')
        for attempt in range(self.max_attempts):
            if attempt:
                await cancellation.sleep(self.poll_interval)
            try:
                page = await self.ecr.describe_image_scan_findings(address)
            except AWS_ERRORS as exc:
                code = error_code(exc)
                if code == 'ScanNotFoundException':
                    if state is ScanState.REUSED:
                        logger.warning(f'No existing scan results available for {address}')
                        return None
                    # A newly started scan may not be visible yet
                    continue
                elif code == 'ImageNotFoundException':
                    raise ScanNotFoundError(f'image {address} not found') from exc
                else:
                    logger.error(f'Error while waiting for image scan on {address} to complete: {exc}')
                    raise ScanProtocolError(f'unable to fetch scan status for {address}: {exc}') from exc
            scan_status = page.get('imageScanStatus', {})
            status = scan_status.get('status')
            if status == 'COMPLETE':
                break
            elif status == 'FAILED':
                description = scan_status.get('description', 'no description')
                raise ScanProtocolError(f'scan of {address} failed: {description}')
            elif status not in IN_PROGRESS_STATUSES:
                raise ScanProtocolError(f'scan of {address} has unexpected status: {status}')
        else:
            raise ScanProtocolError(
                f'scan of {address} did not complete after {self.max_attempts} attempts'
            )
        try:
            pages = await self.ecr.describe_all_image_scan_findings(address, page)
        except AWS_ERRORS as exc:
            logger.error(f'Error describing image scan findings for {address}: {exc}')
            raise ScanProtocolError(f'unable to fetch findings for {address}: {exc}') from exc
        return Findings.from_pages(pages)

    async def drive(self, target, cancellation):
        """
        Run the full scan protocol for the given target and return its ``Findings``.
        """
        state = await self.start(target)
        cancellation.check()
        return await self.await_and_fetch(target, state, cancellation)
