"""
Module containing the exceptions raised while scanning images.
"""


class ScannerError(Exception):
    """
    Base class for all scanner errors.
    """
    #: The message used when no other message is given
    message = "Scanner error"

    def __init__(self, *args):
        super().__init__(*(args or (self.message, )))


class ConfigurationError(ScannerError):
    """
    Raised when the scanner configuration is invalid.
    """
    message = "Invalid configuration"


class DiscoveryError(ScannerError):
    """
    Raised when the running images cannot be listed from the cluster.
    """
    message = "Unable to discover running images"


class MalformedReferenceError(ScannerError):
    """
    Raised when an image reference cannot be parsed.
    """
    message = "Malformed image reference"


class RegistryError(ScannerError):
    """
    Raised when a registry request fails.
    """
    message = "Registry request failed"


class ImageNotFound(RegistryError):
    """
    Raised when an image cannot be found in a registry.
    """
    message = "Image not found"


class StagingError(ScannerError):
    """
    Base class for errors raised while copying an image into the cache repository.
    """
    message = "Unable to stage image for scanning"


class ImagePullError(StagingError):
    """
    Raised when an image cannot be pulled from its origin.
    """
    message = "Unable to pull image"


class CacheRepositoryError(StagingError):
    """
    Raised when the cache repository cannot be created or configured.
    """
    message = "Unable to create cache repository"


class ImagePushError(StagingError):
    """
    Raised when an image cannot be pushed to the cache repository.
    """
    message = "Unable to push image"


class ScanNotFoundError(ScannerError):
    """
    Raised when the image to scan does not exist in the scanning registry.
    """
    message = "Image not found at scan time"


class ScanLimitExceededError(ScannerError):
    """
    Raised when the registry refuses a scan because one was run recently.

    This is not a failure: the results of the existing scan are used instead.
    """
    message = "Scan limit exceeded"


class ScanProtocolError(ScannerError):
    """
    Raised when the registry reports any other error while starting, polling or fetching a scan.
    """
    message = "Scan failed"


class ScanCancelledError(ScannerError):
    """
    Raised when the run is cancelled while waiting on a scan.
    """
    message = "Scan cancelled"


class ExportError(ScannerError):
    """
    Raised when a report cannot be exported.
    """
    message = "Unable to export report"
