"""
Data transfer proxies for moving archived data objects between a data
management layer and remote storage (Globus endpoints, S3 object stores).
"""

from importlib.metadata import PackageNotFoundError, version

from .exceptions import (
    ArchiveProxyError,
    AuthenticationError,
    ConfigurationError,
    EndpointActivationError,
    InvalidLocationError,
    TransferError,
)
from .progress import ProgressListener
from .proxies import (
    CoreDataTransferProxy,
    GlobusDataTransferProxy,
    S3DataTransferProxy,
    proxy_from_settings,
)
from .transfer import DataTransferType, TransferStatus, UploadStatus

try:
    __version__ = version("archive_proxy")
except PackageNotFoundError:
    # package is not installed
    __version__ = "unknown"
