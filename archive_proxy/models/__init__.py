"""
Pydantic models shared by all transfer proxies.
"""

from .attributes import (
    DirectoryEntry,
    Listed,
    ListingFailed,
    ListingOutcome,
    NotADirectory,
    NotFound,
    PathAttributes,
)
from .locations import ArchiveDestination, ArchiveType, FileLocation
from .transfers import (
    UNKNOWN_CHECKSUM,
    DataTransferAccount,
    DownloadRequest,
    DownloadResponse,
    MetadataEntry,
    TransferReport,
    UploadRequest,
    UploadResponse,
)
