"""
TransferStatus enums and the tables mapping backend-native status
vocabularies onto them.
"""

from enum import Enum


class TransferStatus(Enum):
    """
    The canonical status of a transfer.
    """

    PENDING = "pending"
    "Transfer has been requested, but the backend has not started moving data."
    IN_PROGRESS = "in_progress"
    "Backend is currently moving data."
    ARCHIVED = "archived"
    "Transfer completed successfully."
    FAILED = "failed"
    "Transfer has been confirmed to have failed."
    CANCELLED = "cancelled"
    "Transfer was cancelled by the caller before it completed."

    @property
    def terminal(self) -> bool:
        return self in (
            TransferStatus.ARCHIVED,
            TransferStatus.FAILED,
            TransferStatus.CANCELLED,
        )


class UploadStatus(Enum):
    """
    Status reported on an upload response. This is the canonical vocabulary
    plus IN_TEMPORARY_ARCHIVE, which object stores report when the configured
    archive is a temporary staging area.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ARCHIVED = "archived"
    IN_TEMPORARY_ARCHIVE = "in_temporary_archive"
    "Data is safely stored, but in a temporary archive."
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def canonical(self) -> TransferStatus:
        if self == UploadStatus.IN_TEMPORARY_ARCHIVE:
            return TransferStatus.ARCHIVED

        return TransferStatus(self.value)


class DataTransferType(Enum):
    """
    The backend that handled a transfer.
    """

    GLOBUS = "globus"
    S3 = "s3"


GLOBUS_ARCHIVED_STATUS = "SUCCEEDED"
GLOBUS_FAILED_STATUS = "FAILED"

GlobusStatusMap: dict[str, TransferStatus] = {
    GLOBUS_ARCHIVED_STATUS: TransferStatus.ARCHIVED,
    GLOBUS_FAILED_STATUS: TransferStatus.FAILED,
}


def status_from_globus(native_status: str | None) -> TransferStatus:
    """
    Map a Globus task status onto the canonical vocabulary. Anything that
    is not explicitly succeeded or failed (ACTIVE, INACTIVE, ...) is still
    in progress.
    """
    return GlobusStatusMap.get(native_status, TransferStatus.IN_PROGRESS)
