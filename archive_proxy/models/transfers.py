"""
Models for transfer requests, their responses, and the telemetry reports
fetched from the backends.
"""

import datetime
import threading
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..transfer import DataTransferType, TransferStatus, UploadStatus
from .locations import FileLocation

UNKNOWN_CHECKSUM = "Unknown"


class DataTransferAccount(BaseModel):
    """
    Credentials used to log in to a backend. For Globus the username is the
    client ID and the password the client secret (or refresh token, for
    native apps). For S3 they are the access key ID and secret access key.
    """

    username: str
    password: str
    integrated_system: Optional[str] = None
    "Which backend these credentials are for, informational only."

    def __repr__(self):
        return f"DataTransferAccount(username={self.username!r}, password='***')"


class MetadataEntry(BaseModel):
    attribute: str
    value: str
    unit: Optional[str] = None


class UploadRequest(BaseModel):
    """
    A request to upload a single data object to the archive.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    path: str
    "Logical (catalog) path of the data object."
    source: Union[FileLocation, Path]
    "A Globus location for grid transfers, or a local file for S3."
    caller_object_id: Optional[str] = None
    "Caller supplied id, used by some placement strategies."
    cancel_event: Optional[threading.Event] = Field(default=None, exclude=True)
    "If set while a synchronous transfer is waiting, the transfer is cancelled."


class UploadResponse(BaseModel):
    archive_location: FileLocation
    data_transfer_type: DataTransferType
    data_transfer_request_id: str
    checksum: str = UNKNOWN_CHECKSUM
    "Entity tag of the archived object, or 'Unknown' until the transfer finishes."
    data_transfer_status: UploadStatus


class DownloadRequest(BaseModel):
    """
    A request to download a single data object from the archive.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    archive_location: FileLocation
    "Where the data object lives in the archive."
    destination: Union[FileLocation, Path]
    "A Globus location for grid transfers, or a local file for S3."
    cancel_event: Optional[threading.Event] = Field(default=None, exclude=True)


class DownloadResponse(BaseModel):
    data_transfer_request_id: str
    destination: Union[FileLocation, Path]
    data_transfer_status: TransferStatus


class TransferReport(BaseModel):
    """
    A read-only snapshot of a transfer task, re-fetched from the backend
    on every query.
    """

    task_id: str
    task_type: Optional[str] = None
    status: str
    "Backend-native status string."
    transfer_status: TransferStatus
    "Canonical status."

    request_time: Optional[datetime.datetime] = None
    deadline: Optional[datetime.datetime] = None
    completion_time: Optional[datetime.datetime] = None

    subtasks_total: int = 0
    subtasks_succeeded: int = 0
    subtasks_expired: int = 0
    subtasks_canceled: int = 0
    subtasks_pending: int = 0
    subtasks_retrying: int = 0

    command: Optional[str] = None
    source_endpoint: Optional[str] = None
    destination_endpoint: Optional[str] = None
    encrypt_data: bool = False
    verify_checksum: bool = False
    delete_destination_extra: bool = False

    files: int = 0
    files_skipped: int = 0
    directories: int = 0
    bytes_transferred: int = 0
    bytes_checksummed: int = 0
    effective_bytes_per_second: float = 0.0
    faults: int = 0

    checksum: Optional[str] = None
    "Entity tag, for object store uploads that have completed."
