"""
A data transfer proxy for S3-compatible object stores. Transfers go through
an s3transfer TransferManager, and either block until they are done or
report progress to a listener and return straight away.
"""

import threading
import uuid
from concurrent.futures import CancelledError
from pathlib import Path
from typing import ClassVar, Literal, Optional
from urllib.parse import quote, unquote

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from pydantic import Field, field_validator
from s3transfer.exceptions import RetriesExceededError, S3UploadFailedError
from s3transfer.futures import TransferFuture
from s3transfer.manager import TransferManager

from ..exceptions import AuthenticationError, InvalidLocationError, TransferError
from ..models import (
    UNKNOWN_CHECKSUM,
    ArchiveDestination,
    ArchiveType,
    DataTransferAccount,
    DirectoryEntry,
    DownloadRequest,
    DownloadResponse,
    FileLocation,
    Listed,
    ListingFailed,
    ListingOutcome,
    MetadataEntry,
    NotADirectory,
    NotFound,
    PathAttributes,
    TransferReport,
    UploadRequest,
    UploadResponse,
)
from ..pathattributes import PathAttributesResolver
from ..placement import Placements, placement_from_name, resolve_archive_destination
from ..progress import ProgressBridge, ProgressListener
from ..transfer import DataTransferType, TransferStatus, UploadStatus
from .core import CoreDataTransferProxy, TransferSession

# Errors that an s3transfer future can raise from result().
TRANSFER_ERRORS = (
    BotoCoreError,
    ClientError,
    RetriesExceededError,
    S3UploadFailedError,
    OSError,
)

NOT_FOUND_ERROR_CODES = ("404", "NoSuchKey", "NotFound", "NoSuchBucket")

DIRECTIONS = ("upload", "download")


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def encode_request_id(direction: str, location: FileLocation, local_path: Path) -> str:
    """
    Build a request ID that names everything needed to find the transfer
    again: the direction, the archive bucket and key, and the local file.
    The fields are percent-encoded and joined with ':'.
    """
    parts = [
        uuid.uuid4().hex,
        direction,
        location.file_container_id,
        location.file_id,
        str(local_path),
    ]

    return ":".join(quote(part, safe="") for part in parts)


def decode_request_id(request_id: str) -> tuple[str, FileLocation, Path]:
    """
    Inverse of encode_request_id.

    Raises
    ------
    TransferError
        If the ID was not made by encode_request_id.
    """
    try:
        _, direction, bucket, key, local_path = (
            unquote(part) for part in request_id.split(":")
        )
    except ValueError:
        raise TransferError(f"Unknown S3 transfer request: {request_id}") from None

    if direction not in DIRECTIONS or not bucket or not key or not local_path:
        raise TransferError(f"Unknown S3 transfer request: {request_id}")

    return (
        direction,
        FileLocation(file_container_id=bucket, file_id=key),
        Path(local_path),
    )


class SettledTransfer:
    """
    A transfer looked up from the object store rather than from the session
    that issued it. Only final states can be seen this way.
    """

    def __init__(
        self,
        request_id: str,
        direction: str,
        location: FileLocation,
        status: TransferStatus,
        checksum: Optional[str] = None,
        bytes_transferred: int = 0,
    ):
        self.request_id = request_id
        self.direction = direction
        self.location = location
        self.status = status
        self.checksum = checksum
        self.bytes_transferred = bytes_transferred


class InflightTransfer:
    """
    A transfer submitted through an S3Session. Lives in the session, which
    belongs to the caller.
    """

    def __init__(
        self,
        request_id: str,
        direction: str,
        location: FileLocation,
        future: TransferFuture,
        bridge: ProgressBridge,
    ):
        self.request_id = request_id
        self.direction = direction
        self.location = location
        self.future = future
        self.bridge = bridge
        self.checksum: Optional[str] = None

    @property
    def bytes_transferred(self) -> int:
        return self.bridge.bytes_transferred

    @property
    def status(self) -> TransferStatus:
        if not self.future.done():
            return TransferStatus.IN_PROGRESS

        try:
            self.future.result()
        except CancelledError:
            return TransferStatus.CANCELLED
        except Exception:
            return TransferStatus.FAILED

        return TransferStatus.ARCHIVED


class S3Session(TransferSession):
    kind: Literal["s3"] = "s3"
    client: BaseClient
    "boto3 S3 client."
    transfer_manager: TransferManager
    "Transfer manager wrapping the client; owns the worker threads."
    transfers: dict[str, InflightTransfer] = Field(default_factory=dict)
    "Transfers issued with this session, by request ID."

    def forget_finished(self) -> int:
        """
        Drop finished transfers from the session. Their request IDs still
        resolve, through the object store. Returns how many were dropped.
        """
        finished = [
            request_id
            for request_id, transfer in self.transfers.items()
            if transfer.status.terminal
        ]

        for request_id in finished:
            del self.transfers[request_id]

        return len(finished)

    def close(self):
        """
        Shut down the transfer manager, waiting for running transfers.
        """
        self.transfer_manager.shutdown()


class S3DirectoryLister:
    """
    Directory listing for object stores. A 'directory' is a key prefix
    ending in '/'. A key with nothing below it that exists as an object is a
    file.
    """

    def __init__(self, client: BaseClient):
        self.client = client

    def list_directory(self, location: FileLocation) -> ListingOutcome:
        key = location.file_id.strip("/")
        prefix = f"{key}/" if key else ""

        arguments = {
            "Bucket": location.file_container_id,
            "Prefix": prefix,
            "Delimiter": "/",
        }

        entries = []
        found = False

        try:
            while True:
                response = self.client.list_objects_v2(**arguments)

                for item in response.get("CommonPrefixes", []):
                    found = True
                    entries.append(
                        DirectoryEntry(
                            name=item["Prefix"][len(prefix) :].rstrip("/"), type="dir"
                        )
                    )

                for item in response.get("Contents", []):
                    found = True
                    name = item["Key"][len(prefix) :]

                    # The zero-length 'directory marker' object, if any.
                    if name:
                        entries.append(
                            DirectoryEntry(name=name, type="file", size=item["Size"])
                        )

                if not response.get("IsTruncated"):
                    break

                arguments["ContinuationToken"] = response["NextContinuationToken"]
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_ERROR_CODES:
                return NotFound()

            return ListingFailed(cause=str(e))
        except (BotoCoreError, KeyError) as e:
            return ListingFailed(cause=str(e))

        if found or not key:
            return Listed(
                location=FileLocation(
                    file_container_id=location.file_container_id, file_id=key
                ),
                entries=entries,
            )

        try:
            self.client.head_object(Bucket=location.file_container_id, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_ERROR_CODES:
                return NotFound()

            return ListingFailed(cause=str(e))
        except BotoCoreError as e:
            return ListingFailed(cause=str(e))

        return NotADirectory()


class S3DataTransferProxy(CoreDataTransferProxy):
    """
    A transfer proxy for S3. Without a progress listener, uploads and
    downloads block until complete; with one, they return immediately and
    the caller learns about completion through the listener or by querying
    the status.

    Request IDs carry the bucket, key and local path of the transfer, so a
    session that did not issue a transfer can still tell how it ended.
    """

    session_type: ClassVar[type[TransferSession]] = S3Session

    archive: ArchiveDestination
    "Bucket (and key prefix) that uploads are placed under."
    placement: str = "logical_path"

    endpoint_url: Optional[str] = None
    "For S3-compatible stores that are not AWS."
    region: Optional[str] = None
    verify_on_authenticate: bool = True
    "Check the credentials by calling head_bucket on the archive bucket."

    max_concurrency: int = 10
    multipart_threshold: int = 8 * 1024 * 1024
    cancel_poll_interval: float = 0.5
    "How often (seconds) a synchronous wait checks the cancel event."

    max_directory_depth: int = 64
    max_directory_entries: int = 1_000_000

    @field_validator("placement")
    def placement_is_valid(cls, v: str) -> str:
        if v not in Placements:
            raise ValueError(f"Invalid placement {v}")

        return v

    @field_validator("archive")
    def archive_is_valid(cls, v: ArchiveDestination) -> ArchiveDestination:
        if not v.file_location.file_container_id.strip():
            raise ValueError("The archive destination needs a container.")

        return v

    def authenticate(self, account: DataTransferAccount) -> S3Session:
        if not account.username or not account.password:
            raise AuthenticationError("S3 access key ID and secret access key are required.")

        try:
            client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=account.username,
                aws_secret_access_key=account.password,
                region_name=self.region,
                config=Config(signature_version="s3v4"),
            )

            if self.verify_on_authenticate:
                client.head_bucket(Bucket=self.archive.file_location.file_container_id)
        except (BotoCoreError, ClientError) as e:
            raise AuthenticationError(
                f"Failed to authenticate with S3 as {account.username}: {e}"
            ) from e

        transfer_manager = TransferManager(
            client,
            TransferConfig(
                max_concurrency=self.max_concurrency,
                multipart_threshold=self.multipart_threshold,
            ),
        )

        logger.debug(f"Authenticated with S3 as {account.username}")

        return S3Session(client=client, transfer_manager=transfer_manager)

    def _wait(
        self,
        future: TransferFuture,
        cancel_event: Optional[threading.Event],
        message: str,
        source,
        destination,
    ) -> bool:
        """
        Block until the transfer is done. Returns True if it was cancelled
        through the cancel event.
        """
        try:
            if cancel_event is not None:
                while not future.done():
                    if cancel_event.wait(self.cancel_poll_interval):
                        logger.warning(f"Cancelling transfer {source} -> {destination}")
                        future.cancel()
                        return True

            future.result()
        except CancelledError:
            logger.warning(f"Transfer {source} -> {destination} was cancelled")
            return True
        except KeyboardInterrupt:
            future.cancel()
            raise
        except TRANSFER_ERRORS as e:
            raise TransferError(message, source, destination) from e

        return False

    def _entity_tag(self, client: BaseClient, location: FileLocation) -> Optional[str]:
        try:
            response = client.head_object(
                Bucket=location.file_container_id, Key=location.file_id
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get entity tag of {location}: {e}")
            return None

        return response["ETag"].strip('"')

    def upload_data_object(
        self,
        session: S3Session,
        request: UploadRequest,
        metadata_entries: Optional[list[MetadataEntry]] = None,
        progress_listener: Optional[ProgressListener] = None,
    ) -> UploadResponse:
        session = self.check_session(session)

        if not isinstance(request.source, Path):
            raise InvalidLocationError(
                f"S3 uploads need a local source file, got {request.source}"
            )

        archive_location = resolve_archive_destination(
            self.archive,
            request.path,
            request.caller_object_id,
            placement_from_name(self.placement),
        )

        extra_args = {}

        if metadata_entries:
            extra_args["Metadata"] = {
                entry.attribute: entry.value for entry in metadata_entries
            }

        bridge = ProgressBridge(progress_listener)

        try:
            future = session.transfer_manager.upload(
                str(request.source),
                archive_location.file_container_id,
                archive_location.file_id,
                extra_args=extra_args or None,
                subscribers=[bridge],
            )
        except (*TRANSFER_ERRORS, ValueError) as e:
            raise TransferError(
                "[S3] Failed to upload file.", request.source, archive_location
            ) from e

        request_id = encode_request_id("upload", archive_location, request.source)
        transfer = InflightTransfer(
            request_id=request_id,
            direction="upload",
            location=archive_location,
            future=future,
            bridge=bridge,
        )
        session.transfers[request_id] = transfer

        response = UploadResponse(
            archive_location=archive_location,
            data_transfer_type=DataTransferType.S3,
            data_transfer_request_id=request_id,
            checksum=UNKNOWN_CHECKSUM,
            data_transfer_status=UploadStatus.IN_PROGRESS,
        )

        if progress_listener is not None:
            return response

        if self._wait(
            future,
            request.cancel_event,
            "[S3] Failed to upload file.",
            request.source,
            archive_location,
        ):
            response.data_transfer_status = UploadStatus.CANCELLED
            return response

        transfer.checksum = self._entity_tag(session.client, archive_location)
        response.checksum = transfer.checksum or UNKNOWN_CHECKSUM

        if self.archive.type == ArchiveType.ARCHIVE:
            response.data_transfer_status = UploadStatus.ARCHIVED
        else:
            response.data_transfer_status = UploadStatus.IN_TEMPORARY_ARCHIVE

        return response

    def download_data_object(
        self,
        session: S3Session,
        request: DownloadRequest,
        progress_listener: Optional[ProgressListener] = None,
    ) -> DownloadResponse:
        session = self.check_session(session)

        if not isinstance(request.destination, Path):
            raise InvalidLocationError(
                f"S3 downloads need a local destination file, got {request.destination}"
            )

        source = request.archive_location.validate_location()
        bridge = ProgressBridge(progress_listener)

        try:
            future = session.transfer_manager.download(
                source.file_container_id,
                source.file_id,
                str(request.destination),
                subscribers=[bridge],
            )
        except (*TRANSFER_ERRORS, ValueError) as e:
            raise TransferError(
                "[S3] Failed to download file.", source, request.destination
            ) from e

        request_id = encode_request_id("download", source, request.destination)
        session.transfers[request_id] = InflightTransfer(
            request_id=request_id,
            direction="download",
            location=source,
            future=future,
            bridge=bridge,
        )

        response = DownloadResponse(
            data_transfer_request_id=request_id,
            destination=request.destination,
            data_transfer_status=TransferStatus.IN_PROGRESS,
        )

        if progress_listener is not None:
            return response

        if self._wait(
            future,
            request.cancel_event,
            "[S3] Failed to download file.",
            source,
            request.destination,
        ):
            response.data_transfer_status = TransferStatus.CANCELLED
        else:
            response.data_transfer_status = TransferStatus.ARCHIVED

        return response

    def _settled(self, session: S3Session, request_id: str) -> SettledTransfer:
        """
        Find out how a transfer that this session does not know about ended,
        by looking at the object it moved. A missing object means the
        transfer failed, as does a download whose local copy does not match
        the object's size.
        """
        direction, location, local_path = decode_request_id(request_id)

        try:
            response = session.client.head_object(
                Bucket=location.file_container_id, Key=location.file_id
            )
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_ERROR_CODES:
                return SettledTransfer(
                    request_id, direction, location, TransferStatus.FAILED
                )

            raise TransferError(
                f"[S3] Failed to look up transfer {request_id}.", location
            ) from e
        except BotoCoreError as e:
            raise TransferError(
                f"[S3] Failed to look up transfer {request_id}.", location
            ) from e

        size = response["ContentLength"]

        if direction == "download" and (
            not local_path.is_file() or local_path.stat().st_size != size
        ):
            return SettledTransfer(
                request_id, direction, location, TransferStatus.FAILED
            )

        return SettledTransfer(
            request_id,
            direction,
            location,
            TransferStatus.ARCHIVED,
            checksum=response["ETag"].strip('"'),
            bytes_transferred=size,
        )

    def _transfer(self, session: S3Session, request_id: str):
        """
        The transfer behind a request ID: from the session if it issued the
        transfer, otherwise from the object store.
        """
        session = self.check_session(session)

        try:
            return session.transfers[request_id]
        except KeyError:
            return self._settled(session, request_id)

    def get_data_transfer_report(
        self, session: S3Session, request_id: str
    ) -> TransferReport:
        """
        Report on a transfer. For completed uploads this resolves the entity
        tag, which asynchronous uploads do not return up front.
        """
        transfer = self._transfer(session, request_id)
        status = transfer.status

        if (
            status == TransferStatus.ARCHIVED
            and transfer.direction == "upload"
            and transfer.checksum is None
        ):
            transfer.checksum = self._entity_tag(session.client, transfer.location)

        return TransferReport(
            task_id=request_id,
            task_type=transfer.direction,
            status=status.value,
            transfer_status=status,
            source_endpoint=(
                transfer.location.file_container_id
                if transfer.direction == "download"
                else None
            ),
            destination_endpoint=(
                transfer.location.file_container_id
                if transfer.direction == "upload"
                else None
            ),
            subtasks_total=1,
            subtasks_succeeded=1 if status == TransferStatus.ARCHIVED else 0,
            subtasks_canceled=1 if status == TransferStatus.CANCELLED else 0,
            subtasks_pending=0 if status.terminal else 1,
            files=1 if status == TransferStatus.ARCHIVED else 0,
            bytes_transferred=transfer.bytes_transferred,
            faults=1 if status == TransferStatus.FAILED else 0,
            checksum=transfer.checksum,
        )

    def get_data_transfer_status(
        self, session: S3Session, request_id: str
    ) -> TransferStatus:
        return self._transfer(session, request_id).status

    def get_data_transfer_size(self, session: S3Session, request_id: str) -> int:
        try:
            return self._transfer(session, request_id).bytes_transferred
        except TransferError as e:
            logger.error(f"Failed to get size of transfer {request_id}: {e}")
            return 0

    def get_path_attributes(
        self, session: S3Session, location: FileLocation, get_size: bool = False
    ) -> PathAttributes:
        session = self.check_session(session)

        resolver = PathAttributesResolver(
            S3DirectoryLister(session.client),
            max_depth=self.max_directory_depth,
            max_entries=self.max_directory_entries,
        )

        return resolver.get_path_attributes(location.validate_location(), get_size=get_size)
