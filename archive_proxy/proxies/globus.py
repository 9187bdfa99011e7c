"""
A data transfer proxy for Globus. Globus transfers are asynchronous: we
submit a task, get back a task ID, and poll the task for its status.
"""

import datetime
from typing import ClassVar, Literal, Optional

import globus_sdk
from loguru import logger
from pydantic import ValidationError, field_validator

from ..exceptions import (
    AuthenticationError,
    EndpointActivationError,
    InvalidLocationError,
    TransferError,
)
from ..models import (
    UNKNOWN_CHECKSUM,
    ArchiveDestination,
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
from ..progress import ProgressListener
from ..transfer import DataTransferType, TransferStatus, UploadStatus, status_from_globus
from .core import CoreDataTransferProxy, TransferSession

TRANSFER_RESOURCE_SERVER = "transfer.api.globus.org"

# Globus error codes.
NOT_DIRECTORY_GLOBUS_CODE = "ExternalError.DirListingFailed.NotDirectory"
NOT_FOUND_GLOBUS_CODES = (
    "ClientError.NotFound",
    "ExternalError.DirListingFailed.NotFound",
)
ACTIVATION_FAILED_GLOBUS_CODE = "AutoActivationFailed"


def parse_globus_time(value) -> Optional[datetime.datetime]:
    """
    Parse a Globus timestamp ('2016-03-10 18:47:05+00:00'). Globus uses a
    space between date and time, and sometimes sends the literal string
    'null' for missing values.
    """
    if value is None:
        return None

    value = str(value).strip()

    if not value or value.lower() == "null":
        return None

    return datetime.datetime.fromisoformat(value.replace(" ", "T"))


class GlobusSession(TransferSession):
    kind: Literal["globus"] = "globus"
    transfer_client: globus_sdk.TransferClient
    "Authorized client for the Globus Transfer API."


class GlobusDirectoryLister:
    """
    Directory listing through the Globus 'ls' operation. The 'not a
    directory' error that Globus raises for files is turned into a
    NotADirectory outcome here, so nothing upstream has to match on error
    codes.
    """

    def __init__(self, transfer_client: globus_sdk.TransferClient):
        self.transfer_client = transfer_client

    def list_directory(self, location: FileLocation) -> ListingOutcome:
        try:
            response = self.transfer_client.operation_ls(
                location.file_container_id, path=location.file_id
            )
        except globus_sdk.TransferAPIError as e:
            if e.code == NOT_DIRECTORY_GLOBUS_CODE:
                return NotADirectory()

            if e.http_status == 404 or e.code in NOT_FOUND_GLOBUS_CODES:
                return NotFound()

            return ListingFailed(cause=f"{e.code}: {e}")
        except globus_sdk.GlobusError as e:
            return ListingFailed(cause=str(e))

        try:
            entries = [
                DirectoryEntry(
                    name=item["name"], type=item["type"], size=item.get("size") or 0
                )
                for item in response["DATA"]
                if item.get("type") in ("file", "dir")
            ]
        except (KeyError, TypeError, ValidationError) as e:
            return ListingFailed(cause=f"Malformed listing of {location}: {e}")

        return Listed(
            location=FileLocation(
                file_container_id=response.get("endpoint") or location.file_container_id,
                file_id=response.get("path") or location.file_id,
            ),
            entries=entries,
        )


class GlobusDataTransferProxy(CoreDataTransferProxy):
    """
    A transfer proxy that uses Globus. Upload and download are the same
    primitive (transfer_data) with source and destination swapped.
    """

    session_type: ClassVar[type[TransferSession]] = GlobusSession

    archive: ArchiveDestination
    "Where uploaded data objects are placed."
    placement: str = "logical_path"
    "Name of the placement strategy, see archive_proxy.placement."

    native_app: bool = False
    # Whether to use a Native App (true) or a Confidential App (false, default)
    # for authorizing the client.

    activation_expires_in: int = 100
    "Endpoints are re-activated if their activation expires within this many seconds."

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

    def authenticate(self, account: DataTransferAccount) -> GlobusSession:
        """
        Authenticate with Globus.

        Note that the "secret" used is different in the two cases: for the
        Native App, the password is assumed to be a Refresh Token, which is a
        long-lived token that allows the user to authenticate and initiate
        transfers. For the Confidential App, the password is the Client Secret
        generated when the app was created.
        """
        if not account.username or not account.password:
            raise AuthenticationError("Globus client ID and secret are required.")

        try:
            if self.native_app:
                client = globus_sdk.NativeAppAuthClient(account.username)
                authorizer = globus_sdk.RefreshTokenAuthorizer(account.password, client)
            else:
                client = globus_sdk.ConfidentialAppAuthClient(
                    account.username, account.password
                )
                tokens = client.oauth2_client_credentials_tokens()
                transfer_token = tokens.by_resource_server[TRANSFER_RESOURCE_SERVER][
                    "access_token"
                ]
                authorizer = globus_sdk.AccessTokenAuthorizer(transfer_token)
        except globus_sdk.GlobusError as e:
            raise AuthenticationError(
                f"Failed to authenticate with Globus as {account.username}: {e}"
            ) from e
        except KeyError as e:
            raise AuthenticationError(
                f"Globus did not issue a transfer token for {account.username}"
            ) from e

        logger.debug(f"Authenticated with Globus as {account.username}")

        return GlobusSession(transfer_client=globus_sdk.TransferClient(authorizer=authorizer))

    def _resolver(self, transfer_client: globus_sdk.TransferClient) -> PathAttributesResolver:
        return PathAttributesResolver(
            GlobusDirectoryLister(transfer_client),
            max_depth=self.max_directory_depth,
            max_entries=self.max_directory_entries,
        )

    def _auto_activate(
        self,
        endpoint: str,
        transfer_client: globus_sdk.TransferClient,
        source: FileLocation,
        destination: FileLocation,
    ):
        try:
            response = transfer_client.endpoint_autoactivate(
                endpoint, if_expires_in=self.activation_expires_in
            )
            code = response["code"]
        except (globus_sdk.GlobusError, KeyError) as e:
            raise EndpointActivationError(
                f"Failed to activate endpoint: {endpoint}", source, destination
            ) from e

        if code.startswith(ACTIVATION_FAILED_GLOBUS_CODE):
            logger.error(f"Unable to auto activate endpoint {endpoint}: {code}")
            raise EndpointActivationError(
                f"Unable to auto activate endpoint {endpoint} ({code})",
                source,
                destination,
            )

    def transfer_data(
        self, session: GlobusSession, source: FileLocation, destination: FileLocation
    ) -> str:
        """
        Submit a Globus transfer of one file or directory.

        Both endpoints are auto-activated first, and the source is checked to
        find out whether the transfer has to be recursive.

        Parameters
        ----------
        session : GlobusSession
            Authenticated session.
        source : FileLocation
            Endpoint and path to transfer from.
        destination : FileLocation
            Endpoint and path to transfer to.

        Returns
        -------
        str
            The Globus task ID, used as the data transfer request ID.

        Raises
        ------
        EndpointActivationError
            If either endpoint could not be activated.
        TransferError
            If the submission failed.
        """
        session = self.check_session(session)
        source.validate_location()
        destination.validate_location()

        transfer_client = session.transfer_client

        for endpoint in dict.fromkeys(
            [source.file_container_id, destination.file_container_id]
        ):
            self._auto_activate(endpoint, transfer_client, source, destination)

        # Globus needs to know whether the source is a directory or a flat
        # file, and there is no way to ask other than listing it.
        recursive = self._resolver(transfer_client).get_path_attributes(source).is_directory

        try:
            submission_id = transfer_client.get_submission_id()["value"]

            transfer_data = globus_sdk.TransferData(
                source_endpoint=source.file_container_id,
                destination_endpoint=destination.file_container_id,
                submission_id=submission_id,
                verify_checksum=True,
                delete_destination_extra=False,
                preserve_timestamp=False,
                encrypt_data=False,
            )

            transfer_data.add_item(
                source.file_id,
                destination.file_id,
                recursive=recursive,
                additional_fields={
                    "source_endpoint": source.file_container_id,
                    "destination_endpoint": destination.file_container_id,
                },
            )

            task_id = transfer_client.submit_transfer(transfer_data)["task_id"]
        except (globus_sdk.GlobusError, KeyError) as e:
            raise TransferError("Failed to transfer", source, destination) from e

        logger.debug(f"Globus transfer {source} -> {destination} submitted as {task_id}")

        return task_id

    def upload_data_object(
        self,
        session: GlobusSession,
        request: UploadRequest,
        metadata_entries: Optional[list[MetadataEntry]] = None,
        progress_listener: Optional[ProgressListener] = None,
    ) -> UploadResponse:
        if not isinstance(request.source, FileLocation):
            raise InvalidLocationError(
                f"Globus uploads need a source endpoint and path, got {request.source}"
            )

        archive_location = resolve_archive_destination(
            self.archive,
            request.path,
            request.caller_object_id,
            placement_from_name(self.placement),
        )

        if progress_listener is not None:
            logger.debug("Globus transfers do not report progress; poll the status instead.")

        task_id = self.transfer_data(session, request.source, archive_location)

        return UploadResponse(
            archive_location=archive_location,
            data_transfer_type=DataTransferType.GLOBUS,
            data_transfer_request_id=task_id,
            checksum=UNKNOWN_CHECKSUM,
            data_transfer_status=UploadStatus.IN_PROGRESS,
        )

    def download_data_object(
        self,
        session: GlobusSession,
        request: DownloadRequest,
        progress_listener: Optional[ProgressListener] = None,
    ) -> DownloadResponse:
        if not isinstance(request.destination, FileLocation):
            raise InvalidLocationError(
                f"Globus downloads need a destination endpoint and path, got {request.destination}"
            )

        if progress_listener is not None:
            logger.debug("Globus transfers do not report progress; poll the status instead.")

        task_id = self.transfer_data(session, request.archive_location, request.destination)

        return DownloadResponse(
            data_transfer_request_id=task_id,
            destination=request.destination,
            data_transfer_status=TransferStatus.IN_PROGRESS,
        )

    def get_data_transfer_report(
        self, session: GlobusSession, request_id: str
    ) -> TransferReport:
        """
        Fetch the Globus task document and turn it into a TransferReport.
        """
        session = self.check_session(session)

        try:
            task = session.transfer_client.get_task(request_id)

            def count(key: str) -> int:
                return task.get(key) or 0

            return TransferReport(
                task_id=request_id,
                task_type=task.get("type"),
                status=task["status"],
                transfer_status=status_from_globus(task["status"]),
                request_time=parse_globus_time(task.get("request_time")),
                deadline=parse_globus_time(task.get("deadline")),
                completion_time=parse_globus_time(task.get("completion_time")),
                subtasks_total=count("subtasks_total"),
                subtasks_succeeded=count("subtasks_succeeded"),
                subtasks_expired=count("subtasks_expired"),
                subtasks_canceled=count("subtasks_canceled"),
                subtasks_pending=count("subtasks_pending"),
                subtasks_retrying=count("subtasks_retrying"),
                command=task.get("command"),
                source_endpoint=task.get("source_endpoint"),
                destination_endpoint=task.get("destination_endpoint"),
                encrypt_data=bool(task.get("encrypt_data")),
                verify_checksum=bool(task.get("verify_checksum")),
                delete_destination_extra=bool(task.get("delete_destination_extra")),
                files=count("files"),
                files_skipped=count("files_skipped"),
                directories=count("directories"),
                bytes_transferred=count("bytes_transferred"),
                bytes_checksummed=count("bytes_checksummed"),
                effective_bytes_per_second=count("effective_bytes_per_second"),
                faults=count("faults"),
            )
        except (globus_sdk.GlobusError, KeyError, ValueError) as e:
            raise TransferError(f"Failed to get task report for task: {request_id}") from e

    def get_data_transfer_status(
        self, session: GlobusSession, request_id: str
    ) -> TransferStatus:
        return self.get_data_transfer_report(session, request_id).transfer_status

    def get_data_transfer_size(self, session: GlobusSession, request_id: str) -> int:
        try:
            return self.get_data_transfer_report(session, request_id).bytes_transferred
        except TransferError as e:
            logger.error(f"Failed to get size of transfer {request_id}: {e}")
            return 0

    def get_path_attributes(
        self, session: GlobusSession, location: FileLocation, get_size: bool = False
    ) -> PathAttributes:
        session = self.check_session(session)

        return self._resolver(session.transfer_client).get_path_attributes(
            location.validate_location(), get_size=get_size
        )
