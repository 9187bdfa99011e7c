"""
Core data transfer proxy (abstract base class). Callers hold one of these
and never need to know which backend sits behind it.
"""

import abc
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict

from ..exceptions import AuthenticationError
from ..models import (
    DataTransferAccount,
    DownloadRequest,
    DownloadResponse,
    FileLocation,
    MetadataEntry,
    PathAttributes,
    UploadRequest,
    UploadResponse,
)
from ..progress import ProgressListener
from ..transfer import TransferStatus


class TransferSession(BaseModel):
    """
    Opaque authenticated handle. Each backend subclasses this with the
    client objects it needs; callers only pass it back in.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: str

    def close(self):
        """
        Release whatever the backend holds open for this session.
        """
        return

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


class CoreDataTransferProxy(BaseModel, abc.ABC):
    """
    The data transfer proxy interface. All derived classes must implement
    every method here. Derived classes carry their own configuration as
    model fields, so constructing one validates the configuration.
    """

    session_type: ClassVar[type[TransferSession]] = TransferSession

    def check_session(self, session: TransferSession):
        """
        Make sure that the session was issued by this kind of proxy.
        """
        if not isinstance(session, self.session_type):
            raise AuthenticationError(
                f"Session of kind {getattr(session, 'kind', type(session).__name__)} "
                f"cannot be used with {type(self).__name__}"
            )

        return session

    @abc.abstractmethod
    def authenticate(self, account: DataTransferAccount) -> TransferSession:
        """
        Log in to the backend.

        Parameters
        ----------
        account : DataTransferAccount
            Credentials for the backend.

        Returns
        -------
        TransferSession
            Handle to pass to all other calls.

        Raises
        ------
        AuthenticationError
            If the credentials are missing or rejected.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def upload_data_object(
        self,
        session: TransferSession,
        request: UploadRequest,
        metadata_entries: Optional[list[MetadataEntry]] = None,
        progress_listener: Optional[ProgressListener] = None,
    ) -> UploadResponse:
        """
        Upload a data object to the archive. Whether this blocks depends on
        the backend and on whether a progress listener is given.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def download_data_object(
        self,
        session: TransferSession,
        request: DownloadRequest,
        progress_listener: Optional[ProgressListener] = None,
    ) -> DownloadResponse:
        """
        Download a data object from the archive.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def get_data_transfer_status(
        self, session: TransferSession, request_id: str
    ) -> TransferStatus:
        raise NotImplementedError

    @abc.abstractmethod
    def get_data_transfer_size(self, session: TransferSession, request_id: str) -> int:
        """
        Number of bytes moved so far by a transfer. Returns 0 if it cannot
        be determined.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def get_path_attributes(
        self, session: TransferSession, location: FileLocation, get_size: bool = False
    ) -> PathAttributes:
        """
        Look up a location on the backend. Missing paths are reported as
        exists=False, never raised.
        """
        raise NotImplementedError
