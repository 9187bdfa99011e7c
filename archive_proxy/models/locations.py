"""
Models for backend-addressable locations and archive destinations.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from ..exceptions import InvalidLocationError


class FileLocation(BaseModel):
    """
    A location on a backend. For Globus this is an (endpoint, path) pair,
    for S3 a (bucket, key) pair. The ids are opaque to the proxy facade.
    """

    model_config = ConfigDict(frozen=True)

    file_container_id: str
    "Globus endpoint name/UUID, or S3 bucket."
    file_id: str
    "Path on the endpoint, or object key in the bucket."

    def validate_location(self) -> "FileLocation":
        """
        Raise InvalidLocationError if the container is blank. A blank file id
        is the root of the container. Returns self so that this can be chained.
        """
        if not self.file_container_id.strip():
            raise InvalidLocationError(f"Invalid file location: {self}")

        return self

    @property
    def name(self) -> str:
        """
        The last component of the file id.
        """
        return self.file_id.rstrip("/").rsplit("/", 1)[-1]

    @property
    def parent(self) -> "FileLocation":
        """
        The location of the directory containing this one. The root of an
        endpoint is "/".
        """
        head = self.file_id.rstrip("/").rsplit("/", 1)

        return FileLocation(
            file_container_id=self.file_container_id,
            file_id=(head[0] or "/") if len(head) == 2 else "/",
        )

    def child(self, name: str) -> "FileLocation":
        return FileLocation(
            file_container_id=self.file_container_id,
            file_id=f"{self.file_id.rstrip('/')}/{name}",
        )

    def __str__(self):
        return f"{self.file_container_id}:{self.file_id}"


class ArchiveType(Enum):
    """
    Whether uploads land in the permanent archive or in temporary staging.
    """

    ARCHIVE = "archive"
    TEMPORARY_ARCHIVE = "temporary_archive"


class ArchiveDestination(BaseModel):
    """
    The root under which uploads are placed, and the policy of that root.
    """

    model_config = ConfigDict(frozen=True)

    file_location: FileLocation
    "The base location; placed objects live under this."
    type: ArchiveType = ArchiveType.ARCHIVE
    "Permanent or temporary archive."
