"""
Path attributes, and the tagged outcomes of a remote directory listing.
"""

from typing import Literal, Union

from pydantic import BaseModel

from .locations import FileLocation

SIZE_NOT_COMPUTED = -1


class PathAttributes(BaseModel):
    """
    The result of probing a remote path. Size is only computed when asked
    for, as walking a large tree is expensive.
    """

    exists: bool = False
    is_file: bool = False
    is_directory: bool = False
    size: int = SIZE_NOT_COMPUTED
    "Size in bytes, or -1 if it was not computed."
    size_complete: bool = True
    "False if part of the tree could not be listed, so size is an undercount."


class DirectoryEntry(BaseModel):
    name: str
    type: Literal["file", "dir"]
    size: int = 0


class Listed(BaseModel):
    kind: Literal["listed"] = "listed"
    location: FileLocation
    "Location that was listed, as reported by the backend."
    entries: list[DirectoryEntry] = []


class NotADirectory(BaseModel):
    kind: Literal["not_a_directory"] = "not_a_directory"


class NotFound(BaseModel):
    kind: Literal["not_found"] = "not_found"


class ListingFailed(BaseModel):
    kind: Literal["failed"] = "failed"
    cause: str


ListingOutcome = Union[Listed, NotADirectory, NotFound, ListingFailed]
