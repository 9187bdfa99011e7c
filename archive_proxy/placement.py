"""
Archive destination resolution. Placement strategies decide which object id
a logical catalog path maps to under the base archive location. All of them
are pure functions of their inputs.
"""

import abc
from pathlib import PurePosixPath
from typing import Optional

from .exceptions import InvalidLocationError
from .models.locations import ArchiveDestination, ArchiveType, FileLocation


def _relative_parts(path: Optional[str]) -> list[str]:
    """
    Split a logical path into its components, refusing anything that could
    resolve outside of the archive root.
    """
    if path is None or not str(path).strip():
        raise InvalidLocationError("Logical path must not be empty.")

    parts = [p for p in PurePosixPath(path).parts if p not in ("/", ".")]

    if not parts or ".." in parts:
        raise InvalidLocationError(f"Provided path {path} resolves outside archive.")

    return parts


def _join(base: FileLocation, relative: str) -> FileLocation:
    prefix = base.file_id.rstrip("/")

    if prefix or base.file_id.startswith("/"):
        file_id = f"{prefix}/{relative}"
    else:
        file_id = relative

    return FileLocation(file_container_id=base.file_container_id, file_id=file_id)


class ArchivePlacement(abc.ABC):
    """
    Strategy for laying out uploaded objects under the archive root.
    """

    @abc.abstractmethod
    def resolve(
        self,
        base: FileLocation,
        path: str,
        caller_object_id: Optional[str],
        archive_type: ArchiveType,
    ) -> FileLocation:
        """
        Compute the archive location for a data object.

        Parameters
        ----------
        base : FileLocation
            Root of the archive.
        path : str
            Logical path of the data object in the catalog.
        caller_object_id : str, optional
            Identifier supplied by the caller.
        archive_type : ArchiveType
            Permanent or temporary archive.

        Returns
        -------
        FileLocation
            Where the object should be written.
        """
        raise NotImplementedError


class LogicalPathPlacement(ArchivePlacement):
    """
    Mirror the catalog hierarchy under the archive root.
    """

    def resolve(self, base, path, caller_object_id, archive_type):
        return _join(base, "/".join(_relative_parts(path)))


class CallerObjectIdPlacement(ArchivePlacement):
    """
    Place objects by the caller's object id, falling back to the logical
    path for callers that do not supply one.
    """

    def resolve(self, base, path, caller_object_id, archive_type):
        if caller_object_id:
            return _join(base, "/".join(_relative_parts(caller_object_id)))

        return _join(base, "/".join(_relative_parts(path)))


class FlatPlacement(ArchivePlacement):
    """
    Place every object directly under the archive root by its basename.
    """

    def resolve(self, base, path, caller_object_id, archive_type):
        return _join(base, _relative_parts(path)[-1])


Placements: dict[str, type[ArchivePlacement]] = {
    "logical_path": LogicalPathPlacement,
    "caller_object_id": CallerObjectIdPlacement,
    "flat": FlatPlacement,
}


def placement_from_name(name: str) -> ArchivePlacement:
    """
    Get a placement strategy from its name.
    """
    return Placements[name]()


def resolve_archive_destination(
    archive: ArchiveDestination,
    path: str,
    caller_object_id: Optional[str] = None,
    placement: ArchivePlacement | None = None,
) -> FileLocation:
    """
    Resolve where a data object with the given logical path lands in the
    archive. Defaults to the logical path placement.
    """
    if placement is None:
        placement = LogicalPathPlacement()

    return placement.resolve(
        archive.file_location.validate_location(),
        path,
        caller_object_id,
        archive.type,
    ).validate_location()
