"""
Resolution of path attributes (existence, file or directory, size) by
walking a remote directory listing. Neither backend has a 'stat' call, so
everything here is built on top of 'list this directory'.
"""

from typing import Protocol

from loguru import logger

from .models.attributes import (
    SIZE_NOT_COMPUTED,
    Listed,
    ListingFailed,
    ListingOutcome,
    NotADirectory,
    PathAttributes,
)
from .models.locations import FileLocation


class DirectoryLister(Protocol):
    def list_directory(self, location: FileLocation) -> ListingOutcome:
        """
        List the contents of a remote directory. Must not raise for backend
        failures; those are reported as a ListingFailed outcome.
        """
        ...


class _Walk:
    """
    Book-keeping for a single size computation.
    """

    def __init__(self, max_entries: int):
        self.remaining_entries = max_entries
        self.complete = True

    def degrade(self):
        self.complete = False


class PathAttributesResolver:
    """
    Computes PathAttributes for a location using a DirectoryLister.

    Parameters
    ----------
    lister : DirectoryLister
        Backend listing implementation.
    max_depth : int
        Deepest level of sub-directories that will be descended into when
        computing sizes.
    max_entries : int
        Maximum number of listing entries visited by one size computation.
    """

    def __init__(self, lister: DirectoryLister, max_depth: int = 64, max_entries: int = 1_000_000):
        self.lister = lister
        self.max_depth = max_depth
        self.max_entries = max_entries

    def get_path_attributes(
        self, location: FileLocation, get_size: bool = False
    ) -> PathAttributes:
        """
        Look up a location. A missing path is not an error: it yields a
        PathAttributes with exists=False.
        """
        outcome = self.lister.list_directory(location)

        if isinstance(outcome, Listed):
            if not get_size:
                return PathAttributes(exists=True, is_directory=True)

            walk = _Walk(self.max_entries)
            size = self._directory_size(outcome, depth=0, walk=walk)

            return PathAttributes(
                exists=True, is_directory=True, size=size, size_complete=walk.complete
            )

        if isinstance(outcome, NotADirectory):
            if not get_size:
                return PathAttributes(exists=True, is_file=True)

            walk = _Walk(self.max_entries)
            size = self._file_size(location, walk=walk)

            return PathAttributes(
                exists=True, is_file=True, size=size, size_complete=walk.complete
            )

        if isinstance(outcome, ListingFailed):
            logger.error(
                "Failed to get path attributes for {location}: {cause}",
                location=location,
                cause=outcome.cause,
            )

        return PathAttributes(size=SIZE_NOT_COMPUTED)

    def _directory_size(self, listing: Listed, depth: int, walk: _Walk) -> int:
        """
        Sum the sizes of all files below a listed directory. Sub-trees that
        cannot be listed contribute nothing and mark the walk incomplete.
        """
        size = 0

        for entry in listing.entries:
            if walk.remaining_entries <= 0:
                logger.warning(
                    "Stopped computing size of {location}: entry limit reached",
                    location=listing.location,
                )
                walk.degrade()
                break

            walk.remaining_entries -= 1

            if entry.type == "file":
                size += entry.size
                continue

            if depth + 1 > self.max_depth:
                logger.warning(
                    "Not descending into {location}/{name}: depth limit {limit} reached",
                    location=listing.location,
                    name=entry.name,
                    limit=self.max_depth,
                )
                walk.degrade()
                continue

            sub_location = listing.location.child(entry.name)
            outcome = self.lister.list_directory(sub_location)

            if isinstance(outcome, Listed):
                size += self._directory_size(outcome, depth=depth + 1, walk=walk)
            else:
                logger.error(
                    "Failed to calculate directory size of {location}: {outcome}",
                    location=sub_location,
                    outcome=outcome,
                )
                walk.degrade()

        return size

    def _file_size(self, location: FileLocation, walk: _Walk) -> int:
        # There is no way to list a single file, so find it in its parent.
        outcome = self.lister.list_directory(location.parent)

        if isinstance(outcome, Listed):
            for entry in outcome.entries:
                if entry.name == location.name and entry.type == "file":
                    return entry.size

            logger.error(
                "File {name} not found in the listing of {parent}",
                name=location.name,
                parent=location.parent,
            )
        else:
            logger.error(
                "Failed to calculate file size of {location}: {outcome}",
                location=location,
                outcome=outcome,
            )

        walk.degrade()
        return 0
