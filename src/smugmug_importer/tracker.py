"""Album overflow tracking.

SmugMug caps the number of images per album. Every destination album has an
``AlbumProgress`` record in the job store counting the photos uploaded into
it. When an album is full, photos spill into an overflow album named
``<name>-overflow``, which may itself overflow, forming a chain of records
linked by album URI.
"""

import asyncio
import logging
from enum import Enum
from typing import Protocol
from uuid import UUID

from smugmug_importer.idempotency import IdempotencyLedger
from smugmug_importer.job_store import JobStore
from smugmug_importer.models import AlbumHandle, AlbumProgress, SourcePhoto

logger = logging.getLogger(__name__)

OVERFLOW_SUFFIX = "-overflow"


class ImporterError(Exception):
    """Base exception for import consistency failures."""

    pass


class AlbumNotFoundError(ImporterError):
    """Raised when a photo's album was never imported."""

    pass


class OverflowChainError(ImporterError):
    """Raised when an overflow album cannot be created or its record is missing."""

    pass


class AlbumCreator(Protocol):
    async def create_album(
        self, name: str, description: str | None = None
    ) -> AlbumHandle: ...


class Placement(Enum):
    ROOM_AVAILABLE = "room_available"
    MUST_CREATE = "must_create"
    MUST_LOAD = "must_load"


def overflow_key(handle: AlbumHandle) -> str:
    """Idempotency key of the overflow album chained after handle."""
    return f"{handle.uri}{OVERFLOW_SUFFIX}"


def album_chain(
    job_store: JobStore, job_id: str | UUID, album_uri: str
) -> list[AlbumProgress]:
    """Return the progress records of album_uri and all its overflow albums."""
    records: list[AlbumProgress] = []
    seen: set[str] = set()
    uri: str | None = album_uri
    while uri is not None and uri not in seen:
        data = job_store.read(job_id, uri)
        if data is None:
            break
        seen.add(uri)
        progress = AlbumProgress.from_dict(data)
        records.append(progress)
        uri = progress.overflow_album_uri
    return records


class AlbumOverflowTracker:
    """Decides which destination album a photo goes into."""

    def __init__(
        self,
        job_store: JobStore,
        ledger: IdempotencyLedger,
        client: AlbumCreator,
        max_album_size: int,
    ) -> None:
        """Initialize the tracker.

        Args:
            job_store: Store holding the progress records
            ledger: Ledger holding album creation results for the job
            client: Destination client used to create overflow albums
            max_album_size: Maximum number of photos per destination album
        """
        self.job_store = job_store
        self.ledger = ledger
        self.client = client
        self.max_album_size = max_album_size
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, source_album_id: str) -> asyncio.Lock:
        """Lock serializing placement and counting for one source album's chain."""
        return self._locks.setdefault(source_album_id, asyncio.Lock())

    def ensure_progress(self, job_id: str | UUID, album_uri: str) -> AlbumProgress:
        """Return the progress record for album_uri, creating it if absent."""
        data = self.job_store.read(job_id, album_uri)
        if data is not None:
            return AlbumProgress.from_dict(data)

        progress = AlbumProgress(album_uri=album_uri)
        self.job_store.create(job_id, album_uri, progress.to_dict())
        logger.debug(f"Started progress record for {album_uri}")
        return progress

    def placement(self, progress: AlbumProgress) -> Placement:
        """Decide what placing one more photo into progress.album_uri requires."""
        if progress.photo_count < self.max_album_size:
            return Placement.ROOM_AVAILABLE
        if progress.overflow_album_uri is None:
            return Placement.MUST_CREATE
        return Placement.MUST_LOAD

    async def resolve_target_album(
        self, job_id: str | UUID, source_album_id: str, photo: SourcePhoto
    ) -> AlbumProgress:
        """Find the earliest album in the chain with room for photo.

        Overflow albums are created on demand. The returned record is the one
        whose ``album_uri`` the photo must be uploaded into.

        Raises:
            AlbumNotFoundError: If the source album was never imported
            OverflowChainError: If the chain cannot be extended or is broken
        """
        cached = self.ledger.get_cached_result(source_album_id)
        if cached is None:
            raise AlbumNotFoundError(
                f"Album not found for photo '{photo.title}': {source_album_id}"
            )

        handle = AlbumHandle.from_dict(cached)
        progress = self.ensure_progress(job_id, handle.uri)

        while True:
            step = self.placement(progress)
            if step is Placement.ROOM_AVAILABLE:
                return progress

            if step is Placement.MUST_CREATE:
                overflow = await self._create_overflow_album(handle, photo)
                next_progress = self.ensure_progress(job_id, overflow.uri)
                progress.overflow_album_uri = overflow.uri
                self.job_store.update(job_id, progress.album_uri, progress.to_dict())
                logger.info(
                    f"Album {progress.album_uri} is full, overflowing into {overflow.uri}"
                )
            else:
                data = self.job_store.read(job_id, progress.overflow_album_uri)
                if data is None:
                    raise OverflowChainError(
                        f"Couldn't find overflow album {progress.overflow_album_uri} "
                        f"for photo '{photo.title}'"
                    )
                overflow = self._overflow_handle(handle, progress.overflow_album_uri)
                next_progress = AlbumProgress.from_dict(data)

            handle, progress = overflow, next_progress

    def record_upload(self, job_id: str | UUID, progress: AlbumProgress) -> AlbumProgress:
        """Count one successful upload into progress.album_uri and persist it."""
        progress.increment_photo_count()
        self.job_store.update(job_id, progress.album_uri, progress.to_dict())
        logger.debug(
            f"Album {progress.album_uri} now holds {progress.photo_count} photo(s)"
        )
        return progress

    def chain(self, job_id: str | UUID, album_uri: str) -> list[AlbumProgress]:
        """Return the progress records of album_uri followed by its overflow albums."""
        return album_chain(self.job_store, job_id, album_uri)

    async def _create_overflow_album(
        self, handle: AlbumHandle, photo: SourcePhoto
    ) -> AlbumHandle:
        name = f"{handle.name}{OVERFLOW_SUFFIX}"

        async def create() -> dict:
            created = await self.client.create_album(name, handle.description)
            return created.to_dict()

        result = await self.ledger.execute_once_and_swallow_failures(
            overflow_key(handle), name, create
        )
        if result is None:
            raise OverflowChainError(
                f"Failed to create overflow album for photo '{photo.title}'"
            )
        return AlbumHandle.from_dict(result)

    def _overflow_handle(self, handle: AlbumHandle, overflow_uri: str) -> AlbumHandle:
        cached = self.ledger.get_cached_result(overflow_key(handle))
        if cached is not None:
            return AlbumHandle.from_dict(cached)
        return AlbumHandle(
            uri=overflow_uri,
            name=f"{handle.name}{OVERFLOW_SUFFIX}",
            description=handle.description,
        )
