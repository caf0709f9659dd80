"""Idempotent, resumable import of albums and photos into SmugMug."""

import asyncio
import logging
from collections import Counter
from collections.abc import Sequence
from typing import Any, Protocol
from uuid import UUID

import httpx

from smugmug_importer.api_client import SmugMugAPIError
from smugmug_importer.config import ImporterConfig
from smugmug_importer.idempotency import IdempotencyLedger
from smugmug_importer.job_store import JobStore
from smugmug_importer.models import (
    AlbumHandle,
    ImportResult,
    ImportStatus,
    SourceAlbum,
    SourcePhoto,
    UploadResponse,
)
from smugmug_importer.tracker import AlbumCreator, AlbumOverflowTracker, ImporterError

logger = logging.getLogger(__name__)

# Errors that abort the whole job when they escape per-item isolation
JOB_FATAL_ERRORS = (OSError, httpx.HTTPError, SmugMugAPIError)


class UploadFailedError(ImporterError):
    """Raised when the destination answers an upload with a non-success status."""

    pass


class DestinationClient(AlbumCreator, Protocol):
    async def verify_session(self) -> str: ...

    async def upload_image(
        self, photo: SourcePhoto, album_uri: str, content: bytes
    ) -> UploadResponse: ...

    async def fetch_image(self, url: str) -> bytes: ...


class ImportOrchestrator:
    """Imports albums, then photos, at most once each per job.

    Running ``import_all`` again with the same job id after a crash or a
    partial failure retries only what has not succeeded yet.
    """

    def __init__(
        self,
        client: DestinationClient,
        job_store: JobStore,
        config: ImporterConfig | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client: Destination client with an open session
            job_store: Store holding the job's durable state
            config: Importer settings
        """
        self.client = client
        self.job_store = job_store
        self.config = config or ImporterConfig()

    async def import_all(
        self,
        job_id: str | UUID,
        albums: Sequence[SourceAlbum],
        photos: Sequence[SourcePhoto],
    ) -> ImportResult:
        """Import all albums and photos of a job.

        Args:
            job_id: Stable id of the job, reused across retries
            albums: Source albums
            photos: Source photos, each referencing one of the albums

        Returns:
            OK unless an I/O error escaped item isolation; item failures are
            listed in the result either way
        """
        ledger = IdempotencyLedger(self.job_store, job_id)
        tracker = AlbumOverflowTracker(
            self.job_store, ledger, self.client, self.config.max_album_size
        )
        imported: Counter[str] = Counter()

        try:
            await self.client.verify_session()
            await self._import_albums(job_id, ledger, tracker, albums, imported)
            await self._import_photos(job_id, ledger, tracker, photos, imported)
        except JOB_FATAL_ERRORS as e:
            logger.error(f"Error importing job {job_id}: {e}")
            return ImportResult.error(
                e,
                ledger.failures,
                albums_imported=imported["albums"],
                photos_imported=imported["photos"],
            )

        logger.info(
            f"Job {job_id}: imported {imported['albums']}/{len(albums)} album(s) and "
            f"{imported['photos']}/{len(photos)} photo(s)"
        )
        return ImportResult(
            status=ImportStatus.OK,
            failures=ledger.failures,
            albums_imported=imported["albums"],
            photos_imported=imported["photos"],
        )

    async def _import_albums(
        self,
        job_id: str | UUID,
        ledger: IdempotencyLedger,
        tracker: AlbumOverflowTracker,
        albums: Sequence[SourceAlbum],
        imported: Counter[str],
    ) -> None:
        for album in albums:
            result = await ledger.execute_once_and_swallow_failures(
                album.id, album.name, lambda album=album: self._import_single_album(album)
            )
            if result is None:
                logger.error(f"Problem importing album '{album.name}' ({album.id})")
                continue

            handle = AlbumHandle.from_dict(result)
            tracker.ensure_progress(job_id, handle.uri)
            imported["albums"] += 1

    async def _import_single_album(self, album: SourceAlbum) -> dict[str, Any]:
        handle = await self.client.create_album(album.name, album.description)
        return handle.to_dict()

    async def _import_photos(
        self,
        job_id: str | UUID,
        ledger: IdempotencyLedger,
        tracker: AlbumOverflowTracker,
        photos: Sequence[SourcePhoto],
        imported: Counter[str],
    ) -> None:
        semaphore = asyncio.Semaphore(self.config.max_concurrent_uploads)

        async def import_with_semaphore(photo: SourcePhoto) -> None:
            async with semaphore:
                result = await ledger.execute_once_and_swallow_failures(
                    photo.idempotency_key,
                    photo.title or photo.data_id,
                    lambda: self._import_single_photo(job_id, tracker, photo),
                )
            if result is not None:
                imported["photos"] += 1

        tasks = [asyncio.create_task(import_with_semaphore(p)) for p in photos]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # No photo may keep uploading once the job has aborted
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _import_single_photo(
        self, job_id: str | UUID, tracker: AlbumOverflowTracker, photo: SourcePhoto
    ) -> dict[str, Any]:
        async with tracker.lock_for(photo.album_id):
            progress = await tracker.resolve_target_album(job_id, photo.album_id, photo)
            content = await self._read_photo(job_id, photo)
            response = await self.client.upload_image(photo, progress.album_uri, content)
            if not response.succeeded:
                raise UploadFailedError(
                    f"Upload of '{photo.title}' into {progress.album_uri} failed "
                    f"with status {response.status_code}"
                )
            tracker.record_upload(job_id, progress)

        logger.info(f"Uploaded '{photo.title}' into {progress.album_uri}")
        return {"album_uri": progress.album_uri, "image_uri": response.image_uri}

    async def _read_photo(self, job_id: str | UUID, photo: SourcePhoto) -> bytes:
        if photo.in_temp_store:
            with self.job_store.get_stream(job_id, photo.fetchable_url) as stream:
                return stream.read()
        return await self.client.fetch_image(photo.fetchable_url)
