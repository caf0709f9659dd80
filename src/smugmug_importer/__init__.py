"""SmugMug Importer - Resumable import of photo albums into SmugMug."""

__version__ = "0.1.0"

from smugmug_importer.api_client import SmugMugClient
from smugmug_importer.config import ImporterConfig
from smugmug_importer.idempotency import IdempotencyLedger
from smugmug_importer.importer import ImportOrchestrator
from smugmug_importer.job_store import FileJobStore, InMemoryJobStore
from smugmug_importer.models import (
    AlbumHandle,
    AlbumProgress,
    ImportResult,
    SourceAlbum,
    SourcePhoto,
)
from smugmug_importer.tracker import AlbumOverflowTracker

__all__ = [
    "SmugMugClient",
    "ImporterConfig",
    "IdempotencyLedger",
    "ImportOrchestrator",
    "FileJobStore",
    "InMemoryJobStore",
    "AlbumHandle",
    "AlbumProgress",
    "ImportResult",
    "SourceAlbum",
    "SourcePhoto",
    "AlbumOverflowTracker",
]
