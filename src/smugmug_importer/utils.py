"""Loaders turning local sources into albums and photos to import."""

import json
import logging
from pathlib import Path
from uuid import UUID

from smugmug_importer.job_store import JobStore
from smugmug_importer.models import SourceAlbum, SourcePhoto

logger = logging.getLogger(__name__)

# Supported image extensions
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".heic"}


def is_image_file(path: Path) -> bool:
    """Check if a file is a supported image format.

    Args:
        path: Path to the file to check

    Returns:
        True if the file is a supported image format, False otherwise
    """
    return path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS


def scan_albums(root_dir: Path) -> tuple[list[SourceAlbum], list[SourcePhoto]]:
    """Scan root directory for albums.

    Each subdirectory in the root is treated as an album, with its name as
    album id and name. Image files in the subdirectory become photos whose
    ``fetchable_url`` is their path relative to root_dir, to be staged in the
    job's temporary blob store with ``stage_photos``.

    Args:
        root_dir: Root directory to scan

    Returns:
        Albums and their photos

    Raises:
        FileNotFoundError: If root_dir doesn't exist
        NotADirectoryError: If root_dir is not a directory
    """
    if not root_dir.exists():
        raise FileNotFoundError(f"Root directory does not exist: {root_dir}")

    if not root_dir.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {root_dir}")

    albums: list[SourceAlbum] = []
    photos: list[SourcePhoto] = []

    for subdir in sorted(root_dir.iterdir()):
        if not subdir.is_dir():
            logger.debug(f"Skipping non-directory: {subdir}")
            continue

        album_photos = [
            SourcePhoto(
                data_id=path.name,
                album_id=subdir.name,
                title=path.stem,
                fetchable_url=f"{subdir.name}/{path.name}",
                in_temp_store=True,
            )
            for path in sorted(subdir.iterdir())
            if is_image_file(path)
        ]

        if album_photos:
            albums.append(SourceAlbum(id=subdir.name, name=subdir.name))
            photos.extend(album_photos)
            logger.info(f"Found album '{subdir.name}' with {len(album_photos)} photo(s)")
        else:
            logger.warning(f"Skipping empty album directory: {subdir}")

    logger.info(f"Found {len(albums)} album(s) with {len(photos)} photo(s)")
    return albums, photos


def stage_photos(
    job_store: JobStore,
    job_id: str | UUID,
    root_dir: Path,
    photos: list[SourcePhoto],
) -> int:
    """Copy photos found by ``scan_albums`` into the job's blob store.

    Photos staged by an earlier run of the same job are left alone.

    Returns:
        Number of photos newly staged
    """
    staged = 0
    for photo in photos:
        if not photo.in_temp_store or job_store.has_blob(job_id, photo.fetchable_url):
            continue
        job_store.put_blob(job_id, photo.fetchable_url, (root_dir / photo.fetchable_url).read_bytes())
        staged += 1

    if staged:
        logger.info(f"Staged {staged} photo(s) for job {job_id}")
    return staged


def load_manifest(path: Path) -> tuple[list[SourceAlbum], list[SourcePhoto]]:
    """Load albums and photos from a JSON manifest.

    The manifest holds ``albums`` (``id``, ``name``, ``description``) and
    ``photos`` (``data_id``, ``album_id``, ``title``, ``fetchable_url`` and
    optionally ``in_temp_store``, ``description``, ``media_type``).

    Raises:
        FileNotFoundError: If the manifest doesn't exist
        ValueError: If the manifest is malformed
    """
    if not path.exists():
        raise FileNotFoundError(f"Manifest does not exist: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        albums = [
            SourceAlbum(
                id=str(item["id"]),
                name=item["name"],
                description=item.get("description"),
            )
            for item in data.get("albums", [])
        ]
        photos = [
            SourcePhoto(
                data_id=str(item["data_id"]),
                album_id=str(item["album_id"]),
                title=item.get("title") or "",
                fetchable_url=item["fetchable_url"],
                in_temp_store=bool(item.get("in_temp_store", False)),
                description=item.get("description"),
                media_type=item.get("media_type"),
            )
            for item in data.get("photos", [])
        ]
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"Malformed manifest {path}: {e!r}") from e

    logger.info(f"Loaded {len(albums)} album(s) and {len(photos)} photo(s) from {path}")
    return albums, photos
