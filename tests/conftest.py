"""Pytest configuration and shared fixtures."""

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from smugmug_importer.api_client import SmugMugAPIError, ServerError
from smugmug_importer.job_store import InMemoryJobStore
from smugmug_importer.models import AlbumHandle, SourcePhoto, UploadResponse


class FakeSmugMugClient:
    """In-process stand-in for SmugMugClient recording every side effect."""

    def __init__(self) -> None:
        self.created_albums: list[AlbumHandle] = []
        self.uploads: list[tuple[str, str, bytes]] = []
        self.remote_images: dict[str, bytes] = {}
        self.failing_album_names: set[str] = set()
        self.failing_photo_titles: set[str] = set()
        self.upload_delays: dict[str, float] = {}
        self.upload_status_code = 200
        self.session_error: Exception | None = None

    async def verify_session(self) -> str:
        if self.session_error is not None:
            raise self.session_error
        return "tester"

    async def create_album(
        self, name: str, description: str | None = None
    ) -> AlbumHandle:
        if name in self.failing_album_names:
            raise SmugMugAPIError(f"Cannot create album '{name}'")
        handle = AlbumHandle(
            uri=f"/api/v2/album/{name}", name=name, description=description
        )
        self.created_albums.append(handle)
        return handle

    async def upload_image(
        self, photo: SourcePhoto, album_uri: str, content: bytes
    ) -> UploadResponse:
        if photo.title in self.upload_delays:
            await asyncio.sleep(self.upload_delays[photo.title])
        if photo.title in self.failing_photo_titles:
            raise ServerError("Network error: timed out")
        if self.upload_status_code == 200:
            self.uploads.append((album_uri, photo.title, content))
        return UploadResponse(
            status_code=self.upload_status_code,
            image_uri=f"/api/v2/image/{photo.data_id}-0",
            body={"stat": "ok" if self.upload_status_code == 200 else "fail"},
        )

    async def fetch_image(self, url: str) -> bytes:
        return self.remote_images[url]

    def album_names(self) -> list[str]:
        return [album.name for album in self.created_albums]

    def titles_in(self, album_uri: str) -> list[str]:
        return [title for uri, title, _ in self.uploads if uri == album_uri]


@pytest.fixture
def job_id() -> str:
    return "job-1"


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def fake_client() -> FakeSmugMugClient:
    return FakeSmugMugClient()


@pytest.fixture
def make_photo(
    job_store: InMemoryJobStore, job_id: str
) -> Callable[..., SourcePhoto]:
    """Build a photo staged in the job's blob store."""

    def factory(album_id: str, data_id: str, title: str | None = None) -> SourcePhoto:
        reference = f"{album_id}/{data_id}.jpg"
        job_store.put_blob(job_id, reference, f"bytes of {data_id}".encode())
        return SourcePhoto(
            data_id=data_id,
            album_id=album_id,
            title=title or data_id,
            fetchable_url=reference,
            in_temp_store=True,
        )

    return factory


@pytest.fixture
def temp_photos_dir(tmp_path: Path) -> Path:
    """Create a temporary directory structure with test photos.

    Structure:
        temp_dir/
            album1/
                photo1.jpg
                photo2.png
            album2/
                photo3.jpg
            empty_album/
            not_a_dir.txt
    """
    root = tmp_path / "photos"
    root.mkdir()

    album1 = root / "album1"
    album1.mkdir()
    (album1 / "photo1.jpg").write_text("fake jpg content")
    (album1 / "photo2.png").write_text("fake png content")

    album2 = root / "album2"
    album2.mkdir()
    (album2 / "photo3.jpg").write_text("fake jpg content")

    # Empty album directory
    empty_album = root / "empty_album"
    empty_album.mkdir()

    # Non-directory file
    (root / "not_a_dir.txt").write_text("not a directory")

    return root


@pytest.fixture
def access_token() -> str:
    """Return a fake access token for testing."""
    return "test_access_token_123"
