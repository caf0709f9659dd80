"""Data models for the SmugMug album importer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class SourceAlbum:
    """An album read from the source, already made SmugMug compatible."""

    id: str
    name: str
    description: str | None = None

    def __post_init__(self) -> None:
        """Validate album data."""
        if not self.id:
            raise ValueError("Album id cannot be empty")
        if not self.name:
            raise ValueError("Album name cannot be empty")


@dataclass(frozen=True)
class SourcePhoto:
    """A photo read from the source.

    ``fetchable_url`` is a reference into the job's temporary blob store when
    ``in_temp_store`` is set, and a directly fetchable URL otherwise.
    """

    data_id: str
    album_id: str
    title: str
    fetchable_url: str
    in_temp_store: bool = False
    description: str | None = None
    media_type: str | None = None

    def __post_init__(self) -> None:
        """Validate photo data."""
        if not self.data_id:
            raise ValueError("Photo data id cannot be empty")
        if not self.album_id:
            raise ValueError("Photo album id cannot be empty")
        if not self.fetchable_url:
            raise ValueError("Photo fetchable url cannot be empty")

    @property
    def idempotency_key(self) -> str:
        """Ledger key of the photo's upload, unique within a job."""
        return f"{self.album_id}-{self.data_id}"


@dataclass(frozen=True)
class AlbumHandle:
    """A destination album as returned by album creation."""

    uri: str
    name: str
    description: str | None = None
    album_key: str | None = None
    web_url: str | None = None

    def __post_init__(self) -> None:
        if not self.uri:
            raise ValueError("Album handle must have a uri")

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "album_key": self.album_key,
            "web_url": self.web_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlbumHandle":
        return cls(
            uri=data["uri"],
            name=data["name"],
            description=data.get("description"),
            album_key=data.get("album_key"),
            web_url=data.get("web_url"),
        )


@dataclass
class AlbumProgress:
    """Running photo count of one destination album and its overflow pointer.

    Stored in the job store keyed by ``album_uri``. Only the overflow tracker
    mutates these records.
    """

    album_uri: str
    photo_count: int = 0
    overflow_album_uri: str | None = None

    def __post_init__(self) -> None:
        """Validate progress data."""
        if not self.album_uri:
            raise ValueError("Album progress must have an album_uri")
        if self.photo_count < 0:
            raise ValueError("Photo count cannot be negative")

    def increment_photo_count(self) -> None:
        self.photo_count += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "album_uri": self.album_uri,
            "photo_count": self.photo_count,
            "overflow_album_uri": self.overflow_album_uri,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlbumProgress":
        return cls(
            album_uri=data["album_uri"],
            photo_count=data.get("photo_count", 0),
            overflow_album_uri=data.get("overflow_album_uri"),
        )


# SmugMug answers a successful upload with HTTP 200
UPLOAD_SUCCESS_CODE = 200


@dataclass(frozen=True)
class UploadResponse:
    """Result of an image upload call."""

    status_code: int
    image_uri: str | None = None
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return (
            self.status_code == UPLOAD_SUCCESS_CODE
            and self.body.get("stat", "ok") == "ok"
        )


@dataclass(frozen=True)
class ItemFailure:
    """An album or photo that failed during one execution of a job."""

    key: str
    label: str
    error_message: str


class ImportStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class ImportResult:
    """Aggregate outcome of one execution of an import job.

    ``OK`` means nothing escaped the per-item isolation; individual items may
    still have failed and are listed in ``failures``.
    """

    status: ImportStatus
    exception: BaseException | None = None
    failures: tuple[ItemFailure, ...] = ()
    albums_imported: int = 0
    photos_imported: int = 0

    def __post_init__(self) -> None:
        """Validate import result."""
        if self.status is ImportStatus.ERROR and self.exception is None:
            raise ValueError("Failed import must carry an exception")
        if self.status is ImportStatus.OK and self.exception is not None:
            raise ValueError("Successful import cannot carry an exception")

    @property
    def ok(self) -> bool:
        return self.status is ImportStatus.OK

    @classmethod
    def error(
        cls,
        exception: BaseException,
        failures: tuple[ItemFailure, ...] = (),
        albums_imported: int = 0,
        photos_imported: int = 0,
    ) -> "ImportResult":
        """Build the result of a job aborted by exception.

        The counters report what had been imported before the abort.
        """
        return cls(
            status=ImportStatus.ERROR,
            exception=exception,
            failures=failures,
            albums_imported=albums_imported,
            photos_imported=photos_imported,
        )
