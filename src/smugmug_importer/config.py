"""Importer configuration and SmugMug platform limits."""

from dataclasses import dataclass
from pathlib import Path

# SmugMug refuses uploads into an album that already holds this many images
SMUGMUG_ALBUM_MAX_SIZE = 5000

DEFAULT_STATE_DIR = Path(".smugmug-importer")


@dataclass(frozen=True)
class ImporterConfig:
    """Settings shared by the orchestrator and the overflow tracker."""

    max_album_size: int = SMUGMUG_ALBUM_MAX_SIZE
    max_concurrent_uploads: int = 10
    state_dir: Path = DEFAULT_STATE_DIR

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_album_size < 1:
            raise ValueError("max_album_size must be at least 1")
        if self.max_concurrent_uploads < 1:
            raise ValueError("max_concurrent_uploads must be at least 1")
