"""Job-scoped key/value store and temporary blob store.

Everything an import job needs to resume after a crash lives here: album
progress records, idempotency ledger entries and staged photo bytes. Records
are plain JSON-compatible dicts.
"""

import copy
import io
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, BinaryIO, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class JobStoreError(OSError):
    """Base exception for job store failures."""

    pass


class RecordExistsError(JobStoreError):
    """Raised when creating a record under a key that is already taken."""

    pass


class RecordNotFoundError(JobStoreError):
    """Raised when updating or streaming something the job never stored."""

    pass


class JobStore(Protocol):
    """Storage interface scoped by job id."""

    def create(self, job_id: str | UUID, key: str, record: Record) -> None:
        """Store a new record, failing if the key already exists."""

    def read(self, job_id: str | UUID, key: str) -> Record | None:
        """Return the record stored under key, or None."""

    def update(self, job_id: str | UUID, key: str, record: Record) -> None:
        """Replace an existing record."""

    def put_blob(self, job_id: str | UUID, reference: str, data: bytes) -> None:
        """Stage bytes in the job's temporary blob store."""

    def get_stream(self, job_id: str | UUID, reference: str) -> BinaryIO:
        """Open a staged blob for reading."""

    def has_blob(self, job_id: str | UUID, reference: str) -> bool:
        """Return whether a blob is staged under reference."""

    def delete_job(self, job_id: str | UUID) -> None:
        """Discard all records and blobs of a job."""


class InMemoryJobStore(JobStore):
    """Job store kept in process memory.

    Records are copied on the way in and out so callers cannot mutate stored
    state without going through ``update``.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Record]] = {}
        self._blobs: dict[str, dict[str, bytes]] = {}

    def create(self, job_id: str | UUID, key: str, record: Record) -> None:
        records = self._records.setdefault(str(job_id), {})
        if key in records:
            raise RecordExistsError(f"Record already exists for job {job_id}: {key}")
        records[key] = copy.deepcopy(record)

    def read(self, job_id: str | UUID, key: str) -> Record | None:
        record = self._records.get(str(job_id), {}).get(key)
        return copy.deepcopy(record) if record is not None else None

    def update(self, job_id: str | UUID, key: str, record: Record) -> None:
        records = self._records.get(str(job_id), {})
        if key not in records:
            raise RecordNotFoundError(f"No record for job {job_id}: {key}")
        records[key] = copy.deepcopy(record)

    def put_blob(self, job_id: str | UUID, reference: str, data: bytes) -> None:
        self._blobs.setdefault(str(job_id), {})[reference] = bytes(data)

    def get_stream(self, job_id: str | UUID, reference: str) -> BinaryIO:
        try:
            return io.BytesIO(self._blobs[str(job_id)][reference])
        except KeyError:
            raise RecordNotFoundError(
                f"No blob for job {job_id}: {reference}"
            ) from None

    def has_blob(self, job_id: str | UUID, reference: str) -> bool:
        return reference in self._blobs.get(str(job_id), {})

    def delete_job(self, job_id: str | UUID) -> None:
        self._records.pop(str(job_id), None)
        self._blobs.pop(str(job_id), None)


class FileJobStore(JobStore):
    """Job store persisted under a root directory.

    Layout::

        root/
            <job_id>/
                journal.jsonl
                blobs/<reference>

    Every ``create`` or ``update`` appends one ``{"key", "record"}`` line to
    the journal, so a write costs the size of one record however large the
    job grows. Replaying the journal on load keeps the last record per key.
    A journal holding superseded lines is compacted atomically on load. A
    torn last line left by a crash mid-append is dropped.
    """

    JOURNAL_FILE = "journal.jsonl"
    BLOB_DIR = "blobs"

    def __init__(self, root: Path) -> None:
        """Initialize the store.

        Args:
            root: Directory holding one subdirectory per job
        """
        self.root = Path(root)
        self._documents: dict[str, dict[str, Record]] = {}

    def job_dir(self, job_id: str | UUID) -> Path:
        return self.root / str(job_id)

    def journal_path(self, job_id: str | UUID) -> Path:
        return self.job_dir(job_id) / self.JOURNAL_FILE

    def create(self, job_id: str | UUID, key: str, record: Record) -> None:
        document = self._load(job_id)
        if key in document:
            raise RecordExistsError(f"Record already exists for job {job_id}: {key}")
        self._append(job_id, key, record)
        document[key] = copy.deepcopy(record)

    def read(self, job_id: str | UUID, key: str) -> Record | None:
        record = self._load(job_id).get(key)
        return copy.deepcopy(record) if record is not None else None

    def update(self, job_id: str | UUID, key: str, record: Record) -> None:
        document = self._load(job_id)
        if key not in document:
            raise RecordNotFoundError(f"No record for job {job_id}: {key}")
        self._append(job_id, key, record)
        document[key] = copy.deepcopy(record)

    def put_blob(self, job_id: str | UUID, reference: str, data: bytes) -> None:
        path = self._blob_path(job_id, reference)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def get_stream(self, job_id: str | UUID, reference: str) -> BinaryIO:
        path = self._blob_path(job_id, reference)
        try:
            return path.open("rb")
        except FileNotFoundError:
            raise RecordNotFoundError(
                f"No blob for job {job_id}: {reference}"
            ) from None

    def has_blob(self, job_id: str | UUID, reference: str) -> bool:
        return self._blob_path(job_id, reference).is_file()

    def delete_job(self, job_id: str | UUID) -> None:
        self._documents.pop(str(job_id), None)
        job_dir = self.job_dir(job_id)
        if job_dir.exists():
            shutil.rmtree(job_dir)
            logger.info(f"Deleted state for job {job_id}")

    def _blob_path(self, job_id: str | UUID, reference: str) -> Path:
        blob_root = (self.job_dir(job_id) / self.BLOB_DIR).resolve()
        path = (blob_root / reference).resolve()
        if not path.is_relative_to(blob_root):
            raise JobStoreError(f"Blob reference escapes the job store: {reference}")
        return path

    def _append(self, job_id: str | UUID, key: str, record: Record) -> None:
        line = json.dumps({"key": key, "record": record}, sort_keys=True)
        job_dir = self.job_dir(job_id)
        job_dir.mkdir(parents=True, exist_ok=True)
        with self.journal_path(job_id).open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def _load(self, job_id: str | UUID) -> dict[str, Record]:
        key = str(job_id)
        if key in self._documents:
            return self._documents[key]

        path = self.journal_path(job_id)
        document: dict[str, Record] = {}
        if path.exists():
            document, stale = self._replay(path)
            if stale:
                self._compact(job_id, document)
            logger.debug(f"Loaded {len(document)} record(s) for job {job_id}")

        self._documents[key] = document
        return document

    def _replay(self, path: Path) -> tuple[dict[str, Record], bool]:
        """Rebuild the job's records from its journal.

        Returns:
            The records, and whether the journal holds lines that compaction
            would drop
        """
        document: dict[str, Record] = {}
        lines = path.read_text(encoding="utf-8").split("\n")
        entries = 0
        for number, line in enumerate(lines, start=1):
            if not line:
                continue
            try:
                entry = json.loads(line)
                document[entry["key"]] = entry["record"]
            except (ValueError, KeyError, TypeError) as e:
                # Only the unterminated last line can be a torn append
                if number == len(lines):
                    logger.warning(f"Dropping incomplete last line of {path}")
                    continue
                raise JobStoreError(f"Corrupt job journal {path} at line {number}: {e}") from e
            entries += 1
        # An unterminated last line must not have the next append glued onto it
        return document, bool(lines[-1]) or entries > len(document)

    def _compact(self, job_id: str | UUID, document: dict[str, Record]) -> None:
        job_dir = self.job_dir(job_id)
        fd, tmp_name = tempfile.mkstemp(dir=job_dir, prefix=".journal-", suffix=".jsonl")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                for key, record in document.items():
                    f.write(json.dumps({"key": key, "record": record}, sort_keys=True) + "\n")
            os.replace(tmp_name, self.journal_path(job_id))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Compacted journal of job {job_id} to {len(document)} record(s)")
