"""Tests for the job-scoped stores."""

from pathlib import Path

import pytest

from smugmug_importer.job_store import (
    FileJobStore,
    InMemoryJobStore,
    JobStoreError,
    RecordExistsError,
    RecordNotFoundError,
)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryJobStore()
    return FileJobStore(tmp_path / "state")


class TestJobStore:
    """Behaviour shared by every job store."""

    def test_create_and_read(self, store) -> None:
        store.create("job-1", "/api/v2/album/abc", {"photo_count": 0})

        assert store.read("job-1", "/api/v2/album/abc") == {"photo_count": 0}

    def test_read_missing(self, store) -> None:
        assert store.read("job-1", "nothing") is None

    def test_create_twice_fails(self, store) -> None:
        store.create("job-1", "key", {"n": 1})

        with pytest.raises(RecordExistsError):
            store.create("job-1", "key", {"n": 2})
        assert store.read("job-1", "key") == {"n": 1}

    def test_update(self, store) -> None:
        store.create("job-1", "key", {"n": 1})
        store.update("job-1", "key", {"n": 2})

        assert store.read("job-1", "key") == {"n": 2}

    def test_update_missing_fails(self, store) -> None:
        with pytest.raises(RecordNotFoundError):
            store.update("job-1", "key", {"n": 2})

    def test_jobs_are_isolated(self, store) -> None:
        store.create("job-1", "key", {"n": 1})

        assert store.read("job-2", "key") is None

    def test_reads_are_copies(self, store) -> None:
        store.create("job-1", "key", {"n": 1})

        record = store.read("job-1", "key")
        record["n"] = 99

        assert store.read("job-1", "key") == {"n": 1}

    def test_blobs(self, store) -> None:
        store.put_blob("job-1", "a1/p1.jpg", b"image bytes")

        assert store.has_blob("job-1", "a1/p1.jpg")
        with store.get_stream("job-1", "a1/p1.jpg") as stream:
            assert stream.read() == b"image bytes"

    def test_missing_blob(self, store) -> None:
        assert not store.has_blob("job-1", "a1/p1.jpg")
        with pytest.raises(RecordNotFoundError):
            store.get_stream("job-1", "a1/p1.jpg")

    def test_delete_job(self, store) -> None:
        store.create("job-1", "key", {"n": 1})
        store.put_blob("job-1", "a1/p1.jpg", b"image bytes")
        store.create("job-2", "key", {"n": 2})

        store.delete_job("job-1")

        assert store.read("job-1", "key") is None
        assert not store.has_blob("job-1", "a1/p1.jpg")
        assert store.read("job-2", "key") == {"n": 2}


class TestFileJobStore:
    """Durability of the file-backed store."""

    def test_survives_restart(self, tmp_path: Path) -> None:
        FileJobStore(tmp_path).create("job-1", "key", {"n": 1})

        assert FileJobStore(tmp_path).read("job-1", "key") == {"n": 1}

    def test_layout(self, tmp_path: Path) -> None:
        store = FileJobStore(tmp_path)
        store.create("job-1", "key", {"n": 1})
        store.put_blob("job-1", "a1/p1.jpg", b"x")

        assert (tmp_path / "job-1" / "journal.jsonl").is_file()
        assert (tmp_path / "job-1" / "blobs" / "a1" / "p1.jpg").read_bytes() == b"x"

    def test_write_cost_does_not_grow_with_job(self, tmp_path: Path) -> None:
        """Each write appends one record, however many the job already holds."""
        store = FileJobStore(tmp_path)
        journal = tmp_path / "job-1" / "journal.jsonl"
        store.create("job-1", "counter", {"n": 0})
        for i in range(500):
            store.create("job-1", f"key-{i}", {"n": i})

        before = journal.stat().st_size
        store.update("job-1", "counter", {"n": 1})
        grown = journal.stat().st_size - before

        assert grown == len('{"key": "counter", "record": {"n": 1}}\n')

    def test_journal_is_compacted_on_load(self, tmp_path: Path) -> None:
        store = FileJobStore(tmp_path)
        store.create("job-1", "key", {"n": 0})
        for n in range(1, 10):
            store.update("job-1", "key", {"n": n})
        journal = tmp_path / "job-1" / "journal.jsonl"
        assert len(journal.read_text().splitlines()) == 10

        reopened = FileJobStore(tmp_path)

        assert reopened.read("job-1", "key") == {"n": 9}
        assert len(journal.read_text().splitlines()) == 1
        assert not list((tmp_path / "job-1").glob(".journal-*"))

    def test_torn_last_line_is_dropped(self, tmp_path: Path) -> None:
        store = FileJobStore(tmp_path)
        store.create("job-1", "key", {"n": 1})
        journal = tmp_path / "job-1" / "journal.jsonl"
        with journal.open("a") as f:
            f.write('{"key": "other", "rec')

        reopened = FileJobStore(tmp_path)
        reopened.create("job-1", "other", {"n": 2})

        assert reopened.read("job-1", "other") == {"n": 2}
        assert FileJobStore(tmp_path).read("job-1", "key") == {"n": 1}
        assert FileJobStore(tmp_path).read("job-1", "other") == {"n": 2}

    def test_corrupt_journal(self, tmp_path: Path) -> None:
        (tmp_path / "job-1").mkdir()
        (tmp_path / "job-1" / "journal.jsonl").write_text('{not json\n{"key": "k", "record": {}}\n')

        with pytest.raises(JobStoreError, match="Corrupt job journal"):
            FileJobStore(tmp_path).read("job-1", "key")

    def test_blob_reference_cannot_escape(self, tmp_path: Path) -> None:
        store = FileJobStore(tmp_path / "state")

        with pytest.raises(JobStoreError, match="escapes"):
            store.put_blob("job-1", "../../outside.jpg", b"x")

    def test_job_store_error_is_os_error(self) -> None:
        assert issubclass(JobStoreError, OSError)
