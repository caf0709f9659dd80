"""Job-scoped idempotency ledger.

Each side-effecting step of an import (creating an album, uploading a photo)
runs under a stable key. The first successful result for a key is stored in
the job store and returned on every later attempt without running the step
again. A failure is recorded but never poisons the key: the next attempt,
in this execution or a retried one, runs the step again.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

from smugmug_importer.job_store import JobStore
from smugmug_importer.models import ItemFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_PREFIX = "idempotency:"


class KeyState(str, Enum):
    NEVER_ATTEMPTED = "never_attempted"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


@dataclass
class LedgerEntry:
    key: str
    label: str
    state: KeyState = KeyState.NEVER_ATTEMPTED
    result: Any = None
    error_message: str | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "state": self.state.value,
            "result": self.result,
            "error_message": self.error_message,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerEntry":
        return cls(
            key=data["key"],
            label=data.get("label", ""),
            state=KeyState(data["state"]),
            result=data.get("result"),
            error_message=data.get("error_message"),
            attempts=data.get("attempts", 0),
        )


class IdempotencyLedger:
    """Runs keyed operations at most once successfully per job.

    Results are persisted through the job store, so they must be
    JSON-compatible values.
    """

    def __init__(self, job_store: JobStore, job_id: str | UUID) -> None:
        """Initialize the ledger.

        Args:
            job_store: Store holding the job's durable state
            job_id: Job the ledger is scoped to
        """
        self.job_store = job_store
        self.job_id = job_id
        self._locks: dict[str, asyncio.Lock] = {}
        self._failures: dict[str, ItemFailure] = {}

    @property
    def failures(self) -> tuple[ItemFailure, ...]:
        """Keys that failed during this execution and have not since succeeded."""
        return tuple(self._failures.values())

    async def execute_once_and_swallow_failures(
        self, key: str, label: str, operation: Callable[[], Awaitable[T]]
    ) -> T | None:
        """Run operation unless key already succeeded.

        Args:
            key: Stable identifier of the side effect
            label: Human readable name used in logs and failure reports
            operation: Coroutine factory performing the side effect

        Returns:
            The cached or freshly produced result, or None if the operation failed
        """
        async with self._lock_for(key):
            stored = self._read(key)
            if stored is not None and stored.state is KeyState.SUCCEEDED:
                logger.debug(f"Using cached result for '{label}' ({key})")
                return stored.result

            is_new = stored is None
            entry = stored or LedgerEntry(key=key, label=label)
            entry.label = label
            entry.attempts += 1
            try:
                result = await operation()
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.warning(
                    f"Failed to import '{label}' ({key}), attempt {entry.attempts}: {message}"
                )
                entry.state = KeyState.FAILED
                entry.error_message = message
                self._write(entry, is_new)
                self._failures[key] = ItemFailure(key=key, label=label, error_message=message)
                return None

            entry.state = KeyState.SUCCEEDED
            entry.result = result
            entry.error_message = None
            self._write(entry, is_new)
            self._failures.pop(key, None)
            return result

    def get_cached_result(self, key: str) -> Any:
        """Return the stored successful result for key, or None."""
        entry = self._read(key)
        if entry is None or entry.state is not KeyState.SUCCEEDED:
            return None
        return entry.result

    def state(self, key: str) -> KeyState:
        """Return the stored state of key, NEVER_ATTEMPTED if it was never run."""
        entry = self._read(key)
        return entry.state if entry else KeyState.NEVER_ATTEMPTED

    def _lock_for(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    def _read(self, key: str) -> LedgerEntry | None:
        data = self.job_store.read(self.job_id, KEY_PREFIX + key)
        return LedgerEntry.from_dict(data) if data is not None else None

    def _write(self, entry: LedgerEntry, is_new: bool) -> None:
        if is_new:
            self.job_store.create(self.job_id, KEY_PREFIX + entry.key, entry.to_dict())
        else:
            self.job_store.update(self.job_id, KEY_PREFIX + entry.key, entry.to_dict())
