# app/x402/settlement_store.py
"""
Settlement records: transaction fingerprint -> network transaction hash.

A record is written once, the first time a byte-identical transaction is
submitted successfully, and is never overwritten or removed afterwards.
The facilitator holds ``lock(fingerprint)`` across lookup, submission and
recording so that concurrent settles of the same bytes submit only once,
while settles of different transactions never wait on each other.

Two implementations are provided:
- InMemorySettlementStore: process-lifetime dict (default)
- JsonlSettlementStore: same, persisted as JSON lines (SETTLEMENT_STORE_PATH)
"""
import json
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import ContextManager, Dict, Iterator, Optional, Protocol

from app.core.config import settings

logger = logging.getLogger(__name__)


class SettlementStore(Protocol):
    """Append-only fingerprint -> transaction hash map."""

    def get(self, fingerprint: str) -> Optional[str]:
        ...

    def insert_if_absent(self, fingerprint: str, tx_hash: str) -> str:
        ...

    def lock(self, fingerprint: str) -> ContextManager[None]:
        ...


class InMemorySettlementStore:
    """
    Thread-safe in-memory settlement store.

    Entries live for the lifetime of the process; there is no eviction.
    """

    def __init__(self):
        self._records: Dict[str, str] = {}
        self._records_lock = threading.Lock()
        self._fingerprint_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._fingerprint_locks_guard = threading.Lock()

    def get(self, fingerprint: str) -> Optional[str]:
        """Return the recorded transaction hash, or None if never submitted."""
        with self._records_lock:
            return self._records.get(fingerprint)

    def insert_if_absent(self, fingerprint: str, tx_hash: str) -> str:
        """
        Record a transaction hash unless the fingerprint already has one.

        Args:
            fingerprint: Digest of the raw transaction bytes
            tx_hash: Hash returned by the ledger on submission

        Returns:
            The hash stored for the fingerprint (the earlier one if it existed)
        """
        with self._records_lock:
            existing = self._records.get(fingerprint)
            if existing is not None:
                if existing != tx_hash:
                    logger.warning(
                        f"Ignoring hash {tx_hash} for {fingerprint[:16]}..., already recorded as {existing}"
                    )
                return existing
            self._records[fingerprint] = tx_hash
        self._on_insert(fingerprint, tx_hash)
        return tx_hash

    @contextmanager
    def lock(self, fingerprint: str) -> Iterator[None]:
        """Exclusive section for a single fingerprint."""
        with self._fingerprint_locks_guard:
            fingerprint_lock = self._fingerprint_locks[fingerprint]
        with fingerprint_lock:
            yield

    def __len__(self) -> int:
        with self._records_lock:
            return len(self._records)

    def _on_insert(self, fingerprint: str, tx_hash: str) -> None:
        logger.debug(f"Recorded settlement {fingerprint[:16]}... -> {tx_hash}")


class JsonlSettlementStore(InMemorySettlementStore):
    """
    Settlement store persisted as JSON lines.

    Existing records are loaded at construction; each new record is appended
    as one line. When a file holds several lines for one fingerprint the
    first one wins, matching the in-memory first-writer-wins rule.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._file_lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return

        loaded = 0
        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    fingerprint = record["fingerprint"]
                    tx_hash = record["tx_hash"]
                except (json.JSONDecodeError, KeyError, TypeError) as e:
                    logger.warning(f"Skipping malformed settlement record in {self.path}: {e}")
                    continue
                if fingerprint not in self._records:
                    self._records[fingerprint] = tx_hash
                    loaded += 1

        logger.info(f"Loaded {loaded} settlement records from {self.path}")

    def _on_insert(self, fingerprint: str, tx_hash: str) -> None:
        record = {
            "fingerprint": fingerprint,
            "tx_hash": tx_hash,
            "recorded_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._file_lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(json.dumps(record) + "\n")
        super()._on_insert(fingerprint, tx_hash)


# Process-wide default store, injected into the facilitator by the API layer
_settlement_store: Optional[InMemorySettlementStore] = None
_settlement_store_lock = threading.Lock()


def create_settlement_store(path: Optional[str] = None) -> InMemorySettlementStore:
    """Build a store: JSON-lines backed when a path is given, in-memory otherwise."""
    if path:
        return JsonlSettlementStore(Path(path))
    return InMemorySettlementStore()


def get_settlement_store() -> InMemorySettlementStore:
    """
    Get the default settlement store instance.

    Returns:
        The singleton store configured from SETTLEMENT_STORE_PATH
    """
    global _settlement_store

    if _settlement_store is None:
        with _settlement_store_lock:
            if _settlement_store is None:
                _settlement_store = create_settlement_store(settings.SETTLEMENT_STORE_PATH)

    return _settlement_store


def reset_settlement_store() -> None:
    """Drop the default store (useful for testing)."""
    global _settlement_store
    with _settlement_store_lock:
        _settlement_store = None
