"""
Durable Block Storage

Content-addressed key-value persistence: block hash -> serialized block.
Entries are written once and never updated or deleted.

Two backends share the same contract:
- MemoryBlockStore: dictionary-backed, for tests and throwaway nodes
- SqliteBlockStore: single-table SQLite database on disk

Any I/O failure surfaces as StoreError so the operation that triggered it can
fail loudly instead of silently losing a block.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple, Union

from .blocks import Block
from .errors import DecodeError, StoreError

logger = logging.getLogger(__name__)


def serialize_block(block: Block) -> bytes:
    return json.dumps(block.to_dict(), separators=(',', ':')).encode('utf-8')


def deserialize_block(raw: bytes) -> Block:
    """
    Raises:
        DecodeError: if the stored bytes are not a block record
    """
    try:
        record = json.loads(raw.decode('utf-8'))
    except (ValueError, RecursionError) as e:
        raise DecodeError(f"stored block is not valid JSON: {e}") from e
    return Block.from_dict(record)


class BlockStore(ABC):
    """Contract every storage backend implements."""

    @abstractmethod
    def put(self, block_hash: str, serialized_block: bytes) -> None:
        """Store a block; writing an existing key leaves the first value in place."""

    @abstractmethod
    def get(self, block_hash: str) -> Optional[bytes]:
        """Return the serialized block or None."""

    @abstractmethod
    def flush(self) -> None:
        """Make every previous put durable."""

    @abstractmethod
    def items(self) -> Iterator[Tuple[str, bytes]]:
        """Iterate over all stored (hash, serialized block) pairs."""

    def close(self) -> None:
        pass

    def __contains__(self, block_hash: str) -> bool:
        return self.get(block_hash) is not None

    # Block-level helpers

    def put_block(self, block: Block) -> None:
        self.put(block.hash, serialize_block(block))
        self.flush()

    def get_block(self, block_hash: str) -> Optional[Block]:
        raw = self.get(block_hash)
        return deserialize_block(raw) if raw is not None else None


class MemoryBlockStore(BlockStore):
    """In-memory store; nothing survives the process."""

    def __init__(self):
        self._blocks: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, block_hash: str, serialized_block: bytes) -> None:
        with self._lock:
            self._blocks.setdefault(block_hash, bytes(serialized_block))

    def get(self, block_hash: str) -> Optional[bytes]:
        with self._lock:
            return self._blocks.get(block_hash)

    def flush(self) -> None:
        pass

    def items(self) -> Iterator[Tuple[str, bytes]]:
        with self._lock:
            snapshot = list(self._blocks.items())
        return iter(snapshot)

    def __len__(self) -> int:
        return len(self._blocks)


class SqliteBlockStore(BlockStore):
    """
    SQLite-backed store.

    One table keyed by hash. The connection is shared between threads and
    guarded by a lock; every put is committed by flush().
    """

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        self._lock = threading.Lock()
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS blocks (hash TEXT PRIMARY KEY, body BLOB NOT NULL)"
            )
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Could not open block store at {self.path}: {e}") from e
        logger.debug("Opened block store at %s", self.path)

    def put(self, block_hash: str, serialized_block: bytes) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT OR IGNORE INTO blocks (hash, body) VALUES (?, ?)",
                    (block_hash, sqlite3.Binary(serialized_block)),
                )
            except sqlite3.Error as e:
                raise StoreError(f"Failed to write block {block_hash[:16]}...: {e}") from e

    def get(self, block_hash: str) -> Optional[bytes]:
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT body FROM blocks WHERE hash = ?", (block_hash,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to read block {block_hash[:16]}...: {e}") from e
        return bytes(row[0]) if row else None

    def flush(self) -> None:
        with self._lock:
            try:
                self._conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to commit block store: {e}") from e

    def items(self) -> Iterator[Tuple[str, bytes]]:
        with self._lock:
            try:
                rows = self._conn.execute("SELECT hash, body FROM blocks").fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to scan block store: {e}") from e
        return ((block_hash, bytes(body)) for block_hash, body in rows)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __len__(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM blocks").fetchone()[0]
