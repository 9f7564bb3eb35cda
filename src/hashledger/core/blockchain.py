"""
Blockchain Core Implementation

The Blockchain class owns the hash-linked history of one node:
- the durable block store and the fixed genesis block
- an index of every connected block, main branch and side branches alike
- the head, i.e. the tip of the branch chosen by the fork choice rule
- a bounded pool of orphan blocks whose predecessor has not arrived yet

Two ways to add a block:
- append(): strict local path, the block must extend the current head
- accept_block(): network path, applies the full acceptance policy

Fork choice: the head is the connected block with the greatest index; among
blocks of equal index the lexicographically smaller hash wins. Every node
applying the rule to the same set of blocks picks the same head.
"""

import logging
import threading
import time
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set

from .blocks import GENESIS_HASH, Block, BlockValidator, create_genesis_block
from .errors import DecodeError, DuplicateError, IntegrityError, StoreError
from .store import BlockStore, MemoryBlockStore, deserialize_block

logger = logging.getLogger(__name__)


class AcceptResult(Enum):
    """What accepting a block did to the chain."""
    EXTENDED = "extended"          # head moved forward on the same branch
    REORGANIZED = "reorganized"    # head moved to a different branch
    SIDE_BRANCH = "side_branch"    # stored, head unchanged
    ORPHANED = "orphaned"          # buffered until its predecessor arrives


@dataclass
class BlockchainStats:
    """Snapshot of chain state."""
    height: int
    head: str
    known_blocks: int
    orphan_blocks: int
    reorganizations: int
    orphans_adopted: int
    orphans_evicted: int


def is_better_tip(candidate: Block, current: Block) -> bool:
    """Fork choice: longer wins, equal length goes to the smaller hash."""
    if candidate.index != current.index:
        return candidate.index > current.index
    return candidate.hash < current.hash


class Blockchain:
    """
    Append-only, content-addressed chain with a single head.

    All state transitions happen under one lock, held while checking and
    mutating in-memory state. The one I/O done under the lock is the local
    store write (put plus commit) in _connect: a block must be durable before
    it becomes reachable, and a failed write must leave the head untouched.
    Network publishing never happens here.
    """

    def __init__(self, store: Optional[BlockStore] = None,
                 max_orphans: int = 256, orphan_ttl: float = 600.0):
        """
        Args:
            store: Durable block store (defaults to an in-memory store)
            max_orphans: Maximum number of buffered orphan blocks
            orphan_ttl: Seconds an orphan is retained before it is dropped
        """
        self.store = store if store is not None else MemoryBlockStore()
        self.max_orphans = max_orphans
        self.orphan_ttl = orphan_ttl

        self._lock = threading.RLock()
        self._blocks: Dict[str, Block] = {}
        self._main_chain: List[str] = []  # main_chain[i] is the hash of main-branch block i
        self._head: str = GENESIS_HASH

        self._orphans: "OrderedDict[str, Block]" = OrderedDict()
        self._orphan_received: Dict[str, float] = {}
        self._orphans_by_parent: Dict[str, Set[str]] = defaultdict(set)

        self._stats = {
            'reorganizations': 0,
            'orphans_adopted': 0,
            'orphans_evicted': 0,
        }

        self._bootstrap()

    # Read access

    @property
    def head(self) -> str:
        with self._lock:
            return self._head

    @property
    def head_block(self) -> Block:
        with self._lock:
            return self._blocks[self._head]

    @property
    def height(self) -> int:
        return self.head_block.index

    @property
    def genesis_block(self) -> Block:
        return self._blocks[GENESIS_HASH]

    def get_block_by_hash(self, block_hash: str) -> Optional[Block]:
        """Any connected block, on the main branch or a side branch."""
        with self._lock:
            return self._blocks.get(block_hash)

    def get_block_by_index(self, index: int) -> Optional[Block]:
        """Main-branch block at the given position."""
        with self._lock:
            if 0 <= index < len(self._main_chain):
                return self._blocks[self._main_chain[index]]
            return None

    def get_chain_view(self) -> List[Block]:
        """Main branch from genesis to head."""
        with self._lock:
            return [self._blocks[block_hash] for block_hash in self._main_chain]

    def is_on_main_chain(self, block_hash: str) -> bool:
        with self._lock:
            block = self._blocks.get(block_hash)
            return (block is not None and block.index < len(self._main_chain)
                    and self._main_chain[block.index] == block_hash)

    def orphan_count(self) -> int:
        with self._lock:
            return len(self._orphans)

    def __contains__(self, block_hash: str) -> bool:
        with self._lock:
            return block_hash in self._blocks

    def __len__(self) -> int:
        with self._lock:
            return len(self._main_chain)

    # Local sealing path

    def append(self, block: Block) -> None:
        """
        Append a block that must extend the current head.

        Raises:
            DuplicateError: if the block is already stored
            IntegrityError: if it does not extend the head or its hash is wrong
            StoreError: if it cannot be persisted; the head is left unchanged
        """
        with self._lock:
            if block.hash in self._blocks:
                raise DuplicateError(f"{block} already stored")
            if block.previous_hash != self._head:
                raise IntegrityError(
                    f"{block} previous_hash {block.previous_hash[:16]}... is not the head {self._head[:16]}..."
                )
            BlockValidator.validate_block(block, self._blocks[self._head])

            self._connect(block)
            self._drop_orphan(block.hash)
            self._set_head(block)
            self._adopt_orphans(block.hash)

        logger.info("Appended block #%d %s", block.index, block.hash[:16])

    def seal_block(self, data: str, validator: str, timestamp: Optional[int] = None) -> Block:
        """
        Build a block on top of the head and append it in one step.

        Reading the head and appending happen under the same lock, so two
        seals can never produce competing children of the same head.
        """
        with self._lock:
            parent = self._blocks[self._head]
            block = Block.seal(
                index=parent.index + 1,
                previous_hash=parent.hash,
                data=data,
                validator=validator,
                timestamp=timestamp,
            )
            self.append(block)
        return block

    # Network acceptance path

    def accept_block(self, block: Block) -> AcceptResult:
        """
        Apply the acceptance policy to a block received from a peer.

        Raises:
            DuplicateError: if the block is already stored, or buffered while its
                parent is still unknown
            IntegrityError: if the hash, linkage or embedded transactions are invalid
            StoreError: if an accepted block cannot be persisted
        """
        with self._lock:
            if block.hash in self._orphans and block.previous_hash in self._blocks:
                # Parent connected but adoption failed to persist it; retry now.
                self._drop_orphan(block.hash)
            elif block.hash in self._blocks or block.hash in self._orphans:
                raise DuplicateError(f"{block} already seen")

            BlockValidator.validate_hash(block)
            BlockValidator.validate_payload(block)

            parent = self._blocks.get(block.previous_hash)
            if parent is None:
                if block.index == 0:
                    raise IntegrityError(f"{block} is a foreign genesis block")
                self._buffer_orphan(block)
                return AcceptResult.ORPHANED

            BlockValidator.validate_parent_link(block, parent)

            previous_head = self._blocks[self._head]
            self._connect(block)
            self._choose_head(block)
            self._adopt_orphans(block.hash)

            return self._classify_head_change(previous_head)

    # Verification

    def validate_chain(self) -> bool:
        """Re-verify every hash and link on the main branch."""
        with self._lock:
            chain = [self._blocks[block_hash] for block_hash in self._main_chain]

        if not chain or chain[0].hash != GENESIS_HASH:
            return False

        for i, block in enumerate(chain):
            parent = chain[i - 1] if i > 0 else None
            if not BlockValidator.is_valid(block, parent):
                return False
        return True

    def get_blockchain_stats(self) -> BlockchainStats:
        with self._lock:
            return BlockchainStats(
                height=self._blocks[self._head].index,
                head=self._head,
                known_blocks=len(self._blocks),
                orphan_blocks=len(self._orphans),
                reorganizations=self._stats['reorganizations'],
                orphans_adopted=self._stats['orphans_adopted'],
                orphans_evicted=self._stats['orphans_evicted'],
            )

    # Private methods

    def _bootstrap(self) -> None:
        """Persist or load genesis, then re-index whatever the store already holds."""
        genesis = create_genesis_block()
        stored = self.store.get(GENESIS_HASH)
        if stored is None:
            self.store.put_block(genesis)
            logger.info("Genesis block created: %s", GENESIS_HASH[:16])
        else:
            try:
                loaded = deserialize_block(stored)
            except DecodeError as e:
                raise StoreError(f"Stored genesis block is corrupt: {e}") from e
            if loaded != genesis:
                raise StoreError("Stored genesis block does not match the well-known genesis")
            logger.info("Genesis block loaded: %s", GENESIS_HASH[:16])

        self._blocks[GENESIS_HASH] = genesis
        self._main_chain = [GENESIS_HASH]
        self._head = GENESIS_HASH
        self._reindex()

    def _reindex(self) -> None:
        """Reconnect stored blocks breadth-first from genesis and pick the best tip."""
        children: Dict[str, List[Block]] = defaultdict(list)
        for block_hash, raw in self.store.items():
            if block_hash == GENESIS_HASH:
                continue
            try:
                block = deserialize_block(raw)
            except DecodeError as e:
                logger.warning("Skipping unreadable stored block %s: %s", block_hash[:16], e)
                continue
            if block.hash != block_hash:
                logger.warning("Skipping stored block filed under wrong key %s", block_hash[:16])
                continue
            children[block.previous_hash].append(block)

        best = self._blocks[GENESIS_HASH]
        queue = [GENESIS_HASH]
        while queue:
            parent = self._blocks[queue.pop(0)]
            for block in children.pop(parent.hash, []):
                if not BlockValidator.is_valid(block, parent):
                    logger.warning("Skipping stored block %s: failed integrity checks", block.hash[:16])
                    continue
                self._blocks[block.hash] = block
                queue.append(block.hash)
                if is_better_tip(block, best):
                    best = block

        unreachable = sum(len(blocks) for blocks in children.values())
        if unreachable:
            logger.warning("%d stored blocks do not connect to genesis", unreachable)

        if best.hash != GENESIS_HASH:
            self._set_head(best)
            logger.info("Resumed chain at block #%d %s", best.index, best.hash[:16])

    def _connect(self, block: Block) -> None:
        """Persist first, then make the block reachable."""
        self.store.put_block(block)
        self._blocks[block.hash] = block

    def _choose_head(self, candidate: Block) -> None:
        if is_better_tip(candidate, self._blocks[self._head]):
            self._set_head(candidate)

    def _set_head(self, tip: Block) -> None:
        """Point head at tip and rewrite the main branch back to the fork point."""
        segment = []
        block = tip
        while not (block.index < len(self._main_chain) and self._main_chain[block.index] == block.hash):
            segment.append(block.hash)
            block = self._blocks[block.previous_hash]

        fork_index = block.index
        if fork_index + 1 < len(self._main_chain):
            self._stats['reorganizations'] += 1
            logger.info("Reorganization: switching from %s to %s at fork point #%d",
                        self._head[:16], tip.hash[:16], fork_index)

        del self._main_chain[fork_index + 1:]
        self._main_chain.extend(reversed(segment))
        self._head = tip.hash

    def _classify_head_change(self, previous_head: Block) -> AcceptResult:
        if self._head == previous_head.hash:
            return AcceptResult.SIDE_BRANCH
        if self.is_on_main_chain(previous_head.hash):
            return AcceptResult.EXTENDED
        return AcceptResult.REORGANIZED

    def _buffer_orphan(self, block: Block) -> None:
        self._expire_orphans()
        while self._orphans and len(self._orphans) >= self.max_orphans:
            oldest_hash, _ = next(iter(self._orphans.items()))
            self._drop_orphan(oldest_hash)
            self._stats['orphans_evicted'] += 1

        self._orphans[block.hash] = block
        self._orphan_received[block.hash] = time.monotonic()
        self._orphans_by_parent[block.previous_hash].add(block.hash)
        logger.debug("Buffered orphan block #%d %s", block.index, block.hash[:16])

    def _drop_orphan(self, block_hash: str) -> Optional[Block]:
        block = self._orphans.pop(block_hash, None)
        if block is None:
            return None
        self._orphan_received.pop(block_hash, None)
        siblings = self._orphans_by_parent.get(block.previous_hash)
        if siblings is not None:
            siblings.discard(block_hash)
            if not siblings:
                del self._orphans_by_parent[block.previous_hash]
        return block

    def _expire_orphans(self) -> None:
        cutoff = time.monotonic() - self.orphan_ttl
        expired = [block_hash for block_hash, received in self._orphan_received.items()
                   if received < cutoff]
        for block_hash in expired:
            self._drop_orphan(block_hash)
            self._stats['orphans_evicted'] += 1

    def _adopt_orphans(self, parent_hash: str) -> None:
        """Connect buffered orphans that descend from a newly connected block."""
        pending = [parent_hash]
        while pending:
            parent = self._blocks[pending.pop(0)]
            for child_hash in sorted(self._orphans_by_parent.get(parent.hash, ())):
                child = self._orphans[child_hash]
                try:
                    BlockValidator.validate_parent_link(child, parent)
                except IntegrityError as e:
                    self._drop_orphan(child_hash)
                    logger.debug("Dropped orphan %s: %s", child_hash[:16], e)
                    continue
                try:
                    self._connect(child)
                except StoreError as e:
                    # Stays buffered; a redelivery of the block retries it.
                    logger.error("Could not persist orphan %s: %s", child_hash[:16], e)
                    continue
                self._drop_orphan(child_hash)
                self._choose_head(child)
                self._stats['orphans_adopted'] += 1
                pending.append(child.hash)
