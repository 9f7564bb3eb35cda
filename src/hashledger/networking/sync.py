"""
Block Synchronization

The Synchronizer sits between the message bus and the local ledger:
- inbound envelopes are decoded and routed by type
- blocks go through the chain acceptance policy (duplicate, self-integrity,
  linkage, fork and orphan handling in Blockchain.accept_block)
- transactions are offered to the mempool
- locally sealed blocks are published once, best effort

Peers are untrusted. Malformed or invalid input is counted and dropped; only
a failure of the local store propagates out of handle_message().
"""

import logging
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Optional

from ..core.blockchain import AcceptResult, Blockchain
from ..core.blocks import Block
from ..core.errors import DecodeError, DuplicateError, IntegrityError, StoreError
from ..core.mempool import Admission, Mempool
from ..core.transactions import Transaction
from .gossip import DEFAULT_TOPIC, MessageBus
from .messages import (
    BlockMessage,
    TransactionMessage,
    UnknownMessage,
    decode_message,
    encode_message,
)

logger = logging.getLogger(__name__)


class SyncOutcome(Enum):
    """What happened to one inbound message."""
    BLOCK_EXTENDED = "block_extended"
    BLOCK_REORGANIZED = "block_reorganized"
    BLOCK_SIDE_BRANCH = "block_side_branch"
    BLOCK_ORPHANED = "block_orphaned"
    TRANSACTION_ADMITTED = "transaction_admitted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    MALFORMED = "malformed"
    IGNORED = "ignored"


_BLOCK_OUTCOMES = {
    AcceptResult.EXTENDED: SyncOutcome.BLOCK_EXTENDED,
    AcceptResult.REORGANIZED: SyncOutcome.BLOCK_REORGANIZED,
    AcceptResult.SIDE_BRANCH: SyncOutcome.BLOCK_SIDE_BRANCH,
    AcceptResult.ORPHANED: SyncOutcome.BLOCK_ORPHANED,
}


@dataclass
class SyncStats:
    """Counters for every inbound outcome plus local broadcasts."""
    messages_received: int = 0
    blocks_accepted: int = 0
    blocks_orphaned: int = 0
    reorganizations: int = 0
    transactions_admitted: int = 0
    duplicates: int = 0
    decode_errors: int = 0
    verification_failures: int = 0
    mempool_full: int = 0
    integrity_failures: int = 0
    unknown_messages: int = 0
    handler_errors: int = 0
    blocks_broadcast: int = 0
    transactions_broadcast: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class WarningLimiter:
    """Allows at most `rate` warnings per one-second window."""

    def __init__(self, rate: int):
        self.rate = rate
        self._window = 0
        self._count = 0
        self.suppressed = 0

    def allow(self, now: Optional[float] = None) -> bool:
        window = int(now if now is not None else time.monotonic())
        if window != self._window:
            self._window = window
            self._count = 0
        if self._count < self.rate:
            self._count += 1
            return True
        self.suppressed += 1
        return False


class Synchronizer:
    """
    Gossip protocol layer for one node.

    The accept or reject decision for a message is computed synchronously
    from bytes already received; the asynchrony belongs to the bus.
    """

    def __init__(self, blockchain: Blockchain, mempool: Mempool, bus: MessageBus,
                 topic: str = DEFAULT_TOPIC, warnings_per_second: int = 5):
        self.blockchain = blockchain
        self.mempool = mempool
        self.bus = bus
        self.topic = topic
        self.stats = SyncStats()
        self._warnings = WarningLimiter(warnings_per_second)
        self.is_running = False

    # Outbound

    def broadcast_block(self, block: Block) -> None:
        """Publish a locally sealed block once; no retry, no acknowledgment."""
        self.bus.publish(self.topic, encode_message(BlockMessage(block)))
        self.stats.blocks_broadcast += 1
        logger.debug("Broadcast block #%d %s", block.index, block.hash[:16])

    def broadcast_transaction(self, transaction: Transaction) -> None:
        self.bus.publish(self.topic, encode_message(TransactionMessage(transaction)))
        self.stats.transactions_broadcast += 1

    # Inbound

    def handle_message(self, peer_id: str, raw: bytes) -> SyncOutcome:
        """
        Decode and apply one inbound envelope.

        Raises:
            StoreError: if an accepted block cannot be persisted
        """
        self.stats.messages_received += 1
        try:
            message = decode_message(raw)
        except DecodeError as e:
            self.stats.decode_errors += 1
            self._warn("Dropped malformed message from %s: %s", peer_id, e)
            return SyncOutcome.MALFORMED

        if isinstance(message, BlockMessage):
            return self._handle_block(peer_id, message.block)
        if isinstance(message, TransactionMessage):
            return self._handle_transaction(peer_id, message.transaction)
        if isinstance(message, UnknownMessage):
            self.stats.unknown_messages += 1
            logger.debug("Ignored message of unknown type %r (version %d) from %s",
                         message.type, message.version, peer_id)
            return SyncOutcome.IGNORED
        raise TypeError(f"unhandled message {message!r}")

    def process_pending(self) -> int:
        """Handle every event already queued on the bus without waiting."""
        handled = 0
        while True:
            event = self.bus.receive_nowait()
            if event is None:
                return handled
            self._dispatch(*event)
            handled += 1

    async def run(self) -> None:
        """Consume the bus until it is closed."""
        self.is_running = True
        logger.info("Synchronizer for %s listening on %s", self.bus.peer_id, self.topic)
        try:
            async for peer_id, raw in self.bus:
                self._dispatch(peer_id, raw)
        finally:
            self.is_running = False
            logger.info("Synchronizer for %s stopped", self.bus.peer_id)

    # Private methods

    def _dispatch(self, peer_id: str, raw: bytes) -> Optional[SyncOutcome]:
        """handle_message() for the receive loops: one bad message never stops them."""
        try:
            return self.handle_message(peer_id, raw)
        except StoreError:
            raise
        except Exception:
            self.stats.handler_errors += 1
            logger.exception("Unexpected error handling message from %s", peer_id)
            return None

    def _handle_block(self, peer_id: str, block: Block) -> SyncOutcome:
        try:
            result = self.blockchain.accept_block(block)
        except DuplicateError:
            self.stats.duplicates += 1
            return SyncOutcome.DUPLICATE
        except IntegrityError as e:
            self.stats.integrity_failures += 1
            self._warn("Rejected block %s from %s: %s", block.hash[:16], peer_id, e)
            return SyncOutcome.REJECTED

        if result is AcceptResult.ORPHANED:
            self.stats.blocks_orphaned += 1
        else:
            self.stats.blocks_accepted += 1
        if result is AcceptResult.REORGANIZED:
            self.stats.reorganizations += 1

        logger.debug("Block #%d %s from %s: %s", block.index, block.hash[:16], peer_id, result.value)
        return _BLOCK_OUTCOMES[result]

    def _handle_transaction(self, peer_id: str, transaction: Transaction) -> SyncOutcome:
        admission = self.mempool.admit(transaction)
        if admission is Admission.DUPLICATE:
            self.stats.duplicates += 1
            return SyncOutcome.DUPLICATE
        if admission is Admission.INVALID:
            self.stats.verification_failures += 1
            self._warn("Rejected transaction %s from %s: bad signature", transaction.hash()[:16], peer_id)
            return SyncOutcome.REJECTED
        if admission is Admission.FULL:
            self.stats.mempool_full += 1
            self._warn("Mempool full, dropped transaction %s from %s", transaction.hash()[:16], peer_id)
            return SyncOutcome.REJECTED

        self.stats.transactions_admitted += 1
        return SyncOutcome.TRANSACTION_ADMITTED

    def _warn(self, msg: str, *args) -> None:
        if self._warnings.allow():
            logger.warning(msg, *args)
        else:
            logger.debug(msg, *args)
