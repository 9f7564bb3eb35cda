"""
Ledger Node Service

LedgerNode is the one object that owns a node's shared state (chain and
mempool) and exposes the operations external callers need:
- submit(transaction) / create_transaction(receiver, amount)
- seal(): drain the mempool into a new block on the head and broadcast it
- get_chain_view() / get_pending_count()
- start() / stop(): run the gossip synchronizer as an asyncio task
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

from .config import NodeConfig
from .core.blockchain import Blockchain
from .core.blocks import Block
from .core.errors import StoreError
from .core.mempool import Mempool
from .core.store import BlockStore, MemoryBlockStore, SqliteBlockStore
from .core.transactions import Transaction, encode_batch
from .core.wallet import Wallet
from .networking.gossip import MessageBus
from .networking.sync import Synchronizer

logger = logging.getLogger(__name__)


class LedgerNode:
    """
    A ledger node: wallet, chain, mempool and, when a bus is given, the
    synchronizer that keeps it in step with its peers.
    """

    def __init__(self, config: Optional[NodeConfig] = None, wallet: Optional[Wallet] = None,
                 bus: Optional[MessageBus] = None, store: Optional[BlockStore] = None):
        self.config = config or NodeConfig()
        self.node_id = self.config.node_id

        if wallet is None:
            wallet = (Wallet.load_or_create(self.config.wallet_path)
                      if self.config.wallet_path else Wallet.generate())
        self.wallet = wallet

        if store is None:
            store = (SqliteBlockStore(self.config.db_path)
                     if self.config.db_path else MemoryBlockStore())

        self.blockchain = Blockchain(
            store,
            max_orphans=self.config.max_orphans,
            orphan_ttl=self.config.orphan_ttl,
        )
        self.mempool = Mempool(max_size=self.config.mempool_max_size)

        self.synchronizer: Optional[Synchronizer] = None
        if bus is not None:
            self.synchronizer = Synchronizer(
                self.blockchain, self.mempool, bus,
                topic=self.config.topic,
                warnings_per_second=self.config.warnings_per_second,
            )

        self._seal_lock = threading.Lock()
        self._sync_task: Optional[asyncio.Task] = None

        logger.info("Node %s ready at height %d, validator %s",
                    self.node_id, self.blockchain.height, self.wallet.public_key[:16])

    # Submission interface

    def submit(self, transaction: Transaction, broadcast: bool = False) -> bool:
        """
        Offer a transaction to the local mempool.

        Returns:
            True if the transaction is pending, False if it was rejected
        """
        admitted = self.mempool.add(transaction)
        if admitted and broadcast and self.synchronizer is not None:
            self.synchronizer.broadcast_transaction(transaction)
        return admitted

    def create_transaction(self, receiver: str, amount: int, broadcast: bool = False) -> Transaction:
        """
        Sign a transaction with this node's wallet and submit it.

        Raises:
            SigningError: if the wallet cannot sign
        """
        transaction = Transaction.create(self.wallet, receiver, amount)
        self.submit(transaction, broadcast=broadcast)
        return transaction

    def seal(self) -> Optional[Block]:
        """
        Seal every pending transaction into a block on the current head.

        Returns:
            The new block, or None if the mempool was empty

        Raises:
            StoreError: if the block cannot be persisted; the drained
                transactions are returned to the mempool first
        """
        with self._seal_lock:
            transactions = self.mempool.drain()
            if not transactions:
                return None
            try:
                block = self.blockchain.seal_block(encode_batch(transactions), self.wallet.public_key)
            except StoreError:
                restored = self.mempool.restore(transactions)
                logger.error("Sealing failed, %d transactions returned to mempool", restored)
                raise

        logger.info("Node %s sealed block #%d %s with %d transactions",
                    self.node_id, block.index, block.hash[:16], len(transactions))

        if self.synchronizer is not None:
            self.synchronizer.broadcast_block(block)
        return block

    def get_chain_view(self) -> List[Block]:
        return self.blockchain.get_chain_view()

    def get_pending_count(self) -> int:
        return self.mempool.get_pending_count()

    # Lifecycle

    async def start(self) -> None:
        """Start consuming gossip in the background."""
        if self.synchronizer is None:
            raise RuntimeError(f"Node {self.node_id} has no message bus")
        if self._sync_task is None:
            self._sync_task = asyncio.create_task(self.synchronizer.run())

    async def stop(self) -> None:
        """Close the bus, wait for the synchronizer and release the store."""
        if self.synchronizer is not None:
            self.synchronizer.bus.close()
        if self._sync_task is not None:
            await self._sync_task
            self._sync_task = None
        self.blockchain.store.close()

    def status(self) -> Dict[str, Any]:
        stats = self.blockchain.get_blockchain_stats()
        status = {
            'node_id': self.node_id,
            'validator': self.wallet.public_key,
            'height': stats.height,
            'head': stats.head,
            'known_blocks': stats.known_blocks,
            'orphan_blocks': stats.orphan_blocks,
            'reorganizations': stats.reorganizations,
            'pending_transactions': self.get_pending_count(),
        }
        if self.synchronizer is not None:
            status['sync'] = self.synchronizer.stats.to_dict()
        return status
