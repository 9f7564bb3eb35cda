"""
hashledger - a minimal distributed ledger node

Signed transactions are admitted to a mempool, sealed into hash-linked
blocks, persisted in a content-addressed store and synchronized between
nodes over a publish-subscribe gossip bus.

Key Features:
- Tamper-evident hash chain rooted at a fixed genesis block
- SECP256k1 transaction signatures
- Longest-chain fork choice with deterministic tie-break
- Orphan buffering for blocks that arrive out of order
"""

__version__ = "0.1.0"

from .core import *
from .config import NodeConfig
from .node import LedgerNode
from .networking import GossipHub, Synchronizer

__all__ = [
    # Core ledger components
    'Wallet',
    'Transaction',
    'Block',
    'BlockValidator',
    'Blockchain',
    'AcceptResult',
    'Mempool',
    'MemoryBlockStore',
    'SqliteBlockStore',
    'LedgerError',
    'DecodeError',
    'VerificationError',
    'IntegrityError',
    'DuplicateError',
    'StoreError',
    'SigningError',

    # Node and networking
    'NodeConfig',
    'LedgerNode',
    'GossipHub',
    'Synchronizer',
]
