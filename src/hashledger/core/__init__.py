"""
Ledger Core Components

Data model, integrity rules, storage and admission control for a
hash-linked ledger node.
"""

from .errors import (
    LedgerError,
    DecodeError,
    VerificationError,
    IntegrityError,
    DuplicateError,
    StoreError,
    SigningError,
)
from .wallet import Wallet
from .transactions import Transaction, canonical_payload, encode_batch, decode_batch
from .blocks import Block, BlockValidator, create_genesis_block, GENESIS_HASH, ZERO_HASH
from .store import BlockStore, MemoryBlockStore, SqliteBlockStore
from .mempool import Admission, Mempool
from .blockchain import Blockchain, AcceptResult, BlockchainStats

__all__ = [
    'LedgerError', 'DecodeError', 'VerificationError', 'IntegrityError',
    'DuplicateError', 'StoreError', 'SigningError',
    'Wallet',
    'Transaction', 'canonical_payload', 'encode_batch', 'decode_batch',
    'Block', 'BlockValidator', 'create_genesis_block', 'GENESIS_HASH', 'ZERO_HASH',
    'BlockStore', 'MemoryBlockStore', 'SqliteBlockStore',
    'Mempool', 'Admission',
    'Blockchain', 'AcceptResult', 'BlockchainStats',
]
