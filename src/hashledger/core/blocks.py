"""
Hash-Linked Block Structure

A block carries:
- its position in the chain (index) and sealing time in milliseconds
- the hash of its predecessor, which links the history together
- an opaque data payload, normally a serialized transaction batch
- the identity of the validator that sealed it

The block hash covers every other field, so any modification of a stored or
received block is detectable by recomputing it.
"""

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import DecodeError, IntegrityError
from .transactions import Transaction, decode_batch, require_text

HASH_HEX_LENGTH = 64
ZERO_HASH = "0" * HASH_HEX_LENGTH

# Fixed genesis fields: every node derives the identical genesis hash.
GENESIS_TIMESTAMP = 0
GENESIS_DATA = "Genesis Allocation: 20633239"
GENESIS_VALIDATOR = "genesis"


def calculate_hash(index: int, timestamp: int, previous_hash: str, data: str, validator: str) -> str:
    """SHA-256 over index, timestamp, previous_hash, data and validator, in that order."""
    block_string = f"{index}{timestamp}{previous_hash}{data}{validator}".encode('utf-8')
    return hashlib.sha256(block_string).hexdigest()


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Block:
    """
    Immutable unit of history.

    Construct new blocks with Block.seal(); the constructor takes a hash as
    given so that received blocks can be checked with verify_hash().
    """
    index: int
    timestamp: int
    previous_hash: str
    data: str
    validator: str
    hash: str = field(default="")

    @classmethod
    def seal(cls, index: int, previous_hash: str, data: str, validator: str,
             timestamp: Optional[int] = None) -> 'Block':
        """Create a block extending previous_hash with its hash computed once."""
        if timestamp is None:
            timestamp = now_ms()
        return cls(
            index=index,
            timestamp=timestamp,
            previous_hash=previous_hash,
            data=data,
            validator=validator,
            hash=calculate_hash(index, timestamp, previous_hash, data, validator),
        )

    def calculate_hash(self) -> str:
        return calculate_hash(self.index, self.timestamp, self.previous_hash, self.data, self.validator)

    def verify_hash(self) -> bool:
        """Recompute the hash from the fields and compare with the stored one."""
        try:
            return self.calculate_hash() == self.hash
        except UnicodeEncodeError:
            return False

    @property
    def is_genesis(self) -> bool:
        return self.index == 0 and self.previous_hash == ZERO_HASH

    def transactions(self) -> List[Transaction]:
        """
        Decode the payload as a transaction batch.

        Raises:
            DecodeError: if the payload is not a transaction batch
        """
        return decode_batch(self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'timestamp': self.timestamp,
            'previous_hash': self.previous_hash,
            'hash': self.hash,
            'data': self.data,
            'validator': self.validator,
        }

    @classmethod
    def from_dict(cls, record: Any) -> 'Block':
        """
        Rebuild a block from a decoded record without trusting its hash.

        Raises:
            DecodeError: if fields are missing or have the wrong type
        """
        if not isinstance(record, dict):
            raise DecodeError("block record must be an object")

        for name in ('index', 'timestamp'):
            value = record.get(name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise DecodeError(f"block field '{name}' must be an unsigned integer")

        for name in ('previous_hash', 'hash', 'data', 'validator'):
            require_text(record, name, "block")

        return cls(
            index=record['index'],
            timestamp=record['timestamp'],
            previous_hash=record['previous_hash'],
            data=record['data'],
            validator=record['validator'],
            hash=record['hash'],
        )

    def summary(self) -> Dict[str, Any]:
        """Short description for status output."""
        try:
            tx_count = len(self.transactions())
        except DecodeError:
            tx_count = 0
        return {
            "index": self.index,
            "hash": self.hash[:16] + "...",
            "previous_hash": self.previous_hash[:16] + "...",
            "validator": self.validator[:16] + ("..." if len(self.validator) > 16 else ""),
            "transaction_count": tx_count,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        return f"Block(#{self.index}: {self.hash[:12]}...)"


class BlockValidator:
    """
    Integrity rules for blocks.

    Each check raises IntegrityError describing the first violation found.
    """

    @staticmethod
    def validate_block(block: Block, parent_block: Optional[Block] = None) -> None:
        """Run the self-integrity, linkage and payload checks."""
        BlockValidator.validate_hash(block)
        if parent_block is not None:
            BlockValidator.validate_parent_link(block, parent_block)
        BlockValidator.validate_payload(block)

    @staticmethod
    def is_valid(block: Block, parent_block: Optional[Block] = None) -> bool:
        try:
            BlockValidator.validate_block(block, parent_block)
        except IntegrityError:
            return False
        return True

    @staticmethod
    def validate_hash(block: Block) -> None:
        if len(block.previous_hash) != HASH_HEX_LENGTH:
            raise IntegrityError(f"{block} previous_hash has wrong length")
        if not block.verify_hash():
            raise IntegrityError(f"{block} hash does not match its contents")

    @staticmethod
    def validate_parent_link(block: Block, parent_block: Block) -> None:
        if block.previous_hash != parent_block.hash:
            raise IntegrityError(f"{block} does not link to {parent_block}")
        if block.index != parent_block.index + 1:
            raise IntegrityError(
                f"{block} index {block.index} does not follow parent index {parent_block.index}"
            )

    @staticmethod
    def validate_payload(block: Block) -> None:
        """
        Every transaction embedded in the payload must verify.

        Payloads that are not transaction batches, such as the genesis text,
        are opaque and pass.
        """
        try:
            records = json.loads(block.data)
        except json.JSONDecodeError:
            return
        except (ValueError, RecursionError) as e:
            raise IntegrityError(f"{block} payload cannot be parsed: {e}") from e
        if not isinstance(records, list):
            return

        for record in records:
            try:
                transaction = Transaction.from_dict(record)
            except DecodeError as e:
                raise IntegrityError(f"{block} carries malformed transaction: {e}") from e
            if not transaction.verify():
                raise IntegrityError(f"{block} carries transaction with invalid signature: {transaction}")


def create_genesis_block() -> Block:
    """The fixed first block shared by every node."""
    return Block.seal(
        index=0,
        previous_hash=ZERO_HASH,
        data=GENESIS_DATA,
        validator=GENESIS_VALIDATOR,
        timestamp=GENESIS_TIMESTAMP,
    )


GENESIS_HASH = create_genesis_block().hash
