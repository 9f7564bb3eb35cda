"""
Gossip Envelope Codec

Every message on the bus is a JSON object:

    {"version": 1, "type": "block" | "transaction", "payload": {...}}

The payload carries the record fields in their data-model order. Decoding is
closed over the known message types; any other type or version turns into an
UnknownMessage so newer peers can extend the protocol without older ones
treating it as an error.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from ..core.blocks import Block
from ..core.errors import DecodeError
from ..core.transactions import Transaction

PROTOCOL_VERSION = 1

BLOCK_TYPE = "block"
TRANSACTION_TYPE = "transaction"


@dataclass(frozen=True)
class BlockMessage:
    block: Block
    type: str = field(default=BLOCK_TYPE, init=False)

    def payload(self) -> Dict[str, Any]:
        return self.block.to_dict()


@dataclass(frozen=True)
class TransactionMessage:
    transaction: Transaction
    type: str = field(default=TRANSACTION_TYPE, init=False)

    def payload(self) -> Dict[str, Any]:
        return self.transaction.to_dict()


@dataclass(frozen=True)
class UnknownMessage:
    """A well-formed envelope this node does not understand."""
    type: str
    version: int


NetworkMessage = Union[BlockMessage, TransactionMessage, UnknownMessage]


def encode_message(message: Union[BlockMessage, TransactionMessage]) -> bytes:
    envelope = {
        "version": PROTOCOL_VERSION,
        "type": message.type,
        "payload": message.payload(),
    }
    return json.dumps(envelope, separators=(',', ':')).encode('utf-8')


def decode_message(raw: bytes) -> NetworkMessage:
    """
    Parse envelope bytes received from a peer.

    Raises:
        DecodeError: if the bytes are not a well-formed envelope or a known
            payload is malformed
    """
    try:
        envelope = json.loads(raw.decode('utf-8'))
    except (ValueError, RecursionError) as e:
        raise DecodeError(f"envelope is not valid JSON: {e}") from e

    if not isinstance(envelope, dict):
        raise DecodeError("envelope must be an object")

    version = envelope.get("version")
    message_type = envelope.get("type")
    if isinstance(version, bool) or not isinstance(version, int):
        raise DecodeError("envelope version must be an integer")
    if not isinstance(message_type, str):
        raise DecodeError("envelope type must be a string")

    if version != PROTOCOL_VERSION:
        return UnknownMessage(type=message_type, version=version)

    if message_type == BLOCK_TYPE:
        return BlockMessage(Block.from_dict(envelope.get("payload")))
    if message_type == TRANSACTION_TYPE:
        return TransactionMessage(Transaction.from_dict(envelope.get("payload")))
    return UnknownMessage(type=message_type, version=version)
