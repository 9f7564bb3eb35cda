"""
Ledger Networking

Gossip-based block dissemination and synchronization:
- messages: the versioned envelope codec
- gossip: the message bus contract and the in-process hub
- sync: the synchronizer applying the chain acceptance policy
"""

from .messages import (
    BlockMessage,
    TransactionMessage,
    UnknownMessage,
    NetworkMessage,
    encode_message,
    decode_message,
)
from .gossip import MessageBus, GossipHub, GossipEndpoint, DEFAULT_TOPIC
from .sync import Synchronizer, SyncOutcome, SyncStats

__all__ = [
    'BlockMessage',
    'TransactionMessage',
    'UnknownMessage',
    'NetworkMessage',
    'encode_message',
    'decode_message',
    'MessageBus',
    'GossipHub',
    'GossipEndpoint',
    'DEFAULT_TOPIC',
    'Synchronizer',
    'SyncOutcome',
    'SyncStats',
]
