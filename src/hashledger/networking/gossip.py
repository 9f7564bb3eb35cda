"""
Publish-Subscribe Message Bus

The ledger talks to its peers only through this contract:
- publish(topic, data): best-effort broadcast, no acknowledgment
- receive() / async iteration: inbound (peer_id, data) events

Delivery is at most once per hop, unordered across peers, and may duplicate.
The synchronizer's duplicate checks make redelivery harmless.

GossipHub is an in-process implementation: every endpoint registered on the
hub receives what the others publish on topics it subscribed to. It backs
local multi-node runs and the test suite; a real deployment plugs a network
transport in behind the same MessageBus interface.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, Optional, Set, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "hashledger-global"

InboundEvent = Tuple[str, bytes]


class MessageBus(ABC):
    """Contract between the synchronizer and the transport."""

    peer_id: str

    @abstractmethod
    def publish(self, topic: str, data: bytes) -> None:
        """Broadcast data to subscribers of topic; never waits for delivery."""

    @abstractmethod
    async def receive(self) -> Optional[InboundEvent]:
        """Wait for the next inbound event; None once the bus is closed."""

    def receive_nowait(self) -> Optional[InboundEvent]:
        """Next inbound event if one is already queued."""
        return None

    def close(self) -> None:
        pass

    async def __aiter__(self) -> AsyncIterator[InboundEvent]:
        while True:
            event = await self.receive()
            if event is None:
                return
            yield event


class GossipEndpoint(MessageBus):
    """One node's attachment to a GossipHub."""

    _CLOSED = object()

    def __init__(self, hub: 'GossipHub', peer_id: str, max_queue: int = 10000):
        self.hub = hub
        self.peer_id = peer_id
        self.topics: Set[str] = set()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self.closed = False

    def subscribe(self, topic: str = DEFAULT_TOPIC) -> None:
        self.topics.add(topic)

    def unsubscribe(self, topic: str) -> None:
        self.topics.discard(topic)

    def publish(self, topic: str, data: bytes) -> None:
        if self.closed:
            logger.debug("Endpoint %s closed, dropping publish", self.peer_id)
            return
        self.hub.deliver(self.peer_id, topic, data)

    def enqueue(self, sender: str, data: bytes) -> bool:
        """Called by the hub; drops the event if the queue is full."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait((sender, data))
        except asyncio.QueueFull:
            logger.debug("Inbound queue of %s full, dropped message from %s", self.peer_id, sender)
            return False
        return True

    async def receive(self) -> Optional[InboundEvent]:
        if self.closed and self._queue.empty():
            return None
        event = await self._queue.get()
        if event is self._CLOSED:
            return None
        return event

    def receive_nowait(self) -> Optional[InboundEvent]:
        try:
            event = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if event is self._CLOSED:
            return None
        return event

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.hub.unregister(self.peer_id)
        try:
            self._queue.put_nowait(self._CLOSED)
        except asyncio.QueueFull:
            pass


class GossipHub:
    """
    In-process fan-out between endpoints.

    Publishers never receive their own messages. Endpoints registered after a
    message was published do not see it.
    """

    def __init__(self, max_queue: int = 10000):
        self.max_queue = max_queue
        self._endpoints: Dict[str, GossipEndpoint] = {}
        self._stats = {'published': 0, 'delivered': 0, 'dropped': 0}

    def register(self, peer_id: str, topic: Optional[str] = DEFAULT_TOPIC) -> GossipEndpoint:
        if peer_id in self._endpoints:
            raise ValueError(f"peer {peer_id} already registered")
        endpoint = GossipEndpoint(self, peer_id, max_queue=self.max_queue)
        if topic is not None:
            endpoint.subscribe(topic)
        self._endpoints[peer_id] = endpoint
        logger.debug("Peer %s joined hub", peer_id)
        return endpoint

    def unregister(self, peer_id: str) -> None:
        self._endpoints.pop(peer_id, None)

    def deliver(self, sender: str, topic: str, data: bytes) -> int:
        """Fan data out to every other subscriber; returns deliveries made."""
        self._stats['published'] += 1
        delivered = 0
        for peer_id, endpoint in list(self._endpoints.items()):
            if peer_id == sender or topic not in endpoint.topics:
                continue
            if endpoint.enqueue(sender, data):
                delivered += 1
            else:
                self._stats['dropped'] += 1
        self._stats['delivered'] += delivered
        return delivered

    @property
    def peers(self) -> Set[str]:
        return set(self._endpoints)

    def get_statistics(self) -> Dict[str, int]:
        return dict(self._stats, peers=len(self._endpoints))
