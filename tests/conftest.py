# tests/conftest.py
import pytest

from hashledger.core.blockchain import Blockchain
from hashledger.core.blocks import Block
from hashledger.core.mempool import Mempool
from hashledger.core.store import MemoryBlockStore
from hashledger.core.transactions import Transaction
from hashledger.core.wallet import Wallet
from hashledger.config import NodeConfig
from hashledger.networking.gossip import GossipHub
from hashledger.node import LedgerNode


@pytest.fixture(scope="session")
def wallet():
    return Wallet.generate()


@pytest.fixture(scope="session")
def other_wallet():
    return Wallet.generate()


@pytest.fixture()
def transaction(wallet):
    return Transaction.create(wallet, "receiver-address", 1000)


@pytest.fixture()
def store():
    return MemoryBlockStore()


@pytest.fixture()
def blockchain(store):
    return Blockchain(store)


@pytest.fixture()
def mempool():
    return Mempool()


@pytest.fixture()
def hub():
    return GossipHub()


@pytest.fixture()
def make_node(hub):
    """Factory for nodes attached to the shared hub."""
    def _make(node_id: str, **overrides) -> LedgerNode:
        config = NodeConfig(node_id=node_id, **overrides)
        return LedgerNode(config, bus=hub.register(node_id))
    return _make


@pytest.fixture()
def child_of():
    """Build a block extending parent with a chosen payload."""
    def _child(parent: Block, data: str = "[]", validator: str = "test-validator",
               timestamp: int = 1_700_000_000_000) -> Block:
        return Block.seal(
            index=parent.index + 1,
            previous_hash=parent.hash,
            data=data,
            validator=validator,
            timestamp=timestamp,
        )
    return _child
