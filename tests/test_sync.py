import asyncio
import dataclasses
import json

import pytest

from hashledger.config import NodeConfig
from hashledger.core.blocks import Block
from hashledger.core.errors import StoreError
from hashledger.core.store import MemoryBlockStore
from hashledger.core.transactions import Transaction, encode_batch
from hashledger.networking.messages import BlockMessage, TransactionMessage, encode_message
from hashledger.networking.sync import SyncOutcome, WarningLimiter
from hashledger.node import LedgerNode


def drain_all(*nodes):
    for node in nodes:
        node.synchronizer.process_pending()


def test_sealed_block_reaches_peer(make_node):
    alice, bob = make_node("alice"), make_node("bob")
    alice.create_transaction(bob.wallet.public_key, 25)
    block = alice.seal()

    drain_all(bob)
    assert bob.blockchain.head == block.hash
    assert bob.get_chain_view() == alice.get_chain_view()
    assert bob.synchronizer.stats.blocks_accepted == 1


def test_competing_forks_converge(make_node, wallet):
    nodes = [make_node("a"), make_node("b"), make_node("c")]
    a, b, c = nodes

    a.create_transaction("x", 1)
    b.create_transaction("y", 2)
    block_a = a.seal()
    block_b = b.seal()
    drain_all(*nodes)

    winner = min(block_a, block_b, key=lambda block: block.hash)
    loser = max(block_a, block_b, key=lambda block: block.hash)
    assert {node.blockchain.head for node in nodes} == {winner.hash}

    # Extend the losing branch; everyone must switch to it.
    loser_node = a if loser is block_a else b
    extension = Block.seal(2, loser.hash, encode_batch([Transaction.create(wallet, "z", 3)]), "ext")
    loser_node.blockchain.accept_block(extension)
    loser_node.synchronizer.broadcast_block(extension)
    drain_all(*nodes)

    assert {node.blockchain.head for node in nodes} == {extension.hash}
    for node in nodes:
        assert node.get_chain_view()[1] == loser
        assert node.blockchain.validate_chain()


def test_out_of_order_delivery(make_node, child_of):
    sender, receiver = make_node("sender"), make_node("receiver")
    first = child_of(sender.blockchain.head_block, validator="s")
    second = child_of(first, validator="s")

    for block in (second, first):
        sender.synchronizer.broadcast_block(block)

    outcomes = []
    while True:
        event = receiver.synchronizer.bus.receive_nowait()
        if event is None:
            break
        outcomes.append(receiver.synchronizer.handle_message(*event))

    assert outcomes == [SyncOutcome.BLOCK_ORPHANED, SyncOutcome.BLOCK_EXTENDED]
    assert receiver.blockchain.head == second.hash


def test_redelivery_is_a_duplicate(make_node, child_of):
    node = make_node("solo")
    raw = encode_message(BlockMessage(child_of(node.blockchain.head_block)))
    sync = node.synchronizer

    assert sync.handle_message("peer", raw) is SyncOutcome.BLOCK_EXTENDED
    assert sync.handle_message("peer", raw) is SyncOutcome.DUPLICATE
    assert sync.stats.duplicates == 1


def test_untrusted_input_is_absorbed(make_node, child_of, transaction):
    node = make_node("solo")
    sync = node.synchronizer
    block = child_of(node.blockchain.head_block)
    tampered = dataclasses.replace(block, data="changed")
    forged = dataclasses.replace(transaction, amount=transaction.amount + 1)

    assert sync.handle_message("peer", b"\x00garbage") is SyncOutcome.MALFORMED
    assert sync.handle_message("peer", encode_message(BlockMessage(tampered))) is SyncOutcome.REJECTED
    assert sync.handle_message("peer", encode_message(TransactionMessage(forged))) is SyncOutcome.REJECTED
    assert sync.handle_message("peer", b'{"version": 1, "type": "ping"}') is SyncOutcome.IGNORED

    assert node.blockchain.height == 0
    assert node.get_pending_count() == 0
    stats = sync.stats
    assert (stats.decode_errors, stats.integrity_failures,
            stats.verification_failures, stats.unknown_messages) == (1, 1, 1, 1)


def test_transactions_gossip_into_mempool(make_node, transaction):
    alice, bob = make_node("alice"), make_node("bob")
    assert alice.submit(transaction, broadcast=True)

    assert bob.synchronizer.process_pending() == 1
    assert transaction.signature in bob.mempool
    raw = encode_message(TransactionMessage(transaction))
    assert bob.synchronizer.handle_message("alice", raw) is SyncOutcome.DUPLICATE


def test_store_failure_propagates(hub, child_of):
    class BrokenStore(MemoryBlockStore):
        def put(self, block_hash, serialized_block):
            if len(self) > 0:
                raise StoreError("disk full")
            super().put(block_hash, serialized_block)

    node = LedgerNode(NodeConfig(node_id="broken"), bus=hub.register("broken"), store=BrokenStore())
    raw = encode_message(BlockMessage(child_of(node.blockchain.head_block)))
    with pytest.raises(StoreError):
        node.synchronizer.handle_message("peer", raw)
    assert node.blockchain.height == 0


def test_warning_limiter():
    limiter = WarningLimiter(rate=2)
    assert limiter.allow(now=10.0)
    assert limiter.allow(now=10.5)
    assert not limiter.allow(now=10.9)
    assert limiter.suppressed == 1
    assert limiter.allow(now=11.0)


@pytest.mark.asyncio
async def test_running_nodes_converge(make_node):
    nodes = [make_node(f"node-{i}") for i in range(3)]
    for node in nodes:
        await node.start()

    for round_number, sealer in enumerate(nodes):
        sealer.create_transaction(nodes[0].wallet.public_key, round_number + 1)
        sealer.seal()
        for _ in range(3):
            await asyncio.sleep(0)

    heads = {node.blockchain.head for node in nodes}
    for node in nodes:
        await node.stop()
        assert not node.synchronizer.is_running

    assert len(heads) == 1
    assert nodes[0].blockchain.height == 3


def test_pathological_input_is_absorbed(make_node, child_of, transaction):
    node = make_node("solo")
    sync = node.synchronizer
    genesis = node.blockchain.head_block
    nested = child_of(genesis, data="[" * 100000 + "]" * 100000)
    block_record = dict(child_of(genesis).to_dict(), data="\ud800")
    tx_record = dict(transaction.to_dict(), receiver="\ud800")

    assert sync.handle_message("peer", encode_message(BlockMessage(nested))) is SyncOutcome.REJECTED
    assert sync.handle_message("peer", b'{"version": ' + b"9" * 5000 + b'}') is SyncOutcome.MALFORMED
    for record, kind in ((block_record, "block"), (tx_record, "transaction")):
        raw = json.dumps({"version": 1, "type": kind, "payload": record}).encode()
        assert sync.handle_message("peer", raw) is SyncOutcome.MALFORMED

    assert node.blockchain.height == 0
    assert sync.stats.decode_errors == 3
    assert sync.stats.integrity_failures == 1


def fail_first_accept(monkeypatch, blockchain):
    original = blockchain.accept_block
    calls = []

    def accept_block(block):
        calls.append(block)
        if len(calls) == 1:
            raise RuntimeError("unexpected failure")
        return original(block)

    monkeypatch.setattr(blockchain, "accept_block", accept_block)


def test_unexpected_handler_error_does_not_stop_processing(monkeypatch, make_node, child_of):
    sender, receiver = make_node("sender"), make_node("receiver")
    genesis = sender.blockchain.head_block
    first, second = child_of(genesis, validator="a"), child_of(genesis, validator="b")
    fail_first_accept(monkeypatch, receiver.blockchain)

    sender.synchronizer.broadcast_block(first)
    sender.synchronizer.broadcast_block(second)

    assert receiver.synchronizer.process_pending() == 2
    assert receiver.synchronizer.stats.handler_errors == 1
    assert receiver.blockchain.head == second.hash


def test_store_failure_still_stops_processing(hub, child_of):
    class BrokenStore(MemoryBlockStore):
        def put(self, block_hash, serialized_block):
            if len(self) > 0:
                raise StoreError("disk full")
            super().put(block_hash, serialized_block)

    sender = LedgerNode(NodeConfig(node_id="sender"), bus=hub.register("sender"))
    broken = LedgerNode(NodeConfig(node_id="broken"), bus=hub.register("broken"), store=BrokenStore())
    sender.synchronizer.broadcast_block(child_of(sender.blockchain.head_block))

    with pytest.raises(StoreError):
        broken.synchronizer.process_pending()


def test_full_mempool_counted_separately(make_node, wallet):
    node = make_node("small", mempool_max_size=1)
    node.submit(Transaction.create(wallet, "bob", 1))
    raw = encode_message(TransactionMessage(Transaction.create(wallet, "bob", 2)))

    assert node.synchronizer.handle_message("peer", raw) is SyncOutcome.REJECTED
    assert node.synchronizer.stats.mempool_full == 1
    assert node.synchronizer.stats.verification_failures == 0


@pytest.mark.asyncio
async def test_running_node_survives_unexpected_error(monkeypatch, make_node, child_of):
    sender, receiver = make_node("sender"), make_node("receiver")
    genesis = sender.blockchain.head_block
    first, second = child_of(genesis, validator="a"), child_of(genesis, validator="b")
    fail_first_accept(monkeypatch, receiver.blockchain)
    await receiver.start()

    sender.synchronizer.broadcast_block(first)
    sender.synchronizer.broadcast_block(second)
    for _ in range(3):
        await asyncio.sleep(0)

    assert receiver.synchronizer.is_running
    assert receiver.blockchain.head == second.hash
    await receiver.stop()
    assert receiver.synchronizer.stats.handler_errors == 1
