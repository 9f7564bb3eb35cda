import dataclasses

import pytest

from hashledger.core.blocks import (
    GENESIS_DATA,
    GENESIS_HASH,
    ZERO_HASH,
    Block,
    BlockValidator,
    calculate_hash,
    create_genesis_block,
)
from hashledger.core.errors import DecodeError, IntegrityError
from hashledger.core.transactions import Transaction, encode_batch


def test_hash_is_deterministic():
    first = Block.seal(3, "a" * 64, "payload", "validator-1", timestamp=1234)
    second = Block.seal(3, "a" * 64, "payload", "validator-1", timestamp=1234)
    assert first.hash == second.hash
    assert len(first.hash) == 64
    assert first.hash == calculate_hash(3, 1234, "a" * 64, "payload", "validator-1")


@pytest.mark.parametrize("changes", [
    {"index": 4},
    {"timestamp": 1235},
    {"previous_hash": "b" * 64},
    {"data": "payload!"},
    {"validator": "validator-2"},
])
def test_hash_covers_every_field(changes):
    block = Block.seal(3, "a" * 64, "payload", "validator-1", timestamp=1234)
    tampered = dataclasses.replace(block, **changes)
    assert tampered.calculate_hash() != block.hash
    assert not tampered.verify_hash()
    with pytest.raises(IntegrityError):
        BlockValidator.validate_hash(tampered)


def test_genesis_is_fixed():
    genesis = create_genesis_block()
    assert genesis == create_genesis_block()
    assert genesis.hash == GENESIS_HASH
    assert genesis.index == 0
    assert genesis.previous_hash == ZERO_HASH
    assert genesis.data == GENESIS_DATA
    assert genesis.is_genesis
    BlockValidator.validate_block(genesis)


def test_parent_link(child_of):
    genesis = create_genesis_block()
    child = child_of(genesis)
    BlockValidator.validate_block(child, genesis)

    skipped = Block.seal(2, genesis.hash, "[]", "v", timestamp=1)
    with pytest.raises(IntegrityError):
        BlockValidator.validate_parent_link(skipped, genesis)

    unlinked = Block.seal(1, "f" * 64, "[]", "v", timestamp=1)
    with pytest.raises(IntegrityError):
        BlockValidator.validate_parent_link(unlinked, genesis)


def test_short_previous_hash_rejected():
    block = Block.seal(1, "abc", "[]", "v", timestamp=1)
    assert block.verify_hash()
    assert not BlockValidator.is_valid(block)


def test_payload_transactions_must_verify(wallet, child_of):
    genesis = create_genesis_block()
    good = Transaction.create(wallet, "bob", 10)
    forged = dataclasses.replace(good, amount=11)

    assert BlockValidator.is_valid(child_of(genesis, encode_batch([good])), genesis)
    assert not BlockValidator.is_valid(child_of(genesis, encode_batch([good, forged])), genesis)
    assert not BlockValidator.is_valid(child_of(genesis, '[{"sender": 1}]'), genesis)


def test_opaque_payload_passes(child_of):
    genesis = create_genesis_block()
    for data in ("free text", '{"note": "not a batch"}', "42", ""):
        BlockValidator.validate_payload(child_of(genesis, data))


def test_transactions_and_summary(wallet, child_of):
    txs = [Transaction.create(wallet, "bob", i) for i in range(2)]
    block = child_of(create_genesis_block(), encode_batch(txs))
    assert block.transactions() == txs
    assert block.summary()["transaction_count"] == 2
    assert create_genesis_block().summary()["transaction_count"] == 0
    assert str(block).startswith("Block(#1: ")


def test_record_round_trip(child_of):
    block = child_of(create_genesis_block(), "data")
    assert Block.from_dict(block.to_dict()) == block


@pytest.mark.parametrize("changes", [
    {"index": -1},
    {"index": True},
    {"timestamp": "now"},
    {"hash": None},
    {"data": 5},
])
def test_from_dict_rejects_wrong_types(changes, child_of):
    record = dict(child_of(create_genesis_block()).to_dict(), **changes)
    with pytest.raises(DecodeError):
        Block.from_dict(record)


@pytest.mark.parametrize("data", [
    "[" * 100000 + "]" * 100000,
    "[" + "1" * 5000 + "]",
    '[{"sender": "\\ud800", "receiver": "b", "amount": 1, "signature": "c"}]',
])
def test_unparseable_batch_payload_is_an_integrity_error(data, child_of):
    block = child_of(create_genesis_block(), data)
    assert block.verify_hash()
    with pytest.raises(IntegrityError):
        BlockValidator.validate_payload(block)


def test_unencodable_fields(child_of):
    block = child_of(create_genesis_block())
    for name in ("data", "validator", "previous_hash", "hash"):
        with pytest.raises(DecodeError):
            Block.from_dict(dict(block.to_dict(), **{name: "\ud800"}))
    assert not dataclasses.replace(block, data="\ud800").verify_hash()
