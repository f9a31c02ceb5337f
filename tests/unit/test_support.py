"""Tests for events, treasury, account addresses and hex helpers."""

import pytest

from zkpool.core.addresses import (
    config_address,
    derive_address,
    nullifier_shard_address,
    roots_address,
    treasury_address,
    vk_address,
)
from zkpool.core.events import EventLog, NullifierSpent, PoolPausedChanged, RootAdded
from zkpool.core.treasury import InMemoryTreasury
from zkpool.exceptions import InsufficientFundsError, InvalidFieldElementError, StorageError
from zkpool.utils.encoding import bytes_to_hex, hex_to_bytes, hex_to_field


class TestEventLog:

    def test_emit_and_filter(self):
        log = EventLog()
        log.emit(RootAdded(root=1, index=0))
        log.emit(PoolPausedChanged(paused=True, admin=b"\x01" * 32))
        log.emit(RootAdded(root=2, index=1))
        assert len(log) == 3
        assert [e.root for e in log.events("RootAdded")] == [1, 2]

    def test_subscribers_receive_batches(self):
        log = EventLog()
        batches = []
        log.subscribe(batches.append)
        spent = NullifierSpent(nullifier=7, circuit_id=1, shard=0)
        added = RootAdded(root=3, index=0)
        log.publish(spent, added)
        log.emit(added)
        assert batches == [(spent, added), (added,)]
        assert log.published == 3

    def test_failed_subscriber_keeps_batch_out_of_history(self):
        log = EventLog()

        def reject(events):
            raise StorageError("disk full")

        log.subscribe(reject)
        with pytest.raises(StorageError):
            log.publish(RootAdded(root=1, index=0))
        assert len(log) == 0
        assert log.published == 0

    def test_history_is_bounded(self):
        log = EventLog(history_limit=2)
        for index in range(5):
            log.emit(RootAdded(root=index, index=index))
        assert [e.root for e in log.events()] == [3, 4]
        assert log.published == 5
        with pytest.raises(ValueError):
            EventLog(history_limit=0)

    def test_to_dict(self):
        data = NullifierSpent(nullifier=2**200, circuit_id=2, shard=3).to_dict()
        assert data["kind"] == "NullifierSpent"
        assert data["nullifier"] == hex(2**200)
        assert data["shard"] == 3
        assert PoolPausedChanged(paused=False, admin=b"\xab" * 32).to_dict()["admin"] == "0x" + "ab" * 32


class TestTreasury:

    def test_release(self):
        treasury = InMemoryTreasury(100)
        treasury.release(b"\x01" * 32, 60)
        assert treasury.balance() == 40
        assert treasury.paid_to(b"\x01" * 32) == 60
        assert treasury.totals() == {"balance": 40, "paid_out": 60}

    def test_overdraw(self):
        treasury = InMemoryTreasury(10)
        with pytest.raises(InsufficientFundsError):
            treasury.release(b"\x01" * 32, 11)
        assert treasury.balance() == 10
        assert treasury.payouts == []

    def test_hold_then_cancel(self):
        treasury = InMemoryTreasury(100)
        hold = treasury.hold([(b"\x01" * 32, 30), (b"\x02" * 32, 0)])
        assert hold.total == 30
        assert len(hold.payouts) == 1
        assert treasury.balance() == 70
        treasury.cancel(hold)
        assert treasury.balance() == 100
        assert treasury.payouts == []

    def test_hold_then_settle(self):
        treasury = InMemoryTreasury(100)
        hold = treasury.hold([(b"\x01" * 32, 30), (b"\x02" * 32, 5)])
        treasury.settle(hold)
        assert treasury.balance() == 65
        assert treasury.paid_to(b"\x02" * 32) == 5
        with pytest.raises(InsufficientFundsError):
            treasury.hold([(b"\x01" * 32, 66)])
        assert treasury.balance() == 65

    def test_fund(self):
        treasury = InMemoryTreasury()
        assert treasury.fund(5) == 5
        with pytest.raises(ValueError):
            treasury.fund(0)


class TestAddresses:

    def test_addresses_are_distinct(self):
        addresses = {
            config_address(),
            roots_address(),
            treasury_address(),
            *(vk_address(c) for c in range(3)),
            *(nullifier_shard_address(s) for s in range(4)),
        }
        assert len(addresses) == 10
        assert all(len(a) == 32 for a in addresses)

    def test_length_prefix_separates_splits(self):
        assert derive_address(b"ab", b"c") != derive_address(b"a", b"bc")

    def test_deterministic(self):
        assert vk_address(1) == vk_address(1)


class TestEncoding:

    def test_hex_helpers(self):
        assert bytes_to_hex(b"\x01\x02") == "0x0102"
        assert hex_to_bytes("0x0102") == b"\x01\x02"
        assert hex_to_bytes("0102", expected_length=2) == b"\x01\x02"

    def test_hex_errors(self):
        with pytest.raises(ValueError):
            hex_to_bytes("0x123")
        with pytest.raises(ValueError):
            hex_to_bytes("0102", expected_length=32)

    def test_hex_to_field(self):
        assert hex_to_field("0x" + (5).to_bytes(32, "little").hex()) == 5
        with pytest.raises(ValueError):
            hex_to_field("05")
        with pytest.raises(InvalidFieldElementError):
            hex_to_field("ff" * 32)
