#!/usr/bin/env python3
"""Unit tests for the EventDecoder module."""

from datetime import datetime, timezone

import pytest
from hexbytes import HexBytes
from web3 import Web3

from l1_etherman.contracts import SEQUENCE_BATCHES
from l1_etherman.errors import DecodeError, TransportError
from l1_etherman.event_decoder import (
    EventDecoder,
    ForcedBatchIndex,
    RawLog,
    ScanContext,
    parse_event_topic_as_address,
    parse_event_topic_as_int,
)
from l1_etherman.models import EventOrder, ForcedBatch

from conftest import (
    AGGREGATOR_ADDRESS,
    GENESIS_TIMESTAMP,
    SEQUENCER_ADDRESS,
    address_topic,
    root,
)


@pytest.fixture
def decoder():
    return EventDecoder()


@pytest.fixture
def context(contract_util):
    return ScanContext(contract_util)


def make_forced_batch(number: int, ger: bytes, timestamp: int) -> ForcedBatch:
    return ForcedBatch(
        block_number=1,
        forced_batch_number=number,
        sequencer=SEQUENCER_ADDRESS,
        global_exit_root=Web3.to_hex(ger),
        raw_txs_data=f"forced-{number}".encode(),
        forced_at=datetime.fromtimestamp(timestamp, tz=timezone.utc)
    )


class TestTopicParsing:

    def test_int_from_bytes(self):
        assert parse_event_topic_as_int((42).to_bytes(32, "big")) == 42

    def test_int_from_hex_string(self):
        assert parse_event_topic_as_int("0x" + "00" * 31 + "2a") == 42

    def test_int_unsupported_type(self):
        with pytest.raises(DecodeError):
            parse_event_topic_as_int(42)

    def test_address(self):
        assert parse_event_topic_as_address(address_topic(AGGREGATOR_ADDRESS)) == AGGREGATOR_ADDRESS

    def test_address_wrong_length(self):
        with pytest.raises(DecodeError):
            parse_event_topic_as_address(b"\x01" * 20)


class TestRawLog:

    def test_from_json_rpc_dict(self):
        raw = RawLog.from_log({
            "topics": ["0x" + "11" * 32],
            "data": "0x",
            "blockNumber": "0x10",
            "blockHash": "0x" + "22" * 32,
            "transactionHash": "0x" + "33" * 32,
            "logIndex": "0x2",
        })

        assert raw.block_number == 16
        assert raw.log_index == 2
        assert raw.topics == (b"\x11" * 32,)
        assert raw.data == b""

    def test_missing_fields(self):
        with pytest.raises(DecodeError, match="blockHash"):
            RawLog.from_log({
                "topics": [], "data": "0x", "blockNumber": 1,
                "transactionHash": "0x" + "33" * 32, "logIndex": 0,
            })


class TestForcedBatchIndex:

    def test_takes_lowest_matching_number(self):
        ger = root("ger")
        index = ForcedBatchIndex([
            make_forced_batch(3, ger, 100),
            make_forced_batch(1, ger, 100),
            make_forced_batch(2, root("other"), 100),
        ])

        match = index.take_match(Web3.to_hex(ger), 100)

        assert match.forced_batch_number == 1
        assert 1 not in index
        assert len(index) == 2

    def test_no_match(self):
        index = ForcedBatchIndex([make_forced_batch(1, root("ger"), 100)])

        assert index.take_match(Web3.to_hex(root("ger")), 101) is None
        assert len(index) == 1


class TestEventDecoder:
    """Test suite for EventDecoder."""

    @pytest.mark.asyncio
    async def test_global_exit_root(self, decoder, context, chain):
        mainnet, rollup = root("mainnet"), root("rollup")
        log = chain.update_global_exit_root(5, mainnet, rollup)

        event = await decoder.decode(log, context)

        assert event.kind == EventOrder.GLOBAL_EXIT_ROOTS
        assert event.block_number == 5
        assert event.log_index == 0
        assert event.header.timestamp == GENESIS_TIMESTAMP + 60
        assert event.payload.mainnet_exit_root == Web3.to_hex(mainnet)
        assert event.payload.rollup_exit_root == Web3.to_hex(rollup)
        assert event.payload.global_exit_root == Web3.to_hex(Web3.keccak(mainnet + rollup))

    @pytest.mark.asyncio
    async def test_forced_batch_takes_transactions_from_call_data(self, decoder, context, chain):
        txs = b"\xf8\x6b" + bytes(range(200))
        log = chain.force_batch(7, forced_batch_number=4, global_exit_root=root("ger"), transactions=txs)

        event = await decoder.decode(log, context)

        forced_batch = event.payload
        assert event.kind == EventOrder.FORCED_BATCHES
        assert forced_batch.forced_batch_number == 4
        assert forced_batch.sequencer == SEQUENCER_ADDRESS
        assert forced_batch.global_exit_root == Web3.to_hex(root("ger"))
        assert forced_batch.raw_txs_data == txs
        assert forced_batch.forced_at == datetime.fromtimestamp(
            GENESIS_TIMESTAMP + 12 * 7, tz=timezone.utc
        )
        assert 4 in context.forced_batches

    @pytest.mark.asyncio
    async def test_sequenced_batches(self, decoder, context, chain):
        batches = [
            (b"\x01\x02", root("g1"), 1000, 0),
            (b"", root("g2"), 1001, 0),
            (b"\x03", root("g3"), 1002, 0),
        ]
        log = chain.sequence_batches(9, last_batch_number=12, batches=batches, nonce=5)

        event = await decoder.decode(log, context)

        assert event.kind == EventOrder.SEQUENCE_BATCHES
        assert [b.batch_number for b in event.payload] == [10, 11, 12]
        first = event.payload[0]
        assert first.coinbase == SEQUENCER_ADDRESS
        assert first.nonce == 5
        assert first.tx_hash == Web3.to_hex(log["transactionHash"])
        assert first.data.transactions == b"\x01\x02"
        assert first.data.global_exit_root == Web3.to_hex(root("g1"))
        assert first.data.timestamp == 1000
        assert event.payload[1].data.transactions == b""

    @pytest.mark.asyncio
    async def test_sequenced_batches_count_exceeds_event_number(self, decoder, context, chain):
        batches = [(b"", root("g"), 1000, 0)] * 3
        log = chain.sequence_batches(9, last_batch_number=1, batches=batches)

        with pytest.raises(DecodeError, match="lower than"):
            await decoder.decode(log, context)

    @pytest.mark.asyncio
    async def test_verified_batch(self, decoder, context, chain):
        log = chain.verify_batches(11, batch_number=12, state_root=root("state"))

        event = await decoder.decode(log, context)

        assert event.kind == EventOrder.VERIFY_BATCHES
        assert event.payload.batch_number == 12
        assert event.payload.aggregator == AGGREGATOR_ADDRESS
        assert event.payload.state_root == Web3.to_hex(root("state"))

    @pytest.mark.asyncio
    async def test_trusted_verified_batch(self, decoder, context, chain):
        log = chain.verify_batches(11, batch_number=13, state_root=root("s"), trusted=True)

        event = await decoder.decode(log, context)

        assert event.kind == EventOrder.VERIFY_BATCHES
        assert event.payload.batch_number == 13

    @pytest.mark.asyncio
    async def test_sequenced_force_batch_correlates_with_forced_batch(self, decoder, context, chain):
        txs = b"\xaa" * 40
        forced_log = chain.force_batch(3, forced_batch_number=1, global_exit_root=root("ger"), transactions=txs)
        forced_event = await decoder.decode(forced_log, context)
        forced_at = int(forced_event.payload.forced_at.timestamp())

        log = chain.sequence_force_batches(
            6, last_batch_number=20, batches=[(txs, root("ger"), forced_at)], nonce=2
        )
        event = await decoder.decode(log, context)

        (sequenced,) = event.payload
        assert event.kind == EventOrder.SEQUENCE_FORCE_BATCHES
        assert sequenced.batch_number == 20
        assert sequenced.forced_batch_number == 1
        assert sequenced.nonce == 2
        assert sequenced.data.transactions == txs
        assert sequenced.data.min_forced_timestamp == forced_at
        assert sequenced.timestamp == event.header.time
        assert len(context.forced_batches) == 0
        assert decoder.forced_batches_uncorrelated == 0

    @pytest.mark.asyncio
    async def test_sequenced_force_batch_uses_seeded_forced_batches(self, contract_util, decoder, chain):
        seeded = make_forced_batch(8, root("ger"), 5000)
        context = ScanContext(contract_util, [seeded])
        log = chain.sequence_force_batches(6, last_batch_number=3, batches=[(b"x", root("ger"), 5000)])

        event = await decoder.decode(log, context)

        assert event.payload[0].forced_batch_number == 8
        assert event.payload[0].data.transactions == seeded.raw_txs_data

    @pytest.mark.asyncio
    async def test_uncorrelated_sequenced_force_batch_falls_back_to_call_data(
        self, decoder, context, chain, caplog
    ):
        log = chain.sequence_force_batches(6, last_batch_number=3, batches=[(b"\x01", root("g"), 77)])

        event = await decoder.decode(log, context)

        (sequenced,) = event.payload
        assert sequenced.forced_batch_number is None
        assert sequenced.data.transactions == b"\x01"
        assert sequenced.data.min_forced_timestamp == 77
        assert decoder.forced_batches_uncorrelated == 1
        assert "No observed forced batch" in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_topic(self, decoder, context, chain):
        log = chain.update_global_exit_root(5, root("m"), root("r"))
        log["topics"][0] = HexBytes(Web3.keccak(text="Unrelated(uint256)"))

        with pytest.raises(DecodeError, match="Unknown event signature"):
            await decoder.decode(log, context)

        assert decoder.events_invalid == 1

    @pytest.mark.asyncio
    async def test_insufficient_topics(self, decoder, context, chain):
        log = chain.verify_batches(11, batch_number=12, state_root=root("state"))
        log["topics"] = log["topics"][:2]

        with pytest.raises(DecodeError, match="Expected at least 3 topics"):
            await decoder.decode(log, context)

    @pytest.mark.asyncio
    async def test_block_hash_mismatch(self, decoder, context, chain):
        log = chain.update_global_exit_root(5, root("m"), root("r"))
        chain.hash_overrides[5] = HexBytes(b"\x99" * 32)

        with pytest.raises(DecodeError, match="chain reorganized"):
            await decoder.decode(log, context)

    @pytest.mark.asyncio
    async def test_wrong_call_data(self, decoder, context, chain):
        log = chain.sequence_force_batches(6, last_batch_number=3, batches=[(b"\x01", root("g"), 77)])
        tx_hash = Web3.to_hex(log["transactionHash"])
        chain.transactions[tx_hash]["input"] = HexBytes(
            SEQUENCE_BATCHES.encode_call([(b"", root("g"), 1, 0)])
        )

        with pytest.raises(DecodeError, match="selector"):
            await decoder.decode(log, context)

    @pytest.mark.asyncio
    async def test_transaction_fetch_failure_propagates(self, decoder, context, chain, w3):
        log = chain.sequence_batches(9, last_batch_number=1, batches=[(b"", root("g"), 1, 0)])
        w3.eth.get_transaction.side_effect = OSError("connection refused")

        with pytest.raises(TransportError):
            await decoder.decode(log, context)

    @pytest.mark.asyncio
    async def test_headers_and_transactions_are_cached(self, decoder, context, chain, w3):
        chain.update_global_exit_root(5, root("m1"), root("r1"))
        chain.update_global_exit_root(5, root("m2"), root("r2"))

        for log in chain.logs:
            await decoder.decode(log, context)

        assert w3.eth.get_block.await_count == 1

    @pytest.mark.asyncio
    async def test_metrics_tracking(self, decoder, context, chain):
        await decoder.decode(chain.update_global_exit_root(5, root("m"), root("r")), context)
        await decoder.decode(chain.verify_batches(6, 1, root("s")), context)

        metrics = decoder.get_metrics()

        assert metrics["decoded_GlobalExitRoots"] == 1
        assert metrics["decoded_VerifyBatches"] == 1
        assert metrics["events_invalid"] == 0
