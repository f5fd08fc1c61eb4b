#!/usr/bin/env python3
"""Event decoding for the L1 etherman.

This module turns raw rollup logs into typed events. Some events only carry a
summary in the log, so the decoder also fetches the originating transaction
and decodes its call data.
"""

import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from hexbytes import HexBytes
from web3 import Web3
from web3.types import TxData

from .contracts import (
    FORCE_BATCH,
    FORCE_BATCH_EVENT_DATA,
    FORCE_BATCH_TOPIC,
    SEQUENCE_BATCHES,
    SEQUENCE_BATCHES_TOPIC,
    SEQUENCE_FORCE_BATCHES,
    SEQUENCE_FORCE_BATCHES_TOPIC,
    TRUSTED_VERIFY_BATCHES_TOPIC,
    UPDATE_GLOBAL_EXIT_ROOT_TOPIC,
    VERIFY_BATCHES_EVENT_DATA,
    VERIFY_BATCHES_TOPIC,
    decode_event_data,
)
from .errors import DecodeError
from .models import (
    BatchData,
    BlockHeader,
    DecodedEvent,
    EventOrder,
    EventPayload,
    ForcedBatch,
    ForcedBatchData,
    GlobalExitRoot,
    SequencedBatch,
    SequencedForceBatch,
    VerifiedBatch,
)
from .utils.contract_utility import ContractUtility

# Get logger for this module
logger = logging.getLogger(__name__)


def parse_event_topic_as_int(topic: Any) -> int:
    """
    Parse an event topic (bytes or hex string) as an integer.

    Topics come as bytes/HexBytes from web3 and as hex strings from raw
    JSON-RPC payloads.
    """
    if isinstance(topic, bytes):
        return int.from_bytes(topic, byteorder='big')
    elif isinstance(topic, str):
        hex_str = topic[2:] if topic.startswith('0x') else topic
        return int(hex_str, 16) if hex_str else 0
    raise DecodeError(f"Unsupported topic type: {type(topic).__name__}")


def parse_event_topic_as_address(topic: Any) -> str:
    """Parse an indexed address topic (left-padded to 32 bytes)."""
    raw = bytes(HexBytes(topic))
    if len(raw) != 32:
        raise DecodeError(f"Address topic must be 32 bytes, got {len(raw)}")
    return Web3.to_checksum_address(raw[-20:])


@dataclass(frozen=True, slots=True)
class RawLog:
    """The fields of a log entry the decoder relies on, normalized."""

    topics: tuple[bytes, ...]
    data: bytes
    block_number: int
    block_hash: str
    transaction_hash: str
    log_index: int

    @classmethod
    def from_log(cls, log: Any) -> "RawLog":
        """Normalize a web3 LogReceipt, a raw JSON-RPC dict or an attribute object.

        Raises:
            DecodeError: If a required field is missing or malformed
        """
        try:
            if hasattr(log, 'get'):
                fields = {name: log.get(name) for name in (
                    'topics', 'data', 'blockNumber', 'blockHash', 'transactionHash', 'logIndex'
                )}
            else:
                fields = {name: getattr(log, name, None) for name in (
                    'topics', 'data', 'blockNumber', 'blockHash', 'transactionHash', 'logIndex'
                )}

            missing = [name for name, value in fields.items() if value is None]
            if missing:
                raise DecodeError(f"Log is missing fields: {', '.join(missing)}")

            return cls(
                topics=tuple(bytes(HexBytes(topic)) for topic in fields['topics']),
                data=bytes(HexBytes(fields['data'])),
                block_number=_as_int(fields['blockNumber']),
                block_hash=Web3.to_hex(HexBytes(fields['blockHash'])),
                transaction_hash=Web3.to_hex(HexBytes(fields['transactionHash'])),
                log_index=_as_int(fields['logIndex'])
            )
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Malformed log entry: {e}") from e

    def require_topics(self, count: int) -> None:
        if len(self.topics) < count:
            raise DecodeError(
                f"Expected at least {count} topics in log {self.transaction_hash}"
                f"#{self.log_index}, got {len(self.topics)}"
            )


def _as_int(value: Any) -> int:
    # JSON-RPC payloads carry quantities as hex strings
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


class ForcedBatchIndex:
    """Forced batches observed during one scan that are not yet sequenced.

    Correlation assumes every forced batch that gets sequenced was discovered
    in the same scan, or was passed in by the caller from an earlier scan.
    """

    def __init__(self, forced_batches: Iterable[ForcedBatch] = ()) -> None:
        self._pending: dict[int, ForcedBatch] = {}
        for forced_batch in forced_batches:
            self.add(forced_batch)

    def add(self, forced_batch: ForcedBatch) -> None:
        self._pending[forced_batch.forced_batch_number] = forced_batch

    def take_match(self, global_exit_root: str, min_forced_timestamp: int) -> ForcedBatch | None:
        """Consume the lowest-numbered pending forced batch matching the sequenced entry."""
        for number in sorted(self._pending):
            forced_batch = self._pending[number]
            if (
                forced_batch.global_exit_root == global_exit_root
                and int(forced_batch.forced_at.timestamp()) == min_forced_timestamp
            ):
                return self._pending.pop(number)
        return None

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, forced_batch_number: int) -> bool:
        return forced_batch_number in self._pending


class ScanContext:
    """Per-scan state shared by the decoder: RPC caches and the forced batch index.

    A new context is created for every scan call; nothing in it outlives the scan.
    """

    def __init__(
        self,
        contract_util: ContractUtility,
        forced_batches: Iterable[ForcedBatch] = ()
    ) -> None:
        self.contract_util = contract_util
        self.forced_batches = ForcedBatchIndex(forced_batches)
        self._headers: dict[int, BlockHeader] = {}
        self._transactions: dict[str, TxData] = {}

    async def get_header(self, block_number: int) -> BlockHeader:
        if block_number not in self._headers:
            block = await self.contract_util.get_block(block_number)
            try:
                self._headers[block_number] = BlockHeader(
                    number=int(block["number"]),
                    hash=Web3.to_hex(HexBytes(block["hash"])),
                    parent_hash=Web3.to_hex(HexBytes(block["parentHash"])),
                    timestamp=int(block["timestamp"])
                )
            except (KeyError, TypeError, ValueError) as e:
                raise DecodeError(f"Malformed block {block_number}: {e}") from e
        return self._headers[block_number]

    async def get_transaction(self, tx_hash: str) -> TxData:
        if tx_hash not in self._transactions:
            self._transactions[tx_hash] = await self.contract_util.get_transaction(tx_hash)
        return self._transactions[tx_hash]


Handler = Callable[[RawLog, BlockHeader, ScanContext], Awaitable[EventPayload]]


class EventDecoder:
    """Decodes rollup logs into typed events.

    Dispatch is by topic0. Each log yields exactly one DecodedEvent; any
    inconsistency raises DecodeError, and transport failures while fetching
    the originating transaction propagate unchanged.
    """

    def __init__(self) -> None:
        self._handlers: dict[bytes, tuple[EventOrder, Handler]] = {
            bytes(HexBytes(UPDATE_GLOBAL_EXIT_ROOT_TOPIC)): (
                EventOrder.GLOBAL_EXIT_ROOTS, self._decode_global_exit_root
            ),
            bytes(HexBytes(FORCE_BATCH_TOPIC)): (
                EventOrder.FORCED_BATCHES, self._decode_forced_batch
            ),
            bytes(HexBytes(SEQUENCE_BATCHES_TOPIC)): (
                EventOrder.SEQUENCE_BATCHES, self._decode_sequenced_batches
            ),
            bytes(HexBytes(VERIFY_BATCHES_TOPIC)): (
                EventOrder.VERIFY_BATCHES, self._decode_verified_batch
            ),
            bytes(HexBytes(TRUSTED_VERIFY_BATCHES_TOPIC)): (
                EventOrder.VERIFY_BATCHES, self._decode_verified_batch
            ),
            bytes(HexBytes(SEQUENCE_FORCE_BATCHES_TOPIC)): (
                EventOrder.SEQUENCE_FORCE_BATCHES, self._decode_sequenced_force_batches
            ),
        }

        # Metrics tracking
        self.events_decoded: Counter[EventOrder] = Counter()
        self.events_invalid = 0
        self.forced_batches_uncorrelated = 0

    async def decode(self, log: Any, context: ScanContext) -> DecodedEvent:
        """Decode one raw log into a DecodedEvent.

        Args:
            log: Raw log entry (web3 LogReceipt or JSON-RPC dict)
            context: Per-scan caches and forced batch index

        Returns:
            The decoded event, tagged with its kind, block header and log index

        Raises:
            DecodeError: If the log or its transaction cannot be decoded
            TransportError: If fetching the block or transaction failed
        """
        try:
            raw = RawLog.from_log(log)
            raw.require_topics(1)

            handler_entry = self._handlers.get(raw.topics[0])
            if handler_entry is None:
                raise DecodeError(f"Unknown event signature 0x{raw.topics[0].hex()}")
            kind, handler = handler_entry

            header = await context.get_header(raw.block_number)
            if header.hash != raw.block_hash:
                raise DecodeError(
                    f"Log block hash {raw.block_hash} does not match block "
                    f"{raw.block_number} hash {header.hash}; chain reorganized during scan"
                )

            payload = await handler(raw, header, context)
        except DecodeError:
            self.events_invalid += 1
            raise

        self.events_decoded[kind] += 1
        logger.debug(f"Decoded {kind.value} event at block {raw.block_number} index {raw.log_index}")
        return DecodedEvent(kind=kind, header=header, log_index=raw.log_index, payload=payload)

    async def _decode_global_exit_root(
        self, raw: RawLog, header: BlockHeader, context: ScanContext
    ) -> GlobalExitRoot:
        raw.require_topics(3)
        mainnet_exit_root, rollup_exit_root = raw.topics[1], raw.topics[2]
        return GlobalExitRoot(
            block_number=raw.block_number,
            mainnet_exit_root=Web3.to_hex(mainnet_exit_root),
            rollup_exit_root=Web3.to_hex(rollup_exit_root),
            global_exit_root=Web3.to_hex(Web3.keccak(mainnet_exit_root + rollup_exit_root))
        )

    async def _decode_forced_batch(
        self, raw: RawLog, header: BlockHeader, context: ScanContext
    ) -> ForcedBatch:
        raw.require_topics(2)
        last_global_exit_root, sequencer, _ = decode_event_data(FORCE_BATCH_EVENT_DATA, raw.data)

        # The log only carries the transactions when the batch was forced by a
        # contract, so they are always taken from the call data.
        tx = await context.get_transaction(raw.transaction_hash)
        transactions, _ = FORCE_BATCH.decode_call(_tx_input(tx))

        forced_batch = ForcedBatch(
            block_number=raw.block_number,
            forced_batch_number=parse_event_topic_as_int(raw.topics[1]),
            sequencer=Web3.to_checksum_address(sequencer),
            global_exit_root=Web3.to_hex(last_global_exit_root),
            raw_txs_data=bytes(transactions),
            forced_at=header.time
        )
        context.forced_batches.add(forced_batch)
        return forced_batch

    async def _decode_sequenced_batches(
        self, raw: RawLog, header: BlockHeader, context: ScanContext
    ) -> tuple[SequencedBatch, ...]:
        raw.require_topics(2)
        last_batch_number = parse_event_topic_as_int(raw.topics[1])

        tx = await context.get_transaction(raw.transaction_hash)
        (batches,) = SEQUENCE_BATCHES.decode_call(_tx_input(tx))
        first_batch_number = _first_batch_number(last_batch_number, len(batches), raw)
        coinbase, nonce = _sender(tx)

        return tuple(
            SequencedBatch(
                batch_number=first_batch_number + position,
                coinbase=coinbase,
                tx_hash=raw.transaction_hash,
                nonce=nonce,
                data=BatchData(
                    transactions=bytes(transactions),
                    global_exit_root=Web3.to_hex(global_exit_root),
                    timestamp=timestamp,
                    min_forced_timestamp=min_forced_timestamp
                )
            )
            for position, (transactions, global_exit_root, timestamp, min_forced_timestamp)
            in enumerate(batches)
        )

    async def _decode_verified_batch(
        self, raw: RawLog, header: BlockHeader, context: ScanContext
    ) -> VerifiedBatch:
        raw.require_topics(3)
        (state_root,) = decode_event_data(VERIFY_BATCHES_EVENT_DATA, raw.data)
        return VerifiedBatch(
            block_number=raw.block_number,
            batch_number=parse_event_topic_as_int(raw.topics[1]),
            aggregator=parse_event_topic_as_address(raw.topics[2]),
            state_root=Web3.to_hex(state_root),
            tx_hash=raw.transaction_hash
        )

    async def _decode_sequenced_force_batches(
        self, raw: RawLog, header: BlockHeader, context: ScanContext
    ) -> tuple[SequencedForceBatch, ...]:
        raw.require_topics(2)
        last_batch_number = parse_event_topic_as_int(raw.topics[1])

        tx = await context.get_transaction(raw.transaction_hash)
        (batches,) = SEQUENCE_FORCE_BATCHES.decode_call(_tx_input(tx))
        first_batch_number = _first_batch_number(last_batch_number, len(batches), raw)
        coinbase, nonce = _sender(tx)

        sequenced = []
        for position, (transactions, global_exit_root, min_forced_timestamp) in enumerate(batches):
            global_exit_root_hex = Web3.to_hex(global_exit_root)
            forced_batch = context.forced_batches.take_match(
                global_exit_root_hex, min_forced_timestamp
            )

            if forced_batch is not None:
                forced_batch_number: int | None = forced_batch.forced_batch_number
                data = ForcedBatchData(
                    transactions=forced_batch.raw_txs_data,
                    global_exit_root=forced_batch.global_exit_root,
                    min_forced_timestamp=int(forced_batch.forced_at.timestamp())
                )
            else:
                self.forced_batches_uncorrelated += 1
                logger.warning(
                    f"No observed forced batch matches batch {first_batch_number + position} "
                    f"sequenced in {raw.transaction_hash}; using call data"
                )
                forced_batch_number = None
                data = ForcedBatchData(
                    transactions=bytes(transactions),
                    global_exit_root=global_exit_root_hex,
                    min_forced_timestamp=min_forced_timestamp
                )

            sequenced.append(SequencedForceBatch(
                batch_number=first_batch_number + position,
                coinbase=coinbase,
                tx_hash=raw.transaction_hash,
                timestamp=header.time,
                nonce=nonce,
                forced_batch_number=forced_batch_number,
                data=data
            ))

        return tuple(sequenced)

    def get_metrics(self) -> dict[str, int]:
        """Get current decoding metrics."""
        metrics = {f"decoded_{kind.value}": count for kind, count in self.events_decoded.items()}
        metrics["events_invalid"] = self.events_invalid
        metrics["forced_batches_uncorrelated"] = self.forced_batches_uncorrelated
        return metrics


def _tx_input(tx: TxData) -> bytes:
    try:
        return bytes(HexBytes(tx["input"]))
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Transaction has no usable input: {e}") from e


def _sender(tx: TxData) -> tuple[str, int]:
    try:
        return Web3.to_checksum_address(tx["from"]), int(tx["nonce"])
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Transaction has no usable sender: {e}") from e


def _first_batch_number(last_batch_number: int, count: int, raw: RawLog) -> int:
    """The event carries the last batch number of the call; batches are consecutive."""
    if count == 0:
        raise DecodeError(f"Sequencing transaction {raw.transaction_hash} carries no batches")
    first = last_batch_number - count + 1
    if first < 0:
        raise DecodeError(
            f"Event batch number {last_batch_number} is lower than the "
            f"{count} batches sequenced in {raw.transaction_hash}"
        )
    return first
