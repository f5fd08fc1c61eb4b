#!/usr/bin/env python3
"""Data models for the L1 etherman.

This module provides immutable data classes for the rollup events observed on
L1, the blocks that group them and the sequences submitted back to L1.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventOrder(str, Enum):
    """Kinds of rollup events tracked on L1, as recorded in the Order map."""

    GLOBAL_EXIT_ROOTS = "GlobalExitRoots"
    SEQUENCE_BATCHES = "SequenceBatches"
    FORCED_BATCHES = "ForcedBatches"
    VERIFY_BATCHES = "VerifyBatches"
    SEQUENCE_FORCE_BATCHES = "SequenceForceBatches"


@dataclass(frozen=True, slots=True)
class BlockHeader:
    """The L1 header fields needed to assemble blocks and timestamp events.

    Attributes:
        number: The block number
        hash: The block hash (with 0x prefix)
        parent_hash: Parent block hash (with 0x prefix)
        timestamp: Block timestamp (Unix timestamp)
    """

    number: int
    hash: str
    parent_hash: str
    timestamp: int

    @property
    def time(self) -> datetime:
        """Block timestamp as an aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    def __str__(self) -> str:
        return f"BlockHeader(number={self.number}, hash={self.hash[:10]}...)"


@dataclass(frozen=True, slots=True)
class GlobalExitRoot:
    """An UpdateGlobalExitRoot event from the exit root manager."""

    block_number: int
    mainnet_exit_root: str
    rollup_exit_root: str
    global_exit_root: str


@dataclass(frozen=True, slots=True)
class ForcedBatch:
    """A batch forced onto L1 by a user, bypassing the trusted sequencer.

    Attributes:
        block_number: L1 block where the ForceBatch event was emitted
        forced_batch_number: Sequence number assigned by the rollup contract
        sequencer: Address that forced the batch
        global_exit_root: Global exit root in effect when the batch was forced
        raw_txs_data: Raw L2 transactions, recovered from the forceBatch call data
        forced_at: Timestamp of the L1 block that forced the batch
    """

    block_number: int
    forced_batch_number: int
    sequencer: str
    global_exit_root: str
    raw_txs_data: bytes
    forced_at: datetime

    def __str__(self) -> str:
        return (
            f"ForcedBatch(number={self.forced_batch_number}, "
            f"block={self.block_number}, "
            f"sequencer={self.sequencer[:8]}...)"
        )


@dataclass(frozen=True, slots=True)
class BatchData:
    """One entry of a sequenceBatches call."""

    transactions: bytes
    global_exit_root: str
    timestamp: int
    min_forced_timestamp: int


@dataclass(frozen=True, slots=True)
class SequencedBatch:
    """A batch sequenced by the trusted sequencer (a virtual batch).

    Attributes:
        batch_number: L2 batch number, derived from the event and the call data
        coinbase: Sender of the sequencing transaction
        tx_hash: Hash of the L1 transaction that sequenced the batch
        nonce: Nonce of the sequencing transaction
        data: The batch payload exactly as submitted
    """

    batch_number: int
    coinbase: str
    tx_hash: str
    nonce: int
    data: BatchData


@dataclass(frozen=True, slots=True)
class VerifiedBatch:
    """A VerifyBatches or TrustedVerifyBatches event."""

    block_number: int
    batch_number: int
    aggregator: str
    state_root: str
    tx_hash: str


@dataclass(frozen=True, slots=True)
class ForcedBatchData:
    """One entry of a sequenceForceBatches call.

    ``min_forced_timestamp`` is the force time of the correlated ForcedBatch,
    which is not interchangeable with ``BatchData.min_forced_timestamp``.
    """

    transactions: bytes
    global_exit_root: str
    min_forced_timestamp: int


@dataclass(frozen=True, slots=True)
class SequencedForceBatch:
    """A previously forced batch that has now been sequenced.

    Attributes:
        batch_number: L2 batch number assigned to the forced batch
        coinbase: Sender of the sequencing transaction
        tx_hash: Hash of the L1 transaction that sequenced the batch
        timestamp: Timestamp of the L1 block containing the sequencing transaction
        nonce: Nonce of the sequencing transaction
        forced_batch_number: Number of the correlated ForcedBatch, if it was observed
        data: Forced batch payload
    """

    batch_number: int
    coinbase: str
    tx_hash: str
    timestamp: datetime
    nonce: int
    forced_batch_number: int | None
    data: ForcedBatchData


@dataclass(frozen=True, slots=True)
class OrderEntry:
    """Position of one decoded event inside its block.

    Attributes:
        name: Kind of the event
        pos: Index of the event within the Block field for its kind
    """

    name: EventOrder
    pos: int


EventPayload = (
    GlobalExitRoot
    | ForcedBatch
    | VerifiedBatch
    | tuple[SequencedBatch, ...]
    | tuple[SequencedForceBatch, ...]
)


@dataclass(frozen=True, slots=True)
class DecodedEvent:
    """A single decoded log, tagged with its kind and on-chain position."""

    kind: EventOrder
    header: BlockHeader
    log_index: int
    payload: EventPayload

    @property
    def block_number(self) -> int:
        return self.header.number


@dataclass(frozen=True, slots=True)
class Block:
    """An L1 block and every rollup event decoded from it.

    ``sequenced_batches`` and ``sequenced_force_batches`` hold one inner tuple
    per sequencing transaction, in the order the batches were packed.
    """

    block_number: int
    block_hash: str
    parent_hash: str
    received_at: datetime
    global_exit_roots: tuple[GlobalExitRoot, ...] = ()
    forced_batches: tuple[ForcedBatch, ...] = ()
    sequenced_batches: tuple[tuple[SequencedBatch, ...], ...] = ()
    verified_batches: tuple[VerifiedBatch, ...] = ()
    sequenced_force_batches: tuple[tuple[SequencedForceBatch, ...], ...] = ()

    def __str__(self) -> str:
        return (
            f"Block(number={self.block_number}, "
            f"hash={self.block_hash[:10]}..., "
            f"gers={len(self.global_exit_roots)}, "
            f"forced={len(self.forced_batches)}, "
            f"sequenced={len(self.sequenced_batches)}, "
            f"verified={len(self.verified_batches)}, "
            f"force_sequenced={len(self.sequenced_force_batches)})"
        )


Order = dict[str, list[OrderEntry]]


@dataclass(frozen=True, slots=True)
class Sequence:
    """A batch the trusted sequencer wants to submit to L1.

    Attributes:
        global_exit_root: Global exit root the batch is built against
        timestamp: Batch timestamp (Unix timestamp)
        txs: Raw, already encoded L2 transactions
    """

    global_exit_root: str
    timestamp: int
    txs: tuple[bytes, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "global_exit_root": self.global_exit_root,
            "timestamp": self.timestamp,
            "txs": len(self.txs),
        }
