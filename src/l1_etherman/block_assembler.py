#!/usr/bin/env python3
"""Block assembly for the L1 etherman.

Groups decoded events into Blocks and records, per block hash, the order in
which events of every kind appeared on chain.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .errors import DecodeError
from .models import (
    Block,
    BlockHeader,
    DecodedEvent,
    EventOrder,
    ForcedBatch,
    GlobalExitRoot,
    Order,
    OrderEntry,
    SequencedBatch,
    SequencedForceBatch,
    VerifiedBatch,
)

# Get logger for this module
logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _BlockAccumulator:
    """Mutable state for the block currently being assembled."""

    header: BlockHeader
    last_log_index: int = -1
    global_exit_roots: list[GlobalExitRoot] = field(default_factory=list)
    forced_batches: list[ForcedBatch] = field(default_factory=list)
    sequenced_batches: list[tuple[SequencedBatch, ...]] = field(default_factory=list)
    verified_batches: list[VerifiedBatch] = field(default_factory=list)
    sequenced_force_batches: list[tuple[SequencedForceBatch, ...]] = field(default_factory=list)
    order: list[OrderEntry] = field(default_factory=list)

    def field_for(self, kind: EventOrder) -> list:
        match kind:
            case EventOrder.GLOBAL_EXIT_ROOTS:
                return self.global_exit_roots
            case EventOrder.FORCED_BATCHES:
                return self.forced_batches
            case EventOrder.SEQUENCE_BATCHES:
                return self.sequenced_batches
            case EventOrder.VERIFY_BATCHES:
                return self.verified_batches
            case EventOrder.SEQUENCE_FORCE_BATCHES:
                return self.sequenced_force_batches
        raise DecodeError(f"Unknown event kind {kind!r}")

    def freeze(self) -> Block:
        return Block(
            block_number=self.header.number,
            block_hash=self.header.hash,
            parent_hash=self.header.parent_hash,
            received_at=self.header.time,
            global_exit_roots=tuple(self.global_exit_roots),
            forced_batches=tuple(self.forced_batches),
            sequenced_batches=tuple(self.sequenced_batches),
            verified_batches=tuple(self.verified_batches),
            sequenced_force_batches=tuple(self.sequenced_force_batches)
        )


class BlockAssembler:
    """Builds the Block list and Order map from an ordered event stream.

    Events must arrive in ascending (block number, log index) order. Each
    event is appended to the field for its kind and gets one OrderEntry, so
    the Order of a block interleaves kinds exactly as their logs did.
    """

    def __init__(self) -> None:
        self.blocks: list[Block] = []
        self.order: Order = {}
        self._current: _BlockAccumulator | None = None

    def add(self, event: DecodedEvent) -> None:
        """Append one decoded event to its block.

        Raises:
            DecodeError: If the event breaks the ascending (block, log index) order
        """
        current = self._current
        if current is None or event.block_number != current.header.number:
            if current is not None and event.block_number < current.header.number:
                raise DecodeError(
                    f"Event for block {event.block_number} arrived after block "
                    f"{current.header.number}"
                )
            self._flush()
            current = self._current = _BlockAccumulator(header=event.header)
        elif event.header.hash != current.header.hash:
            raise DecodeError(
                f"Block {event.block_number} seen with two hashes: "
                f"{current.header.hash} and {event.header.hash}"
            )

        if event.log_index <= current.last_log_index:
            raise DecodeError(
                f"Log index {event.log_index} in block {event.block_number} is not after "
                f"{current.last_log_index}"
            )
        current.last_log_index = event.log_index

        target = current.field_for(event.kind)
        target.append(event.payload)
        current.order.append(OrderEntry(name=event.kind, pos=len(target) - 1))

    def _flush(self) -> None:
        if self._current is None:
            return
        block = self._current.freeze()
        self.blocks.append(block)
        self.order[block.block_hash] = self._current.order
        logger.debug(f"Assembled {block}")
        self._current = None

    def finish(self) -> tuple[list[Block], Order]:
        """Flush the last block and return the Block list and Order map."""
        self._flush()
        return self.blocks, self.order

    @classmethod
    def assemble(cls, events: Iterable[DecodedEvent]) -> tuple[list[Block], Order]:
        """Assemble a complete, ordered event sequence in one call."""
        assembler = cls()
        for event in events:
            assembler.add(event)
        return assembler.finish()
