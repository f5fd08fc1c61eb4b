#!/usr/bin/env python3
"""Range-bounded log scanning for the L1 etherman.

Splits a block range into provider-sized windows and collects the logs of
every tracked rollup event, halving windows the provider rejects as too large.
"""

import logging
from collections import deque
from typing import Any

from web3 import Web3
from web3.types import FilterParams, LogReceipt

from .contracts import TRACKED_TOPICS
from .errors import RangeTooLargeError
from .utils.contract_utility import ContractUtility

# Get logger for this module
logger = logging.getLogger(__name__)


def log_position(log: LogReceipt) -> tuple[int, int]:
    """Sort key placing a log at its on-chain (block number, log index)."""
    return _quantity(log["blockNumber"]), _quantity(log["logIndex"])


def _quantity(value: Any) -> int:
    return int(value, 16) if isinstance(value, str) else int(value)


class BlockRangeScanner:
    """Collects the raw logs of all tracked events over a block range.

    Windows are queried in ascending order so the concatenated result keeps
    the native (block number, log index) order.
    """

    def __init__(
        self,
        contract_util: ContractUtility,
        addresses: list[str],
        max_blocks_per_query: int = 1000,
        max_range_splits: int = 16,
        topics: tuple[str, ...] = TRACKED_TOPICS
    ) -> None:
        """Initialize the BlockRangeScanner.

        Args:
            contract_util: L1 transport used for eth_getLogs
            addresses: Contract addresses whose logs are collected
            max_blocks_per_query: Largest block span sent in one query
            max_range_splits: How many times one window may be halved before failing
            topics: Event signatures (topic0) to collect
        """
        if max_blocks_per_query <= 0:
            raise ValueError(f"max_blocks_per_query must be positive, got {max_blocks_per_query}")

        self.contract_util = contract_util
        self.addresses = [Web3.to_checksum_address(address) for address in addresses]
        self.max_blocks_per_query = max_blocks_per_query
        self.max_range_splits = max_range_splits
        self.topics = list(topics)

    def partition(self, from_block: int, to_block: int) -> list[tuple[int, int]]:
        """Split [from_block, to_block] into consecutive windows of at most the query limit."""
        windows = []
        start = from_block
        while start <= to_block:
            end = min(start + self.max_blocks_per_query - 1, to_block)
            windows.append((start, end))
            start = end + 1
        return windows

    def _filter_params(self, from_block: int, to_block: int) -> FilterParams:
        return {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": self.addresses,
            "topics": [self.topics],
        }

    async def scan(self, from_block: int, to_block: int) -> list[LogReceipt]:
        """Return every tracked log in [from_block, to_block], in on-chain order.

        Raises:
            ValueError: If the range is inverted or negative
            RangeTooLargeError: If a window is still rejected after all allowed halvings
            TransportError: On any other RPC failure
        """
        if from_block < 0 or to_block < from_block:
            raise ValueError(f"Invalid block range [{from_block}, {to_block}]")

        windows = self.partition(from_block, to_block)
        logger.debug(
            f"Scanning blocks {from_block}-{to_block} in {len(windows)} windows "
            f"of up to {self.max_blocks_per_query} blocks"
        )

        logs: list[LogReceipt] = []
        for start, end in windows:
            logs.extend(await self._scan_window(start, end))

        logger.info(f"Found {len(logs)} rollup logs in blocks {from_block}-{to_block}")
        return logs

    async def _scan_window(self, from_block: int, to_block: int) -> list[LogReceipt]:
        """Fetch one window, halving it while the provider rejects the span.

        The work queue holds (start, end, depth) entries; a rejected entry is
        replaced by its two halves, left first, so output order is kept.
        """
        work: deque[tuple[int, int, int]] = deque([(from_block, to_block, 0)])
        collected: list[LogReceipt] = []

        while work:
            start, end, depth = work.popleft()
            try:
                window_logs = await self.contract_util.get_logs(self._filter_params(start, end))
            except RangeTooLargeError as e:
                if start == end or depth >= self.max_range_splits:
                    logger.error(
                        f"Blocks {start}-{end} still too large after {depth} splits"
                    )
                    raise RangeTooLargeError(
                        f"Provider rejected blocks {start}-{end} after {depth} splits: {e}"
                    ) from e

                mid = (start + end) // 2
                logger.warning(
                    f"Range {start}-{end} too large, splitting into "
                    f"{start}-{mid} and {mid + 1}-{end}"
                )
                work.appendleft((mid + 1, end, depth + 1))
                work.appendleft((start, mid, depth + 1))
                continue

            collected.extend(log for log in window_logs if not _is_removed(log))

        return sorted(collected, key=log_position)


def _is_removed(log: Any) -> bool:
    """Logs of blocks dropped by a reorg are flagged 'removed' by the node."""
    return bool(log.get("removed", False))
