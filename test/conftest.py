#!/usr/bin/env python3
"""Shared fixtures: an in-memory L1 chain served through a mocked AsyncWeb3."""

from itertools import count
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode
from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3

from l1_etherman.contracts import (
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
)
from l1_etherman.etherman import Etherman
from l1_etherman.utils.contract_utility import ContractUtility

ROLLUP_ADDRESS = "0x610178dA211FEF7D417bC0e6FeD39F05609AD788"
GER_MANAGER_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
SEQUENCER_KEY = "0x" + "1" * 64
SEQUENCER_ADDRESS = Account.from_key(SEQUENCER_KEY).address
AGGREGATOR_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
GENESIS_TIMESTAMP = 1_700_000_000


def block_hash(number: int) -> HexBytes:
    return HexBytes(Web3.keccak(text=f"block-{number}"))


def root(label: str) -> bytes:
    """A deterministic 32-byte root for readable tests."""
    return bytes(Web3.keccak(text=label))


def uint_topic(value: int) -> HexBytes:
    return HexBytes(value.to_bytes(32, "big"))


def address_topic(address: str) -> HexBytes:
    return HexBytes(bytes(12) + bytes(HexBytes(address)))


async def resolved(value):
    return value


class FakeL1:
    """Blocks, transactions and logs of a small L1 chain.

    Every block from 0 to ``head`` exists; its timestamp is
    ``GENESIS_TIMESTAMP + 12 * number``.
    """

    def __init__(self, head: int = 100, chain_id: int = 1337) -> None:
        self.head = head
        self.chain_id = chain_id
        self.gas_price = 1_000_000_000
        self.logs: list[dict] = []
        self.transactions: dict[str, dict] = {}
        self.hash_overrides: dict[int, HexBytes] = {}
        self._log_index: dict[int, int] = {}
        self._tx_counter = count(1)

    def timestamp(self, number: int) -> int:
        return GENESIS_TIMESTAMP + 12 * number

    def get_block(self, block_identifier):
        number = self.head if block_identifier == "latest" else int(block_identifier)
        return {
            "number": number,
            "hash": self.hash_overrides.get(number, block_hash(number)),
            "parentHash": block_hash(number - 1) if number else HexBytes(bytes(32)),
            "timestamp": self.timestamp(number),
        }

    def get_logs(self, filter_params):
        return [
            log for log in self.logs
            if filter_params["fromBlock"] <= log["blockNumber"] <= filter_params["toBlock"]
        ]

    def get_transaction(self, tx_hash):
        return self.transactions[Web3.to_hex(HexBytes(tx_hash))]

    def _add_log(self, block: int, address: str, topics: list, data: bytes, tx_hash: str) -> dict:
        log_index = self._log_index.get(block, 0)
        self._log_index[block] = log_index + 1
        log = {
            "address": address,
            "topics": [HexBytes(topic) for topic in topics],
            "data": HexBytes(data),
            "blockNumber": block,
            "blockHash": block_hash(block),
            "transactionHash": HexBytes(tx_hash),
            "logIndex": log_index,
            "removed": False,
        }
        self.logs.append(log)
        self.logs.sort(key=lambda entry: (entry["blockNumber"], entry["logIndex"]))
        return log

    def _add_transaction(self, sender: str, nonce: int, data: bytes, to: str = ROLLUP_ADDRESS) -> str:
        tx_hash = Web3.to_hex(Web3.keccak(text=f"tx-{next(self._tx_counter)}"))
        self.transactions[tx_hash] = {
            "hash": HexBytes(tx_hash),
            "from": sender,
            "to": to,
            "nonce": nonce,
            "input": HexBytes(data),
        }
        return tx_hash

    def update_global_exit_root(self, block: int, mainnet: bytes, rollup: bytes) -> dict:
        tx_hash = Web3.to_hex(Web3.keccak(text=f"ger-{block}-{mainnet.hex()}"))
        return self._add_log(
            block, GER_MANAGER_ADDRESS, [UPDATE_GLOBAL_EXIT_ROOT_TOPIC, mainnet, rollup], b"", tx_hash
        )

    def force_batch(
        self,
        block: int,
        forced_batch_number: int,
        global_exit_root: bytes,
        transactions: bytes,
        sender: str = SEQUENCER_ADDRESS,
        nonce: int = 0
    ) -> dict:
        tx_hash = self._add_transaction(sender, nonce, FORCE_BATCH.encode_call(transactions, 10**18))
        data = encode(list(FORCE_BATCH_EVENT_DATA), [global_exit_root, sender, b""])
        return self._add_log(
            block, ROLLUP_ADDRESS, [FORCE_BATCH_TOPIC, uint_topic(forced_batch_number)], data, tx_hash
        )

    def sequence_batches(
        self,
        block: int,
        last_batch_number: int,
        batches: list[tuple[bytes, bytes, int, int]],
        sender: str = SEQUENCER_ADDRESS,
        nonce: int = 0
    ) -> dict:
        tx_hash = self._add_transaction(sender, nonce, SEQUENCE_BATCHES.encode_call(batches))
        return self._add_log(
            block, ROLLUP_ADDRESS, [SEQUENCE_BATCHES_TOPIC, uint_topic(last_batch_number)], b"", tx_hash
        )

    def sequence_force_batches(
        self,
        block: int,
        last_batch_number: int,
        batches: list[tuple[bytes, bytes, int]],
        sender: str = SEQUENCER_ADDRESS,
        nonce: int = 0
    ) -> dict:
        tx_hash = self._add_transaction(sender, nonce, SEQUENCE_FORCE_BATCHES.encode_call(batches))
        return self._add_log(
            block,
            ROLLUP_ADDRESS,
            [SEQUENCE_FORCE_BATCHES_TOPIC, uint_topic(last_batch_number)],
            b"",
            tx_hash
        )

    def verify_batches(
        self,
        block: int,
        batch_number: int,
        state_root: bytes,
        aggregator: str = AGGREGATOR_ADDRESS,
        trusted: bool = False
    ) -> dict:
        tx_hash = self._add_transaction(aggregator, 0, b"")
        topic = TRUSTED_VERIFY_BATCHES_TOPIC if trusted else VERIFY_BATCHES_TOPIC
        return self._add_log(
            block,
            ROLLUP_ADDRESS,
            [topic, uint_topic(batch_number), address_topic(aggregator)],
            encode(list(VERIFY_BATCHES_EVENT_DATA), [state_root]),
            tx_hash
        )


class FakeEth:
    """Stand-in for ``AsyncWeb3.eth`` backed by a FakeL1."""

    def __init__(self, chain: FakeL1) -> None:
        self.chain = chain
        self.get_block = AsyncMock(side_effect=chain.get_block)
        self.get_logs = AsyncMock(side_effect=chain.get_logs)
        self.get_transaction = AsyncMock(side_effect=chain.get_transaction)
        self.get_transaction_receipt = AsyncMock(return_value={"status": 1})
        self.get_transaction_count = AsyncMock(return_value=7)
        self.estimate_gas = AsyncMock(return_value=250_000)
        self.call = AsyncMock(return_value=HexBytes(b""))
        self.send_raw_transaction = AsyncMock(
            side_effect=lambda raw: HexBytes(Web3.keccak(raw))
        )

    @property
    def block_number(self):
        return resolved(self.chain.head)

    @property
    def chain_id(self):
        return resolved(self.chain.chain_id)

    @property
    def gas_price(self):
        return resolved(self.chain.gas_price)


@pytest.fixture
def chain():
    """An empty fake L1 chain with head at block 100."""
    return FakeL1()


@pytest.fixture
def w3(chain):
    """A mocked AsyncWeb3 whose eth namespace serves the fake chain."""
    mock = MagicMock()
    mock.eth = FakeEth(chain)
    mock.provider.disconnect = AsyncMock()
    return mock


@pytest.fixture
def contract_util(w3):
    """A ContractUtility over the fake chain, retrying without delay."""
    return ContractUtility(w3=w3, request_timeout=5, retry_count=2, retry_base_delay=0)


@pytest.fixture
def etherman(contract_util):
    """An Etherman wired to the fake chain."""
    return Etherman(
        contract_util=contract_util,
        rollup_address=ROLLUP_ADDRESS,
        global_exit_root_manager_address=GER_MANAGER_ADDRESS,
        max_blocks_per_query=10
    )
