import logging
from collections.abc import Iterable
from collections.abc import Sequence as SequenceOf

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.types import TxData, TxReceipt

from .auth_registry import AuthRegistry
from .block_assembler import BlockAssembler
from .block_range_scanner import BlockRangeScanner
from .config import EthermanConfig
from .contracts import (
    GET_LAST_GLOBAL_EXIT_ROOT,
    LAST_BATCH_SEQUENCED,
    LAST_FORCE_BATCH,
    LAST_VERIFIED_BATCH,
    ContractFunction,
)
from .event_decoder import EventDecoder, ScanContext
from .gas_price_oracle import (
    EtherscanGasPricer,
    EthGasStationGasPricer,
    GasPricer,
    GasPriceOracle,
    NodeGasPricer,
)
from .models import Block, ForcedBatch, Order, Sequence
from .transaction_sequencer import TransactionSequencer
from .utils.contract_utility import ContractUtility

# Get logger for this module
logger = logging.getLogger(__name__)


class Etherman:
    """
    L1 bridge of the rollup node: reads rollup events from L1 and submits
    sequenced batches back to it.
    """

    def __init__(
        self,
        contract_util: ContractUtility,
        rollup_address: str,
        global_exit_root_manager_address: str,
        gas_price_oracle: GasPriceOracle | None = None,
        auth_registry: AuthRegistry | None = None,
        max_blocks_per_query: int = 1000,
        max_range_splits: int = 16,
        chain_id: int | None = None
    ) -> None:
        """
        Initialize the Etherman with its collaborators.

        :param contract_util: L1 transport
        :param rollup_address: Address of the rollup contract
        :param global_exit_root_manager_address: Address of the exit root manager
        :param gas_price_oracle: Gas price source; defaults to the L1 node only
        :param auth_registry: Signer registry; a new empty one by default
        :param max_blocks_per_query: Largest block span per log query
        :param max_range_splits: Halvings allowed when the provider rejects a span
        :param chain_id: L1 chain ID, if already known
        """
        self.contract_util = contract_util
        self.rollup_address = Web3.to_checksum_address(rollup_address)
        self.global_exit_root_manager_address = Web3.to_checksum_address(
            global_exit_root_manager_address
        )
        self.auth_registry = auth_registry or AuthRegistry()
        self.gas_price_oracle = gas_price_oracle or GasPriceOracle(NodeGasPricer(contract_util))

        self.scanner = BlockRangeScanner(
            contract_util=contract_util,
            addresses=[self.rollup_address, self.global_exit_root_manager_address],
            max_blocks_per_query=max_blocks_per_query,
            max_range_splits=max_range_splits
        )
        self.decoder = EventDecoder()
        self.sequencer = TransactionSequencer(
            contract_util=contract_util,
            auth_registry=self.auth_registry,
            gas_price_oracle=self.gas_price_oracle,
            rollup_address=self.rollup_address,
            chain_id=chain_id
        )

    @classmethod
    def from_config(cls, config: EthermanConfig) -> "Etherman":
        """
        Build an Etherman and all its collaborators from configuration.

        :param config: Etherman configuration
        :return: Configured Etherman instance
        """
        contract_util = ContractUtility(
            config.l1_chain.rpc_url,
            request_timeout=config.scan.request_timeout,
            retry_count=config.scan.retry_count,
            retry_base_delay=config.scan.retry_base_delay,
            retry_max_delay=config.scan.retry_max_delay
        )

        secondaries: list[GasPricer] = []
        gas_config = config.gas_providers
        if gas_config.multi_gas_provider:
            if gas_config.etherscan_api_key:
                secondaries.append(EtherscanGasPricer(
                    gas_config.etherscan_api_key, timeout=gas_config.provider_timeout
                ))
            secondaries.append(EthGasStationGasPricer(timeout=gas_config.provider_timeout))
        logger.debug(f"Secondary gas providers: {[p.name for p in secondaries]}")

        return cls(
            contract_util=contract_util,
            rollup_address=config.l1_chain.rollup_address,
            global_exit_root_manager_address=config.l1_chain.global_exit_root_manager_address,
            gas_price_oracle=GasPriceOracle(
                NodeGasPricer(contract_util),
                secondaries,
                provider_timeout=gas_config.provider_timeout
            ),
            max_blocks_per_query=config.scan.max_blocks_per_query,
            max_range_splits=config.scan.max_range_splits,
            chain_id=config.l1_chain.chain_id
        )

    async def scan(
        self,
        from_block: int,
        to_block: int | None = None,
        forced_batches: Iterable[ForcedBatch] = ()
    ) -> tuple[list[Block], Order]:
        """
        Collect every rollup event in [from_block, to_block] grouped into blocks.

        The scan is all-or-nothing: any error discards what was assembled so far.

        :param from_block: First block to scan (inclusive)
        :param to_block: Last block to scan (inclusive); the latest block when None
        :param forced_batches: Unsequenced forced batches returned by earlier scans,
            used to correlate SequenceForceBatches events in this range
        :return: The blocks in ascending order and the per-block event order
        """
        if to_block is None:
            to_block = await self.contract_util.get_block_number()
        if to_block < from_block:
            logger.debug(f"Nothing to scan: block {from_block} is past {to_block}")
            return [], {}

        logs = await self.scanner.scan(from_block, to_block)

        context = ScanContext(self.contract_util, forced_batches)
        assembler = BlockAssembler()
        for log in logs:
            assembler.add(await self.decoder.decode(log, context))

        blocks, order = assembler.finish()
        logger.info(
            f"Scanned blocks {from_block}-{to_block}: {len(blocks)} blocks with rollup events"
        )
        return blocks, order

    async def sequence(self, signer_address: str, sequences: SequenceOf[Sequence]) -> str:
        """Submit the sequences in one sequenceBatches transaction; return its hash."""
        return await self.sequencer.sequence(signer_address, sequences)

    async def estimate_gas_sequence_batches(
        self, signer_address: str, sequences: SequenceOf[Sequence]
    ) -> int:
        return await self.sequencer.estimate_gas_sequence_batches(signer_address, sequences)

    def build_sequence_batches_tx_data(self, sequences: SequenceOf[Sequence]) -> tuple[str, bytes]:
        return self.sequencer.build_sequence_batches_tx_data(sequences)

    def add_or_replace_signer(self, address: str, credential: str | bytes | LocalAccount) -> None:
        """Register (or replace) the signer used for ``address``."""
        self.auth_registry.add_or_replace(address, credential)

    async def get_l1_gas_price(self) -> int:
        return await self.gas_price_oracle.get_l1_gas_price()

    async def get_latest_block_number(self) -> int:
        return await self.contract_util.get_block_number()

    async def get_latest_block_timestamp(self) -> int:
        block = await self.contract_util.get_block("latest")
        return int(block["timestamp"])

    async def _call_uint(self, function: ContractFunction) -> int:
        result = await self.contract_util.call(self.rollup_address, function.encode_call())
        (value,) = function.decode_output(result)
        return int(value)

    async def get_latest_batch_number(self) -> int:
        """Number of the last batch sequenced on L1."""
        return await self._call_uint(LAST_BATCH_SEQUENCED)

    async def get_latest_verified_batch_number(self) -> int:
        """Number of the last batch verified on L1."""
        return await self._call_uint(LAST_VERIFIED_BATCH)

    async def get_last_forced_batch_number(self) -> int:
        return await self._call_uint(LAST_FORCE_BATCH)

    async def get_last_global_exit_root(self) -> str:
        result = await self.contract_util.call(
            self.global_exit_root_manager_address, GET_LAST_GLOBAL_EXIT_ROOT.encode_call()
        )
        (root,) = GET_LAST_GLOBAL_EXIT_ROOT.decode_output(result)
        return Web3.to_hex(root)

    async def get_tx(self, tx_hash: str) -> TxData:
        return await self.contract_util.get_transaction(tx_hash)

    async def get_tx_receipt(self, tx_hash: str) -> TxReceipt:
        return await self.contract_util.get_transaction_receipt(tx_hash)

    async def close(self) -> None:
        """Release the L1 connection."""
        await self.contract_util.close()
