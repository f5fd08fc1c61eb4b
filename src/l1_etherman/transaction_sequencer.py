#!/usr/bin/env python3
"""Sequence batch submission for the L1 etherman.

This module builds, signs and submits the sequenceBatches transaction that
carries the trusted sequencer's batches to the rollup contract on L1.
"""

import logging
from collections.abc import Sequence as SequenceOf

from hexbytes import HexBytes
from web3 import Web3
from web3.types import TxParams, Wei

from .auth_registry import AuthRegistry
from .contracts import SEQUENCE_BATCHES
from .gas_price_oracle import GasPriceOracle
from .models import Sequence
from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)


class TransactionSequencer:
    """Submits sequences of L2 batches to the rollup contract."""

    def __init__(
        self,
        contract_util: ContractUtility,
        auth_registry: AuthRegistry,
        gas_price_oracle: GasPriceOracle,
        rollup_address: str,
        chain_id: int | None = None
    ) -> None:
        """
        Initialize the TransactionSequencer.

        Args:
            contract_util: L1 transport
            auth_registry: Registry the signing account is resolved from
            gas_price_oracle: Source of the gas price for every submission
            rollup_address: Address of the rollup contract
            chain_id: L1 chain ID; fetched from the node on first use when omitted
        """
        self.contract_util = contract_util
        self.auth_registry = auth_registry
        self.gas_price_oracle = gas_price_oracle
        self.rollup_address: str = Web3.to_checksum_address(rollup_address)
        self.chain_id = chain_id

    def build_sequence_batches_tx_data(self, sequences: SequenceOf[Sequence]) -> tuple[str, bytes]:
        """
        Encode a sequenceBatches call for the given sequences.

        Each sequence becomes one batch whose transactions are the
        concatenation of its raw L2 transactions. Batches sent by the trusted
        sequencer do not include forced transactions, so their
        min-forced-timestamp is zero.

        Returns:
            Tuple of (rollup contract address, call data)
        """
        if not sequences:
            raise ValueError("At least one sequence is required")

        batches = [
            (
                b"".join(bytes(tx) for tx in sequence.txs),
                bytes(HexBytes(sequence.global_exit_root)),
                sequence.timestamp,
                0,
            )
            for sequence in sequences
        ]
        return self.rollup_address, SEQUENCE_BATCHES.encode_call(batches)

    async def _chain_id(self) -> int:
        if self.chain_id is None:
            self.chain_id = await self.contract_util.get_chain_id()
        return self.chain_id

    async def estimate_gas_sequence_batches(
        self, signer_address: str, sequences: SequenceOf[Sequence]
    ) -> int:
        """Estimate the gas a sequenceBatches transaction would use."""
        account = self.auth_registry.get(signer_address)
        to, data = self.build_sequence_batches_tx_data(sequences)
        return await self.contract_util.estimate_gas({
            'from': account.address,
            'to': to,
            'data': HexBytes(data),
            'value': Wei(0)
        })

    async def sequence(self, signer_address: str, sequences: SequenceOf[Sequence]) -> str:
        """
        Sign and submit one sequenceBatches transaction carrying all sequences.

        The transaction is not awaited; its effect is observed later when the
        SequenceBatches event is scanned.

        Args:
            signer_address: Address of a signer registered in the AuthRegistry
            sequences: Batches to sequence, in order

        Returns:
            Hash of the submitted transaction (with 0x prefix)

        Raises:
            SignerNotFoundError: If no signer is registered for the address
            ValueError: If no sequences are given
            TransportError: If any RPC step fails
        """
        # Resolve the signer before touching the network
        account = self.auth_registry.get(signer_address)
        to, data = self.build_sequence_batches_tx_data(sequences)

        logger.info(f"Sequencing {len(sequences)} batches from {account.address}")

        gas_price = await self.gas_price_oracle.get_l1_gas_price()
        nonce = await self.contract_util.get_transaction_count(account.address, "pending")
        chain_id = await self._chain_id()

        tx_params: TxParams = {
            'from': account.address,
            'to': to,
            'data': HexBytes(data),
            'value': Wei(0),
            'nonce': nonce,
            'gasPrice': Wei(gas_price),
            'chainId': chain_id
        }
        tx_params['gas'] = await self.contract_util.estimate_gas(tx_params)
        logger.debug(
            f"sequenceBatches tx: nonce={nonce}, gas={tx_params['gas']}, gasPrice={gas_price}"
        )

        # The sender is implied by the signing key
        unsigned = {key: value for key, value in tx_params.items() if key != 'from'}
        signed = account.sign_transaction(unsigned)
        tx_hash: HexBytes = await self.contract_util.send_raw_transaction(signed.raw_transaction)

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"✓ sequenceBatches transaction submitted: {tx_hash_hex}")
        return tx_hash_hex
