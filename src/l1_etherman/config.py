#!/usr/bin/env python3
"""Configuration management for the L1 etherman.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from urllib.parse import urlparse

from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)


def _checksum(value: str, name: str, env_var: str) -> str:
    """Validate an address and return its checksummed form."""
    if not value:
        raise ValueError(f"{name} is required ({env_var})")
    if not Web3.is_address(value):
        raise ValueError(f"Invalid {name}: {value}")
    return Web3.to_checksum_address(value)


@dataclass(frozen=True, slots=True)
class L1ChainConfig:
    """Configuration for the L1 chain and the rollup contracts deployed on it.

    Attributes:
        rpc_url: HTTP(S) RPC endpoint for L1
        rollup_address: Checksummed address of the rollup (proof of efficiency) contract
        global_exit_root_manager_address: Checksummed address of the exit root manager
        chain_id: Chain ID (fetched from RPC, not configured)
    """

    rpc_url: str
    rollup_address: str
    global_exit_root_manager_address: str
    chain_id: int | None = None  # Set after connecting to RPC

    def __post_init__(self) -> None:
        """Validate L1 chain configuration."""
        if not self.rpc_url:
            raise ValueError("L1 RPC URL is required (L1_RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https', 'ws', 'wss'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. "
                "Expected http, https, ws, or wss"
            )

        # Use object.__setattr__ since dataclass is frozen
        object.__setattr__(
            self,
            'rollup_address',
            _checksum(self.rollup_address, "rollup contract address", "ROLLUP_ADDRESS"),
        )
        object.__setattr__(
            self,
            'global_exit_root_manager_address',
            _checksum(
                self.global_exit_root_manager_address,
                "global exit root manager address",
                "GLOBAL_EXIT_ROOT_MANAGER_ADDRESS",
            ),
        )


@dataclass(frozen=True, slots=True)
class ScanConfig:
    """Configuration for log scanning and RPC retries."""
    max_blocks_per_query: int = 1000  # provider-imposed span limit
    max_range_splits: int = 16  # halvings allowed per sub-range
    request_timeout: int = 30  # per-request timeout in seconds
    retry_count: int = 3  # retries for transient fetch errors
    retry_base_delay: float = 1.0  # seconds, doubled on every retry
    retry_max_delay: float = 30.0

    def __post_init__(self) -> None:
        """Validate scan configuration."""
        if self.max_blocks_per_query <= 0:
            raise ValueError(
                f"Max blocks per query must be positive, got {self.max_blocks_per_query}"
            )
        if self.max_blocks_per_query > 100_000:
            raise ValueError(
                f"Max blocks per query too high (max 100000), got {self.max_blocks_per_query}"
            )

        if not 0 <= self.max_range_splits <= 64:
            raise ValueError(
                f"Max range splits must be between 0 and 64, got {self.max_range_splits}"
            )

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")

        if self.retry_count < 0:
            raise ValueError(f"Retry count must be non-negative, got {self.retry_count}")
        if self.retry_count > 10:
            raise ValueError(f"Retry count too high (max 10), got {self.retry_count}")

        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            raise ValueError("Retry delays must be non-negative")


@dataclass(frozen=True, slots=True)
class GasProviderConfig:
    """Configuration for the gas price providers.

    Attributes:
        multi_gas_provider: Query secondary price services besides the L1 node
        etherscan_api_key: API key for the Etherscan gas tracker (optional)
        provider_timeout: Timeout for each secondary provider in seconds
    """

    multi_gas_provider: bool = False
    etherscan_api_key: str | None = None
    provider_timeout: float = 5.0

    def __post_init__(self) -> None:
        if self.provider_timeout <= 0:
            raise ValueError(
                f"Gas provider timeout must be positive, got {self.provider_timeout}"
            )


@dataclass(frozen=True, slots=True)
class EthermanConfig:
    """Main configuration for the L1 etherman.

    Attributes:
        l1_chain: Configuration for the L1 chain and rollup contracts
        scan: Configuration for log scanning and retries
        gas_providers: Configuration for gas price providers
    """

    l1_chain: L1ChainConfig
    scan: ScanConfig = field(default_factory=ScanConfig)
    gas_providers: GasProviderConfig = field(default_factory=GasProviderConfig)

    @classmethod
    def from_env(cls) -> "EthermanConfig":
        """Load configuration from environment variables.

        Returns:
            EthermanConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        rpc_url = os.environ.get("L1_RPC_URL", "")
        if not rpc_url:
            raise ValueError(
                "L1_RPC_URL environment variable is required. "
                "Example: https://ethereum-sepolia.publicnode.com"
            )

        rollup_address = os.environ.get("ROLLUP_ADDRESS", "")
        if not rollup_address:
            raise ValueError(
                "ROLLUP_ADDRESS environment variable is required. "
                "This should be the rollup (proof of efficiency) contract address."
            )

        ger_manager_address = os.environ.get("GLOBAL_EXIT_ROOT_MANAGER_ADDRESS", "")
        if not ger_manager_address:
            raise ValueError(
                "GLOBAL_EXIT_ROOT_MANAGER_ADDRESS environment variable is required. "
                "This should be the global exit root manager contract address."
            )

        l1_chain = L1ChainConfig(
            rpc_url=rpc_url,
            rollup_address=rollup_address,
            global_exit_root_manager_address=ger_manager_address
        )

        try:
            scan = ScanConfig(
                max_blocks_per_query=int(os.environ.get("MAX_BLOCKS_PER_QUERY", "1000")),
                max_range_splits=int(os.environ.get("MAX_RANGE_SPLITS", "16")),
                request_timeout=int(os.environ.get("REQUEST_TIMEOUT", "30")),
                retry_count=int(os.environ.get("RETRY_COUNT", "3"))
            )
            gas_providers = GasProviderConfig(
                multi_gas_provider=os.environ.get("MULTI_GAS_PROVIDER", "false").lower()
                in ("1", "true", "yes"),
                etherscan_api_key=os.environ.get("ETHERSCAN_API_KEY") or None,
                provider_timeout=float(os.environ.get("GAS_PROVIDER_TIMEOUT", "5"))
            )
        except ValueError as e:
            raise ValueError(f"Invalid numeric configuration value: {e}") from e

        return cls(l1_chain=l1_chain, scan=scan, gas_providers=gas_providers)

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("L1 Etherman Configuration")
        logger.info("=" * 60)

        logger.info("L1 Chain:")
        logger.info(f"  RPC URL: {self.l1_chain.rpc_url}")
        logger.info(f"  Rollup: {self.l1_chain.rollup_address}")
        logger.info(f"  Exit Root Manager: {self.l1_chain.global_exit_root_manager_address}")
        if self.l1_chain.chain_id:
            logger.info(f"  Chain ID: {self.l1_chain.chain_id}")

        logger.info("Scan Settings:")
        logger.info(f"  Max Blocks Per Query: {self.scan.max_blocks_per_query}")
        logger.info(f"  Max Range Splits: {self.scan.max_range_splits}")
        logger.info(f"  Request Timeout: {self.scan.request_timeout} seconds")
        logger.info(f"  Retry Count: {self.scan.retry_count}")

        logger.info("Gas Providers:")
        logger.info(f"  Multi Provider: {self.gas_providers.multi_gas_provider}")
        logger.info(
            f"  Etherscan Key: {'[CONFIGURED]' if self.gas_providers.etherscan_api_key else '[NOT SET]'}"
        )

        logger.info("=" * 60)

    def with_chain_id(self, chain_id: int) -> "EthermanConfig":
        """Create a new config with the chain ID set.

        Since the config is frozen, a new instance is created to record the
        chain ID after connecting to the RPC.
        """
        return replace(self, l1_chain=replace(self.l1_chain, chain_id=chain_id))
