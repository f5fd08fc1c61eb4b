#!/usr/bin/env python3
"""Entry point for the L1 etherman.

Runs a single scan of the rollup contracts on L1 and logs every block that
carries rollup events, in the order the node would apply them.
"""

import argparse
import asyncio
import logging
import os
import sys

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from l1_etherman.config import EthermanConfig
from l1_etherman.errors import EthermanError
from l1_etherman.etherman import Etherman


async def run_scan(config: EthermanConfig, from_block: int, to_block: int | None) -> None:
    """Scan [from_block, to_block] once and log the result."""
    etherman: Etherman = Etherman.from_config(config)
    try:
        blocks, order = await etherman.scan(from_block, to_block)
        for block in blocks:
            entries = ", ".join(
                f"{entry.name.value}[{entry.pos}]" for entry in order[block.block_hash]
            )
            logger.info(f"{block}: {entries}")
        logger.info(f"=== Scan complete: {len(blocks)} blocks ===")
    finally:
        await etherman.close()


async def main() -> None:
    """Main entry point for the L1 etherman.

    Parses startup arguments, loads configuration from environment and runs
    one scan.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="L1 Etherman - Scan rollup events on L1",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  L1_RPC_URL                       - RPC endpoint for L1
  ROLLUP_ADDRESS                   - Rollup contract address
  GLOBAL_EXIT_ROOT_MANAGER_ADDRESS - Global exit root manager address
  MAX_BLOCKS_PER_QUERY             - Block span per log query (default: 1000)
  MAX_RANGE_SPLITS                 - Halvings on oversized ranges (default: 16)
  REQUEST_TIMEOUT                  - Per-request timeout in seconds (default: 30)
  RETRY_COUNT                      - Retries for idempotent reads (default: 3)
  MULTI_GAS_PROVIDER               - Also query secondary gas services (default: false)
  ETHERSCAN_API_KEY                - Enables the Etherscan gas provider
  GAS_PROVIDER_TIMEOUT             - Secondary gas provider timeout (default: 5)
  LOG_LEVEL                        - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--from-block",
        type=int,
        required=True,
        help="First L1 block to scan (inclusive)"
    )
    parser.add_argument(
        "--to-block",
        type=int,
        default=None,
        help="Last L1 block to scan (inclusive, default: latest)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)

    logger.info("=== L1 Etherman Starting ===")
    logger.info("Loading configuration from environment...")

    try:
        config: EthermanConfig = EthermanConfig.from_env()
        config.log_config()
        await run_scan(config, args.from_block, args.to_block)

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - L1_RPC_URL: RPC endpoint for L1")
        logger.error("  - ROLLUP_ADDRESS: Rollup contract address")
        logger.error("  - GLOBAL_EXIT_ROOT_MANAGER_ADDRESS: Global exit root manager address")
        sys.exit(1)

    except EthermanError as e:
        logger.error(f"Scan failed: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("\nReceived interrupt signal, shutting down gracefully...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
