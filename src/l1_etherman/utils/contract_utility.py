import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import Web3Exception, Web3RPCError
from web3.types import BlockData, FilterParams, LogReceipt, TxData, TxParams, TxReceipt

from ..errors import RangeTooLargeError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# JSON-RPC error code used by most providers for "query returned too many results"
LIMIT_EXCEEDED_CODE = -32005

RANGE_TOO_LARGE_MESSAGES: tuple[str, ...] = (
    "query returned more than",
    "block range",
    "range too large",
    "range is too large",
    "too many blocks",
    "response size exceeded",
    "log response size",
)


def is_range_too_large(error: Web3RPCError) -> bool:
    """Tell whether a JSON-RPC error means the log query span was too large."""
    rpc_response = getattr(error, "rpc_response", None) or {}
    rpc_error = rpc_response.get("error") if isinstance(rpc_response, dict) else None

    code = None
    message = str(error)
    if isinstance(rpc_error, dict):
        code = rpc_error.get("code")
        message = str(rpc_error.get("message", message))

    if code == LIMIT_EXCEEDED_CODE:
        return True
    message = message.lower()
    return any(pattern in message for pattern in RANGE_TOO_LARGE_MESSAGES)


class ContractUtility:
    """
    Utility for talking to the L1 node that hosts the rollup contracts.

    Every request runs under a timeout and its failures are mapped onto the
    etherman error types. Fetch-style requests are retried with exponential
    backoff; log queries and transaction submission are not.
    """

    def __init__(
        self,
        rpc_url: str = "",
        *,
        w3: AsyncWeb3 | None = None,
        request_timeout: float = 30,
        retry_count: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0
    ) -> None:
        """
        Initialize the ContractUtility.

        Args:
            rpc_url: RPC URL for L1 (required unless ``w3`` is given)
            w3: Pre-built AsyncWeb3 instance to use instead of connecting to ``rpc_url``
            request_timeout: Timeout for a single request in seconds
            retry_count: Retries for transient fetch errors
            retry_base_delay: First backoff delay in seconds, doubled on every retry
            retry_max_delay: Upper bound for the backoff delay
        """
        if w3 is None:
            if not rpc_url:
                raise ValueError("RPC URL is required")
            w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))

        self.rpc_url = rpc_url
        self.w3 = w3
        self.request_timeout = request_timeout
        self.retry_count = retry_count
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    async def _send(self, description: str, make_call: Callable[[], Awaitable[T]]) -> T:
        """Run one request under the timeout and classify its failure."""
        try:
            return await asyncio.wait_for(make_call(), timeout=self.request_timeout)
        except Web3RPCError as e:
            if is_range_too_large(e):
                raise RangeTooLargeError(f"{description} rejected: {e}") from e
            raise TransportError(f"{description} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"{description} timed out after {self.request_timeout}s"
            ) from e
        except (aiohttp.ClientError, OSError, Web3Exception) as e:
            raise TransportError(f"{description} failed: {e}") from e

    async def _request(
        self,
        description: str,
        make_call: Callable[[], Awaitable[T]],
        retry: bool = True
    ) -> T:
        """Run a request, retrying transient transport failures with backoff.

        ``asyncio.CancelledError`` is never caught, so cancellation aborts
        the retry loop immediately.
        """
        attempts = self.retry_count + 1 if retry else 1

        for attempt in range(1, attempts + 1):
            try:
                return await self._send(description, make_call)
            except RangeTooLargeError:
                raise
            except TransportError as e:
                if attempt >= attempts:
                    if retry:
                        logger.error(f"{description} failed after {attempts} attempts")
                    raise
                delay = min(self.retry_base_delay * (2 ** (attempt - 1)), self.retry_max_delay)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{attempts}): {e}. "
                    f"Retrying in {delay} seconds..."
                )
                await asyncio.sleep(delay)

        raise AssertionError("unreachable")

    async def get_block(self, block_identifier: int | str) -> BlockData:
        return await self._request(
            f"eth_getBlockByNumber({block_identifier})",
            lambda: self.w3.eth.get_block(block_identifier)
        )

    async def get_block_number(self) -> int:
        async def fetch() -> int:
            return await self.w3.eth.block_number
        return await self._request("eth_blockNumber", fetch)

    async def get_chain_id(self) -> int:
        async def fetch() -> int:
            return await self.w3.eth.chain_id
        return await self._request("eth_chainId", fetch)

    async def get_gas_price(self) -> int:
        async def fetch() -> int:
            return await self.w3.eth.gas_price
        return await self._request("eth_gasPrice", fetch)

    async def get_logs(self, filter_params: FilterParams) -> list[LogReceipt]:
        """Query logs once; span errors surface as RangeTooLargeError."""
        description = (
            f"eth_getLogs({filter_params.get('fromBlock')}..{filter_params.get('toBlock')})"
        )
        logs = await self._request(
            description,
            lambda: self.w3.eth.get_logs(filter_params),
            retry=False
        )
        return list(logs)

    async def get_transaction(self, tx_hash: str) -> TxData:
        return await self._request(
            f"eth_getTransactionByHash({tx_hash})",
            lambda: self.w3.eth.get_transaction(tx_hash)
        )

    async def get_transaction_receipt(self, tx_hash: str) -> TxReceipt:
        return await self._request(
            f"eth_getTransactionReceipt({tx_hash})",
            lambda: self.w3.eth.get_transaction_receipt(tx_hash)
        )

    async def get_transaction_count(self, address: str, block_identifier: str = "pending") -> int:
        return await self._request(
            f"eth_getTransactionCount({address})",
            lambda: self.w3.eth.get_transaction_count(address, block_identifier)
        )

    async def estimate_gas(self, tx: TxParams) -> int:
        return await self._request(
            "eth_estimateGas",
            lambda: self.w3.eth.estimate_gas(tx)
        )

    async def call(self, to: str, data: bytes, block_identifier: int | str = "latest") -> bytes:
        """Execute a read-only contract call and return the raw result."""
        result = await self._request(
            f"eth_call({to})",
            lambda: self.w3.eth.call({"to": to, "data": HexBytes(data)}, block_identifier)
        )
        return bytes(result)

    async def send_raw_transaction(self, raw_transaction: bytes) -> HexBytes:
        """Submit a signed transaction. Not retried: the caller decides."""
        return await self._request(
            "eth_sendRawTransaction",
            lambda: self.w3.eth.send_raw_transaction(raw_transaction),
            retry=False
        )

    async def close(self) -> None:
        """Release the provider session, if it holds one."""
        provider: Any = getattr(self.w3, "provider", None)
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is None:
            return
        try:
            await disconnect()
        except (aiohttp.ClientError, OSError) as e:
            logger.warning(f"Error during cleanup: {e}")
