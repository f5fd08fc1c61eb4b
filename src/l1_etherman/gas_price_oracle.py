#!/usr/bin/env python3
"""L1 gas price oracle.

Queries the L1 node and any configured secondary price services at the same
time and settles on the highest price. Only the node is mandatory; a
secondary service that fails or times out is left out of the result.
"""

import asyncio
import logging
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from .errors import EthermanError, TransportError
from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)

GWEI = Decimal(10) ** 9


def gwei_to_wei(value: Any) -> int:
    """Convert a gwei amount as returned by price services (str or number) to wei."""
    try:
        return int(Decimal(str(value)) * GWEI)
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid gwei amount: {value!r}") from e


class GasPricer(Protocol):
    """Anything that can suggest an L1 gas price in wei."""

    name: str

    async def suggest_gas_price(self) -> int:
        ...


class NodeGasPricer:
    """Gas price suggested by the L1 node itself (eth_gasPrice)."""

    name = "l1-node"

    def __init__(self, contract_util: ContractUtility) -> None:
        self.contract_util = contract_util

    async def suggest_gas_price(self) -> int:
        return await self.contract_util.get_gas_price()


class _HttpGasPricer:
    """Base for HTTP price services; one short-lived client per query."""

    name = "http"
    url = ""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 5.0
    ) -> None:
        """
        Args:
            transport: Optional httpx transport (used to stub the service in tests)
            timeout: HTTP timeout in seconds
        """
        self.transport = transport
        self.timeout = timeout

    def _params(self) -> dict[str, str]:
        return {}

    async def _get_json(self) -> Any:
        async with httpx.AsyncClient(transport=self.transport) as client:
            logger.debug(f"Querying gas price from {self.name}")
            response: httpx.Response = await client.get(
                self.url, params=self._params(), timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()

    def _extract(self, payload: Any) -> int:
        raise NotImplementedError

    async def suggest_gas_price(self) -> int:
        payload = await self._get_json()
        try:
            return self._extract(payload)
        except (AttributeError, KeyError, TypeError) as e:
            raise ValueError(f"Unexpected {self.name} response: {payload!r}") from e


class EtherscanGasPricer(_HttpGasPricer):
    """Etherscan gas tracker; uses the FastGasPrice estimate."""

    name = "etherscan"
    url = "https://api.etherscan.io/api"

    def __init__(self, api_key: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not api_key:
            raise ValueError("Etherscan API key is required")
        self.api_key = api_key

    def _params(self) -> dict[str, str]:
        return {"module": "gastracker", "action": "gasoracle", "apikey": self.api_key}

    def _extract(self, payload: Any) -> int:
        # Etherscan reports errors with status "0" and a string result
        if str(payload.get("status")) != "1":
            raise ValueError(f"Etherscan error: {payload.get('result')}")
        return gwei_to_wei(payload["result"]["FastGasPrice"])


class EthGasStationGasPricer(_HttpGasPricer):
    """ETH Gas Station fee estimate; uses the instant price."""

    name = "ethgasstation"
    url = "https://api.ethgasstation.info/api/fee-estimate"

    def _extract(self, payload: Any) -> int:
        return gwei_to_wei(payload["gasPrice"]["instant"])


class GasPriceOracle:
    """Aggregates gas price suggestions from a primary and secondary providers.

    The result is the maximum of the primary price and every secondary price
    that was obtained.
    """

    def __init__(
        self,
        primary: GasPricer,
        secondaries: Sequence[GasPricer] = (),
        provider_timeout: float = 5.0
    ) -> None:
        """
        Args:
            primary: The L1 node; its failure fails the whole query
            secondaries: Best-effort price services
            provider_timeout: Deadline for each secondary provider in seconds
        """
        self.primary = primary
        self.secondaries = list(secondaries)
        self.provider_timeout = provider_timeout

    async def _query_secondary(self, provider: GasPricer) -> int:
        return await asyncio.wait_for(provider.suggest_gas_price(), timeout=self.provider_timeout)

    async def get_l1_gas_price(self) -> int:
        """Return the gas price to use for L1 transactions, in wei.

        Raises:
            TransportError: If the primary provider fails
        """
        results = await asyncio.gather(
            self.primary.suggest_gas_price(),
            *(self._query_secondary(provider) for provider in self.secondaries),
            return_exceptions=True
        )
        primary_result, *secondary_results = results

        if isinstance(primary_result, BaseException):
            if isinstance(primary_result, (EthermanError, asyncio.CancelledError)):
                raise primary_result
            raise TransportError(
                f"Primary gas provider {self.primary.name} failed: {primary_result}"
            ) from primary_result

        gas_price = int(primary_result)
        logger.debug(f"Gas price from {self.primary.name}: {gas_price}")

        for provider, result in zip(self.secondaries, secondary_results):
            if isinstance(result, BaseException):
                reason = "timed out" if isinstance(result, asyncio.TimeoutError) else str(result)
                logger.warning(f"Ignoring gas provider {provider.name}: {reason}")
                continue
            logger.debug(f"Gas price from {provider.name}: {result}")
            gas_price = max(gas_price, int(result))

        logger.info(f"L1 gas price: {gas_price} wei")
        return gas_price
