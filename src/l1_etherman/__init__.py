"""
L1 etherman package.

Observes rollup events on L1 and submits sequenced batches back to it.
"""

from .auth_registry import AuthRegistry
from .config import EthermanConfig
from .errors import (
    DecodeError,
    EthermanError,
    RangeTooLargeError,
    SignerNotFoundError,
    TransportError,
)
from .etherman import Etherman
from .gas_price_oracle import GasPriceOracle
from .models import (
    Block,
    EventOrder,
    ForcedBatch,
    GlobalExitRoot,
    Order,
    OrderEntry,
    Sequence,
    SequencedBatch,
    SequencedForceBatch,
    VerifiedBatch,
)

__all__ = [
    "AuthRegistry",
    "Block",
    "DecodeError",
    "Etherman",
    "EthermanConfig",
    "EthermanError",
    "EventOrder",
    "ForcedBatch",
    "GasPriceOracle",
    "GlobalExitRoot",
    "Order",
    "OrderEntry",
    "RangeTooLargeError",
    "Sequence",
    "SequencedBatch",
    "SequencedForceBatch",
    "SignerNotFoundError",
    "TransportError",
    "VerifiedBatch",
]
__version__ = "0.1.0"
