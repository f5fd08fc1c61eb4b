"""Fixed interface of the rollup contracts on L1.

Event topics and function selectors are agreed with the deployed contracts
and are not configurable. Encoding and decoding go through ``eth_abi``.
"""

from dataclasses import dataclass
from typing import Any

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from .errors import DecodeError


def event_topic(signature: str) -> str:
    """Return topic0 (keccak of the canonical signature) for an event."""
    return Web3.to_hex(Web3.keccak(text=signature))


# Global exit root manager
UPDATE_GLOBAL_EXIT_ROOT_TOPIC = event_topic("UpdateGlobalExitRoot(bytes32,bytes32)")

# Rollup (proof of efficiency) contract
FORCE_BATCH_TOPIC = event_topic("ForceBatch(uint64,bytes32,address,bytes)")
SEQUENCE_BATCHES_TOPIC = event_topic("SequenceBatches(uint64)")
SEQUENCE_FORCE_BATCHES_TOPIC = event_topic("SequenceForceBatches(uint64)")
VERIFY_BATCHES_TOPIC = event_topic("VerifyBatches(uint64,bytes32,address)")
TRUSTED_VERIFY_BATCHES_TOPIC = event_topic("TrustedVerifyBatches(uint64,bytes32,address)")

TRACKED_TOPICS: tuple[str, ...] = (
    UPDATE_GLOBAL_EXIT_ROOT_TOPIC,
    FORCE_BATCH_TOPIC,
    SEQUENCE_BATCHES_TOPIC,
    SEQUENCE_FORCE_BATCHES_TOPIC,
    VERIFY_BATCHES_TOPIC,
    TRUSTED_VERIFY_BATCHES_TOPIC,
)

# Non-indexed parameters carried in the log data field
FORCE_BATCH_EVENT_DATA = ("bytes32", "address", "bytes")
VERIFY_BATCHES_EVENT_DATA = ("bytes32",)


@dataclass(frozen=True, slots=True)
class ContractFunction:
    """A contract method with its ABI types.

    Attributes:
        name: Method name
        input_types: Canonical ABI types of the arguments
        output_types: Canonical ABI types of the return values
    """

    name: str
    input_types: tuple[str, ...]
    output_types: tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.input_types)})"

    @property
    def selector(self) -> bytes:
        return bytes(Web3.keccak(text=self.signature)[:4])

    def encode_call(self, *args: Any) -> bytes:
        """Build call data: selector followed by the ABI-encoded arguments."""
        return self.selector + encode(list(self.input_types), list(args))

    def decode_call(self, data: bytes) -> tuple[Any, ...]:
        """Decode call data produced for this method.

        Raises:
            DecodeError: If the selector does not match or the arguments are malformed
        """
        data = bytes(HexBytes(data))
        if data[:4] != self.selector:
            raise DecodeError(
                f"Call data selector 0x{data[:4].hex()} is not {self.signature}"
            )
        try:
            return tuple(decode(list(self.input_types), data[4:]))
        except (DecodingError, ValueError) as e:
            raise DecodeError(f"Malformed {self.name} call data: {e}") from e

    def decode_output(self, data: bytes) -> tuple[Any, ...]:
        """Decode the return data of a read-only call to this method."""
        try:
            return tuple(decode(list(self.output_types), bytes(HexBytes(data))))
        except (DecodingError, ValueError) as e:
            raise DecodeError(f"Malformed {self.name} return data: {e}") from e


FORCE_BATCH = ContractFunction("forceBatch", ("bytes", "uint256"))
SEQUENCE_BATCHES = ContractFunction(
    "sequenceBatches", ("(bytes,bytes32,uint64,uint64)[]",)
)
SEQUENCE_FORCE_BATCHES = ContractFunction(
    "sequenceForceBatches", ("(bytes,bytes32,uint64)[]",)
)

LAST_BATCH_SEQUENCED = ContractFunction("lastBatchSequenced", (), ("uint64",))
LAST_VERIFIED_BATCH = ContractFunction("lastVerifiedBatch", (), ("uint64",))
LAST_FORCE_BATCH = ContractFunction("lastForceBatch", (), ("uint64",))
GET_LAST_GLOBAL_EXIT_ROOT = ContractFunction("getLastGlobalExitRoot", (), ("bytes32",))


def decode_event_data(types: tuple[str, ...], data: Any) -> tuple[Any, ...]:
    """Decode the non-indexed parameters of an event from its data field."""
    try:
        return tuple(decode(list(types), bytes(HexBytes(data))))
    except (DecodingError, ValueError) as e:
        raise DecodeError(f"Malformed event data: {e}") from e
