"""Error types raised by the L1 etherman.

Cancellation is not modelled here: a cancelled operation surfaces the
standard ``asyncio.CancelledError`` and is never retried or wrapped.
"""


class EthermanError(Exception):
    """Base class for all etherman errors."""


class TransportError(EthermanError):
    """The L1 RPC endpoint was unreachable, timed out or returned an error."""


class RangeTooLargeError(TransportError):
    """The provider rejected a log query because its block span was too large."""


class DecodeError(EthermanError):
    """A log or its originating transaction did not have the expected shape."""


class SignerNotFoundError(EthermanError, KeyError):
    """No signer is registered for the requested address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"No signer registered for address {address}")
        self.address = address

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])
