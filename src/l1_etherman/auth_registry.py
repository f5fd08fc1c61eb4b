"""In-memory registry of the accounts allowed to sign L1 transactions."""

import logging
import threading
from types import MappingProxyType

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .errors import SignerNotFoundError

logger = logging.getLogger(__name__)


class AuthRegistry:
    """
    Maps checksummed addresses to signing accounts.

    Writers copy the mapping, change the copy and swap it in under a lock;
    readers use whichever mapping is current without locking.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._signers: MappingProxyType[str, LocalAccount] = MappingProxyType({})

    def add_or_replace(self, address: str, credential: str | bytes | LocalAccount) -> None:
        """
        Register a signer for ``address``, replacing any previous one.

        Args:
            address: Address the credential must control
            credential: Private key (hex string or bytes) or a LocalAccount

        Raises:
            ValueError: If the address is invalid or does not match the credential
        """
        if not Web3.is_address(address):
            raise ValueError(f"Invalid signer address: {address}")
        address = Web3.to_checksum_address(address)

        account: LocalAccount = (
            credential if isinstance(credential, LocalAccount) else Account.from_key(credential)
        )
        if account.address != address:
            raise ValueError(
                f"Credential belongs to {account.address}, not {address}"
            )

        with self._lock:
            signers = dict(self._signers)
            replaced = address in signers
            signers[address] = account
            self._signers = MappingProxyType(signers)

        logger.info(f"{'Replaced' if replaced else 'Added'} signer {address}")

    def get(self, address: str) -> LocalAccount:
        """
        Return the signer registered for ``address``.

        Raises:
            SignerNotFoundError: If no signer is registered for the address
        """
        key = Web3.to_checksum_address(address) if Web3.is_address(address) else address
        try:
            return self._signers[key]
        except KeyError:
            raise SignerNotFoundError(address) from None

    def addresses(self) -> list[str]:
        return sorted(self._signers)

    def __contains__(self, address: str) -> bool:
        return Web3.is_address(address) and Web3.to_checksum_address(address) in self._signers

    def __len__(self) -> int:
        return len(self._signers)
