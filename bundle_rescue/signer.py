"""
TransactionSigner - signs unsigned envelopes with a holder's credential.
"""
import logging
from typing import Any, Dict, Optional, Protocol, Union

from eth_account import Account
from eth_keys.exceptions import ValidationError as KeyValidationError
from web3 import Web3

from .exceptions import NonceFetchError, SigningError
from .models import SignedTransaction, UnsignedEnvelope
from .utils import RPC_ERRORS


class Signer(Protocol):
    """Protocol for custom signers"""
    address: str

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """Sign transaction and return signed tx object"""
        ...


Credential = Union[Signer, str, bytes]


class TransactionSigner:
    """
    Produce network-ready signed transactions.

    The nonce is read from the node immediately before signing unless the
    caller pins one. Signing itself is deterministic, so signing the same
    envelope with the same nonce twice yields the same bytes and hash.
    """

    def __init__(self, w3: Web3, logger: Optional[logging.Logger] = None):
        self.w3 = w3
        self.logger = logger or logging.getLogger(__name__)

    def fetch_nonce(self, address: str) -> int:
        """
        Read the account's next nonce, counting pending transactions.

        Raises:
            NonceFetchError: If the node query fails
        """
        try:
            nonce = int(self.w3.eth.get_transaction_count(address, "pending"))
        except RPC_ERRORS as e:
            self.logger.error(f"Nonce fetch for {address} failed: {e}")
            raise NonceFetchError(f"Failed to fetch nonce for {address}: {e}", step="nonce fetch")
        self.logger.debug(f"Nonce for {address}: {nonce}")
        return nonce

    def sign(
        self,
        envelope: UnsignedEnvelope,
        credential: Credential,
        chain_id: int,
        nonce: Optional[int] = None
    ) -> SignedTransaction:
        """
        Sign an envelope for ``chain_id``.

        Args:
            envelope: Unsigned envelope
            credential: Local account, custom signer, or raw private key
            chain_id: Target network id (EIP-155 replay protection)
            nonce: Nonce to use; fetched from the node when omitted

        Returns:
            Signed transaction carrying the nonce it consumed

        Raises:
            SigningError: If the credential is malformed or signing fails
            NonceFetchError: If the nonce has to be fetched and the query fails
        """
        signer = self.resolve_signer(credential)
        if nonce is None:
            nonce = self.fetch_nonce(signer.address)

        tx = envelope.to_transaction(nonce, chain_id)
        try:
            signed = signer.sign_transaction(tx)
        except Exception as e:
            self.logger.error(f"Transaction signing failed: {e}")
            raise SigningError(f"Failed to sign transaction: {str(e)}")

        raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        if not raw:
            raise SigningError("Signer returned no raw transaction bytes")
        raw = bytes(raw)

        return SignedTransaction(
            raw=Web3.to_hex(raw),
            tx_hash=Web3.to_hex(Web3.keccak(raw)),
            sender=signer.address,
            nonce=nonce,
            chain_id=chain_id,
        )

    @staticmethod
    def resolve_signer(credential: Credential) -> Signer:
        """
        Local account or custom signer behind a credential.

        Raises:
            SigningError: If the credential is malformed or unsupported
        """
        if isinstance(credential, (str, bytes)):
            try:
                return Account.from_key(credential)
            except (ValueError, TypeError, KeyValidationError):
                # Never echo the key itself
                raise SigningError("Signing credential is not a valid private key") from None
        if not hasattr(credential, "address") or not callable(getattr(credential, "sign_transaction", None)):
            raise SigningError(f"Unsupported signing credential of type {type(credential).__name__}")
        return credential
