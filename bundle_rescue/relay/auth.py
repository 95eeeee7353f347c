"""
Request signing for private relay endpoints.

The relay identifies the sender by an EIP-191 signature over the keccak hash
of the request body, sent as ``X-Flashbots-Signature: <address>:<signature>``.
The funding account signs; its reputation is what the relay scores.
"""
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from web3 import Web3

from ..utils import same_address

SIGNATURE_HEADER = "X-Flashbots-Signature"


def _body_message(body: str):
    return encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))


def sign_request_body(account: LocalAccount, body: str) -> str:
    """
    Build the signature header value for a request body.

    Args:
        account: Account whose reputation the relay should credit
        body: Exact JSON text that will be sent

    Returns:
        ``<address>:<0x signature>``
    """
    signed = account.sign_message(_body_message(body))
    return f"{account.address}:{Web3.to_hex(signed.signature)}"


def verify_request_signature(header: str, body: str) -> bool:
    """Check that a signature header matches the body and the claimed address."""
    try:
        address, signature = header.split(":", 1)
        recovered = Account.recover_message(_body_message(body), signature=signature)
    except (ValueError, BadSignature, KeyValidationError):
        return False
    return same_address(recovered, address)
