"""
Private relay integration.

Bundles of signed transactions go to a Flashbots-style relay instead of the
public mempool, so they stay invisible to front-runners until included.
"""
from .auth import SIGNATURE_HEADER, sign_request_body, verify_request_signature
from .client import (
    ACCOUNT_NONCE_TOO_HIGH,
    BLOCK_PASSED_WITHOUT_INCLUSION,
    DEFAULT_RELAY_URL,
    PrivateRelayClient,
)

__all__ = [
    'PrivateRelayClient',
    'DEFAULT_RELAY_URL',
    'BLOCK_PASSED_WITHOUT_INCLUSION',
    'ACCOUNT_NONCE_TOO_HIGH',
    'SIGNATURE_HEADER',
    'sign_request_body',
    'verify_request_signature',
]
