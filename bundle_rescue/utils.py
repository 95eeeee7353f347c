"""
Utility functions for the bundle-rescue package.
"""
import urllib.parse
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Union

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from .exceptions import InvalidAmount

# Wide enough for uint256 amounts at any realistic precision
_DECIMAL_PRECISION = 100
# 2**256 - 1 has 78 digits
_MAX_BASE_UNIT_DIGITS = 77

# What a JSON-RPC call through web3 can raise when the node or the link fails
RPC_ERRORS = (Web3Exception, requests.RequestException, ValueError, OSError)

Quantity = Union[str, int, Decimal]


def scale_amount(quantity: Quantity, decimals: int) -> int:
    """
    Convert a human-readable token quantity to base units.

    ``scale_amount("5", 8) == 500000000``. Quantities with more fractional
    digits than the token supports are rejected rather than truncated.

    Args:
        quantity: Human-readable amount (string, int or Decimal)
        decimals: Token decimal precision

    Returns:
        Amount in the token's smallest unit

    Raises:
        InvalidAmount: If the quantity is not a number, is not positive, or
            cannot be represented at the given precision
        ValueError: If decimals is negative
    """
    if not isinstance(decimals, int) or isinstance(decimals, bool) or decimals < 0:
        raise ValueError(f"decimals must be a non-negative integer, got {decimals!r}")
    if isinstance(quantity, (bool, float)):
        raise InvalidAmount(f"Amount must be a string, int or Decimal, got {type(quantity).__name__}")

    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        try:
            value = Decimal(str(quantity).strip()) if isinstance(quantity, str) else Decimal(quantity)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidAmount(f"Amount {quantity!r} is not a number")

        if not value.is_finite():
            raise InvalidAmount(f"Amount {quantity!r} is not finite")

        # Bound the exponent before scaling so "1e999999999" never becomes an int
        if value and value.adjusted() + decimals > _MAX_BASE_UNIT_DIGITS:
            raise InvalidAmount(f"Amount {quantity} does not fit in uint256 at {decimals} decimals")
        if value and value.adjusted() + decimals < 0:
            raise InvalidAmount(
                f"Amount {quantity} has more than {decimals} decimal places"
            )

        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise InvalidAmount(
                f"Amount {quantity} has more than {decimals} decimal places"
            )

    base_units = int(scaled)
    if base_units <= 0:
        raise InvalidAmount(f"Amount must be greater than zero, got {quantity}")
    return base_units


def format_units(base_units: int, decimals: int) -> str:
    """Render base units as a human-readable quantity (for logging)."""
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        value = Decimal(base_units).scaleb(-decimals)
        return f"{value.normalize():f}" if value else "0"


def is_valid_address(value: Any) -> bool:
    """Check that a value is a syntactically valid 20-byte hex address."""
    return isinstance(value, str) and Web3.is_address(value)


def same_address(a: str, b: str) -> bool:
    """Case-insensitive address comparison."""
    return a.lower() == b.lower()


def is_local_url(url: str) -> bool:
    """Check whether a URL points at localhost/127.0.0.1 (with or without port)."""
    parsed = urllib.parse.urlparse(url)
    host = parsed.netloc.split(':')[0] if parsed.netloc else ''
    return host in ('localhost', '127.0.0.1')


def validate_url(name: str, url: str) -> str:
    """
    Require https for remote endpoints.

    Raises:
        ValueError: If the URL is empty or uses plain http against a remote host
    """
    if not url:
        raise ValueError(f"{name} must not be empty")
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError(f"{name} is not a valid URL")
    if parsed.scheme != 'https' and not is_local_url(url):
        raise ValueError(f"{name} must use https:// for security (got: {parsed.scheme}://)")
    return url.rstrip('/')


def redact_url(url: str) -> str:
    """
    Hide path and query of an endpoint URL.

    Provider URLs usually embed an API key in the path, so only scheme and
    host are safe to log.
    """
    parsed = urllib.parse.urlparse(url)
    if not parsed.netloc:
        return "[REDACTED]"
    suffix = "/***" if (parsed.path.strip('/') or parsed.query) else ""
    return f"{parsed.scheme}://{parsed.netloc}{suffix}"


def to_hex(value: Union[bytes, str]) -> str:
    """Return a 0x-prefixed lowercase hex string for bytes or hex strings."""
    if isinstance(value, str):
        return value.lower() if value.startswith('0x') else '0x' + value.lower()
    return Web3.to_hex(value)
