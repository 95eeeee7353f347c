"""
TransferIntentBuilder - turns a transfer request into an unsigned envelope.
"""
import logging
from typing import Optional

from web3 import Web3

from .encoder import InstructionEncoder
from .exceptions import InvalidAmount, InvalidDestination
from .models import TransferRequest, UnsignedEnvelope
from .utils import format_units, is_valid_address, same_address

# Gas of a plain value transfer
VALUE_TRANSFER_GAS = 21_000


class TransferIntentBuilder:
    """
    Build unsigned envelopes for token transfers and gas top-ups.

    Gas limit and price are always supplied by the caller: whether a private
    bundle is included depends on the fee being competitive, so it stays a
    tunable policy.
    """

    def __init__(self, encoder: InstructionEncoder, logger: Optional[logging.Logger] = None):
        self.encoder = encoder
        self.logger = logger or logging.getLogger(__name__)

    def build(self, request: TransferRequest, gas_limit: int, gas_price: int) -> UnsignedEnvelope:
        """
        Encode ``transfer(destination, amount)`` against the token contract.

        Args:
            request: Transfer intent
            gas_limit: Gas limit for the transfer
            gas_price: Gas price in wei

        Returns:
            Unsigned envelope addressed to the token contract

        Raises:
            InvalidAmount: If the amount is not a positive integer
            InvalidDestination: If the destination is malformed or equals the source
            UnknownMethod: If the descriptor has no ``transfer`` method
            ArgumentTypeMismatch: If ``transfer`` is declared with other types
        """
        if isinstance(request.amount, bool) or not isinstance(request.amount, int) or request.amount <= 0:
            raise InvalidAmount(f"Transfer amount must be a positive integer of base units, got {request.amount!r}")
        if not is_valid_address(request.destination):
            raise InvalidDestination(f"Destination {request.destination!r} is not a valid address")
        if is_valid_address(request.source) and same_address(request.source, request.destination):
            raise InvalidDestination("Destination must differ from the source account")

        destination = Web3.to_checksum_address(request.destination)
        data = self.encoder.encode("transfer", [destination, request.amount])
        self.logger.debug(
            f"Encoded transfer of {format_units(request.amount, request.token.decimals)} "
            f"({request.amount} base units) to {destination}"
        )
        return UnsignedEnvelope(
            to=request.token.address,
            data=Web3.to_hex(data),
            gas_limit=gas_limit,
            gas_price=gas_price,
        )

    def build_gas_funding(self, recipient: str, gas_limit: int, gas_price: int) -> UnsignedEnvelope:
        """
        Build the value transfer that tops up ``recipient`` for one transaction.

        The amount sent is ``gas_limit * gas_price`` of the transaction it funds.

        Raises:
            InvalidDestination: If the recipient address is malformed
        """
        if not is_valid_address(recipient):
            raise InvalidDestination(f"Gas recipient {recipient!r} is not a valid address")
        return UnsignedEnvelope(
            to=recipient,
            value=gas_limit * gas_price,
            gas_limit=VALUE_TRANSFER_GAS,
            gas_price=gas_price,
        )
