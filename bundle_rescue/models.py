"""
Data models for the bundle-rescue package.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from eth_utils import function_signature_to_4byte_selector
from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

from .utils import Quantity, scale_amount


@dataclass(frozen=True)
class MethodSignature:
    """One callable entry of an interface descriptor."""
    name: str
    inputs: Tuple[str, ...]
    outputs: Tuple[str, ...] = ()
    input_names: Tuple[str, ...] = ()
    state_mutability: str = "nonpayable"

    @property
    def signature(self) -> str:
        """Canonical signature text, e.g. ``transfer(address,uint256)``"""
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        """4-byte function selector"""
        return function_signature_to_4byte_selector(self.signature)

    @property
    def arity(self) -> int:
        return len(self.inputs)


@dataclass(frozen=True)
class TokenDescriptor:
    """
    Token contract description, loaded once at startup.

    Attributes:
        address: Checksummed contract address
        decimals: Decimal precision declared by the token
        methods: Lookup table of callable methods keyed by name (overloads
            share a key)
    """
    address: str
    decimals: int
    methods: Mapping[str, Tuple[MethodSignature, ...]] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class TransferRequest:
    """Logical intent: move ``amount`` base units of ``token`` from source to destination."""
    token: TokenDescriptor
    source: str
    destination: str
    amount: int

    @classmethod
    def from_quantity(
        cls,
        token: TokenDescriptor,
        source: str,
        destination: str,
        quantity: Quantity
    ) -> "TransferRequest":
        """
        Build a request from a human-readable quantity.

        Raises:
            InvalidAmount: If the quantity does not scale to a positive integer
        """
        return cls(
            token=token,
            source=source,
            destination=destination,
            amount=scale_amount(quantity, token.decimals),
        )


class UnsignedEnvelope(BaseModel):
    """Unsigned transaction envelope. Gas parameters are caller policy."""
    model_config = ConfigDict(frozen=True)

    to: str
    data: str = "0x"
    gas_limit: int = Field(..., gt=0)
    gas_price: int = Field(..., gt=0)
    value: int = Field(0, ge=0)

    @field_validator("to")
    @classmethod
    def _checksum_to(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError(f"invalid address: {value}")
        return Web3.to_checksum_address(value)

    @property
    def max_fee_wei(self) -> int:
        """Upper bound of the fee this envelope can cost."""
        return self.gas_limit * self.gas_price

    def to_transaction(self, nonce: int, chain_id: int) -> Dict[str, Any]:
        """Transaction dict in the shape eth-account signs."""
        tx = {
            'to': self.to,
            'value': self.value,
            'gas': self.gas_limit,
            'gasPrice': self.gas_price,
            'nonce': nonce,
            'chainId': chain_id,
        }
        if self.data and self.data != "0x":
            tx['data'] = self.data
        return tx


class SignedTransaction(BaseModel):
    """Signed, network-ready transaction. Single use: its nonce is fixed."""
    model_config = ConfigDict(frozen=True)

    raw: str
    tx_hash: str
    sender: str
    nonce: int
    chain_id: int


class BundleHandle(BaseModel):
    """Reference to a bundle submitted for one target block."""
    bundle_hash: Optional[str] = None
    target_block: int
    transactions: List[SignedTransaction]
    submitted_at: float = Field(default_factory=time.time)

    @property
    def tx_hashes(self) -> List[str]:
        return [tx.tx_hash for tx in self.transactions]


class BundleStatus(str, Enum):
    """Relay outcome of a single bundle."""
    INCLUDED = "included"
    NOT_INCLUDED = "not-included"
    SUBMISSION_ERROR = "submission-error"


class BundleOutcome(BaseModel):
    """Resolved outcome of a bundle at its target block"""
    status: BundleStatus
    target_block: int
    bundle_hash: Optional[str] = None
    included_tx_hashes: List[str] = Field(default_factory=list)
    reason: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None

    @property
    def included(self) -> bool:
        return self.status == BundleStatus.INCLUDED


class OrchestratorState(str, Enum):
    INIT = "init"
    BALANCE_CHECKED = "balance-checked"
    DRY_RUN_ATTEMPTED = "dry-run-attempted"
    SUBMITTED = "submitted"
    RESOLVED = "resolved"


class FinalStatus(str, Enum):
    """Status printed at the end of every run."""
    INCLUDED = "included"
    NOT_INCLUDED = "not included"
    SUBMISSION_ERROR = "submission error"
    ABORTED = "aborted before submission"


class TransferReport(BaseModel):
    """Everything a run learned, folded into one structure."""
    status: FinalStatus = FinalStatus.ABORTED
    state: OrchestratorState = OrchestratorState.INIT
    amount: int = 0
    decimals: int = 0
    token_balance: Optional[int] = None
    funding_balance: Optional[int] = None
    dry_run_succeeded: Optional[bool] = None
    dry_run_error: Optional[str] = None
    attempts: int = 0
    failed_step: Optional[str] = None
    detail: Optional[str] = None
    outcome: Optional[BundleOutcome] = None

    def status_line(self) -> str:
        """Single human-readable line stating whether funds moved."""
        line = f"FINAL STATUS: {self.status.value}"
        if self.status == FinalStatus.INCLUDED and self.outcome:
            hashes = ', '.join(self.outcome.included_tx_hashes)
            return f"{line} (block {self.outcome.target_block}, tx {hashes})"
        if self.status == FinalStatus.NOT_INCLUDED and self.outcome:
            line = f"{line} (block {self.outcome.target_block}: {self.outcome.reason})"
            if self.failed_step:
                line += f"; retry stopped at {self.failed_step}: {self.detail}"
            return line
        context = []
        if self.failed_step:
            context.append(f"at {self.failed_step}")
        if self.detail:
            context.append(self.detail)
        return f"{line} ({': '.join(context)})" if context else line
