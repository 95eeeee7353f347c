"""
bundle-rescue - move tokens out of a compromised account through a private relay.

The transfer is encoded against the token's interface descriptor, signed,
bundled with a gas top-up from a separate funding account, and submitted for
one target block so it never appears in the public mempool.
"""
from .builder import TransferIntentBuilder
from .config import NetworkConfig, RescueConfig
from .encoder import InstructionEncoder, load_interface, load_token_descriptor
from .exceptions import (
    ArgumentTypeMismatch,
    ConfigurationError,
    EncodingError,
    InvalidAmount,
    InvalidDestination,
    NetworkError,
    NonceFetchError,
    RelayError,
    RelaySubmissionError,
    RelayTimeoutError,
    RescueError,
    SigningError,
    TransferRequestError,
    UnknownMethod,
)
from .models import (
    BundleHandle,
    BundleOutcome,
    BundleStatus,
    FinalStatus,
    MethodSignature,
    OrchestratorState,
    SignedTransaction,
    TokenDescriptor,
    TransferReport,
    TransferRequest,
    UnsignedEnvelope,
)
from .orchestrator import TransferOrchestrator
from .relay import PrivateRelayClient
from .signer import TransactionSigner
from .utils import format_units, scale_amount
from .version import __version__

__all__ = [
    "InstructionEncoder",
    "TransferIntentBuilder",
    "TransactionSigner",
    "PrivateRelayClient",
    "TransferOrchestrator",
    "RescueConfig",
    "NetworkConfig",
    "load_interface",
    "load_token_descriptor",
    "scale_amount",
    "format_units",
    "MethodSignature",
    "TokenDescriptor",
    "TransferRequest",
    "UnsignedEnvelope",
    "SignedTransaction",
    "BundleHandle",
    "BundleStatus",
    "BundleOutcome",
    "OrchestratorState",
    "FinalStatus",
    "TransferReport",
    "RescueError",
    "ConfigurationError",
    "EncodingError",
    "UnknownMethod",
    "ArgumentTypeMismatch",
    "TransferRequestError",
    "InvalidAmount",
    "InvalidDestination",
    "SigningError",
    "NetworkError",
    "NonceFetchError",
    "RelayError",
    "RelaySubmissionError",
    "RelayTimeoutError",
    "__version__",
]
