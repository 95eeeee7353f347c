"""
Exceptions for the bundle-rescue package.
"""
from typing import Optional


class RescueError(Exception):
    """Base exception for all bundle-rescue errors."""
    pass


class ConfigurationError(RescueError):
    """Raised when credentials, addresses or the interface descriptor are missing or malformed."""
    pass


class EncodingError(RescueError):
    """Base class for call encoding failures."""
    pass


class UnknownMethod(EncodingError):
    """Raised when a method is absent from the interface descriptor."""

    def __init__(self, method: str, available: Optional[list] = None):
        self.method = method
        self.available = sorted(available or [])
        message = f"Method '{method}' is not defined in the interface descriptor"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message)


class ArgumentTypeMismatch(EncodingError):
    """Raised when call arguments do not match the declared parameter types."""
    pass


class TransferRequestError(RescueError):
    """Base class for invalid transfer requests."""
    pass


class InvalidAmount(TransferRequestError):
    """Raised when the transfer amount is zero, negative or not representable."""
    pass


class InvalidDestination(TransferRequestError):
    """Raised when the destination address is malformed or equals the source."""
    pass


class SigningError(RescueError):
    """Raised when a credential is malformed or signing fails."""
    pass


class NetworkError(RescueError):
    """Raised when a network call (RPC or relay) fails."""

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        super().__init__(message)


class NonceFetchError(NetworkError):
    """Raised when the signer's nonce cannot be read from the network."""
    pass


class RelayError(NetworkError):
    """Base class for private relay failures."""
    pass


class RelaySubmissionError(RelayError):
    """Raised when the relay rejects or fails to accept a request."""

    def __init__(self, message: str, code: Optional[int] = None, step: Optional[str] = None):
        self.code = code
        super().__init__(message, step=step)


class RelayTimeoutError(RelayError):
    """Raised when a bundle outcome is not resolved before the deadline or is cancelled."""
    pass
