"""
InstructionEncoder - turns a logical contract call into ABI call data.

The interface description is read once into a static lookup table of
``MethodSignature`` entries; encoding and decoding only consult that table.
"""
import json
import logging
import importlib.resources
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi import is_encodable, is_encodable_type
from eth_abi.exceptions import DecodingError
from web3 import Web3

from .exceptions import ArgumentTypeMismatch, ConfigurationError, EncodingError, UnknownMethod
from .models import MethodSignature, TokenDescriptor

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTOR = "erc20.json"


def _canonical_type(param: Mapping[str, Any]) -> str:
    """Render an ABI parameter as a canonical type string, expanding tuples."""
    try:
        typ = param["type"]
    except (KeyError, TypeError):
        raise ConfigurationError(f"ABI parameter without a type: {param!r}")
    if typ.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def load_interface(abi: Iterable[Mapping[str, Any]]) -> Dict[str, Tuple[MethodSignature, ...]]:
    """
    Build the method lookup table from an interface description.

    Only ``function`` entries are kept. Overloaded functions share a key and
    keep their declaration order.

    Raises:
        ConfigurationError: If an entry is malformed or declares an unknown type
    """
    table: Dict[str, List[MethodSignature]] = {}
    for entry in abi:
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"ABI entries must be objects, got {type(entry).__name__}")
        if entry.get("type", "function") != "function":
            continue
        name = entry.get("name")
        if not name:
            raise ConfigurationError("ABI function entry without a name")

        inputs = tuple(_canonical_type(p) for p in entry.get("inputs", []))
        outputs = tuple(_canonical_type(p) for p in entry.get("outputs", []))
        for typ in inputs + outputs:
            if not is_encodable_type(typ):
                raise ConfigurationError(f"Unsupported ABI type '{typ}' in {name}")

        table.setdefault(name, []).append(MethodSignature(
            name=name,
            inputs=inputs,
            outputs=outputs,
            input_names=tuple(p.get("name", "") for p in entry.get("inputs", [])),
            state_mutability=entry.get("stateMutability", "nonpayable"),
        ))
    return {name: tuple(sigs) for name, sigs in table.items()}


def read_descriptor_file(path: Optional[Union[str, Path]] = None) -> List[Dict[str, Any]]:
    """
    Read an interface descriptor file.

    Accepts a plain ABI list or a build artifact with an ``abi`` key. With no
    path the packaged ERC-20 descriptor is used.

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed
    """
    try:
        if path is None:
            text = importlib.resources.files("bundle_rescue").joinpath("abi").joinpath(DEFAULT_DESCRIPTOR).read_text()
        else:
            text = Path(path).read_text()
        data = json.loads(text)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read interface descriptor {path or DEFAULT_DESCRIPTOR}: {e}")

    if isinstance(data, dict):
        data = data.get("abi")
    if not isinstance(data, list):
        raise ConfigurationError("Interface descriptor must be an ABI list or an object with an 'abi' list")
    return data


def load_token_descriptor(
    address: str,
    decimals: int,
    abi_path: Optional[Union[str, Path]] = None
) -> TokenDescriptor:
    """
    Load the token descriptor once at startup.

    Raises:
        ConfigurationError: If the address or descriptor is invalid
    """
    if not Web3.is_address(address):
        raise ConfigurationError(f"Invalid token address: {address}")
    methods = load_interface(read_descriptor_file(abi_path))
    logger.debug(f"Loaded interface descriptor with {len(methods)} method(s)")
    return TokenDescriptor(
        address=Web3.to_checksum_address(address),
        decimals=decimals,
        methods=methods,
    )


class InstructionEncoder:
    """
    Encode and decode contract calls against a fixed method table.

    Pure: no network access and no state beyond the table it was built with.
    """

    def __init__(self, methods: Mapping[str, Tuple[MethodSignature, ...]]):
        self.methods: Dict[str, Tuple[MethodSignature, ...]] = dict(methods)
        self._by_selector = {
            sig.selector: sig for sigs in self.methods.values() for sig in sigs
        }

    @classmethod
    def from_abi(cls, abi: Iterable[Mapping[str, Any]]) -> "InstructionEncoder":
        return cls(load_interface(abi))

    @classmethod
    def from_descriptor(cls, token: TokenDescriptor) -> "InstructionEncoder":
        return cls(token.methods)

    def has_method(self, name: str) -> bool:
        return name in self.methods

    def method(self, name: str, arity: Optional[int] = None) -> MethodSignature:
        """
        Look up a method by name (and arity, for overloads).

        Raises:
            UnknownMethod: If the name is not in the table
            ArgumentTypeMismatch: If no overload takes ``arity`` arguments, or
                the name is overloaded and no arity was given
        """
        candidates = self.methods.get(name)
        if not candidates:
            raise UnknownMethod(name, list(self.methods))
        if arity is None:
            if len(candidates) > 1:
                raise ArgumentTypeMismatch(
                    f"'{name}' is overloaded ({', '.join(s.signature for s in candidates)}); "
                    "the argument count is required"
                )
            return candidates[0]
        for sig in candidates:
            if sig.arity == arity:
                return sig
        expected = " or ".join(str(s.arity) for s in candidates)
        raise ArgumentTypeMismatch(f"'{name}' takes {expected} argument(s), got {arity}")

    def encode(self, method: str, args: Sequence[Any]) -> bytes:
        """
        Encode a call as selector + positional ABI arguments.

        Args:
            method: Method name from the descriptor
            args: Positional argument values

        Returns:
            Call data bytes

        Raises:
            UnknownMethod: If the method is not in the descriptor
            ArgumentTypeMismatch: If the arguments do not fit any declared signature
        """
        args = list(args)
        # Raises UnknownMethod / ArgumentTypeMismatch for bad names and arity
        self.method(method, len(args))
        candidates = [s for s in self.methods[method] if s.arity == len(args)]

        for candidate in candidates:
            if self._first_mismatch(candidate, args) is None:
                return candidate.selector + abi_encode(list(candidate.inputs), args)

        first = candidates[0]
        index = self._first_mismatch(first, args)
        value = args[index]
        raise ArgumentTypeMismatch(
            f"Argument {index} of {first.signature} must be {first.inputs[index]}, "
            f"got {type(value).__name__} {value!r}"
        )

    def decode_call(self, data: Union[bytes, str]) -> Tuple[str, List[Any]]:
        """
        Recover method name and arguments from call data.

        Addresses come back checksummed.

        Raises:
            UnknownMethod: If the selector is not in the descriptor
            EncodingError: If the data is truncated or malformed
        """
        data = self._as_bytes(data)
        if len(data) < 4:
            raise EncodingError("Call data is shorter than a function selector")
        sig = self._by_selector.get(data[:4])
        if sig is None:
            raise UnknownMethod('0x' + data[:4].hex(), list(self.methods))
        try:
            values = abi_decode(list(sig.inputs), data[4:])
        except DecodingError as e:
            raise EncodingError(f"Could not decode arguments of {sig.signature}: {e}")
        return sig.name, [
            Web3.to_checksum_address(v) if typ == "address" else v
            for typ, v in zip(sig.inputs, values)
        ]

    def decode_output(self, method: str, data: Union[bytes, str], arity: Optional[int] = None) -> Tuple[Any, ...]:
        """
        Decode the return data of a call.

        Raises:
            UnknownMethod: If the method is not in the descriptor
            EncodingError: If the data does not match the declared outputs
        """
        sig = self.method(method, arity)
        try:
            return tuple(abi_decode(list(sig.outputs), self._as_bytes(data)))
        except DecodingError as e:
            raise EncodingError(f"Could not decode output of {sig.signature}: {e}")

    @staticmethod
    def _first_mismatch(sig: MethodSignature, args: List[Any]) -> Optional[int]:
        for index, (typ, value) in enumerate(zip(sig.inputs, args)):
            if not is_encodable(typ, value):
                return index
        return None

    @staticmethod
    def _as_bytes(data: Union[bytes, str]) -> bytes:
        if isinstance(data, str):
            try:
                return bytes.fromhex(data[2:] if data.startswith('0x') else data)
            except ValueError as e:
                raise EncodingError(f"Invalid hex data: {e}")
        return bytes(data)
