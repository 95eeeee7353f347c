"""
Configuration for bundle-rescue.

``RescueConfig`` is built once at startup (normally from the process
environment) and handed to each component. ``NetworkConfig`` resolves chain
ids and relay endpoints from the packaged network presets.
"""
import os
import json
import logging
import importlib.resources
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_keys.exceptions import ValidationError as KeyValidationError
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator, model_validator
from web3 import Web3

from .exceptions import ConfigurationError
from .utils import same_address, validate_url

logger = logging.getLogger(__name__)

# P2P Solutions Foundation (P2PS) token, 8 decimals
DEFAULT_TOKEN_ADDRESS = "0x4527a3B4A8A150403090a99b87efFC96F2195047"
DEFAULT_NETWORK = "mainnet"

# Field name -> environment variables, first match wins
ENV_VARS = {
    "rpc_url": ("RPC_URL", "ALCHEMY_URL"),
    "network": ("NETWORK",),
    "relay_url": ("RELAY_URL",),
    "chain_id": ("CHAIN_ID",),
    "funding_key": ("FUNDING_PRIVATE_KEY", "SAFE_WALLET_PRIVATE_KEY"),
    "source_key": ("SOURCE_PRIVATE_KEY", "COMPROMISED_WALLET_PRIVATE_KEY"),
    "destination": ("DESTINATION_ADDRESS",),
    "token_address": ("TOKEN_ADDRESS",),
    "token_decimals": ("TOKEN_DECIMALS",),
    "abi_path": ("TOKEN_ABI_PATH",),
    "amount": ("TRANSFER_AMOUNT",),
    "gas_limit": ("GAS_LIMIT",),
    "gas_price_gwei": ("GAS_PRICE_GWEI",),
    "fund_gas": ("FUND_GAS",),
    "dry_run": ("DRY_RUN",),
    "attempts": ("BUNDLE_ATTEMPTS",),
    "outcome_timeout": ("OUTCOME_TIMEOUT",),
    "poll_interval": ("POLL_INTERVAL",),
    "http_timeout": ("HTTP_TIMEOUT",),
    "retry_count": ("RETRY_COUNT",),
}


class NetworkConfig:
    """Network presets (chain id and private relay endpoint) from networks.json"""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load network presets, caching them after the first read.

        Returns:
            Mapping of network name to preset
        """
        if cls._networks_cache is None:
            text = importlib.resources.files("bundle_rescue").joinpath("networks.json").read_text()
            cls._networks_cache = json.loads(text)
        return cls._networks_cache

    @classmethod
    def get_network(cls, name: str) -> Dict[str, Any]:
        """
        Get a network preset.

        Raises:
            ValueError: If the network is unknown (message lists known networks)
        """
        networks = cls.load_networks()
        if name not in networks:
            raise ValueError(
                f"Unknown network '{name}'. Available networks: {', '.join(sorted(networks))}"
            )
        return networks[name]

    @classmethod
    def get_chain_id(cls, name: str) -> int:
        return int(cls.get_network(name)["chainId"])

    @classmethod
    def get_relay_url(cls, name: str, override: Optional[str] = None) -> str:
        """
        Relay URL for a network.

        Priority: explicit override, ``<NETWORK>_RELAY_URL`` environment
        variable, packaged preset.
        """
        if override:
            return override
        env_var = f"{name.upper().replace('-', '_')}_RELAY_URL"
        if os.environ.get(env_var):
            return os.environ[env_var]
        return cls.get_network(name)["relay"]


class RescueConfig(BaseModel):
    """
    Immutable run configuration.

    Private keys are held as ``SecretStr`` and never appear in reprs or logs.
    """
    model_config = ConfigDict(frozen=True)

    rpc_url: str
    network: str = DEFAULT_NETWORK
    relay_url: str
    chain_id: Optional[int] = None
    funding_key: SecretStr
    source_key: SecretStr
    destination: str
    token_address: str = DEFAULT_TOKEN_ADDRESS
    token_decimals: int = Field(8, ge=0, le=77)
    abi_path: Optional[str] = None
    amount: str = "5"
    gas_limit: int = Field(100_000, gt=0)
    gas_price_gwei: Decimal = Field(Decimal("20"), gt=0)
    fund_gas: bool = True
    dry_run: bool = True
    attempts: int = Field(1, ge=1)
    outcome_timeout: float = Field(120.0, gt=0)
    poll_interval: float = Field(1.0, gt=0)
    http_timeout: float = Field(30.0, gt=0)
    retry_count: int = Field(3, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _apply_network_preset(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        network = data.get("network") or DEFAULT_NETWORK
        data["network"] = network
        try:
            preset = NetworkConfig.get_network(network)
        except ValueError:
            preset = None
        if not data.get("relay_url"):
            if preset is None:
                raise ValueError(f"Unknown network '{network}' and no relay URL configured")
            data["relay_url"] = NetworkConfig.get_relay_url(network)
        if data.get("chain_id") in (None, "") and preset is not None:
            data["chain_id"] = preset["chainId"]
        return data

    @field_validator("rpc_url", "relay_url")
    @classmethod
    def _check_url(cls, value: str, info) -> str:
        return validate_url(info.field_name, value)

    @field_validator("destination", "token_address")
    @classmethod
    def _check_address(cls, value: str, info) -> str:
        if not Web3.is_address(value):
            raise ValueError(f"{info.field_name} is not a valid address")
        return Web3.to_checksum_address(value)

    @model_validator(mode="after")
    def _check_accounts(self) -> "RescueConfig":
        funding = _parse_key("funding_key", self.funding_key)
        source = _parse_key("source_key", self.source_key)
        if same_address(funding.address, source.address):
            raise ValueError("funding and source accounts must be distinct")
        if same_address(self.destination, source.address):
            raise ValueError("destination must differ from the source account")
        return self

    @classmethod
    def build(cls, **values: Any) -> "RescueConfig":
        """
        Validate values into a config.

        Raises:
            ConfigurationError: With field names and reasons only; input values
                are left out so keys never reach an error message
        """
        try:
            return cls(**values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration: {problems}") from None

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[str] = None,
        **overrides: Any
    ) -> "RescueConfig":
        """
        Build the config from environment variables.

        Args:
            env: Mapping to read instead of ``os.environ``. When omitted, a
                ``.env`` file is loaded first (existing variables win).
            dotenv_path: Explicit ``.env`` location
            **overrides: Field values taking precedence over the environment
                (``None`` values are ignored)

        Raises:
            ConfigurationError: If required values are missing or invalid
        """
        if env is None:
            load_dotenv(dotenv_path=dotenv_path)
            env = os.environ

        values: Dict[str, Any] = {}
        for field_name, names in ENV_VARS.items():
            for name in names:
                if env.get(name):
                    values[field_name] = env[name]
                    break
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.build(**values)

    @property
    def funding_account(self) -> LocalAccount:
        """Account that pays gas and signs relay requests."""
        return Account.from_key(self.funding_key.get_secret_value())

    @property
    def source_account(self) -> LocalAccount:
        """Compromised account holding the tokens."""
        return Account.from_key(self.source_key.get_secret_value())

    @property
    def gas_price_wei(self) -> int:
        return int(Web3.to_wei(self.gas_price_gwei, "gwei"))


def _parse_key(name: str, key: SecretStr) -> LocalAccount:
    try:
        return Account.from_key(key.get_secret_value())
    except (ValueError, TypeError, KeyValidationError):
        raise ValueError(f"{name} is not a valid private key") from None
