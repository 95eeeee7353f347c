"""
Pytest fixtures for the bundle-rescue tests.
"""
import itertools
import time
import pytest
from unittest.mock import MagicMock, PropertyMock

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_utils import keccak
from web3 import Web3
from web3.providers.rpc import HTTPProvider

from bundle_rescue.builder import TransferIntentBuilder
from bundle_rescue.config import NetworkConfig
from bundle_rescue.encoder import InstructionEncoder, load_token_descriptor
from bundle_rescue.relay import PrivateRelayClient
from bundle_rescue.relay._rate_limited_log import reset_rate_limits
from bundle_rescue.signer import TransactionSigner

# Constants for testing
TEST_RPC_URL = "https://eth-mainnet.example.com/v2/not-a-real-api-key"
TEST_RELAY_URL = "https://relay.example.com"
TEST_FUNDING_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_SOURCE_KEY = "0x" + "22" * 32
TEST_DESTINATION = "0x1234567890123456789012345678901234567890"
TEST_TOKEN = Web3.to_checksum_address("0x4527a3b4a8a150403090a99b87effc96f2195047")
TEST_CHAIN_ID = 1
TEST_HEAD = 100
TEST_BALANCE = 500_000_000  # 5 tokens at 8 decimals
TEST_BUNDLE_HASH = "0x" + "ab" * 32

TRANSFER_SELECTOR = "0xa9059cbb"
BALANCE_OF_SELECTOR = "0x70a08231"


# ─────────────────────────────────────────────────────────────────────────
#  NO NETWORK, NO WAITING
# ─────────────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    """Make time.sleep instantaneous so polling doesn't slow the suite down"""
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _patch_http_provider(monkeypatch):
    """
    Stub every Web3 HTTP call so no DNS / network traffic is triggered.
    """
    def _dummy(self, method, params=None, _=None):
        if method in {"eth_chainId"}:
            return {"jsonrpc": "2.0", "id": 1, "result": "0x1"}
        if method in {"eth_gasPrice"}:
            return {"jsonrpc": "2.0", "id": 1, "result": "0x3b9aca00"}
        return {"jsonrpc": "2.0", "id": 1, "result": "0x0"}

    monkeypatch.setattr(HTTPProvider, "make_request", _dummy, raising=True)


@pytest.fixture(autouse=True)
def _isolated_state():
    """Reset module-level caches between tests"""
    reset_rate_limits()
    NetworkConfig._networks_cache = None
    yield
    reset_rate_limits()
    NetworkConfig._networks_cache = None


# ─────────────────────────────────────────────────────────────────────────
#  ACCOUNTS AND DESCRIPTORS
# ─────────────────────────────────────────────────────────────────────────

@pytest.fixture
def funding_account():
    return Account.from_key(TEST_FUNDING_KEY)


@pytest.fixture
def source_account():
    return Account.from_key(TEST_SOURCE_KEY)


@pytest.fixture
def token():
    """ERC-20 descriptor for the P2PS token (8 decimals)"""
    return load_token_descriptor(TEST_TOKEN, 8)


@pytest.fixture
def encoder(token):
    return InstructionEncoder.from_descriptor(token)


@pytest.fixture
def builder(encoder):
    return TransferIntentBuilder(encoder)


@pytest.fixture
def test_env():
    """Complete environment for RescueConfig.from_env"""
    return {
        "RPC_URL": TEST_RPC_URL,
        "RELAY_URL": TEST_RELAY_URL,
        "FUNDING_PRIVATE_KEY": TEST_FUNDING_KEY,
        "SOURCE_PRIVATE_KEY": TEST_SOURCE_KEY,
        "DESTINATION_ADDRESS": TEST_DESTINATION,
    }


# ─────────────────────────────────────────────────────────────────────────
#  CHAIN AND RELAY STAND-INS
# ─────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_w3():
    """
    Web3 stand-in modelling a token contract on main-net.

    balanceOf returns TEST_BALANCE, transfer simulates to True, the head reads
    TEST_HEAD once and TEST_HEAD + 1 after that, and every block is empty
    unless a test says otherwise.
    """
    w3 = MagicMock()
    eth = w3.eth
    eth.chain_id = TEST_CHAIN_ID
    type(eth).block_number = PropertyMock(
        side_effect=itertools.chain([TEST_HEAD], itertools.repeat(TEST_HEAD + 1))
    )
    eth.get_transaction_count = MagicMock(return_value=7)
    eth.get_balance = MagicMock(return_value=10**18)
    eth.get_block = MagicMock(return_value={"number": TEST_HEAD + 1, "transactions": []})

    def call(tx, *args, **kwargs):
        data = tx.get("data", "")
        if data.startswith(BALANCE_OF_SELECTOR):
            return abi_encode(["uint256"], [TEST_BALANCE])
        if data.startswith(TRANSFER_SELECTOR):
            return abi_encode(["bool"], [True])
        return b""

    eth.call = MagicMock(side_effect=call)
    return w3


@pytest.fixture
def signer(mock_w3):
    return TransactionSigner(mock_w3)


@pytest.fixture
def relay_client(mock_w3, funding_account):
    client = PrivateRelayClient(
        mock_w3,
        auth_account=funding_account,
        relay_url=TEST_RELAY_URL,
        outcome_timeout=5,
        poll_interval=0,
    )
    yield client
    client.close()


@pytest.fixture
def mock_relay(requests_mock):
    """
    Relay endpoint accepting every bundle.

    The route's ``request_history`` records what was sent.
    """
    def respond(request, context):
        context.headers["Content-Type"] = "application/json"
        body = request.json()
        if body["method"] == "eth_sendBundle":
            return {"jsonrpc": "2.0", "id": body["id"], "result": {"bundleHash": TEST_BUNDLE_HASH}}
        if body["method"] == "flashbots_getBundleStatsV2":
            return {"jsonrpc": "2.0", "id": body["id"], "result": {"isSimulated": True, "isHighPriority": True}}
        context.status_code = 400
        return {"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "method not found"}}

    return requests_mock.post(TEST_RELAY_URL, json=respond)


@pytest.fixture
def chain_includes_bundle(mock_w3, mock_relay, requests_mock):
    """
    Target block contains every transaction of the last bundle sent to the relay.
    """
    def get_block(number, *args, **kwargs):
        sent = [
            r.json() for r in requests_mock.request_history
            if r.json()["method"] == "eth_sendBundle"
        ]
        txs = sent[-1]["params"][0]["txs"] if sent else []
        other = "0x" + "11" * 32
        return {"number": number, "transactions": [other] + [keccak(hexstr=raw) for raw in txs]}

    mock_w3.eth.get_block = MagicMock(side_effect=get_block)
    return mock_w3
