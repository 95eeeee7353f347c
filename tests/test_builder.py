"""
Tests for TransferIntentBuilder.
"""
import pytest

from web3 import Web3

from bundle_rescue.builder import VALUE_TRANSFER_GAS, TransferIntentBuilder
from bundle_rescue.encoder import InstructionEncoder
from bundle_rescue.exceptions import InvalidAmount, InvalidDestination, UnknownMethod
from bundle_rescue.models import TokenDescriptor, TransferRequest, UnsignedEnvelope
from conftest import TEST_DESTINATION, TEST_TOKEN

SOURCE = "0x" + "aa" * 20
GAS_LIMIT = 100_000
GAS_PRICE = 20 * 10**9


@pytest.fixture
def request_(token):
    return TransferRequest.from_quantity(token, SOURCE, TEST_DESTINATION, "5")


def test_build_transfer_envelope(builder, encoder, request_):
    envelope = builder.build(request_, GAS_LIMIT, GAS_PRICE)

    assert isinstance(envelope, UnsignedEnvelope)
    assert envelope.to == TEST_TOKEN
    assert envelope.value == 0
    assert envelope.gas_limit == GAS_LIMIT
    assert envelope.gas_price == GAS_PRICE
    assert envelope.max_fee_wei == 2 * 10**15

    name, args = encoder.decode_call(envelope.data)
    assert name == "transfer"
    assert args == [Web3.to_checksum_address(TEST_DESTINATION), 500_000_000]


def test_envelope_transaction_dict(builder, request_):
    envelope = builder.build(request_, GAS_LIMIT, GAS_PRICE)
    tx = envelope.to_transaction(nonce=3, chain_id=1)
    assert tx == {
        "to": TEST_TOKEN,
        "value": 0,
        "gas": GAS_LIMIT,
        "gasPrice": GAS_PRICE,
        "nonce": 3,
        "chainId": 1,
        "data": envelope.data,
    }


@pytest.mark.parametrize("amount", [0, -5, True, "5"])
def test_invalid_amount(builder, token, amount):
    request = TransferRequest(token=token, source=SOURCE, destination=TEST_DESTINATION, amount=amount)
    with pytest.raises(InvalidAmount):
        builder.build(request, GAS_LIMIT, GAS_PRICE)


def test_quantity_with_too_many_decimals(token):
    with pytest.raises(InvalidAmount):
        TransferRequest.from_quantity(token, SOURCE, TEST_DESTINATION, "1.000000001")


@pytest.mark.parametrize("destination", ["0x1234", "not-an-address", ""])
def test_invalid_destination(builder, token, destination):
    request = TransferRequest(token=token, source=SOURCE, destination=destination, amount=1)
    with pytest.raises(InvalidDestination):
        builder.build(request, GAS_LIMIT, GAS_PRICE)


def test_destination_equal_to_source(builder, token):
    request = TransferRequest(token=token, source=SOURCE, destination=SOURCE.upper().replace("0X", "0x"), amount=1)
    with pytest.raises(InvalidDestination):
        builder.build(request, GAS_LIMIT, GAS_PRICE)


def test_descriptor_without_transfer(token):
    abi = [{"type": "function", "name": "approve",
            "inputs": [{"name": "s", "type": "address"}, {"name": "v", "type": "uint256"}],
            "outputs": [{"name": "", "type": "bool"}]}]
    encoder = InstructionEncoder.from_abi(abi)
    bare_token = TokenDescriptor(address=token.address, decimals=8, methods=encoder.methods)
    request = TransferRequest(token=bare_token, source=SOURCE, destination=TEST_DESTINATION, amount=1)
    with pytest.raises(UnknownMethod):
        TransferIntentBuilder(encoder).build(request, GAS_LIMIT, GAS_PRICE)


def test_non_positive_gas_rejected(builder, request_):
    with pytest.raises(ValueError):
        builder.build(request_, 0, GAS_PRICE)
    with pytest.raises(ValueError):
        builder.build(request_, GAS_LIMIT, 0)


def test_gas_funding_envelope(builder):
    envelope = builder.build_gas_funding(SOURCE, GAS_LIMIT, GAS_PRICE)

    assert envelope.to == Web3.to_checksum_address(SOURCE)
    assert envelope.value == GAS_LIMIT * GAS_PRICE
    assert envelope.gas_limit == VALUE_TRANSFER_GAS
    assert envelope.gas_price == GAS_PRICE
    assert envelope.data == "0x"
    # Plain value transfers carry no call data
    assert "data" not in envelope.to_transaction(nonce=0, chain_id=1)


def test_gas_funding_bad_recipient(builder):
    with pytest.raises(InvalidDestination):
        builder.build_gas_funding("0xnope", GAS_LIMIT, GAS_PRICE)
