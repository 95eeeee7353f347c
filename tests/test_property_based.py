"""
Property-based tests for amount scaling and call encoding.

These tests verify that properties hold true across many random inputs.
"""
import pytest
from decimal import Decimal, localcontext
from hypothesis import given, strategies as st, settings, HealthCheck

from web3 import Web3

from bundle_rescue.encoder import InstructionEncoder, load_token_descriptor
from bundle_rescue.exceptions import InvalidAmount, UnknownMethod
from bundle_rescue.utils import format_units, scale_amount
from conftest import TEST_TOKEN

# Built once; function-scoped fixtures don't mix with @given
ENCODER = InstructionEncoder.from_descriptor(load_token_descriptor(TEST_TOKEN, 8))

decimals_strategy = st.integers(min_value=0, max_value=30)
base_units_strategy = st.integers(min_value=1, max_value=2**256 - 1)
address_strategy = st.binary(min_size=20, max_size=20).map(Web3.to_checksum_address)
uint256_strategy = st.integers(min_value=0, max_value=2**256 - 1)
method_name_strategy = st.text(
    min_size=1, max_size=30,
    alphabet=st.characters(whitelist_categories=('Lu', 'Ll', 'Nd'), whitelist_characters='_'),
).filter(lambda name: name not in ENCODER.methods)


@settings(max_examples=200)
@given(base_units=base_units_strategy, decimals=decimals_strategy)
def test_scaling_is_exact(base_units, decimals):
    """scale(q, d) == q * 10**d for every q representable at d decimals"""
    with localcontext() as ctx:
        ctx.prec = 100
        quantity = Decimal(base_units).scaleb(-decimals)
    assert scale_amount(str(quantity), decimals) == base_units
    assert scale_amount(format_units(base_units, decimals), decimals) == base_units


@settings(max_examples=100)
@given(whole=st.integers(min_value=1, max_value=10**12), decimals=decimals_strategy)
def test_whole_quantities(whole, decimals):
    assert scale_amount(str(whole), decimals) == whole * 10**decimals


@settings(max_examples=100)
@given(a=base_units_strategy, b=base_units_strategy, decimals=decimals_strategy)
def test_scaling_is_injective(a, b, decimals):
    """Distinct quantities never collapse to the same base amount"""
    qa = format_units(a, decimals)
    qb = format_units(b, decimals)
    if a != b:
        assert scale_amount(qa, decimals) != scale_amount(qb, decimals)


@settings(max_examples=100)
@given(base_units=base_units_strategy, decimals=st.integers(min_value=0, max_value=18))
def test_excess_precision_rejected(base_units, decimals):
    """One more fractional digit than the token has is never silently truncated"""
    with localcontext() as ctx:
        ctx.prec = 100
        quantity = Decimal(base_units).scaleb(-decimals) + Decimal(1).scaleb(-(decimals + 1))
    with pytest.raises(InvalidAmount):
        scale_amount(str(quantity), decimals)


# Argument strategies by ABI input type
ARGUMENT_STRATEGIES = {
    "address": address_strategy,
    "uint256": uint256_strategy,
}
APPROVAL_ENCODER = InstructionEncoder.from_abi([
    {"type": "function", "name": "approve", "stateMutability": "nonpayable",
     "inputs": [{"name": "spender", "type": "address"}, {"name": "value", "type": "uint256"}],
     "outputs": [{"name": "", "type": "bool"}]},
    {"type": "function", "name": "transferFrom", "stateMutability": "nonpayable",
     "inputs": [{"name": "from", "type": "address"}, {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"}],
     "outputs": [{"name": "", "type": "bool"}]},
])
DESCRIPTOR_SIGNATURES = [
    (method_encoder, sig)
    for method_encoder in (ENCODER, APPROVAL_ENCODER)
    for sigs in method_encoder.methods.values()
    for sig in sigs
]


def test_descriptors_cover_erc20_methods():
    names = {sig.name for _, sig in DESCRIPTOR_SIGNATURES}
    assert {
        "transfer", "balanceOf", "allowance", "approve", "transferFrom", "decimals", "symbol", "totalSupply",
    } <= names


@pytest.mark.parametrize(
    "method_encoder, signature", DESCRIPTOR_SIGNATURES, ids=[sig.signature for _, sig in DESCRIPTOR_SIGNATURES]
)
@settings(max_examples=50, suppress_health_check=[HealthCheck.too_slow])
@given(data=st.data())
def test_encoding_round_trip(method_encoder, signature, data):
    """Decoding the call data yields the encoded method and arguments"""
    args = [data.draw(ARGUMENT_STRATEGIES[typ]) for typ in signature.inputs]
    encoded = method_encoder.encode(signature.name, args)
    assert encoded[:4] == signature.selector
    assert len(encoded) == 4 + 32 * len(args)
    assert method_encoder.decode_call(encoded) == (signature.name, args)


@settings(max_examples=50)
@given(destination=address_strategy, a=uint256_strategy, b=uint256_strategy)
def test_distinct_amounts_give_distinct_call_data(destination, a, b):
    if a != b:
        assert ENCODER.encode("transfer", [destination, a]) != ENCODER.encode("transfer", [destination, b])


@settings(max_examples=50)
@given(name=method_name_strategy)
def test_unknown_methods_always_rejected(name):
    with pytest.raises(UnknownMethod):
        ENCODER.encode(name, [])
