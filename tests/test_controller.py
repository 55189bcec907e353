import pytest
import requests
from eth_abi import encode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address
from web3.exceptions import ContractLogicError

from ensreg.controller import CommitmentVariant, PriceShape, RegistrarController, decode_rent_price
from ensreg.errors import PriceUnavailable, RpcError, WouldRevert
from ensreg.names import ZERO_NODE
from ensreg.rpc import call_read, call_view, revert_reason
from tests.conftest import CONTROLLER, MIN_DURATION, PRICE, RESOLVER, revert


def test_decode_flat_and_struct_agree():
    flat = encode(["uint256"], [PRICE])
    struct = encode(["uint256", "uint256"], [PRICE, 0])
    assert decode_rent_price(flat, PriceShape.FLAT) == (PRICE, 0)
    base, premium = decode_rent_price(struct, PriceShape.STRUCT)
    assert base + premium == PRICE


def test_decode_flat_rejects_struct_output():
    with pytest.raises(DecodingError):
        decode_rent_price(encode(["uint256", "uint256"], [1, 2]), PriceShape.FLAT)
    with pytest.raises(DecodingError):
        decode_rent_price(encode(["uint256"], [1]), PriceShape.STRUCT)


def test_rent_price_caches_shape(chain):
    ctrl = RegistrarController(chain, CONTROLLER)
    assert ctrl.rent_price("alice", 1) == (PRICE, 0, PriceShape.STRUCT)
    assert ctrl.capabilities.price_shape is PriceShape.STRUCT

    # once struct is known, a flat answer no longer decodes
    chain.controller.price_shape = "flat"
    with pytest.raises(PriceUnavailable):
        ctrl.rent_price("alice", 1)


def test_preferred_commitment_matches_contract_hash(chain):
    ctrl = RegistrarController(chain, CONTROLLER)
    owner = "0x" + "aa" * 20
    secret = b"\x07" * 32
    variant, commitment = ctrl.preferred_commitment("alice", owner, secret, RESOLVER)
    assert variant is CommitmentVariant.WITH_CONFIG
    assert commitment == chain.controller.config_commitment(
        "alice", to_checksum_address(owner), secret, RESOLVER, to_checksum_address(owner)
    )
    assert ctrl.capabilities.commitment_variant is CommitmentVariant.WITH_CONFIG


def test_all_commitments_skips_unsupported(chain):
    chain.controller.with_config = False
    ctrl = RegistrarController(chain, CONTROLLER)
    computed = ctrl.all_commitments("alice", "0x" + "aa" * 20, b"\x07" * 32, RESOLVER)
    assert [v for v, _ in computed] == [CommitmentVariant.SIMPLE]


OWNER = to_checksum_address("0x" + "aa" * 20)
SECRET = b"\x07" * 32


def test_wrapped_commitment_matches_contract_hash(chain):
    chain.controller.generation = "wrapped"
    ctrl = RegistrarController(chain, CONTROLLER)
    variant, commitment = ctrl.preferred_commitment("alice", OWNER, SECRET, RESOLVER, 2 * 31536000)
    assert variant is CommitmentVariant.WRAPPED
    assert commitment == chain.controller.wrapped_commitment(
        "alice", OWNER, 2 * 31536000, SECRET, RESOLVER, [], False, 0
    )
    assert ctrl.capabilities.commitment_variant is CommitmentVariant.WRAPPED


def test_registration_commitment_binds_duration(chain):
    chain.controller.generation = "registration"
    ctrl = RegistrarController(chain, CONTROLLER)
    variant, one_year = ctrl.preferred_commitment("alice", OWNER, SECRET, RESOLVER, 31536000)
    assert variant is CommitmentVariant.REGISTRATION
    assert one_year == chain.controller.registration_commitment(
        ("alice", OWNER, 31536000, SECRET, RESOLVER, [], 0, ZERO_NODE)
    )
    _, two_years = ctrl.preferred_commitment("alice", OWNER, SECRET, RESOLVER, 2 * 31536000)
    assert two_years != one_year


def test_no_commitment_method_raises_would_revert(chain):
    chain.controller.generation = "unknown"
    ctrl = RegistrarController(chain, CONTROLLER)
    with pytest.raises(WouldRevert) as exc:
        ctrl.preferred_commitment("alice", OWNER, SECRET, RESOLVER)
    assert exc.value.action == "makeCommitment"
    assert "simple" in exc.value.reason
    assert ctrl.capabilities.commitment_variant is None
    assert ctrl.all_commitments("alice", OWNER, SECRET, RESOLVER) == []


def test_reverting_reads_raise_would_revert(chain):
    chain.controller.paused = "paused"
    ctrl = RegistrarController(chain, CONTROLLER)
    with pytest.raises(WouldRevert, match="paused"):
        ctrl.available("alice")

    chain.controller.view_commitments = lambda commitment: revert("bad commitment")
    with pytest.raises(WouldRevert, match="bad commitment"):
        ctrl.commitment_timestamp(b"\x00" * 32)


def test_min_registration_duration(chain):
    ctrl = RegistrarController(chain, CONTROLLER)
    assert ctrl.min_registration_duration() == MIN_DURATION

    chain.controller.view_MIN_REGISTRATION_DURATION = lambda: revert()
    assert ctrl.min_registration_duration() is None


def test_call_view_wraps_reverts():
    def reverting():
        raise ContractLogicError("execution reverted: nope")

    with pytest.raises(WouldRevert) as exc:
        call_view(reverting, "reverting()", read=lambda fn, _: fn())
    assert exc.value.reason == "nope"
    assert isinstance(exc.value.__cause__, ContractLogicError)


def test_call_read_retries_transport_errors():
    sleeps = []
    attempts = iter([requests.exceptions.ConnectionError("reset"), requests.exceptions.Timeout("slow"), 42])

    def flaky():
        outcome = next(attempts)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert call_read(flaky, "flaky()", sleep=sleeps.append) == 42
    assert sleeps == [0.5, 1.0]


def test_call_read_gives_up():
    def down():
        raise requests.exceptions.ConnectionError("refused")

    with pytest.raises(RpcError, match="after 3 attempts"):
        call_read(down, "down()", sleep=lambda _: None)


def test_call_read_does_not_retry_reverts():
    calls = []

    def reverting():
        calls.append(1)
        raise ContractLogicError("execution reverted: nope")

    with pytest.raises(ContractLogicError):
        call_read(reverting, "reverting()", sleep=lambda _: None)
    assert len(calls) == 1


def test_revert_reason():
    assert revert_reason(ContractLogicError("execution reverted: Too early")) == "Too early"
    assert revert_reason(ContractLogicError("execution reverted")) is None
    assert revert_reason(ValueError({"code": -32000, "message": "insufficient funds for gas"})) == (
        "insufficient funds for gas"
    )
