"""
ETH registrar controller wrapper with ABI-shape detection.

Controller deployments differ in two places:
- commitment hashing and register arguments, one of four generations:
    registration   makeCommitment(Registration) / register(Registration)
    wrapped        makeCommitment(name, owner, duration, secret, resolver, data, reverseRecord, fuses)
    with_config    makeCommitmentWithConfig(name, owner, secret, resolver, addr)
    simple         makeCommitment(name, owner, secret)
- rentPrice output: uint256 vs (base, premium)

Each is detected on first use (try A, fall back to B on revert/decode failure) and the
answer is cached on the RegistrarController instance, one per controller address.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from ensreg.abi import CONTROLLER_ABI, REGISTRATION_CONTROLLER_ABI, RENT_PRICE_SELECTOR, WRAPPED_CONTROLLER_ABI
from ensreg.errors import PriceUnavailable, WouldRevert
from ensreg.names import SECONDS_PER_YEAR, ZERO_ADDRESS, ZERO_NODE
from ensreg.rpc import CONTRACT_ERRORS, call_read, call_view, hexstr, revert_reason

logger = logging.getLogger(__name__)

DEFAULT_MIN_COMMITMENT_AGE = 60
DEFAULT_MAX_COMMITMENT_AGE = 86400
DEFAULT_DURATION = SECONDS_PER_YEAR


class CommitmentVariant(str, Enum):
    REGISTRATION = "registration"
    WRAPPED = "wrapped"
    WITH_CONFIG = "with_config"
    SIMPLE = "simple"

    @property
    def binds_duration(self) -> bool:
        """The commitment hash covers the duration, so register must reuse it."""
        return self in (CommitmentVariant.REGISTRATION, CommitmentVariant.WRAPPED)

    @property
    def register_method(self) -> str:
        return "registerWithConfig" if self is CommitmentVariant.WITH_CONFIG else "register"


# newest generation first
VARIANT_ORDER = (
    CommitmentVariant.REGISTRATION,
    CommitmentVariant.WRAPPED,
    CommitmentVariant.WITH_CONFIG,
    CommitmentVariant.SIMPLE,
)


class PriceShape(str, Enum):
    FLAT = "flat"
    STRUCT = "struct"


@dataclass
class ControllerCapabilities:
    commitment_variant: Optional[CommitmentVariant] = None
    price_shape: Optional[PriceShape] = None


def decode_rent_price(raw: bytes, shape: PriceShape) -> Tuple[int, int]:
    """Decode rentPrice return data as (base, premium). FLAT requires exactly one word."""
    raw = bytes(raw)
    if shape is PriceShape.FLAT:
        if len(raw) != 32:
            raise DecodingError(f"expected 32 bytes for uint256, got {len(raw)}")
        (total,) = decode(["uint256"], raw)
        return total, 0
    if len(raw) < 64:
        raise DecodingError(f"expected 64 bytes for (base, premium), got {len(raw)}")
    base, premium = decode(["uint256", "uint256"], raw[:64])
    return base, premium


class RegistrarController:
    """Reads and transaction builders for one controller address."""

    def __init__(self, w3: Web3, address: str, read: Callable = call_read):
        self.w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.contract = w3.eth.contract(address=self.address, abi=CONTROLLER_ABI)
        self.wrapped = w3.eth.contract(address=self.address, abi=WRAPPED_CONTROLLER_ABI)
        self.registration = w3.eth.contract(address=self.address, abi=REGISTRATION_CONTROLLER_ABI)
        self.capabilities = ControllerCapabilities()
        self._read = read

    # --- plain reads ---

    def available(self, label: str) -> bool:
        return bool(call_view(lambda: self.contract.functions.available(label).call(), "available()", read=self._read))

    def commitment_window(self) -> Tuple[int, int]:
        """(minCommitmentAge, maxCommitmentAge); falls back to 60s / 1 day if a read reverts."""
        try:
            min_age = int(self._read(lambda: self.contract.functions.minCommitmentAge().call(), "minCommitmentAge()"))
        except CONTRACT_ERRORS:
            min_age = DEFAULT_MIN_COMMITMENT_AGE
        try:
            max_age = int(self._read(lambda: self.contract.functions.maxCommitmentAge().call(), "maxCommitmentAge()"))
        except CONTRACT_ERRORS:
            max_age = DEFAULT_MAX_COMMITMENT_AGE
        return min_age, max_age

    def min_registration_duration(self) -> Optional[int]:
        """MIN_REGISTRATION_DURATION, or None on builds that do not expose it."""
        try:
            return int(
                self._read(
                    lambda: self.contract.functions.MIN_REGISTRATION_DURATION().call(), "MIN_REGISTRATION_DURATION()"
                )
            )
        except CONTRACT_ERRORS:
            return None

    def commitment_timestamp(self, commitment: bytes) -> int:
        """On-chain timestamp of a commitment; 0 when absent."""
        return int(
            call_view(lambda: self.contract.functions.commitments(commitment).call(), "commitments()", read=self._read)
        )

    # --- commitments ---

    def _functions(
        self,
        variant: CommitmentVariant,
        label: str,
        owner: str,
        secret: bytes,
        resolver: str,
        duration: int,
        register: bool = False,
    ):
        owner = Web3.to_checksum_address(owner)
        resolver = Web3.to_checksum_address(resolver)
        if variant is CommitmentVariant.REGISTRATION:
            registration = (label, owner, duration, secret, resolver, [], 0, ZERO_NODE)
            fns = self.registration.functions
            return fns.register(registration) if register else fns.makeCommitment(registration)
        if variant is CommitmentVariant.WRAPPED:
            args = (label, owner, duration, secret, resolver, [], False, 0)
            fns = self.wrapped.functions
            return fns.register(*args) if register else fns.makeCommitment(*args)
        fns = self.contract.functions
        if variant is CommitmentVariant.WITH_CONFIG:
            if register:
                return fns.registerWithConfig(label, owner, duration, secret, resolver, owner)
            return fns.makeCommitmentWithConfig(label, owner, secret, resolver, owner)
        return fns.register(label, owner, duration, secret) if register else fns.makeCommitment(label, owner, secret)

    def make_commitment(
        self,
        variant: CommitmentVariant,
        label: str,
        owner: str,
        secret: bytes,
        resolver: str,
        duration: int = DEFAULT_DURATION,
    ) -> bytes:
        fn = self._functions(variant, label, owner, secret, resolver, duration)
        return bytes(self._read(fn.call, f"makeCommitment[{variant.value}]"))

    def _variant_order(self, resolver: str) -> List[CommitmentVariant]:
        cached = self.capabilities.commitment_variant
        if cached is not None:
            return [cached]
        return [v for v in VARIANT_ORDER if not (v is CommitmentVariant.WITH_CONFIG and resolver == ZERO_ADDRESS)]

    def preferred_commitment(
        self, label: str, owner: str, secret: bytes, resolver: str, duration: int = DEFAULT_DURATION
    ) -> Tuple[CommitmentVariant, bytes]:
        """
        Commitment under the variant this controller accepts, newest generation first.
        Legacy with-config is skipped when no resolver is known. The first variant
        that answers is cached; WouldRevert when none does.
        """
        errors = []
        for variant in self._variant_order(resolver):
            try:
                commitment = self.make_commitment(variant, label, owner, secret, resolver, duration)
            except CONTRACT_ERRORS as e:
                logger.debug("%s commitment unsupported at %s: %s", variant.value, self.address, e)
                errors.append(f"{variant.value}: {revert_reason(e) or 'reverted'}")
                continue
            # without a resolver with-config was never tried, so simple proves nothing
            if resolver != ZERO_ADDRESS or variant is not CommitmentVariant.SIMPLE:
                self.capabilities.commitment_variant = variant
            return variant, commitment
        raise WouldRevert("makeCommitment", "controller rejected every commitment variant (" + "; ".join(errors) + ")")

    def all_commitments(
        self, label: str, owner: str, secret: bytes, resolver: str, duration: int = DEFAULT_DURATION
    ) -> List[Tuple[CommitmentVariant, bytes]]:
        """Every commitment this controller can compute for the tuple, newest generation first."""
        out = []
        for variant in VARIANT_ORDER:
            if variant is CommitmentVariant.WITH_CONFIG and resolver == ZERO_ADDRESS:
                continue
            try:
                out.append((variant, self.make_commitment(variant, label, owner, secret, resolver, duration)))
            except CONTRACT_ERRORS as e:
                logger.debug("%s commitment unavailable at %s: %s", variant.value, self.address, e)
        return out

    # --- price ---

    def rent_price(self, label: str, duration: int) -> Tuple[int, int, PriceShape]:
        """(base, premium, shape). Raises PriceUnavailable if no shape decodes."""
        data = RENT_PRICE_SELECTOR + encode(["string", "uint256"], [label, duration])
        try:
            raw = self._read(
                lambda: self.w3.eth.call({"to": self.address, "data": hexstr(data)}),
                "rentPrice()",
            )
        except CONTRACT_ERRORS as e:
            raise PriceUnavailable(label, revert_reason(e) or "rentPrice reverted") from e

        cached = self.capabilities.price_shape
        shapes = [cached] if cached else [PriceShape.FLAT, PriceShape.STRUCT]
        errors = []
        for shape in shapes:
            try:
                base, premium = decode_rent_price(raw, shape)
            except DecodingError as e:
                errors.append(f"{shape.value}: {e}")
                continue
            self.capabilities.price_shape = shape
            return base, premium, shape
        raise PriceUnavailable(label, "; ".join(errors))

    # --- transactions ---

    def commit_function(self, commitment: bytes):
        return self.contract.functions.commit(commitment)

    def register_function(
        self, variant: CommitmentVariant, label: str, owner: str, duration: int, secret: bytes, resolver: str
    ):
        return self._functions(variant, label, owner, secret, resolver, duration, register=True)
