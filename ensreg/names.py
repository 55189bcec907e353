"""
ENS name helpers: label/name validation, labelhash, namehash, reverse node.

Pure functions, no network access.
"""

import re
import secrets
from typing import Union

from eth_utils import from_wei, is_address, keccak, to_bytes, to_canonical_address

from ensreg.errors import InvalidLabel, InvalidName, InvalidSecret

ZERO_NODE = b"\x00" * 32
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
# namehash("addr.reverse")
ADDR_REVERSE_NODE = bytes.fromhex("91d1777781884d03a6757a803996e38de2a42967fb37eeaca72729271025a9e2")

MAX_LABEL_LENGTH = 63
SECONDS_PER_YEAR = 365 * 24 * 60 * 60

_LABEL_RE = re.compile(r"[a-z0-9-]+")


def is_valid_label(label: str) -> bool:
    if not label or len(label) > MAX_LABEL_LENGTH:
        return False
    if not _LABEL_RE.fullmatch(label):
        return False
    return not (label.startswith("-") or label.endswith("-"))


def is_valid_name(name: str) -> bool:
    if not name:
        return False
    parts = name.split(".")
    if len(parts) < 2:
        return False
    return all(is_valid_label(p) for p in parts)


def check_label(label: str) -> str:
    """Return label unchanged if valid, else raise InvalidLabel."""
    if not is_valid_label(label):
        raise InvalidLabel(label)
    return label


def check_name(name: str) -> str:
    if not is_valid_name(name):
        raise InvalidName(name)
    return name


def labelhash(label: str) -> bytes:
    return keccak(to_bytes(text=label))


def namehash(name: str) -> bytes:
    """ENS namehash: for 'label.eth' both labels are folded in, right to left."""
    node = ZERO_NODE
    labels = [l for l in name.split(".") if l]
    for label in reversed(labels):
        node = keccak(node + labelhash(label))
    return node


def reverse_node(address: str) -> bytes:
    """Node under addr.reverse for an address: keccak(ADDR_REVERSE_NODE || keccak(address bytes))."""
    if not is_address(address):
        raise InvalidName(address, "Must be a 20-byte hex address")
    return keccak(ADDR_REVERSE_NODE + keccak(to_canonical_address(address)))


def generate_secret() -> bytes:
    return secrets.token_bytes(32)


def parse_secret(secret: Union[str, bytes, None]) -> bytes:
    """Accept 32 raw bytes or a 0x-prefixed 64-hex-char string."""
    if isinstance(secret, (bytes, bytearray)):
        if len(secret) != 32:
            raise InvalidSecret(f"Secret must be 32 bytes, got {len(secret)}")
        return bytes(secret)
    if not secret or not secret.startswith("0x") or len(secret) != 66:
        raise InvalidSecret()
    try:
        return bytes.fromhex(secret[2:])
    except ValueError:
        raise InvalidSecret() from None


def years_to_seconds(years: float) -> int:
    return int(years * SECONDS_PER_YEAR)


def format_eth(wei: int) -> str:
    return f"{from_wei(wei, 'ether')} ETH"
