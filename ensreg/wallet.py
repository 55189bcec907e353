"""
Signing wallet: local keypair, no API keys.

Key is taken from Settings (PRIVATE_KEY env or .env); CLIENT_PRIVATE_KEY is accepted as fallback.
Never read/write a key file.
"""

from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ensreg.errors import ConfigError


def _strip_0x(key: str) -> str:
    key = key.strip()
    return key[2:] if key.startswith("0x") else key


def load_account(private_key: Optional[str]) -> LocalAccount:
    """Build an account from a hex private key. Raises ConfigError if absent or malformed."""
    if not private_key or not private_key.strip():
        raise ConfigError(
            "Set PRIVATE_KEY in the environment (never commit it). "
            "Generate one: python -c \"from eth_account import Account; a = Account.create(); print(a.key.hex())\""
        )
    try:
        return Account.from_key(_strip_0x(private_key))
    except (ValueError, TypeError) as e:
        raise ConfigError(f"PRIVATE_KEY is not a valid secp256k1 key: {e}") from None


def _raw_transaction(signed) -> bytes:
    # eth-account >= 0.13 renamed rawTransaction -> raw_transaction
    raw = getattr(signed, "raw_transaction", None)
    if raw is None:
        raw = getattr(signed, "rawTransaction", None)
    if raw is None:
        raise RuntimeError("Signed transaction missing raw transaction data")
    return bytes(raw)


class Wallet:
    """Holds the signing account for one session."""

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_key(cls, private_key: Optional[str]) -> "Wallet":
        return cls(load_account(private_key))

    @property
    def address(self) -> str:
        """Checksummed address; owner of names registered by this wallet."""
        return self._account.address

    def sign_transaction(self, tx: dict) -> bytes:
        """Sign a transaction dict. Returns the raw signed bytes ready for eth_sendRawTransaction."""
        return _raw_transaction(self._account.sign_transaction(tx))
