"""
Error kinds raised by ensreg.

Every failure of a public operation is one of these. Local validation errors are
raised before any network call; contract and transport errors carry the most
specific cause available (revert reason first, raw transport message second).
"""

from typing import Optional


class EnsRegError(Exception):
    """Base class for all handled ensreg failures."""


class ConfigError(EnsRegError):
    """Required configuration (RPC URL, private key, address) is missing or malformed."""


class InvalidLabel(EnsRegError):
    def __init__(self, label: str):
        self.label = label
        super().__init__(
            f"Invalid label: {label!r}. Must be lowercase alphanumeric with hyphens, "
            "1-63 chars, no leading/trailing hyphens."
        )


class InvalidName(EnsRegError):
    def __init__(self, name: str, hint: str = "Must be a valid ENS name (e.g., vitalik.eth)"):
        self.name = name
        super().__init__(f"Invalid name: {name!r}. {hint}")


class NameUnavailable(EnsRegError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is NOT available.")


class CommitmentPending(EnsRegError):
    """An unexpired commitment for the same tuple exists and has not matured yet."""

    def __init__(self, commitment: str, remaining_seconds: int):
        self.commitment = commitment
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Unexpired previous commitment {commitment}. Wait ~{remaining_seconds}s "
            "and reuse the same secret; do not resubmit."
        )


class NoMatchingCommitment(EnsRegError):
    def __init__(self, label: str):
        self.label = label
        super().__init__(
            f"No matching, unexpired commitment for {label}.eth with this owner, secret and duration. "
            "Run 'commit' again with the same --secret and -y."
        )


class TooEarly(EnsRegError):
    def __init__(self, commitment: str, remaining_seconds: int):
        self.commitment = commitment
        self.remaining_seconds = remaining_seconds
        super().__init__(f"Commitment {commitment} is too young. Wait ~{remaining_seconds}s before registering.")


class WouldRevert(EnsRegError):
    def __init__(self, action: str, reason: Optional[str] = None):
        self.action = action
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"{action} would revert{detail}")


class InsufficientFunds(EnsRegError):
    def __init__(self, address: str, balance: int, required: int):
        self.address = address
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient balance on {address}: have {balance} wei, need at least {required} wei. "
            "Fund a little ETH on the target chain."
        )


class PriceUnavailable(EnsRegError):
    def __init__(self, label: str, detail: str):
        self.label = label
        self.detail = detail
        super().__init__(f"Could not read rent price for {label}.eth: {detail}")


class RpcError(EnsRegError):
    """Transport-level JSON-RPC failure (connection refused, timeout, malformed response)."""


class NoContractCode(EnsRegError):
    def __init__(self, address: str, role: str = "contract"):
        self.address = address
        self.role = role
        super().__init__(f"No {role} code at {address}. Wrong network or address?")


class VerificationMismatch(EnsRegError):
    def __init__(self, name: str, expected: str, actual: str):
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(f"Registered {name} but owner is {actual}, expected {expected}")


class InvalidSecret(EnsRegError):
    def __init__(self, detail: str = "Secret must be 32-byte hex (0x + 64 chars)"):
        super().__init__(detail)


class InvalidDuration(EnsRegError):
    def __init__(self, seconds, minimum: Optional[int] = None):
        self.seconds = seconds
        self.minimum = minimum
        if minimum is None:
            hint = "Must be a positive number of seconds."
        else:
            hint = f"The controller requires at least {minimum}s (MIN_REGISTRATION_DURATION)."
        super().__init__(f"Invalid duration: {seconds}s. {hint}")
