"""
ensreg: register .eth names through the ENS commit-reveal flow.

- Quote the exact rent price (base + premium) for a label and duration
- Commit, wait out minCommitmentAge, register with the same secret
- Resolve names to addresses and addresses back to primary names
- Keep local internal names for contracts, transactions and events

Works against every ETHRegistrarController generation on mainnet, sepolia and
holesky (legacy, NameWrapper and Registration-struct); the controller's ABI shape
is detected once per session.
"""

__version__ = "0.1.0"

from ensreg.config import NetworkConfig, Settings, get_network_config, load_env
from ensreg.controller import CommitmentVariant, PriceShape, RegistrarController
from ensreg.errors import (
    CommitmentPending,
    ConfigError,
    EnsRegError,
    InsufficientFunds,
    InvalidDuration,
    InvalidLabel,
    InvalidName,
    InvalidSecret,
    NameUnavailable,
    NoContractCode,
    NoMatchingCommitment,
    PriceUnavailable,
    RpcError,
    TooEarly,
    VerificationMismatch,
    WouldRevert,
)
from ensreg.names import generate_secret, is_valid_label, is_valid_name, labelhash, namehash, reverse_node
from ensreg.naming import InternalNameRegistry, JsonFileStore, MemoryStore
from ensreg.orchestrator import RegistrationOrchestrator
from ensreg.schema import CommitmentStatus, CommitResult, NetworkStatus, Quote, RegistrationResult, ResolveResult
from ensreg.wallet import Wallet

__all__ = [
    "__version__",
    "NetworkConfig",
    "Settings",
    "get_network_config",
    "load_env",
    "CommitmentVariant",
    "PriceShape",
    "RegistrarController",
    "RegistrationOrchestrator",
    "Quote",
    "CommitResult",
    "CommitmentStatus",
    "RegistrationResult",
    "ResolveResult",
    "NetworkStatus",
    "InternalNameRegistry",
    "JsonFileStore",
    "MemoryStore",
    "Wallet",
    "generate_secret",
    "is_valid_label",
    "is_valid_name",
    "labelhash",
    "namehash",
    "reverse_node",
    "EnsRegError",
    "ConfigError",
    "InvalidLabel",
    "InvalidName",
    "InvalidSecret",
    "NameUnavailable",
    "CommitmentPending",
    "NoMatchingCommitment",
    "TooEarly",
    "WouldRevert",
    "InsufficientFunds",
    "InvalidDuration",
    "PriceUnavailable",
    "RpcError",
    "NoContractCode",
    "VerificationMismatch",
]
