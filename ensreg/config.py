"""
Network and session configuration.

Values come from the environment (optionally a .env file in the cwd). Nothing here
opens a connection: Settings.from_env validates that every required value is
present so a misconfigured command fails before the first RPC call.

Environment:
  PRIVATE_KEY            signing key (CLIENT_PRIVATE_KEY accepted as fallback)
  SEPOLIA_RPC_URL        RPC for sepolia
  HOLESKY_RPC_URL        RPC for holesky
  ETHEREUM_RPC_URL       RPC for mainnet (MAINNET_RPC_URL accepted as fallback)
  RPC_URL                overrides the RPC of whichever network is selected
  ENS_REGISTRY           registry address override
  ENS_CONTROLLER         registrar controller address override
  ENS_PUBLIC_RESOLVER    resolver passed at registration (skips resolver.eth lookup)
  ENS_NAME_WRAPPER       NameWrapper override (owner check for wrapped registrations)
  ENS_NETWORK            default network (sepolia if unset)
"""

import os
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv
from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, Field, field_validator

from ensreg.errors import ConfigError

ENS_REGISTRY = "0x00000000000C2E074eC69A0dFb2997BA6C7d2e1e"

ENV_PRIVATE_KEY = "PRIVATE_KEY"
ENV_PRIVATE_KEY_FALLBACK = "CLIENT_PRIVATE_KEY"
ENV_NETWORK = "ENS_NETWORK"
DEFAULT_NETWORK = "sepolia"


class NetworkConfig(BaseModel):
    """Addresses and RPC for one chain."""

    name: str = Field(..., description="Network key: mainnet, sepolia, holesky")
    display_name: str
    chain_id: int
    rpc_url: Optional[str] = Field(None, description="JSON-RPC endpoint; required before connecting")
    registry: str
    controller: str
    public_resolver: Optional[str] = Field(
        None, description="Resolver to use at registration; looked up via resolver.eth when unset"
    )
    name_wrapper: Optional[str] = Field(None, description="Holds names minted by the wrapped controller")

    @field_validator("registry", "controller", "public_resolver", "name_wrapper")
    @classmethod
    def _checksum(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not is_address(value):
            raise ValueError(f"not an address: {value}")
        return to_checksum_address(value)


# (display name, chain id, controller, name wrapper, rpc env vars in priority order)
_NETWORKS: Dict[str, Tuple[str, int, str, str, Tuple[str, ...]]] = {
    "mainnet": (
        "Ethereum Mainnet",
        1,
        "0x253553366Da8546fC250F225fe3d25d0C782303b",
        "0xd4416b13d2b3a9abae7acd5d6c2bbdbe25686401",
        ("ETHEREUM_RPC_URL", "MAINNET_RPC_URL"),
    ),
    "sepolia": (
        "Sepolia Testnet",
        11155111,
        "0xfb3cE5D01e0f33f41DbB39035dB9745962F1f968",
        "0x0635513f179d50a207757e05759cbd106d7dfce8",
        ("SEPOLIA_RPC_URL",),
    ),
    "holesky": (
        "Holesky Testnet",
        17000,
        "0xfce6ce4373cb6e7e470eaa55329638acd9dbd202",
        "0xab50971078225d365994dc1edcb9b7fd72bb4862",
        ("HOLESKY_RPC_URL",),
    ),
}

NETWORK_NAMES = tuple(_NETWORKS)


def load_env(path: Optional[Path] = None) -> None:
    """Load .env from cwd (or path) without overriding variables already exported."""
    load_dotenv(path or Path.cwd() / ".env", override=False)


def _env(*names: str) -> Optional[str]:
    for n in names:
        value = (os.getenv(n) or "").strip()
        if value:
            return value
    return None


def rpc_env_vars(network: str) -> Tuple[str, ...]:
    return ("RPC_URL",) + _NETWORKS[network][4]


def default_network() -> str:
    return (_env(ENV_NETWORK) or DEFAULT_NETWORK).lower()


def get_network_config(network: str) -> NetworkConfig:
    """Build NetworkConfig for a network key, applying env overrides."""
    network = network.lower()
    if network == "testnet":
        network = "sepolia"
    if network not in _NETWORKS:
        raise ConfigError(f"Unsupported network: {network}. Choose one of {', '.join(NETWORK_NAMES)}")
    display, chain_id, controller, name_wrapper, _ = _NETWORKS[network]
    try:
        return NetworkConfig(
            name=network,
            display_name=display,
            chain_id=chain_id,
            rpc_url=_env(*rpc_env_vars(network)),
            registry=_env("ENS_REGISTRY") or ENS_REGISTRY,
            controller=_env("ENS_CONTROLLER") or controller,
            public_resolver=_env("ENS_PUBLIC_RESOLVER"),
            name_wrapper=_env("ENS_NAME_WRAPPER") or name_wrapper,
        )
    except ValueError as e:
        raise ConfigError(f"Invalid address override for {network}: {e}") from e


class Settings(BaseModel):
    """Everything one orchestrator session needs: the network and (optionally) a signing key."""

    network: NetworkConfig
    private_key: Optional[str] = Field(None, repr=False)

    @classmethod
    def from_env(cls, network: Optional[str] = None, require_key: bool = True) -> "Settings":
        """
        Read settings from the environment. Raises ConfigError naming the missing
        variable when the RPC URL (always) or the private key (write commands) is absent.
        """
        net = get_network_config(network or default_network())
        if not net.rpc_url:
            names = " or ".join(rpc_env_vars(net.name))
            raise ConfigError(f"Missing RPC URL for {net.display_name}. Set {names} in .env")
        pk = _env(ENV_PRIVATE_KEY, ENV_PRIVATE_KEY_FALLBACK)
        if require_key and not pk:
            raise ConfigError(f"Missing {ENV_PRIVATE_KEY} in .env (never commit it)")
        return cls(network=net, private_key=pk)
