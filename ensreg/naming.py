"""
Internal names: local, off-chain labels for contracts, transactions and events.

Lookups consult this directory before ENS. Persistence goes through a small
KeyValueStore interface so the directory works the same in memory (tests), in a
JSON file (CLI) or any other string key-value backend.
"""

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from eth_utils import is_address, to_checksum_address
from pydantic import ValidationError

from ensreg.errors import ConfigError, InvalidName
from ensreg.schema import InternalName, NameType

logger = logging.getLogger(__name__)

STORE_KEY = "ens-internal-names"
ENV_NAMES_FILE = "ENSREG_NAMES_FILE"
DEFAULT_NAMES_FILE = Path.home() / ".ensreg" / "internal-names.json"

_TX_HASH_RE = re.compile(r"0x[0-9a-fA-F]{64}")


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore:
    """String key-value pairs in one JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def default(cls) -> "JsonFileStore":
        return cls(Path(os.getenv(ENV_NAMES_FILE) or DEFAULT_NAMES_FILE))

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read internal names file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Internal names file {self.path} does not hold a JSON object")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


def check_target(address: str, type: NameType) -> str:
    """Checksummed address; transaction names may point at a 32-byte tx hash instead."""
    if type == "transaction" and _TX_HASH_RE.fullmatch(address):
        return address.lower()
    if not is_address(address):
        hint = "Must be a 20-byte hex address"
        if type == "transaction":
            hint += " or a 32-byte transaction hash"
        raise InvalidName(address, hint)
    return to_checksum_address(address)


class InternalNameRegistry:
    """Name -> InternalName directory, persisted as one JSON list under STORE_KEY."""

    def __init__(self, store: KeyValueStore, network: str = "mainnet"):
        self.store = store
        self.network = network
        self._names: Dict[str, InternalName] = {}
        self._load()

    def _load(self) -> None:
        raw = self.store.get(STORE_KEY)
        if not raw:
            return
        try:
            for item in json.loads(raw):
                entry = InternalName(**item)
                self._names[entry.name.lower()] = entry
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning("Failed to load internal names: %s", e)

    def _save(self) -> None:
        self.store.set(STORE_KEY, json.dumps([n.model_dump() for n in self._names.values()]))

    def register(
        self, name: str, address: str, type: NameType, network: Optional[str] = None
    ) -> InternalName:
        entry = InternalName(
            type=type,
            address=check_target(address, type),
            name=name.lower(),
            network=network or self.network,
            timestamp=int(time.time() * 1000),
        )
        self._names[entry.name] = entry
        self._save()
        return entry

    def lookup(self, name: str) -> Optional[InternalName]:
        return self._names.get(name.lower())

    def find_by_address(self, address: str) -> Optional[InternalName]:
        address = address.lower()
        for entry in self._names.values():
            if entry.address.lower() == address:
                return entry
        return None

    def all(self) -> List[InternalName]:
        return list(self._names.values())

    def by_type(self, type: NameType) -> List[InternalName]:
        return [n for n in self._names.values() if n.type == type]

    def remove(self, name: str) -> bool:
        removed = self._names.pop(name.lower(), None) is not None
        if removed:
            self._save()
        return removed

    def clear(self) -> None:
        self._names.clear()
        self._save()
