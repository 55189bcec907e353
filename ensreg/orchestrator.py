"""
Commit-reveal registration of .eth names, plus forward/reverse resolution.

Flow (ENS docs: https://docs.ens.domains/registry/eth):
  1. commit(label)   -> submit hash(label, owner, secret[, duration, resolver, ...]); keep the secret
  2. wait            -> at least minCommitmentAge, at most maxCommitmentAge
  3. register(label) -> reveal the same tuple and pay rentPrice

Commitment age is always re-read on-chain (latest block timestamp) right before
acting, so caller-side timers are never trusted. One orchestrator owns one
connection, one signing key and one controller session; it is not thread-safe.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from eth_utils import is_address
from web3 import Web3

from ensreg.abi import COMMON_TEXT_KEYS, NAME_WRAPPER_ABI, REGISTRY_ABI, RESOLVER_ABI
from ensreg.config import Settings
from ensreg.controller import DEFAULT_DURATION, CommitmentVariant, RegistrarController
from ensreg.errors import (
    CommitmentPending,
    ConfigError,
    InsufficientFunds,
    InvalidDuration,
    InvalidName,
    NameUnavailable,
    NoContractCode,
    NoMatchingCommitment,
    RpcError,
    TooEarly,
    VerificationMismatch,
    WouldRevert,
)
from ensreg.names import (
    ZERO_ADDRESS,
    check_label,
    check_name,
    generate_secret,
    is_valid_name,
    namehash,
    parse_secret,
    reverse_node,
)
from ensreg.naming import InternalNameRegistry
from ensreg.rpc import (
    CONTRACT_ERRORS,
    TRANSPORT_ERRORS,
    call_read,
    call_view,
    connect,
    hexstr,
    revert_reason,
    wait_for_receipt,
)
from ensreg.schema import (
    CommitmentStatus,
    CommitResult,
    NetworkStatus,
    Quote,
    RegistrationRequest,
    RegistrationResult,
    ResolveResult,
)
from ensreg.wallet import Wallet

logger = logging.getLogger(__name__)

# Headroom over eth_estimateGas when building the real transaction
GAS_MARGIN = 1.2

Secret = Union[str, bytes]


def _is_zero(address: Optional[str]) -> bool:
    return not address or int(address, 16) == 0


def _check_duration(seconds: int) -> None:
    if seconds <= 0:
        raise InvalidDuration(seconds)


class RegistrationOrchestrator:
    """
    One session against one network: registry, controller and (optionally) a signer.

    quote, resolve_name, reverse_resolve_address and check_network work without a
    private key; status, commit, register and run_full_flow need one. The signer pays
    and owns the name unless another owner is passed.
    """

    def __init__(
        self,
        settings: Settings,
        w3: Optional[Web3] = None,
        wallet=None,
        names: Optional[InternalNameRegistry] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.network = settings.network
        if w3 is None:
            if not self.network.rpc_url:
                raise ConfigError(f"Missing RPC URL for {self.network.display_name}")
            w3 = connect(self.network.rpc_url)
        self.w3 = w3
        if wallet is None and settings.private_key:
            wallet = Wallet.from_key(settings.private_key)
        self.wallet = wallet
        self.names = names
        self._sleep = sleep
        self.registry = w3.eth.contract(address=self.network.registry, abi=REGISTRY_ABI)
        self._controllers: Dict[str, RegistrarController] = {}
        self._has_code: Set[str] = set()
        self._public_resolver: Optional[str] = None

    # --- session plumbing ---

    def _read(self, fn, description: str):
        return call_read(fn, description, sleep=self._sleep)

    def _view(self, fn, description: str):
        """Contract read where a revert is an error (WouldRevert), not a fallback signal."""
        return call_view(fn, description, read=self._read)

    def _chain_id(self) -> int:
        chain_id = int(self._read(lambda: self.w3.eth.chain_id, "chain_id"))
        if chain_id != self.network.chain_id:
            logger.warning(
                "RPC reports chain %s but %s is configured as %s", chain_id, self.network.name, self.network.chain_id
            )
        return chain_id

    def _ensure_code(self, address: str, role: str) -> None:
        if address in self._has_code:
            return
        code = self._read(lambda: self.w3.eth.get_code(address), f"get_code({role})")
        if not code or len(bytes(code)) == 0:
            raise NoContractCode(address, role)
        self._has_code.add(address)

    @property
    def controller(self) -> RegistrarController:
        """Controller for this network; capabilities are detected once per address and cached."""
        address = self.network.controller
        if address not in self._controllers:
            self._ensure_code(address, "controller")
            self._controllers[address] = RegistrarController(self.w3, address, read=self._read)
        return self._controllers[address]

    def _registry(self):
        self._ensure_code(self.network.registry, "registry")
        return self.registry

    def _owner(self) -> str:
        if self.wallet is None:
            raise ConfigError("PRIVATE_KEY is required for this command")
        return self.wallet.address

    def _target_owner(self, owner: Optional[str]) -> str:
        """Owner of the name: the signer unless another address is given."""
        signer = self._owner()
        if owner is None:
            return signer
        if not is_address(owner):
            raise InvalidName(owner, "Owner must be a 20-byte hex address")
        return Web3.to_checksum_address(owner)

    def _check_min_duration(self, duration_seconds: int) -> None:
        _check_duration(duration_seconds)
        minimum = self.controller.min_registration_duration()
        if minimum and duration_seconds < minimum:
            raise InvalidDuration(duration_seconds, minimum)

    def _now(self) -> int:
        """Latest block timestamp: the clock the controller checks commitment age against."""
        block = self._read(lambda: self.w3.eth.get_block("latest"), "get_block(latest)")
        return int(block["timestamp"])

    def _resolver_contract(self, address: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=RESOLVER_ABI)

    def public_resolver(self) -> str:
        """
        Resolver passed at registration. ENS_PUBLIC_RESOLVER wins; otherwise
        addr(resolver.eth) through the registry; zero address when neither is set.
        """
        if self._public_resolver is not None:
            return self._public_resolver
        if self.network.public_resolver:
            self._public_resolver = self.network.public_resolver
            return self._public_resolver

        node = namehash("resolver.eth")
        registry = self._registry()
        found = ZERO_ADDRESS
        res_on_resolver = self._view(lambda: registry.functions.resolver(node).call(), "resolver(resolver.eth)")
        if not _is_zero(res_on_resolver):
            try:
                addr = self._read(
                    lambda: self._resolver_contract(res_on_resolver).functions.addr(node).call(),
                    "addr(resolver.eth)",
                )
                if not _is_zero(addr):
                    found = Web3.to_checksum_address(addr)
            except CONTRACT_ERRORS as e:
                logger.debug("addr(resolver.eth) failed: %s", e)
        if found == ZERO_ADDRESS:
            logger.warning("PublicResolver not auto-detected; committing without resolver config")
        self._public_resolver = found
        return found

    # --- transactions ---

    def _dry_run(self, fn, action: str, value: int) -> int:
        """eth_estimateGas; a revert here means the real transaction would fail."""
        try:
            return int(self._read(lambda: fn.estimate_gas({"from": self._owner(), "value": value}), f"{action} estimate"))
        except CONTRACT_ERRORS as e:
            raise WouldRevert(action, revert_reason(e)) from e

    def _send(self, fn, action: str, value: int, gas: int, min_balance: int):
        """Sign, broadcast once, wait for one confirmation. Never retried."""
        owner = self._owner()
        balance = int(self._read(lambda: self.w3.eth.get_balance(owner), "get_balance"))
        if balance == 0 or balance < min_balance:
            raise InsufficientFunds(owner, balance, max(min_balance, 1))

        chain_id = self._chain_id()
        tx = fn.build_transaction(
            {
                "from": owner,
                "value": value,
                "gas": int(gas * GAS_MARGIN),
                "gasPrice": self._read(lambda: self.w3.eth.gas_price, "gas_price"),
                "nonce": self._read(lambda: self.w3.eth.get_transaction_count(owner, "pending"), "nonce"),
                "chainId": chain_id,
            }
        )
        raw = self.wallet.sign_transaction(tx)
        try:
            tx_hash = bytes(self.w3.eth.send_raw_transaction(raw))
        except CONTRACT_ERRORS as e:
            raise WouldRevert(action, revert_reason(e)) from e
        except TRANSPORT_ERRORS as e:
            raise RpcError(f"{action}: could not broadcast: {e}") from e
        except ValueError as e:
            raise RpcError(f"{action}: {revert_reason(e)}") from e
        logger.info("%s tx sent: %s", action, hexstr(tx_hash))

        receipt = wait_for_receipt(self.w3, tx_hash)
        if receipt["status"] != 1:
            raise WouldRevert(action, f"transaction {hexstr(tx_hash)} reverted in block {receipt.get('blockNumber')}")
        logger.info("%s confirmed in block %s", action, receipt.get("blockNumber"))
        return tx_hash, receipt

    # --- operations ---

    def quote(self, label: str, duration_seconds: int) -> Quote:
        """Exact rent price (base + premium) in wei."""
        check_label(label)
        _check_duration(duration_seconds)
        base, premium, shape = self.controller.rent_price(label, duration_seconds)
        return Quote(
            label=label,
            duration_seconds=duration_seconds,
            base=base,
            premium=premium,
            total=base + premium,
            shape=shape,
        )

    def commit(
        self,
        label: str,
        secret: Optional[Secret] = None,
        duration_seconds: int = DEFAULT_DURATION,
        owner: Optional[str] = None,
    ) -> CommitResult:
        """
        Submit a commitment for label, owned by the signer unless owner is given. Returns
        the commitment and the secret actually used; the secret must be saved to register
        later. Newer controllers hash the duration too, so register must reuse it.
        """
        check_label(label)
        secret_bytes = parse_secret(secret) if secret is not None else generate_secret()
        _check_duration(duration_seconds)
        owner = self._target_owner(owner)
        ctrl = self.controller
        self._check_min_duration(duration_seconds)

        if not ctrl.available(label):
            raise NameUnavailable(f"{label}.eth")

        resolver = self.public_resolver()
        variant, commitment = ctrl.preferred_commitment(label, owner, secret_bytes, resolver, duration_seconds)
        min_age, max_age = ctrl.commitment_window()

        ts = ctrl.commitment_timestamp(commitment)
        if ts:
            age = self._now() - ts
            if age < min_age:
                raise CommitmentPending(hexstr(commitment), min_age - age)
            if age <= max_age:
                logger.info("Existing commitment %s is valid (age %ss); not resubmitting", hexstr(commitment), age)
                return CommitResult(
                    label=label,
                    commitment=hexstr(commitment),
                    secret=hexstr(secret_bytes),
                    variant=variant,
                    already_committed=True,
                )
            logger.warning(
                "Commitment %s expired (age %ss > %ss); committing with a fresh secret", hexstr(commitment), age, max_age
            )
            secret_bytes = generate_secret()
            variant, commitment = ctrl.preferred_commitment(label, owner, secret_bytes, resolver, duration_seconds)

        fn = ctrl.commit_function(commitment)
        gas = self._dry_run(fn, "commit", 0)
        tx_hash, receipt = self._send(fn, "commit", 0, gas, min_balance=1)
        return CommitResult(
            label=label,
            commitment=hexstr(commitment),
            secret=hexstr(secret_bytes),
            variant=variant,
            tx_hash=hexstr(tx_hash),
            block_number=receipt.get("blockNumber"),
        )

    def _status_of(
        self, label: str, variant: CommitmentVariant, commitment: bytes, ts: int, now: int, min_age: int, max_age: int
    ) -> CommitmentStatus:
        if not ts:
            return CommitmentStatus(
                label=label, commitment=hexstr(commitment), variant=variant, found=False, min_age=min_age, max_age=max_age
            )
        age = now - ts
        expired = age > max_age
        return CommitmentStatus(
            label=label,
            commitment=hexstr(commitment),
            variant=variant,
            found=True,
            timestamp=ts,
            age_seconds=age,
            min_age=min_age,
            max_age=max_age,
            ready=min_age <= age <= max_age,
            expired=expired,
            remaining_seconds=0 if expired else max(0, min_age - age),
        )

    def _candidates(
        self, label: str, owner: str, secret_bytes: bytes, duration_seconds: int
    ) -> List[Tuple[CommitmentVariant, bytes, int]]:
        """(variant, commitment, on-chain timestamp) for every variant the controller computes."""
        ctrl = self.controller
        computed = ctrl.all_commitments(label, owner, secret_bytes, self.public_resolver(), duration_seconds)
        if not computed:
            raise WouldRevert("makeCommitment", "controller rejected every commitment variant")
        return [(v, c, ctrl.commitment_timestamp(c)) for v, c in computed]

    def status(
        self,
        label: str,
        secret: Secret,
        duration_seconds: int = DEFAULT_DURATION,
        owner: Optional[str] = None,
    ) -> CommitmentStatus:
        """Where the commitment for (label, owner, secret, duration) stands against the timing window."""
        check_label(label)
        secret_bytes = parse_secret(secret)
        _check_duration(duration_seconds)
        candidates = self._candidates(label, self._target_owner(owner), secret_bytes, duration_seconds)
        min_age, max_age = self.controller.commitment_window()
        now = self._now()

        statuses = [self._status_of(label, v, c, ts, now, min_age, max_age) for v, c, ts in candidates]
        for st in statuses:
            if st.found and not st.expired:
                return st
        for st in statuses:
            if st.found:
                return st
        return statuses[0]

    def _request(
        self, label: str, duration_seconds: int, secret_bytes: bytes, owner: Optional[str]
    ) -> RegistrationRequest:
        """Tuple that must be identical between commit and register."""
        return RegistrationRequest(
            label=label,
            owner=self._target_owner(owner),
            duration_seconds=duration_seconds,
            secret=secret_bytes,
            resolver=self.public_resolver(),
        )

    def _registered_owner(self, name: str) -> str:
        """registry.owner(node), read through the NameWrapper when it holds the name."""
        node = namehash(name)
        registry = self._registry()
        actual = str(self._view(lambda: registry.functions.owner(node).call(), "owner()"))
        wrapper = self.network.name_wrapper
        if wrapper and actual.lower() == wrapper.lower():
            self._ensure_code(wrapper, "name wrapper")
            name_wrapper = self.w3.eth.contract(address=wrapper, abi=NAME_WRAPPER_ABI)
            token_id = int.from_bytes(node, "big")
            actual = str(self._view(lambda: name_wrapper.functions.ownerOf(token_id).call(), "ownerOf()"))
        return actual

    def register(
        self,
        label: str,
        duration_seconds: int,
        secret: Secret,
        owner: Optional[str] = None,
        overpay_percent: int = 0,
    ) -> RegistrationResult:
        """
        Reveal and pay. Requires a matured, unexpired commitment for the same
        (label, owner, secret, duration); the register method follows the matched variant.

        overpay_percent adds a buffer on top of the quoted price against premium
        drift between quote and mining; the controller refunds the excess.
        """
        check_label(label)
        secret_bytes = parse_secret(secret)
        _check_duration(duration_seconds)
        req = self._request(label, duration_seconds, secret_bytes, owner)
        ctrl = self.controller
        self._check_min_duration(duration_seconds)

        candidates = self._candidates(label, req.owner, req.secret, req.duration_seconds)
        min_age, max_age = ctrl.commitment_window()
        now = self._now()
        live = [(v, c, now - ts) for v, c, ts in candidates if ts and now - ts <= max_age]
        if not live:
            raise NoMatchingCommitment(label)
        matured = [x for x in live if x[2] >= min_age]
        if not matured:
            _, commitment, age = max(live, key=lambda x: x[2])
            raise TooEarly(hexstr(commitment), min_age - age)
        variant, commitment, _ = matured[0]

        price = self.quote(label, duration_seconds).total
        value = price * (100 + max(0, int(overpay_percent))) // 100

        def register_fn(v: CommitmentVariant):
            return ctrl.register_function(v, req.label, req.owner, req.duration_seconds, req.secret, req.resolver)

        fn = register_fn(variant)
        action = variant.register_method
        try:
            gas = self._dry_run(fn, action, value)
        except WouldRevert as first:
            if variant is not CommitmentVariant.WITH_CONFIG:
                raise
            # Fall back before anything is broadcast; a paid transaction is never retried.
            logger.warning("registerWithConfig rejected (%s); falling back to register()", first.reason)
            fn = register_fn(CommitmentVariant.SIMPLE)
            try:
                gas = self._dry_run(fn, "register", value)
            except WouldRevert as second:
                raise WouldRevert(
                    "register", f"registerWithConfig: {first.reason or 'reverted'}; register: {second.reason or 'reverted'}"
                ) from second
            variant, action = CommitmentVariant.SIMPLE, "register"

        tx_hash, receipt = self._send(fn, action, value, gas, min_balance=value)

        name = req.name
        actual = self._registered_owner(name)
        if actual.lower() != req.owner.lower():
            raise VerificationMismatch(name, req.owner, actual)

        return RegistrationResult(
            name=name,
            owner=req.owner,
            tx_hash=hexstr(tx_hash),
            block_number=receipt.get("blockNumber"),
            value_wei=value,
            variant=variant,
            verified_owner=Web3.to_checksum_address(actual),
        )

    def run_full_flow(
        self,
        label: str,
        duration_seconds: int,
        wait_seconds: Optional[float] = None,
        owner: Optional[str] = None,
        overpay_percent: int = 0,
    ) -> Tuple[CommitResult, RegistrationResult]:
        """commit with a fresh secret -> sleep -> register with the same secret and duration."""
        check_label(label)
        _check_duration(duration_seconds)
        committed = self.commit(label, generate_secret(), duration_seconds, owner=owner)
        min_age, _ = self.controller.commitment_window()
        wait = min_age if wait_seconds is None else wait_seconds
        if wait < min_age:
            logger.warning("wait of %ss is below minCommitmentAge %ss; register will likely be too early", wait, min_age)
        logger.info("Waiting %ss for commitment to mature", wait)
        self._sleep(wait)
        registered = self.register(
            label, duration_seconds, committed.secret, owner=owner, overpay_percent=overpay_percent
        )
        return committed, registered

    def check_network(self) -> NetworkStatus:
        """Connectivity check: RPC chain id and head block against the configured network."""
        chain_id = self._chain_id()
        block = self._read(lambda: self.w3.eth.get_block("latest"), "get_block(latest)")
        address = self.network.controller
        code = self._read(lambda: self.w3.eth.get_code(address), "get_code(controller)")
        return NetworkStatus(
            network=self.network.name,
            rpc_chain_id=chain_id,
            expected_chain_id=self.network.chain_id,
            block_number=int(block["number"]),
            block_timestamp=int(block["timestamp"]),
            controller=address,
            controller_has_code=bool(code) and len(bytes(code)) > 0,
        )

    # --- resolution ---

    def resolve_name(self, name: str) -> Optional[ResolveResult]:
        """name -> address; internal names first, then ENS registry + resolver."""
        name = name.strip().lower()
        if self.names is not None:
            hit = self.names.lookup(name)
            if hit:
                return ResolveResult(
                    name=hit.name, address=hit.address, network=hit.network, is_internal=True, type=hit.type
                )

        check_name(name)
        registry = self._registry()
        node = namehash(name)
        resolver_addr = self._view(lambda: registry.functions.resolver(node).call(), "resolver()")
        if _is_zero(resolver_addr):
            return None
        resolver = self._resolver_contract(resolver_addr)
        try:
            address = self._read(lambda: resolver.functions.addr(node).call(), "addr()")
        except CONTRACT_ERRORS as e:
            logger.info("addr(%s) failed: %s", name, revert_reason(e))
            return None
        if _is_zero(address):
            return None

        texts: Dict[str, str] = {}
        for key in COMMON_TEXT_KEYS:
            try:
                value = self._read(lambda: resolver.functions.text(node, key).call(), f"text({key})")
            except CONTRACT_ERRORS + (RpcError,) as e:
                logger.debug("text(%s, %s) unavailable: %s", name, key, e)
                continue
            if value:
                texts[key] = value

        return ResolveResult(
            name=name,
            address=Web3.to_checksum_address(address),
            network=self.network.name,
            resolver=Web3.to_checksum_address(resolver_addr),
            text_records=texts,
        )

    def _forward_matches(self, name: str, address: str) -> Optional[bool]:
        if not is_valid_name(name):
            return None
        node = namehash(name)
        registry = self._registry()
        resolver_addr = self._view(lambda: registry.functions.resolver(node).call(), "resolver()")
        if _is_zero(resolver_addr):
            return None
        try:
            forward = self._read(lambda: self._resolver_contract(resolver_addr).functions.addr(node).call(), "addr()")
        except CONTRACT_ERRORS:
            return None
        return str(forward).lower() == address.lower()

    def reverse_resolve_address(self, address: str) -> Optional[ResolveResult]:
        """address -> primary name via addr.reverse, verified against forward resolution."""
        if not is_address(address):
            raise InvalidName(address, "Must be a 20-byte hex address")
        if self.names is not None:
            hit = self.names.find_by_address(address)
            if hit:
                return ResolveResult(
                    name=hit.name, address=hit.address, network=hit.network, is_internal=True, type=hit.type
                )

        registry = self._registry()
        node = reverse_node(address)
        resolver_addr = self._view(lambda: registry.functions.resolver(node).call(), "resolver(reverse)")
        if _is_zero(resolver_addr):
            return None
        try:
            name = self._read(lambda: self._resolver_contract(resolver_addr).functions.name(node).call(), "name()")
        except CONTRACT_ERRORS as e:
            logger.info("name(reverse %s) failed: %s", address, revert_reason(e))
            return None
        if not name:
            return None

        return ResolveResult(
            name=name,
            address=Web3.to_checksum_address(address),
            network=self.network.name,
            resolver=Web3.to_checksum_address(resolver_addr),
            forward_verified=self._forward_matches(name, address),
        )
