"""
Shared fixtures: an in-memory chain with an ENS registry, one resolver, a NameWrapper
and an ETHRegistrarController of any generation, reachable through the same w3.eth
surface web3 exposes.

Time only moves when a test (or the orchestrator) sleeps.
"""

import pytest
from eth_abi import decode, encode
from eth_utils import keccak, to_canonical_address, to_checksum_address
from web3.exceptions import ContractLogicError

from ensreg.abi import REGISTRATION_CONTROLLER_ABI, RENT_PRICE_SELECTOR, WRAPPED_CONTROLLER_ABI
from ensreg.config import NetworkConfig, Settings
from ensreg.names import ZERO_ADDRESS, labelhash, namehash
from ensreg.orchestrator import RegistrationOrchestrator

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
REGISTRY = to_checksum_address("0x" + "11" * 20)
CONTROLLER = to_checksum_address("0x" + "22" * 20)
RESOLVER = to_checksum_address("0x" + "33" * 20)
NAME_WRAPPER = to_checksum_address("0x" + "44" * 20)
START_TIME = 1_700_000_000
PRICE = 100
GAS_ESTIMATE = 100_000
MIN_DURATION = 28 * 24 * 60 * 60


def revert(reason=None):
    raise ContractLogicError(f"execution reverted: {reason}" if reason else "execution reverted")


def _word(address: str) -> bytes:
    return to_canonical_address(address)


class FakeRegistry:
    def __init__(self, chain):
        self.chain = chain
        self.owners = {}
        self.resolvers = {}

    def view_owner(self, node):
        return self.owners.get(bytes(node), ZERO_ADDRESS)

    def view_resolver(self, node):
        return self.resolvers.get(bytes(node), ZERO_ADDRESS)


class FakeResolver:
    def __init__(self, chain):
        self.chain = chain
        self.addrs = {}
        self.names = {}
        self.texts = {}
        self.broken_text_keys = set()

    def view_addr(self, node):
        return self.addrs.get(bytes(node), ZERO_ADDRESS)

    def view_name(self, node):
        return self.names.get(bytes(node), "")

    def view_text(self, node, key):
        if key in self.broken_text_keys:
            revert()
        return self.texts.get((bytes(node), key), "")


class FakeNameWrapper:
    def __init__(self, chain):
        self.chain = chain
        self.owners = {}

    def view_ownerOf(self, token_id):
        return self.owners.get(token_id, ZERO_ADDRESS)


WRAPPED_TYPES = ["bytes32", "address", "uint256", "bytes32", "address", "bytes[]", "bool", "uint16"]
REGISTRATION_TYPE = "(string,address,uint256,bytes32,address,bytes[],uint8,bytes32)"


class FakeController:
    """
    ETHRegistrarController of one generation: "legacy" (with_config=False models
    deployments that only expose makeCommitment/register), "wrapped" (mints into the
    NameWrapper) or "registration" (one Registration tuple). Any other generation
    answers none of the commitment methods. price_shape picks the rentPrice layout.
    """

    def __init__(self, chain, with_config=True, price_shape="struct", generation="legacy"):
        self.chain = chain
        self.with_config = with_config
        self.price_shape = price_shape
        self.generation = generation
        self.base = PRICE
        self.premium = 0
        self.min_age = 60
        self.max_age = 86400
        self.min_duration = MIN_DURATION
        self.window_reverts = False
        self.register_with_config_reverts = False
        self.paused = None
        self.commitments = {}
        self.taken = set()
        self.calls = []

    def _require(self, generation):
        if self.generation != generation:
            revert()

    # hashing, as each generation computes it
    def simple_commitment(self, name, owner, secret):
        return keccak(labelhash(name) + _word(owner) + bytes(secret))

    def config_commitment(self, name, owner, secret, resolver, addr):
        if resolver == ZERO_ADDRESS and addr == ZERO_ADDRESS:
            return self.simple_commitment(name, owner, secret)
        return keccak(labelhash(name) + _word(owner) + _word(resolver) + _word(addr) + bytes(secret))

    def wrapped_commitment(self, name, owner, duration, secret, resolver, data, reverse_record, fuses):
        values = [labelhash(name), owner, duration, bytes(secret), resolver, list(data), reverse_record, fuses]
        return keccak(encode(WRAPPED_TYPES, values))

    def registration_commitment(self, registration):
        label, owner, duration, secret, resolver, data, reverse_record, referrer = registration
        values = (label, owner, duration, bytes(secret), resolver, list(data), reverse_record, bytes(referrer))
        return keccak(encode([REGISTRATION_TYPE], [values]))

    def view_available(self, name):
        if self.paused:
            revert(self.paused)
        node = namehash(f"{name}.eth")
        return name not in self.taken and self.chain.registry.owners.get(node, ZERO_ADDRESS) == ZERO_ADDRESS

    def view_minCommitmentAge(self):
        if self.window_reverts:
            revert()
        return self.min_age

    def view_maxCommitmentAge(self):
        if self.window_reverts:
            revert()
        return self.max_age

    def view_MIN_REGISTRATION_DURATION(self):
        return self.min_duration

    def view_commitments(self, commitment):
        return self.commitments.get(bytes(commitment), 0)

    def view_makeCommitment(self, name, owner, secret):
        self.calls.append("makeCommitment")
        self._require("legacy")
        return self.simple_commitment(name, owner, secret)

    def view_makeCommitmentWithConfig(self, name, owner, secret, resolver, addr):
        self.calls.append("makeCommitmentWithConfig")
        self._require("legacy")
        if not self.with_config:
            revert()
        return self.config_commitment(name, owner, secret, resolver, addr)

    def view_wrapped_makeCommitment(self, *args):
        self.calls.append("makeCommitment[wrapped]")
        self._require("wrapped")
        return self.wrapped_commitment(*args)

    def view_registration_makeCommitment(self, registration):
        self.calls.append("makeCommitment[registration]")
        self._require("registration")
        return self.registration_commitment(registration)

    def rent_price_output(self, name, duration):
        if self.price_shape == "flat":
            return encode(["uint256"], [self.base + self.premium])
        return encode(["uint256", "uint256"], [self.base, self.premium])

    def tx_commit(self, sender, value, commitment, dry):
        commitment = bytes(commitment)
        ts = self.commitments.get(commitment, 0)
        if ts and ts + self.max_age >= self.chain.now:
            revert("Commitment still pending")
        if not dry:
            self.commitments[commitment] = self.chain.now

    def _consume(self, name, owner, duration, commitment, value, resolver, addr, dry, wrapped=False):
        ts = self.commitments.get(commitment, 0)
        if not ts:
            revert("ETHRegistrarController: Commitment not found")
        age = self.chain.now - ts
        if age < self.min_age:
            revert("ETHRegistrarController: Commitment is not valid")
        if age > self.max_age:
            revert("ETHRegistrarController: Commitment has expired")
        if not self.view_available(name):
            revert("ETHRegistrarController: Name is unavailable")
        if duration < self.min_duration:
            revert("ETHRegistrarController: Duration too short")
        if value < self.base + self.premium:
            revert("ETHRegistrarController: Not enough ether provided")
        if dry:
            return
        del self.commitments[commitment]
        node = namehash(f"{name}.eth")
        if wrapped:
            self.chain.registry.owners[node] = NAME_WRAPPER
            self.chain.name_wrapper.owners[int.from_bytes(node, "big")] = to_checksum_address(owner)
        else:
            self.chain.registry.owners[node] = to_checksum_address(owner)
        if resolver != ZERO_ADDRESS:
            self.chain.registry.resolvers[node] = resolver
            if addr != ZERO_ADDRESS:
                self.chain.resolver.addrs[node] = to_checksum_address(addr)

    def tx_register(self, sender, value, name, owner, duration, secret, dry):
        self._require("legacy")
        commitment = self.simple_commitment(name, owner, secret)
        self._consume(name, owner, duration, commitment, value, ZERO_ADDRESS, ZERO_ADDRESS, dry)

    def tx_registerWithConfig(self, sender, value, name, owner, duration, secret, resolver, addr, dry):
        self._require("legacy")
        if not self.with_config or self.register_with_config_reverts:
            revert()
        commitment = self.config_commitment(name, owner, secret, resolver, addr)
        self._consume(name, owner, duration, commitment, value, resolver, addr, dry)

    def tx_wrapped_register(self, sender, value, name, owner, duration, secret, resolver, data, reverse, fuses, dry):
        self._require("wrapped")
        commitment = self.wrapped_commitment(name, owner, duration, secret, resolver, data, reverse, fuses)
        self._consume(name, owner, duration, commitment, value, resolver, ZERO_ADDRESS, dry, wrapped=True)

    def tx_registration_register(self, sender, value, registration, dry):
        self._require("registration")
        commitment = self.registration_commitment(registration)
        label, owner, duration, _, resolver = registration[:5]
        self._consume(label, owner, duration, commitment, value, resolver, ZERO_ADDRESS, dry)


class FakeFunction:
    def __init__(self, state, address, name, args, prefix=""):
        self.state = state
        self.address = address
        self.name = name
        self.args = args
        self.prefix = prefix

    def call(self, *_, **__):
        view = getattr(self.state, "view_" + self.prefix + self.name, None)
        if view is None:
            revert()
        return view(*self.args)

    def _execute(self, tx, dry):
        fn = getattr(self.state, "tx_" + self.prefix + self.name, None)
        if fn is None:
            revert()
        fn(tx.get("from"), int(tx.get("value", 0)), *self.args, dry=dry)

    def estimate_gas(self, tx=None, *_, **__):
        self._execute(tx or {}, dry=True)
        return GAS_ESTIMATE

    def build_transaction(self, tx):
        built = dict(tx)
        built["to"] = self.address
        built["data"] = "0x" + keccak(text=self.name).hex()[:8]
        self.state.chain.pending = (self, dict(tx))
        return built


class FakeFunctions:
    def __init__(self, state, address, prefix):
        self._state = state
        self._address = address
        self._prefix = prefix

    def __getattr__(self, name):
        return lambda *args: FakeFunction(self._state, self._address, name, args, self._prefix)


class FakeContract:
    def __init__(self, state, address, prefix=""):
        self.address = address
        self.functions = FakeFunctions(state, address, prefix)


class FakeEth:
    def __init__(self, chain):
        self.chain = chain

    @property
    def chain_id(self):
        return self.chain.chain_id

    @property
    def gas_price(self):
        return 1_000_000_000

    def contract(self, address, abi=None):
        address = to_checksum_address(address)
        # the overloaded controller ABIs dispatch to view_<prefix><name> / tx_<prefix><name>
        if abi is WRAPPED_CONTROLLER_ABI:
            prefix = "wrapped_"
        elif abi is REGISTRATION_CONTROLLER_ABI:
            prefix = "registration_"
        else:
            prefix = ""
        return FakeContract(self.chain.contracts.get(address.lower()), address, prefix)

    def get_code(self, address):
        return b"\x60\x80" if str(address).lower() in self.chain.contracts else b""

    def get_block(self, block_id):
        return {"number": self.chain.block_number, "timestamp": self.chain.now}

    def get_balance(self, address):
        return self.chain.balances.get(address.lower(), self.chain.default_balance)

    def get_transaction_count(self, address, block_id="latest"):
        return self.chain.nonces.get(address.lower(), 0)

    def call(self, tx, *_, **__):
        data = bytes.fromhex(tx["data"][2:])
        if str(tx["to"]).lower() != self.chain.controller.address.lower() or data[:4] != RENT_PRICE_SELECTOR:
            revert()
        name, duration = decode(["string", "uint256"], data[4:])
        return self.chain.controller.rent_price_output(name, duration)

    def send_raw_transaction(self, raw):
        fn, tx = self.chain.pending
        self.chain.pending = None
        sender = tx["from"].lower()
        self.chain.nonces[sender] = self.chain.nonces.get(sender, 0) + 1
        self.chain.block_number += 1
        try:
            fn._execute(tx, dry=False)
            status = 1
        except ContractLogicError:
            status = 0
        tx_hash = keccak(bytes(raw))
        self.chain.sent.append(fn.name)
        self.chain.receipts[tx_hash] = {"status": status, "blockNumber": self.chain.block_number}
        return tx_hash

    def wait_for_transaction_receipt(self, tx_hash, timeout=120):
        return self.chain.receipts[bytes(tx_hash)]


class FakeChain:
    def __init__(self, with_config=True, price_shape="struct", generation="legacy"):
        self.now = START_TIME
        self.block_number = 1
        self.chain_id = 11155111
        self.default_balance = 10**19
        self.balances = {}
        self.nonces = {}
        self.receipts = {}
        self.sent = []
        self.sleeps = []
        self.pending = None
        self.registry = FakeRegistry(self)
        self.resolver = FakeResolver(self)
        self.name_wrapper = FakeNameWrapper(self)
        self.controller = FakeController(self, with_config=with_config, price_shape=price_shape, generation=generation)
        self.registry.address = REGISTRY
        self.resolver.address = RESOLVER
        self.controller.address = CONTROLLER
        self.name_wrapper.address = NAME_WRAPPER
        self.contracts = {
            REGISTRY.lower(): self.registry,
            RESOLVER.lower(): self.resolver,
            CONTROLLER.lower(): self.controller,
            NAME_WRAPPER.lower(): self.name_wrapper,
        }
        self.eth = FakeEth(self)

        # resolver.eth -> public resolver, as on live networks
        node = namehash("resolver.eth")
        self.registry.resolvers[node] = RESOLVER
        self.resolver.addrs[node] = RESOLVER

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += int(seconds)

    def advance(self, seconds):
        self.now += seconds


def make_settings(public_resolver=None, private_key=TEST_KEY):
    network = NetworkConfig(
        name="sepolia",
        display_name="Sepolia Testnet",
        chain_id=11155111,
        rpc_url="http://localhost:8545",
        registry=REGISTRY,
        controller=CONTROLLER,
        public_resolver=public_resolver,
        name_wrapper=NAME_WRAPPER,
    )
    return Settings(network=network, private_key=private_key)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def make_orchestrator(chain):
    def _make(names=None, private_key=TEST_KEY, public_resolver=None):
        return RegistrationOrchestrator(
            make_settings(public_resolver=public_resolver, private_key=private_key),
            w3=chain,
            names=names,
            sleep=chain.sleep,
        )

    return _make


@pytest.fixture
def orch(make_orchestrator):
    return make_orchestrator()
