"""
Contract ABIs for the ENS registry, resolver, NameWrapper and ETH registrar controller.

Four controller generations are deployed in the wild:
- with-config: makeCommitmentWithConfig / registerWithConfig (resolver + addr at registration)
- simple: makeCommitment / register (name, owner, secret only)
- wrapped: makeCommitment / register with (duration, resolver, data, reverseRecord, fuses);
  the name is minted into the NameWrapper
- registration: makeCommitment / register taking one Registration tuple (adds a referrer)
The legacy pair lives in CONTROLLER_ABI next to the shared reads. The two newer
generations overload makeCommitment/register, so each gets its own ABI list and
contract object. Which one a controller honours is detected at runtime.

rentPrice returns either a bare uint256 or a (base, premium) struct depending on the
deployment, so it is called through RENT_PRICE_SELECTOR and decoded by hand.
"""

from eth_utils import function_signature_to_4byte_selector

REGISTRY_ABI = [
    {
        "inputs": [{"name": "node", "type": "bytes32"}],
        "name": "resolver",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "node", "type": "bytes32"}],
        "name": "owner",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

RESOLVER_ABI = [
    {
        "inputs": [{"name": "node", "type": "bytes32"}],
        "name": "addr",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "node", "type": "bytes32"}],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "node", "type": "bytes32"}, {"name": "key", "type": "string"}],
        "name": "text",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
]

CONTROLLER_ABI = [
    {
        "inputs": [{"name": "name", "type": "string"}],
        "name": "available",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "minCommitmentAge",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "maxCommitmentAge",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "MIN_REGISTRATION_DURATION",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "bytes32"}],
        "name": "commitments",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "owner", "type": "address"},
            {"name": "secret", "type": "bytes32"},
            {"name": "resolver", "type": "address"},
            {"name": "addr", "type": "address"},
        ],
        "name": "makeCommitmentWithConfig",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "pure",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "owner", "type": "address"},
            {"name": "secret", "type": "bytes32"},
        ],
        "name": "makeCommitment",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "pure",
        "type": "function",
    },
    {
        "inputs": [{"name": "commitment", "type": "bytes32"}],
        "name": "commit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "owner", "type": "address"},
            {"name": "duration", "type": "uint256"},
            {"name": "secret", "type": "bytes32"},
            {"name": "resolver", "type": "address"},
            {"name": "addr", "type": "address"},
        ],
        "name": "registerWithConfig",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "owner", "type": "address"},
            {"name": "duration", "type": "uint256"},
            {"name": "secret", "type": "bytes32"},
        ],
        "name": "register",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]

_WRAPPED_ARGS = [
    {"name": "name", "type": "string"},
    {"name": "owner", "type": "address"},
    {"name": "duration", "type": "uint256"},
    {"name": "secret", "type": "bytes32"},
    {"name": "resolver", "type": "address"},
    {"name": "data", "type": "bytes[]"},
    {"name": "reverseRecord", "type": "bool"},
    {"name": "ownerControlledFuses", "type": "uint16"},
]

WRAPPED_CONTROLLER_ABI = [
    {
        "inputs": _WRAPPED_ARGS,
        "name": "makeCommitment",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "pure",
        "type": "function",
    },
    {
        "inputs": _WRAPPED_ARGS,
        "name": "register",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]

_REGISTRATION_TUPLE = {
    "name": "registration",
    "type": "tuple",
    "components": [
        {"name": "label", "type": "string"},
        {"name": "owner", "type": "address"},
        {"name": "duration", "type": "uint256"},
        {"name": "secret", "type": "bytes32"},
        {"name": "resolver", "type": "address"},
        {"name": "data", "type": "bytes[]"},
        {"name": "reverseRecord", "type": "uint8"},
        {"name": "referrer", "type": "bytes32"},
    ],
}

REGISTRATION_CONTROLLER_ABI = [
    {
        "inputs": [_REGISTRATION_TUPLE],
        "name": "makeCommitment",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "pure",
        "type": "function",
    },
    {
        "inputs": [_REGISTRATION_TUPLE],
        "name": "register",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]

NAME_WRAPPER_ABI = [
    {
        "inputs": [{"name": "id", "type": "uint256"}],
        "name": "ownerOf",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

RENT_PRICE_SIGNATURE = "rentPrice(string,uint256)"
RENT_PRICE_SELECTOR = function_signature_to_4byte_selector(RENT_PRICE_SIGNATURE)

# Text records shown by `resolve`
COMMON_TEXT_KEYS = ("url", "avatar", "description", "email", "com.twitter", "com.github")
