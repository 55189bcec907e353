"""
ensreg CLI: register .eth names with commit-reveal and resolve names/addresses.

Commands:
  ensreg quote <label> -y <years>                 price in ETH (base + premium)
  ensreg commit <label> -y <years> [--secret 0x..] step 1; prints the secret to keep
  ensreg status <label> -y <years> --secret 0x..  is the commitment ready / expired?
  ensreg register <label> -y <years> --secret 0x..  step 2; pays and registers
  ensreg all <label> -y <years> [--wait <sec>]    commit, wait, register
  ensreg ping                                     chain id and head block of the RPC
  ensreg resolve <name>                           name -> address (+ text records)
  ensreg reverse <address>                        address -> primary name
  ensreg alias add|ls|rm                          local internal names

Every command takes -n/--network (mainnet, sepolia, holesky; default ENS_NETWORK or sepolia).
Newer controllers bind the duration into the commitment: use the same -y for commit,
status and register. --owner registers to another address; the signer still pays.
Reads .env from the cwd; PRIVATE_KEY is needed for commit, status, register and all.
"""

import argparse
import sys
from typing import List, Optional

from ensreg.config import NETWORK_NAMES, Settings, default_network, load_env
from ensreg.errors import EnsRegError, InvalidDuration
from ensreg.log import setup_logging
from ensreg.names import format_eth, years_to_seconds
from ensreg.naming import InternalNameRegistry, JsonFileStore
from ensreg.orchestrator import RegistrationOrchestrator


def _label(raw: str) -> str:
    return raw.strip().lower().removesuffix(".eth")


def _names(network: Optional[str]) -> InternalNameRegistry:
    return InternalNameRegistry(JsonFileStore.default(), network=network or default_network())


def build_orchestrator(network: Optional[str], require_key: bool, names: Optional[InternalNameRegistry] = None):
    """One session per command invocation."""
    settings = Settings.from_env(network, require_key=require_key)
    return RegistrationOrchestrator(settings, names=names)


def _duration(years: float) -> int:
    seconds = years_to_seconds(years)
    if seconds <= 0:
        raise InvalidDuration(seconds)
    return seconds


def _percent(raw: str) -> int:
    value = int(raw)
    if value < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return value


def _print_secret_warning(secret: str) -> None:
    print("=" * 70)
    print("🔑 SAVE THIS SECRET: register needs the exact same value")
    print(f"   {secret}")
    print("=" * 70)


# --- commands ---


def quote_command(args) -> int:
    orch = build_orchestrator(args.network, require_key=False)
    label = _label(args.label)
    q = orch.quote(label, _duration(args.years))
    print(f"💰 {label}.eth for {args.years:g} year(s) on {orch.network.display_name}")
    print(f"   Base:    {format_eth(q.base)}")
    if q.premium:
        print(f"   Premium: {format_eth(q.premium)}")
    print(f"   Total:   {format_eth(q.total)} ({q.total} wei)")
    return 0


def commit_command(args) -> int:
    orch = build_orchestrator(args.network, require_key=True)
    label = _label(args.label)
    print(f"📝 Committing {label}.eth from {orch.wallet.address} on {orch.network.display_name}...")
    result = orch.commit(label, args.secret, _duration(args.years), owner=args.owner)
    if result.already_committed:
        print(f"✓ Existing commitment {result.commitment} is still valid; nothing sent.")
    else:
        print(f"✓ Commit confirmed in block {result.block_number}: {result.tx_hash}")
    print(f"   Commitment: {result.commitment} ({result.variant.value})")
    _print_secret_warning(result.secret)
    min_age, _ = orch.controller.commitment_window()
    print(f"⏳ Wait at least {min_age}s, then: ensreg register {label} -y {args.years:g} --secret {result.secret}")
    return 0


def status_command(args) -> int:
    orch = build_orchestrator(args.network, require_key=True)
    label = _label(args.label)
    st = orch.status(label, args.secret, _duration(args.years), owner=args.owner)
    print(f"🔎 {label}.eth commitment {st.commitment} ({st.variant.value})")
    if not st.found:
        print("   Not found on-chain for this owner, secret and duration.")
    elif st.expired:
        print(f"   ⚠️  Expired: age {st.age_seconds}s > max {st.max_age}s. Commit again.")
    elif st.ready:
        print(f"   ✅ Ready to register (age {st.age_seconds}s, window {st.min_age}-{st.max_age}s)")
    else:
        print(f"   ⏳ Not ready: wait ~{st.remaining_seconds}s more (age {st.age_seconds}s, min {st.min_age}s)")
    return 0


def register_command(args) -> int:
    orch = build_orchestrator(args.network, require_key=True)
    label = _label(args.label)
    print(f"📝 Registering {label}.eth for {args.years:g} year(s) on {orch.network.display_name}...")
    result = orch.register(
        label, _duration(args.years), args.secret, owner=args.owner, overpay_percent=args.overpay
    )
    _print_registration(result)
    return 0


def _print_registration(result) -> None:
    print(f"✓ Registration confirmed in block {result.block_number}: {result.tx_hash}")
    print(f"   Paid: {format_eth(result.value_wei)}")
    print(f"\n🎉 Successfully registered '{result.name}' to {result.verified_owner}")


def all_command(args) -> int:
    orch = build_orchestrator(args.network, require_key=True)
    label = _label(args.label)
    duration = _duration(args.years)
    q = orch.quote(label, duration)
    print(f"📦 {label}.eth for {args.years:g} year(s): {format_eth(q.total)} on {orch.network.display_name}")
    committed, result = orch.run_full_flow(
        label, duration, wait_seconds=args.wait, owner=args.owner, overpay_percent=args.overpay
    )
    print(f"✓ Commit: {committed.tx_hash or committed.commitment}")
    print(f"   Secret: {committed.secret}")
    _print_registration(result)
    return 0


def ping_command(args) -> int:
    orch = build_orchestrator(args.network, require_key=False)
    st = orch.check_network()
    print(f"🧪 {orch.network.display_name}: chain {st.rpc_chain_id}, block {st.block_number}")
    ok = True
    if not st.chain_matches:
        print(f"   ⚠️  RPC is on chain {st.rpc_chain_id}, expected {st.expected_chain_id}. Check the RPC URL.")
        ok = False
    if not st.controller_has_code:
        print(f"   ⚠️  No controller code at {st.controller}")
        ok = False
    if ok:
        print(f"✅ Connected to {orch.network.display_name} (Chain ID: {st.rpc_chain_id})")
    return 0 if ok else 1


def resolve_command(args) -> int:
    orch = build_orchestrator(args.network, require_key=False, names=_names(args.network))
    res = orch.resolve_name(args.name)
    if res is None:
        print(f"❌ {args.name} does not resolve on {orch.network.display_name}")
        return 1
    tag = f" (internal {res.type})" if res.is_internal else ""
    print(f"✅ {res.name} -> {res.address}{tag}")
    for key, value in res.text_records.items():
        print(f"   {key}: {value}")
    return 0


def reverse_command(args) -> int:
    orch = build_orchestrator(args.network, require_key=False, names=_names(args.network))
    res = orch.reverse_resolve_address(args.address)
    if res is None:
        print(f"❌ No primary name for {args.address} on {orch.network.display_name}")
        return 1
    tag = f" (internal {res.type})" if res.is_internal else ""
    print(f"✅ {res.address} -> {res.name}{tag}")
    if res.forward_verified is False:
        print(f"   ⚠️  {res.name} does not resolve back to {res.address}")
    return 0


def alias_command(args) -> int:
    names = _names(args.network)
    if args.alias_cmd == "add":
        entry = names.register(args.name, args.address, args.type)
        print(f"✅ {entry.name} -> {entry.address} ({entry.type}, {entry.network})")
        return 0
    if args.alias_cmd == "rm":
        if names.remove(args.name):
            print(f"✓ Removed {args.name}")
            return 0
        print(f"❌ No internal name {args.name}")
        return 1
    entries = names.by_type(args.type) if args.type else names.all()
    if not entries:
        print("No internal names.")
    for entry in entries:
        print(f"  {entry.name:30} {entry.address}  {entry.type:11} {entry.network}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-n", "--network", choices=NETWORK_NAMES, default=None, help="Default: ENS_NETWORK or sepolia")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")

    parser = argparse.ArgumentParser(prog="ensreg", description="Register and resolve ENS .eth names")
    sub = parser.add_subparsers(dest="command", metavar="command")
    sub.required = True

    p = sub.add_parser("quote", parents=[common], help="Price for a label and duration")
    p.add_argument("label", help="Label without .eth, e.g. alice")
    p.add_argument("-y", "--years", type=float, default=1.0)
    p.set_defaults(func=quote_command)

    p = sub.add_parser("commit", parents=[common], help="Submit a commitment (step 1)")
    p.add_argument("label")
    p.add_argument("-y", "--years", type=float, default=1.0, help="Registration length; newer controllers commit to it")
    p.add_argument("--owner", default=None, help="Owner of the name; default the signer")
    p.add_argument("--secret", default=None, help="0x + 64 hex; random if omitted")
    p.set_defaults(func=commit_command)

    p = sub.add_parser("status", parents=[common], help="Check a commitment against the timing window")
    p.add_argument("label")
    p.add_argument("-y", "--years", type=float, default=1.0)
    p.add_argument("--owner", default=None)
    p.add_argument("--secret", required=True)
    p.set_defaults(func=status_command)

    p = sub.add_parser("register", parents=[common], help="Reveal and pay (step 2)")
    p.add_argument("label")
    p.add_argument("-y", "--years", type=float, default=1.0)
    p.add_argument("--secret", required=True)
    p.add_argument("--owner", default=None)
    p.add_argument("--overpay", type=_percent, default=0, help="Percent sent above the quote; the excess is refunded")
    p.set_defaults(func=register_command)

    p = sub.add_parser("all", parents=[common], help="Commit, wait, register")
    p.add_argument("label")
    p.add_argument("-y", "--years", type=float, default=1.0)
    p.add_argument("--wait", type=float, default=None, help="Seconds to wait; default minCommitmentAge")
    p.add_argument("--owner", default=None)
    p.add_argument("--overpay", type=_percent, default=0)
    p.set_defaults(func=all_command)

    p = sub.add_parser("ping", parents=[common], help="Check the RPC answers for the selected network")
    p.set_defaults(func=ping_command)

    p = sub.add_parser("resolve", parents=[common], help="Name -> address")
    p.add_argument("name")
    p.set_defaults(func=resolve_command)

    p = sub.add_parser("reverse", parents=[common], help="Address -> primary name")
    p.add_argument("address")
    p.set_defaults(func=reverse_command)

    p = sub.add_parser("alias", help="Manage local internal names")
    alias_sub = p.add_subparsers(dest="alias_cmd", metavar="action")
    alias_sub.required = True
    a = alias_sub.add_parser("add", parents=[common])
    a.add_argument("name")
    a.add_argument("address")
    a.add_argument("--type", choices=("contract", "transaction", "event"), default="contract")
    a = alias_sub.add_parser("ls", parents=[common])
    a.add_argument("--type", choices=("contract", "transaction", "event"), default=None)
    a = alias_sub.add_parser("rm", parents=[common])
    a.add_argument("name")
    p.set_defaults(func=alias_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    load_env()
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return 1 if e.code else 0
    setup_logging("DEBUG" if args.verbose else None)
    try:
        return args.func(args)
    except EnsRegError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
