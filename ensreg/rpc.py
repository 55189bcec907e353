"""
JSON-RPC plumbing: connect, retry idempotent reads, extract revert reasons, wait for receipts.

Only reads are retried. Transactions are sent exactly once; whether to resend is the
caller's decision.
"""

import logging
import time
from typing import Any, Callable, Optional

import requests
from web3 import Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    Web3Exception,
)

from ensreg.errors import EnsRegError, RpcError, WouldRevert

logger = logging.getLogger(__name__)

# Errors that mean "the contract said no" (revert) or "the contract has no such method"
# (empty/undecodable return data). Callers trying ABI shapes catch these.
CONTRACT_ERRORS = (ContractLogicError, BadFunctionCallOutput)

TRANSPORT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ConnectionError,
    TimeoutError,
)

READ_ATTEMPTS = 3
READ_BACKOFF_SEC = 0.5
RECEIPT_TIMEOUT_SEC = 300


def hexstr(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def connect(rpc_url: str, timeout: int = 30) -> Web3:
    """Connect to an HTTP JSON-RPC endpoint; raise RpcError if it does not answer."""
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
    try:
        connected = w3.is_connected()
    except TRANSPORT_ERRORS as e:
        raise RpcError(f"Failed to connect to RPC {rpc_url}: {e}") from e
    if not connected:
        raise RpcError(f"Failed to connect to RPC: {rpc_url}")
    return w3


def call_read(
    fn: Callable[[], Any],
    description: str,
    attempts: int = READ_ATTEMPTS,
    backoff: float = READ_BACKOFF_SEC,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Run an idempotent read, retrying transport failures with exponential backoff.

    Contract errors (revert, undecodable output) propagate untouched so callers can
    try ABI shapes. Any other web3/RPC failure becomes RpcError.
    """
    delay = backoff
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except CONTRACT_ERRORS:
            raise
        except EnsRegError:
            raise
        except TRANSPORT_ERRORS as e:
            if attempt == attempts:
                raise RpcError(f"{description} failed after {attempts} attempts: {e}") from e
            logger.debug("%s: transport error (%s), retry %d/%d in %.1fs", description, e, attempt, attempts, delay)
            sleep(delay)
            delay *= 2
        except (Web3Exception, ValueError) as e:
            raise RpcError(f"{description} failed: {e}") from e
    raise RpcError(f"{description} failed")


def call_view(fn: Callable[[], Any], description: str, read: Callable = call_read) -> Any:
    """
    A read whose revert is a failure rather than a capability check: contract errors
    become WouldRevert so callers only ever see ensreg errors.
    """
    try:
        return read(fn, description)
    except CONTRACT_ERRORS as e:
        raise WouldRevert(description, revert_reason(e) or "call reverted") from e


def revert_reason(exc: BaseException) -> Optional[str]:
    """Best available human-readable cause of a failed call/estimate/transaction."""
    msg: Any = getattr(exc, "message", None)
    if not msg and exc.args:
        msg = exc.args[0]
    if isinstance(msg, dict):
        msg = msg.get("message") or str(msg)
    msg = str(msg or exc).strip()
    for prefix in ("execution reverted:", "execution reverted"):
        if msg.startswith(prefix):
            msg = msg[len(prefix):].strip()
            break
    return msg or None


def wait_for_receipt(w3: Web3, tx_hash: bytes, timeout: int = RECEIPT_TIMEOUT_SEC):
    """Block until the transaction is mined (one confirmation)."""
    try:
        return w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    except TimeExhausted as e:
        raise RpcError(f"Transaction {hexstr(tx_hash)} not confirmed within {timeout}s") from e
    except TRANSPORT_ERRORS as e:
        raise RpcError(f"Lost connection waiting for {hexstr(tx_hash)}: {e}") from e
