# apollo/services/chain.py
from __future__ import annotations

import itertools
import logging
import re
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

import requests

from apollo.core.errors import ChainUnavailable, ConfirmationFailed, TransactionRejected

logger = logging.getLogger(__name__)

WEI_PER_ETHER = Decimal(10) ** 18


def wei_to_ether(wei: int) -> Decimal:
    return Decimal(int(wei)) / WEI_PER_ETHER


def normalize_address(address: str) -> str:
    return (address or "").strip().lower()


@dataclass(frozen=True)
class TxHandle:
    tx_hash: str
    function_name: str  # "settle" | "withdraw"


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int  # 1 success, 0 reverted
    block_number: Optional[int] = None


class ChainClient(ABC):
    """
    Read/write contract of the auction smart contract.

    Reads raise ChainUnavailable on node/network errors; writes raise
    TransactionRejected when the transaction never made it to the mempool,
    and ConfirmationFailed when it was sent but reverted or timed out.
    """

    @abstractmethod
    def read_pending_returns(self, address: str) -> Decimal: ...

    @abstractmethod
    def read_highest_bid(self, token_id: int) -> Optional[Decimal]: ...

    @abstractmethod
    def submit_settle(self, auction_id: int, token_id: int, winner_id: int) -> TxHandle: ...

    @abstractmethod
    def submit_withdraw(self, address: str) -> TxHandle: ...

    @abstractmethod
    def await_confirmation(self, handle: TxHandle, timeout: float) -> Receipt: ...


@dataclass
class _PendingTx:
    handle: TxHandle
    payload: Dict[str, object] = field(default_factory=dict)


class InMemoryChainClient(ChainClient):
    """
    Process-local stand-in for the auction contract, used for local
    development and tests.

    State is held in plain dicts guarded by a lock. Failure injection flags
    (``unavailable``, ``reject_next``, ``revert_next``, ``timeout_next``) let
    callers exercise every error path of the action layer.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.pending_returns: Dict[str, Decimal] = {}
        self.highest_bids: Dict[int, Decimal] = {}
        self.settled_tokens: Dict[int, int] = {}  # token_id -> winner_id
        self.submitted: List[TxHandle] = []
        self._pending: Dict[str, _PendingTx] = {}
        self._block = 0

        self.unavailable = False
        self.reject_next: Optional[str] = None
        self.revert_next = False
        self.timeout_next = False

    # ---------------------------
    # READS
    # ---------------------------

    def read_pending_returns(self, address: str) -> Decimal:
        if self.unavailable:
            raise ChainUnavailable("Chain node unreachable.")
        with self._lock:
            return self.pending_returns.get(normalize_address(address), Decimal("0"))

    def read_highest_bid(self, token_id: int) -> Optional[Decimal]:
        if self.unavailable:
            raise ChainUnavailable("Chain node unreachable.")
        with self._lock:
            return self.highest_bids.get(int(token_id))

    # ---------------------------
    # WRITES
    # ---------------------------

    def _submit(self, function_name: str, payload: Dict[str, object]) -> TxHandle:
        if self.reject_next is not None:
            msg, self.reject_next = self.reject_next, None
            raise TransactionRejected(msg or "User rejected the request.")
        handle = TxHandle(tx_hash="0x" + uuid.uuid4().hex, function_name=function_name)
        with self._lock:
            self.submitted.append(handle)
            self._pending[handle.tx_hash] = _PendingTx(handle=handle, payload=payload)
        logger.info("tx submitted", extra={"tx_hash": handle.tx_hash, "function": function_name})
        return handle

    def submit_settle(self, auction_id: int, token_id: int, winner_id: int) -> TxHandle:
        return self._submit(
            "settle", {"auction_id": auction_id, "token_id": int(token_id), "winner_id": winner_id}
        )

    def submit_withdraw(self, address: str) -> TxHandle:
        return self._submit("withdraw", {"address": normalize_address(address)})

    def await_confirmation(self, handle: TxHandle, timeout: float) -> Receipt:
        if self.timeout_next:
            self.timeout_next = False
            raise ConfirmationFailed(f"Timed out after {timeout}s waiting for {handle.tx_hash}.")

        with self._lock:
            pending = self._pending.pop(handle.tx_hash, None)
            if pending is None:
                raise ConfirmationFailed(f"Unknown transaction {handle.tx_hash}.")

            if self.revert_next:
                self.revert_next = False
                raise ConfirmationFailed(f"Transaction {handle.tx_hash} reverted.")

            if handle.function_name == "settle":
                token_id = int(pending.payload["token_id"])
                if token_id in self.settled_tokens:
                    raise ConfirmationFailed(f"Transaction {handle.tx_hash} reverted: already settled.")
                self.settled_tokens[token_id] = int(pending.payload["winner_id"])
            elif handle.function_name == "withdraw":
                self.pending_returns[str(pending.payload["address"])] = Decimal("0")

            self._block += 1
            return Receipt(tx_hash=handle.tx_hash, status=1, block_number=self._block)



# ─────────────────────────────────────────────
# JSON-RPC backend
# ─────────────────────────────────────────────

_SELECTOR_RE = re.compile(r"^0x[0-9a-f]{8}$")


class RpcError(Exception):
    """Error object returned by the node in a JSON-RPC response."""


def _word_uint(value: int) -> str:
    return format(int(value), "064x")


def _word_address(address: str) -> str:
    return normalize_address(address)[2:].rjust(64, "0")


class JsonRpcChainClient(ChainClient):
    """
    Auction contract behind an Ethereum JSON-RPC endpoint.

    Transactions go out through ``eth_sendTransaction``, so the node signs
    them: ``settle`` from the configured sender account and ``withdraw``
    from the withdrawing wallet itself. Function selectors are the 4-byte
    ids from the contract ABI.
    """

    def __init__(
        self,
        *,
        rpc_url: str,
        contract_address: str,
        sender_address: str,
        selectors: Dict[str, str],
        timeout: float = 10.0,
        poll_interval: float = 1.0,
        session=None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = normalize_address(contract_address)
        self.sender_address = normalize_address(sender_address)
        self.selectors = {k: v.strip().lower() for k, v in selectors.items() if v}
        for name, sel in self.selectors.items():
            if not _SELECTOR_RE.match(sel):
                raise ValueError(f"Selector for {name} must be 0x followed by 8 hex chars, got {sel!r}.")
        self.timeout = float(timeout)
        self.poll_interval = float(poll_interval)
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def _rpc(self, method: str, params: list):
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        body = resp.json()
        if body.get("error"):
            err = body["error"]
            raise RpcError(err.get("message") if isinstance(err, dict) else str(err))
        return body.get("result")

    def _call_uint(self, function: str, *words: str) -> int:
        data = self.selectors[function] + "".join(words)
        try:
            result = self._rpc("eth_call", [{"to": self.contract_address, "data": data}, "latest"])
            return int(result or "0x0", 16)
        except (requests.RequestException, RpcError, ValueError) as e:
            raise ChainUnavailable(f"eth_call {function} failed: {e}") from e

    def _send(self, function: str, sender: str, data: str) -> TxHandle:
        tx = {"from": sender, "to": self.contract_address, "data": data}
        try:
            tx_hash = self._rpc("eth_sendTransaction", [tx])
        except RpcError as e:
            raise TransactionRejected(str(e) or f"{function} rejected by node.") from e
        except (requests.RequestException, ValueError) as e:
            raise TransactionRejected(f"{function} could not be sent: {e}") from e
        if not tx_hash:
            raise TransactionRejected(f"{function} returned no transaction hash.")

        logger.info("tx submitted", extra={"tx_hash": tx_hash, "function": function})
        return TxHandle(tx_hash=tx_hash, function_name=function)

    # ---------------------------
    # READS
    # ---------------------------

    def read_pending_returns(self, address: str) -> Decimal:
        return wei_to_ether(self._call_uint("pending_returns", _word_address(address)))

    def read_highest_bid(self, token_id: int) -> Optional[Decimal]:
        if "highest_bid" not in self.selectors:
            return None
        wei = self._call_uint("highest_bid", _word_uint(token_id))
        return wei_to_ether(wei) if wei else None

    # ---------------------------
    # WRITES
    # ---------------------------

    def submit_settle(self, auction_id: int, token_id: int, winner_id: int) -> TxHandle:
        return self._send("settle", self.sender_address, self.selectors["settle"] + _word_uint(token_id))

    def submit_withdraw(self, address: str) -> TxHandle:
        return self._send("withdraw", normalize_address(address), self.selectors["withdraw"])

    def await_confirmation(self, handle: TxHandle, timeout: float) -> Receipt:
        deadline = time.monotonic() + float(timeout)
        while True:
            try:
                receipt = self._rpc("eth_getTransactionReceipt", [handle.tx_hash])
            except (requests.RequestException, RpcError, ValueError) as e:
                raise ConfirmationFailed(f"Receipt lookup for {handle.tx_hash} failed: {e}") from e

            if receipt:
                return Receipt(
                    tx_hash=handle.tx_hash,
                    status=int(receipt.get("status") or "0x0", 16),
                    block_number=int(receipt.get("blockNumber") or "0x0", 16),
                )
            if time.monotonic() >= deadline:
                raise ConfirmationFailed(f"Timed out after {timeout}s waiting for {handle.tx_hash}.")
            time.sleep(self.poll_interval)


_RPC_REQUIRED = (
    "chain_rpc_url",
    "chain_contract_address",
    "chain_sender_address",
    "chain_pending_returns_selector",
    "chain_settle_selector",
    "chain_withdraw_selector",
)


def build_chain_client(settings) -> ChainClient:
    backend = settings.chain_backend
    if backend == "memory":
        return InMemoryChainClient()
    if backend == "rpc":
        missing = [name for name in _RPC_REQUIRED if not getattr(settings, name)]
        if missing:
            raise ValueError(f"chain_backend=rpc requires: {', '.join(missing)}")
        return JsonRpcChainClient(
            rpc_url=settings.chain_rpc_url,
            contract_address=settings.chain_contract_address,
            sender_address=settings.chain_sender_address,
            selectors={
                "pending_returns": settings.chain_pending_returns_selector,
                "highest_bid": settings.chain_highest_bid_selector,
                "settle": settings.chain_settle_selector,
                "withdraw": settings.chain_withdraw_selector,
            },
            timeout=settings.chain_rpc_timeout_seconds,
            poll_interval=settings.chain_poll_interval_seconds,
        )
    raise ValueError(f"Unsupported chain backend: {backend}")
