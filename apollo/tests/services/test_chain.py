from decimal import Decimal

import pytest
import requests

from apollo.core.config import Settings
from apollo.core.errors import ChainUnavailable, ConfirmationFailed, TransactionRejected
from apollo.services.chain import (
    InMemoryChainClient,
    JsonRpcChainClient,
    TxHandle,
    build_chain_client,
    normalize_address,
    wei_to_ether,
)

ADDR = "0x" + "ab" * 20


def test_wei_to_ether():
    assert wei_to_ether(10 ** 18) == Decimal("1")
    assert wei_to_ether(1_500_000_000_000_000_000) == Decimal("1.5")
    assert wei_to_ether(0) == Decimal("0")


def test_normalize_address():
    assert normalize_address("  0xABcd ") == "0xabcd"
    assert normalize_address(None) == ""


def test_reads_default_and_outage():
    chain = InMemoryChainClient()
    assert chain.read_pending_returns(ADDR) == Decimal("0")
    assert chain.read_highest_bid(1) is None

    chain.unavailable = True
    with pytest.raises(ChainUnavailable):
        chain.read_pending_returns(ADDR)
    with pytest.raises(ChainUnavailable):
        chain.read_highest_bid(1)


def test_withdraw_confirmation_clears_pending():
    chain = InMemoryChainClient()
    chain.pending_returns[ADDR] = Decimal("0.75")

    h = chain.submit_withdraw(ADDR.upper().replace("0X", "0x"))
    receipt = chain.await_confirmation(h, timeout=1)

    assert receipt.status == 1
    assert chain.read_pending_returns(ADDR) == Decimal("0")


def test_second_settle_of_same_token_reverts():
    chain = InMemoryChainClient()
    first = chain.submit_settle(1, 10, 7)
    second = chain.submit_settle(1, 10, 7)

    chain.await_confirmation(first, timeout=1)
    with pytest.raises(ConfirmationFailed):
        chain.await_confirmation(second, timeout=1)
    assert chain.settled_tokens == {10: 7}


def test_failure_flags_fire_once():
    chain = InMemoryChainClient()

    chain.reject_next = "denied"
    with pytest.raises(TransactionRejected):
        chain.submit_withdraw(ADDR)
    h = chain.submit_withdraw(ADDR)

    chain.timeout_next = True
    with pytest.raises(ConfirmationFailed):
        chain.await_confirmation(h, timeout=1)
    assert chain.await_confirmation(h, timeout=1).status == 1

    with pytest.raises(ConfirmationFailed):
        chain.await_confirmation(h, timeout=1)  # already mined


# ─────────────────────────────────────────────
# JSON-RPC backend
# ─────────────────────────────────────────────

CONTRACT = "0x" + "cd" * 20
SENDER = "0x" + "ef" * 20
SELECTORS = {
    "pending_returns": "0x11111111",
    "highest_bid": "0x22222222",
    "settle": "0x33333333",
    "withdraw": "0x44444444",
}


class _Response:
    def __init__(self, body):
        self.body = body

    def raise_for_status(self):
        pass

    def json(self):
        return self.body


class _Node:
    """Answers JSON-RPC posts from a per-method queue of results."""

    def __init__(self, **replies):
        self.replies = {m: list(v) for m, v in replies.items()}
        self.calls = []

    def post(self, url, json, timeout):
        self.calls.append(json)
        reply = self.replies[json["method"]].pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict) and "error" in reply:
            return _Response({"jsonrpc": "2.0", "id": json["id"], "error": reply["error"]})
        return _Response({"jsonrpc": "2.0", "id": json["id"], "result": reply})


def _rpc_client(node, selectors=SELECTORS):
    return JsonRpcChainClient(
        rpc_url="http://node",
        contract_address=CONTRACT,
        sender_address=SENDER,
        selectors=selectors,
        poll_interval=0,
        session=node,
    )


def _uint(v):
    return "0x" + format(v, "064x")


def test_rpc_reads_pending_returns_in_ether():
    node = _Node(eth_call=[_uint(1_500_000_000_000_000_000)])
    assert _rpc_client(node).read_pending_returns(ADDR.upper().replace("0X", "0x")) == Decimal("1.5")

    call = node.calls[0]
    assert call["params"][0]["to"] == CONTRACT
    assert call["params"][0]["data"] == "0x11111111" + "0" * 24 + "ab" * 20


def test_rpc_read_failures_are_chain_unavailable():
    node = _Node(eth_call=[{"error": {"code": -32000, "message": "header not found"}},
                           requests.ConnectionError("refused")])
    client = _rpc_client(node)
    with pytest.raises(ChainUnavailable):
        client.read_pending_returns(ADDR)
    with pytest.raises(ChainUnavailable):
        client.read_pending_returns(ADDR)


def test_rpc_highest_bid():
    node = _Node(eth_call=[_uint(0), _uint(2 * 10 ** 18)])
    client = _rpc_client(node)
    assert client.read_highest_bid(5) is None
    assert client.read_highest_bid(5) == Decimal("2")
    assert node.calls[1]["params"][0]["data"] == "0x22222222" + format(5, "064x")

    without = dict(SELECTORS, highest_bid="")
    assert _rpc_client(_Node(), without).read_highest_bid(5) is None


def test_rpc_submit_settle_and_withdraw():
    node = _Node(eth_sendTransaction=["0xaaa", "0xbbb"])
    client = _rpc_client(node)

    h = client.submit_settle(1, 9, 7)
    assert h == TxHandle(tx_hash="0xaaa", function_name="settle")
    assert node.calls[0]["params"][0] == {"from": SENDER, "to": CONTRACT, "data": "0x33333333" + format(9, "064x")}

    client.submit_withdraw(ADDR)
    assert node.calls[1]["params"][0] == {"from": ADDR, "to": CONTRACT, "data": "0x44444444"}


@pytest.mark.parametrize(
    "reply",
    [{"error": {"code": 4001, "message": "User denied transaction signature."}}, requests.Timeout("slow"), None],
)
def test_rpc_submit_failures_are_rejections(reply):
    client = _rpc_client(_Node(eth_sendTransaction=[reply]))
    with pytest.raises(TransactionRejected):
        client.submit_withdraw(ADDR)


def test_rpc_await_confirmation_polls_until_mined():
    node = _Node(eth_getTransactionReceipt=[None, None, {"status": "0x1", "blockNumber": "0x10"}])
    receipt = _rpc_client(node).await_confirmation(TxHandle("0xaaa", "settle"), timeout=5)
    assert (receipt.status, receipt.block_number) == (1, 16)
    assert len(node.calls) == 3


def test_rpc_reverted_receipt_has_zero_status():
    node = _Node(eth_getTransactionReceipt=[{"status": "0x0", "blockNumber": "0x2"}])
    assert _rpc_client(node).await_confirmation(TxHandle("0xaaa", "settle"), timeout=5).status == 0


def test_rpc_await_confirmation_timeout_and_errors():
    node = _Node(eth_getTransactionReceipt=[None, requests.ConnectionError("reset")])
    client = _rpc_client(node)
    with pytest.raises(ConfirmationFailed, match="Timed out"):
        client.await_confirmation(TxHandle("0xaaa", "settle"), timeout=0)
    with pytest.raises(ConfirmationFailed):
        client.await_confirmation(TxHandle("0xaaa", "settle"), timeout=5)


def test_rpc_rejects_malformed_selector():
    with pytest.raises(ValueError):
        _rpc_client(_Node(), dict(SELECTORS, settle="settle(uint256)"))


def test_build_chain_client():
    base = {"database_url": "sqlite://"}
    assert isinstance(build_chain_client(Settings(**base)), InMemoryChainClient)

    with pytest.raises(ValueError, match="chain_rpc_url"):
        build_chain_client(Settings(**base, chain_backend="rpc"))

    rpc = Settings(
        **base,
        chain_backend="rpc",
        chain_rpc_url="http://node",
        chain_contract_address=CONTRACT,
        chain_sender_address=SENDER,
        chain_pending_returns_selector=SELECTORS["pending_returns"],
        chain_settle_selector=SELECTORS["settle"],
        chain_withdraw_selector=SELECTORS["withdraw"],
    )
    client = build_chain_client(rpc)
    assert isinstance(client, JsonRpcChainClient)
    assert "highest_bid" not in client.selectors

    with pytest.raises(ValueError):
        build_chain_client(Settings(**base, chain_backend="web3"))
