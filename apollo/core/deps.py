# /apollo/core/deps.py
import re
from functools import lru_cache

from fastapi import Request, HTTPException

from apollo.core.config import get_settings
from apollo.services.action_orchestrator import ActionOrchestrator
from apollo.services.chain import ChainClient, build_chain_client, normalize_address
from apollo.services.history_service import (
    AuctionHistoryService,
    HistoryViewCache,
    PendingReturnsTracker,
)

_WALLET_RE = re.compile(r"^0x[0-9a-f]{40}$")


def _extract_wallet(request: Request) -> str:
    """
    Resolution order:
    1. Header (configured name, default X-Wallet-Address)
    2. Query param ``wallet``
    """
    settings = get_settings()
    raw = request.headers.get(settings.wallet_header)
    if not raw:
        raw = request.query_params.get("wallet")
    return normalize_address(raw or "")


async def require_wallet(request: Request) -> str:
    wallet = _extract_wallet(request)
    if not wallet:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_wallet", "detail": "Missing required wallet address."},
        )
    if not _WALLET_RE.match(wallet):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_wallet", "detail": "Wallet address must be a 0x-prefixed 20-byte hex string."},
        )
    request.state.wallet_address = wallet
    return wallet


# ─────────── process-wide collaborators ───────────

@lru_cache(maxsize=1)
def get_chain_client() -> ChainClient:
    return build_chain_client(get_settings())


@lru_cache(maxsize=1)
def get_history_cache() -> HistoryViewCache:
    return HistoryViewCache(ttl_seconds=get_settings().history_cache_ttl_seconds)


@lru_cache(maxsize=1)
def get_pending_tracker() -> PendingReturnsTracker:
    return PendingReturnsTracker(get_chain_client())


def get_history_service() -> AuctionHistoryService:
    return AuctionHistoryService(
        chain=get_chain_client(),
        cache=get_history_cache(),
        pending=get_pending_tracker(),
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> ActionOrchestrator:
    # one instance per process: the in-flight guard must be shared
    return ActionOrchestrator(
        chain=get_chain_client(),
        cache=get_history_cache(),
        pending=get_pending_tracker(),
        confirmation_timeout=get_settings().confirmation_timeout_seconds,
    )
