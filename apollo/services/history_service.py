# apollo/services/history_service.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from apollo.core.errors import ChainUnavailable, UserNotFound
from apollo.core.snapshots import AuctionView, BidView
from apollo.models.enums import AuctionStatus, HistoryTab
from apollo.services.auction_status import (
    can_settle,
    derive_status,
    has_won,
    is_ended,
    time_left,
)
from apollo.services.chain import ChainClient, normalize_address
from apollo.services.store import AuctionStore

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuctionHistory:
    """
    One auction the user has bid in, as seen by that user at ``now``.
    Never persisted.
    """
    auction: AuctionView
    user_highest_bid: Optional[Decimal]
    user_last_bid: Optional[Decimal]
    status: AuctionStatus
    is_ended: bool
    won: bool
    can_settle: bool
    time_left: timedelta


@dataclass(frozen=True)
class HistoryStats:
    wins: int
    losses: int
    total: int


@dataclass(frozen=True)
class PendingAmount:
    amount: Decimal
    stale: bool


@dataclass(frozen=True)
class Dashboard:
    user_id: int
    wallet_address: str
    history: List[AuctionHistory]
    stats: HistoryStats
    pending: PendingAmount


@dataclass(frozen=True)
class AuctionDetail:
    auction: AuctionView
    status: AuctionStatus
    is_ended: bool
    time_left: timedelta
    current_price: Decimal
    price_source: str  # "chain" | "store" | "min_bid"


# ─────────────────────────────────────────────
# Pure reconciliation
# ─────────────────────────────────────────────

def _group_by_auction(bids: Iterable[BidView]) -> Dict[int, List[BidView]]:
    # dicts keep insertion order -> first-encounter grouping
    groups: Dict[int, List[BidView]] = {}
    for b in bids:
        groups.setdefault(b.auction_id, []).append(b)
    return groups


def _bid_order_key(b: BidView) -> Tuple[datetime, int]:
    ts = b.created_at or datetime.min
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts, b.id


def user_highest_bid(group: Iterable[BidView], user_id: int) -> Optional[Decimal]:
    amounts = [b.amount for b in group if b.bidder_id == user_id]
    return max(amounts) if amounts else None


def user_last_bid(group: Iterable[BidView], user_id: int) -> Optional[Decimal]:
    own = [b for b in group if b.bidder_id == user_id]
    if not own:
        return None
    return max(own, key=_bid_order_key).amount


def _resolve_auction(group: List[BidView]) -> Optional[AuctionView]:
    for b in group:
        if b.auction is not None:
            return b.auction
    return None


def build_history(
    bids: Iterable[BidView],
    user_id: int,
    now: Optional[datetime] = None,
) -> List[AuctionHistory]:
    """
    Reconcile a bid list into one AuctionHistory per auction the user bid in.

    Grouping follows the order in which auctions are first met in ``bids``.
    Groups without a bid from ``user_id`` or without a resolvable parent
    auction produce no record.
    """
    now = now or _now()
    out: List[AuctionHistory] = []

    for _, group in _group_by_auction(bids).items():
        highest = user_highest_bid(group, user_id)
        if highest is None:
            continue
        auction = _resolve_auction(group)
        if auction is None:
            continue

        out.append(
            AuctionHistory(
                auction=auction,
                user_highest_bid=highest,
                user_last_bid=user_last_bid(group, user_id),
                status=derive_status(auction, now),
                is_ended=is_ended(auction, now),
                won=has_won(auction, user_id),
                can_settle=can_settle(auction, user_id, now),
                time_left=time_left(auction, now),
            )
        )

    return out


def filter_history(
    history: Iterable[AuctionHistory],
    tab: HistoryTab,
    user_id: int,
) -> List[AuctionHistory]:
    """
    Dashboard tabs. ``ended`` includes settled auctions; ``won``/``lost``
    split every non-active auction on the recorded highest bidder.
    """
    tab = HistoryTab(tab)
    items = list(history)

    if tab == HistoryTab.active:
        return [h for h in items if h.status == AuctionStatus.active]
    if tab == HistoryTab.ended:
        return [h for h in items if h.status in (AuctionStatus.ended, AuctionStatus.settled)]
    if tab == HistoryTab.won:
        return [
            h for h in items
            if h.status != AuctionStatus.active and h.auction.highest_bidder_id == user_id
        ]
    if tab == HistoryTab.lost:
        return [
            h for h in items
            if h.status != AuctionStatus.active and h.auction.highest_bidder_id != user_id
        ]
    return items


def summarize(history: Iterable[AuctionHistory]) -> HistoryStats:
    items = list(history)
    wins = sum(1 for h in items if h.won)
    return HistoryStats(wins=wins, losses=len(items) - wins, total=len(items))


# ─────────────────────────────────────────────
# Caches
# ─────────────────────────────────────────────

@dataclass
class _CacheEntry:
    generation: int
    stored_at: float
    bids: List[BidView]


class HistoryViewCache:
    """
    Short-lived cache of per-user store snapshots (bid lists).

    Only the raw snapshot is cached; status and the other time-dependent
    fields are derived again on every read. Entries are dropped on
    invalidation, never edited in place.
    """

    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = float(ttl_seconds)
        self._lock = threading.Lock()
        self._generation = 0
        self._entries: Dict[int, _CacheEntry] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, user_id: int) -> Optional[List[BidView]]:
        if not self.enabled:
            return None
        with self._lock:
            e = self._entries.get(user_id)
            if e is None:
                return None
            if e.generation != self._generation or time.monotonic() - e.stored_at > self.ttl_seconds:
                del self._entries[user_id]
                return None
            return e.bids

    def put(self, user_id: int, bids: List[BidView]) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries[user_id] = _CacheEntry(
                generation=self._generation,
                stored_at=time.monotonic(),
                bids=list(bids),
            )

    def invalidate_user(self, user_id: int) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def invalidate_auction(self, auction_id: int) -> None:
        with self._lock:
            stale = [
                uid for uid, e in self._entries.items()
                if any(b.auction_id == auction_id for b in e.bids)
            ]
            for uid in stale:
                del self._entries[uid]

    def invalidate_all(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()


class PendingReturnsTracker:
    """
    Reads pending returns from the chain and remembers the last value seen
    per wallet, so an outage degrades to a stale number instead of an error.
    """

    def __init__(self, chain: ChainClient):
        self.chain = chain
        self._lock = threading.Lock()
        self._last_known: Dict[str, Decimal] = {}

    def read(self, wallet_address: str) -> PendingAmount:
        addr = normalize_address(wallet_address)
        try:
            amount = self.chain.read_pending_returns(addr)
        except ChainUnavailable as e:
            with self._lock:
                fallback = self._last_known.get(addr, Decimal("0"))
            logger.warning(
                "pending returns unavailable, using last known value",
                extra={"wallet": addr, "error": str(e), "fallback": str(fallback)},
            )
            return PendingAmount(amount=fallback, stale=True)

        with self._lock:
            self._last_known[addr] = amount
        return PendingAmount(amount=amount, stale=False)

    def last_known(self, wallet_address: str) -> Optional[Decimal]:
        with self._lock:
            return self._last_known.get(normalize_address(wallet_address))

    def zero_out(self, wallet_address: str) -> None:
        with self._lock:
            self._last_known[normalize_address(wallet_address)] = Decimal("0")


# ─────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────

class AuctionHistoryService:
    def __init__(
        self,
        *,
        chain: ChainClient,
        cache: HistoryViewCache,
        pending: PendingReturnsTracker,
        store: Optional[AuctionStore] = None,
    ):
        self.chain = chain
        self.cache = cache
        self.pending = pending
        self.store = store or AuctionStore()

    def _resolve_user_id(self, db: Session, wallet_address: str) -> int:
        user = self.store.get_user_by_wallet(db, wallet_address)
        if not user:
            raise UserNotFound(f"No user for wallet {normalize_address(wallet_address)}.")
        return user.id

    def _load_bids(self, db: Session, user_id: int) -> List[BidView]:
        bids = self.cache.get(user_id)
        if bids is None:
            bids = self.store.get_bids_by_user(db, user_id)
            self.cache.put(user_id, bids)
        return bids

    def get_history(
        self,
        db: Session,
        wallet_address: str,
        *,
        tab: HistoryTab = HistoryTab.all,
        now: Optional[datetime] = None,
    ) -> List[AuctionHistory]:
        user_id = self._resolve_user_id(db, wallet_address)
        history = build_history(self._load_bids(db, user_id), user_id, now)
        return filter_history(history, tab, user_id)

    def get_dashboard(
        self,
        db: Session,
        wallet_address: str,
        *,
        now: Optional[datetime] = None,
    ) -> Dashboard:
        user_id = self._resolve_user_id(db, wallet_address)
        history = build_history(self._load_bids(db, user_id), user_id, now)

        return Dashboard(
            user_id=user_id,
            wallet_address=normalize_address(wallet_address),
            history=history,
            stats=summarize(history),
            # independent of the bid ledger: outbid funds live on-chain
            pending=self.pending.read(wallet_address),
        )

    def get_auction_detail(
        self,
        db: Session,
        auction_id: int,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[AuctionDetail]:
        auction = self.store.get_auction(db, auction_id)
        if auction is None:
            return None
        now = now or _now()
        price, source = self.current_price(auction)
        return AuctionDetail(
            auction=auction,
            status=derive_status(auction, now),
            is_ended=is_ended(auction, now),
            time_left=time_left(auction, now),
            current_price=price,
            price_source=source,
        )

    def current_price(self, auction: AuctionView) -> Tuple[Decimal, str]:
        """
        Live chain highest bid, else stored highest bid, else the minimum bid.
        """
        if auction.nft is not None:
            try:
                live = self.chain.read_highest_bid(auction.nft.token_id)
            except ChainUnavailable as e:
                live = None
                logger.warning(
                    "live highest bid unavailable",
                    extra={"auction_id": auction.id, "error": str(e)},
                )
            if live is not None and live > 0:
                return live, "chain"

        if auction.highest_bid:
            return auction.highest_bid, "store"
        return auction.min_bid, "min_bid"
