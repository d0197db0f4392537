from datetime import timedelta
from decimal import Decimal

import pytest

from apollo.core.errors import UserNotFound
from apollo.core.snapshots import AuctionView, BidView
from apollo.models.enums import AuctionStatus, HistoryTab
from apollo.services.history_service import (
    HistoryViewCache,
    build_history,
    filter_history,
    summarize,
    user_highest_bid,
)
from apollo.tests.factories import NOW, create_auction, create_bid, create_user, wallet


def auction_view(auction_id, *, end_time=NOW, settled=False, highest_bidder_id=None, highest_bid=None):
    return AuctionView(
        id=auction_id,
        nft_id=100 + auction_id,
        seller_id=99,
        min_bid=Decimal("1.0"),
        settled=settled,
        end_time=end_time,
        highest_bid=highest_bid,
        highest_bidder_id=highest_bidder_id,
    )


def bid(bid_id, auction, bidder_id, amount, minutes_ago=60):
    return BidView(
        id=bid_id,
        auction_id=auction.id,
        bidder_id=bidder_id,
        amount=Decimal(amount),
        created_at=NOW - timedelta(minutes=minutes_ago),
        auction=auction,
    )


# ─────────────────────────────────────────────
# build_history
# ─────────────────────────────────────────────

def test_groups_per_auction_with_user_highest_bid():
    a1 = auction_view(1)
    a2 = auction_view(2)
    bids = [
        bid(1, a1, 7, "1.2", minutes_ago=30),
        bid(2, a1, 7, "1.5", minutes_ago=20),
        bid(3, a2, 7, "0.5"),
    ]

    history = build_history(bids, 7, NOW + timedelta(seconds=1))

    assert [h.auction.id for h in history] == [1, 2]
    assert history[0].user_highest_bid == Decimal("1.5")
    assert history[1].user_highest_bid == Decimal("0.5")


def test_highest_is_max_not_latest():
    a1 = auction_view(1)
    bids = [
        bid(1, a1, 7, "2.0", minutes_ago=50),
        bid(2, a1, 7, "1.1", minutes_ago=10),
    ]
    h = build_history(bids, 7, NOW)[0]
    assert h.user_highest_bid == Decimal("2.0")
    assert h.user_last_bid == Decimal("1.1")


def test_other_users_bids_do_not_count():
    a1 = auction_view(1, highest_bidder_id=8, highest_bid=Decimal("9"))
    a2 = auction_view(2)
    bids = [
        bid(1, a1, 8, "9.0"),
        bid(2, a1, 7, "1.0"),
        bid(3, a2, 8, "3.0"),  # user 7 never bid here
    ]
    history = build_history(bids, 7, NOW)

    assert len(history) == 1
    assert history[0].user_highest_bid == Decimal("1.0")


def test_grouping_follows_first_encounter_and_is_stable():
    a1, a2, a3 = auction_view(1), auction_view(2), auction_view(3)
    bids = [bid(1, a3, 7, "1"), bid(2, a1, 7, "1"), bid(3, a3, 7, "2"), bid(4, a2, 7, "1")]

    first = build_history(bids, 7, NOW)
    second = build_history(bids, 7, NOW)

    assert [h.auction.id for h in first] == [3, 1, 2]
    assert first == second


def test_derived_flags():
    running = auction_view(1, end_time=NOW + timedelta(hours=1), highest_bidder_id=7)
    ended = auction_view(2, end_time=NOW - timedelta(hours=1), highest_bidder_id=7)
    settled = auction_view(3, end_time=NOW - timedelta(hours=1), highest_bidder_id=7, settled=True)
    bids = [bid(1, running, 7, "1"), bid(2, ended, 7, "1"), bid(3, settled, 7, "1")]

    by_id = {h.auction.id: h for h in build_history(bids, 7, NOW)}

    assert by_id[1].status == AuctionStatus.active
    assert by_id[1].time_left == timedelta(hours=1)
    assert by_id[1].can_settle is False

    assert by_id[2].status == AuctionStatus.ended
    assert by_id[2].is_ended is True
    assert by_id[2].can_settle is True
    assert by_id[2].won is False

    assert by_id[3].status == AuctionStatus.settled
    assert by_id[3].won is True
    assert by_id[3].can_settle is False


def test_bids_without_parent_auction_are_skipped():
    orphan = BidView(id=1, auction_id=5, bidder_id=7, amount=Decimal("1"), auction=None)
    assert build_history([orphan], 7, NOW) == []


def test_user_highest_bid_on_empty_group_is_none():
    assert user_highest_bid([], 7) is None


def test_empty_input():
    assert build_history([], 7, NOW) == []


# ─────────────────────────────────────────────
# Tabs / stats
# ─────────────────────────────────────────────

def _sample_history():
    active = auction_view(1, end_time=NOW + timedelta(hours=1), highest_bidder_id=7)
    ended_mine = auction_view(2, end_time=NOW - timedelta(hours=1), highest_bidder_id=7)
    settled_mine = auction_view(3, end_time=NOW - timedelta(hours=1), highest_bidder_id=7, settled=True)
    settled_other = auction_view(4, end_time=NOW - timedelta(hours=1), highest_bidder_id=8, settled=True)
    bids = [bid(i, a, 7, "1") for i, a in enumerate([active, ended_mine, settled_mine, settled_other], 1)]
    return build_history(bids, 7, NOW)


@pytest.mark.parametrize(
    "tab,expected",
    [
        (HistoryTab.all, [1, 2, 3, 4]),
        (HistoryTab.active, [1]),
        (HistoryTab.ended, [2, 3, 4]),
        (HistoryTab.won, [2, 3]),
        (HistoryTab.lost, [4]),
    ],
)
def test_filter_history_tabs(tab, expected):
    assert [h.auction.id for h in filter_history(_sample_history(), tab, 7)] == expected


def test_summarize_counts_settled_wins_only():
    stats = summarize(_sample_history())
    assert (stats.wins, stats.losses, stats.total) == (1, 3, 4)


# ─────────────────────────────────────────────
# Cache
# ─────────────────────────────────────────────

def test_cache_invalidate_auction_drops_whole_entries():
    cache = HistoryViewCache(ttl_seconds=60)
    a1, a2 = auction_view(1), auction_view(2)
    cache.put(7, [bid(1, a1, 7, "1")])
    cache.put(8, [bid(2, a2, 8, "1")])

    cache.invalidate_auction(1)

    assert cache.get(7) is None
    assert cache.get(8) is not None


def test_cache_disabled_with_zero_ttl():
    cache = HistoryViewCache(ttl_seconds=0)
    cache.put(7, [])
    assert cache.get(7) is None


def test_cache_invalidate_all():
    cache = HistoryViewCache(ttl_seconds=60)
    cache.put(7, [])
    cache.invalidate_all()
    assert cache.get(7) is None


# ─────────────────────────────────────────────
# Service (store-backed)
# ─────────────────────────────────────────────

def test_service_history_from_store(db, history_service):
    seller = create_user(db, 1)
    bidder = create_user(db, 7)
    a1 = create_auction(db, seller=seller, token_id=11, end_time=NOW - timedelta(seconds=1),
                        highest_bidder=bidder, highest_bid=Decimal("1.5"))
    a2 = create_auction(db, seller=seller, token_id=12, end_time=NOW + timedelta(hours=3))

    create_bid(db, auction=a1, bidder=bidder, amount="1.25", at=NOW - timedelta(hours=3))
    create_bid(db, auction=a1, bidder=bidder, amount="1.5", at=NOW - timedelta(hours=2))
    create_bid(db, auction=a2, bidder=bidder, amount="0.5", at=NOW - timedelta(hours=1))

    history = history_service.get_history(db, wallet(7), now=NOW)

    # newest bid first -> auction 2 encountered first
    assert [h.auction.id for h in history] == [a2.id, a1.id]
    rec = {h.auction.id: h for h in history}[a1.id]
    assert rec.user_highest_bid == Decimal("1.5")
    assert rec.status == AuctionStatus.ended
    assert rec.can_settle is True
    assert rec.auction.nft.token_id == 11
    assert len(rec.auction.bids) == 2


def test_service_wallet_lookup_is_case_insensitive(db, history_service):
    create_user(db, 0xABC)
    assert history_service.get_history(db, wallet(0xABC).upper().replace("0X", "0x"), now=NOW) == []


def test_service_unknown_wallet(db, history_service):
    with pytest.raises(UserNotFound):
        history_service.get_history(db, wallet(404), now=NOW)


def test_dashboard_pending_amount_and_stale_fallback(db, history_service, chain):
    create_user(db, 7)
    chain.pending_returns[wallet(7)] = Decimal("0.75")

    dash = history_service.get_dashboard(db, wallet(7), now=NOW)
    assert dash.pending.amount == Decimal("0.75")
    assert dash.pending.stale is False

    chain.unavailable = True
    dash = history_service.get_dashboard(db, wallet(7), now=NOW)
    assert dash.pending.amount == Decimal("0.75")
    assert dash.pending.stale is True


def test_dashboard_pending_defaults_to_zero_when_never_read(db, history_service, chain):
    create_user(db, 7)
    chain.unavailable = True
    dash = history_service.get_dashboard(db, wallet(7), now=NOW)
    assert dash.pending.amount == Decimal("0")
    assert dash.pending.stale is True


def test_auction_detail_price_fallbacks(db, history_service, chain):
    seller = create_user(db, 1)
    bidder = create_user(db, 7)
    a = create_auction(db, seller=seller, token_id=21, end_time=NOW + timedelta(hours=1),
                       min_bid=Decimal("0.5"))

    detail = history_service.get_auction_detail(db, a.id, now=NOW)
    assert (detail.current_price, detail.price_source) == (Decimal("0.5"), "min_bid")
    assert detail.status == AuctionStatus.active

    a.highest_bid = Decimal("1.5")
    a.highest_bidder_id = bidder.id
    db.commit()
    detail = history_service.get_auction_detail(db, a.id, now=NOW)
    assert (detail.current_price, detail.price_source) == (Decimal("1.5"), "store")

    chain.highest_bids[21] = Decimal("2.5")
    detail = history_service.get_auction_detail(db, a.id, now=NOW)
    assert (detail.current_price, detail.price_source) == (Decimal("2.5"), "chain")

    chain.unavailable = True
    detail = history_service.get_auction_detail(db, a.id, now=NOW)
    assert (detail.current_price, detail.price_source) == (Decimal("1.5"), "store")


def test_auction_detail_missing(db, history_service):
    assert history_service.get_auction_detail(db, 12345, now=NOW) is None
