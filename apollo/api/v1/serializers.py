# apollo/api/v1/serializers.py
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Optional

from apollo.core.snapshots import AuctionView, BidView, NFTRef, UserRef
from apollo.services.action_orchestrator import ActionRecord
from apollo.services.history_service import AuctionHistory


def _iso(dt):
    return dt.isoformat() if dt else None


def _amount(v: Optional[Decimal]) -> Optional[str]:
    if v is None:
        return None
    # drop trailing zeros from Numeric(38, 18) columns
    s = format(Decimal(v).normalize(), "f")
    return s


def _seconds(td: timedelta) -> int:
    return max(0, int(td.total_seconds()))


def _user(u: Optional[UserRef]) -> Optional[dict]:
    if u is None:
        return None
    return {"id": u.id, "wallet_address": u.wallet_address, "username": u.username}


def _nft(n: Optional[NFTRef]) -> Optional[dict]:
    if n is None:
        return None
    return {"id": n.id, "token_id": n.token_id, "title": n.title, "owner_id": n.owner_id}


def _bid(b: BidView) -> dict:
    return {
        "id": b.id,
        "bidder_id": b.bidder_id,
        "amount": _amount(b.amount),
        "created_at_iso": _iso(b.created_at),
    }


def auction_out(a: AuctionView) -> dict:
    return {
        "id": a.id,
        "nft_id": a.nft_id,
        "seller_id": a.seller_id,
        "min_bid": _amount(a.min_bid),
        "highest_bid": _amount(a.highest_bid),
        "highest_bidder_id": a.highest_bidder_id,
        "start_time_iso": _iso(a.start_time),
        "end_time_iso": _iso(a.end_time),
        "settled": a.settled,
        "nft": _nft(a.nft),
        "seller": _user(a.seller),
        "highest_bidder": _user(a.highest_bidder),
        "bids": [_bid(b) for b in a.bids],
    }


def history_out(h: AuctionHistory) -> dict:
    return {
        "auction": auction_out(h.auction),
        "user_highest_bid": _amount(h.user_highest_bid),
        "user_last_bid": _amount(h.user_last_bid),
        "status": h.status,
        "is_ended": h.is_ended,
        "won": h.won,
        "can_settle": h.can_settle,
        "time_left_seconds": _seconds(h.time_left),
    }


def action_out(rec: ActionRecord) -> dict:
    return {
        "kind": rec.kind,
        "key": rec.key,
        "state": rec.state,
        "in_flight": rec.in_flight,
        "auction_id": rec.auction_id,
        "wallet_address": rec.wallet_address or None,
        "tx_hash": rec.tx_hash,
        "error_code": rec.error_code,
        "error": rec.error,
        "updated_at_iso": _iso(rec.updated_at),
    }
