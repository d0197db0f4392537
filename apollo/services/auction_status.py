# apollo/services/auction_status.py
"""
Single source of truth for auction status.

Every caller that needs to know whether an auction is running, over, or
settled goes through ``derive_status``; nothing else compares ``end_time``
or reads ``settled`` on its own.

All functions here are total: they accept any object exposing ``settled``,
``end_time`` and ``highest_bidder_id`` (ORM row or snapshot) and never raise.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from apollo.models.enums import AuctionStatus

_ZERO = timedelta(0)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # naive timestamps (e.g. SQLite) are stored as UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _end_time(auction: Any) -> Optional[datetime]:
    end = getattr(auction, "end_time", None)
    return _aware(end) if isinstance(end, datetime) else None


def is_settled(auction: Any) -> bool:
    return bool(getattr(auction, "settled", False))


def is_ended(auction: Any, now: Optional[datetime] = None) -> bool:
    """now >= end_time. A missing end time counts as ended."""
    end = _end_time(auction)
    if end is None:
        return True
    return (_aware(now) or _now()) >= end


def derive_status(auction: Any, now: Optional[datetime] = None) -> AuctionStatus:
    if is_settled(auction):
        return AuctionStatus.settled
    if is_ended(auction, now):
        return AuctionStatus.ended
    return AuctionStatus.active


def time_left(auction: Any, now: Optional[datetime] = None) -> timedelta:
    end = _end_time(auction)
    if end is None:
        return _ZERO
    return max(_ZERO, end - (_aware(now) or _now()))


def has_won(auction: Any, user_id: Optional[int]) -> bool:
    # recorded highest bidder only; not cross-checked against the bid ledger
    if user_id is None:
        return False
    return getattr(auction, "highest_bidder_id", None) == user_id and is_settled(auction)


def can_settle(auction: Any, user_id: Optional[int], now: Optional[datetime] = None) -> bool:
    if user_id is None:
        return False
    return (
        getattr(auction, "highest_bidder_id", None) == user_id
        and not is_settled(auction)
        and is_ended(auction, now)
    )
