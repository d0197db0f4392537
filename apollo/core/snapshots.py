# apollo/core/snapshots.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple


@dataclass(frozen=True)
class UserRef:
    id: int
    wallet_address: str
    username: Optional[str] = None


@dataclass(frozen=True)
class NFTRef:
    id: int
    token_id: int
    title: Optional[str] = None
    owner_id: Optional[int] = None


@dataclass(frozen=True)
class BidView:
    id: int
    auction_id: int
    bidder_id: int
    amount: Decimal
    created_at: Optional[datetime] = None
    # parent auction; left empty on bids nested inside AuctionView.bids
    auction: Optional["AuctionView"] = None


@dataclass(frozen=True)
class AuctionView:
    """
    Detached, read-only copy of an auction row and the rows hanging off it.
    The derivation layer only ever sees these, never live ORM objects.
    """
    id: int
    nft_id: int
    seller_id: int
    min_bid: Decimal
    settled: bool
    end_time: Optional[datetime]
    highest_bid: Optional[Decimal] = None
    highest_bidder_id: Optional[int] = None
    start_time: Optional[datetime] = None
    nft: Optional[NFTRef] = None
    seller: Optional[UserRef] = None
    highest_bidder: Optional[UserRef] = None
    bids: Tuple[BidView, ...] = field(default_factory=tuple)
