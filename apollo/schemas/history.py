from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, Field

from apollo.models.enums import AuctionStatus


class NFTOut(BaseModel):
    id: int
    token_id: int
    title: Optional[str] = None
    owner_id: Optional[int] = None


class UserOut(BaseModel):
    id: int
    wallet_address: str
    username: Optional[str] = None


class BidOut(BaseModel):
    id: int
    bidder_id: int
    amount: str  # ether, decimal string
    created_at_iso: Optional[str] = None


class AuctionOut(BaseModel):
    id: int
    nft_id: int
    seller_id: int
    min_bid: str
    highest_bid: Optional[str] = None
    highest_bidder_id: Optional[int] = None
    start_time_iso: Optional[str] = None
    end_time_iso: Optional[str] = None
    settled: bool

    nft: Optional[NFTOut] = None
    seller: Optional[UserOut] = None
    highest_bidder: Optional[UserOut] = None
    bids: List[BidOut] = Field(default_factory=list)


class AuctionHistoryOut(BaseModel):
    auction: AuctionOut
    user_highest_bid: Optional[str] = None
    user_last_bid: Optional[str] = None
    status: AuctionStatus
    is_ended: bool
    won: bool
    can_settle: bool
    time_left_seconds: int = Field(..., ge=0)


class AuctionHistoryResponse(BaseModel):
    wallet_address: str
    tab: str
    items: List[AuctionHistoryOut] = Field(default_factory=list)


class HistoryStatsOut(BaseModel):
    wins: int
    losses: int
    total: int


class PendingAmountOut(BaseModel):
    amount: str
    # true when the chain could not be read and the last known value is shown
    stale: bool


class DashboardResponse(BaseModel):
    wallet_address: str
    user_id: int
    pending: PendingAmountOut
    stats: HistoryStatsOut
    items: List[AuctionHistoryOut] = Field(default_factory=list)


class AuctionDetailResponse(BaseModel):
    auction: AuctionOut
    status: AuctionStatus
    is_ended: bool
    time_left_seconds: int = Field(..., ge=0)
    current_price: str
    price_source: str
