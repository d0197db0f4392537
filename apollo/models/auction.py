#apollo/models/auction.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    Integer,
    Numeric,
    Boolean,
    ForeignKey,
    CheckConstraint,
    Index,
    false,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from apollo.db.base import Base


class Auction(Base):
    """
    One timed sale of one NFT.

    ``settled`` is monotonic: it only ever moves false -> true, after the
    on-chain settle transaction has been confirmed.
    """
    __tablename__ = "auctions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    nft_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("nfts.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    seller_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )

    # ether units
    highest_bid: Mapped[Optional[Decimal]] = mapped_column(Numeric(38, 18), nullable=True)
    highest_bidder_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    min_bid: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)

    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # legacy rows may lack an end time; they derive as ended
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    settled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false(), default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    nft = relationship("NFT", back_populates="auction")
    seller = relationship("User", foreign_keys=[seller_id])
    highest_bidder = relationship("User", foreign_keys=[highest_bidder_id])
    bids = relationship("Bid", back_populates="auction", order_by="Bid.id")

    __table_args__ = (
        CheckConstraint("min_bid >= 0", name="ck_auctions_min_bid_nonnegative"),
        Index("ix_auctions_settled_end_time", "settled", "end_time"),
    )
