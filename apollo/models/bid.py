#apollo/models/bid.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, ForeignKey, CheckConstraint, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from apollo.db.base import Base


class Bid(Base):
    """
    Append-only: rows are never updated or deleted once written.
    """
    __tablename__ = "bids"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    auction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("auctions.id", ondelete="RESTRICT"), nullable=False
    )
    bidder_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    auction = relationship("Auction", back_populates="bids")
    bidder = relationship("User", back_populates="bids")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bids_amount_positive"),
        Index("ix_bids_bidder_created", "bidder_id", "created_at"),
        Index("ix_bids_auction", "auction_id"),
    )
