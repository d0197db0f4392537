#apollo/models/user.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Integer, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from apollo.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # lower-cased 0x address
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    nfts = relationship("NFT", back_populates="owner", foreign_keys="NFT.owner_id")
    bids = relationship("Bid", back_populates="bidder")
