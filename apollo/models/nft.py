#apollo/models/nft.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Integer, ForeignKey, Boolean, false, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from apollo.db.base import Base


class NFT(Base):
    __tablename__ = "nfts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # on-chain token id (the auction contract is keyed by it)
    token_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    owner_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    is_listed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false(), default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    owner = relationship("User", back_populates="nfts", foreign_keys=[owner_id])
    auction = relationship("Auction", back_populates="nft", uselist=False)
