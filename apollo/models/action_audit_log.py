#apollo/models/action_audit_log.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, Integer, Index, JSON, text
from sqlalchemy.orm import Mapped, mapped_column

from apollo.db.base import Base


class ActionAuditLog(Base):
    """
    Append-only trail of settle / withdraw transitions.
    One row per state change, so a single action produces 2-3 rows.
    """
    __tablename__ = "action_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    action: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. SETTLE_CONFIRMED
    action_key: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. settle:12

    wallet_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    auction_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    details_json: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_action_audit_key", "action_key"),
        Index("ix_action_audit_auction", "auction_id"),
    )
