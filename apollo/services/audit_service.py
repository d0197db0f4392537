# apollo/services/audit_service.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from apollo.models.action_audit_log import ActionAuditLog


class AuditAction:
    # Settlement
    SETTLE_SUBMITTED = "SETTLE_SUBMITTED"
    SETTLE_CONFIRMED = "SETTLE_CONFIRMED"
    SETTLE_FAILED = "SETTLE_FAILED"

    # Withdrawal of pending returns
    WITHDRAW_SUBMITTED = "WITHDRAW_SUBMITTED"
    WITHDRAW_CONFIRMED = "WITHDRAW_CONFIRMED"
    WITHDRAW_FAILED = "WITHDRAW_FAILED"


class ActionAuditService:
    def write(
        self,
        db: Session,
        *,
        action: str,
        action_key: str,
        wallet_address: Optional[str],
        auction_id: Optional[int],
        tx_hash: Optional[str],
        details: Dict[str, Any],
    ) -> None:
        row = ActionAuditLog(
            action=action,
            action_key=action_key,
            wallet_address=wallet_address,
            auction_id=auction_id,
            tx_hash=tx_hash,
            details_json=details,
        )
        db.add(row)
        db.commit()

    def list_for_key(self, db: Session, action_key: str) -> List[ActionAuditLog]:
        return list(
            db.execute(
                select(ActionAuditLog)
                .where(ActionAuditLog.action_key == action_key)
                .order_by(ActionAuditLog.id)
            ).scalars().all()
        )
