# apollo/api/v1/auction_history.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from apollo.api.v1.serializers import _amount, history_out
from apollo.core.deps import get_history_service, require_wallet
from apollo.core.errors import UserNotFound
from apollo.db.session import get_db
from apollo.models.enums import HistoryTab
from apollo.schemas.history import AuctionHistoryResponse, DashboardResponse
from apollo.services.history_service import AuctionHistoryService

router = APIRouter(prefix="/auction-history")


@router.get("", response_model=AuctionHistoryResponse)
def get_auction_history(
    tab: HistoryTab = Query(HistoryTab.all),
    wallet: str = Depends(require_wallet),
    db: Session = Depends(get_db),
    svc: AuctionHistoryService = Depends(get_history_service),
):
    """
    Every auction the caller has bid in, derived at request time.
    Unknown wallets get an empty list, not an error.
    """
    try:
        items = svc.get_history(db, wallet, tab=tab)
    except UserNotFound:
        items = []

    return {
        "wallet_address": wallet,
        "tab": tab.value,
        "items": [history_out(h) for h in items],
    }


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    wallet: str = Depends(require_wallet),
    db: Session = Depends(get_db),
    svc: AuctionHistoryService = Depends(get_history_service),
):
    try:
        dash = svc.get_dashboard(db, wallet)
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail={"code": "user_not_found", "detail": str(e)})

    return {
        "wallet_address": dash.wallet_address,
        "user_id": dash.user_id,
        "pending": {"amount": _amount(dash.pending.amount), "stale": dash.pending.stale},
        "stats": {
            "wins": dash.stats.wins,
            "losses": dash.stats.losses,
            "total": dash.stats.total,
        },
        "items": [history_out(h) for h in dash.history],
    }
