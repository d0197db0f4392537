# apollo/api/v1/auctions.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from apollo.api.v1.serializers import _amount, _seconds, action_out, auction_out
from apollo.core.deps import get_history_service, get_orchestrator, require_wallet
from apollo.core.errors import (
    AuctionActionError,
    AuctionNotFound,
    ConcurrentActionConflict,
    ConfirmationFailed,
    PreconditionFailed,
    StoreSyncFailed,
    TransactionRejected,
    UserNotFound,
)
from apollo.db.session import get_db
from apollo.schemas.actions import ActionStatusResponse, ErrorResponse
from apollo.schemas.history import AuctionDetailResponse
from apollo.services.action_orchestrator import ActionOrchestrator
from apollo.services.history_service import AuctionHistoryService

router = APIRouter()

_STATUS_BY_ERROR = (
    (PreconditionFailed, 422),
    (ConcurrentActionConflict, 409),
    (TransactionRejected, 502),
    (ConfirmationFailed, 504),
    (StoreSyncFailed, 500),
)


# documented error bodies of the action routes
_ACTION_ERRORS = {
    status: {"model": ErrorResponse}
    for status in (400, 404, 409, 422, 500, 502, 504)
}


def _raise_action_error(e: AuctionActionError):
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(e, cls):
            raise HTTPException(status_code=status, detail={"code": e.code, "detail": e.message})
    raise HTTPException(status_code=400, detail={"code": e.code, "detail": e.message})


@router.get("/auctions/{auction_id}", response_model=AuctionDetailResponse)
def get_auction(
    auction_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    svc: AuctionHistoryService = Depends(get_history_service),
):
    detail = svc.get_auction_detail(db, auction_id)
    if detail is None:
        raise HTTPException(status_code=404, detail={"code": "auction_not_found", "detail": "Auction not found."})

    return {
        "auction": auction_out(detail.auction),
        "status": detail.status,
        "is_ended": detail.is_ended,
        "time_left_seconds": _seconds(detail.time_left),
        "current_price": _amount(detail.current_price),
        "price_source": detail.price_source,
    }


@router.post(
    "/auctions/{auction_id}/settle",
    response_model=ActionStatusResponse,
    responses=_ACTION_ERRORS,
)
def settle_auction(
    auction_id: int = Path(..., ge=1),
    wallet: str = Depends(require_wallet),
    db: Session = Depends(get_db),
    orchestrator: ActionOrchestrator = Depends(get_orchestrator),
):
    """
    Submit ``settle`` for the auction and block until the receipt is in.
    Only the recorded highest bidder of an ended, unsettled auction may call.
    """
    try:
        rec = orchestrator.settle(db, wallet_address=wallet, auction_id=auction_id)
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail={"code": "user_not_found", "detail": str(e)})
    except AuctionNotFound as e:
        raise HTTPException(status_code=404, detail={"code": "auction_not_found", "detail": str(e)})
    except AuctionActionError as e:
        _raise_action_error(e)

    return action_out(rec)


@router.post("/withdrawals", response_model=ActionStatusResponse, responses=_ACTION_ERRORS)
def withdraw_pending_returns(
    wallet: str = Depends(require_wallet),
    db: Session = Depends(get_db),
    orchestrator: ActionOrchestrator = Depends(get_orchestrator),
):
    try:
        rec = orchestrator.withdraw(db, wallet_address=wallet)
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail={"code": "user_not_found", "detail": str(e)})
    except AuctionActionError as e:
        _raise_action_error(e)

    return action_out(rec)


@router.get("/actions/settle/{auction_id}", response_model=ActionStatusResponse)
async def get_settle_action(
    auction_id: int = Path(..., ge=1),
    orchestrator: ActionOrchestrator = Depends(get_orchestrator),
):
    return action_out(orchestrator.get_settle_action(auction_id))


@router.get("/actions/withdraw", response_model=ActionStatusResponse)
async def get_withdraw_action(
    wallet: str = Depends(require_wallet),
    orchestrator: ActionOrchestrator = Depends(get_orchestrator),
):
    return action_out(orchestrator.get_withdraw_action(wallet))
