from __future__ import annotations
from typing import Optional
from pydantic import BaseModel

from apollo.models.enums import ActionKind, ActionState


class ActionStatusResponse(BaseModel):
    kind: ActionKind
    key: str
    state: ActionState
    in_flight: bool

    auction_id: Optional[int] = None
    wallet_address: Optional[str] = None
    tx_hash: Optional[str] = None

    # last failure, kept so the client can offer a retry
    error_code: Optional[str] = None
    error: Optional[str] = None

    updated_at_iso: Optional[str] = None


class ErrorBody(BaseModel):
    code: str
    detail: str


class ErrorResponse(BaseModel):
    # HTTPException wraps the body under "detail"
    detail: ErrorBody
