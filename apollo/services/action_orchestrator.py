# apollo/services/action_orchestrator.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

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
from apollo.core.inflight import InFlightGuard
from apollo.models.enums import ActionKind, ActionState
from apollo.services.auction_status import can_settle, is_ended, is_settled
from apollo.services.audit_service import ActionAuditService, AuditAction
from apollo.services.chain import ChainClient, TxHandle, normalize_address
from apollo.services.history_service import HistoryViewCache, PendingReturnsTracker
from apollo.services.store import AuctionStore

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def settle_key(auction_id: int) -> str:
    return f"settle:{auction_id}"


def withdraw_key(wallet_address: str) -> str:
    return f"withdraw:{normalize_address(wallet_address)}"


@dataclass
class ActionRecord:
    """
    State of one settle or withdraw action.

    ``guard_token`` is non-empty exactly while the action holds its key.
    """
    kind: ActionKind
    key: str
    state: ActionState
    wallet_address: str
    user_id: Optional[int] = None
    auction_id: Optional[int] = None
    token_id: Optional[int] = None
    winner_id: Optional[int] = None
    tx_hash: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    updated_at: datetime = field(default_factory=_now)

    handle: Optional[TxHandle] = field(default=None, repr=False)
    guard_token: Optional[str] = field(default=None, repr=False)

    @property
    def in_flight(self) -> bool:
        return self.state in (ActionState.submitting, ActionState.confirming)


_AUDIT = {
    (ActionKind.settle, ActionState.confirming): AuditAction.SETTLE_SUBMITTED,
    (ActionKind.settle, ActionState.confirmed): AuditAction.SETTLE_CONFIRMED,
    (ActionKind.settle, ActionState.failed): AuditAction.SETTLE_FAILED,
    (ActionKind.withdraw, ActionState.confirming): AuditAction.WITHDRAW_SUBMITTED,
    (ActionKind.withdraw, ActionState.confirmed): AuditAction.WITHDRAW_CONFIRMED,
    (ActionKind.withdraw, ActionState.failed): AuditAction.WITHDRAW_FAILED,
}


class ActionOrchestrator:
    """
    Drives settle / withdraw transactions:

        idle -> submitting -> confirming -> confirmed | failed

    Rules:
    - Preconditions are checked before the chain is contacted
    - One in-flight settle per auction id, one in-flight withdraw per wallet
    - The key is released on every terminal path, observed or not
    - Off-chain state changes only after a confirmed receipt
    - Confirmation handling is idempotent
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        cache: HistoryViewCache,
        pending: PendingReturnsTracker,
        confirmation_timeout: float,
        store: Optional[AuctionStore] = None,
        audit: Optional[ActionAuditService] = None,
        guard: Optional[InFlightGuard] = None,
    ):
        self.chain = chain
        self.cache = cache
        self.pending = pending
        self.confirmation_timeout = float(confirmation_timeout)
        self.store = store or AuctionStore()
        self.audit = audit or ActionAuditService()
        self.guard = guard or InFlightGuard()

        self._lock = threading.Lock()
        self._records: Dict[str, ActionRecord] = {}

    # ─────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────

    def get_action(self, kind: ActionKind, key: str) -> ActionRecord:
        """
        Latest record for ``key``, or an idle placeholder when none exists.
        Returned records are copies.
        """
        with self._lock:
            rec = self._records.get(key)
            if rec is not None:
                return replace(rec)
        return ActionRecord(kind=kind, key=key, state=ActionState.idle, wallet_address="")

    def get_settle_action(self, auction_id: int) -> ActionRecord:
        return self.get_action(ActionKind.settle, settle_key(auction_id))

    def get_withdraw_action(self, wallet_address: str) -> ActionRecord:
        return self.get_action(ActionKind.withdraw, withdraw_key(wallet_address))

    # ─────────────────────────────────────────────
    # Internal helpers
    # ─────────────────────────────────────────────

    def _store_record(self, rec: ActionRecord) -> None:
        rec.updated_at = _now()
        with self._lock:
            self._records[rec.key] = rec

    def _audit(self, db: Session, rec: ActionRecord, **details) -> None:
        action = _AUDIT.get((rec.kind, rec.state))
        if not action:
            return
        try:
            self.audit.write(
                db,
                action=action,
                action_key=rec.key,
                wallet_address=rec.wallet_address or None,
                auction_id=rec.auction_id,
                tx_hash=rec.tx_hash,
                details={"state": rec.state.value, **details},
            )
        except Exception:
            db.rollback()
            logger.exception("audit write failed", extra={"action_key": rec.key, "action": action})

    def _release(self, rec: ActionRecord) -> None:
        self.guard.release(rec.key, rec.guard_token)
        rec.guard_token = None

    def _fail(self, db: Session, rec: ActionRecord, err: AuctionActionError) -> None:
        rec.state = ActionState.failed
        rec.error_code = err.code
        rec.error = err.message
        self._release(rec)
        self._store_record(rec)
        self._audit(db, rec, error_code=err.code, error=err.message)
        logger.warning(
            "chain action failed",
            extra={
                "action_key": rec.key,
                "tx_hash": rec.tx_hash,
                "error_code": err.code,
                "error": err.message,
            },
        )

    def _submit(self, db: Session, rec: ActionRecord, submit) -> ActionRecord:
        rec.guard_token = self.guard.acquire(rec.key)
        self._store_record(rec)

        try:
            handle = submit()
        except TransactionRejected as e:
            self._fail(db, rec, e)
            raise
        except Exception as e:
            err = TransactionRejected(str(e) or "Transaction submission failed.")
            self._fail(db, rec, err)
            raise err from e

        rec.handle = handle
        rec.tx_hash = handle.tx_hash
        rec.state = ActionState.confirming
        self._store_record(rec)
        self._audit(db, rec)
        logger.info("chain action submitted", extra={"action_key": rec.key, "tx_hash": rec.tx_hash})
        return rec

    # ─────────────────────────────────────────────
    # Settle
    # ─────────────────────────────────────────────

    def begin_settle(
        self,
        db: Session,
        *,
        wallet_address: str,
        auction_id: int,
        now: Optional[datetime] = None,
    ) -> ActionRecord:
        """
        Validate, take the per-auction key and submit ``settle``.
        Returns the record in ``confirming``.
        """
        user = self.store.get_user_by_wallet(db, wallet_address)
        if not user:
            raise UserNotFound(f"No user for wallet {normalize_address(wallet_address)}.")

        auction = self.store.get_auction(db, auction_id)
        if auction is None:
            raise AuctionNotFound(f"Auction {auction_id} not found.")

        if not can_settle(auction, user.id, now):
            if is_settled(auction):
                reason = "Auction is already settled."
            elif not is_ended(auction, now):
                reason = "Auction has not ended yet."
            else:
                reason = "Only the highest bidder can settle this auction."
            raise PreconditionFailed(reason)

        if auction.nft is None:
            raise PreconditionFailed("Auction has no NFT attached.")

        rec = ActionRecord(
            kind=ActionKind.settle,
            key=settle_key(auction_id),
            state=ActionState.submitting,
            wallet_address=normalize_address(wallet_address),
            user_id=user.id,
            auction_id=auction_id,
            token_id=auction.nft.token_id,
            winner_id=user.id,
        )
        return self._submit(
            db,
            rec,
            lambda: self.chain.submit_settle(auction_id, auction.nft.token_id, user.id),
        )

    def handle_settle_confirmed(self, db: Session, *, auction_id: int, winner_id: int) -> bool:
        """
        Apply a confirmed settlement to the store. Safe to call repeatedly:
        returns True only on the call that flipped ``settled``, and a repeat
        still finishes an ownership transfer that an earlier call missed.
        """
        transitioned = self.store.record_settlement(db, auction_id=auction_id, winner_id=winner_id)

        self.cache.invalidate_auction(auction_id)
        for uid in self.store.list_bidder_ids(db, auction_id):
            self.cache.invalidate_user(uid)

        logger.info(
            "settlement applied",
            extra={"auction_id": auction_id, "winner_id": winner_id, "transitioned": transitioned},
        )
        return transitioned

    def settle(
        self,
        db: Session,
        *,
        wallet_address: str,
        auction_id: int,
        now: Optional[datetime] = None,
    ) -> ActionRecord:
        rec = self.begin_settle(db, wallet_address=wallet_address, auction_id=auction_id, now=now)
        return self.complete(db, rec)

    # ─────────────────────────────────────────────
    # Withdraw
    # ─────────────────────────────────────────────

    def begin_withdraw(self, db: Session, *, wallet_address: str) -> ActionRecord:
        user = self.store.get_user_by_wallet(db, wallet_address)
        if not user:
            raise UserNotFound(f"No user for wallet {normalize_address(wallet_address)}.")

        key = withdraw_key(wallet_address)
        if self.guard.is_held(key):
            raise ConcurrentActionConflict(f"An action for {key} is already in progress.")

        pending = self.pending.read(wallet_address)
        if not pending.stale and pending.amount <= 0:
            raise PreconditionFailed("No pending returns to withdraw.")

        rec = ActionRecord(
            kind=ActionKind.withdraw,
            key=key,
            state=ActionState.submitting,
            wallet_address=normalize_address(wallet_address),
            user_id=user.id,
        )
        return self._submit(db, rec, lambda: self.chain.submit_withdraw(wallet_address))

    def handle_withdraw_confirmed(self, *, wallet_address: str, user_id: Optional[int] = None) -> None:
        withdrawn = self.pending.last_known(wallet_address)
        self.pending.zero_out(wallet_address)
        if user_id is not None:
            self.cache.invalidate_user(user_id)
        logger.info(
            "withdrawal applied",
            extra={
                "wallet": normalize_address(wallet_address),
                "amount": str(withdrawn) if withdrawn is not None else None,
            },
        )

    def withdraw(self, db: Session, *, wallet_address: str) -> ActionRecord:
        rec = self.begin_withdraw(db, wallet_address=wallet_address)
        return self.complete(db, rec)

    # ─────────────────────────────────────────────
    # Confirmation
    # ─────────────────────────────────────────────

    def complete(self, db: Session, rec: ActionRecord) -> ActionRecord:
        """
        Wait for the receipt of a submitted action and apply it.
        Raises ConfirmationFailed or StoreSyncFailed; the key is released
        either way.
        """
        if rec.state != ActionState.confirming or rec.handle is None:
            raise PreconditionFailed(f"Action {rec.key} is not awaiting confirmation.")

        try:
            receipt = self.chain.await_confirmation(rec.handle, self.confirmation_timeout)
            if receipt.status != 1:
                raise ConfirmationFailed(f"Transaction {receipt.tx_hash} reverted.")
        except ConfirmationFailed as e:
            self._fail(db, rec, e)
            raise
        except Exception as e:
            err = ConfirmationFailed(str(e) or "Receipt error.")
            self._fail(db, rec, err)
            raise err from e

        try:
            if rec.kind == ActionKind.settle:
                self.handle_settle_confirmed(db, auction_id=rec.auction_id, winner_id=rec.winner_id)
            else:
                self.handle_withdraw_confirmed(wallet_address=rec.wallet_address, user_id=rec.user_id)
        except Exception as e:
            db.rollback()
            err = StoreSyncFailed(f"Confirmed on-chain ({rec.tx_hash}) but store sync failed: {e}")
            self._fail(db, rec, err)
            raise err from e

        rec.state = ActionState.confirmed
        rec.error_code = None
        rec.error = None
        self._release(rec)
        self._store_record(rec)
        self._audit(db, rec, block_number=receipt.block_number)
        logger.info("chain action confirmed", extra={"action_key": rec.key, "tx_hash": rec.tx_hash})
        return replace(rec)
