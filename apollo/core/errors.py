# apollo/core/errors.py
from __future__ import annotations


class AuctionActionError(Exception):
    """
    Base for every error the action layer surfaces to a caller.

    ``code`` is stable and returned verbatim in API error bodies so clients can
    tell a local validation failure from a wallet rejection or a reverted tx.
    """

    code = "auction_action_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PreconditionFailed(AuctionActionError):
    code = "precondition_failed"


class ConcurrentActionConflict(AuctionActionError):
    code = "action_in_progress"


class TransactionRejected(AuctionActionError):
    code = "transaction_rejected"


class ConfirmationFailed(AuctionActionError):
    code = "confirmation_failed"


class ChainUnavailable(AuctionActionError):
    code = "chain_unavailable"


# ─────────────────────────────────────────────
# Store errors
# ─────────────────────────────────────────────

class StoreError(Exception):
    pass


class UserNotFound(StoreError):
    pass


class AuctionNotFound(StoreError):
    pass


class AuctionAlreadySettled(StoreError):
    pass


class StoreSyncFailed(AuctionActionError):
    """Transaction confirmed on-chain but the off-chain bookkeeping failed."""

    code = "store_sync_failed"
