#apollo/models/enums.py
from __future__ import annotations
from enum import Enum


class AuctionStatus(str, Enum):
    active = "active"
    ended = "ended"
    settled = "settled"


class ActionKind(str, Enum):
    settle = "settle"
    withdraw = "withdraw"


class ActionState(str, Enum):
    # per in-flight chain action
    idle = "idle"
    submitting = "submitting"
    confirming = "confirming"
    confirmed = "confirmed"
    failed = "failed"


class HistoryTab(str, Enum):
    all = "all"
    active = "active"
    ended = "ended"
    won = "won"
    lost = "lost"
