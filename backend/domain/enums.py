"""
Domain enums shared by services and routers.
"""

from enum import Enum


class Provider(str, Enum):
    MONOBANK = "monobank"
    WHITEPAY = "whitepay"


class OrderStatus(str, Enum):
    """Canonical order lifecycle, independent of any provider's vocabulary."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    NOTIFIED = "NOTIFIED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.FAILED, OrderStatus.EXPIRED, OrderStatus.NOTIFIED})


class ReconcileOutcome(str, Enum):
    """How a single delivery was handled (reported in the webhook response)."""
    RECONCILED = "reconciled"          # status written, nothing to notify
    NOTIFIED = "notified"              # access email sent, order NOTIFIED
    IGNORED = "ignored"                # order already terminal
    NOT_FOUND = "not_found"            # no order for the reference
    IN_PROGRESS = "in_progress"        # another delivery holds the notification claim
    DISPATCH_FAILED = "dispatch_failed"
    CONFLICT = "conflict"              # lost a concurrent write, nothing applied
