"""
Provider status vocabulary → canonical OrderStatus.

Lookups are case-insensitive. Anything not in a provider's table maps to
PENDING: an unrecognized status must never grant access.
"""
from domain.enums import OrderStatus, Provider

_MONOBANK_STATUSES: dict[str, OrderStatus] = {
    "created": OrderStatus.PENDING,
    "processing": OrderStatus.PENDING,
    "hold": OrderStatus.PENDING,
    "success": OrderStatus.PAID,
    "failure": OrderStatus.FAILED,
    "reversed": OrderStatus.FAILED,
    "expired": OrderStatus.EXPIRED,
}

_WHITEPAY_STATUSES: dict[str, OrderStatus] = {
    "init": OrderStatus.PENDING,
    "pending": OrderStatus.PENDING,
    "partially_fulfilled": OrderStatus.PENDING,
    "complete": OrderStatus.PAID,
    "declined": OrderStatus.FAILED,
    "failed": OrderStatus.FAILED,
    "canceled": OrderStatus.FAILED,
    "cancelled": OrderStatus.FAILED,
    "refunded": OrderStatus.FAILED,
    "expired": OrderStatus.EXPIRED,
    "timeout": OrderStatus.EXPIRED,
}

STATUS_TABLES: dict[str, dict[str, OrderStatus]] = {
    Provider.MONOBANK.value: _MONOBANK_STATUSES,
    Provider.WHITEPAY.value: _WHITEPAY_STATUSES,
}

DEFAULT_STATUS = OrderStatus.PENDING


def normalize(provider_id: str, raw_status: object) -> OrderStatus:
    """Map a raw provider status to PAID / FAILED / EXPIRED / PENDING. Never raises."""
    table = STATUS_TABLES.get(str(provider_id).lower(), {})
    key = str(raw_status if raw_status is not None else "").strip().lower()
    return table.get(key, DEFAULT_STATUS)
