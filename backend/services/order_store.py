"""
Order Store Gateway

Narrow read/patch contract over the orders table:

    find_by_reference(reference)                      -> OrderSnapshot | None
    conditional_patch(reference, expected_status,
                      fields, expected_version=None)  -> True (applied) | False (conflict)

conditional_patch is a single UPDATE guarded by the expected status (and
optionally the version token), so concurrent writers across processes are
serialized by the database. Every applied patch bumps `version`.

I/O failures and timeouts surface as UpstreamError; they are safe to retry
because every write is conditional.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from db_models import Order
from domain.enums import OrderStatus
from domain.errors import UpstreamError

logger = logging.getLogger(__name__)

# Only these columns may be written by reconciliation
WRITABLE_FIELDS = frozenset({
    "status",
    "provider_order_id",
    "dispatch_claimed_at",
    "notified_at",
})


@dataclass(frozen=True)
class OrderSnapshot:
    """Detached, read-only view of an order row."""
    reference: str
    provider: str
    status: OrderStatus
    version: int
    provider_order_id: Optional[str] = None
    dispatch_claimed_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    email: Optional[str] = None
    customer_name: Optional[str] = None
    product_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None

    @classmethod
    def from_row(cls, row: Order) -> "OrderSnapshot":
        return cls(
            reference=row.reference,
            provider=row.provider,
            status=OrderStatus(row.status),
            version=row.version or 0,
            provider_order_id=row.provider_order_id,
            dispatch_claimed_at=row.dispatch_claimed_at,
            notified_at=row.notified_at,
            email=row.email,
            customer_name=row.customer_name,
            product_id=row.product_id,
            amount=row.amount,
            currency=row.currency,
        )


class OrderStore:
    """SQLAlchemy-backed gateway; each call uses its own short session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout_seconds: float | None = None):
        self._session_factory = session_factory
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.upstream_timeout_seconds

    async def _bounded(self, coro, action: str, reference: str):
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Order store {action} timed out for {reference}")
            raise UpstreamError("Order store timed out", details={"reference": reference}) from e
        except SQLAlchemyError as e:
            logger.error(f"Order store {action} failed for {reference}: {e}")
            raise UpstreamError("Order store unavailable", details={"reference": reference}) from e

    async def find_by_reference(self, reference: str) -> Optional[OrderSnapshot]:
        async def _find():
            async with self._session_factory() as session:
                result = await session.execute(select(Order).where(Order.reference == reference))
                row = result.scalar_one_or_none()
                return OrderSnapshot.from_row(row) if row is not None else None

        return await self._bounded(_find(), "read", reference)

    async def conditional_patch(
        self,
        reference: str,
        expected_status: OrderStatus,
        fields: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> bool:
        """
        Apply `fields` only if the stored status (and version) still match.

        Returns:
            True if the row was updated, False on conflict
        """
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Refusing to patch read-only fields: {sorted(unknown)}")

        values = {k: (v.value if isinstance(v, OrderStatus) else v) for k, v in fields.items()}
        values["version"] = Order.version + 1
        values["updated_at"] = datetime.utcnow()

        stmt = update(Order).where(
            Order.reference == reference,
            Order.status == OrderStatus(expected_status).value,
        )
        if expected_version is not None:
            stmt = stmt.where(Order.version == expected_version)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        async def _patch():
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount == 1

        applied = await self._bounded(_patch(), "patch", reference)
        if not applied:
            logger.info(
                f"Conditional patch conflict for {reference} "
                f"(expected status={OrderStatus(expected_status).value}, version={expected_version})"
            )
        return applied


_order_store: OrderStore | None = None


def get_order_store() -> OrderStore:
    global _order_store
    if _order_store is None:
        from database import async_session
        _order_store = OrderStore(async_session)
    return _order_store
