"""
Reconciliation Engine

Applies a verified, normalized provider status to a stored order and sends
the access email at most once per order.

Transition table (next_status):
    FAILED / EXPIRED / NOTIFIED  -> unchanged, nothing sent (terminal, sticky)
    PENDING + incoming           -> incoming; PAID continues to the notify phase
    PAID + anything              -> notify phase

Notify phase (two-step, not transactional with the email):
    1. claim     CAS status=PAID, version=v      -> dispatch_claimed_at=now
                 (on a version miss the row is re-read and the claim retried)
    2. send      dispatcher.dispatch(order)
    3. complete  CAS status=PAID, version=v+1    -> NOTIFIED, notified_at=now

Only the caller that wins step 1 sends. A failed send releases the claim so
the next delivery can retry; an abandoned claim expires after
DISPATCH_CLAIM_TTL_SECONDS. If the process dies between 2 and 3 the email
may be sent again after the claim expires (accepted at-least-once risk).
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, NamedTuple, Optional

from config import settings
from domain.enums import OrderStatus, ReconcileOutcome
from domain.errors import ConflictError, DispatchError, UpstreamError
from services.notification_dispatcher import NotificationDispatcher, get_notification_dispatcher
from services.order_store import OrderSnapshot, OrderStore, get_order_store

logger = logging.getLogger(__name__)

CLAIM_ATTEMPTS = 3


class Transition(NamedTuple):
    status: OrderStatus
    notify: bool


def next_status(current: OrderStatus, incoming: OrderStatus) -> Transition:
    """Pure transition function of the order state machine."""
    if current.is_terminal:
        return Transition(current, False)
    if current == OrderStatus.PAID:
        return Transition(OrderStatus.PAID, True)
    # PENDING: adopt whatever the provider reports
    return Transition(incoming, incoming == OrderStatus.PAID)


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    reference: str
    status: Optional[OrderStatus] = None
    provider_order_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "status": self.status.value if self.status else None,
            "providerOrderId": self.provider_order_id,
            "reference": self.reference,
        }


class ReconciliationService:

    def __init__(
        self,
        store: OrderStore,
        dispatcher: NotificationDispatcher,
        claim_ttl_seconds: Optional[int] = None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self._claim_ttl = timedelta(
            seconds=claim_ttl_seconds if claim_ttl_seconds is not None else settings.dispatch_claim_ttl_seconds
        )
        self._now = now

    # ── Webhook entry point ──────────────────────────────────────────

    async def reconcile(
        self,
        reference: str,
        incoming: OrderStatus,
        provider_order_id: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Apply `incoming` to the order identified by `reference`.

        Never creates orders. Duplicate, late and concurrent deliveries are
        no-ops once the order is terminal or another delivery owns the email.

        Raises:
            UpstreamError: store or email infrastructure unavailable (retryable)
        """
        order = await self.store.find_by_reference(reference)
        if order is None:
            logger.warning(f"Webhook for unknown order: {reference}")
            return ReconcileResult(ReconcileOutcome.NOT_FOUND, reference, provider_order_id=provider_order_id)

        if order.provider_order_id and provider_order_id and order.provider_order_id != provider_order_id:
            logger.warning(
                f"Provider order id mismatch for {reference}: "
                f"stored={order.provider_order_id} received={provider_order_id} (keeping stored)"
            )

        transition = next_status(order.status, incoming)

        if order.status.is_terminal:
            logger.info(f"Order {reference} already {order.status.value}; ignoring {incoming.value}")
            return self._result(ReconcileOutcome.IGNORED, order)

        if order.status == OrderStatus.PENDING:
            fields = {"status": transition.status}
            if provider_order_id and not order.provider_order_id:
                fields["provider_order_id"] = provider_order_id

            # Guarded on status only: a concurrent PENDING self-write must not
            # make a PAID delivery lose.
            applied = await self.store.conditional_patch(reference, OrderStatus.PENDING, fields)
            if not applied:
                latest = await self.store.find_by_reference(reference)
                return self._result(ReconcileOutcome.CONFLICT, latest or order)

            order = replace(
                order,
                status=transition.status,
                version=order.version + 1,
                provider_order_id=fields.get("provider_order_id", order.provider_order_id),
            )
            logger.info(f"Order {reference}: PENDING → {transition.status.value}")

            if not transition.notify:
                return self._result(ReconcileOutcome.RECONCILED, order)

        return await self._notify(order, provider_order_id)

    # ── Manual resend entry point ────────────────────────────────────

    async def send_access(self, reference: str) -> ReconcileResult:
        """
        Run only the notify phase for an order (operator-triggered).

        Raises:
            ConflictError: order exists but is not PAID (and not NOTIFIED)
        """
        order = await self.store.find_by_reference(reference)
        if order is None:
            return ReconcileResult(ReconcileOutcome.NOT_FOUND, reference)
        if order.status == OrderStatus.NOTIFIED:
            return self._result(ReconcileOutcome.IGNORED, order)
        if order.status != OrderStatus.PAID:
            raise ConflictError("Status is not PAID", details={"status": order.status.value})
        return await self._notify(order)

    # ── Notify phase ─────────────────────────────────────────────────

    async def _notify(self, order: OrderSnapshot, provider_order_id: Optional[str] = None) -> ReconcileResult:
        for _ in range(CLAIM_ATTEMPTS):
            now = self._now()
            if order.dispatch_claimed_at is not None and now - order.dispatch_claimed_at < self._claim_ttl:
                logger.info(f"Order {order.reference}: notification already in progress")
                return self._result(ReconcileOutcome.IN_PROGRESS, order)

            fields = {"dispatch_claimed_at": now}
            if provider_order_id and not order.provider_order_id:
                fields["provider_order_id"] = provider_order_id

            claimed = await self.store.conditional_patch(
                order.reference, OrderStatus.PAID, fields, expected_version=order.version
            )
            if claimed:
                break

            # version moved since our read; decide again on the stored row
            latest = await self.store.find_by_reference(order.reference)
            if latest is None:
                return ReconcileResult(ReconcileOutcome.NOT_FOUND, order.reference, provider_order_id=provider_order_id)
            if latest.status != OrderStatus.PAID:
                logger.info(f"Order {order.reference} became {latest.status.value} before the claim")
                return self._result(ReconcileOutcome.IGNORED, latest)
            order = latest
        else:
            logger.info(f"Order {order.reference}: lost notification claim to a concurrent delivery")
            return self._result(ReconcileOutcome.IN_PROGRESS, order)

        order = replace(
            order,
            version=order.version + 1,
            dispatch_claimed_at=now,
            provider_order_id=fields.get("provider_order_id", order.provider_order_id),
        )

        # send + NOTIFIED record run to completion even if the caller is cancelled
        return await asyncio.shield(self._send_and_complete(order))

    async def _send_and_complete(self, order: OrderSnapshot) -> ReconcileResult:
        try:
            await self.dispatcher.dispatch(order)
        except DispatchError as e:
            logger.error(
                f"❌ Access email NOT sent for {order.reference}: {e.message} {e.details} "
                f"(order left PAID, needs operator attention)"
            )
            await self._release_claim(order)
            return self._result(ReconcileOutcome.DISPATCH_FAILED, order)
        except UpstreamError:
            await self._release_claim(order)
            raise

        notified_at = self._now()
        marked = await self.store.conditional_patch(
            order.reference,
            OrderStatus.PAID,
            {"status": OrderStatus.NOTIFIED, "notified_at": notified_at, "dispatch_claimed_at": None},
            expected_version=order.version,
        )
        if not marked:
            logger.error(
                f"Access email sent for {order.reference} but NOTIFIED was not recorded "
                f"(claim superseded)"
            )
            return self._result(ReconcileOutcome.NOTIFIED, await self._stored_or(order))

        logger.info(f"✅ Order {order.reference}: PAID → NOTIFIED")
        return self._result(
            ReconcileOutcome.NOTIFIED,
            replace(order, status=OrderStatus.NOTIFIED, notified_at=notified_at, dispatch_claimed_at=None),
        )

    async def _stored_or(self, order: OrderSnapshot) -> OrderSnapshot:
        try:
            latest = await self.store.find_by_reference(order.reference)
        except UpstreamError as e:
            logger.warning(f"Could not re-read {order.reference}: {e.message}")
            return order
        return latest or order

    async def _release_claim(self, order: OrderSnapshot) -> None:
        try:
            await self.store.conditional_patch(
                order.reference,
                OrderStatus.PAID,
                {"dispatch_claimed_at": None},
                expected_version=order.version,
            )
        except UpstreamError as e:
            # the claim will expire on its own
            logger.warning(f"Could not release notification claim for {order.reference}: {e.message}")

    @staticmethod
    def _result(outcome: ReconcileOutcome, order: OrderSnapshot) -> ReconcileResult:
        return ReconcileResult(
            outcome=outcome,
            reference=order.reference,
            status=order.status,
            provider_order_id=order.provider_order_id,
        )


_reconciliation_service: ReconciliationService | None = None


def get_reconciliation_service() -> ReconciliationService:
    global _reconciliation_service
    if _reconciliation_service is None:
        _reconciliation_service = ReconciliationService(get_order_store(), get_notification_dispatcher())
    return _reconciliation_service
