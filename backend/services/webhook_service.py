"""
Webhook Service — inbound provider notification pipeline.

    raw body + signature header
        → SignatureService.verify   (no order is touched before this)
        → parse_event               (provider-specific field extraction)
        → status_normalizer.normalize
        → ReconciliationService.reconcile

Field layouts differ per provider:
    monobank  {"invoiceId", "status", "reference", ...}
    whitepay  order object at "order", "data.order", "crypto_order" or the
              body itself: {"id", "status", "external_order_id", ...}
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from domain.enums import OrderStatus, Provider
from domain.errors import ValidationError
from services import status_normalizer
from services.reconciliation_service import ReconcileResult, ReconciliationService
from services.signature_service import SignatureService, parse_json_body

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookEvent:
    """One inbound notification after verification; never persisted."""
    provider: str
    raw_body: bytes
    signature: Optional[str]
    reference: str
    raw_status: str
    provider_order_id: Optional[str] = None

    @property
    def status(self) -> OrderStatus:
        return status_normalizer.normalize(self.provider, self.raw_status)


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _parse_monobank(payload: dict) -> tuple[str, str, Optional[str]]:
    reference = payload.get("reference")
    status = payload.get("status")
    if not reference or not isinstance(reference, str):
        raise ValidationError("Missing reference", field="reference")
    if not status or not isinstance(status, str):
        raise ValidationError("Missing status", field="status")
    return reference, status, _optional_str(payload.get("invoiceId"))


def _parse_whitepay(payload: dict) -> tuple[str, str, Optional[str]]:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    order = payload.get("order") or data.get("order") or payload.get("crypto_order") or payload
    if not isinstance(order, dict):
        raise ValidationError("Missing order object", field="order")

    reference = order.get("external_order_id")
    if reference is None or str(reference).strip() == "":
        raise ValidationError("Missing external_order_id", field="external_order_id")

    status = order.get("status") or payload.get("status") or ""
    return str(reference).strip(), str(status), _optional_str(order.get("id"))


_PARSERS = {
    Provider.MONOBANK.value: _parse_monobank,
    Provider.WHITEPAY.value: _parse_whitepay,
}


def parse_event(provider: str, raw_body: bytes, signature: Optional[str]) -> WebhookEvent:
    """
    Build a WebhookEvent from a verified body.

    Raises:
        ValidationError: invalid JSON or missing correlation field
    """
    payload = parse_json_body(raw_body)
    if not isinstance(payload, dict):
        raise ValidationError("Payload must be a JSON object")

    parser = _PARSERS.get(provider)
    if parser is None:
        raise ValidationError(f"Unsupported provider: {provider}")

    reference, raw_status, provider_order_id = parser(payload)
    return WebhookEvent(
        provider=provider,
        raw_body=raw_body,
        signature=signature,
        reference=reference,
        raw_status=raw_status,
        provider_order_id=provider_order_id,
    )


async def handle_webhook(
    provider: str,
    raw_body: bytes,
    signature: Optional[str],
    verifier: SignatureService,
    engine: ReconciliationService,
) -> ReconcileResult:
    """
    Verify, parse, normalize and reconcile one delivery.

    Raises:
        AuthenticationError, ValidationError, UpstreamError
    """
    await verifier.verify(provider, raw_body, signature)

    event = parse_event(provider, raw_body, signature)
    incoming = event.status
    logger.info(
        f"📩 {provider} webhook: reference={event.reference} "
        f"status={event.raw_status!r} → {incoming.value}"
    )

    return await engine.reconcile(event.reference, incoming, event.provider_order_id)
