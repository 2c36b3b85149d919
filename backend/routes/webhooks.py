"""
Payment-provider webhook endpoints.

Endpoints:
    POST /monobank/webhook   — X-Sign (ECDSA, provider public key)
    POST /whitepay/webhook   — Signature (HMAC-SHA256, shared secret)
    GET  /webhooks/metrics   — per-provider delivery counters

Response contract:
    200  handled (reconciled, already terminal, unknown reference, ...)
    400  malformed payload
    401  signature missing/invalid
    500  transient failure; the provider is expected to redeliver
"""
import logging
import time

from fastapi import APIRouter, Depends, Request

from deps import get_engine, get_metrics, get_verifier
from domain.constants import MONOBANK_SIGNATURE_HEADER, WHITEPAY_SIGNATURE_HEADER
from domain.enums import Provider
from domain.errors import DomainError
from domain.responses import StandardErrorResponse, WebhookResult, success_response
from services import webhook_service
from services.reconciliation_service import ReconciliationService
from services.signature_service import SignatureService
from services.webhook_metrics import WebhookMetrics

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

WEBHOOK_ERROR_RESPONSES = {
    400: {"model": StandardErrorResponse, "description": "Malformed payload"},
    401: {"model": StandardErrorResponse, "description": "Signature missing or invalid"},
    500: {"model": StandardErrorResponse, "description": "Transient failure, redeliver"},
}


async def _handle(
    provider: Provider,
    header_name: str,
    request: Request,
    verifier: SignatureService,
    engine: ReconciliationService,
    metrics: WebhookMetrics,
) -> dict:
    start = time.monotonic()
    # Raw bytes: the signature covers exactly what was sent
    body = await request.body()
    signature = request.headers.get(header_name)

    try:
        result = await webhook_service.handle_webhook(
            provider.value, body, signature, verifier, engine
        )
    except DomainError as e:
        outcome = e.__class__.__name__
        metrics.record(provider.value, outcome)
        logger.info(
            f"WEBHOOK_AUDIT provider={provider.value} outcome={outcome} "
            f"http={e.status_code} message={e.message!r}"
        )
        raise

    metrics.record(provider.value, result.outcome.value)
    logger.info(
        f"WEBHOOK_AUDIT provider={provider.value} reference={result.reference} "
        f"outcome={result.outcome.value} "
        f"status={result.status.value if result.status else None} "
        f"elapsed_ms={(time.monotonic() - start) * 1000:.1f}"
    )
    return success_response(WebhookResult(**result.to_dict()))


@router.post("/monobank/webhook", responses=WEBHOOK_ERROR_RESPONSES)
async def monobank_webhook(
    request: Request,
    verifier: SignatureService = Depends(get_verifier),
    engine: ReconciliationService = Depends(get_engine),
    metrics: WebhookMetrics = Depends(get_metrics),
):
    """Receive monobank invoice status callbacks (X-Sign verified)."""
    return await _handle(Provider.MONOBANK, MONOBANK_SIGNATURE_HEADER, request, verifier, engine, metrics)


@router.post("/whitepay/webhook", responses=WEBHOOK_ERROR_RESPONSES)
async def whitepay_webhook(
    request: Request,
    verifier: SignatureService = Depends(get_verifier),
    engine: ReconciliationService = Depends(get_engine),
    metrics: WebhookMetrics = Depends(get_metrics),
):
    """Receive Whitepay order status callbacks (HMAC verified)."""
    return await _handle(Provider.WHITEPAY, WHITEPAY_SIGNATURE_HEADER, request, verifier, engine, metrics)


@router.get("/webhooks/metrics")
async def webhook_metrics(metrics: WebhookMetrics = Depends(get_metrics)):
    """Delivery counters since process start."""
    return success_response(metrics.to_dict())
