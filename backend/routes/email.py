"""
Manual access-email resend.

    POST /email/send-access   — operator re-sends the access email for a PAID order

Body: {"externalOrderId": "...", "secret": "..."} (secret may instead be sent
in the X-Manual-Secret header). Only PAID orders are sent; NOTIFIED orders
report already_sent and are never emailed twice.
"""
import json
import logging

from fastapi import APIRouter, Depends, Request

from deps import get_engine
from domain.constants import MANUAL_SECRET_HEADER
from domain.enums import ReconcileOutcome
from domain.errors import ConflictError, DispatchError, NotFoundError, ValidationError
from domain.responses import success_response
from middleware.auth import require_manual_secret
from middleware.rate_limit import rate_limit
from services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/email", tags=["email"])


def _safe_string(value, max_length: int = 255) -> str:
    s = str(value if value is not None else "").strip()
    return s[:max_length]


@router.post("/send-access")
async def send_access(
    request: Request,
    engine: ReconciliationService = Depends(get_engine),
    _rate=Depends(rate_limit(max_requests=5, window_seconds=60)),
):
    """Re-run the notification step for one order."""
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Body must be a JSON object")

    require_manual_secret(request.headers.get(MANUAL_SECRET_HEADER) or body.get("secret"))

    reference = _safe_string(
        body.get("externalOrderId") or body.get("external_order_id") or body.get("reference")
    )
    if not reference:
        raise ValidationError("Provide externalOrderId")

    result = await engine.send_access(reference)

    if result.outcome == ReconcileOutcome.NOT_FOUND:
        raise NotFoundError("Order", reference)
    if result.outcome == ReconcileOutcome.IN_PROGRESS:
        raise ConflictError("Notification already in progress", details={"reference": reference})
    if result.outcome == ReconcileOutcome.DISPATCH_FAILED:
        raise DispatchError("Access email not sent", details={"reference": reference})

    already_sent = result.outcome == ReconcileOutcome.IGNORED
    logger.info(f"Manual resend for {reference}: {'already sent' if already_sent else 'sent'}")
    return success_response({
        **result.to_dict(),
        "sent": not already_sent,
        "alreadySent": already_sent,
    })
