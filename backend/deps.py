"""
Shared FastAPI dependencies.

Routers take their collaborators from here so tests can swap them with
app.dependency_overrides.
"""

from __future__ import annotations

from services.reconciliation_service import ReconciliationService, get_reconciliation_service
from services.signature_service import SignatureService, get_signature_service
from services.webhook_metrics import WebhookMetrics, get_webhook_metrics


def get_verifier() -> SignatureService:
    return get_signature_service()


def get_engine() -> ReconciliationService:
    return get_reconciliation_service()


def get_metrics() -> WebhookMetrics:
    return get_webhook_metrics()
