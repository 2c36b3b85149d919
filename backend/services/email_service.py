"""
Email Service — sends template emails through the Resend API.

This is the external send collaborator used by the notification dispatcher:

    send(destination, template_reference, variables, subject) -> provider response

It carries no retry logic. Failures are classified so the caller can decide:
    - network error, timeout, 5xx   -> UpstreamError (transient)
    - 4xx, missing API key / sender -> DispatchError (needs an operator)
"""
import logging
from typing import Any, Optional

import httpx

from config import settings
from domain.errors import DispatchError, UpstreamError

logger = logging.getLogger(__name__)


class EmailService:
    """Thin async client for POST /emails."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # transport is injectable so tests can stub the Resend API
        self._transport = transport

    def _get_headers(self) -> dict:
        if not settings.resend_api_key:
            raise DispatchError("RESEND_API_KEY not configured")
        return {
            "Authorization": f"Bearer {settings.resend_api_key}",
            "Content-Type": "application/json",
        }

    async def send(
        self,
        destination: str,
        template_reference: str,
        variables: dict[str, Any],
        subject: str,
    ) -> dict:
        """
        Send one templated email.

        Returns:
            dict: Resend response body (contains the message id)
        """
        headers = self._get_headers()
        if not settings.email_from:
            raise DispatchError("EMAIL_FROM not configured")

        payload = {
            "from": settings.email_from,
            "to": destination,
            "subject": subject,
            "template": {
                "id": template_reference,
                "variables": variables or {},
            },
        }

        try:
            async with httpx.AsyncClient(
                base_url=settings.resend_api_url,
                timeout=settings.upstream_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post("/emails", headers=headers, json=payload)
        except httpx.TimeoutException as e:
            logger.error(f"Resend request timed out: {e}")
            raise UpstreamError("Email provider timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Resend request failed: {e}")
            raise UpstreamError("Email provider unreachable") from e

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text[:2000]}
        if not isinstance(data, dict):
            data = {"raw": data}

        if response.status_code >= 500:
            logger.error(f"Resend error {response.status_code}: {data}")
            raise UpstreamError(
                f"Email provider error ({response.status_code})",
                details={"status": response.status_code},
            )
        if response.status_code >= 400:
            message = data.get("message") or data.get("error") or f"Resend error ({response.status_code})"
            raise DispatchError(
                str(message),
                details={"status": response.status_code, "response": data},
            )

        logger.info(f"📧 Email sent to {_mask(destination)} (id={data.get('id')})")
        return data


def _mask(email: str) -> str:
    """Show only the domain of an address in logs."""
    if "@" in email:
        return "***@" + email.split("@", 1)[1]
    return "***"


_email_service: EmailService | None = None


def get_email_service() -> EmailService:
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
