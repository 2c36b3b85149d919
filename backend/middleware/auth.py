"""
Operator authentication for manual endpoints.

The manual access-resend endpoint is protected by a shared secret sent in
the X-Manual-Secret header (or a `secret` body field for form tools that
cannot set headers). Comparison is constant-time.
"""
import hmac
import logging
from typing import Optional

from config import settings
from domain.errors import AuthenticationError, UpstreamError

logger = logging.getLogger(__name__)


def secrets_match(provided: Optional[str], expected: str) -> bool:
    """Constant-time string comparison that tolerates None / non-ASCII."""
    return hmac.compare_digest(
        str(provided or "").encode("utf-8"),
        str(expected or "").encode("utf-8"),
    )


def require_manual_secret(provided: Optional[str]) -> None:
    """
    Raise unless `provided` equals MANUAL_EMAIL_SECRET.

    An unset secret disables the endpoint entirely (500), it never means
    "no auth required".
    """
    if not settings.manual_email_secret:
        logger.error("MANUAL_EMAIL_SECRET not configured — manual resend disabled")
        raise UpstreamError("MANUAL_EMAIL_SECRET missing")
    if not secrets_match(provided, settings.manual_email_secret):
        logger.warning("Manual resend rejected: bad secret")
        raise AuthenticationError("Unauthorized")
