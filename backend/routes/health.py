"""
Health check endpoint.
"""
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from database import ping_db
from deps import get_verifier
from services.signature_service import SignatureService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(verifier: SignatureService = Depends(get_verifier)):
    """Service status: database reachable, monobank key cached."""
    try:
        await ping_db()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "database_connected": False,
                "error": "database unavailable",
            },
        )

    return {
        "status": "healthy",
        "database_connected": True,
        "cached_keys": verifier.cached_providers(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
