"""
Standard API response models and helpers for consistent response formatting.

All endpoints should use these helpers to ensure consistent response envelopes:
- Success: { "success": true, "data": <payload>, "meta": {...} }
- Error: { "success": false, "error": { "code": "...", "message": "...", "details": {...} } }
"""
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Standard error detail structure."""
    code: str = Field(..., description="Error code (e.g., 'authentication', 'validation')")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | None = Field(default=None, description="Additional error context")


class StandardErrorResponse(BaseModel):
    """Standard error response envelope."""
    success: bool = Field(False, description="Always false for errors")
    error: ErrorDetail = Field(..., description="Error details")


class WebhookResult(BaseModel):
    """Outcome of one webhook delivery, as reported back to the provider."""
    model_config = ConfigDict(populate_by_name=True)

    outcome: str
    status: Optional[str] = None
    provider_order_id: Optional[str] = Field(default=None, alias="providerOrderId")
    reference: Optional[str] = None


def success_response(data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Create a standardized success response.

    Args:
        data: The response payload
        meta: Optional metadata (timestamps, counters, etc.)

    Returns:
        dict: { "success": true, "data": <data>, "meta": <meta> }
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    response = {"success": True, "data": data}
    if meta:
        response["meta"] = meta
    return response
