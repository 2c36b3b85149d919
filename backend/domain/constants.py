"""
Domain constants used across services/routers.
"""

# Signature headers (lowercase, as Starlette exposes them)
MONOBANK_SIGNATURE_HEADER = "x-sign"
WHITEPAY_SIGNATURE_HEADER = "signature"
MANUAL_SECRET_HEADER = "x-manual-secret"

# Public-key endpoint path, relative to settings.mono_api_url
MONOBANK_PUBKEY_PATH = "/api/merchant/pubkey"
