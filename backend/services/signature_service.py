"""
Webhook Signature Verification

Two authenticity schemes, selected per provider:

    monobank  — ECDSA/SHA-256 over the exact raw body, X-Sign header (base64).
                The public key is fetched from the provider and cached
                (see key_cache.PublicKeyCache).
    whitepay  — HMAC-SHA256 (hex) over the payload re-encoded as compact
                JSON with "/" escaped as "\\/", Signature header.

Security contract:
    - Verification happens before any order is read or written
    - Every comparison of secret-derived values is constant-time
    - Missing secrets/keys FAIL CLOSED, never skip verification
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import math
import re
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol

import httpx
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from config import settings
from domain.constants import MONOBANK_PUBKEY_PATH
from domain.enums import Provider
from domain.errors import AuthenticationError, UpstreamError, ValidationError
from services.key_cache import PublicKeyCache

logger = logging.getLogger(__name__)


class Verifier(Protocol):
    async def verify(self, provider_id: str, raw_body: bytes, signature_header: Optional[str]) -> bool:
        ...


# ════════════════════════════════════════════════════════════════════
# Asymmetric (monobank)
# ════════════════════════════════════════════════════════════════════


def load_public_key(encoded: str | bytes) -> Any:
    """
    Load a public key delivered as base64-encoded PEM.

    Monobank returns the PEM itself base64-encoded; a bare PEM is accepted too.
    """
    data = encoded.strip() if isinstance(encoded, bytes) else encoded.strip().encode("utf-8")
    if not data.startswith(b"-----BEGIN"):
        data = base64.b64decode(data)
    return serialization.load_pem_public_key(data)


async def fetch_monobank_pubkey(provider_id: str) -> Any:
    """Fetch and parse the monobank merchant public key."""
    if not settings.mono_token:
        raise UpstreamError(
            "MONO_TOKEN not configured — cannot fetch verification key",
            details={"provider": provider_id},
        )

    url = f"{settings.mono_api_url.rstrip('/')}{MONOBANK_PUBKEY_PATH}"
    async with httpx.AsyncClient(timeout=settings.upstream_timeout_seconds) as client:
        response = await client.get(url, headers={"X-Token": settings.mono_token})
        response.raise_for_status()
        body = response.text

    try:
        return load_public_key(body)
    except (ValueError, binascii.Error, UnsupportedAlgorithm) as e:
        raise UpstreamError(
            "Provider returned an unreadable public key",
            details={"provider": provider_id},
        ) from e


def _verify_with_key(public_key: Any, signature: bytes, data: bytes) -> None:
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
    elif isinstance(public_key, rsa.RSAPublicKey):
        public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
    else:
        raise InvalidSignature(f"Unsupported key type {type(public_key).__name__}")


class AsymmetricVerifier:
    """Verify a base64 signature over the raw body with a cached public key."""

    def __init__(self, key_cache: PublicKeyCache):
        self.key_cache = key_cache

    async def verify(self, provider_id: str, raw_body: bytes, signature_header: Optional[str]) -> bool:
        if not signature_header:
            raise AuthenticationError("Missing signature header")

        try:
            signature = base64.b64decode(signature_header.strip(), validate=True)
        except (binascii.Error, ValueError):
            raise AuthenticationError("Malformed signature header")

        # UpstreamError propagates: the provider must redeliver later
        public_key = await self.key_cache.get(provider_id)

        try:
            _verify_with_key(public_key, signature, raw_body)
        except InvalidSignature:
            logger.warning(f"Invalid {provider_id} signature ({len(raw_body)} bytes)")
            raise AuthenticationError()
        return True


# ════════════════════════════════════════════════════════════════════
# Shared secret (whitepay)
# ════════════════════════════════════════════════════════════════════


JS_SAFE_INTEGER = 2 ** 53


def _js_number(literal: str) -> int | float:
    # JSON.stringify drops the fractional part of integral numbers (1.0 -> 1)
    value = float(literal)
    if value.is_integer() and abs(value) < JS_SAFE_INTEGER:
        return int(value)
    return value


def _reject_constant(name: str):
    raise ValueError(f"Invalid JSON constant: {name}")


def parse_json_body(raw_body: bytes) -> Any:
    """
    Parse a webhook body the way the provider's own encoder reads it.

    Raises:
        ValidationError: body is not valid UTF-8 JSON
    """
    try:
        return json.loads(
            raw_body.decode("utf-8"),
            parse_float=_js_number,
            parse_constant=_reject_constant,
        )
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid JSON payload")


def js_number_string(value: int | float) -> str:
    """
    Format a number the way JavaScript's Number#toString does.

    Every JSON number is a double in JavaScript: integers beyond 2**53 are
    rounded, non-finite values serialize as null, and the shortest
    round-trip digits are laid out without an exponent for
    1e-6 <= |x| < 1e21 (0.00000123, 12345678901234567000) and with an
    unpadded one otherwise (1e-7, 1e+21).
    """
    if isinstance(value, int) and abs(value) < JS_SAFE_INTEGER:
        return str(value)
    try:
        value = float(value)
    except OverflowError:
        return "null"
    if not math.isfinite(value):
        return "null"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    # repr() yields the shortest round-trip digits, same as V8
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    n = k + exponent  # value == 0.<digits> * 10**n

    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + text


_LONE_SURROGATE = re.compile("[\ud800-\udfff]")


def _js_string(value: str) -> str:
    # lone surrogates are written as \uXXXX escapes, like well-formed JSON.stringify
    encoded = json.dumps(value, ensure_ascii=False)
    return _LONE_SURROGATE.sub(lambda m: f"\\u{ord(m.group()):04x}", encoded)


def _js_stringify(value: Any) -> str:
    """Compact JSON.stringify: keys in received order, non-ASCII literal."""
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, (int, float)):
        return js_number_string(value)
    if isinstance(value, str):
        return _js_string(value)
    if isinstance(value, dict):
        return "{" + ",".join(
            f"{_js_string(str(k))}:{_js_stringify(v)}" for k, v in value.items()
        ) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_js_stringify(v) for v in value) + "]"
    raise TypeError(f"Cannot canonicalize {type(value).__name__}")


def canonical_payload(payload: Any) -> bytes:
    """
    Rebuild the exact string Whitepay signs.

    JSON.stringify output (compact, keys in received order, non-ASCII left
    literal, JavaScript number formatting) with every forward slash
    escaped as "\\/".
    """
    return _js_stringify(payload).replace("/", "\\/").encode("utf-8")


def compute_hmac(secret: str, payload: Any) -> str:
    return hmac.new(secret.encode("utf-8"), canonical_payload(payload), hashlib.sha256).hexdigest()


class HmacVerifier:
    """Verify a hex HMAC-SHA256 over the canonical payload string."""

    def __init__(self, secret_getter: Callable[[], str]):
        self._secret_getter = secret_getter

    async def verify(self, provider_id: str, raw_body: bytes, signature_header: Optional[str]) -> bool:
        secret = self._secret_getter()
        if not secret:
            logger.error(
                f"{provider_id} webhook secret not configured — rejecting webhook"
            )
            raise AuthenticationError("Webhook secret not configured")  # FAIL CLOSED

        if not signature_header:
            raise AuthenticationError("Missing signature header")

        payload = parse_json_body(raw_body)
        expected = compute_hmac(secret, payload)

        if not hmac.compare_digest(expected.encode("utf-8"), signature_header.strip().encode("utf-8")):
            logger.warning(f"Invalid {provider_id} signature ({len(raw_body)} bytes)")
            raise AuthenticationError()
        return True


# ════════════════════════════════════════════════════════════════════
# Provider dispatch
# ════════════════════════════════════════════════════════════════════


class SignatureService:
    """Route verification to the scheme configured for each provider."""

    def __init__(self, verifiers: dict[str, Verifier]):
        self._verifiers = verifiers

    async def verify(self, provider_id: str, raw_body: bytes, signature_header: Optional[str]) -> bool:
        """
        Verify an inbound notification.

        Returns:
            True when authentic

        Raises:
            AuthenticationError: signature missing, malformed or wrong
            ValidationError: body cannot be canonicalized (HMAC scheme)
            UpstreamError: verification key could not be obtained
        """
        verifier = self._verifiers.get(provider_id)
        if verifier is None:
            raise AuthenticationError(f"Unknown provider: {provider_id}")
        return await verifier.verify(provider_id, raw_body, signature_header)

    def cached_providers(self) -> list[str]:
        """Providers whose verification key is currently held in memory."""
        return sorted(
            provider_id
            for provider_id, verifier in self._verifiers.items()
            if isinstance(verifier, AsymmetricVerifier) and verifier.key_cache.peek(provider_id) is not None
        )


_signature_service: SignatureService | None = None


def get_signature_service() -> SignatureService:
    """Process-wide verifier; the monobank key cache lives here."""
    global _signature_service
    if _signature_service is None:
        key_cache = PublicKeyCache(
            fetcher=fetch_monobank_pubkey,
            ttl_seconds=settings.mono_pubkey_ttl_seconds,
        )
        _signature_service = SignatureService({
            Provider.MONOBANK.value: AsymmetricVerifier(key_cache),
            Provider.WHITEPAY.value: HmacVerifier(lambda: settings.whitepay_webhook_secret),
        })
    return _signature_service
