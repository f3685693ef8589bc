from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from urllib.parse import urlencode

API_KEY_HEADER = "X-MBX-APIKEY"


def canonical_query(params: Mapping[str, object]) -> str:
    """Urlencode params in insertion order; the signature covers this exact string."""
    return urlencode([(key, str(value)) for key, value in params.items() if value is not None])


def compute_signature(query_string: str, api_secret: str) -> str:
    if not api_secret:
        raise ValueError("BINANCE_API_SECRET must be non-empty")
    digest = hmac.new(api_secret.encode("utf-8"), query_string.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def sign_query(params: Mapping[str, object], api_secret: str, timestamp_ms: int) -> str:
    """Return ``<query>&timestamp=<ts>&signature=<hex>`` for a signed endpoint."""
    payload = {key: value for key, value in params.items() if key not in {"timestamp", "signature"}}
    payload["timestamp"] = int(timestamp_ms)
    query = canonical_query(payload)
    return f"{query}&signature={compute_signature(query, api_secret)}"


def build_auth_headers(api_key: str) -> dict[str, str]:
    return {API_KEY_HEADER: api_key}
