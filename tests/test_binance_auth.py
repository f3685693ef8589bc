from __future__ import annotations

from urllib.parse import parse_qsl

import pytest

from gridbot.adapters.binance_auth import (
    API_KEY_HEADER,
    build_auth_headers,
    canonical_query,
    compute_signature,
    sign_query,
)

# Documented Binance example key pair and payload.
_DOC_SECRET = "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"
_DOC_QUERY = (
    "symbol=LTCBTC&side=BUY&type=LIMIT&timeInForce=GTC&quantity=1&price=0.1"
    "&recvWindow=5000&timestamp=1499827319559"
)


def test_compute_signature_matches_documented_vector() -> None:
    assert (
        compute_signature(_DOC_QUERY, _DOC_SECRET)
        == "c8db56825ae71d6d79447849e617115f4a920fa2acdcab2b053c4b2838bd6b71"
    )


def test_sign_query_appends_timestamp_then_signature() -> None:
    params = {
        "symbol": "LTCBTC",
        "side": "BUY",
        "type": "LIMIT",
        "timeInForce": "GTC",
        "quantity": "1",
        "price": "0.1",
        "recvWindow": 5000,
    }

    signed = sign_query(params, _DOC_SECRET, 1499827319559)

    assert signed.startswith(_DOC_QUERY + "&signature=")
    keys = [key for key, _ in parse_qsl(signed)]
    assert keys[-2:] == ["timestamp", "signature"]


def test_sign_query_replaces_caller_timestamp() -> None:
    signed = sign_query({"symbol": "LTCUSDC", "timestamp": 1}, "secret", 42)

    assert dict(parse_qsl(signed))["timestamp"] == "42"


def test_canonical_query_skips_none_values() -> None:
    assert canonical_query({"symbol": "LTCUSDC", "price": None}) == "symbol=LTCUSDC"


def test_compute_signature_rejects_empty_secret() -> None:
    with pytest.raises(ValueError):
        compute_signature("a=1", "")


def test_auth_headers_use_api_key_header() -> None:
    assert build_auth_headers("abc") == {API_KEY_HEADER: "abc"}
    assert API_KEY_HEADER == "X-MBX-APIKEY"
