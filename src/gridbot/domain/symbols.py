from __future__ import annotations

KNOWN_QUOTES = ("USDT", "USDC", "FDUSD", "BUSD", "TUSD", "BTC", "ETH", "BNB", "EUR", "TRY")


def canonical_symbol(symbol: str) -> str:
    """Return canonical exchange symbol representation (e.g. LTCUSDC)."""

    return symbol.replace("_", "").replace("/", "").replace("-", "").strip().upper()


def split_symbol(symbol: str) -> tuple[str, str]:
    """Split a symbol into (base, quote).

    Separated forms (LTC_USDC, LTC/USDC) split on the separator. Concatenated
    symbols resolve the quote from known suffixes, longest first so that
    FDUSD wins over USD-like tails.
    """

    for separator in ("_", "/", "-"):
        if separator in symbol:
            base_raw, quote_raw = symbol.split(separator, 1)
            return base_raw.strip().upper(), quote_raw.strip().upper()

    normalized = canonical_symbol(symbol)
    for quote in sorted(KNOWN_QUOTES, key=len, reverse=True):
        if normalized.endswith(quote) and len(normalized) > len(quote):
            return normalized[: -len(quote)], quote

    raise ValueError(f"Could not split symbol into base/quote: {symbol}")


def base_asset(symbol: str) -> str:
    """Return the base asset of a pair (LTC for LTCUSDC)."""

    base, _quote = split_symbol(symbol)
    return base
