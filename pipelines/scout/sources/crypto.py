"""Spot prices from Binance, Coinbase and Kraken public REST endpoints."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass

import httpx

from pipelines.scout.leads import CryptoQuote, SourceDiagnostic, SourceResult, SourceStatus
from pipelines.scout.sources.base import (
    SourceFetchError,
    diagnostic_for_count,
    diagnostic_for_error,
    fetch_json,
    make_diagnostic,
)

BINANCE_TICKER_URL = "https://api.binance.com/api/v3/ticker/price"
COINBASE_SPOT_URL = "https://api.coinbase.com/v2/prices/{base}-{quote}/spot"
KRAKEN_TICKER_URL = "https://api.kraken.com/0/public/Ticker"

_BINANCE_QUOTES = {"USD": "USDT", "USDT": "USDT", "BUSD": "BUSD"}
_KRAKEN_SYMBOLS = {"BTC": "XBT", "DOGE": "XDG"}


@dataclass(frozen=True)
class TradingPair:
    base: str
    quote: str

    @property
    def label(self) -> str:
        return f"{self.base}/{self.quote}"

    @classmethod
    def parse(cls, raw: str) -> "TradingPair":
        base, _, quote = raw.partition("/")
        return cls(base=base.strip().upper(), quote=(quote.strip() or "USD").upper())


def _positive_float(value: object) -> float | None:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


async def fetch_binance(
    http: httpx.AsyncClient, pairs: Sequence[TradingPair], *, timeout: float
) -> tuple[list[CryptoQuote], SourceDiagnostic]:
    """One call returns every symbol; USD pairs are priced against USDT."""
    started = time.perf_counter()
    try:
        payload = await fetch_json(http, BINANCE_TICKER_URL, timeout=timeout)
    except SourceFetchError as exc:
        return [], diagnostic_for_error("Binance", started, exc)

    price_map = {
        str(row.get("symbol")): row.get("price")
        for row in payload
        if isinstance(row, dict)
    } if isinstance(payload, list) else {}
    now = time.time()
    quotes: list[CryptoQuote] = []
    for pair in pairs:
        quote = _BINANCE_QUOTES.get(pair.quote, pair.quote)
        price = _positive_float(price_map.get(f"{pair.base}{quote}"))
        if price is None:
            continue
        quotes.append(
            CryptoQuote(
                exchange="Binance",
                pair=pair.label,
                price=price,
                url=f"https://www.binance.com/en/trade/{pair.base}_{quote}",
                timestamp=now,
            )
        )
    return quotes, diagnostic_for_count("Binance", started, len(quotes))


async def fetch_coinbase(
    http: httpx.AsyncClient, pairs: Sequence[TradingPair], *, timeout: float
) -> tuple[list[CryptoQuote], SourceDiagnostic]:
    started = time.perf_counter()
    quotes: list[CryptoQuote] = []
    last_error: SourceFetchError | None = None
    for pair in pairs:
        url = COINBASE_SPOT_URL.format(base=pair.base, quote=pair.quote)
        try:
            payload = await fetch_json(http, url, timeout=timeout)
        except SourceFetchError as exc:
            last_error = exc
            continue
        data = payload.get("data") if isinstance(payload, dict) else None
        price = _positive_float(data.get("amount")) if isinstance(data, dict) else None
        if price is None:
            continue
        quotes.append(
            CryptoQuote(
                exchange="Coinbase",
                pair=pair.label,
                price=price,
                url=f"https://www.coinbase.com/price/{pair.base.lower()}",
                timestamp=time.time(),
            )
        )
    if not quotes and last_error is not None:
        return quotes, diagnostic_for_error("Coinbase", started, last_error)
    return quotes, diagnostic_for_count("Coinbase", started, len(quotes))


async def fetch_kraken(
    http: httpx.AsyncClient, pairs: Sequence[TradingPair], *, timeout: float
) -> tuple[list[CryptoQuote], SourceDiagnostic]:
    """Kraken names BTC as XBT and DOGE as XDG; the last trade price is ``c[0]``."""
    started = time.perf_counter()
    quotes: list[CryptoQuote] = []
    last_error: SourceFetchError | None = None
    for pair in pairs:
        symbol = _KRAKEN_SYMBOLS.get(pair.base, pair.base) + _KRAKEN_SYMBOLS.get(pair.quote, pair.quote)
        try:
            payload = await fetch_json(http, KRAKEN_TICKER_URL, timeout=timeout, params={"pair": symbol})
        except SourceFetchError as exc:
            last_error = exc
            continue
        if not isinstance(payload, dict) or payload.get("error"):
            continue
        tickers = list((payload.get("result") or {}).values())
        last_trade = tickers[0].get("c") if tickers and isinstance(tickers[0], dict) else None
        price = _positive_float(last_trade[0]) if last_trade else None
        if price is None:
            continue
        quotes.append(
            CryptoQuote(
                exchange="Kraken",
                pair=pair.label,
                price=price,
                url=f"https://www.kraken.com/prices/{pair.base.lower()}",
                timestamp=time.time(),
            )
        )
    if not quotes and last_error is not None:
        return quotes, diagnostic_for_error("Kraken", started, last_error)
    return quotes, diagnostic_for_count("Kraken", started, len(quotes))


async def fetch_crypto_quotes(
    http: httpx.AsyncClient,
    pairs: Sequence[str],
    *,
    timeout: float = 5.0,
) -> SourceResult[CryptoQuote]:
    """Query the three exchanges concurrently; one exchange failing never hides the others."""
    normalized = [TradingPair.parse(raw) for raw in pairs]
    outcomes = await asyncio.gather(
        fetch_binance(http, normalized, timeout=timeout),
        fetch_coinbase(http, normalized, timeout=timeout),
        fetch_kraken(http, normalized, timeout=timeout),
        return_exceptions=True,
    )
    result: SourceResult[CryptoQuote] = SourceResult()
    for exchange, outcome in zip(("Binance", "Coinbase", "Kraken"), outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            result.diagnostics.append(
                make_diagnostic(
                    exchange,
                    time.perf_counter(),
                    status=SourceStatus.ERROR,
                    error=type(outcome).__name__,
                )
            )
            continue
        quotes, diagnostic = outcome
        result.leads.extend(quotes)
        result.diagnostics.append(diagnostic)
    return result
