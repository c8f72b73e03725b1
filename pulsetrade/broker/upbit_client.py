"""Upbit quotation API async client.

Handles the public market-data endpoints: ticker snapshots and
minute / day candles.  Candles are normalised to oldest-first.
"""

import asyncio
import logging
from typing import Optional

import httpx

from pulsetrade.config import Config
from pulsetrade.errors import ProviderError
from pulsetrade.strategy.models import CandleData, MarketSnapshot

logger = logging.getLogger("pulsetrade")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# Upbit returns at most 200 candles per request.
_MAX_CANDLES_PER_REQUEST = 200


def candle_endpoint(granularity: str) -> str:
    """Map a granularity code to its candle endpoint path.

    ``"D"`` → days, ``"W"`` → weeks, ``"M1"`` … ``"M240"`` → minute units.
    """
    if granularity == "D":
        return "/v1/candles/days"
    if granularity == "W":
        return "/v1/candles/weeks"
    if granularity.startswith("M") and granularity[1:].isdigit():
        return f"/v1/candles/minutes/{int(granularity[1:])}"
    raise ValueError(f"Unsupported granularity: {granularity!r}")


class UpbitClient:
    """Async client wrapping the Upbit public quotation API."""

    def __init__(self, config: Config) -> None:
        self._base_url = config.upbit_base_url.rstrip("/")
        self._timeout = config.request_timeout_seconds
        self._headers = {"Accept": "application/json"}

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on rate-limits (429), transient server errors and transport
        errors.  Other HTTP errors raise ``ProviderError`` immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=self._timeout,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Upbit %s %s returned %d, retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Upbit %s %s transport error (%s), retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)
            except httpx.HTTPStatusError as exc:
                raise ProviderError(f"Upbit {method.upper()} {url} failed: {exc}") from exc

        raise ProviderError(f"Upbit {method.upper()} {url} failed: {last_exc}") from last_exc

    # ── Ticker ───────────────────────────────────────────────────────────

    async def get_snapshot(self, symbol: str) -> MarketSnapshot:
        """Fetch the current ticker for *symbol* (e.g. ``"KRW-BTC"``)."""
        url = f"{self._base_url}/v1/ticker"
        resp = await self._request_with_retry("get", url, params={"markets": symbol})

        data = resp.json()
        if not data:
            raise ProviderError(f"Empty ticker response for {symbol}")
        t = data[0]
        try:
            return MarketSnapshot(
                symbol=t["market"],
                price=float(t["trade_price"]),
                change_rate=float(t.get("signed_change_rate", 0.0)),
                volume_24h=float(t.get("acc_trade_volume_24h", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Malformed ticker for {symbol}: {exc}") from exc

    # ── Candle data ──────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        symbol: str,
        granularity: str,
        count: int = 200,
    ) -> list[CandleData]:
        """Fetch candlestick data from Upbit.

        Args:
            symbol: e.g. ``"KRW-BTC"``
            granularity: ``"D"`` (daily), ``"W"`` (weekly) or ``"M<n>"``
                (n-minute, e.g. ``"M1"``, ``"M240"``)
            count: number of candles; requests above 200 are paged backwards

        Returns:
            List of ``CandleData`` ordered oldest-first.
        """
        url = f"{self._base_url}{candle_endpoint(granularity)}"
        collected: list[dict] = []
        to: Optional[str] = None

        while len(collected) < count:
            params = {
                "market": symbol,
                "count": min(_MAX_CANDLES_PER_REQUEST, count - len(collected)),
            }
            if to is not None:
                params["to"] = to
            resp = await self._request_with_retry("get", url, params=params)
            page = resp.json()
            if not page:
                break
            collected.extend(page)
            if len(page) < params["count"]:
                break
            # Pages come newest-first; continue from the oldest candle seen.
            to = page[-1]["candle_date_time_utc"]

        try:
            candles = [
                CandleData(
                    time=c["candle_date_time_kst"],
                    open=float(c["opening_price"]),
                    high=float(c["high_price"]),
                    low=float(c["low_price"]),
                    close=float(c["trade_price"]),
                    volume=float(c["candle_acc_trade_volume"]),
                )
                for c in collected
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Malformed candles for {symbol}: {exc}") from exc

        candles.sort(key=lambda c: c.time)
        return candles
