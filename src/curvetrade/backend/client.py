"""Backend REST client: candle history and realized daily trade volume.

Uses a shared httpx.AsyncClient with exponential backoff plus jitter. A
request that still fails after max_attempts raises TransportError.
"""

import asyncio
import random
from decimal import Decimal
from typing import Any

import httpx

from curvetrade.config import BackendSettings
from curvetrade.exceptions import FeedParseError, TransportError
from curvetrade.logging import get_logger
from curvetrade.market_data.parsing import parse_candle_row, parse_decimal
from curvetrade.models import Candle, Timeframe

logger = get_logger(__name__)


class BackendClient:
    """Async client for the backend candle and financials endpoints.

    Usage:
        client = BackendClient(settings.backend)
        candles = await client.fetch_candles("artist-1", Timeframe.FIVE_MINUTES)
        await client.close()
    """

    def __init__(
        self,
        settings: BackendSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        headers = {"Accept": "application/json"}
        token = settings.auth_token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.base_url,
            headers=headers,
            timeout=settings.timeout,
        )

    async def close(self) -> None:
        """Release pooled connections."""
        await self._client.aclose()

    async def _get_json(self, path: str, params: dict | None = None) -> Any:
        last_exc: Exception | None = None
        for attempt in range(1, self._settings.max_attempts + 1):
            try:
                response = await self._client.get(path, params=params)
                response.raise_for_status()
                return response.json()
            except (httpx.RequestError, httpx.HTTPStatusError) as exc:
                last_exc = exc
                logger.warning(
                    "backend_request_retry",
                    path=path,
                    attempt=attempt,
                    max_attempts=self._settings.max_attempts,
                    error=str(exc),
                )
                if attempt == self._settings.max_attempts:
                    break
                sleep_for = min(
                    self._settings.backoff_base * (2 ** (attempt - 1)),
                    self._settings.backoff_cap,
                )
                sleep_for += random.uniform(0.0, 0.3)
                await asyncio.sleep(sleep_for)
            except ValueError as exc:
                raise TransportError(f"GET {path} returned invalid JSON") from exc
        raise TransportError(f"GET {path} failed: {last_exc}") from last_exc

    async def fetch_candles(self, artist_id: str, timeframe: Timeframe) -> list[Candle]:
        """Fetch the artist's candle history for a timeframe.

        Rows that fail to parse or break the candle invariant are dropped and
        logged. Rows landing in the same bucket keep the last one. The result
        is ordered by bucket start.
        """
        data = await self._get_json(
            self._settings.candles_path,
            params={"artistId": artist_id, "timeframe": timeframe.value.upper()},
        )
        if not isinstance(data, list):
            raise TransportError(
                f"candle history for {artist_id} is not a list: {type(data).__name__}"
            )

        by_bucket: dict[int, Candle] = {}
        dropped = 0
        for row in data:
            try:
                candle = parse_candle_row(row, timeframe)
            except FeedParseError as exc:
                dropped += 1
                logger.debug("history_row_dropped", artist_id=artist_id, error=str(exc))
                continue
            by_bucket[candle.bucket_start] = candle

        if dropped:
            logger.warning(
                "history_rows_dropped",
                artist_id=artist_id,
                timeframe=timeframe.value,
                dropped=dropped,
                kept=len(by_bucket),
            )
        return [by_bucket[key] for key in sorted(by_bucket)]

    async def fetch_used_volume_usd(self, address: str) -> Decimal:
        """Return the wallet's realized USD trade volume for today."""
        data = await self._get_json(f"{self._settings.financials_path}/{address}")
        if isinstance(data, dict):
            data = data.get("usedUsdVolumeToday", data.get("dailyTradeVolumeUsd"))
        try:
            volume = parse_decimal(data, "usedUsdVolumeToday")
        except FeedParseError as exc:
            raise TransportError(str(exc)) from exc
        return max(volume, Decimal("0"))
