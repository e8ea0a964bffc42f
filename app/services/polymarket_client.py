"""
app/services/polymarket_client.py
Market source backed by Polymarket's public Gamma API.

Raw Gamma dicts are normalized into MarketSnapshot records here; nothing
past this module sees the provider's field names. Network errors, timeouts
and 5xx responses surface as SourceUnavailable.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional, Protocol

import httpx

from core.config import Settings, get_settings
from core.exceptions import InvalidPayload, SourceUnavailable
from core.schemas import MarketSnapshot, parse_market
from database.models import MarketCategory, utcnow

logger = logging.getLogger(__name__)

# Settlement prices are 0/1; anything in between is not a clean binary outcome.
_SETTLED_HIGH = 0.99
_SETTLED_LOW = 0.01


class MarketSource(Protocol):
    """What the pipeline needs from a market-data provider."""

    async def get_markets(self) -> list[MarketSnapshot]: ...

    async def get_market(self, market_id: str) -> MarketSnapshot: ...


# ------------------------------------------------------------------
# Category guessing (simple keyword match)
# ------------------------------------------------------------------

_CATEGORY_KEYWORDS: dict[MarketCategory, list[str]] = {
    MarketCategory.ECONOMICS: ["cpi", "gdp", "fed ", "inflation", "unemployment", "interest rate", "fomc", "payroll", "recession"],
    MarketCategory.POLITICS: ["election", "democrat", "republican", "congress", "senate", "president", "governor", "parliament", "prime minister"],
    MarketCategory.WEATHER: ["temperature", "hurricane", "storm", "weather", "rainfall", "snowfall", "celsius", "fahrenheit"],
    MarketCategory.CRYPTO: ["bitcoin", "btc", "ethereum", "eth ", "crypto", "solana", "dogecoin"],
    MarketCategory.TECHNOLOGY: ["openai", "apple", "google", "nvidia", "iphone", "launch", " ai ", "spacex"],
    MarketCategory.SPORTS: ["nba", "nfl", "mlb", "nhl", "premier league", "champions league", "world cup", "super bowl", "match"],
    MarketCategory.ENTERTAINMENT: ["oscar", "grammy", "emmy", "movie", "box office", "album", "netflix"],
    MarketCategory.WORLD: ["war", "ceasefire", "nato", "ukraine", "russia", "china", "israel", "sanctions"],
}


def guess_category(question: str) -> MarketCategory:
    """Guess market category from question keywords."""
    lower = f" {question.lower()} "
    for category, keywords in _CATEGORY_KEYWORDS.items():
        if any(kw in lower for kw in keywords):
            return category
    return MarketCategory.OTHER


# ------------------------------------------------------------------
# Gamma normalization
# ------------------------------------------------------------------

def _parse_time(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _yes_price(m: dict) -> Optional[float]:
    """YES outcome price in [0, 1], or None when the market carries none."""
    outcome_prices = m.get("outcomePrices")
    if not outcome_prices:
        return None
    prices = json.loads(outcome_prices) if isinstance(outcome_prices, str) else outcome_prices
    if not prices:
        return None
    return float(prices[0])


def normalize_gamma_market(m: dict) -> MarketSnapshot:
    """
    Convert a raw Gamma market dict to a MarketSnapshot.

    Raises InvalidPayload when the dict cannot be interpreted.
    """
    try:
        yes = _yes_price(m)
        liquidity = float(m.get("liquidityNum") or m.get("liquidity") or 0)
    except (ValueError, TypeError, IndexError, json.JSONDecodeError) as exc:
        raise InvalidPayload(f"Unreadable Gamma market {m.get('id')}: {exc}") from exc

    resolved = str(m.get("umaResolutionStatus", "")).lower() == "resolved" or bool(m.get("resolved"))
    outcome: Optional[bool] = None
    resolved_at: Optional[datetime] = None
    if resolved:
        resolved_at = _parse_time(m.get("closedTime")) or utcnow()
        if yes is not None and yes >= _SETTLED_HIGH:
            outcome = True
        elif yes is not None and yes <= _SETTLED_LOW:
            outcome = False

    question = m.get("question", "") or ""
    return parse_market({
        "id": str(m.get("id") or m.get("conditionId") or ""),
        "question": question,
        "category": guess_category(question).value,
        "price": round(yes * 100.0, 4) if yes is not None else None,
        "liquidity": max(0.0, liquidity),
        "closes_at": _parse_time(m.get("endDate")),
        "closed": bool(m.get("closed", False)),
        "resolution_outcome": outcome,
        "resolved_at": resolved_at,
    })


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------

class PolymarketClient:
    """Async client for the Polymarket Gamma market-data API (no auth)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = settings or get_settings()
        self._base_url = settings.POLYMARKET_GAMMA_URL.rstrip("/")
        self._limit = settings.MARKET_FETCH_LIMIT
        self._client = httpx.AsyncClient(
            timeout=settings.EXTERNAL_TIMEOUT_SECONDS, transport=transport,
        )

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        try:
            resp = await self._client.get(f"{self._base_url}{path}", params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code >= 500:
                raise SourceUnavailable(f"Gamma {path} returned {exc.response.status_code}") from exc
            raise InvalidPayload(f"Gamma {path} returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"Gamma {path} request failed: {exc!r}") from exc
        except ValueError as exc:
            raise InvalidPayload(f"Gamma {path} returned non-JSON body") from exc

    async def get_markets(self) -> list[MarketSnapshot]:
        """Fetch active, open markets. Entries that fail validation are skipped."""
        params = {"limit": self._limit, "active": "true", "closed": "false"}
        raw = await self._get("/markets", params=params)

        markets: list[MarketSnapshot] = []
        for m in raw or []:
            try:
                markets.append(normalize_gamma_market(m))
            except InvalidPayload as exc:
                logger.warning("Skipping Gamma market %s: %s", m.get("id"), exc)
        return markets

    async def get_market(self, market_id: str) -> MarketSnapshot:
        """Get a single market by id, including any resolution."""
        raw = await self._get(f"/markets/{market_id}")
        if not isinstance(raw, dict):
            raise InvalidPayload(f"Gamma market {market_id} is not an object")
        return normalize_gamma_market(raw)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
