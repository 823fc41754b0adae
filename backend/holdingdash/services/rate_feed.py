"""Live EUR -> DZD market quote scraped from a public exchange page."""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

import httpx

from holdingdash.config import settings
from holdingdash.errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)

_PAYSERA_TABLE = re.compile(r"Paysera[^|]*\|\s*(\d+(?:\.\d+)?)\s*DZD", re.IGNORECASE)
_PAYSERA_LOOSE = re.compile(r"Paysera.*?(\d+(?:\.\d+)?)\s*DZD", re.IGNORECASE | re.DOTALL)

_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; HoldingDash/1.0)",
    "Accept": "text/html,application/xhtml+xml",
}


def extract_paysera_rate(html: str) -> float | None:
    """Return the Paysera EUR quote found in *html*, or ``None``."""
    for pattern in (_PAYSERA_TABLE, _PAYSERA_LOOSE):
        match = pattern.search(html)
        if match:
            return float(match.group(1))
    return None


async def fetch_market_rate(
    url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict:
    """Fetch the quotes page and extract the EUR -> DZD rate.

    Never persists anything.
    """
    url = url or settings.MARKET_RATE_URL
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.MARKET_RATE_TIMEOUT_SECONDS) as own:
                resp = await own.get(url, headers=_HEADERS, follow_redirects=True)
        else:
            resp = await client.get(url, headers=_HEADERS, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.warning(f"Market rate fetch from {url} failed: {e}")
        raise UpstreamError(f"Could not reach {url}: {e}") from e

    if resp.status_code != 200:
        logger.warning(f"Market rate fetch from {url} returned {resp.status_code}")
        raise UpstreamError(f"Quote page answered {resp.status_code}")

    rate = extract_paysera_rate(resp.text)
    if rate is None:
        raise NotFoundError("No Paysera EUR quote found on the quote page")

    return {
        "rate": rate,
        "source": url,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
