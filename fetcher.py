"""
Product page fetch over HTTP.

A single GET with browser-like Turkish headers. No retries and no browser
automation: a blocked or non-product response is reported as an error and
left to the caller.
"""

import asyncio
import logging
import re

import httpx

from errors import BotProtectionError, NetworkError, ScrapingError
from parser import ParsedPage, parse_html

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0
MAX_REDIRECTS = 10
MIN_PAGE_LENGTH = 1000

REQUEST_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "tr-TR,tr;q=0.9,en-US;q=0.8,en;q=0.7",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "cross-site",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
    "Referer": "https://www.trendyol.com/",
}

BLOCKED_STATUSES = frozenset({403, 429})
# Challenge pages served with a 200
_BLOCK_MARKERS = re.compile(
    r"captcha|cf-challenge|challenge-platform|perimeterx|px-captcha|datadome|access denied",
    re.IGNORECASE,
)
PRODUCT_MARKERS = (".pr-new-br", ".product-detail-container", ".product-container")


def normalize_url(url: str) -> str:
    """"trendyol.com/x" and "www.trendyol.com/x" -> "https://www.trendyol.com/x"."""
    url = url.strip()
    if not url.startswith("http"):
        url = "https://www." + re.sub(r"^www\.", "", url)
    return url


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("retry-after")
    return int(value) if value and value.isdigit() else None


def _is_product_page(page: ParsedPage) -> bool:
    if page.state_fragments:
        return True
    return any(page.soup.select_one(selector) for selector in PRODUCT_MARKERS)


async def _get(client: httpx.AsyncClient, url: str) -> httpx.Response:
    try:
        return await client.get(url, headers=REQUEST_HEADERS)
    except httpx.TimeoutException as exc:
        raise NetworkError(f"Timed out fetching {url}", original=exc) from exc
    except httpx.HTTPError as exc:
        raise NetworkError(f"Could not fetch {url}", original=exc) from exc


async def fetch_page(url: str, client: httpx.AsyncClient | None = None) -> ParsedPage:
    """Fetch and parse a product page. Pass a client to reuse connections or to test."""
    url = normalize_url(url)
    logger.info("Fetching %s", url)

    if client is None:
        async with httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT, follow_redirects=True, max_redirects=MAX_REDIRECTS
        ) as own_client:
            response = await _get(own_client, url)
    else:
        response = await _get(client, url)

    if response.status_code in BLOCKED_STATUSES:
        raise BotProtectionError(
            f"Request blocked with status {response.status_code}",
            retry_after=_retry_after(response),
        )
    if not response.is_success:
        raise ScrapingError(
            "Page could not be loaded",
            status=500,
            details=f"HTTP error status: {response.status_code}",
        )

    html = response.text
    if len(html) < MIN_PAGE_LENGTH:
        if _BLOCK_MARKERS.search(html):
            raise BotProtectionError("Request was served a bot challenge page")
        raise ScrapingError("Page content is empty or too short", status=500, details=f"{len(html)} bytes")

    page = await asyncio.to_thread(parse_html, html, url=str(response.url))
    if not _is_product_page(page):
        if _BLOCK_MARKERS.search(html):
            raise BotProtectionError("Request was served a bot challenge page")
        raise ScrapingError("Not a product page", status=422, details=url)

    logger.info("Fetched %s (%d bytes, %d state fragments)", url, len(html), len(page.state_fragments))
    return page
