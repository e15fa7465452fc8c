"""Shared page fetching for the HTML-based analyzers."""

from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import urljoin, urlparse

import httpx

from config import settings

MAX_REDIRECTS = 5


def default_headers() -> dict:
    return {
        "User-Agent": settings.ANALYZER_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.8",
    }


def build_client(timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers=default_headers(),
        timeout=timeout or settings.ANALYZER_HTTP_TIMEOUT_SECONDS,
        follow_redirects=True,
        max_redirects=MAX_REDIRECTS,
        transport=transport,
    )


async def fetch_html(client: httpx.AsyncClient, url: str) -> Tuple[str, str]:
    """Return (html, final_url); raises on transport errors and non-2xx responses."""
    response = await client.get(url)
    response.raise_for_status()
    content_type = response.headers.get("content-type", "")
    if content_type and "html" not in content_type.lower() and "xml" not in content_type.lower():
        raise ValueError(f"Expected an HTML document, got {content_type}")
    return response.text, str(response.url)


def resolve_url(src: str, base_url: str) -> str:
    value = (src or "").strip()
    if value.startswith("//"):
        scheme = urlparse(base_url).scheme or "https"
        return f"{scheme}:{value}"
    return urljoin(base_url, value)
