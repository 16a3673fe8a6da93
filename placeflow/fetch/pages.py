"""HTTP page fetching for scrape jobs."""
from __future__ import annotations

import contextlib
import time
from typing import AsyncIterator, Optional

import httpx
import structlog
from bs4 import BeautifulSoup

from placeflow.observability.tracing import span

LOGGER = structlog.get_logger(__name__)

_STRIP_TAGS = ("script", "style", "noscript", "template")


@contextlib.asynccontextmanager
async def create_http_client(*, user_agent: str, timeout: float, max_connections: int) -> AsyncIterator[httpx.AsyncClient]:
    """Yield a configured client for the duration of the context."""
    headers = {"User-Agent": user_agent}
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(headers=headers, limits=limits, timeout=timeout, follow_redirects=True) as client:
        yield client


def html_to_text(html: str) -> str:
    """Visible text of a page, one block per line."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_STRIP_TAGS):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


async def fetch_page_text(client: httpx.AsyncClient, url: str, *, timeout: Optional[float] = None) -> str:
    """Fetch ``url`` and return its readable text. HTTP errors propagate."""
    with span(name="fetch", detail=url):
        start = time.perf_counter()
        response = await client.get(url, timeout=timeout) if timeout else await client.get(url)
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    LOGGER.info("fetch.result", url=url, status=response.status_code, bytes=len(response.content), elapsed_ms=elapsed_ms)
    response.raise_for_status()
    content_type = response.headers.get("content-type", "")
    if "html" in content_type or response.text.lstrip().startswith("<"):
        return html_to_text(response.text)
    return response.text
