from __future__ import annotations

import logging
from typing import Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential


logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "DigestDates-SmartFilter/1.0",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,ko;q=0.8",
}

# Some publishers reject non-browser agents outright
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,ko;q=0.8",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

BROWSER_HOSTS = ("investing.com",)


def headers_for(url: str) -> dict:
    if any(h in (url or "") for h in BROWSER_HOSTS):
        return dict(BROWSER_HEADERS)
    return dict(DEFAULT_HEADERS)


@retry(stop=stop_after_attempt(2), wait=wait_exponential(multiplier=0.5, min=0.5, max=4))
def _fetch_once(url: str, timeout_s: float) -> httpx.Response:
    timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, 5.0))
    with httpx.Client(headers=headers_for(url), timeout=timeout, follow_redirects=True) as client:
        r = client.get(url)
        r.raise_for_status()
        return r


class PageLoader:
    """
    Loads article HTML for the content scan when a feed item carries no body.
    Returns None on final failure; never raises into the caller.
    """

    def __init__(self, timeout_s: float = 10.0) -> None:
        self.timeout_s = timeout_s

    def __call__(self, url: str) -> Optional[str]:
        if not url or not url.strip():
            return None
        try:
            resp = _fetch_once(url, self.timeout_s)
        except Exception as e:
            logger.warning(f"page fetch failed: {url} ({type(e).__name__}: {e})")
            return None
        return resp.text
