from __future__ import annotations

import hashlib
from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlparse

import idna


TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "utm_id",
    "gclid",
    "fbclid",
    "mc_cid",
    "mc_eid",
    "ref",
    "ref_src",
    "rss",
    "feed",
}


def _normalize_host(host: str) -> str:
    host = host.strip().lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    # Convert unicode domains to ASCII punycode for consistent hashing
    try:
        host = idna.encode(host).decode("ascii")
    except idna.IDNAError:
        pass
    return host


def host_from_url(url: str) -> Optional[str]:
    if not url or not isinstance(url, str):
        return None
    u = url.strip()
    # urlparse needs scheme to parse netloc reliably
    if "://" not in u:
        u = "http://" + u
    try:
        p = urlparse(u)
    except ValueError:
        return None
    if not p.netloc:
        return None
    return _normalize_host(p.hostname or "") or None


def normalize_url(url: str, *, strip_params: Optional[Iterable[str]] = None) -> str:
    """
    Normalized form used as the cache identity of an article.

    - scheme folded to https, host lowercased without www.
    - fragment dropped, trailing slash trimmed
    - tracking query params removed, remaining params sorted
    """
    u = (url or "").strip()
    if not u:
        return ""

    strip = {p.lower() for p in strip_params} if strip_params is not None else TRACKING_PARAMS
    if "://" not in u:
        u = "https://" + u

    raw = u.split("#", 1)[0].lower()
    try:
        p = urlparse(u)
        port_num = p.port
    except ValueError:
        # bad port or broken IPv6 bracket: the raw text is the identity
        return raw
    host = _normalize_host(p.hostname or "")
    if not host:
        return raw

    port = f":{port_num}" if port_num and port_num not in (80, 443) else ""
    path = p.path.rstrip("/") or "/"

    kept = [(k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if k.lower() not in strip]
    kept.sort()
    query = f"?{urlencode(kept)}" if kept else ""

    return f"https://{host}{port}{path}{query}"


def url_hash(url: str) -> str:
    """Content address (sha256 hex) of the normalized URL."""
    norm = normalize_url(url)
    return hashlib.sha256(norm.encode("utf-8", errors="ignore")).hexdigest()
