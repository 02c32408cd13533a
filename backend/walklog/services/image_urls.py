"""
WalkLog Backend — Image Address Resolver
==========================================

What:  Maps a stored object key to the URL a browser should load.
How:   The object store rejects anonymous reads, so the URL is never a direct
       bucket URL. It always points at the same-origin proxy route
       (GET /api/images/{key}), which fetches with server-held credentials.
"""

from typing import Optional
from urllib.parse import quote

from walklog.config import settings


def resolve_image_url(image_key: Optional[str], prefix: Optional[str] = None) -> Optional[str]:
    """
    Returns the proxy path for a key, or None when there is no image.

    >>> resolve_image_url("walks/abc.jpg", prefix="/api/images")
    '/api/images/walks/abc.jpg'
    >>> resolve_image_url(None) is None
    True
    """
    if not image_key:
        return None
    base = (prefix if prefix is not None else settings.image_proxy_prefix).rstrip("/")
    return f"{base}/{quote(image_key.lstrip('/'), safe='/')}"
