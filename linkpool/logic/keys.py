"""Canonical keys for pooling product URLs."""

from __future__ import annotations

import hashlib

SENTINEL_URLS = frozenset({"MOCK"})


def derive_key(url: str) -> str:
    """Return the pool key for ``url``.

    Only surrounding whitespace is stripped. Scheme, trailing slashes and
    query strings are significant, so near-identical URLs pool separately.
    """
    return hashlib.md5(url.strip().encode("utf-8")).hexdigest()


def is_trackable_url(url: str | None) -> bool:
    if not url or not url.strip():
        return False
    return url.strip() not in SENTINEL_URLS
