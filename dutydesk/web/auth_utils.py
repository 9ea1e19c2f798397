"""
Shared authentication utilities.

Why:
    The session cookie policy depends on whether the frontend lives on another
    origin. Keeping a single pure helper keeps the callback, logout and tests
    consistent.
"""

from __future__ import annotations

from urllib.parse import urlparse


def cookie_opts(*, cross_site: bool) -> dict:
    """Return hardened cookie flags.

    Returns a mapping with keys:
      - secure: True
      - samesite: "none" when the frontend is cross-site (the browser must
        send the cookie on credentialed fetches from it), else "lax"
    """
    return {"secure": True, "samesite": "none" if cross_site else "lax"}


def is_cross_site(frontend_base_url: str, redirect_uri: str) -> bool:
    """True when the frontend and the API callback live on different hosts."""
    front = urlparse(frontend_base_url or "")
    back = urlparse(redirect_uri or "")
    return (front.hostname or "").lower() != (back.hostname or "").lower()
