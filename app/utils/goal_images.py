# app/utils/goal_images.py
"""
Goal image helpers: deterministic fallback images and URL classification.
"""
import time
from typing import Optional
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from app.core.config import settings

# Preset goal images shipped as static assets
DEFAULT_IMAGES = (
    "/static/goal-images/savings-jar.png",
    "/static/goal-images/house-keys.png",
    "/static/goal-images/piggy-bank.png",
    "/static/goal-images/travel-globe.png",
    "/static/goal-images/graduation-cap.png",
    "/static/goal-images/growth-chart.png",
    "/static/goal-images/family-car.png",
    "/static/goal-images/emergency-fund.png",
)

CACHE_BUSTER_PARAM = "t"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def title_hash(title: str) -> int:
    """
    Polynomial rolling hash (base 31) over the UTF-16 code units of a title,
    wrapped to a signed 32-bit integer after every step. Returns the absolute
    value, so the same title hashes identically in the browser and here.
    """
    h = 0
    encoded = title.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        h = _to_int32(h * 31 + code_unit)
    return abs(h)


def resolve_fallback_image(title: Optional[str]) -> str:
    """Pick one of the preset images for a goal title. Never fails."""
    return DEFAULT_IMAGES[title_hash(title or "") % len(DEFAULT_IMAGES)]


def is_static_asset(url: Optional[str]) -> bool:
    """True for preset images and images already copied to the public storage bucket."""
    if not url:
        return False
    return (
        url.startswith(settings.STATIC_IMAGE_PREFIX)
        or url in DEFAULT_IMAGES
        or settings.STORAGE_IMAGE_MARKER in url
    )


def is_generated_image(url: Optional[str]) -> bool:
    """True when the URL points at the image generation backend."""
    if not url:
        return False
    return any(marker in url for marker in settings.generated_image_markers)


def new_cache_token() -> str:
    return str(int(time.time() * 1000))


def with_cache_buster(url: str, token: Optional[str] = None) -> str:
    """Append (or replace) the cache-busting query parameter on a URL."""
    token = token or new_cache_token()
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != CACHE_BUSTER_PARAM]
    query.append((CACHE_BUSTER_PARAM, token))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def strip_cache_buster(url: str) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != CACHE_BUSTER_PARAM]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
