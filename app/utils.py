"""Utility helpers for the MovieWatch service."""

from __future__ import annotations

POSTER_SIZE = "w500"
LOGO_SIZE = "w92"
THUMBNAIL_SIZE = "w154"


def build_image_url(path: str | None, *, host: str, size: str) -> str | None:
    """Return a CDN URL for an image path fragment, or ``None`` when absent."""

    if not path:
        return None
    if path.startswith("http"):
        return path
    if not path.startswith("/"):
        path = f"/{path}"
    return f"https://{host}/t/p/{size}{path}"


def parse_year(value: str | None) -> int | None:
    """Return the year encoded in the first four characters of a date string."""

    if not isinstance(value, str) or len(value) < 4:
        return None
    try:
        return int(value[:4])
    except ValueError:
        return None


def clean_title(value: str | None) -> str:
    return (value or "").strip()
