"""Text helpers: identifier normalization and filesystem-safe slugs."""

import hashlib

from slugify import slugify

SLUG_MAX_LENGTH = 100


def normalize_identifier(value) -> str | None:
    """Normalize a raw identifier for case-insensitive deduplication.

    Args:
        value: Raw value from a data file (may be None or not a string)

    Returns:
        Stripped, lowercased identifier, or None if nothing usable remains
    """
    if not isinstance(value, str):
        return None

    value = value.strip().lower()
    return value or None


def slugify_identifier(identifier: str) -> str:
    """Convert an identifier to a lowercase, filesystem-safe cache key.

    Unicode is transliterated and punctuation collapsed to hyphens, so the
    result never contains a path separator. Inputs that transliterate to
    nothing (emoji, symbols) get a stable hash-based slug instead.

    Args:
        identifier: Display name or handle

    Returns:
        Non-empty slug
    """
    slug = slugify(identifier or "", lowercase=True, max_length=SLUG_MAX_LENGTH)
    if slug:
        return slug

    digest = hashlib.sha1((identifier or "").encode("utf-8")).hexdigest()[:10]
    return f"avatar-{digest}"
