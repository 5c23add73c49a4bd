"""Utility modules for the avatar pipeline."""

from avatarmap.utils.http import (
    HTTPError,
    RateLimitError,
    UnsafeURLError,
    create_client,
    fetch_image,
    validate_image_url,
)
from avatarmap.utils.logging import setup_logging
from avatarmap.utils.text import normalize_identifier, slugify_identifier

__all__ = [
    # HTTP utilities
    "HTTPError",
    "RateLimitError",
    "UnsafeURLError",
    "create_client",
    "fetch_image",
    "validate_image_url",
    # Logging
    "setup_logging",
    # Text utilities
    "normalize_identifier",
    "slugify_identifier",
]
