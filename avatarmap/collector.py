"""
Identifier collection.

Merges raw identifier lists from one source's data files into a single
case-insensitive, deduplicated and sorted list.
"""

from collections.abc import Iterable

from loguru import logger

from avatarmap.utils.text import normalize_identifier


def collect_identifiers(*groups: Iterable | None) -> list[str]:
    """
    Collect identifiers from any number of raw lists.

    Missing groups and empty or non-string entries are skipped silently.

    Args:
        *groups: Iterables of raw identifiers (None is allowed)

    Returns:
        Sorted list of unique lowercase identifiers
    """
    identifiers = set()
    skipped = 0

    for group in groups:
        if group is None:
            continue
        for value in group:
            identifier = normalize_identifier(value)
            if identifier is None:
                skipped += 1
                continue
            identifiers.add(identifier)

    if skipped:
        logger.debug(f"Skipped {skipped} empty identifiers")

    return sorted(identifiers)
