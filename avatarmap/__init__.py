"""
avatarmap - local avatar cache for site data sources.

Collects identifiers from the site's JSON data, downloads and resizes each
avatar into a local cache and writes one sorted mapping file per source.
"""

__version__ = "1.0.0"
