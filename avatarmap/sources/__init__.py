"""Source definitions and input file loaders."""

from avatarmap.sources.configs import (
    SOURCE_INFO,
    SOURCE_LOADERS,
    SourceDefinition,
    SourceInputError,
    load_opencollective,
    load_source,
    load_twitter,
    read_json,
    twitter_image_url,
)

__all__ = [
    "SOURCE_INFO",
    "SOURCE_LOADERS",
    "SourceDefinition",
    "SourceInputError",
    "load_opencollective",
    "load_source",
    "load_twitter",
    "read_json",
    "twitter_image_url",
]
