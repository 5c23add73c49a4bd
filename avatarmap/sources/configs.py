"""
Source definitions for the avatar pipeline.

Each source reads its identifiers from the site's JSON data files and knows
how to turn an identifier into an image URL:

- opencollective: backers from supporters.json, image URL from the entry
- twitter: handles gathered from testimonials, starters, extra avatars and
  site files; image URL built from the profile image template
"""

import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypedDict
from urllib.parse import quote

from loguru import logger

from avatarmap.collector import collect_identifiers
from avatarmap.config import settings
from avatarmap.utils.text import normalize_identifier


class SourceInputError(Exception):
    """Raised when a source's input files are missing or malformed."""
    pass


@dataclass
class SourceDefinition:
    """Everything the pipeline needs to run one source."""
    name: str
    identifiers: list[str]
    resolve_image_url: Callable[[str], str | None]


class SourceInfoType(TypedDict, total=False):
    name: str
    description: str
    files: list[str]


SOURCE_INFO: dict[str, SourceInfoType] = {
    "opencollective": {
        "name": "Open Collective",
        "description": "Backers listed in the supporters export",
        "files": ["supporters.json"],
    },
    "twitter": {
        "name": "Twitter",
        "description": "Handles from testimonials, starters, extra avatars and sites",
        "files": ["testimonials.json", "starters.json", "extraAvatars.json", "sites/*.json"],
    },
}


def read_json(path: Path) -> Any:
    """
    Read a JSON input file.

    Raises:
        SourceInputError: If the file is missing or is not valid JSON
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise SourceInputError(f"Missing input file: {path}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise SourceInputError(f"Malformed JSON in {path}: {e}") from e
    except OSError as e:
        raise SourceInputError(f"Cannot read {path}: {e}") from e


def read_json_list(path: Path) -> list[dict]:
    """Read a JSON file that must contain a list of objects."""
    data = read_json(path)
    if not isinstance(data, list):
        raise SourceInputError(f"Expected a JSON list in {path}, got {type(data).__name__}")
    return [entry for entry in data if isinstance(entry, dict)]


def field_values(entries: list[dict], field: str) -> list:
    return [entry.get(field) for entry in entries]


def load_opencollective(data_dir: Path | None = None) -> SourceDefinition:
    """Backers from supporters.json, with the image URL given per entry."""
    data_dir = Path(data_dir if data_dir is not None else settings.pipeline.data_dir)

    supporters = read_json_list(data_dir / "supporters.json")
    backers = [
        entry for entry in supporters
        if isinstance(entry.get("role"), str) and entry["role"].lower() == "backer"
    ]

    images = {}
    for entry in backers:
        identifier = normalize_identifier(entry.get("name"))
        if identifier and not images.get(identifier):
            images[identifier] = entry.get("image") or None

    identifiers = collect_identifiers(field_values(backers, "name"))
    logger.info(f"opencollective: {len(identifiers)} backers from {len(supporters)} supporters")

    return SourceDefinition(
        name="opencollective",
        identifiers=identifiers,
        resolve_image_url=images.get,
    )


def twitter_image_url(handle: str, template: str | None = None) -> str:
    template = template or settings.avatar.twitter_url_template
    return template.format(handle=quote(handle, safe=""))


def load_twitter(data_dir: Path | None = None, url_template: str | None = None) -> SourceDefinition:
    """Twitter handles from every data file that mentions one."""
    data_dir = Path(data_dir if data_dir is not None else settings.pipeline.data_dir)
    url_template = url_template or settings.avatar.twitter_url_template

    testimonials = read_json_list(data_dir / "testimonials.json")
    starters = read_json_list(data_dir / "starters.json")
    extras = read_json_list(data_dir / "extraAvatars.json")

    site_handles = []
    sites_dir = data_dir / "sites"
    if sites_dir.is_dir():
        site_files = sorted(p for p in sites_dir.iterdir() if p.is_file() and p.suffix.lower() == ".json")
        for site_file in site_files:
            site = read_json(site_file)
            if isinstance(site, dict):
                site_handles.append(site.get("twitter"))
        logger.debug(f"twitter: read {len(site_files)} site files")

    identifiers = collect_identifiers(
        field_values(testimonials, "twitter"),
        field_values(starters, "author"),
        field_values(extras, "twitter"),
        site_handles,
    )
    logger.info(f"twitter: {len(identifiers)} unique handles")

    return SourceDefinition(
        name="twitter",
        identifiers=identifiers,
        resolve_image_url=lambda handle: twitter_image_url(handle, url_template),
    )


SOURCE_LOADERS: dict[str, Callable[..., SourceDefinition]] = {
    "opencollective": load_opencollective,
    "twitter": load_twitter,
}


def load_source(source_name: str, data_dir: Path | None = None) -> SourceDefinition:
    """
    Load a source definition by name.

    Raises:
        SourceInputError: For unknown sources or bad input files
    """
    loader = SOURCE_LOADERS.get(source_name)
    if loader is None:
        raise SourceInputError(f"Unknown source: {source_name}")
    return loader(data_dir)
