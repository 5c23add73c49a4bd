"""
Mapping artifact writer.

One JSON file per source maps each resolved avatar name to its cached files:

    {
      "alice": [
        {"format": "jpeg", "height": 73, "name": "alice", "path": "...", "width": 73},
        ...
      ]
    }

Keys are sorted and the indentation is fixed so re-runs produce diffable,
byte-identical output for identical inputs. Each run replaces the file.
"""

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from loguru import logger

JSON_INDENT = 2


def build_mapping(outcomes: Iterable) -> dict[str, list[dict]]:
    """
    Build the mapping from batch outcomes.

    Outcomes without files are left out. Outcomes are visited in identifier
    order, so when two identifiers resolve to the same name the first one
    wins regardless of the order they finished in.

    Args:
        outcomes: FetchOutcome objects (anything with .identifier and .files)

    Returns:
        Mapping sorted by key
    """
    mapping = {}

    for outcome in sorted(outcomes, key=lambda o: o.identifier):
        if not outcome.files:
            continue

        key = outcome.files[0].name
        if key in mapping:
            logger.warning(f"Duplicate avatar name {key!r} for {outcome.identifier}, keeping the first entry")
            continue

        mapping[key] = [file.to_dict() for file in outcome.files]

    return dict(sorted(mapping.items()))


def render_mapping(mapping: dict[str, Any]) -> str:
    """Serialize a mapping exactly as it is written to disk."""
    return json.dumps(mapping, indent=JSON_INDENT, sort_keys=True, ensure_ascii=False) + "\n"


def atomic_write_json(dest_path: Path, data: Any) -> Path:
    """
    Write JSON data atomically - only replaces target file on success.

    1. Writes to temp file in same directory
    2. Validates JSON is readable
    3. Renames temp to final (atomic on same filesystem)

    Args:
        dest_path: Final destination path
        data: Data to serialize as JSON

    Returns:
        Path to written file
    """
    dest_path = Path(dest_path)
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    temp_path = dest_path.with_suffix(dest_path.suffix + ".tmp")

    try:
        with open(temp_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(render_mapping(data))

        with open(temp_path, encoding="utf-8") as f:
            json.load(f)

        temp_path.replace(dest_path)
        return dest_path

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def mapping_path(mapping_dir: Path, source_name: str) -> Path:
    return Path(mapping_dir) / f"{source_name}.json"


def write_mapping(mapping_dir: Path, source_name: str, mapping: dict[str, list[dict]]) -> Path:
    """
    Write (fully replace) the mapping artifact for a source.

    Args:
        mapping_dir: Directory holding one JSON file per source
        source_name: Source name, used as the file name
        mapping: Mapping from build_mapping()

    Returns:
        Path to the written artifact
    """
    path = atomic_write_json(mapping_path(mapping_dir, source_name), mapping)
    logger.info(f"Wrote {path.as_posix()} ({len(mapping)} entries)")
    return path
