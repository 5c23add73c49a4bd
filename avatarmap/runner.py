"""
Batch runner for the avatar pipeline.

Per source:
1. Collect identifiers (deduplicated, sorted), one per avatar name
2. Fetch every avatar through a bounded worker pool
3. Write the sorted mapping artifact

Per-identifier failures stay inside the batch. Source-level failures
(input files, cache directory, artifact write) abort only that source.
"""

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import httpx
from loguru import logger

from avatarmap.collector import collect_identifiers
from avatarmap.config import settings
from avatarmap.fetcher import AvatarFetcher, AvatarFile
from avatarmap.mapping import build_mapping, write_mapping
from avatarmap.sources import SourceDefinition, load_source
from avatarmap.utils.text import slugify_identifier

PROGRESS_EVERY = 50


@dataclass
class FetchOutcome:
    """Result of fetching one identifier."""
    identifier: str
    files: list[AvatarFile] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class BatchResult:
    """All outcomes of one source's batch."""
    source_name: str
    outcomes: list[FetchOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[FetchOutcome]:
        return [o for o in self.outcomes if o.files]

    @property
    def empty(self) -> list[FetchOutcome]:
        return [o for o in self.outcomes if not o.files and not o.failed]

    @property
    def failed(self) -> list[FetchOutcome]:
        return [o for o in self.outcomes if o.failed]


@dataclass
class SourceRunResult:
    """Result of a pipeline run for one source."""
    source_name: str
    success: bool
    identifiers: int = 0
    written: int = 0
    empty: int = 0
    failed: int = 0
    collisions: int = 0
    artifact_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Calculate duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


def fetch_one(
    fetcher: AvatarFetcher,
    source_name: str,
    identifier: str,
    resolve_image_url: Callable[[str], str | None],
) -> FetchOutcome:
    """Resolve and fetch one identifier. Never raises."""
    with logger.contextualize(source=source_name, identifier=identifier):
        try:
            image_url = resolve_image_url(identifier)
            files = fetcher.fetch(identifier, image_url, source_name)
        except Exception as e:
            logger.warning(f"Failed getting {identifier} from {source_name}: {e}")
            return FetchOutcome(identifier=identifier, error=str(e) or type(e).__name__)

        if files:
            logger.debug(f"Wrote {', '.join(f.path for f in files)}")
        return FetchOutcome(identifier=identifier, files=files)


def unique_by_slug(identifiers: Iterable[str], source_name: str) -> list[str]:
    """
    Keep the first identifier (in sorted order) for each cache file name.

    Identifiers like "a b" and "a-b" share a slug and therefore the same
    cached files. Only the first one is fetched so the files on disk always
    belong to the mapping entry that keeps the name.
    """
    kept: dict[str, str] = {}

    for identifier in sorted(identifiers):
        slug = slugify_identifier(identifier)
        if slug in kept:
            logger.warning(
                f"{source_name}: {identifier!r} resolves to the same avatar name {slug!r} "
                f"as {kept[slug]!r}, skipping it"
            )
            continue
        kept[slug] = identifier

    return list(kept.values())


def run_batch(
    fetcher: AvatarFetcher,
    source_name: str,
    identifiers: Iterable[str],
    resolve_image_url: Callable[[str], str | None],
    concurrency: int = 1,
) -> BatchResult:
    """
    Fetch avatars for a list of identifiers with at most `concurrency`
    fetches (each including its retry) in flight.

    Args:
        fetcher: AvatarFetcher writing into the cache
        source_name: Source the identifiers belong to
        identifiers: Identifiers to fetch, each attempted exactly once
        resolve_image_url: Maps an identifier to its image URL
        concurrency: Number of worker threads

    Returns:
        BatchResult with one outcome per identifier
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    identifiers = list(identifiers)
    result = BatchResult(source_name=source_name)

    logger.info(f"{source_name}: fetching {len(identifiers)} avatars (concurrency {concurrency})")

    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=f"avatars-{source_name}") as executor:
        future_to_identifier = {
            executor.submit(fetch_one, fetcher, source_name, identifier, resolve_image_url): identifier
            for identifier in identifiers
        }

        for future in as_completed(future_to_identifier):
            result.outcomes.append(future.result())

            completed = len(result.outcomes)
            if completed % PROGRESS_EVERY == 0:
                logger.info(f"  {source_name}: {completed}/{len(identifiers)} done")

    logger.info(
        f"{source_name}: {len(result.succeeded)} cached, "
        f"{len(result.empty)} without image, {len(result.failed)} failed"
    )
    return result


def run_source(
    definition: SourceDefinition,
    fetcher: AvatarFetcher,
    mapping_dir: Path,
    concurrency: int = 1,
) -> SourceRunResult:
    """
    Run the full pipeline for one source.

    Raises:
        OSError: If the cache directory or the artifact cannot be written
    """
    result = SourceRunResult(
        source_name=definition.name,
        success=False,
        started_at=datetime.utcnow(),
    )

    try:
        with logger.contextualize(source=definition.name):
            identifiers = collect_identifiers(definition.identifiers)
            result.identifiers = len(identifiers)

            fetcher.prepare(definition.name)

            unique = unique_by_slug(identifiers, definition.name)
            result.collisions = len(identifiers) - len(unique)

            batch = run_batch(
                fetcher,
                definition.name,
                unique,
                definition.resolve_image_url,
                concurrency=concurrency,
            )
            result.empty = len(batch.empty)
            result.failed = len(batch.failed)
            result.errors.extend(f"{o.identifier}: {o.error}" for o in batch.failed)

            mapping = build_mapping(batch.outcomes)
            result.artifact_path = write_mapping(mapping_dir, definition.name, mapping)
            result.written = len(mapping)
            result.success = True

    finally:
        result.completed_at = datetime.utcnow()

    return result


def run_pipeline(
    definitions: Iterable[SourceDefinition],
    fetcher_factory: Callable[[], AvatarFetcher],
    mapping_dir: Path,
    concurrency: int = 1,
    source_workers: int = 1,
) -> list[SourceRunResult]:
    """
    Run several sources independently and wait for all of them.

    Each source gets its own fetcher. A failing source is logged and
    reported but does not affect the others.

    Returns:
        One SourceRunResult per definition, in input order
    """
    definitions = list(definitions)
    if not definitions:
        return []

    def run_one(definition: SourceDefinition) -> SourceRunResult:
        started_at = datetime.utcnow()
        try:
            with fetcher_factory() as fetcher:
                return run_source(definition, fetcher, mapping_dir, concurrency=concurrency)
        except Exception as e:
            logger.error(f"Error running {definition.name}: {e}")
            return SourceRunResult(
                source_name=definition.name,
                success=False,
                errors=[str(e)],
                started_at=started_at,
                completed_at=datetime.utcnow(),
            )

    with ThreadPoolExecutor(max_workers=min(source_workers, len(definitions))) as executor:
        futures = [executor.submit(run_one, definition) for definition in definitions]
        return [future.result() for future in futures]


def run_named_sources(
    source_names: Iterable[str],
    data_dir: Path | None = None,
    mapping_dir: Path | None = None,
    cache_dir: Path | None = None,
    concurrency: int | None = None,
    source_workers: int | None = None,
    skip_cached: bool | None = None,
    transport: httpx.BaseTransport | None = None,
) -> list[SourceRunResult]:
    """
    Load the named sources from the data directory and run them.

    Unset options fall back to settings. Sources whose input files cannot
    be loaded are reported as failed without stopping the others.

    Returns:
        One SourceRunResult per source name, in input order
    """
    data_dir = Path(data_dir if data_dir is not None else settings.pipeline.data_dir)
    mapping_dir = Path(mapping_dir if mapping_dir is not None else settings.pipeline.mapping_dir)
    cache_dir = Path(cache_dir if cache_dir is not None else settings.pipeline.cache_dir)
    concurrency = concurrency or settings.pipeline.concurrency
    source_workers = source_workers or settings.pipeline.source_workers

    results: dict[str, SourceRunResult] = {}
    definitions = []
    source_names = list(dict.fromkeys(source_names))

    for source_name in source_names:
        started_at = datetime.utcnow()
        try:
            definitions.append(load_source(source_name, data_dir))
        except Exception as e:
            logger.error(f"Error loading {source_name}: {e}")
            results[source_name] = SourceRunResult(
                source_name=source_name,
                success=False,
                errors=[str(e)],
                started_at=started_at,
                completed_at=datetime.utcnow(),
            )

    def fetcher_factory() -> AvatarFetcher:
        return AvatarFetcher(cache_dir=cache_dir, skip_cached=skip_cached, transport=transport)

    for result in run_pipeline(
        definitions,
        fetcher_factory,
        mapping_dir,
        concurrency=concurrency,
        source_workers=source_workers,
    ):
        results[result.source_name] = result

    return [results[name] for name in source_names]
