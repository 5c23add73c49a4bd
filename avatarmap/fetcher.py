"""
Avatar fetcher.

Downloads one avatar, resizes it to the configured width and writes it to
the local cache in every configured output format:

    <cache_dir>/<source>/<slug>.jpg
    <cache_dir>/<source>/<slug>.webp

Transient failures (network errors, HTTP errors, undecodable image data)
are retried once by default. A 429 waits for the host's Retry-After, capped
by `http_max_retry_after`.
"""

from dataclasses import asdict, dataclass
from io import BytesIO
from pathlib import Path

import httpx
from loguru import logger
from PIL import Image, ImageOps, UnidentifiedImageError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from avatarmap.config import IMAGE_FORMATS, settings
from avatarmap.utils.http import HTTPError, RateLimitError, create_client, fetch_image, validate_image_url
from avatarmap.utils.text import slugify_identifier

RESAMPLE = getattr(Image, "Resampling", Image).LANCZOS

# Encoder options per output format
SAVE_OPTIONS = {
    "jpeg": {"quality": 85, "optimize": True},
    "webp": {"quality": 80, "method": 6},
    "png": {"optimize": True},
}


class InvalidImageError(Exception):
    """Raised when downloaded bytes cannot be decoded as an image."""
    pass


# Pillow plugins report truncated or malformed data with any of these
DECODE_ERRORS = (
    UnidentifiedImageError,
    OSError,
    ValueError,
    SyntaxError,
    EOFError,
    Image.DecompressionBombError,
)

# Errors worth a second attempt
RETRYABLE_ERRORS = (httpx.HTTPError, HTTPError, InvalidImageError)


@dataclass(frozen=True)
class AvatarFile:
    """One cached avatar file."""
    name: str       # slug, shared by all formats of one avatar
    path: str       # POSIX path of the written file
    width: int
    height: int
    format: str

    def to_dict(self) -> dict:
        return asdict(self)


def decode_image(content: bytes) -> Image.Image:
    """
    Decode image bytes, applying any EXIF orientation.

    Raises:
        InvalidImageError: If Pillow cannot read the data
    """
    try:
        image = Image.open(BytesIO(content))
        image.load()
    except DECODE_ERRORS as e:
        raise InvalidImageError(f"Invalid image data ({len(content)} bytes): {e}") from e

    return ImageOps.exif_transpose(image)


def resize_to_width(image: Image.Image, width: int) -> Image.Image:
    """Scale an image down to `width`, keeping its aspect ratio. Never upscales."""
    if image.width <= width:
        return image.copy()

    height = max(1, round(image.height * width / image.width))
    return image.resize((width, height), RESAMPLE)


def encode_image(image: Image.Image, fmt: str) -> bytes:
    """Encode an image in the given output format."""
    if fmt == "jpeg":
        if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
            rgba = image.convert("RGBA")
            flattened = Image.new("RGB", rgba.size, (255, 255, 255))
            flattened.paste(rgba, mask=rgba.getchannel("A"))
            image = flattened
        elif image.mode != "RGB":
            image = image.convert("RGB")
    elif image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA")

    buffer = BytesIO()
    image.save(buffer, format=fmt.upper(), **SAVE_OPTIONS.get(fmt, {}))
    return buffer.getvalue()


def atomic_write_bytes(dest_path: Path, content: bytes) -> Path:
    """
    Write bytes to file atomically.

    Args:
        dest_path: Final destination path
        content: Bytes to write

    Returns:
        Path to written file
    """
    dest_path = Path(dest_path)
    temp_path = dest_path.with_suffix(dest_path.suffix + ".tmp")

    try:
        temp_path.write_bytes(content)
        temp_path.replace(dest_path)
        return dest_path
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


class AvatarFetcher:
    """
    Fetches avatars into the local cache.

    Owns its HTTP client unless one is passed in; use as a context manager
    to close it.
    """

    def __init__(
        self,
        cache_dir: Path | str | None = None,
        width: int | None = None,
        formats: list[str] | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        max_retry_after: float | None = None,
        skip_cached: bool | None = None,
        client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize the fetcher. Unset options fall back to settings.

        Args:
            cache_dir: Root of the avatar cache
            width: Target width in pixels
            formats: Output formats, e.g. ["jpeg", "webp"]
            timeout: Per-request timeout in seconds
            max_attempts: Total attempts per avatar (2 = one retry)
            retry_delay: Seconds to wait before retrying
            max_retry_after: Longest wait honoured from a Retry-After header
            skip_cached: Reuse already cached files instead of downloading
            client: Existing httpx client (not closed by the fetcher)
            transport: Transport for the fetcher's own client
        """
        self.cache_dir = Path(cache_dir if cache_dir is not None else settings.pipeline.cache_dir)
        self.width = width if width is not None else settings.avatar.width
        self.formats = list(formats if formats is not None else settings.avatar.formats)
        self.timeout = timeout if timeout is not None else settings.pipeline.http_timeout
        self.max_attempts = max_attempts if max_attempts is not None else settings.pipeline.http_max_attempts
        self.retry_delay = retry_delay if retry_delay is not None else settings.pipeline.http_retry_delay
        self.max_retry_after = (
            max_retry_after if max_retry_after is not None else settings.pipeline.http_max_retry_after
        )
        self.skip_cached = skip_cached if skip_cached is not None else settings.avatar.skip_cached

        if self.width < 1:
            raise ValueError(f"width must be positive, got {self.width}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        unknown = [fmt for fmt in self.formats if fmt not in IMAGE_FORMATS]
        if unknown or not self.formats:
            raise ValueError(f"Unsupported image formats: {unknown or self.formats}")

        self._owns_client = client is None
        self.client = client or create_client(timeout=self.timeout, transport=transport)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def source_dir(self, source_name: str | None = None) -> Path:
        """Cache directory for a source (the cache root if there is none)."""
        return self.cache_dir / source_name if source_name else self.cache_dir

    def prepare(self, source_name: str | None = None) -> Path:
        """Create the cache directory for a source. Safe to call repeatedly."""
        path = self.source_dir(source_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def output_path(self, directory: Path, slug: str, fmt: str) -> Path:
        return directory / f"{slug}.{IMAGE_FORMATS[fmt]}"

    def read_cached(self, directory: Path, slug: str) -> list[AvatarFile] | None:
        """Describe already cached files for a slug, or None if any format is missing."""
        files = []
        for fmt in self.formats:
            path = self.output_path(directory, slug, fmt)
            if not path.is_file():
                return None
            try:
                with Image.open(path) as image:
                    width, height = image.size
            except DECODE_ERRORS:
                logger.debug(f"Unreadable cached file {path}, fetching again")
                return None
            files.append(AvatarFile(name=slug, path=path.as_posix(), width=width, height=height, format=fmt))
        return files

    def fetch(self, identifier: str, image_url: str | None, source_name: str | None = None) -> list[AvatarFile]:
        """
        Fetch one avatar into the cache.

        Args:
            identifier: Name or handle; its slug names the cached files
            image_url: Remote image URL (None or empty means no avatar)
            source_name: Source the identifier belongs to

        Returns:
            Cached files in configured format order, or [] without an image URL

        Raises:
            UnsafeURLError: For non-http(s) URLs (not retried)
            HTTPError, httpx.HTTPError, InvalidImageError: When the last attempt fails
        """
        if not image_url:
            logger.debug(f"No image URL for {identifier} ({source_name or 'no source'})")
            return []

        url = validate_image_url(image_url)
        slug = slugify_identifier(identifier)
        directory = self.prepare(source_name)

        if self.skip_cached:
            cached = self.read_cached(directory, slug)
            if cached:
                logger.debug(f"Using cached avatar for {identifier}: {slug}")
                return cached

        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=self._log_retry(identifier, source_name),
            reraise=True,
        )
        return retryer(self._download, url, directory, slug)

    def _download(self, url: str, directory: Path, slug: str) -> list[AvatarFile]:
        content = fetch_image(self.client, url, timeout=self.timeout)
        image = resize_to_width(decode_image(content), self.width)

        files = []
        for fmt in self.formats:
            path = atomic_write_bytes(self.output_path(directory, slug, fmt), encode_image(image, fmt))
            files.append(AvatarFile(
                name=slug,
                path=path.as_posix(),
                width=image.width,
                height=image.height,
                format=fmt,
            ))
        return files

    def retry_wait(self, retry_state: RetryCallState) -> float:
        """Seconds to sleep before the next attempt."""
        error = retry_state.outcome.exception()
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(error.retry_after, self.max_retry_after)
        return self.retry_delay

    def _log_retry(self, identifier: str, source_name: str | None):
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            logger.warning(
                f"Failed once getting {identifier} from {source_name or 'no source'}: {error}. Trying again"
            )
        return before_sleep
