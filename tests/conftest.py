# SPDX-License-Identifier: MIT
"""Pytest configuration and fixtures for avatarmap tests."""

import json
import os
from io import BytesIO
from pathlib import Path

import httpx
import pytest
from PIL import Image

# Keep loguru quiet unless a test configures it
os.environ.setdefault("DISABLE_LOGGING", "1")


class FakeImageHost:
    """
    Serves canned responses per URL and records every request.

    A response may be bytes (served as a 200 image), an httpx.Response, an
    exception instance (raised as a transport error) or a list of those,
    consumed in order with the last one repeating.
    """

    def __init__(self, responses: dict | None = None, default=None):
        self.responses = {
            url: list(value) if isinstance(value, list) else value
            for url, value in (responses or {}).items()
        }
        self.default = default
        self.requests: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)

        response = self.responses.get(url, self.default)
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]

        if response is None:
            return httpx.Response(404)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, bytes):
            return httpx.Response(200, content=response, headers={"Content-Type": "image/png"})
        # fresh copy, canned responses may be served more than once
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def count(self, url: str) -> int:
        return self.requests.count(url)


@pytest.fixture
def png_bytes():
    """Factory for PNG image bytes."""
    def _make(width: int = 146, height: int = 100, color=(200, 30, 30), mode: str = "RGB") -> bytes:
        if mode == "RGBA" and len(color) == 3:
            color = (*color, 128)
        image = Image.new(mode, (width, height), color)
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()

    return _make


@pytest.fixture
def image_host():
    """The FakeImageHost class, for building per-test hosts."""
    return FakeImageHost


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "img" / "avatar-local-cache"


@pytest.fixture
def mapping_dir(tmp_path: Path) -> Path:
    return tmp_path / "_data" / "avatarmap"


@pytest.fixture
def make_fetcher(cache_dir: Path):
    """Factory for AvatarFetcher instances backed by a FakeImageHost."""
    from avatarmap.fetcher import AvatarFetcher

    fetchers = []

    def _make(host: FakeImageHost, **kwargs) -> AvatarFetcher:
        options = {
            "cache_dir": cache_dir,
            "width": 73,
            "formats": ["jpeg", "webp"],
            "max_attempts": 2,
            "retry_delay": 0,
            "skip_cached": False,
        }
        options.update(kwargs)
        fetcher = AvatarFetcher(transport=host.transport, **options)
        fetchers.append(fetcher)
        return fetcher

    yield _make

    for fetcher in fetchers:
        fetcher.close()


@pytest.fixture
def write_json(tmp_path: Path):
    """Write a JSON document under tmp_path and return its path."""
    def _write(relative: str, data) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sample_supporters() -> list[dict]:
    """Open Collective supporters export."""
    return [
        {"name": "Alice", "role": "BACKER", "image": "http://images.test/alice.png"},
        {"name": "Bob", "role": "backer", "image": None},
        {"name": "Carol", "role": "host", "image": "http://images.test/carol.png"},
        {"name": "alice", "role": "backer", "image": "http://images.test/alice-2.png"},
        {"name": "", "role": "backer", "image": "http://images.test/nobody.png"},
    ]
