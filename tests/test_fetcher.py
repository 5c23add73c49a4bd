# SPDX-License-Identifier: MIT
"""Tests for the avatar fetcher."""

import httpx
import pytest
from PIL import Image

from avatarmap.fetcher import AvatarFetcher, InvalidImageError, decode_image, resize_to_width
from avatarmap.utils.http import HTTPError, UnsafeURLError

ALICE_URL = "http://images.test/alice.png"


class TestFetchWithoutImage:
    """Identifiers without an image URL."""

    @pytest.mark.parametrize("image_url", [None, ""])
    def test_empty_result_without_network(self, image_host, make_fetcher, image_url):
        host = image_host()
        fetcher = make_fetcher(host)

        assert fetcher.fetch("Bob", image_url, "opencollective") == []
        assert host.requests == []


class TestFetchSuccess:
    """Successful downloads."""

    def test_writes_resized_files(self, image_host, make_fetcher, png_bytes, cache_dir):
        host = image_host({ALICE_URL: png_bytes(146, 100)})
        fetcher = make_fetcher(host)

        files = fetcher.fetch("Alice", ALICE_URL, "opencollective")

        assert [f.format for f in files] == ["jpeg", "webp"]
        assert {f.name for f in files} == {"alice"}
        assert files[0].path == (cache_dir / "opencollective" / "alice.jpg").as_posix()
        assert files[1].path == (cache_dir / "opencollective" / "alice.webp").as_posix()
        for f in files:
            assert (f.width, f.height) == (73, 50)
            with Image.open(f.path) as image:
                assert image.size == (73, 50)
        assert host.count(ALICE_URL) == 1

    def test_small_images_are_not_upscaled(self, image_host, make_fetcher, png_bytes):
        host = image_host({ALICE_URL: png_bytes(40, 40)})
        files = make_fetcher(host).fetch("alice", ALICE_URL, "opencollective")

        assert {(f.width, f.height) for f in files} == {(40, 40)}

    def test_transparent_image_to_jpeg(self, image_host, make_fetcher, png_bytes):
        host = image_host({ALICE_URL: png_bytes(100, 100, mode="RGBA")})
        files = make_fetcher(host, formats=["jpeg"]).fetch("alice", ALICE_URL, "twitter")

        with Image.open(files[0].path) as image:
            assert image.format == "JPEG"
            assert image.mode == "RGB"

    def test_without_source_uses_cache_root(self, image_host, make_fetcher, png_bytes, cache_dir):
        host = image_host({ALICE_URL: png_bytes()})
        files = make_fetcher(host, formats=["png"]).fetch("alice", ALICE_URL)

        assert files[0].path == (cache_dir / "alice.png").as_posix()

    def test_overwrites_existing_files_by_default(self, image_host, make_fetcher, png_bytes):
        host = image_host({ALICE_URL: png_bytes()})
        fetcher = make_fetcher(host)

        first = fetcher.fetch("alice", ALICE_URL, "twitter")
        second = fetcher.fetch("alice", ALICE_URL, "twitter")

        assert first == second
        assert host.count(ALICE_URL) == 2

    def test_skip_cached_reuses_files(self, image_host, make_fetcher, png_bytes):
        host = image_host({ALICE_URL: png_bytes()})
        first = make_fetcher(host).fetch("alice", ALICE_URL, "twitter")

        cached = make_fetcher(host, skip_cached=True).fetch("Alice", ALICE_URL, "twitter")

        assert cached == first
        assert host.count(ALICE_URL) == 1

    def test_skip_cached_fetches_missing_formats(self, image_host, make_fetcher, png_bytes):
        host = image_host({ALICE_URL: png_bytes()})
        make_fetcher(host, formats=["jpeg"]).fetch("alice", ALICE_URL, "twitter")

        files = make_fetcher(host, skip_cached=True).fetch("alice", ALICE_URL, "twitter")

        assert [f.format for f in files] == ["jpeg", "webp"]
        assert host.count(ALICE_URL) == 2


class TestFetchRetry:
    """Retry policy: one retry, then give up."""

    def test_fails_once_then_succeeds(self, image_host, make_fetcher, png_bytes):
        host = image_host({ALICE_URL: [httpx.Response(500), png_bytes()]})

        files = make_fetcher(host).fetch("alice", ALICE_URL, "opencollective")

        assert len(files) == 2
        assert host.count(ALICE_URL) == 2

    def test_transport_error_is_retried(self, image_host, make_fetcher, png_bytes):
        host = image_host({ALICE_URL: [httpx.ConnectError("connection refused"), png_bytes()]})

        files = make_fetcher(host).fetch("alice", ALICE_URL, "opencollective")

        assert files
        assert host.count(ALICE_URL) == 2

    def test_invalid_image_is_retried(self, image_host, make_fetcher, png_bytes):
        host = image_host({ALICE_URL: [b"<html>not an image</html>", png_bytes()]})

        assert make_fetcher(host).fetch("alice", ALICE_URL, "opencollective")
        assert host.count(ALICE_URL) == 2

    def test_fails_twice(self, image_host, make_fetcher):
        host = image_host({ALICE_URL: httpx.Response(503)})

        with pytest.raises(HTTPError):
            make_fetcher(host).fetch("alice", ALICE_URL, "opencollective")
        assert host.count(ALICE_URL) == 2

    def test_invalid_image_twice(self, image_host, make_fetcher):
        host = image_host({ALICE_URL: b"garbage"})

        with pytest.raises(InvalidImageError):
            make_fetcher(host).fetch("alice", ALICE_URL, "opencollective")
        assert host.count(ALICE_URL) == 2

    def test_single_attempt_when_configured(self, image_host, make_fetcher):
        host = image_host({ALICE_URL: httpx.Response(500)})

        with pytest.raises(HTTPError):
            make_fetcher(host, max_attempts=1).fetch("alice", ALICE_URL, "opencollective")
        assert host.count(ALICE_URL) == 1

    def test_unsafe_url_is_not_retried(self, image_host, make_fetcher):
        host = image_host()

        with pytest.raises(UnsafeURLError):
            make_fetcher(host).fetch("alice", "file:///etc/passwd", "opencollective")
        assert host.requests == []

    def test_failed_fetch_leaves_no_files(self, image_host, make_fetcher, cache_dir):
        host = image_host({ALICE_URL: httpx.Response(500)})

        with pytest.raises(HTTPError):
            make_fetcher(host).fetch("alice", ALICE_URL, "opencollective")
        assert list((cache_dir / "opencollective").iterdir()) == []


class TestRateLimitWait:
    """Waiting before the retry of a rate limited download."""

    def test_honours_retry_after(self, image_host, make_fetcher, png_bytes, mocker):
        rate_limited = httpx.Response(429, headers={"Retry-After": "0"})
        host = image_host({ALICE_URL: [rate_limited, png_bytes()]})
        fetcher = make_fetcher(host, retry_delay=5)
        wait = mocker.spy(fetcher, "retry_wait")

        assert fetcher.fetch("alice", ALICE_URL, "opencollective")
        assert wait.spy_return == 0
        assert host.count(ALICE_URL) == 2

    def test_caps_long_retry_after(self, image_host, make_fetcher, png_bytes, mocker):
        rate_limited = httpx.Response(429, headers={"Retry-After": "3600"})
        host = image_host({ALICE_URL: [rate_limited, png_bytes()]})
        fetcher = make_fetcher(host, max_retry_after=0.01)
        wait = mocker.spy(fetcher, "retry_wait")

        assert fetcher.fetch("alice", ALICE_URL, "opencollective")
        assert wait.spy_return == 0.01

    def test_without_retry_after_uses_retry_delay(self, image_host, make_fetcher, png_bytes, mocker):
        host = image_host({ALICE_URL: [httpx.Response(429), png_bytes()]})
        fetcher = make_fetcher(host, retry_delay=0.01, max_retry_after=60)
        wait = mocker.spy(fetcher, "retry_wait")

        assert fetcher.fetch("alice", ALICE_URL, "opencollective")
        assert wait.spy_return == 0.01

    def test_server_errors_use_retry_delay(self, image_host, make_fetcher, png_bytes, mocker):
        host = image_host({ALICE_URL: [httpx.Response(503, headers={"Retry-After": "30"}), png_bytes()]})
        fetcher = make_fetcher(host, retry_delay=0.01)
        wait = mocker.spy(fetcher, "retry_wait")

        assert fetcher.fetch("alice", ALICE_URL, "opencollective")
        assert wait.spy_return == 0.01


class TestDecodeImage:
    """Malformed image data."""

    @pytest.mark.parametrize("error", [
        ValueError("tile cannot extend outside image"),
        SyntaxError("broken PNG file"),
        EOFError(),
    ])
    def test_pillow_errors_become_invalid_image(self, png_bytes, mocker, error):
        mocker.patch.object(Image, "open", side_effect=error)

        with pytest.raises(InvalidImageError):
            decode_image(png_bytes())

    def test_truncated_image(self, png_bytes):
        content = png_bytes()

        with pytest.raises(InvalidImageError):
            decode_image(content[:len(content) // 2])

    def test_decoder_error_is_retried(self, image_host, make_fetcher, png_bytes, mocker):
        real_open = Image.open
        broken = b"\x89PNG broken chunk"

        def open_image(fp, *args, **kwargs):
            if fp.getvalue() == broken:
                raise SyntaxError("broken PNG file")
            return real_open(fp, *args, **kwargs)

        mocker.patch.object(Image, "open", side_effect=open_image)
        host = image_host({ALICE_URL: [broken, png_bytes()]})

        files = make_fetcher(host).fetch("alice", ALICE_URL, "opencollective")

        assert len(files) == 2
        assert host.count(ALICE_URL) == 2


class TestFetcherSetup:
    """Construction and directories."""

    def test_prepare_is_idempotent(self, image_host, make_fetcher, cache_dir):
        fetcher = make_fetcher(image_host())

        assert fetcher.prepare("twitter") == cache_dir / "twitter"
        assert fetcher.prepare("twitter").is_dir()

    def test_rejects_unknown_format(self, image_host):
        with pytest.raises(ValueError):
            AvatarFetcher(formats=["gif"], transport=image_host().transport)

    def test_closes_own_client(self, image_host):
        with AvatarFetcher(transport=image_host().transport) as fetcher:
            client = fetcher.client
        assert client.is_closed

    def test_leaves_shared_client_open(self):
        client = httpx.Client()
        with AvatarFetcher(client=client):
            pass
        assert not client.is_closed
        client.close()


class TestResizeToWidth:
    """Resize helper."""

    def test_keeps_aspect_ratio(self):
        image = Image.new("RGB", (300, 150))
        assert resize_to_width(image, 73).size == (73, 36)

    def test_never_upscales(self):
        image = Image.new("RGB", (20, 30))
        assert resize_to_width(image, 73).size == (20, 30)
