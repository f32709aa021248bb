from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from crawlget.config import CrawlConfig
from crawlget.crawl import Crawler, TargetEvent
from crawlget.http_client import HttpClient


def serve_bytes(
    data: bytes,
    *,
    content_type: str = "application/octet-stream",
    honor_range: bool = True,
) -> Callable:
    """requests-mock callback that behaves like a range-capable static server."""

    def _cb(request, context) -> bytes:
        context.headers["Content-Type"] = content_type
        rng = request.headers.get("Range")
        if rng and honor_range:
            start = int(rng.split("=", 1)[1].rstrip("-"))
            if start >= len(data):
                context.status_code = 416
                context.headers["Content-Range"] = f"bytes */{len(data)}"
                return b""
            context.status_code = 206
            context.headers["Content-Range"] = (
                f"bytes {start}-{len(data) - 1}/{len(data)}"
            )
            return data[start:]
        context.status_code = 200
        return data

    return _cb


def html_page(*hrefs: str) -> bytes:
    links = "".join(f'<a href="{h}">link</a>' for h in hrefs)
    return f"<!doctype html><html><body>{links}</body></html>".encode("utf-8")


@pytest.fixture
def http():
    client = HttpClient(timeout_s=5)
    yield client
    client.close()


@pytest.fixture
def events() -> list[TargetEvent]:
    return []


@pytest.fixture
def make_crawler(http, tmp_path: Path, events):
    def _make(**overrides) -> Crawler:
        overrides.setdefault("output_dir", tmp_path)
        cfg = CrawlConfig(**overrides)
        return Crawler(http=http, config=cfg, listener=events.append)

    return _make


def requested_urls(mock) -> list[str]:
    return [r.url for r in mock.request_history]
