from __future__ import annotations

import hashlib
import re
from pathlib import Path, PurePosixPath
from urllib.parse import ParseResult, unquote, urlparse, urlunparse

HTTP_SCHEMES = frozenset({"http", "https"})
_DEFAULT_PORTS = {"http": 80, "https": 443}

_INVALID_FILENAME_CHARS = re.compile(r"[<>:\"/\\|?*\x00-\x1F]")


def normalize_url(raw_url: str) -> str:
    """Canonicalize a URL for de-duplication.

    - Lowercases scheme + hostname.
    - Drops the default port for the scheme.
    - Strips fragments.
    - Maps an empty path to "/".

    Raises ValueError for URLs urllib cannot parse (bad IPv6 literal,
    out-of-range port).
    """

    parsed: ParseResult = urlparse(raw_url.strip())
    scheme = (parsed.scheme or "").lower()
    host = (parsed.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"

    port = parsed.port
    netloc = host
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    userinfo, sep, _ = parsed.netloc.rpartition("@")
    if sep:
        netloc = f"{userinfo}@{netloc}"

    path = parsed.path
    if not path and netloc:
        path = "/"

    parsed = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        path=path,
        fragment="",
    )
    return urlunparse(parsed)


def is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return (parsed.scheme or "").lower() in HTTP_SCHEMES and bool(parsed.hostname)


def host_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def _safe_filename_component(text: str) -> str:
    cleaned = _INVALID_FILENAME_CHARS.sub("_", text.strip())
    cleaned = cleaned.strip(" ")
    if cleaned in {"", ".", ".."}:
        return ""
    return cleaned[:200]


def _host_dirname(parsed: ParseResult) -> str:
    # https is the unmarked case; plain http gets a prefix so the two
    # schemes never share a tree.
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "unknown-host").lower()
    host = _safe_filename_component(host.replace(":", "_")) or "unknown-host"
    port = parsed.port
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}_{port}"
    if scheme == "http":
        host = f"http_{host}"
    return host


def _with_hash_suffix(filename: str, key: str) -> str:
    short = hashlib.sha1(key.encode("utf-8")).hexdigest()[:8]
    path = PurePosixPath(filename)
    return f"{path.stem}-{short}{path.suffix}"


def _with_query_suffix(filename: str, query: str) -> str:
    if not query:
        return filename
    return _with_hash_suffix(filename, query)


def destination_for_url(url: str, base_dir: Path) -> Path:
    """Map a canonical URL onto a mirror path: base_dir/host/<path segments>.

    - An empty path or one ending in "/" gets "index.html".
    - Segments are kept percent-encoded, so "/a%2Fb" and "/a/b" stay apart.
    - A query string adds a short hash of the query to the file name.
    - When sanitizing changes the path (unsafe characters, "." or ".."
      segments, empty segments, over-long names) the file name gets a short
      hash of the whole URL instead, so distinct URLs never share a file.
    """

    parsed = urlparse(url)
    path = parsed.path or "/"
    raw_segments = path.split("/")

    segments: list[str] = []
    lossy = False
    for i, raw in enumerate(raw_segments):
        if not raw and i in (0, len(raw_segments) - 1):
            continue
        clean = _safe_filename_component(raw)
        if not raw or clean != raw:
            lossy = True
        if clean:
            segments.append(clean)

    if not segments or path.endswith("/"):
        segments.append("index.html")

    if lossy:
        segments[-1] = _with_hash_suffix(segments[-1], url)
    else:
        segments[-1] = _with_query_suffix(segments[-1], parsed.query)

    out = base_dir / _host_dirname(parsed)
    for segment in segments:
        out = out / segment
    return out


def filename_for_url(url: str, base_dir: Path) -> Path:
    """Destination for a single, non-mirrored download: the last path segment."""

    parsed = urlparse(url)
    last = unquote((parsed.path or "").rsplit("/", 1)[-1])
    name = _safe_filename_component(last) or "index.html"
    return base_dir / _with_query_suffix(name, parsed.query)
