from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterator

import requests
from requests import exceptions as req_exc

from .config import DEFAULT_USER_AGENT
from .errors import ErrorKind, FetchError

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

DEFAULT_HEADERS = {
    "Accept": "*/*",
    "Accept-Encoding": "identity",
}


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    content_type: str | None
    redirects: tuple[str, ...] = ()
    # Location of a redirect that was not followed.
    location: str | None = None
    # Nothing was written: already complete, or fetched by another Target.
    skipped: bool = False
    bytes_written: int = 0
    error: ErrorKind | None = None
    message: str = ""
    warnings: tuple[ErrorKind, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, url: str, err: FetchError) -> "FetchResult":
        return cls(
            url=url,
            final_url=url,
            status_code=0,
            content_type=None,
            error=err.kind,
            message=err.message,
        )


def classify_request_error(exc: req_exc.RequestException) -> ErrorKind:
    """Map a requests exception onto an ErrorKind.

    Order matters: SSLError and ConnectTimeout both subclass ConnectionError.
    """

    if isinstance(exc, req_exc.SSLError):
        return ErrorKind.TLS_FAILURE
    if isinstance(exc, req_exc.Timeout):
        return ErrorKind.TIMEOUT
    if isinstance(
        exc,
        (
            req_exc.MissingSchema,
            req_exc.InvalidSchema,
            req_exc.InvalidURL,
            req_exc.URLRequired,
        ),
    ):
        return ErrorKind.INVALID_URL
    if isinstance(
        exc,
        (
            req_exc.ChunkedEncodingError,
            req_exc.ContentDecodingError,
            req_exc.InvalidHeader,
            req_exc.TooManyRedirects,
        ),
    ):
        return ErrorKind.MALFORMED_RESPONSE
    if isinstance(exc, req_exc.ConnectionError):
        # urllib3 surfaces read timeouts during streaming as ConnectionError.
        if "timed out" in str(exc).lower():
            return ErrorKind.TIMEOUT
        return ErrorKind.CONNECTION_FAILURE
    return ErrorKind.CONNECTION_FAILURE


class HttpClient:
    """Single-request HTTP transport.

    Redirects are never followed here and nothing is retried; both are policy
    for the caller. Each worker thread gets its own requests.Session.
    """

    def __init__(
        self,
        *,
        timeout_s: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self._timeout_s = timeout_s
        self._user_agent = user_agent
        self._session_factory = session_factory
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            session.headers.update(DEFAULT_HEADERS)
            session.headers["User-Agent"] = self._user_agent
            with self._sessions_lock:
                self._sessions.append(session)
            self._local.session = session
        return session

    def fetch(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        """Issue one GET and return the streamed response, unread.

        The caller owns the response and must close it.
        """

        try:
            resp = self._session().get(
                url,
                headers=headers,
                timeout=self._timeout_s,
                allow_redirects=False,
                stream=True,
            )
        except req_exc.RequestException as e:
            raise FetchError(classify_request_error(e), url, str(e)) from e

        log.debug("GET %s -> %s", url, resp.status_code)
        return resp

    def close(self) -> None:
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def iter_body(
    resp: requests.Response,
    *,
    chunk_size: int = CHUNK_SIZE,
) -> Iterator[bytes]:
    """Yield body chunks, translating transport errors into FetchError."""

    try:
        for chunk in resp.iter_content(chunk_size=chunk_size):
            if chunk:
                yield chunk
    except req_exc.RequestException as e:
        raise FetchError(classify_request_error(e), str(resp.url), str(e)) from e
