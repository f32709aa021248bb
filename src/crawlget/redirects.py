from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from urllib.parse import urljoin

import requests

from .config import CrawlConfig
from .errors import ErrorKind, FetchError
from .http_client import FetchResult, HttpClient
from .urls import is_http_url, normalize_url

log = logging.getLogger(__name__)


def is_redirect(resp: requests.Response) -> bool:
    return 300 <= int(resp.status_code) < 400 and bool(resp.headers.get("Location"))


@dataclass(frozen=True)
class Resolved:
    """The terminal response of a redirect chain, still unread."""

    result: FetchResult
    response: requests.Response


class RedirectResolver:
    def __init__(self, http: HttpClient, config: CrawlConfig) -> None:
        self.http = http
        self.cfg = config

    def resolve(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> Resolved:
        """Fetch url, following up to max_redirects hops.

        Every hop reuses the same request headers (including any Range).
        The caller owns the returned response and must close it.
        """

        current = url
        chain: list[str] = []

        while True:
            resp = self.http.fetch(current, headers=headers)

            if not is_redirect(resp):
                return Resolved(self._result(url, current, resp, chain), resp)

            location = resp.headers["Location"]
            if not self.cfg.follow_redirects:
                log.info("not following redirect %s -> %s", current, location)
                result = self._result(url, current, resp, chain)
                return Resolved(replace(result, location=location), resp)

            resp.close()
            chain.append(current)
            if len(chain) > self.cfg.max_redirects:
                raise FetchError(
                    ErrorKind.TOO_MANY_REDIRECTS,
                    url,
                    f"exceeded {self.cfg.max_redirects} redirects",
                )

            try:
                nxt = normalize_url(urljoin(current, location))
            except ValueError:
                raise FetchError(
                    ErrorKind.INVALID_URL,
                    url,
                    f"malformed redirect location {location!r}",
                ) from None
            if not is_http_url(nxt):
                raise FetchError(
                    ErrorKind.INVALID_URL,
                    url,
                    f"redirect to unsupported location {location!r}",
                )
            log.debug("redirect %d: %s -> %s", len(chain), current, nxt)
            current = nxt

    @staticmethod
    def _result(
        url: str,
        final_url: str,
        resp: requests.Response,
        chain: list[str],
    ) -> FetchResult:
        return FetchResult(
            url=url,
            final_url=final_url,
            status_code=int(resp.status_code),
            content_type=resp.headers.get("Content-Type"),
            redirects=tuple(chain),
        )
