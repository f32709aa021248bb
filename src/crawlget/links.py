from __future__ import annotations

import logging
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .urls import is_http_url, normalize_url

log = logging.getLogger(__name__)

HTML_CONTENT_TYPES = frozenset({"text/html", "application/xhtml+xml"})

# tag -> attribute holding a fetchable reference
_LINK_ATTRS = {
    "a": "href",
    "area": "href",
    "link": "href",
    "img": "src",
    "script": "src",
    "iframe": "src",
    "frame": "src",
    "source": "src",
    "embed": "src",
}


def is_html(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() in HTML_CONTENT_TYPES


def _attr_text(val: object) -> str:
    if isinstance(val, list):
        if not val:
            return ""
        return str(val[0])
    return str(val or "")


class LinkExtractor:
    """Candidate URLs referenced by an HTML document.

    Deduplication across the crawl is not done here; the returned set only
    collapses repeats within one document.
    """

    def extract(
        self,
        body: bytes,
        base_url: str,
        content_type: str | None,
    ) -> set[str]:
        if not is_html(content_type):
            return set()

        soup = BeautifulSoup(body, "html.parser")

        effective_base = base_url
        base = soup.find("base")
        if base is not None:
            base_href = _attr_text(base.get("href")).strip()
            if base_href:
                try:
                    effective_base = urljoin(base_url, base_href)
                except ValueError:
                    log.debug("ignoring malformed <base href=%r>", base_href)

        out: set[str] = set()
        for tag in soup.find_all(list(_LINK_ATTRS)):
            ref = _attr_text(tag.get(_LINK_ATTRS[tag.name])).strip()
            if not ref or ref.startswith("#"):
                continue
            try:
                abs_url = urljoin(effective_base, ref)
                if not is_http_url(abs_url):
                    continue
                out.add(normalize_url(abs_url))
            except ValueError:
                log.debug("skipping malformed reference %r on %s", ref, base_url)
        return out
