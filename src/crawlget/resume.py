from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import requests

from .config import CrawlConfig
from .errors import ErrorKind, FetchError

log = logging.getLogger(__name__)

_CONTENT_RANGE_RE = re.compile(
    r"^\s*bytes\s+(?:(?P<start>\d+)-(?P<end>\d+)|\*)/(?P<total>\d+|\*)\s*$",
    re.IGNORECASE,
)


class PlanMode(str, Enum):
    FRESH = "fresh"
    RESUME = "resume"
    SKIP = "skip"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class FetchPlan:
    mode: PlanMode
    offset: int = 0
    # Set when a 416 forces the fetch to be repeated without a Range header.
    refetch: bool = False

    @classmethod
    def fresh(cls, *, refetch: bool = False) -> "FetchPlan":
        return cls(PlanMode.FRESH, refetch=refetch)

    @classmethod
    def resume_from(cls, offset: int) -> "FetchPlan":
        return cls(PlanMode.RESUME, offset=offset)

    def request_headers(self) -> dict[str, str]:
        if self.mode == PlanMode.RESUME:
            return {"Range": f"bytes={self.offset}-"}
        return {}


@dataclass(frozen=True)
class PartialFile:
    """What is on disk before a fetch begins.

    The mtime is only a weak identity hint; servers are not required to keep
    validators stable, so resumption stays optimistic.
    """

    path: Path
    size: int
    modified_at: float

    @classmethod
    def probe(cls, path: Path) -> "PartialFile | None":
        try:
            st = path.stat()
        except FileNotFoundError:
            return None
        return cls(path=path, size=st.st_size, modified_at=st.st_mtime)


def parse_content_range(value: str | None) -> tuple[int | None, int | None]:
    """Return (start, total) from a Content-Range header; unknown parts are None."""

    if not value:
        return None, None
    m = _CONTENT_RANGE_RE.match(value)
    if not m:
        return None, None
    start = int(m.group("start")) if m.group("start") is not None else None
    total = int(m.group("total")) if m.group("total") != "*" else None
    return start, total


class ResumeNegotiator:
    def __init__(self, config: CrawlConfig) -> None:
        self.cfg = config

    def plan(self, destination: Path) -> FetchPlan:
        if destination.is_dir():
            return FetchPlan(PlanMode.CONFLICT)

        partial = PartialFile.probe(destination)
        if partial is None:
            return FetchPlan.fresh()

        if self.cfg.force:
            log.debug("overwriting %s (force)", destination)
            return FetchPlan.fresh()

        if self.cfg.resume:
            if partial.size == 0:
                return FetchPlan.fresh()
            log.debug(
                "resuming %s from byte %d (mtime=%s)",
                destination,
                partial.size,
                partial.modified_at,
            )
            return FetchPlan.resume_from(partial.size)

        return FetchPlan(PlanMode.CONFLICT)

    def reconcile(
        self,
        plan: FetchPlan,
        resp: requests.Response,
    ) -> tuple[FetchPlan, tuple[ErrorKind, ...]]:
        """Adjust a plan to what the server actually answered."""

        if plan.mode != PlanMode.RESUME:
            return plan, ()

        url = str(resp.url)
        status = int(resp.status_code)
        start, total = parse_content_range(resp.headers.get("Content-Range"))

        if status == 206:
            if start is not None and start != plan.offset:
                raise FetchError(
                    ErrorKind.MALFORMED_RESPONSE,
                    url,
                    f"asked for byte {plan.offset}, server sent from {start}",
                )
            return plan, ()

        if status == 416:
            if total is not None and total == plan.offset:
                log.info("%s is already complete (%d bytes)", url, total)
                return FetchPlan(PlanMode.SKIP, offset=plan.offset), ()
            log.warning("range not satisfiable for %s; restarting download", url)
            return FetchPlan.fresh(refetch=True), (ErrorKind.RESUME_NOT_SUPPORTED,)

        if 200 <= status < 300:
            log.warning(
                "server ignored range request for %s; downloading from the start",
                url,
            )
            return FetchPlan.fresh(), (ErrorKind.RESUME_NOT_SUPPORTED,)

        return plan, ()
