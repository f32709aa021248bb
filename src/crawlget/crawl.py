from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import closing
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from .config import CrawlConfig
from .errors import ConfigError, ErrorKind, FetchError
from .http_client import FetchResult, HttpClient, iter_body
from .links import LinkExtractor, is_html
from .manifest import utc_iso
from .redirects import RedirectResolver
from .resume import FetchPlan, PlanMode, ResumeNegotiator
from .urls import (
    destination_for_url,
    filename_for_url,
    host_of,
    is_http_url,
    normalize_url,
)
from .writer import FileWriter

log = logging.getLogger(__name__)

# Larger HTML documents are still saved, but only their head is scanned.
MAX_LINK_SCAN_BYTES = 16 * 1024 * 1024

# How often the dispatcher wakes up to notice cancellation.
_POLL_INTERVAL_S = 0.5


class Outcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    REDIRECTED = "redirected"
    FAILED = "failed"


@dataclass(frozen=True)
class Target:
    url: str
    depth: int
    anchor_host: str
    destination: Path


class VisitedSet:
    """Canonical URLs admitted so far; check-and-insert is atomic."""

    def __init__(self) -> None:
        self._urls: set[str] = set()
        self._lock = threading.Lock()

    def try_insert(self, url: str) -> bool:
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._urls

    def __len__(self) -> int:
        with self._lock:
            return len(self._urls)

    def snapshot(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._urls)


@dataclass(frozen=True)
class TargetEvent:
    url: str
    outcome: Outcome
    depth: int
    destination: Path
    bytes_written: int
    final_url: str
    status_code: int
    error: ErrorKind | None = None
    message: str = ""
    warnings: tuple[ErrorKind, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.outcome.value,
            "url": self.url,
            "final_url": self.final_url,
            "status_code": self.status_code,
            "depth": self.depth,
            "path": str(self.destination),
            "bytes": self.bytes_written,
            "error": self.error.value if self.error else None,
            "message": self.message or None,
            "warnings": [w.value for w in self.warnings],
        }


@dataclass
class CrawlSummary:
    started_at: str = field(default_factory=utc_iso)
    finished_at: str | None = None
    completed: int = 0
    skipped: int = 0
    redirected: int = 0
    bytes_written: int = 0
    failures: list[TargetEvent] = field(default_factory=list)
    visited: int = 0
    remaining: int = 0
    cancelled: bool = False

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def any_failed(self) -> bool:
        return bool(self.failures)

    @property
    def primary_error(self) -> ErrorKind | None:
        if not self.failures:
            return None
        return self.failures[0].error

    def record(self, event: TargetEvent) -> None:
        if event.outcome == Outcome.FAILED:
            self.failures.append(event)
        elif event.outcome == Outcome.SKIPPED:
            self.skipped += 1
        elif event.outcome == Outcome.REDIRECTED:
            self.redirected += 1
        else:
            self.completed += 1
        self.bytes_written += event.bytes_written

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "stats": {
                "completed": self.completed,
                "skipped": self.skipped,
                "redirected": self.redirected,
                "failed": self.failed,
                "bytes": self.bytes_written,
                "visited": self.visited,
                "remaining": self.remaining,
            },
            "cancelled": self.cancelled,
            "primary_error": self.primary_error.value if self.primary_error else None,
            "failures": [e.to_dict() for e in self.failures],
        }


def outcome_of(result: FetchResult) -> Outcome:
    if result.error is not None:
        return Outcome.FAILED
    if result.skipped:
        return Outcome.SKIPPED
    if result.location is not None:
        return Outcome.REDIRECTED
    return Outcome.COMPLETED


class Crawler:
    """Bounded-concurrency crawl over an iterative frontier.

    Targets are admitted to the VisitedSet when pulled off the frontier, so a
    URL discovered twice is fetched once. Children are only produced by a
    finished parent, which keeps depth admission causal.
    """

    def __init__(
        self,
        *,
        http: HttpClient,
        config: CrawlConfig,
        listener: Callable[[TargetEvent], None] | None = None,
        extractor: LinkExtractor | None = None,
        writer: FileWriter | None = None,
    ) -> None:
        self.http = http
        self.cfg = config
        self.listener = listener
        self.extractor = extractor or LinkExtractor()
        self.writer = writer or FileWriter()
        self.negotiator = ResumeNegotiator(config)
        self.resolver = RedirectResolver(http, config)
        self.visited = VisitedSet()
        self._destinations: set[Path] = set()
        self._destinations_lock = threading.Lock()
        self._stop = threading.Event()

    def cancel(self) -> None:
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def root_target(self, url: str, destination: Path | None = None) -> Target:
        try:
            canonical = normalize_url(url)
        except ValueError as e:
            raise ConfigError(f"malformed URL {url!r}: {e}") from None
        if not is_http_url(canonical):
            raise ConfigError(f"unsupported URL (need http or https): {url}")
        if destination is None:
            if self.cfg.recursive:
                destination = destination_for_url(canonical, self.cfg.output_dir)
            else:
                destination = filename_for_url(canonical, self.cfg.output_dir)
        return Target(
            url=canonical,
            depth=0,
            anchor_host=host_of(canonical),
            destination=destination,
        )

    def child_target(self, parent: Target, url: str) -> Target:
        return Target(
            url=url,
            depth=parent.depth + 1,
            anchor_host=parent.anchor_host,
            destination=destination_for_url(url, self.cfg.output_dir),
        )

    def crawl(self, seeds: Iterable[str | Target]) -> CrawlSummary:
        # Resolve every root first: a bad seed aborts before any fetch.
        roots = [s if isinstance(s, Target) else self.root_target(s) for s in seeds]
        frontier: deque[Target] = deque(roots)
        summary = CrawlSummary()
        in_flight: dict[Future, Target] = {}

        log.info(
            "crawl started: %d root(s), recursive=%s max_depth=%d workers=%d",
            len(roots),
            self.cfg.recursive,
            self.cfg.max_depth,
            self.cfg.max_concurrent,
        )

        with ThreadPoolExecutor(
            max_workers=self.cfg.max_concurrent,
            thread_name_prefix="crawlget",
        ) as pool:
            while True:
                try:
                    while (
                        frontier
                        and len(in_flight) < self.cfg.max_concurrent
                        and not self._stop.is_set()
                    ):
                        target = frontier.popleft()
                        if not self.visited.try_insert(target.url):
                            log.debug("already visited: %s", target.url)
                            continue
                        in_flight[pool.submit(self._process, target)] = target

                    if not in_flight:
                        break

                    done, _ = wait(
                        in_flight,
                        timeout=_POLL_INTERVAL_S,
                        return_when=FIRST_COMPLETED,
                    )
                except KeyboardInterrupt:
                    log.warning(
                        "interrupted; stopping %d in-flight download(s)",
                        len(in_flight),
                    )
                    self.cancel()
                    continue

                for fut in done:
                    target = in_flight.pop(fut)
                    result, children = fut.result()
                    self._settle(target, result, summary)
                    frontier.extend(children)

        summary.finished_at = utc_iso()
        summary.visited = len(self.visited)
        summary.remaining = len(frontier)
        summary.cancelled = self._stop.is_set()

        log.info(
            "crawl finished: completed=%d skipped=%d failed=%d bytes=%d",
            summary.completed,
            summary.skipped,
            summary.failed,
            summary.bytes_written,
        )
        return summary

    def _settle(
        self,
        target: Target,
        result: FetchResult,
        summary: CrawlSummary,
    ) -> None:
        event = TargetEvent(
            url=target.url,
            outcome=outcome_of(result),
            depth=target.depth,
            destination=target.destination,
            bytes_written=result.bytes_written,
            final_url=result.final_url,
            status_code=result.status_code,
            error=result.error,
            message=result.message,
            warnings=result.warnings,
        )
        summary.record(event)

        if event.outcome == Outcome.FAILED:
            log.warning("failed %s: %s", target.url, result.message)
        else:
            log.info(
                "%s %s -> %s (%d bytes)",
                event.outcome.value,
                target.url,
                target.destination,
                result.bytes_written,
            )

        if self.listener is not None:
            self.listener(event)

    def _process(self, target: Target) -> tuple[FetchResult, list[Target]]:
        try:
            if self._stop.is_set():
                raise FetchError(ErrorKind.CANCELLED, target.url, "crawl cancelled")

            if not self._claim_destination(target.destination):
                return (
                    FetchResult(
                        url=target.url,
                        final_url=target.url,
                        status_code=0,
                        content_type=None,
                        skipped=True,
                        message=f"{target.destination} is written by another URL",
                    ),
                    [],
                )

            plan = self.negotiator.plan(target.destination)
            if plan.mode == PlanMode.CONFLICT:
                raise FetchError(
                    ErrorKind.ALREADY_EXISTS,
                    target.url,
                    f"{target.destination} already exists "
                    "(use force to overwrite or resume to continue)",
                )

            result = self._download(target, plan)
            children, result = self._discover(target, result)
        except FetchError as e:
            return FetchResult.failed(target.url, e), []
        return result, children

    def _claim_destination(self, destination: Path) -> bool:
        # "/docs/" and "/docs/index.html" share a file; the first one wins.
        with self._destinations_lock:
            if destination in self._destinations:
                return False
            self._destinations.add(destination)
            return True

    def _download(self, target: Target, plan: FetchPlan) -> FetchResult:
        warnings: tuple[ErrorKind, ...] = ()
        claimed: str | None = None

        while True:
            resolved = self.resolver.resolve(
                target.url, headers=plan.request_headers()
            )
            with closing(resolved.response) as resp:
                result = resolved.result
                if result.location is not None:
                    return result

                final = normalize_url(result.final_url)
                if final != target.url and final != claimed:
                    if not self.visited.try_insert(final):
                        return replace(
                            result,
                            skipped=True,
                            message=f"redirect target already visited: {final}",
                        )
                    claimed = final

                status = result.status_code
                resumable_416 = status == 416 and plan.mode == PlanMode.RESUME
                if not (200 <= status < 300) and not resumable_416:
                    raise FetchError(
                        ErrorKind.HTTP_ERROR,
                        target.url,
                        f"server returned status {status}",
                    )

                plan, warned = self.negotiator.reconcile(plan, resp)
                warnings += warned
                if plan.refetch:
                    plan = FetchPlan.fresh()
                    continue
                if plan.mode == PlanMode.SKIP:
                    return replace(
                        result,
                        skipped=True,
                        message="already complete",
                        warnings=warnings,
                    )

                written = self.writer.write(
                    target.destination,
                    plan,
                    self._until_cancelled(iter_body(resp), target.url),
                    url=target.url,
                )
                return replace(result, bytes_written=written, warnings=warnings)

    def _until_cancelled(self, chunks: Iterable[bytes], url: str) -> Iterator[bytes]:
        for chunk in chunks:
            if self._stop.is_set():
                raise FetchError(ErrorKind.CANCELLED, url, "crawl cancelled")
            yield chunk

    def _discover(
        self,
        target: Target,
        result: FetchResult,
    ) -> tuple[list[Target], FetchResult]:
        if not self.cfg.recursive or result.skipped or result.location is not None:
            return [], result
        # max_depth is inclusive: a Target at max_depth is fetched, not scanned.
        if target.depth >= self.cfg.max_depth:
            return [], result
        if not is_html(result.content_type):
            log.debug("not scanning %s (%s)", target.url, result.content_type)
            return [], replace(
                result,
                warnings=result.warnings
                + (ErrorKind.UNSUPPORTED_CONTENT_FOR_RECURSION,),
            )

        try:
            with target.destination.open("rb") as f:
                body = f.read(MAX_LINK_SCAN_BYTES)
        except OSError as e:
            raise FetchError(
                ErrorKind.IO_FAILURE, target.url, f"{target.destination}: {e}"
            ) from e

        children: list[Target] = []
        for link in sorted(
            self.extractor.extract(body, result.final_url, result.content_type)
        ):
            if self.cfg.same_domain and host_of(link) != target.anchor_host:
                continue
            if link in self.visited:
                continue
            children.append(self.child_target(target, link))

        log.debug(
            "%s: %d link(s) queued at depth %d",
            target.url,
            len(children),
            target.depth + 1,
        )
        return children, result
