from __future__ import annotations

import argparse
import sys
from contextlib import nullcontext
from pathlib import Path

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from . import __version__
from .config import DEFAULT_USER_AGENT, CrawlConfig
from .crawl import CrawlSummary, Crawler, Outcome, TargetEvent
from .errors import ConfigError, ErrorKind
from .http_client import HttpClient
from .logging_config import configure_logging
from .manifest import ManifestWriter

EXIT_OK = 0
EXIT_GENERIC = 1
EXIT_USAGE = 2
EXIT_IO = 3
EXIT_NETWORK = 4
EXIT_TLS = 5
EXIT_SERVER = 8
EXIT_CANCELLED = 130

_EXIT_BY_KIND = {
    ErrorKind.IO_FAILURE: EXIT_IO,
    ErrorKind.ALREADY_EXISTS: EXIT_IO,
    ErrorKind.CONNECTION_FAILURE: EXIT_NETWORK,
    ErrorKind.TIMEOUT: EXIT_NETWORK,
    ErrorKind.MALFORMED_RESPONSE: EXIT_NETWORK,
    ErrorKind.TOO_MANY_REDIRECTS: EXIT_NETWORK,
    ErrorKind.TLS_FAILURE: EXIT_TLS,
    ErrorKind.HTTP_ERROR: EXIT_SERVER,
    ErrorKind.INVALID_URL: EXIT_USAGE,
}


def exit_code_for(summary: CrawlSummary) -> int:
    if summary.cancelled:
        return EXIT_CANCELLED
    if not summary.any_failed:
        return EXIT_OK
    kind = summary.primary_error
    if kind is None:
        return EXIT_GENERIC
    return _EXIT_BY_KIND.get(kind, EXIT_GENERIC)


def _non_negative_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: {value}")
    return value


def _positive_int(text: str) -> int:
    value = _non_negative_int(text)
    if value < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return value


def _positive_float(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0: {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="crawlget",
        description="Download HTTP(S) resources, optionally crawling links.",
    )
    p.add_argument("urls", nargs="+", metavar="URL")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    out = p.add_argument_group("output")
    out.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output file (single non-recursive URL only)",
    )
    out.add_argument(
        "-P",
        "--directory-prefix",
        dest="out_dir",
        type=Path,
        default=Path("."),
        help="Directory to save files under (default: current directory)",
    )
    out.add_argument(
        "-c",
        "--continue",
        dest="resume",
        action="store_true",
        help="Resume partially downloaded files",
    )
    out.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Overwrite existing files",
    )
    out.add_argument(
        "--manifest-dir",
        type=Path,
        default=None,
        help="Write manifest.jsonl/manifest.json describing the run here",
    )

    net = p.add_argument_group("network")
    net.add_argument(
        "-r",
        "--max-redirects",
        type=_non_negative_int,
        default=10,
    )
    net.add_argument(
        "--no-follow",
        action="store_true",
        help="Do not follow redirects",
    )
    net.add_argument(
        "--timeout",
        type=_positive_float,
        default=30.0,
        help="Connect/read timeout in seconds",
    )
    net.add_argument("-U", "--user-agent", default=DEFAULT_USER_AGENT)

    rec = p.add_argument_group("recursion")
    rec.add_argument("-R", "--recursive", action="store_true")
    rec.add_argument(
        "-l",
        "--max-depth",
        type=_non_negative_int,
        default=5,
    )
    rec.add_argument(
        "-j",
        "--max-concurrent",
        type=_positive_int,
        default=5,
        help="Maximum simultaneous downloads",
    )
    rec.add_argument(
        "-d",
        "--same-domain",
        action="store_true",
        help="Only follow links on the host of the starting URL",
    )

    ui = p.add_argument_group("display")
    ui.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Repeatable; -vv for debug output",
    )
    ui.add_argument("-q", "--quiet", action="store_true")
    ui.add_argument("--no-progress", action="store_true")
    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.output is not None and (args.recursive or len(args.urls) > 1):
        parser.error("--output only applies to a single non-recursive URL")

    configure_logging(-1 if args.quiet else int(args.verbose))

    try:
        cfg = CrawlConfig(
            max_redirects=int(args.max_redirects),
            follow_redirects=not bool(args.no_follow),
            resume=bool(args.resume),
            force=bool(args.force),
            recursive=bool(args.recursive),
            max_depth=int(args.max_depth),
            max_concurrent=int(args.max_concurrent),
            same_domain=bool(args.same_domain),
            timeout_s=float(args.timeout),
            user_agent=str(args.user_agent),
            output_dir=args.out_dir,
        )
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    manifest = ManifestWriter(args.manifest_dir) if args.manifest_dir else None
    show_progress = not (args.no_progress or args.quiet)

    with HttpClient(timeout_s=cfg.timeout_s, user_agent=cfg.user_agent) as http:
        bar = tqdm(
            total=None if cfg.recursive else len(args.urls),
            unit=" file",
            desc="crawlget",
            file=sys.stderr,
            disable=None if show_progress else True,
        )

        def on_event(event: TargetEvent) -> None:
            if manifest is not None:
                manifest.append(event.to_dict())
            bar.update(1)
            if event.outcome == Outcome.FAILED:
                bar.write(
                    f"{event.url}: {event.error.value if event.error else 'error'}"
                    f" ({event.message})",
                    file=sys.stderr,
                )

        crawler = Crawler(http=http, config=cfg, listener=on_event)
        try:
            seeds = [
                crawler.root_target(u, destination=args.output) for u in args.urls
            ]
        except ConfigError as e:
            bar.close()
            print(str(e), file=sys.stderr)
            return EXIT_USAGE

        destinations = [s.destination for s in seeds]
        if not cfg.recursive and len(set(destinations)) != len(destinations):
            bar.close()
            print(
                "several URLs would be saved to the same file; "
                "use --recursive or download them separately",
                file=sys.stderr,
            )
            return EXIT_USAGE

        redirect_logs = nullcontext() if bar.disable else logging_redirect_tqdm()
        with bar, redirect_logs:
            summary = crawler.crawl(seeds)

    if manifest is not None:
        summary_doc = summary.to_dict()
        summary_doc["config"] = {
            "urls": list(args.urls),
            "max_redirects": cfg.max_redirects,
            "follow_redirects": cfg.follow_redirects,
            "resume": cfg.resume,
            "force": cfg.force,
            "recursive": cfg.recursive,
            "max_depth": cfg.max_depth,
            "max_concurrent": cfg.max_concurrent,
            "same_domain": cfg.same_domain,
            "output_dir": str(cfg.output_dir),
        }
        manifest.write_summary(summary_doc)

    if not args.quiet:
        print(
            "crawlget: "
            f"completed={summary.completed} "
            f"skipped={summary.skipped} "
            f"redirected={summary.redirected} "
            f"failed={summary.failed} "
            f"bytes={summary.bytes_written}",
            file=sys.stderr,
        )
    return exit_code_for(summary)


if __name__ == "__main__":
    raise SystemExit(main())
