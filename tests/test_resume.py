from pathlib import Path

import pytest

from crawlget.config import CrawlConfig
from crawlget.errors import ErrorKind, FetchError
from crawlget.resume import (
    FetchPlan,
    PartialFile,
    PlanMode,
    ResumeNegotiator,
    parse_content_range,
)


def _existing(tmp_path: Path, data: bytes = b"12345") -> Path:
    path = tmp_path / "file.bin"
    path.write_bytes(data)
    return path


def test_missing_destination_is_fresh(tmp_path: Path):
    plan = ResumeNegotiator(CrawlConfig()).plan(tmp_path / "nope.bin")
    assert plan.mode == PlanMode.FRESH
    assert plan.request_headers() == {}


def test_existing_without_flags_conflicts(tmp_path: Path):
    plan = ResumeNegotiator(CrawlConfig()).plan(_existing(tmp_path))
    assert plan.mode == PlanMode.CONFLICT


def test_force_wins_over_resume(tmp_path: Path):
    cfg = CrawlConfig(force=True, resume=True)
    plan = ResumeNegotiator(cfg).plan(_existing(tmp_path))
    assert plan.mode == PlanMode.FRESH


def test_resume_requests_remaining_range(tmp_path: Path):
    plan = ResumeNegotiator(CrawlConfig(resume=True)).plan(_existing(tmp_path))
    assert plan == FetchPlan.resume_from(5)
    assert plan.request_headers() == {"Range": "bytes=5-"}


def test_resume_of_empty_file_is_fresh(tmp_path: Path):
    plan = ResumeNegotiator(CrawlConfig(resume=True)).plan(_existing(tmp_path, b""))
    assert plan.mode == PlanMode.FRESH


def test_directory_destination_conflicts(tmp_path: Path):
    plan = ResumeNegotiator(CrawlConfig(force=True)).plan(tmp_path)
    assert plan.mode == PlanMode.CONFLICT


def test_partial_file_probe(tmp_path: Path):
    assert PartialFile.probe(tmp_path / "missing") is None
    partial = PartialFile.probe(_existing(tmp_path))
    assert partial is not None
    assert partial.size == 5


@pytest.mark.parametrize(
    "value, expected",
    [
        ("bytes 5-9/10", (5, 10)),
        ("bytes */10", (None, 10)),
        ("bytes 0-9/*", (0, None)),
        ("garbage", (None, None)),
        (None, (None, None)),
    ],
)
def test_parse_content_range(value, expected):
    assert parse_content_range(value) == expected


def _response(http, requests_mock, status: int, headers: dict | None = None):
    requests_mock.get("https://a.example/f", status_code=status, headers=headers or {})
    return http.fetch("https://a.example/f")


def test_reconcile_partial_content_keeps_resume(http, requests_mock):
    resp = _response(
        http, requests_mock, 206, {"Content-Range": "bytes 5-9/10"}
    )
    plan, warnings = ResumeNegotiator(CrawlConfig()).reconcile(
        FetchPlan.resume_from(5), resp
    )
    assert plan == FetchPlan.resume_from(5)
    assert warnings == ()


def test_reconcile_mismatched_range_is_malformed(http, requests_mock):
    resp = _response(
        http, requests_mock, 206, {"Content-Range": "bytes 0-9/10"}
    )
    with pytest.raises(FetchError) as info:
        ResumeNegotiator(CrawlConfig()).reconcile(FetchPlan.resume_from(5), resp)
    assert info.value.kind == ErrorKind.MALFORMED_RESPONSE


def test_reconcile_full_response_degrades_to_fresh(http, requests_mock):
    resp = _response(http, requests_mock, 200)
    plan, warnings = ResumeNegotiator(CrawlConfig()).reconcile(
        FetchPlan.resume_from(5), resp
    )
    assert plan.mode == PlanMode.FRESH
    assert not plan.refetch
    assert warnings == (ErrorKind.RESUME_NOT_SUPPORTED,)


def test_reconcile_416_on_complete_file_skips(http, requests_mock):
    resp = _response(http, requests_mock, 416, {"Content-Range": "bytes */5"})
    plan, warnings = ResumeNegotiator(CrawlConfig()).reconcile(
        FetchPlan.resume_from(5), resp
    )
    assert plan.mode == PlanMode.SKIP
    assert warnings == ()


def test_reconcile_416_on_oversized_file_refetches(http, requests_mock):
    resp = _response(http, requests_mock, 416, {"Content-Range": "bytes */3"})
    plan, warnings = ResumeNegotiator(CrawlConfig()).reconcile(
        FetchPlan.resume_from(5), resp
    )
    assert plan.mode == PlanMode.FRESH
    assert plan.refetch
    assert warnings == (ErrorKind.RESUME_NOT_SUPPORTED,)


def test_reconcile_ignores_fresh_plans(http, requests_mock):
    resp = _response(http, requests_mock, 200)
    plan, warnings = ResumeNegotiator(CrawlConfig()).reconcile(FetchPlan.fresh(), resp)
    assert plan == FetchPlan.fresh()
    assert warnings == ()
