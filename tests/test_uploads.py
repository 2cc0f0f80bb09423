from __future__ import annotations

import pytest

from epubtext.core import ProgressEvent
from epubtext.uploads import (
    ConversionJob,
    ConversionManager,
    _normalize_upload_filename,
    _resolve_worker_count,
)


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("book.epub", "book.epub"),
        ("/tmp/uploads/book.epub", "book.epub"),
        ("book", "book.epub"),
        ("   ", "upload.epub"),
        (None, "upload.epub"),
    ],
)
def test_normalize_upload_filename(filename, expected) -> None:
    assert _normalize_upload_filename(filename) == expected


def test_worker_count_honours_env_and_clamps(monkeypatch) -> None:
    monkeypatch.delenv("EPUBTEXT_WORKERS", raising=False)
    assert _resolve_worker_count(2) == 2
    assert _resolve_worker_count(50) == 8
    monkeypatch.setenv("EPUBTEXT_WORKERS", "3")
    assert _resolve_worker_count(2) == 3
    monkeypatch.setenv("EPUBTEXT_WORKERS", "not-a-number")
    assert _resolve_worker_count(2) == 2


def test_manager_converts_books_concurrently(make_epub) -> None:
    first = make_epub([("c1", "ch1.xhtml", "", "<p>first</p>")], name="first.epub")
    second = make_epub([("c1", "ch1.xhtml", "", "<p>second</p>")], name="second.epub")

    with ConversionManager(max_workers=2) as manager:
        job_one = manager.submit(first.read_bytes(), first.name)
        job_two = manager.submit(second.read_bytes(), second.name)
        job_one.wait(timeout=30)
        job_two.wait(timeout=30)

    assert job_one.status == "success"
    assert job_one.result is not None and job_one.result.content == "first"
    assert job_two.result is not None and job_two.result.content == "second"
    assert job_one.percent == 100
    assert job_one.data == b""
    payloads = {payload["id"]: payload for payload in manager.list_jobs()}
    assert payloads[job_one.id]["status"] == "success"
    assert payloads[job_one.id]["result"]["title"] == "Sample Book"
    assert manager.get(job_two.id) is job_two


def test_manager_records_format_errors() -> None:
    with ConversionManager(max_workers=1) as manager:
        job = manager.submit(b"not an epub", "broken.epub")
        job.wait(timeout=30)

    assert job.status == "error"
    assert job.result is None
    assert job.error is not None and "not a zip archive" in job.error
    payload = job.to_payload()
    assert payload["status"] == "error"
    assert payload["result"] is None


def test_job_progress_updates_message() -> None:
    job = ConversionJob(b"", "book.epub")
    assert job.to_payload()["status"] == "pending"
    job.update_progress(ProgressEvent(45, "Processing chapter 2 of 4..."))
    payload = job.to_payload()
    assert payload["progress"] == 45
    assert payload["message"] == "Processing chapter 2 of 4..."
