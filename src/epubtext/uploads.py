from __future__ import annotations

import asyncio
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from .core import ProcessedDocument, ProgressEvent, convert_epub
from .errors import EpubFormatError

DEFAULT_WORKERS = 2
MAX_WORKERS = 8
WORKERS_ENV = "EPUBTEXT_WORKERS"
FALLBACK_ERROR_MESSAGE = "Failed to parse EPUB file. It might be corrupted or DRM-protected."


def _normalize_upload_filename(filename: str | None) -> str:
    if isinstance(filename, str):
        candidate = Path(filename).name.strip()
    else:
        candidate = ""
    if not candidate:
        candidate = "upload.epub"
    if not candidate.lower().endswith(".epub"):
        candidate = f"{candidate}.epub"
    return candidate


def _resolve_worker_count(max_workers: int) -> int:
    workers = max_workers
    env_workers = os.getenv(WORKERS_ENV)
    if env_workers:
        try:
            parsed = int(env_workers)
            if parsed > 0:
                workers = parsed
        except ValueError:
            workers = max_workers
    return max(1, min(workers, MAX_WORKERS))


class ConversionJob:
    def __init__(self, data: bytes, filename: str | None) -> None:
        self.id = uuid4().hex
        self.filename = _normalize_upload_filename(filename)
        self.data = data
        self.status = "pending"
        self.message: str | None = "Waiting to start"
        self.error: str | None = None
        self.percent = 0
        self.result: ProcessedDocument | None = None
        self.created_at = datetime.now(timezone.utc)
        self.updated_at = self.created_at
        self.future: Future[None] | None = None
        self.lock = threading.Lock()

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def set_status(self, status: str, message: str | None = None) -> None:
        with self.lock:
            self.status = status
            if message is not None:
                self.message = message
            self._touch()

    def set_error(self, message: str) -> None:
        with self.lock:
            self.status = "error"
            self.error = message
            self.message = message
            self._touch()

    def update_progress(self, event: ProgressEvent) -> None:
        with self.lock:
            self.percent = event.percent
            self.message = event.message
            self._touch()

    def mark_success(self, result: ProcessedDocument) -> None:
        with self.lock:
            self.status = "success"
            self.result = result
            self.percent = 100
            self.message = f"Ready: {result.title}"
            # The archive bytes are not needed once the text exists.
            self.data = b""
            self._touch()

    def wait(self, timeout: float | None = None) -> None:
        if self.future is not None:
            self.future.result(timeout=timeout)

    def to_payload(self) -> dict[str, object]:
        with self.lock:
            result_payload: dict[str, object] | None = None
            if self.result is not None:
                result_payload = {
                    "filename": self.result.filename,
                    "title": self.result.title,
                    "author": self.result.author,
                    "size": self.result.size,
                }
            return {
                "id": self.id,
                "filename": self.filename,
                "status": self.status,
                "message": self.message,
                "error": self.error,
                "progress": self.percent,
                "result": result_payload,
                "created": self.created_at.isoformat(),
                "updated": self.updated_at.isoformat(),
            }


class ConversionManager:
    """Runs conversions on a worker pool; every job gets its own event loop and archive."""

    def __init__(self, max_workers: int = DEFAULT_WORKERS) -> None:
        self.lock = threading.Lock()
        workers = _resolve_worker_count(max_workers)
        self.workers = workers
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="epubtext-convert")
        self.jobs: dict[str, ConversionJob] = {}

    def enqueue(self, job: ConversionJob) -> ConversionJob:
        with self.lock:
            self.jobs[job.id] = job
        job.future = self.executor.submit(self._run_job, job)
        return job

    def submit(self, data: bytes, filename: str | None) -> ConversionJob:
        return self.enqueue(ConversionJob(data, filename))

    def get(self, job_id: str) -> ConversionJob | None:
        with self.lock:
            return self.jobs.get(job_id)

    def list_jobs(self) -> list[dict[str, object]]:
        with self.lock:
            snapshot = list(self.jobs.values())
        snapshot.sort(key=lambda job: job.updated_at, reverse=True)
        return [job.to_payload() for job in snapshot]

    def shutdown(self, wait: bool = False) -> None:
        self.executor.shutdown(wait=wait, cancel_futures=False)

    def __enter__(self) -> "ConversionManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown(wait=True)

    def _run_job(self, job: ConversionJob) -> None:
        job.set_status("running", "Preparing conversion…")
        try:
            result = asyncio.run(convert_epub(job.data, job.filename, progress=job.update_progress))
        except EpubFormatError as exc:
            job.set_error(str(exc) or FALLBACK_ERROR_MESSAGE)
            return
        except Exception as exc:
            job.set_error(f"{exc.__class__.__name__}: {exc}")
            return
        job.mark_success(result)


__all__ = ["ConversionJob", "ConversionManager"]
