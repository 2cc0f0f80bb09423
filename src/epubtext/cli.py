from __future__ import annotations

import argparse
import sys
import threading
import time
from importlib import metadata
from pathlib import Path

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

import tomllib

from .book_io import format_bytes, output_name_for, preview_text, write_text_export
from .core import ProcessedDocument, ProgressEvent, convert_epub_file
from .errors import EpubFormatError
from .logging_utils import configure_logging
from .uploads import ConversionJob, ConversionManager

# Size guidance only; larger inputs are still converted.
SOFT_SIZE_LIMIT = 100 * 1024 * 1024


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("epubtext")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"epubtext {__version__}",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="EPUB → TXT: reading-order plain text with the table of contents removed.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "input_path",
        help="Path to input .epub or a directory containing .epub files",
    )
    ap.add_argument(
        "-o",
        "--output-name",
        help="Optional name for the output .txt (same folder as input)",
    )
    ap.add_argument(
        "--metadata",
        action="store_true",
        help="Also write a <name>.epubtext.json sidecar with title, author and size.",
    )
    ap.add_argument(
        "--preview",
        action="store_true",
        help="Print the book title, author, size and the first 2000 characters after converting.",
    )
    ap.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=1,
        help="Convert up to N books of a directory concurrently (default: 1).",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (skipped ToC entries, empty chapters).",
    )
    return ap


class _RichProgress:
    def __init__(self, console: Console, enabled: bool = True) -> None:
        self.console = console
        self.enabled = enabled and console.is_terminal
        self.lock = threading.Lock()
        self.task_by_key: dict[str, TaskID] = {}
        self.last_percent: dict[str, int] = {}
        if not self.enabled:
            self.progress: Progress | None = None
            return
        self.progress = Progress(
            TextColumn("{task.description}", justify="left"),
            BarColumn(bar_width=None),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[detail]}", justify="left"),
            console=self.console,
            auto_refresh=True,
            transient=False,
        )
        self.progress.start()

    @staticmethod
    def _truncate(text: str, width: int = 28) -> str:
        text = text.strip()
        if len(text) <= width:
            return text
        return text[: max(0, width - 1)] + "…"

    def update(self, key: str, event: ProgressEvent) -> None:
        with self.lock:
            previous = self.last_percent.get(key, 0)
            if event.percent < previous:
                return
            self.last_percent[key] = event.percent
            if self.progress is None:
                return
            task_id = self.task_by_key.get(key)
            if task_id is None:
                task_id = self.progress.add_task(self._truncate(key), total=100, detail="")
                self.task_by_key[key] = task_id
            self.progress.update(task_id, completed=event.percent, detail=event.message)

    def callback_for(self, key: str):
        def _handle(event: ProgressEvent) -> None:
            self.update(key, event)

        return _handle

    def close(self) -> None:
        if self.progress is None:
            return
        with self.lock:
            self.progress.stop()


def _resolve_output_path(inp_path: Path, output_name: str | None) -> Path:
    if not output_name:
        return inp_path.with_name(output_name_for(inp_path.name))
    out_name_path = Path(output_name)
    if out_name_path.parent not in (Path("."), Path("")):
        raise ValueError(
            "Output name must not contain directory components; it is saved next to the EPUB."
        )
    return inp_path.with_name(out_name_path.name)


def _print_preview(console: Console, document: ProcessedDocument) -> None:
    console.print(document.title, style="bold", markup=False, highlight=False)
    console.print(f"{document.author} · {format_bytes(document.size)} (Text)", markup=False, highlight=False)
    console.print(preview_text(document.content), markup=False, highlight=False)


def _finish(
    document: ProcessedDocument,
    output_path: Path,
    args: argparse.Namespace,
    console: Console,
) -> None:
    export = write_text_export(document, output_path, write_metadata=args.metadata)
    console.print(f"Wrote {export.text_path} ({format_bytes(export.size)})", markup=False, highlight=False)
    if args.preview:
        _print_preview(console, document)


def _warn_if_large(console: Console, path: Path) -> None:
    size = path.stat().st_size
    if size > SOFT_SIZE_LIMIT:
        console.print(
            f"Warning: {path.name} is {format_bytes(size)}; files above "
            f"{format_bytes(SOFT_SIZE_LIMIT)} may convert slowly.",
            markup=False,
            highlight=False,
        )


def _convert_sequential(epubs: list[Path], args: argparse.Namespace, console: Console, err_console: Console) -> int:
    failures = 0
    progress = _RichProgress(err_console)
    try:
        for epub_path in epubs:
            _warn_if_large(err_console, epub_path)
            try:
                document = convert_epub_file(epub_path, progress=progress.callback_for(epub_path.name))
            except EpubFormatError as exc:
                err_console.print(f"Failed to convert {epub_path.name}: {exc}", markup=False, highlight=False)
                failures += 1
                continue
            output_path = _resolve_output_path(epub_path, args.output_name)
            _finish(document, output_path, args, console)
    finally:
        progress.close()
    return 1 if failures else 0


def _convert_parallel(epubs: list[Path], args: argparse.Namespace, console: Console, err_console: Console) -> int:
    failures = 0
    progress = _RichProgress(err_console)
    jobs: list[tuple[Path, ConversionJob]] = []
    try:
        with ConversionManager(max_workers=args.jobs) as manager:
            for epub_path in epubs:
                _warn_if_large(err_console, epub_path)
                jobs.append((epub_path, manager.submit(epub_path.read_bytes(), epub_path.name)))
            pending = list(jobs)
            while pending:
                still_running: list[tuple[Path, ConversionJob]] = []
                for epub_path, job in pending:
                    with job.lock:
                        status, percent, message = job.status, job.percent, job.message
                    progress.update(job.filename, ProgressEvent(percent, message or ""))
                    if status in {"success", "error"}:
                        continue
                    still_running.append((epub_path, job))
                pending = still_running
                if pending:
                    time.sleep(0.1)
    finally:
        progress.close()
    for epub_path, job in jobs:
        if job.result is None:
            err_console.print(f"Failed to convert {epub_path.name}: {job.error}", markup=False, highlight=False)
            failures += 1
            continue
        _finish(job.result, _resolve_output_path(epub_path, None), args, console)
    return 1 if failures else 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)
    err_console = Console(stderr=True, soft_wrap=True)
    configure_logging(args.debug, console=err_console)
    console = Console(soft_wrap=True)

    inp_path = Path(args.input_path)
    if not inp_path.exists():
        raise FileNotFoundError(f"Input path not found: {inp_path}")

    if inp_path.is_dir():
        if args.output_name:
            raise ValueError("Output name cannot be used when processing a directory.")
        epubs = sorted(p for p in inp_path.iterdir() if p.suffix.lower() == ".epub")
        if not epubs:
            raise FileNotFoundError(f"No .epub files found in directory: {inp_path}")
        if args.jobs > 1 and len(epubs) > 1:
            return _convert_parallel(epubs, args, console, err_console)
        return _convert_sequential(epubs, args, console, err_console)

    if inp_path.suffix.lower() != ".epub":
        raise ValueError(f"Input must be an .epub file or directory: {inp_path}")
    # Validate before spending time on the conversion.
    _resolve_output_path(inp_path, args.output_name)
    return _convert_sequential([inp_path], args, console, err_console)


if __name__ == "__main__":
    raise SystemExit(main())
