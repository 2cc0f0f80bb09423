from __future__ import annotations

import struct
import zipfile
from pathlib import Path
from typing import Callable, Mapping, Sequence

import pytest

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def xhtml(body: str, title: str = "Chapter") -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>{title}</title></head>
  <body>{body}</body>
</html>
"""


def build_opf(
    items: Sequence[tuple[str, str, str]],
    spine: Sequence[str],
    *,
    title: str | None = "Sample Book",
    author: str | None = "Sample Author",
) -> str:
    meta_parts = []
    if title is not None:
        meta_parts.append(f"<dc:title>{title}</dc:title>")
    if author is not None:
        meta_parts.append(f"<dc:creator>{author}</dc:creator>")
    manifest_parts = []
    for item_id, href, properties in items:
        props = f' properties="{properties}"' if properties else ""
        manifest_parts.append(
            f'<item id="{item_id}" href="{href}" media-type="application/xhtml+xml"{props}/>'
        )
    spine_parts = [f'<itemref idref="{idref}"/>' for idref in spine]
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    {"".join(meta_parts)}
  </metadata>
  <manifest>
    {"".join(manifest_parts)}
  </manifest>
  <spine>
    {"".join(spine_parts)}
  </spine>
</package>
"""


def write_epub(
    target: Path,
    files: Mapping[str, str | bytes],
    *,
    opf_path: str | None = "OEBPS/content.opf",
) -> Path:
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("mimetype", "application/epub+zip")
        if opf_path is not None:
            zf.writestr("META-INF/container.xml", CONTAINER_XML.format(opf_path=opf_path))
        for name, content in files.items():
            zf.writestr(name, content)
    return target


def corrupt_entry(path: Path, name: str) -> Path:
    """Flip the first compressed byte of one archive entry in place."""
    with zipfile.ZipFile(path) as zf:
        offset = zf.getinfo(name).header_offset
    data = bytearray(path.read_bytes())
    name_len, extra_len = struct.unpack("<HH", data[offset + 26 : offset + 30])
    data[offset + 30 + name_len + extra_len] ^= 0xFF
    path.write_bytes(bytes(data))
    return path


@pytest.fixture
def make_epub(tmp_path: Path) -> Callable[..., Path]:
    """Build a simple EPUB whose chapters live under OEBPS/."""

    def _make(
        chapters: Sequence[tuple[str, str, str, str]],
        *,
        name: str = "sample.epub",
        spine: Sequence[str] | None = None,
        title: str | None = "Sample Book",
        author: str | None = "Sample Author",
        skip_files: Sequence[str] = (),
    ) -> Path:
        # chapters: (id, href, properties, body)
        items = [(item_id, href, props) for item_id, href, props, _ in chapters]
        order = list(spine) if spine is not None else [item_id for item_id, *_ in chapters]
        files = {"OEBPS/content.opf": build_opf(items, order, title=title, author=author)}
        for _, href, _, body in chapters:
            if href in skip_files:
                continue
            files[f"OEBPS/{href}"] = xhtml(body)
        return write_epub(tmp_path / name, files)

    return _make
