from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import NamedTuple

from .content import split_post_name
from .errors import ContentError
from .models import DocumentKind, SourceFile
from .utils import with_retries

logger = logging.getLogger(__name__)

POSTS_DIR = "_posts"
TABS_DIR = "_tabs"
ASSETS_DIR = "assets"
SOURCE_SUFFIXES = {".md", ".markdown", ".html"}
PIN_ORDERS = {"filename", "mtime"}


class SourceRef(NamedTuple):
    path: Path
    identity: Path
    kind: DocumentKind


def list_files(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return sorted((path for path in root.rglob("*") if path.is_file()), key=lambda p: p.as_posix())


def scan_sources(input_dir: Path) -> list[SourceRef]:
    """Posts and tabs under ``input_dir``, ordered by identity."""
    refs = []
    for path in list_files(input_dir / POSTS_DIR):
        if path.suffix.lower() in SOURCE_SUFFIXES and not path.name.startswith("."):
            refs.append(SourceRef(path, path.relative_to(input_dir), DocumentKind.POST))
    tabs_dir = input_dir / TABS_DIR
    if tabs_dir.is_dir():
        for path in tabs_dir.iterdir():
            if path.is_file() and path.suffix.lower() in SOURCE_SUFFIXES and not path.name.startswith("."):
                refs.append(SourceRef(path, path.relative_to(input_dir), DocumentKind.TAB))
    refs.sort(key=lambda ref: ref.identity.as_posix())
    return refs


def list_assets(input_dir: Path) -> list[tuple[Path, Path]]:
    """Static files to copy, as ``(source, path relative to the output root)``."""
    assets_dir = input_dir / ASSETS_DIR
    return [(path, path.relative_to(input_dir)) for path in list_files(assets_dir)]


def read_text(path: Path, retries: int) -> str:
    return with_retries(lambda: path.read_text(encoding="utf-8"), retries, f"Reading {path}")


def read_bytes(path: Path, retries: int) -> bytes:
    return with_retries(path.read_bytes, retries, f"Reading {path}")


def read_source(ref: SourceRef, retries: int = 3, pin_order: str = "filename") -> SourceFile:
    """Load one source file along with the timestamp used to order it.

    Posts must carry a ``YYYY-MM-DD-`` prefix in their file name. Text that is
    not valid UTF-8 is a ContentError for this file alone.
    """
    published = None
    if ref.kind is DocumentKind.POST:
        published, _ = split_post_name(ref.path.stem)
        if published is None:
            raise ContentError(ref.identity, "post file name must start with a YYYY-MM-DD- date")
    try:
        text = read_text(ref.path, retries)
    except UnicodeDecodeError as exc:
        line = ref.path.read_bytes()[: exc.start].count(b"\n") + 1
        message = f"file is not valid UTF-8: {exc.reason} at byte {exc.start}"
        raise ContentError(ref.identity, message, line=line) from None
    if pin_order == "mtime" or published is None:
        mtime = with_retries(lambda: ref.path.stat().st_mtime, retries, f"Inspecting {ref.path}")
        timestamp = dt.datetime.fromtimestamp(mtime)
    else:
        timestamp = dt.datetime.combine(published, dt.time())
    logger.debug("Read %s (%d chars)", ref.identity, len(text))
    return SourceFile(
        identity=ref.identity,
        kind=ref.kind,
        text=text,
        timestamp=timestamp,
        published=published,
    )
