from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Callable, Iterable, TypeVar

from .errors import PostforgeError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_DELAY = 0.05
MANIFEST_NAME = ".postforge-manifest.json"


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return False


def parse_int(value: object, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def join_url(base: str, path: str) -> str:
    base = base.rstrip("/")
    path = path.lstrip("/")
    if not path:
        return base
    return f"{base}/{path}"


def iso_date(value: dt.datetime) -> str:
    value = value.replace(tzinfo=dt.timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def with_retries(action: Callable[[], T], attempts: int, what: str, delay: float = RETRY_DELAY) -> T:
    """Run ``action``, retrying ``OSError`` up to ``attempts`` extra times.

    Missing files are not transient and are raised straight away.
    """
    attempts = max(0, attempts)
    attempt = 0
    while True:
        try:
            return action()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise
        except OSError as exc:
            if attempt >= attempts:
                raise
            attempt += 1
            logger.warning("%s failed (%s), retrying (attempt %d/%d)", what, exc, attempt, attempts)
            time.sleep(delay * attempt)


def relative_root(path: Path) -> str:
    """Relative prefix from an output file back to the output root."""
    depth = len(path.parts) - 1
    if depth <= 0:
        return "."
    return "/".join([".."] * depth)


def check_prune_target(output_dir: Path, input_dir: Path) -> None:
    output_resolved = output_dir.resolve()
    input_resolved = input_dir.resolve()
    if output_resolved == input_resolved:
        raise PostforgeError("Refusing to prune: output directory is the input directory.")
    if input_resolved.is_relative_to(output_resolved):
        raise PostforgeError("Refusing to prune: output directory contains the input directory.")


def load_manifest(output_dir: Path) -> set[str]:
    """Output paths recorded by the previous build into ``output_dir``.

    Entries that are absolute or climb out of the directory are ignored.
    """
    path = output_dir / MANIFEST_NAME
    if not path.exists():
        return set()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable build manifest %s", path)
        return set()
    files = data.get("files", []) if isinstance(data, dict) else []
    manifest = set()
    for item in files:
        if not isinstance(item, str):
            continue
        rel = Path(item)
        if rel.is_absolute() or ".." in rel.parts or rel.as_posix() == MANIFEST_NAME:
            continue
        manifest.add(rel.as_posix())
    return manifest


def manifest_text(files: Iterable[str]) -> str:
    return json.dumps({"files": sorted(set(files))}, indent=2, ensure_ascii=True) + "\n"
