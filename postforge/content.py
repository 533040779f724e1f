from __future__ import annotations

import datetime as dt
import re
from pathlib import Path
from types import MappingProxyType
from typing import Optional

import yaml

from .errors import ContentError, MalformedFrontMatter
from .models import Document, SourceFile
from .utils import parse_bool

FRONT_MATTER_OPEN = "---"
FRONT_MATTER_CLOSE = {"---", "..."}
POST_NAME_RE = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})-(?P<name>.+)$")
BOOL_WORDS = {"1", "0", "true", "false", "yes", "no", "y", "n", "on", "off"}
RECOGNIZED_KEYS = {"title", "author", "pin", "categories", "category", "tags", "tag", "order", "icon"}


def slugify(text: str) -> str:
    text = text.lower()
    text = re.sub(r"[^\w]+", "-", text, flags=re.UNICODE)
    text = text.strip("-_").replace("_", "-")
    return text or "post"


def parse_list(value: str) -> list[str]:
    value = value.strip()
    if value.startswith("[") and value.endswith("]"):
        inner = value[1:-1]
        items = [item.strip().strip("'\"") for item in inner.split(",")]
    else:
        items = [item.strip() for item in value.split(",")]
    return [item for item in items if item]


def split_post_name(stem: str) -> tuple[Optional[dt.date], str]:
    """Split ``2024-03-01-hello`` into its publication date and name."""
    match = POST_NAME_RE.match(stem)
    if not match:
        return None, stem
    try:
        published = dt.date(int(match.group("year")), int(match.group("month")), int(match.group("day")))
    except ValueError:
        return None, stem
    return published, match.group("name")


def split_front_matter(text: str, identity: Path) -> tuple[Optional[str], str, int]:
    """Return ``(block, body, body_line)``.

    ``block`` is None when the file carries no front matter. ``body_line`` is
    the 1-based source line the body starts on.
    """
    clean_text = text.lstrip("\ufeff")
    lines = clean_text.splitlines()
    if not lines or lines[0].rstrip() != FRONT_MATTER_OPEN:
        return None, clean_text, 1

    for i in range(1, len(lines)):
        if lines[i].rstrip() in FRONT_MATTER_CLOSE:
            block = "\n".join(lines[1:i])
            body = "\n".join(lines[i + 1 :])
            return block, body, i + 2
    raise MalformedFrontMatter(identity, "front matter block is never closed", line=1)


def load_front_matter(block: str, identity: Path) -> dict:
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        line = mark.line + 2 if mark is not None else 1
        problem = getattr(exc, "problem", None) or str(exc)
        raise MalformedFrontMatter(identity, f"invalid front matter: {problem}", line=line) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedFrontMatter(identity, "front matter must be a key-value mapping", line=2)
    return {str(key).strip().lower(): value for key, value in data.items()}


def _key_line(block: str, key: str) -> int:
    pattern = re.compile(rf"^\s*{re.escape(key)}\s*:", re.IGNORECASE)
    for index, line in enumerate(block.splitlines()):
        if pattern.match(line):
            return index + 2
    return 1


def _as_text(value: object) -> Optional[str]:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (bool, list, dict)) or value is None:
        return None
    if isinstance(value, (int, float, dt.date)):
        return str(value)
    return None


def _string_list(value: object, key: str, block: str, identity: Path) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = parse_list(value)
    elif isinstance(value, (list, tuple)):
        items = []
        for item in value:
            text = _as_text(item)
            if text is None:
                raise MalformedFrontMatter(identity, f"'{key}' entries must be strings", line=_key_line(block, key))
            items.append(text)
    else:
        raise MalformedFrontMatter(identity, f"'{key}' must be a list of strings", line=_key_line(block, key))
    seen: dict[str, None] = {}
    for item in items:
        if item:
            seen.setdefault(item, None)
    return tuple(seen)


def extract_title(identity: Path, body: str) -> tuple[str, str, int]:
    """Title for a file without front matter: a leading ``# `` heading, else the file name.

    Returns the title, the remaining body and the number of lines dropped.
    """
    lines = body.splitlines()
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("# "):
            title = stripped[2:].strip()
            if title:
                rest = lines[i + 1 :]
                while rest and not rest[0].strip():
                    rest = rest[1:]
                return title, "\n".join(rest), len(lines) - len(rest)
        if stripped:
            break
    _, name = split_post_name(identity.stem)
    title = re.sub(r"[-_]+", " ", name).strip()
    if not title:
        return identity.stem, body, 0
    return title[:1].upper() + title[1:], body, 0


def parse_front_matter(text: str, identity: Path) -> tuple[dict, str, str, int]:
    """Return ``(meta, body, block, body_line)``; ``meta`` is empty without front matter."""
    block, body, body_line = split_front_matter(text, identity)
    if block is None:
        return {}, body, "", body_line
    return load_front_matter(block, identity), body, block, body_line


def parse_document(source: SourceFile) -> Document:
    """Build a Document from one source file.

    Raises MalformedFrontMatter for unparseable metadata or a missing title,
    and ContentError for an empty body.
    """
    identity = source.identity
    meta, body, block, body_line = parse_front_matter(source.text, identity)

    if meta:
        title = _as_text(meta.get("title"))
        if title is None and meta.get("title") is not None:
            raise MalformedFrontMatter(identity, "'title' must be a string", line=_key_line(block, "title"))
        if not title:
            raise MalformedFrontMatter(identity, "missing required key 'title'", line=1)
    else:
        title, body, dropped = extract_title(identity, body)
        body_line += dropped

    if not body.strip():
        raise ContentError(identity, "document body is empty")

    author_value = meta.get("author")
    if isinstance(author_value, (list, tuple)):
        author = ", ".join(text for text in (_as_text(item) for item in author_value) if text)
    else:
        author = _as_text(author_value) or ""

    pin_value = meta.get("pin", False)
    if isinstance(pin_value, str) and pin_value.strip().lower() not in BOOL_WORDS:
        raise MalformedFrontMatter(identity, f"'pin' must be a boolean, got {pin_value!r}", line=_key_line(block, "pin"))
    if isinstance(pin_value, (list, dict)):
        raise MalformedFrontMatter(identity, "'pin' must be a boolean", line=_key_line(block, "pin"))
    pin = parse_bool(pin_value)

    order_value = meta.get("order")
    order = None
    if order_value is not None:
        if isinstance(order_value, bool):
            raise MalformedFrontMatter(identity, "'order' must be an integer", line=_key_line(block, "order"))
        try:
            order = int(str(order_value).strip())
        except ValueError:
            raise MalformedFrontMatter(
                identity, f"'order' must be an integer, got {order_value!r}", line=_key_line(block, "order")
            ) from None

    icon_value = meta.get("icon")
    icon = _as_text(icon_value) if icon_value is not None else ""
    if icon is None:
        raise MalformedFrontMatter(identity, "'icon' must be a string", line=_key_line(block, "icon"))

    category_key = "categories" if "categories" in meta else "category"
    tag_key = "tags" if "tags" in meta else "tag"
    categories = _string_list(meta.get(category_key), category_key, block, identity)
    tags = _string_list(meta.get(tag_key), tag_key, block, identity)

    extra = {key: value for key, value in meta.items() if key not in RECOGNIZED_KEYS}
    return Document(
        identity=identity,
        kind=source.kind,
        title=title,
        body=body,
        author=author,
        pin=pin,
        categories=categories,
        tags=tags,
        order=order,
        icon=icon,
        published=source.published,
        raw_html=identity.suffix.lower() in {".html", ".htm"},
        body_line=body_line,
        extra=MappingProxyType(extra),
    )
