from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional


class DocumentKind(enum.Enum):
    POST = "post"
    TAB = "tab"


@dataclass(frozen=True)
class SourceFile:
    """One raw file handed out by the content store."""

    identity: Path
    kind: DocumentKind
    text: str
    timestamp: dt.datetime
    published: Optional[dt.date] = None


@dataclass(frozen=True)
class Document:
    identity: Path
    kind: DocumentKind
    title: str
    body: str
    author: str = ""
    pin: bool = False
    categories: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    order: Optional[int] = None
    icon: str = ""
    published: Optional[dt.date] = None
    raw_html: bool = False
    body_line: int = 1
    extra: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}), compare=False)

    @property
    def is_post(self) -> bool:
        return self.kind is DocumentKind.POST

    def meta(self) -> dict:
        """Navigation-relevant metadata, as embedded in the built page."""
        return {
            "kind": self.kind.value,
            "title": self.title,
            "author": self.author,
            "pin": self.pin,
            "categories": list(self.categories),
            "tags": list(self.tags),
            "order": self.order,
            "icon": self.icon,
        }


@dataclass(frozen=True)
class RenderedBody:
    document: Document
    html: str
    toc: str = ""
    summary: str = ""
    problems: tuple = ()


@dataclass(frozen=True)
class RenderedPage:
    path: Path
    html: str
    source: Optional[Document] = None


@dataclass(frozen=True)
class Problem:
    identity: str
    kind: str
    message: str
    line: Optional[int] = None

    def format(self) -> str:
        where = self.identity
        if self.line is not None:
            where = f"{where}:{self.line}"
        return f"{where}: {self.kind}: {self.message}"


@dataclass
class BuildReport:
    errors: list[Problem] = field(default_factory=list)
    warnings: list[Problem] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    unchanged: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)
    documents: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    def error(self, identity: str, kind: str, message: str, line: Optional[int] = None) -> None:
        self.errors.append(Problem(identity, kind, message, line))

    def warn(self, identity: str, kind: str, message: str, line: Optional[int] = None) -> None:
        self.warnings.append(Problem(identity, kind, message, line))
