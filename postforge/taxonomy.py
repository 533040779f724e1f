from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from .models import Document, DocumentKind


@dataclass(frozen=True)
class Taxonomy:
    """Read-only listings derived from one build's documents."""

    categories: Mapping[str, tuple[Document, ...]]
    tags: Mapping[str, tuple[Document, ...]]
    tabs: tuple[Document, ...]
    pinned: tuple[Document, ...]
    home: tuple[Document, ...]


def _identity_key(doc: Document) -> str:
    return doc.identity.as_posix()


def _group(documents: Iterable[Document], attribute: str) -> Mapping[str, tuple[Document, ...]]:
    groups: dict[str, list[Document]] = {}
    for doc in documents:
        for name in getattr(doc, attribute):
            groups.setdefault(name, []).append(doc)
    ordered = sorted(groups.items(), key=lambda item: (item[0].lower(), item[0]))
    return MappingProxyType({name: tuple(docs) for name, docs in ordered})


def tab_order_key(doc: Document) -> tuple:
    if doc.order is None:
        return (1, 0, _identity_key(doc))
    return (0, doc.order, _identity_key(doc))


def most_recent_first(documents: Iterable[Document], timestamps: Mapping[Path, dt.datetime]) -> list[Document]:
    # sort is stable under reverse=True, so equal timestamps keep identity order
    ordered = sorted(documents, key=_identity_key)
    return sorted(ordered, key=lambda doc: timestamps.get(doc.identity, dt.datetime.min), reverse=True)


def build_taxonomy(documents: Iterable[Document], timestamps: Mapping[Path, dt.datetime]) -> Taxonomy:
    """Index every parsed document.

    Category and tag listings hold posts in identity order. Tabs are sorted by
    ``order`` with unordered tabs last. The home listing puts pinned posts
    first, each group most recent first by the supplied timestamps.
    """
    docs = sorted(documents, key=_identity_key)
    posts = [doc for doc in docs if doc.kind is DocumentKind.POST]
    tabs = [doc for doc in docs if doc.kind is DocumentKind.TAB]

    pinned = most_recent_first((doc for doc in posts if doc.pin), timestamps)
    regular = most_recent_first((doc for doc in posts if not doc.pin), timestamps)

    return Taxonomy(
        categories=_group(posts, "categories"),
        tags=_group(posts, "tags"),
        tabs=tuple(sorted(tabs, key=tab_order_key)),
        pinned=tuple(pinned),
        home=tuple(pinned + regular),
    )
