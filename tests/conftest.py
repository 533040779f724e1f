from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from postforge.models import DocumentKind, SourceFile


def write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def make_source(identity: str, text: str, kind: DocumentKind = DocumentKind.POST) -> SourceFile:
    published = None
    if kind is DocumentKind.POST:
        published = dt.date.fromisoformat(Path(identity).name[:10])
    return SourceFile(
        identity=Path(identity),
        kind=kind,
        text=text,
        timestamp=dt.datetime.combine(published or dt.date(2024, 1, 1), dt.time()),
        published=published,
    )


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """A small site: three posts (one pinned), three tabs and one asset."""
    root = tmp_path / "site"
    write(
        root,
        "_posts/2024-01-10-recovery-source.md",
        "---\n"
        "title: Recovery source in Elasticsearch\n"
        "author: Dana\n"
        "categories: [how-tos]\n"
        "tags: [elasticsearch, storage]\n"
        "---\n"
        "## Why it matters\n\n"
        "Merges rewrite segments.\n\n"
        "```json\n{\"index\": {\"recovery_source\": true}}\n```\n",
    )
    write(
        root,
        "_posts/2024-02-01-vector-store.md",
        "---\n"
        "title: Using the Elasticsearch vector store\n"
        "categories: [updates]\n"
        "tags: [llamaindex]\n"
        "---\n"
        "Install the integration first.\n\n"
        "- one\n- two\n",
    )
    write(
        root,
        "_posts/2023-06-05-welcome.md",
        "---\n"
        "title: Welcome\n"
        "pin: true\n"
        "---\n"
        "Hello from the consulting team.\n",
    )
    write(
        root,
        "_tabs/about.md",
        "---\ntitle: About\nicon: fas fa-info-circle\norder: 2\n---\nWe build search systems.\n",
    )
    write(
        root,
        "_tabs/contact.md",
        "---\ntitle: Contact\norder: 1\n---\n"
        "<form action=\"/subscribe\" method=\"post\">\n<input name=\"email\">\n</form>\n",
    )
    write(root, "_tabs/notes.md", "# Notes\n\nLoose notes without front matter.\n")
    write(root, "assets/img/logo.svg", "<svg xmlns=\"http://www.w3.org/2000/svg\"></svg>\n")
    write(root, "site.toml", 'site_name = "Search Consulting"\nsite_url = "https://example.com"\nbuild_workers = 4\n')
    return root
