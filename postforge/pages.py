from __future__ import annotations

import datetime as dt
import html
import json
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional

from .config import SiteConfig
from .content import slugify, split_post_name
from .errors import ContentError
from .models import Document, DocumentKind, RenderedBody, RenderedPage
from .render import fix_relative_img_src, pygments_css, read_template, render_template
from .taxonomy import Taxonomy, most_recent_first
from .utils import hash_text, iso_date, join_url, relative_root

TEMPLATES_DIR = Path(__file__).parent / "templates"
LAYOUT_BY_KIND = {DocumentKind.POST: "post", DocumentKind.TAB: "page"}
LISTING_LAYOUT = "page"
RESERVED_PATHS = {Path("index.html"), Path("404.html"), Path("atom.xml"), Path("sitemap.xml")}
PAGINATION_RE = re.compile(r"^page-\d+\.html$")
FEED_LIMIT = 20
PAGE_META_ID = "page-meta"
PAGE_META_RE = re.compile(
    r'<script type="application/json" id="' + PAGE_META_ID + r'">(?P<data>.*?)</script>', re.DOTALL
)
HIGHLIGHT_CSS = Path("assets/css/highlight.css")
STYLE_CSS = Path("assets/css/style.css")


@dataclass(frozen=True)
class Site:
    """Everything page builders need, shared read-only across workers."""

    config: SiteConfig
    taxonomy: Taxonomy
    layouts: Mapping[str, str]
    paths: Mapping[Path, Path]
    timestamps: Mapping[Path, dt.datetime]
    category_slugs: Mapping[str, str]
    tag_slugs: Mapping[str, str]
    year: str

    def url(self, doc: Document, root: str) -> str:
        return f"{root}/{self.paths[doc.identity].as_posix()}"


def post_output_path(doc: Document) -> Path:
    published, name = split_post_name(doc.identity.stem)
    published = doc.published or published
    if published is None:
        raise ContentError(doc.identity, "post has no publication date")
    slug = slugify(str(doc.extra.get("slug") or name))
    return Path("posts", f"{published.year:04d}", f"{published.month:02d}", f"{published.day:02d}", f"{slug}.html")


def tab_output_path(doc: Document) -> Path:
    return Path(f"{slugify(str(doc.extra.get('slug') or doc.identity.stem))}.html")


OUTPUT_PATHS: dict[DocumentKind, Callable[[Document], Path]] = {
    DocumentKind.POST: post_output_path,
    DocumentKind.TAB: tab_output_path,
}


def output_path(doc: Document) -> Path:
    return OUTPUT_PATHS[doc.kind](doc)


def assign_output_paths(documents: Iterable[Document]) -> tuple[dict[Path, Path], list[ContentError]]:
    """Map each document identity to its output path.

    A document whose path is reserved or already taken by an earlier
    identity gets a ContentError instead.
    """
    paths: dict[Path, Path] = {}
    owners: dict[Path, Path] = {}
    failures: list[ContentError] = []
    for doc in sorted(documents, key=lambda d: d.identity.as_posix()):
        try:
            target = output_path(doc)
        except ContentError as exc:
            failures.append(exc)
            continue
        if target in RESERVED_PATHS or PAGINATION_RE.match(target.as_posix()):
            failures.append(ContentError(doc.identity, f"output path {target.as_posix()} is reserved"))
            continue
        if target in owners:
            failures.append(
                ContentError(
                    doc.identity,
                    f"output path {target.as_posix()} is already used by {owners[target].as_posix()}",
                )
            )
            continue
        owners[target] = doc.identity
        paths[doc.identity] = target
    return paths, failures


def unique_slugs(names: Iterable[str]) -> dict[str, str]:
    slugs: dict[str, str] = {}
    used: set[str] = {"index"}
    for name in names:
        candidate = slugify(name)
        slug = candidate
        if slug in used:
            slug = f"{candidate}-{hash_text(name)[:8]}"
        used.add(slug)
        slugs[name] = slug
    return slugs


def load_layouts(templates_dir: Optional[Path] = None) -> dict[str, str]:
    """Packaged layouts, overridden by same-named files in ``templates_dir``."""
    layouts = {path.stem: read_template(path) for path in sorted(TEMPLATES_DIR.glob("*.html"))}
    if templates_dir is not None and templates_dir.is_dir():
        for path in sorted(templates_dir.glob("*.html")):
            layouts[path.stem] = read_template(path)
    return layouts


def select_layout(site: Site, doc: Document) -> str:
    requested = doc.extra.get("layout")
    if isinstance(requested, str) and requested in site.layouts:
        return site.layouts[requested]
    return site.layouts[LAYOUT_BY_KIND[doc.kind]]


def page_meta_script(doc: Document) -> str:
    data = json.dumps(doc.meta(), sort_keys=True, ensure_ascii=True).replace("</", "<\\/")
    return f'<script type="application/json" id="{PAGE_META_ID}">{data}</script>'


def read_page_meta(html_text: str) -> dict:
    """Recover the navigation metadata embedded in a built page."""
    match = PAGE_META_RE.search(html_text)
    if match is None:
        raise ValueError("page carries no embedded metadata")
    return json.loads(match.group("data"))


def build_tab_nav(site: Site, root: str, current: Optional[Path] = None) -> str:
    items = []
    home_class = ' class="is-active"' if current == Path("index.html") else ""
    items.append(f'<li{home_class}><a href="{root}/index.html">Home</a></li>')
    for tab in site.taxonomy.tabs:
        path = site.paths[tab.identity]
        active = ' class="is-active"' if path == current else ""
        icon = f'<i class="{html.escape(tab.icon)}"></i>' if tab.icon else ""
        items.append(f'<li{active}><a href="{root}/{path.as_posix()}">{icon}{html.escape(tab.title)}</a></li>')
    return f'<ul class="nav-tabs">{"".join(items)}</ul>'


def build_category_list(site: Site, root: str) -> str:
    items = []
    categories = site.taxonomy.categories
    for name, posts in sorted(categories.items(), key=lambda x: (-len(x[1]), x[0].lower())):
        slug = site.category_slugs[name]
        items.append(
            f'<li><a href="{root}/categories/{slug}.html">{html.escape(name)}</a>'
            f'<span class="count">{len(posts)}</span></li>'
        )
    return "\n".join(items) if items else "<li>No categories yet.</li>"


def build_tag_cloud(site: Site, root: str) -> str:
    links = [
        f'<a class="tag" href="{root}/tags/{site.tag_slugs[name]}.html">{html.escape(name)}</a>'
        for name in site.taxonomy.tags
    ]
    return " ".join(links)


def build_sidebar(site: Site, root: str, toc_html: str = "") -> str:
    panels = []
    if site.config.site_description:
        panels.append(
            '<div class="panel">'
            "<h3>About</h3>"
            f"<p>{html.escape(site.config.site_description)}</p>"
            "</div>"
        )
    if toc_html and "<li" in toc_html:
        panels.append(
            '<div class="panel">'
            "<h3>Contents</h3>"
            f"{toc_html}"
            "</div>"
        )
    panels.append(
        '<div class="panel">'
        "<h3>Categories</h3>"
        f'<ul class="category-list">{build_category_list(site, root)}</ul>'
        "</div>"
    )
    tags_html = build_tag_cloud(site, root)
    if tags_html:
        panels.append(
            '<div class="panel">'
            "<h3>Tags</h3>"
            f'<div class="tag-cloud">{tags_html}</div>'
            "</div>"
        )
    return "".join(panels)


def build_chips(site: Site, doc: Document, root: str) -> str:
    chips = [
        f'<a class="chip chip-category" href="{root}/categories/{site.category_slugs[cat]}.html">'
        f"{html.escape(cat)}</a>"
        for cat in doc.categories
    ]
    chips.extend(
        f'<a class="chip chip-tag" href="{root}/tags/{site.tag_slugs[tag]}.html">#{html.escape(tag)}</a>'
        for tag in doc.tags
    )
    return " ".join(chips)


def build_post_cards(site: Site, posts: Iterable[Document], summaries: Mapping[Path, str], root: str) -> str:
    cards = []
    for idx, post in enumerate(posts):
        delay = min(idx * 0.05, 0.3)
        title = html.escape(post.title)
        summary = html.escape(summaries.get(post.identity, ""))
        url = site.url(post, root)
        pinned = '<span class="post-pinned">Pinned</span>' if post.pin else ""
        date = post.published.isoformat() if post.published else ""
        cards.append(
            f'<article class="post-card" style="animation-delay: {delay:.2f}s">'
            '<div class="post-meta"><div class="post-meta-left">'
            f"{pinned}"
            f'<span class="post-date">{date}</span>'
            "</div>"
            f'<div class="post-tags">{build_chips(site, post, root)}</div></div>'
            f'<h2 class="post-title"><a href="{url}">{title}</a></h2>'
            f'<p class="post-summary">{summary}</p>'
            f'<a class="post-more" href="{url}">Read more</a>'
            "</article>"
        )
    return "\n".join(cards)


def fill_layout(
    site: Site,
    layout: str,
    path: Path,
    title: str,
    content: str,
    toc_html: str = "",
    extra_head: str = "",
) -> str:
    root = relative_root(path)
    return render_template(
        layout,
        title=html.escape(title),
        root=root,
        nav=build_tab_nav(site, root, path),
        content=content,
        sidebar=build_sidebar(site, root, toc_html),
        site_name=html.escape(site.config.site_name),
        site_description=html.escape(site.config.site_description),
        year=site.year,
        extra_head=extra_head,
    )


def post_content(site: Site, rendered: RenderedBody, root: str) -> str:
    post = rendered.document
    author = post.author or site.config.author
    author_html = f'<span class="post-author">{html.escape(author)}</span>' if author else ""
    date = post.published.isoformat() if post.published else ""
    body = fix_relative_img_src(rendered.html, root)
    return (
        '<article class="post">'
        '<div class="post-meta"><div class="post-meta-left">'
        f'<span class="post-date">{date}</span>'
        f"{author_html}"
        "</div>"
        f'<div class="post-tags">{build_chips(site, post, root)}</div></div>'
        f'<h1 class="post-title">{html.escape(post.title)}</h1>'
        f'<div class="post-body">{body}</div>'
        f'<div class="post-footer"><a href="{root}/index.html">Back to home</a></div>'
        "</article>"
    )


def tab_content(site: Site, rendered: RenderedBody, root: str) -> str:
    tab = rendered.document
    icon = f'<i class="{html.escape(tab.icon)}"></i> ' if tab.icon else ""
    return (
        '<article class="post page">'
        f'<h1 class="post-title">{icon}{html.escape(tab.title)}</h1>'
        f'<div class="post-body">{rendered.html}</div>'
        "</article>"
    )


CONTENT_BUILDERS: dict[DocumentKind, Callable[[Site, RenderedBody, str], str]] = {
    DocumentKind.POST: post_content,
    DocumentKind.TAB: tab_content,
}


def build_document_page(site: Site, rendered: RenderedBody) -> RenderedPage:
    doc = rendered.document
    path = site.paths[doc.identity]
    root = relative_root(path)
    content = CONTENT_BUILDERS[doc.kind](site, rendered, root)
    html_doc = fill_layout(
        site,
        select_layout(site, doc),
        path,
        f"{doc.title} | {site.config.site_name}",
        content,
        toc_html=rendered.toc,
        extra_head=page_meta_script(doc),
    )
    return RenderedPage(path=path, html=html_doc, source=doc)


def page_url(page: int) -> str:
    if page == 1:
        return "index.html"
    return f"page-{page}.html"


def build_pagination(page: int, total_pages: int) -> str:
    if total_pages <= 1:
        return ""
    items = []
    if page > 1:
        items.append(f'<a class="page-link" href="./{page_url(page - 1)}">Previous</a>')
    else:
        items.append('<span class="page-link is-disabled">Previous</span>')
    numbers = []
    for num in range(1, total_pages + 1):
        if num == page:
            numbers.append(f'<span class="page-number is-active">{num}</span>')
        else:
            numbers.append(f'<a class="page-number" href="./{page_url(num)}">{num}</a>')
    items.append(f'<div class="page-numbers">{"".join(numbers)}</div>')
    if page < total_pages:
        items.append(f'<a class="page-link" href="./{page_url(page + 1)}">Next</a>')
    else:
        items.append('<span class="page-link is-disabled">Next</span>')
    return f'<nav class="pagination">{"".join(items)}</nav>'


def build_index(site: Site, summaries: Mapping[Path, str]) -> list[RenderedPage]:
    """Home listing: pinned posts first, then the rest, most recent first."""
    posts = site.taxonomy.home
    per_page = site.config.posts_per_page
    total_pages = max(1, math.ceil(len(posts) / per_page))
    layout = site.layouts[LISTING_LAYOUT]
    pages = []
    for page in range(1, total_pages + 1):
        start = (page - 1) * per_page
        page_posts = posts[start : start + per_page]
        path = Path(page_url(page))
        cards = build_post_cards(site, page_posts, summaries, ".")
        if not cards:
            cards = '<p class="post-summary">No posts yet.</p>'
        content = (
            '<div class="section-head">'
            "<h2>Latest posts</h2>"
            "</div>"
            f'<div class="post-grid">{cards}</div>'
            f"{build_pagination(page, total_pages)}"
        )
        title = f"{site.config.site_name} | Home"
        if page > 1:
            title = f"{site.config.site_name} | Page {page}"
        pages.append(RenderedPage(path=path, html=fill_layout(site, layout, path, title, content)))
    return pages


def build_taxonomy_pages(
    site: Site,
    section: str,
    label: str,
    groups: Mapping[str, tuple[Document, ...]],
    slugs: Mapping[str, str],
    summaries: Mapping[Path, str],
) -> list[RenderedPage]:
    layout = site.layouts[LISTING_LAYOUT]
    pages = []
    overview_path = Path(section, "index.html")
    rows = [
        f'<li><a href="./{slugs[name]}.html">{html.escape(name)}</a><span class="count">{len(docs)}</span></li>'
        for name, docs in groups.items()
    ]
    overview = (
        '<div class="section-head">'
        f"<h2>{label}</h2>"
        "</div>"
        f'<ul class="taxonomy-list">{"".join(rows) or "<li>Nothing here yet.</li>"}</ul>'
    )
    pages.append(
        RenderedPage(
            path=overview_path,
            html=fill_layout(site, layout, overview_path, f"{label} | {site.config.site_name}", overview),
        )
    )
    for name, docs in groups.items():
        path = Path(section, f"{slugs[name]}.html")
        content = (
            '<div class="section-head">'
            f"<h2>{html.escape(name)}</h2>"
            f"<p>{len(docs)} post{'s' if len(docs) != 1 else ''}</p>"
            "</div>"
            f'<div class="post-grid">{build_post_cards(site, docs, summaries, "..")}</div>'
        )
        title = f"{name} | {site.config.site_name}"
        pages.append(RenderedPage(path=path, html=fill_layout(site, layout, path, title, content)))
    return pages


def build_404(site: Site) -> RenderedPage:
    path = Path("404.html")
    content = (
        '<div class="section-head">'
        "<h2>404</h2>"
        "<p>Page not found. Try heading back to the homepage.</p>"
        "</div>"
        '<div class="post-card">'
        '<p class="post-summary">The page you requested does not exist.</p>'
        '<a class="post-more" href="./index.html">Back to home</a>'
        "</div>"
    )
    html_doc = fill_layout(site, site.layouts[LISTING_LAYOUT], path, f"404 | {site.config.site_name}", content)
    return RenderedPage(path=path, html=html_doc)


def recent_posts(site: Site) -> list[Document]:
    return most_recent_first(site.taxonomy.home, site.timestamps)


def post_datetime(doc: Document) -> dt.datetime:
    return dt.datetime.combine(doc.published or dt.date(1970, 1, 1), dt.time())


def build_atom(site: Site, summaries: Mapping[Path, str]) -> Optional[RenderedPage]:
    site_url = site.config.site_url.rstrip("/")
    if not site_url:
        return None
    posts = recent_posts(site)
    updated = iso_date(max(post_datetime(post) for post in posts)) if posts else iso_date(dt.datetime(1970, 1, 1))
    entries = []
    for post in posts[:FEED_LIMIT]:
        link = join_url(site_url, site.paths[post.identity].as_posix())
        entries.append(
            "\n".join(
                [
                    "<entry>",
                    f"<title>{html.escape(post.title)}</title>",
                    f'<link href="{link}" />',
                    f"<id>{link}</id>",
                    f"<updated>{iso_date(post_datetime(post))}</updated>",
                    f"<summary>{html.escape(summaries.get(post.identity, ''))}</summary>",
                    "</entry>",
                ]
            )
        )
    atom = "\n".join(
        [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<feed xmlns="http://www.w3.org/2005/Atom">',
            f"<title>{html.escape(site.config.site_name)}</title>",
            f"<id>{site_url}/</id>",
            f"<updated>{updated}</updated>",
            f'<link href="{site_url}/atom.xml" rel="self" />',
            f'<link href="{site_url}/" />',
            "\n".join(entries),
            "</feed>",
        ]
    )
    return RenderedPage(path=Path("atom.xml"), html=atom + "\n")


def build_sitemap(site: Site, listing_paths: Iterable[Path]) -> Optional[RenderedPage]:
    site_url = site.config.site_url.rstrip("/")
    if not site_url:
        return None
    urls: list[tuple[str, Optional[dt.date]]] = [(site_url + "/", None)]
    for path in listing_paths:
        if path.suffix == ".html" and path != Path("index.html") and path != Path("404.html"):
            urls.append((join_url(site_url, path.as_posix()), None))
    for tab in site.taxonomy.tabs:
        urls.append((join_url(site_url, site.paths[tab.identity].as_posix()), None))
    for post in recent_posts(site):
        urls.append((join_url(site_url, site.paths[post.identity].as_posix()), post.published))
    items = []
    for url, lastmod in urls:
        lines = ["<url>", f"<loc>{url}</loc>"]
        if lastmod:
            lines.append(f"<lastmod>{lastmod.isoformat()}</lastmod>")
        lines.append("</url>")
        items.append("\n".join(lines))
    sitemap = "\n".join(
        [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
            "\n".join(items),
            "</urlset>",
        ]
    )
    return RenderedPage(path=Path("sitemap.xml"), html=sitemap + "\n")


def build_stylesheets() -> list[RenderedPage]:
    style = (TEMPLATES_DIR / "style.css").read_text(encoding="utf-8")
    return [
        RenderedPage(path=STYLE_CSS, html=style),
        RenderedPage(path=HIGHLIGHT_CSS, html=pygments_css()),
    ]


def build_listing_pages(site: Site, summaries: Mapping[Path, str]) -> list[RenderedPage]:
    """Every page that needs the global index: home, taxonomy, 404, feeds."""
    pages = build_index(site, summaries)
    pages.extend(
        build_taxonomy_pages(
            site, "categories", "Categories", site.taxonomy.categories, site.category_slugs, summaries
        )
    )
    pages.extend(build_taxonomy_pages(site, "tags", "Tags", site.taxonomy.tags, site.tag_slugs, summaries))
    pages.append(build_404(site))
    atom = build_atom(site, summaries)
    if atom is not None:
        pages.append(atom)
    sitemap = build_sitemap(site, [page.path for page in pages])
    if sitemap is not None:
        pages.append(sitemap)
    pages.extend(build_stylesheets())
    return pages


def site_year(config: SiteConfig, documents: Iterable[Document]) -> str:
    if config.copyright_year:
        return config.copyright_year
    years = [doc.published.year for doc in documents if doc.published is not None]
    return str(max(years)) if years else ""
