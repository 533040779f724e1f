from __future__ import annotations

import contextlib
import logging
import os
import re
import tempfile
from html.parser import HTMLParser
from pathlib import Path
from typing import NamedTuple, Optional

import markdown
from pygments.formatters import HtmlFormatter

from .errors import RenderError
from .models import Document, RenderedBody
from .utils import with_retries

logger = logging.getLogger(__name__)

LIST_MARKER_RE = re.compile(r"^(?P<indent>[ \t]*)(?:[-+*]|\d+[.)])\s+")
FENCE_RE = re.compile(r"^(?P<indent>[ \t]*)(`{3,}|~{3,})")
INLINE_CODE_RE = re.compile(r"(`+)(?:.+?)\1")
TAG_OPEN_RE = re.compile(r"<(?P<end>/?)(?P<tag>[A-Za-z][A-Za-z0-9-]*)(?=[\s/<>]|\Z)")
INDENTED_CODE_RE = re.compile(r"^(?: {4}| {0,3}\t)")
IMG_SRC_RE = re.compile(r'<img([^>]*?)src="([^"]+)"', re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]+>")
PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")

MARKDOWN_EXTENSIONS = ["fenced_code", "codehilite", "tables", "toc"]
MARKDOWN_CONFIGS = {
    "codehilite": {"css_class": "highlight", "guess_lang": False},
    "toc": {"toc_depth": "2-4"},
}
SUMMARY_LENGTH = 200
FILE_MODE = 0o644

RAW_TEXT_ELEMENTS = {"script", "style"}
VOID_ELEMENTS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr",
}
OPTIONAL_END_ELEMENTS = {
    "body", "caption", "colgroup", "dd", "dt", "head", "html", "li", "optgroup", "option", "p",
    "rb", "rp", "rt", "tbody", "td", "tfoot", "th", "thead", "tr",
}
HTML_ELEMENTS = VOID_ELEMENTS | OPTIONAL_END_ELEMENTS | {
    "a", "abbr", "address", "article", "aside", "audio", "b", "bdi", "bdo", "blockquote", "button",
    "canvas", "cite", "code", "data", "datalist", "del", "details", "dfn", "dialog", "div", "dl", "em",
    "fieldset", "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5", "h6", "header",
    "i", "iframe", "ins", "kbd", "label", "legend", "main", "map", "mark", "math", "menu", "meter", "nav",
    "noscript", "object", "ol", "output", "picture", "pre", "progress", "q", "s", "samp", "script",
    "section", "select", "small", "span", "strong", "style", "sub", "summary", "sup", "svg", "table",
    "template", "textarea", "time", "title", "u", "ul", "var", "video",
}


class HtmlProblem(NamedTuple):
    line: int
    message: str


class TagBalanceChecker(HTMLParser):
    """Tracks open elements of raw HTML embedded in a Markdown body."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.open_elements: list[tuple[str, int]] = []
        self.problems: list[HtmlProblem] = []

    def handle_starttag(self, tag, attrs):
        if tag in VOID_ELEMENTS or tag not in HTML_ELEMENTS:
            return
        line, _ = self.getpos()
        self.open_elements.append((tag, line))

    def handle_startendtag(self, tag, attrs):
        pass

    def handle_endtag(self, tag):
        if tag in VOID_ELEMENTS or tag not in HTML_ELEMENTS:
            return
        line, _ = self.getpos()
        for index in range(len(self.open_elements) - 1, -1, -1):
            if self.open_elements[index][0] == tag:
                for name, opened in self.open_elements[index + 1 :]:
                    if name not in OPTIONAL_END_ELEMENTS:
                        self.problems.append(
                            HtmlProblem(opened, f"<{name}> opened on line {opened} is not closed before </{tag}>")
                        )
                del self.open_elements[index:]
                return
        self.problems.append(HtmlProblem(line, f"</{tag}> has no matching opening tag"))

    def finish(self) -> list[HtmlProblem]:
        self.close()
        for name, opened in self.open_elements:
            if name not in OPTIONAL_END_ELEMENTS:
                self.problems.append(HtmlProblem(opened, f"<{name}> is never closed"))
        self.open_elements = []
        return self.problems


def mask_code(text: str) -> str:
    """Blank out fenced blocks, indented code blocks and inline code spans.

    Line numbers are kept intact. An indented line only counts as code after a
    blank line or another code line, and never inside a list.
    """
    out: list[str] = []
    fence_marker = ""
    in_indented = False
    in_list = False
    previous_blank = True
    for line in text.splitlines():
        blank = not line.strip()
        if not fence_marker and not blank and INDENTED_CODE_RE.match(line) and not in_list:
            if previous_blank or in_indented:
                in_indented = True
                previous_blank = False
                out.append("")
                continue
        if not blank:
            in_indented = False
        fence_match = FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(2)
            if not fence_marker:
                fence_marker = marker
            elif marker.startswith(fence_marker[0]) and len(marker) >= len(fence_marker):
                fence_marker = ""
            out.append("")
            previous_blank = False
            continue
        if fence_marker:
            out.append("")
            continue
        list_match = LIST_MARKER_RE.match(line)
        if list_match and len(list_match.group("indent").expandtabs(4)) < 4:
            in_list = True
        elif not blank and previous_blank and not line[:1].isspace():
            in_list = False
        previous_blank = blank
        out.append(INLINE_CODE_RE.sub(lambda m: " " * len(m.group(0)), line))
    return "\n".join(out)


def _tag_end(text: str, pos: int) -> Optional[int]:
    """Index just past the ``>`` closing the tag that starts before ``pos``.

    None when another ``<`` or the end of the text comes first. Quoted
    attribute values may contain ``<`` and ``>``.
    """
    quote = ""
    last = ""
    for index in range(pos, len(text)):
        char = text[index]
        if quote:
            if char == quote:
                quote = ""
                last = char
            continue
        if char in "\"'" and last == "=":
            quote = char
        elif char == ">":
            return index + 1
        elif char == "<":
            return None
        if not char.isspace():
            last = char
    return None


def find_unterminated_tags(text: str) -> list[HtmlProblem]:
    problems: list[HtmlProblem] = []
    pos = 0
    while True:
        match = TAG_OPEN_RE.search(text, pos)
        if match is None:
            return problems
        tag = match.group("tag").lower()
        pos = match.end()
        if tag not in HTML_ELEMENTS:
            continue
        end = _tag_end(text, match.end())
        if end is None:
            line = text.count("\n", 0, match.start()) + 1
            problems.append(HtmlProblem(line, f"tag <{match.group('tag')}> is not terminated with '>'"))
            continue
        pos = end
        if not match.group("end") and tag in RAW_TEXT_ELEMENTS:
            close = re.compile(rf"</{tag}\s*>", re.IGNORECASE).search(text, end)
            pos = close.start() if close else len(text)


def check_raw_html(body: str) -> list[HtmlProblem]:
    """Find raw HTML that cannot be passed through cleanly, ordered by line."""
    text = mask_code(body)
    problems = find_unterminated_tags(text)
    checker = TagBalanceChecker()
    checker.feed(text)
    problems.extend(checker.finish())
    return sorted(set(problems))

def normalize_list_spacing(text: str) -> str:
    lines = text.splitlines()
    out: list[str] = []
    in_fence = False
    fence_marker = ""
    for line in lines:
        fence_match = FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(2)
            if not in_fence:
                in_fence = True
                fence_marker = marker
            elif marker == fence_marker:
                in_fence = False
                fence_marker = ""
            out.append(line)
            continue
        if in_fence:
            out.append(line)
            continue
        list_match = LIST_MARKER_RE.match(line)
        if list_match:
            if not list_match.group("indent"):
                if out and out[-1].strip() and not LIST_MARKER_RE.match(out[-1]):
                    out.append("")
        out.append(line)
    return "\n".join(out)


def render_markdown(body: str) -> tuple[str, str]:
    """Convert a Markdown body, returning ``(html, toc)``. Raw HTML passes through."""
    md = markdown.Markdown(extensions=MARKDOWN_EXTENSIONS, extension_configs=MARKDOWN_CONFIGS)
    html_content = md.convert(normalize_list_spacing(body))
    toc_html = md.toc
    md.reset()
    return html_content, toc_html


def strip_tags(html_text: str) -> str:
    return TAG_RE.sub("", html_text)


def summarize(document: Document, html_content: str) -> str:
    for key in ("summary", "description"):
        value = document.extra.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    summary = " ".join(strip_tags(html_content).split())
    return summary[:SUMMARY_LENGTH] + ("..." if len(summary) > SUMMARY_LENGTH else "")


def render_document(document: Document, strict: bool = False) -> RenderedBody:
    """Render one document's body.

    Malformed raw HTML is passed through with a warning, or raises
    RenderError when ``strict`` is set.
    """
    problems = [
        HtmlProblem(document.body_line + problem.line - 1, problem.message)
        for problem in check_raw_html(document.body)
    ]
    if problems and strict:
        raise RenderError(document.identity, problems[0].message, line=problems[0].line)
    for problem in problems:
        logger.debug("%s:%d: %s (passed through)", document.identity.as_posix(), problem.line, problem.message)
    if document.raw_html:
        html_content, toc_html = document.body, ""
    else:
        html_content, toc_html = render_markdown(document.body)
    return RenderedBody(
        document=document,
        html=html_content,
        toc=toc_html,
        summary=summarize(document, html_content),
        problems=tuple(problems),
    )


def fix_relative_img_src(html_text: str, root: str) -> str:
    def repl(match: re.Match) -> str:
        attrs = match.group(1)
        src = match.group(2)
        if src.startswith(("http://", "https://", "data:", "#", "/", "./", "../")):
            return match.group(0)
        src = src.lstrip("/")
        return f'<img{attrs}src="{root}/{src}"'

    return IMG_SRC_RE.sub(repl, html_text)


def render_template(template: str, **context: str) -> str:
    """Fill {{key}} placeholders in one pass; substituted text is never rescanned."""

    def repl(match: re.Match) -> str:
        return context.get(match.group(1), match.group(0))

    return PLACEHOLDER_RE.sub(repl, template)


def read_template(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def pygments_css() -> str:
    return HtmlFormatter(style="default").get_style_defs(".highlight") + "\n"


def write_bytes(path: Path, data: bytes, retries: int = 3) -> bool:
    """Atomically replace ``path`` with ``data``.

    The target is either left untouched or fully replaced. Returns False
    when the file already holds exactly these bytes.
    """

    def attempt() -> bool:
        if path.is_file() and path.read_bytes() == data:
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, FILE_MODE)
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise
        return True

    return with_retries(attempt, retries, f"Writing {path}")


def write_text(path: Path, text: str, retries: int = 3) -> bool:
    return write_bytes(path, text.encode("utf-8"), retries)
