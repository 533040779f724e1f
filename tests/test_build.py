from __future__ import annotations

from pathlib import Path

import pytest

from conftest import write
from postforge.cli import build_site, main, resolve_config
from postforge.errors import PostforgeError
from postforge.pages import read_page_meta
from postforge.utils import MANIFEST_NAME, load_manifest

BROKEN_HTML = "---\ntitle: Broken markup\n---\nIntro.\n\n<div class=\"note\"\n\nStill text.\n"


def tree(root: Path) -> dict[str, bytes]:
    return {path.relative_to(root).as_posix(): path.read_bytes() for path in root.rglob("*") if path.is_file()}


def build(site_dir: Path, out: Path):
    return build_site(site_dir, out, resolve_config(site_dir, None))


def test_build_writes_expected_pages(site_dir, tmp_path):
    out = tmp_path / "out"
    report = build(site_dir, out)
    assert report.ok, [p.format() for p in report.errors]
    assert report.documents == 6
    files = set(tree(out))
    for expected in [
        "index.html",
        "404.html",
        "atom.xml",
        "sitemap.xml",
        "about.html",
        "contact.html",
        "notes.html",
        "posts/2024/01/10/recovery-source.html",
        "posts/2024/02/01/vector-store.html",
        "posts/2023/06/05/welcome.html",
        "categories/index.html",
        "categories/how-tos.html",
        "categories/updates.html",
        "tags/index.html",
        "tags/elasticsearch.html",
        "tags/llamaindex.html",
        "assets/css/style.css",
        "assets/css/highlight.css",
        "assets/img/logo.svg",
    ]:
        assert expected in files
    assert (out / "assets/img/logo.svg").read_bytes() == (site_dir / "assets/img/logo.svg").read_bytes()


def test_built_pages_carry_source_metadata(site_dir, tmp_path):
    out = tmp_path / "out"
    build(site_dir, out)
    post_meta = read_page_meta((out / "posts/2024/01/10/recovery-source.html").read_text(encoding="utf-8"))
    assert post_meta["title"] == "Recovery source in Elasticsearch"
    assert post_meta["categories"] == ["how-tos"]
    assert post_meta["tags"] == ["elasticsearch", "storage"]
    assert post_meta["author"] == "Dana"
    about_meta = read_page_meta((out / "about.html").read_text(encoding="utf-8"))
    assert about_meta["order"] == 2
    assert about_meta["icon"] == "fas fa-info-circle"
    notes_meta = read_page_meta((out / "notes.html").read_text(encoding="utf-8"))
    assert notes_meta["title"] == "Notes"
    assert notes_meta["order"] is None


def test_builds_are_reproducible(site_dir, tmp_path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    build(site_dir, first)
    build(site_dir, second)
    assert tree(first) == tree(second)


def test_rebuild_writes_nothing(site_dir, tmp_path):
    out = tmp_path / "out"
    build(site_dir, out)
    before = tree(out)
    report = build(site_dir, out)
    assert report.written == []
    assert report.removed == []
    assert tree(out) == before


def test_home_lists_pinned_first_then_recent(site_dir, tmp_path):
    out = tmp_path / "out"
    build(site_dir, out)
    home = (out / "index.html").read_text(encoding="utf-8")
    welcome = home.index(">Welcome</a>")
    vector = home.index(">Using the Elasticsearch vector store</a>")
    recovery = home.index(">Recovery source in Elasticsearch</a>")
    assert welcome < vector < recovery


def test_tab_navigation_order(site_dir, tmp_path):
    out = tmp_path / "out"
    build(site_dir, out)
    page = (out / "posts/2024/02/01/vector-store.html").read_text(encoding="utf-8")
    positions = [page.index(f'/{name}.html">') for name in ("contact", "about", "notes")]
    assert positions == sorted(positions)
    assert '<i class="fas fa-info-circle"></i>About' in page


def test_raw_html_tab_is_passed_through(site_dir, tmp_path):
    out = tmp_path / "out"
    build(site_dir, out)
    contact = (out / "contact.html").read_text(encoding="utf-8")
    assert '<form action="/subscribe" method="post">' in contact


def test_category_pages_list_their_posts(site_dir, tmp_path):
    out = tmp_path / "out"
    build(site_dir, out)
    how_tos = (out / "categories/how-tos.html").read_text(encoding="utf-8")
    assert "Recovery source in Elasticsearch" in how_tos
    assert "Using the Elasticsearch vector store" not in how_tos


def test_missing_title_fails_only_that_document(site_dir, tmp_path, capsys):
    write(site_dir, "_posts/2024-03-01-untitled.md", "---\nauthor: Dana\ncategories: [how-tos]\n---\nBody\n")
    out = tmp_path / "out"
    assert main(["build", str(site_dir), str(out)]) == 1
    err = capsys.readouterr().err
    assert "_posts/2024-03-01-untitled.md:1: front-matter:" in err
    assert not (out / "posts/2024/03/01/untitled.html").exists()
    assert "untitled" not in (out / "categories/how-tos.html").read_text(encoding="utf-8")
    assert (out / "posts/2024/01/10/recovery-source.html").exists()


def test_strict_mode_fails_on_malformed_html(site_dir, tmp_path, capsys):
    write(site_dir, "_posts/2024-03-02-broken.md", BROKEN_HTML)
    out = tmp_path / "out"
    assert main(["build", str(site_dir), str(out), "--strict"]) == 1
    err = capsys.readouterr().err
    assert "_posts/2024-03-02-broken.md:6: render:" in err
    assert not (out / "posts/2024/03/02/broken.html").exists()


def test_lenient_mode_passes_malformed_html_through(site_dir, tmp_path, capsys):
    write(site_dir, "_posts/2024-03-02-broken.md", BROKEN_HTML)
    out = tmp_path / "out"
    assert main(["build", str(site_dir), str(out)]) == 0
    captured = capsys.readouterr()
    assert "warning: _posts/2024-03-02-broken.md:6: render:" in captured.err
    assert "Site generated in:" in captured.out
    assert "Still text." in (out / "posts/2024/03/02/broken.html").read_text(encoding="utf-8")


def test_strict_from_config_file(site_dir, tmp_path):
    write(site_dir, "_posts/2024-03-02-broken.md", BROKEN_HTML)
    config = write(tmp_path, "strict.toml", "strict = true\n")
    assert main(["build", str(site_dir), str(tmp_path / "out"), "--config", str(config)]) == 1


def test_stale_output_is_pruned(site_dir, tmp_path):
    out = tmp_path / "out"
    build(site_dir, out)
    assert "posts/2024/02/01/vector-store.html" in load_manifest(out)
    (site_dir / "_posts/2024-02-01-vector-store.md").unlink()
    report = build(site_dir, out)
    assert report.ok
    assert Path("posts/2024/02/01/vector-store.html") in report.removed
    assert not (out / "posts/2024/02").exists()
    assert (out / "posts/2024/01/10/recovery-source.html").exists()
    assert "posts/2024/02/01/vector-store.html" not in load_manifest(out)


def test_files_not_written_by_a_build_are_kept(site_dir, tmp_path):
    out = tmp_path / "out"
    write(out, "thesis/final.docx", "draft")
    build(site_dir, out)
    build(site_dir, out)
    assert (out / "thesis/final.docx").read_text(encoding="utf-8") == "draft"


def test_failed_build_keeps_previous_pages(site_dir, tmp_path):
    out = tmp_path / "out"
    build(site_dir, out)
    page = out / "posts/2024/01/10/recovery-source.html"
    before = page.read_bytes()
    write(site_dir, "_posts/2024-01-10-recovery-source.md", "---\nauthor: Dana\n---\nBody\n")
    report = build(site_dir, out)
    assert not report.ok
    assert report.removed == []
    assert page.read_bytes() == before
    assert "posts/2024/01/10/recovery-source.html" in load_manifest(out)
    (site_dir / "_posts/2024-01-10-recovery-source.md").unlink()
    report = build(site_dir, out)
    assert report.ok
    assert not page.exists()


def test_invalid_utf8_source_fails_only_that_document(site_dir, tmp_path, capsys):
    (site_dir / "_posts/2024-04-01-latin1.md").write_bytes(b"---\ntitle: Caf\xe9\n---\nBody\n")
    out = tmp_path / "out"
    assert main(["build", str(site_dir), str(out)]) == 1
    err = capsys.readouterr().err
    assert "_posts/2024-04-01-latin1.md:2: content: file is not valid UTF-8" in err
    assert (out / "posts/2024/01/10/recovery-source.html").exists()
    assert (out / "index.html").exists()
    assert not (out / "posts/2024/04/01/latin1.html").exists()


def test_removed_source_disappears_from_output(site_dir, tmp_path):
    out = tmp_path / "out"
    build(site_dir, out)
    (site_dir / "_tabs/notes.md").unlink()
    build(site_dir, out)
    assert not (out / "notes.html").exists()
    assert "notes.html" not in (out / "index.html").read_text(encoding="utf-8")


def test_asset_overrides_generated_stylesheet(site_dir, tmp_path):
    write(site_dir, "assets/css/style.css", "body { color: black; }\n")
    out = tmp_path / "out"
    report = build(site_dir, out)
    assert report.ok
    assert (out / "assets/css/style.css").read_text(encoding="utf-8") == "body { color: black; }\n"


def test_refuses_to_prune_the_input_directory(site_dir, capsys):
    with pytest.raises(PostforgeError):
        build(site_dir, site_dir)
    assert main(["build", str(site_dir), str(site_dir)]) == 2
    assert "Refusing to prune" in capsys.readouterr().err


def test_missing_input_directory(tmp_path, capsys):
    assert main(["build", str(tmp_path / "nope"), str(tmp_path / "out")]) == 2
    assert "Input directory not found" in capsys.readouterr().err


def test_missing_config_file(site_dir, tmp_path):
    assert main(["build", str(site_dir), str(tmp_path / "out"), "--config", str(tmp_path / "none.toml")]) == 2


def test_empty_site_builds(tmp_path):
    source = tmp_path / "empty"
    source.mkdir()
    out = tmp_path / "out"
    report = build_site(source, out, resolve_config(source, None))
    assert report.ok
    assert report.documents == 0
    assert "No posts yet." in (out / "index.html").read_text(encoding="utf-8")
    assert not (out / "atom.xml").exists()


def test_manifest_entries_outside_the_output_are_ignored(tmp_path):
    write(tmp_path, MANIFEST_NAME, '{"files": ["../site/_posts/a.md", "/etc/hosts", "index.html", 3]}')
    assert load_manifest(tmp_path) == {"index.html"}
