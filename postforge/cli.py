from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import logging
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, NamedTuple, Optional, TypeVar

from .config import SiteConfig, config_from_mapping, find_config, load_config
from .content import parse_document
from .errors import ConfigError, ContentError, PostforgeError
from .models import BuildReport, RenderedBody, RenderedPage
from .pages import (
    Site,
    assign_output_paths,
    build_document_page,
    build_listing_pages,
    load_layouts,
    site_year,
    unique_slugs,
)
from .render import render_document, write_bytes, write_text
from .store import SourceRef, list_assets, read_bytes, read_source, scan_sources
from .taxonomy import build_taxonomy
from .utils import MANIFEST_NAME, check_prune_target, load_manifest, manifest_text

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class Loaded(NamedTuple):
    ref: SourceRef
    rendered: Optional[RenderedBody]
    timestamp: Optional[dt.datetime]
    error: Optional[Exception]


def run_parallel(func: Callable[[T], R], items: list[T], workers: int) -> list[R]:
    """Map ``func`` over ``items``, keeping input order."""
    workers = min(workers, len(items)) if items else 1
    if workers <= 1:
        return [func(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(func, items))


def load_source(ref: SourceRef, config: SiteConfig) -> Loaded:
    try:
        source = read_source(ref, retries=config.io_retries, pin_order=config.pin_order)
        document = parse_document(source)
        rendered = render_document(document, strict=config.strict)
    except (ContentError, OSError) as exc:
        return Loaded(ref, None, None, exc)
    return Loaded(ref, rendered, source.timestamp, None)


def record_failure(report: BuildReport, identity: str, exc: Exception) -> None:
    if isinstance(exc, ContentError):
        report.error(identity, exc.kind, exc.message, exc.line)
    else:
        report.error(identity, "io", str(exc))


def prune_output(output_dir: Path, stale: Iterable[str], report: BuildReport) -> None:
    """Delete earlier build outputs that this build no longer produces.

    Only paths from the previous build manifest are candidates, so files
    postforge never wrote are left alone.
    """
    for name in sorted(stale):
        path = output_dir / name
        if not path.is_file():
            continue
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            report.error(name, "io", f"cannot remove stale file: {exc}")
            continue
        report.removed.append(Path(name))
        parent = path.parent
        while parent != output_dir and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent


def build_site(input_dir: Path, output_dir: Path, config: SiteConfig) -> BuildReport:
    """Run one full build and report every problem found along the way."""
    if not input_dir.is_dir():
        raise PostforgeError(f"Input directory not found: {input_dir}")
    if config.prune:
        check_prune_target(output_dir, input_dir)
    report = BuildReport()
    workers = config.workers
    retries = config.io_retries

    refs = scan_sources(input_dir)
    logger.debug("Found %d sources in %s, using %d workers", len(refs), input_dir, workers)
    loaded = run_parallel(lambda ref: load_source(ref, config), refs, workers)

    rendered_by_identity: dict[Path, RenderedBody] = {}
    timestamps: dict[Path, dt.datetime] = {}
    for item in loaded:
        identity = item.ref.identity.as_posix()
        if item.error is not None:
            record_failure(report, identity, item.error)
            continue
        for problem in item.rendered.problems:
            report.warn(identity, "render", f"{problem.message} (passed through)", problem.line)
        rendered_by_identity[item.ref.identity] = item.rendered
        timestamps[item.ref.identity] = item.timestamp

    paths, failures = assign_output_paths(rendered.document for rendered in rendered_by_identity.values())
    for failure in failures:
        record_failure(report, failure.path.as_posix(), failure)
        rendered_by_identity.pop(failure.path, None)
    documents = [rendered.document for rendered in rendered_by_identity.values()]
    report.documents = len(documents)

    taxonomy = build_taxonomy(documents, timestamps)
    site = Site(
        config=config,
        taxonomy=taxonomy,
        layouts=load_layouts(config.templates_dir),
        paths=paths,
        timestamps=timestamps,
        category_slugs=unique_slugs(taxonomy.categories),
        tag_slugs=unique_slugs(taxonomy.tags),
        year=site_year(config, documents),
    )

    ordered = sorted(rendered_by_identity.values(), key=lambda r: r.document.identity.as_posix())
    pages: list[RenderedPage] = run_parallel(lambda r: build_document_page(site, r), ordered, workers)
    summaries = {rendered.document.identity: rendered.summary for rendered in ordered}
    pages.extend(build_listing_pages(site, summaries))

    assets = list_assets(input_dir)
    asset_paths = {rel for _, rel in assets}
    pages = [page for page in pages if page.path not in asset_paths]
    output_dir.mkdir(parents=True, exist_ok=True)
    previous = load_manifest(output_dir)

    def write_page(page: RenderedPage) -> tuple[Path, Optional[bool], Optional[OSError]]:
        try:
            return page.path, write_text(output_dir / page.path, page.html, retries), None
        except OSError as exc:
            return page.path, None, exc

    def copy_asset(asset: tuple[Path, Path]) -> tuple[Path, Optional[bool], Optional[OSError]]:
        source, rel = asset
        try:
            return rel, write_bytes(output_dir / rel, read_bytes(source, retries), retries), None
        except OSError as exc:
            return rel, None, exc

    results = run_parallel(write_page, pages, workers) + run_parallel(copy_asset, assets, workers)
    for rel, changed, exc in results:
        if exc is not None:
            report.error(rel.as_posix(), "io", str(exc))
        elif changed:
            report.written.append(rel)
        else:
            report.unchanged.append(rel)

    produced = {rel.as_posix() for rel, _, _ in results}
    if config.prune and report.ok:
        prune_output(output_dir, previous - produced, report)
        recorded = produced
    else:
        if not report.ok and previous - produced:
            logger.info("Build had errors, keeping %d earlier output files", len(previous - produced))
        recorded = previous | produced
    try:
        write_text(output_dir / MANIFEST_NAME, manifest_text(recorded), retries)
    except OSError as exc:
        report.error(MANIFEST_NAME, "io", str(exc))
    return report


def resolve_config(input_dir: Path, config_path: Optional[Path]) -> SiteConfig:
    if config_path is None:
        config_path = find_config(input_dir)
    elif not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    if config_path is None:
        return SiteConfig()
    return config_from_mapping(load_config(config_path), base_dir=config_path.parent)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="postforge", description="Static site builder for Markdown posts and tabs.")
    commands = parser.add_subparsers(dest="command", required=True)
    build = commands.add_parser("build", help="Build the site from INPUT into OUTPUT.")
    build.add_argument("input", type=Path, help="Directory containing _posts/ and _tabs/.")
    build.add_argument("output", type=Path, help="Output directory for the site.")
    build.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Fail documents with malformed raw HTML instead of passing it through.",
    )
    build.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to site config file (TOML/YAML/JSON). Defaults to site.toml in INPUT.",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = resolve_config(args.input, args.config)
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 2
    if args.strict:
        config = dataclasses.replace(config, strict=True)

    level = logging.getLevelName(config.log_level)
    logging.basicConfig(
        level=level if isinstance(level, int) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    start = time.perf_counter()
    try:
        report = build_site(args.input, args.output, config)
    except PostforgeError as exc:
        print(exc, file=sys.stderr)
        return 2
    elapsed = time.perf_counter() - start

    for problem in report.warnings:
        print(f"warning: {problem.format()}", file=sys.stderr)
    for problem in report.errors:
        print(f"error: {problem.format()}", file=sys.stderr)
    print(
        f"Built {report.documents} documents: {len(report.written)} files written, "
        f"{len(report.unchanged)} unchanged, {len(report.removed)} removed."
    )
    print(f"Build completed in {elapsed:.2f}s.")
    if not report.ok:
        print(f"Build failed with {len(report.errors)} error(s).", file=sys.stderr)
        return 1
    print(f"Site generated in: {os.fspath(args.output)}")
    return 0
