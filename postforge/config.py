from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError
from .store import PIN_ORDERS
from .utils import parse_bool, parse_int

try:
    import tomllib as toml
except ImportError:
    import tomli as toml

DEFAULT_CONFIG_NAMES = ("site.toml", "site.yml", "site.yaml", "site.json")
MAX_WORKERS = 32


@dataclass(frozen=True)
class SiteConfig:
    site_name: str = "Postforge Site"
    site_description: str = ""
    site_url: str = ""
    author: str = ""
    posts_per_page: int = 10
    build_workers: int = 0
    io_retries: int = 3
    strict: bool = False
    pin_order: str = "filename"
    prune: bool = True
    templates_dir: Optional[Path] = None
    copyright_year: str = ""
    log_level: str = "WARNING"

    @property
    def workers(self) -> int:
        workers = self.build_workers
        if workers <= 0:
            workers = os.cpu_count() or 1
        return max(1, min(workers, MAX_WORKERS))


def load_config(path: Path) -> dict:
    """Read a TOML, YAML or JSON config file into a mapping. A missing file yields ``{}``."""
    if not path.exists():
        return {}
    suffix = path.suffix.lower()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if suffix == ".toml":
        try:
            data = toml.loads(text)
        except toml.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in config file {path}: {exc}") from exc
    elif suffix in {".yml", ".yaml"}:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc
        if data is None:
            return {}
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")
    return data


def find_config(input_dir: Path) -> Optional[Path]:
    for name in DEFAULT_CONFIG_NAMES:
        candidate = input_dir / name
        if candidate.is_file():
            return candidate
    return None


def config_from_mapping(data: dict, base_dir: Optional[Path] = None) -> SiteConfig:
    defaults = SiteConfig()

    def cfg_str(key: str, default: str) -> str:
        value = data.get(key)
        return default if value is None else str(value).strip()

    def cfg_int(key: str, default: int) -> int:
        return parse_int(data.get(key), default)

    def cfg_bool(key: str, default: bool) -> bool:
        value = data.get(key)
        return default if value is None else parse_bool(value)

    pin_order = cfg_str("pin_order", defaults.pin_order).lower()
    if pin_order not in PIN_ORDERS:
        raise ConfigError(f"pin_order must be one of {', '.join(sorted(PIN_ORDERS))}, got {pin_order!r}")

    templates_dir = None
    templates_value = cfg_str("templates_dir", "")
    if templates_value:
        templates_dir = Path(templates_value)
        if not templates_dir.is_absolute() and base_dir is not None:
            templates_dir = base_dir / templates_dir

    return SiteConfig(
        site_name=cfg_str("site_name", defaults.site_name),
        site_description=cfg_str("site_description", defaults.site_description),
        site_url=cfg_str("site_url", defaults.site_url),
        author=cfg_str("author", defaults.author),
        posts_per_page=max(1, cfg_int("posts_per_page", defaults.posts_per_page)),
        build_workers=cfg_int("build_workers", defaults.build_workers),
        io_retries=max(0, cfg_int("io_retries", defaults.io_retries)),
        strict=cfg_bool("strict", defaults.strict),
        pin_order=pin_order,
        prune=cfg_bool("prune", defaults.prune),
        templates_dir=templates_dir,
        copyright_year=cfg_str("copyright_year", defaults.copyright_year),
        log_level=cfg_str("log_level", defaults.log_level).upper(),
    )
