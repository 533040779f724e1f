from __future__ import annotations

from pathlib import Path
from typing import Optional


class PostforgeError(Exception):
    pass


class ConfigError(PostforgeError):
    pass


class ContentError(PostforgeError):
    """A failure confined to one source document."""

    kind = "content"

    def __init__(self, path: Path | str, message: str, line: Optional[int] = None) -> None:
        self.path = Path(path)
        self.message = message
        self.line = line
        super().__init__(self.location() + f": {message}")

    def location(self) -> str:
        where = self.path.as_posix()
        if self.line is not None:
            where = f"{where}:{self.line}"
        return where


class MalformedFrontMatter(ContentError):
    kind = "front-matter"


class RenderError(ContentError):
    kind = "render"
