"""ArtifactStore — sandboxed local directory for generated images and audio."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

MAX_ARTIFACT_SIZE = 25 * 1024 * 1024  # 25 MB per file

_SAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9._\-]")


class ArtifactStore:
    """Writes binary artifacts under a single root directory.

    Methods are synchronous; artifacts are small and local. Pass
    ``tmp_path / "artifacts"`` as *root* in tests.
    """

    def __init__(self, root: Path) -> None:
        self._root = root.resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    @staticmethod
    def sanitize_filename(name: str) -> str:
        """Replace unsafe characters and strip leading dots.

        Raises ``ValueError`` if nothing is left.
        """
        sanitized = _SAFE_FILENAME_RE.sub("_", name).lstrip(".")[:255]
        if not sanitized:
            msg = f"Filename is empty after sanitization: {name!r}"
            raise ValueError(msg)
        return sanitized

    def resolve(self, name: str) -> Path:
        """Map a relative ``a/b.png`` name to a path inside the root."""
        parts = [self.sanitize_filename(p) for p in name.split("/") if p]
        if not parts:
            msg = f"Path resolves to empty after sanitization: {name!r}"
            raise ValueError(msg)
        target = self._root.joinpath(*parts).resolve()
        if not target.is_relative_to(self._root):
            msg = f"Path traversal detected: {name!r}"
            raise ValueError(msg)
        return target

    def write(self, name: str, data: bytes) -> str:
        """Store *data* and return its path relative to the root."""
        if len(data) > MAX_ARTIFACT_SIZE:
            msg = f"Artifact too large: {len(data)} bytes (max {MAX_ARTIFACT_SIZE})"
            raise ValueError(msg)
        target = self.resolve(name)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        relative = target.relative_to(self._root).as_posix()
        logger.info("Wrote artifact %s (%d bytes)", relative, len(data))
        return relative

    def read_bytes(self, name: str) -> bytes:
        target = self.resolve(name)
        if not target.exists():
            msg = f"Artifact not found: {name}"
            raise FileNotFoundError(msg)
        return target.read_bytes()

    def exists(self, name: str) -> bool:
        return self.resolve(name).exists()

    def delete(self, name: str) -> bool:
        target = self.resolve(name)
        if not target.exists():
            return False
        target.unlink()
        return True
