"""Offload oversized results to scratch files, returning a preview and a pointer."""

import os
import secrets
import tempfile
from pathlib import Path

from utils.logger import get_logger

logger = get_logger(__name__)

FILE_OFFLOAD_THRESHOLD = 30_000
PREVIEW_SIZE = 2_000
TEMP_DIR_PREFIX = "web-tools-"


def should_offload(content: str) -> bool:
    """True when content is too large to return inline."""
    return len(content) >= FILE_OFFLOAD_THRESHOLD


def build_offload_result(content: str, file_path: str | Path) -> str:
    """
    Build the replacement text: preview + file path + instructions.

    Args:
        content: The full content that was written to file_path
        file_path: Scratch file holding the full content

    Returns:
        Preview of the first PREVIEW_SIZE characters followed by a pointer line
    """
    parts = [content[:PREVIEW_SIZE]]
    if len(content) > PREVIEW_SIZE:
        parts.append("\n...\n")
    parts.append(
        f"\nFull content saved to {file_path} ({len(content)} chars). "
        "Use grep/rg or other text-search tools on the file to search/filter."
    )
    return "".join(parts)


class OffloadManager:
    """
    Writes scratch files under a private temp directory and tracks them for cleanup.
    """

    def __init__(self, base_dir: str | Path | None = None):
        """
        Args:
            base_dir: Parent for the scratch directory (defaults to the system temp dir)
        """
        self.base_dir = Path(base_dir) if base_dir is not None else None
        self._temp_dir: Path | None = None
        self._tracked: set[Path] = set()

    @property
    def tracked_files(self) -> set[Path]:
        return set(self._tracked)

    def _ensure_temp_dir(self) -> Path:
        if self._temp_dir is None:
            self._temp_dir = Path(
                tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX, dir=self.base_dir)
            )
        return self._temp_dir

    def offload_to_file(self, content: str) -> Path:
        """
        Write content to a new scratch file (mode 0600, never overwrites).

        Returns:
            Path of the written file

        Raises:
            FileExistsError: if the generated name already exists
        """
        file_path = self._ensure_temp_dir() / f"{secrets.token_hex(8)}.txt"
        fd = os.open(file_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        self._tracked.add(file_path)

        logger.info(
            "Offloaded large result to scratch file",
            extra={"extra_fields": {"path": str(file_path), "chars": len(content)}},
        )
        return file_path

    def offload(self, content: str) -> tuple[str, Path | None]:
        """
        Offload content when it is over the threshold.

        Returns:
            (display_text, file_path) - file_path is None when content stays inline
        """
        if not should_offload(content):
            return content, None
        file_path = self.offload_to_file(content)
        return build_offload_result(content, file_path), file_path

    def cleanup(self) -> None:
        """Remove all tracked scratch files. Best-effort: failures are ignored."""
        for file_path in self._tracked:
            try:
                file_path.unlink()
            except OSError:
                pass
        self._tracked.clear()

        if self._temp_dir is not None:
            try:
                self._temp_dir.rmdir()
            except OSError:
                pass
            self._temp_dir = None
