"""Media directory scanner.

Lists the upload candidates of one directory (not recursive) in sorted
name order, then applies the resume point and the file limit.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path

from mediasync.config import ScannerConfig
from mediasync.constants import DEFAULT_IMAGE_MIME, DEFAULT_VIDEO_MIME, VIDEO_EXTENSIONS
from mediasync.models import LocalFile

logger = logging.getLogger(__name__)


def guess_mime_type(filename: str) -> str:
    """MIME type for *filename*, defaulting by extension class when unknown."""
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type:
        return mime_type
    if Path(filename).suffix.lower() in VIDEO_EXTENSIONS:
        return DEFAULT_VIDEO_MIME
    return DEFAULT_IMAGE_MIME


class MediaScanner:
    """Discovers :class:`LocalFile` inputs for a batch.

    Usage:
        config = ScannerConfig(media_dir=Path("./photos"), limit=50)
        files = MediaScanner(config).discover()
    """

    def __init__(self, config: ScannerConfig) -> None:
        self.config = config

    def list_candidates(self) -> list[Path]:
        """Eligible files in the media directory, sorted by name.

        Raises:
            FileNotFoundError: If the media directory does not exist.
        """
        root = self.config.media_dir
        if not root.is_dir():
            raise FileNotFoundError(f"Media directory not found: {root}")

        matched: list[Path] = []
        for path in sorted(root.iterdir(), key=lambda p: p.name):
            if self.config.skip_hidden and path.name.startswith("."):
                continue
            if not path.is_file():
                continue
            ext = path.suffix.lower()
            if ext not in self.config.allowed_extensions:
                logger.debug("Skipping %s: extension %r not allowed", path.name, ext)
                continue
            matched.append(path)
        return matched

    def select(self, candidates: list[Path]) -> list[Path]:
        """Apply ``start_from`` / ``from_inclusive`` and ``limit``.

        An unknown ``start_from`` name selects from the beginning.
        """
        start = 0
        if self.config.start_from:
            names = [p.name for p in candidates]
            if self.config.start_from in names:
                idx = names.index(self.config.start_from)
                start = idx if self.config.from_inclusive else idx + 1
            else:
                logger.warning(
                    "--start-from %r not found in %s; starting from the first file",
                    self.config.start_from,
                    self.config.media_dir,
                )
        pending = candidates[start:]
        if self.config.limit > 0:
            pending = pending[: self.config.limit]
        return pending

    def discover(self) -> list[LocalFile]:
        """Return the selected files as :class:`LocalFile` records."""
        files = [
            LocalFile(
                path=path,
                basename=path.name,
                size=path.stat().st_size,
                mime_type=guess_mime_type(path.name),
            )
            for path in self.select(self.list_candidates())
        ]
        logger.info("Discovered %d file(s) in %s", len(files), self.config.media_dir)
        return files
