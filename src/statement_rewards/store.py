"""Short-lived on-disk spool for downloaded statement attachments."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from slugify import slugify

from statement_rewards.models import StatementSource

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)


class AttachmentSpool:
    """Holds one PDF on disk for the duration of its processing.

    File layout: {root}/{source}-{YYYYmmddTHHMMSSffffff}-{slug}.pdf
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def path_for(self, filename: str, source: StatementSource) -> Path:
        """Return a collision-free spool path for an attachment."""
        stamp = datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S%f")
        slug = self._slugify_filename(filename)
        path = self.root / f"{source}-{stamp}-{slug}.pdf"

        # Handle duplicates by appending numeric suffix
        counter = 1
        while path.exists():
            counter += 1
            path = self.root / f"{source}-{stamp}-{slug}_{counter}.pdf"
        return path

    @contextmanager
    def hold(
        self,
        filename: str,
        data: bytes,
        source: StatementSource = StatementSource.GMAIL,
    ) -> Iterator[Path]:
        """Write data to the spool and delete it when the block exits."""
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(filename, source)
        path.write_bytes(data)
        logger.debug("Spooled %s to %s", filename, path.name)
        try:
            yield path
        finally:
            path.unlink(missing_ok=True)
            logger.debug("Removed spooled file %s", path.name)

    @staticmethod
    def _slugify_filename(filename: str) -> str:
        """Convert an attachment name to a filesystem-safe slug, max 50 chars."""
        stem = filename[:-4] if filename.lower().endswith(".pdf") else filename
        return str(slugify(stem, max_length=50)) or "attachment"
