"""Lectura de exportaciones de Glooko (ZIP o carpeta de CSV)."""

from __future__ import annotations

import logging
from pathlib import Path

from glooko_ingest.model import ExtractedFile
from glooko_ingest.sources.archive import extract_files, looks_like_zip
from glooko_ingest.sources.base import DataSource, SourcePaths

logger = logging.getLogger(__name__)


class GlookoExportSource(DataSource):
    """Glooko export reading source.

    ``root`` holds downloaded exports: ``*.zip`` archives or directories of
    CSV files.
    """

    def validate(self) -> None:
        """Validate that the export directory exists."""
        if not self._paths.root.exists():
            raise FileNotFoundError(str(self._paths.root))

    def newest_export(self) -> Path:
        """Return the newest ``*.zip`` export (or CSV directory) by mtime."""
        candidates = [
            p
            for p in self._paths.root.iterdir()
            if (p.is_file() and p.suffix.lower() == ".zip")
            or (p.is_dir() and any(p.glob("*.csv")))
        ]
        if not candidates:
            raise FileNotFoundError(f"No Glooko export in {self._paths.root}")
        return max(candidates, key=lambda p: p.stat().st_mtime)

    def load_files(self, path: Path) -> list[ExtractedFile]:
        """Read the CSV files of one export.

        Args:
            path: A ZIP archive, a directory of CSV files, or a single CSV.

        Returns:
            Extracted files; ZIP entries keep their archive order and
            directory files are sorted by name.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
            ValueError: If ``path`` is neither a ZIP archive nor CSV data.
        """
        if not path.exists():
            raise FileNotFoundError(str(path))

        if path.is_dir():
            files = [
                ExtractedFile(
                    name=p.name,
                    content=p.read_text(encoding="utf-8", errors="replace"),
                )
                for p in sorted(path.iterdir())
                if p.is_file() and p.suffix.lower() == ".csv"
            ]
            logger.info("Loaded %d CSV files from %s", len(files), path)
            return files

        if path.suffix.lower() == ".csv":
            content = path.read_text(encoding="utf-8", errors="replace")
            return [ExtractedFile(name=path.name, content=content)]

        buffer = path.read_bytes()
        if not looks_like_zip(buffer):
            raise ValueError(f"Not a ZIP archive: {path}")
        files = extract_files(buffer)
        logger.info("Extracted %d CSV files from %s", len(files), path)
        return files
