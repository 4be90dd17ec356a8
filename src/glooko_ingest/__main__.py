"""Punto de entrada ``python -m glooko_ingest``."""

from __future__ import annotations

from glooko_ingest.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
