"""Configuración desde variables de entorno."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path

from glooko_ingest.storage import MAX_BATCH_SIZE
from glooko_ingest.table import DynamoTable, SQLiteTable, Table
from glooko_ingest.timestamps import SOURCE_TZ_NAME, resolve_tz

logger = logging.getLogger(__name__)

BACKENDS = ("sqlite", "dynamodb")


@dataclass(frozen=True)
class Settings:
    """Runtime settings for one ingestion job."""

    user_id: str = "default"
    export_dir: Path = Path("~/glooko/exports")
    backend: str = "sqlite"
    db_path: Path = Path("~/glooko/records.sqlite3")
    table_name: str | None = None
    region: str | None = None
    dynamodb_endpoint: str | None = None
    batch_size: int = MAX_BATCH_SIZE
    source_tz: str = SOURCE_TZ_NAME

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``GLOOKO_*`` and ``AWS_REGION`` variables.

        Raises:
            ValueError: If the backend, batch size or timezone is invalid.
        """
        env = os.environ if environ is None else environ
        backend = env.get("GLOOKO_TABLE_BACKEND", "sqlite").strip().lower()
        if backend not in BACKENDS:
            raise ValueError(f"GLOOKO_TABLE_BACKEND must be one of {BACKENDS}")

        raw_batch = env.get("GLOOKO_BATCH_SIZE", str(MAX_BATCH_SIZE))
        try:
            batch_size = int(raw_batch)
        except ValueError as exc:
            raise ValueError(
                f"GLOOKO_BATCH_SIZE is not an integer: {raw_batch}"
            ) from exc
        if batch_size < 1:
            raise ValueError("GLOOKO_BATCH_SIZE must be >= 1")
        if batch_size > MAX_BATCH_SIZE:
            logger.warning(
                "GLOOKO_BATCH_SIZE=%d capped at %d", batch_size, MAX_BATCH_SIZE
            )
            batch_size = MAX_BATCH_SIZE

        source_tz = env.get("GLOOKO_SOURCE_TZ") or SOURCE_TZ_NAME
        resolve_tz(source_tz)

        return cls(
            user_id=env.get("GLOOKO_USER_ID") or "default",
            export_dir=Path(env.get("GLOOKO_EXPORT_DIR") or "~/glooko/exports"),
            backend=backend,
            db_path=Path(env.get("GLOOKO_DB_PATH") or "~/glooko/records.sqlite3"),
            table_name=env.get("GLOOKO_TABLE_NAME") or None,
            region=env.get("AWS_REGION") or None,
            dynamodb_endpoint=env.get("GLOOKO_DYNAMODB_ENDPOINT") or None,
            batch_size=batch_size,
            source_tz=source_tz,
        )

    @property
    def zone(self) -> tzinfo:
        return resolve_tz(self.source_tz)


def open_table(settings: Settings) -> Table:
    """Construct the configured table backend.

    Raises:
        ValueError: If DynamoDB is selected without a table name or region.
    """
    if settings.backend == "dynamodb":
        if not settings.table_name or not settings.region:
            raise ValueError(
                "GLOOKO_TABLE_NAME and AWS_REGION are required for dynamodb"
            )
        logger.info(
            "Using DynamoDB table %s in %s", settings.table_name, settings.region
        )
        return DynamoTable.connect(
            settings.table_name, settings.region, settings.dynamodb_endpoint
        )
    db_path = settings.db_path.expanduser()
    logger.info("Using SQLite table at %s", db_path)
    return SQLiteTable(db_path)
