from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from glooko_ingest import config
from glooko_ingest.config import Settings, open_table
from glooko_ingest.table import SQLiteTable


def test_defaults_from_empty_environment() -> None:
    settings = Settings.from_env({})
    assert settings == Settings()
    assert settings.batch_size == 25


def test_from_env_reads_variables() -> None:
    settings = Settings.from_env(
        {
            "GLOOKO_USER_ID": "u1",
            "GLOOKO_EXPORT_DIR": "/data/exports",
            "GLOOKO_TABLE_BACKEND": "DynamoDB",
            "GLOOKO_TABLE_NAME": "records",
            "AWS_REGION": "us-west-2",
            "GLOOKO_BATCH_SIZE": "10",
            "GLOOKO_SOURCE_TZ": "UTC",
        }
    )
    assert settings.user_id == "u1"
    assert settings.export_dir == Path("/data/exports")
    assert settings.backend == "dynamodb"
    assert settings.table_name == "records"
    assert settings.region == "us-west-2"
    assert settings.batch_size == 10
    assert settings.source_tz == "UTC"


def test_batch_size_is_capped() -> None:
    assert Settings.from_env({"GLOOKO_BATCH_SIZE": "100"}).batch_size == 25


@pytest.mark.parametrize(
    ("env", "message"),
    [
        ({"GLOOKO_TABLE_BACKEND": "postgres"}, "GLOOKO_TABLE_BACKEND"),
        ({"GLOOKO_BATCH_SIZE": "many"}, "not an integer"),
        ({"GLOOKO_BATCH_SIZE": "0"}, ">= 1"),
        ({"GLOOKO_SOURCE_TZ": "Mars/Olympus"}, "Unknown timezone"),
    ],
)
def test_invalid_settings(env: dict[str, str], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        Settings.from_env(env)


def test_open_table_sqlite(tmp_path: Path) -> None:
    table = open_table(Settings(db_path=tmp_path / "db" / "records.sqlite3"))
    assert isinstance(table, SQLiteTable)
    assert (tmp_path / "db" / "records.sqlite3").exists()


def test_open_table_dynamodb_requires_name_and_region() -> None:
    with pytest.raises(ValueError, match="GLOOKO_TABLE_NAME"):
        open_table(Settings(backend="dynamodb", region="us-west-2"))


def test_open_table_dynamodb(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[Any, ...]] = []

    def _connect(
        table_name: str, region: str, endpoint_url: str | None = None
    ) -> str:
        calls.append((table_name, region, endpoint_url))
        return "table"

    monkeypatch.setattr(config.DynamoTable, "connect", _connect)

    table = open_table(
        Settings(
            backend="dynamodb",
            table_name="records",
            region="us-west-2",
            dynamodb_endpoint="http://localhost:8000",
        )
    )

    assert table == "table"
    assert calls == [("records", "us-west-2", "http://localhost:8000")]
