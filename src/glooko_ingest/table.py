"""Backends de tabla clave-valor con escrituras condicionales.

Ambos backends guardan ítems con la misma forma::

    {"pk", "sk", "gsi1pk", "gsi1sk", "gsi2pk", "gsi2sk", "data"}

``GSI1`` es el índice de todos los registros por tiempo y ``GSI2`` el índice
por tipo y fecha.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

INDEX_ALL = "GSI1"
INDEX_TYPE = "GSI2"

_INDEX_COLUMNS = {
    None: ("pk", "sk"),
    INDEX_ALL: ("gsi1pk", "gsi1sk"),
    INDEX_TYPE: ("gsi2pk", "gsi2sk"),
}

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS items (
    pk TEXT NOT NULL,
    sk TEXT NOT NULL,
    gsi1pk TEXT,
    gsi1sk TEXT,
    gsi2pk TEXT,
    gsi2sk TEXT,
    guard_value REAL,
    data TEXT NOT NULL,
    PRIMARY KEY (pk, sk)
);

CREATE INDEX IF NOT EXISTS idx_items_gsi1 ON items(gsi1pk, gsi1sk);
CREATE INDEX IF NOT EXISTS idx_items_gsi2 ON items(gsi2pk, gsi2sk);
"""


class ConditionalWriteFailed(Exception):
    """The write precondition did not hold for the existing item."""


class Table(Protocol):
    """Key-value table with conditional puts and sorted range queries."""

    def put(self, item: dict[str, Any]) -> None:
        """Unconditional put."""

    def put_if_absent(self, item: dict[str, Any]) -> None:
        """Put only when no item exists at ``(pk, sk)``.

        Raises:
            ConditionalWriteFailed: If an item already exists.
        """

    def put_if_greater(self, item: dict[str, Any], attr: str, value: float) -> None:
        """Put when absent or when the stored ``data[attr]`` is below ``value``.

        Raises:
            ConditionalWriteFailed: If the stored value is >= ``value``.
        """

    def query(
        self,
        partition: str,
        start: str | None = None,
        end: str | None = None,
        *,
        index: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[dict[str, Any]]:
        """Items in ``partition`` whose sort key is within ``[start, end]``."""


class SQLiteTable:
    """Table backed by a local SQLite file."""

    def __init__(self, db_path: Path) -> None:
        """Create table file and ensure schema exists."""
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()

    @staticmethod
    def _row(item: dict[str, Any], guard: float | None) -> tuple[object, ...]:
        return (
            item["pk"],
            item["sk"],
            item.get("gsi1pk"),
            item.get("gsi1sk"),
            item.get("gsi2pk"),
            item.get("gsi2sk"),
            guard,
            json.dumps(item["data"], ensure_ascii=True, sort_keys=True),
        )

    def put(self, item: dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO items(
                    pk, sk, gsi1pk, gsi1sk, gsi2pk, gsi2sk, guard_value, data
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._row(item, None),
            )
            conn.commit()

    def put_if_absent(self, item: dict[str, Any]) -> None:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO items(
                    pk, sk, gsi1pk, gsi1sk, gsi2pk, gsi2sk, guard_value, data
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(pk, sk) DO NOTHING
                """,
                self._row(item, None),
            )
            conn.commit()
        if cur.rowcount == 0:
            raise ConditionalWriteFailed(f"{item['pk']} {item['sk']} exists")

    def put_if_greater(self, item: dict[str, Any], attr: str, value: float) -> None:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO items(
                    pk, sk, gsi1pk, gsi1sk, gsi2pk, gsi2sk, guard_value, data
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(pk, sk) DO UPDATE SET
                    gsi1pk = excluded.gsi1pk,
                    gsi1sk = excluded.gsi1sk,
                    gsi2pk = excluded.gsi2pk,
                    gsi2sk = excluded.gsi2sk,
                    guard_value = excluded.guard_value,
                    data = excluded.data
                WHERE items.guard_value IS NULL
                   OR items.guard_value < excluded.guard_value
                """,
                self._row(item, float(value)),
            )
            conn.commit()
        if cur.rowcount == 0:
            raise ConditionalWriteFailed(
                f"{item['pk']} {item['sk']} has {attr} >= {value}"
            )

    def query(
        self,
        partition: str,
        start: str | None = None,
        end: str | None = None,
        *,
        index: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[dict[str, Any]]:
        pk_col, sk_col = _INDEX_COLUMNS[index]
        sql = (
            "SELECT pk, sk, gsi1pk, gsi1sk, gsi2pk, gsi2sk, data FROM items "
            f"WHERE {pk_col} = ?"
        )
        params: list[object] = [partition]
        if start is not None:
            sql += f" AND {sk_col} >= ?"
            params.append(start)
        if end is not None:
            sql += f" AND {sk_col} <= ?"
            params.append(end)
        sql += f" ORDER BY {sk_col} {'DESC' if newest_first else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        out: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            item["data"] = json.loads(row["data"])
            out.append(item)
        return out


def _to_dynamo(value: Any) -> Any:
    """Floats -> Decimal, recursively; DynamoDB rejects Python floats."""
    return json.loads(json.dumps(value), parse_float=Decimal)


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


def _is_condition_failure(exc: ClientError) -> bool:
    code = exc.response.get("Error", {}).get("Code")
    return code == "ConditionalCheckFailedException"


class DynamoTable:
    """Table backed by a DynamoDB table (boto3 resource ``Table``)."""

    def __init__(self, table: Any) -> None:
        self._table = table

    @classmethod
    def connect(
        cls,
        table_name: str,
        region: str,
        endpoint_url: str | None = None,
    ) -> DynamoTable:
        """Build from a boto3 resource."""
        import boto3

        resource = boto3.resource(
            "dynamodb", region_name=region, endpoint_url=endpoint_url or None
        )
        return cls(resource.Table(table_name))

    def put(self, item: dict[str, Any]) -> None:
        self._table.put_item(Item=_to_dynamo(item))

    def put_if_absent(self, item: dict[str, Any]) -> None:
        try:
            self._table.put_item(
                Item=_to_dynamo(item),
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                raise ConditionalWriteFailed(str(exc)) from exc
            raise

    def put_if_greater(self, item: dict[str, Any], attr: str, value: float) -> None:
        try:
            self._table.put_item(
                Item=_to_dynamo(item),
                ConditionExpression="attribute_not_exists(pk) OR #data.#attr < :new",
                ExpressionAttributeNames={"#data": "data", "#attr": attr},
                ExpressionAttributeValues={":new": _to_dynamo(value)},
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                raise ConditionalWriteFailed(str(exc)) from exc
            raise

    def query(
        self,
        partition: str,
        start: str | None = None,
        end: str | None = None,
        *,
        index: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[dict[str, Any]]:
        pk_col, sk_col = _INDEX_COLUMNS[index]
        condition = Key(pk_col).eq(partition)
        if start is not None and end is not None:
            condition = condition & Key(sk_col).between(start, end)
        elif start is not None:
            condition = condition & Key(sk_col).gte(start)
        elif end is not None:
            condition = condition & Key(sk_col).lte(end)

        kwargs: dict[str, Any] = {
            "KeyConditionExpression": condition,
            "ScanIndexForward": not newest_first,
        }
        if index is not None:
            kwargs["IndexName"] = index

        items: list[dict[str, Any]] = []
        while True:
            if limit is not None:
                kwargs["Limit"] = limit - len(items)
            response = self._table.query(**kwargs)
            items.extend(_from_dynamo(item) for item in response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key or (limit is not None and len(items) >= limit):
                break
            kwargs["ExclusiveStartKey"] = last_key
        logger.debug(
            "DynamoDB query %s on %s returned %d items", partition, index, len(items)
        )
        return items
