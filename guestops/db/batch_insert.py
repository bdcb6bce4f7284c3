from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""Batched INSERT via psycopg2.extras.execute_values.

Used by PostgresStore for bulk guest inserts and audit rows written during an
import apply. The caller owns the transaction (BEGIN/COMMIT/ROLLBACK); a failure
here surfaces as BatchInsertError and the caller rolls back.
"""

__all__ = [
    "BatchInsertError",
    "InsertResult",
    "batch_insert",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: bool = False,
    page_size: int = 1000,
    returning_columns: Sequence[str] | None = None,
) -> InsertResult:
    """Insert `rows` into `table` in pages of `page_size`.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: 対象テーブル名 (固定値のみ渡す想定)
    columns: 挿入列
    rows: 行シーケンス (columns と同順)
    returning: True の場合 RETURNING 句を付与し挿入行を返す
    returning_columns: RETURNING 対象列 (省略時 *)
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    if returning:
        sql += " RETURNING " + (",".join(f'"{c}"' for c in returning_columns) if returning_columns else "*")

    try:
        returned = execute_values(cursor, sql, rows_list, page_size=page_size, fetch=returning)
    except Exception as e:
        raise BatchInsertError(f"{table}: {e}") from e

    return InsertResult(inserted_rows=len(rows_list), returned_values=returned if returning else None)
