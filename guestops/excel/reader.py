from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

"""Spreadsheet reader: file bytes -> header + raw rows.

- 先頭シートのみ対象。1行目をヘッダ、2行目以降をデータ行として扱う
- 全セル空の行はスキップ
- pandas 既定の NA 文字列変換は行わない ("N/A" 等はそのまま残し、null sentinel
  としてマッピング段階で扱う)
- .xlsx (zip) は openpyxl、それ以外は CSV として読む
"""

__all__ = [
    "ParseError",
    "ParsedSpreadsheet",
    "parse_spreadsheet",
    "read_spreadsheet_file",
]

logger = logging.getLogger(__name__)

_ZIP_MAGIC = b"PK\x03\x04"


class ParseError(Exception):
    """Raised when the file is unreadable or has no data rows."""


@dataclass(frozen=True)
class ParsedSpreadsheet:
    sheet_name: str
    columns: list[str]
    rows: list[dict[str, Any]]  # 列名→生セル値

    def __len__(self) -> int:
        return len(self.rows)


def _read_frame(file_bytes: bytes) -> tuple[str, pd.DataFrame]:
    buf = io.BytesIO(file_bytes)
    if file_bytes[:4] == _ZIP_MAGIC:
        xls = pd.ExcelFile(buf, engine="openpyxl")
        if not xls.sheet_names:
            raise ParseError("workbook has no sheets")
        name = str(xls.sheet_names[0])
        df = xls.parse(name, header=None, dtype=object, keep_default_na=False, na_values=[""])
        return name, df
    df = pd.read_csv(buf, header=None, dtype=object, keep_default_na=False, na_values=[""])
    return "csv", df


def _unique_headers(raw: list[Any]) -> list[str]:
    seen: dict[str, int] = {}
    out: list[str] = []
    for i, h in enumerate(raw):
        name = "" if h is None or pd.isna(h) else str(h).strip()
        if not name:
            name = f"Column {i + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 0
        out.append(name)
    return out


def _plain_value(val: Any) -> Any:
    if val is None:
        return None
    if isinstance(val, pd.Timestamp):
        return None if pd.isna(val) else val.to_pydatetime()
    if isinstance(val, np.generic):
        val = val.item()
    if isinstance(val, float) and np.isnan(val):
        return None
    return val


def parse_spreadsheet(file_bytes: bytes, filename: str | None = None) -> ParsedSpreadsheet:
    """Parse the first sheet of an xlsx (or CSV) payload.

    Raises:
        ParseError: unreadable payload, missing header row or zero data rows
    """
    label = filename or "<bytes>"
    if not file_bytes:
        raise ParseError(f"{label}: empty file")
    try:
        sheet_name, df = _read_frame(file_bytes)
    except ParseError:
        raise
    except Exception as e:
        raise ParseError(f"{label}: failed to parse spreadsheet: {e}") from e

    if df.shape[0] < 1:
        raise ParseError(f"{label}: header row missing")
    columns = _unique_headers(df.iloc[0].tolist())

    rows: list[dict[str, Any]] = []
    for _, raw in df.iloc[1:].iterrows():
        if raw.isna().all():
            continue
        rows.append({col: _plain_value(v) for col, v in zip(columns, raw.tolist(), strict=False)})

    if not rows:
        raise ParseError(f"{label}: no data rows found")
    logger.debug("parsed %s sheet=%s columns=%d rows=%d", label, sheet_name, len(columns), len(rows))
    return ParsedSpreadsheet(sheet_name=sheet_name, columns=columns, rows=rows)


def read_spreadsheet_file(path: Path) -> ParsedSpreadsheet:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ParseError(f"{path}: cannot read file: {e}") from e
    return parse_spreadsheet(data, filename=path.name)
