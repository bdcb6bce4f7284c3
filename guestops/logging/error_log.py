from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..models.diff import RowError
from ..models.error_record import ErrorRecord

"""Error log buffering (JSON Lines).

- 固定スキーマ (guestops/config/error_log_schema.json, 追加キー禁止)
- 実行ごとに `<logs_dir>/errors-YYYYMMDD-HHMMSS.log` (UTC) を生成 (必要時のみ)
- バッファリングして flush() でまとめて追記
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "LOGS_DIR",
    "ROW_ERROR_TYPE",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"
ROW_ERROR_TYPE = "ROW_VALIDATION"


class ErrorLogBuffer:
    """In-memory buffer for error records. flush() writes JSON Lines.

    The file path is fixed on first access; serial use only.
    """

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._logs_dir = Path(logs_dir) if logs_dir is not None else LOGS_DIR
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self.written = 0

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def record(self, file: str, row: int, error_type: str, message: str) -> ErrorRecord:
        rec = ErrorRecord.create(file=file, row=row, error_type=error_type, message=message)
        self.append(rec)
        return rec

    def extend_row_errors(self, file: str, errors: list[RowError]) -> None:
        """One record per message of each RowError."""
        for err in errors:
            for msg in err.errors:
                self.record(file, err.row_number, ROW_ERROR_TYPE, msg)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records; returns the file path, or None if nothing was ever written."""
        if not self._records:
            return self._file_path
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self.written += len(self._records)
        self._records.clear()
        return fp
