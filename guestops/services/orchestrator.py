from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..config.loader import ImportConfig
from ..db.store import GuestStore
from ..excel.cell_types import validate_cells
from ..excel.reader import ParsedSpreadsheet, ParseError, parse_spreadsheet
from ..logging.error_log import ErrorLogBuffer
from ..models.alert import CellValidationResult
from ..models.diff import ApplyResult
from ..models.guest import CanonicalField
from ..models.import_session import ImportPreview, ImportReport, ImportStatus
from .apply import ApplyError, ConcurrentModificationError, ValidationError, apply_diff
from .column_mapper import (
    ColumnMapping,
    MappingIncompleteError,
    apply_mapping,
    auto_map_columns,
    ensure_required_mapped,
    set_column_mapping,
)
from .diff_engine import compute_diff
from .import_analyzer import analyze_diff

"""Import session orchestration.

One ImportSession drives a single spreadsheet through
load → (set_mapping)* → preview → apply | cancel.

Errors are recorded in the JSON Lines error log as they happen:
- PARSE_ERROR (row -1): unreadable file / no data rows
- ROW_VALIDATION (row N): rows excluded from the diff, once per session even
  when preview is repeated
- CONCURRENT_MODIFICATION / VALIDATION_ERROR / APPLY_ERROR (row -1): apply rejected
"""

__all__ = [
    "SessionStateError",
    "ImportSession",
]

logger = logging.getLogger(__name__)


class SessionStateError(Exception):
    """Operation not allowed in the session's current status."""


class ImportSession:
    def __init__(
        self,
        store: GuestStore,
        config: ImportConfig | None = None,
        error_log: ErrorLogBuffer | None = None,
        session_id: str | None = None,
    ) -> None:
        self.store = store
        self.config = config or ImportConfig()
        self.error_log = error_log if error_log is not None else ErrorLogBuffer(self.config.logs_directory)
        self.id = session_id or str(uuid.uuid4())
        self.status = ImportStatus.PENDING
        self.filename = ""
        self.spreadsheet: ParsedSpreadsheet | None = None
        self.mapping: ColumnMapping = {}
        self.preview_result: ImportPreview | None = None
        self.apply_result: ApplyResult | None = None
        self.error: str | None = None
        self.start_time = datetime.now(UTC)
        self.end_time: datetime | None = None
        self._logged_row_errors: set[tuple[int, tuple[str, ...]]] = set()

    # ------------------------------------------------------------------
    def _require(self, *allowed: ImportStatus) -> None:
        if self.status not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise SessionStateError(f"session {self.id} is {self.status.value} (expected {names})")

    def _fail(self, error_type: str, message: str) -> None:
        self.status = ImportStatus.FAILED
        self.error = message
        self.end_time = datetime.now(UTC)
        self.error_log.record(self.filename, -1, error_type, message)
        self.error_log.flush()
        logger.error(f"import {self.id} failed: {message}")

    def loaded_spreadsheet(self) -> ParsedSpreadsheet:
        """The parsed upload; SessionStateError before load()."""
        if self.spreadsheet is None:
            raise SessionStateError(f"session {self.id} has no spreadsheet loaded")
        return self.spreadsheet

    # ------------------------------------------------------------------
    def load(self, file_bytes: bytes, filename: str) -> ColumnMapping:
        """Parse the upload and propose a column mapping."""
        self._require(ImportStatus.PENDING)
        self.filename = filename
        try:
            self.spreadsheet = parse_spreadsheet(file_bytes, filename)
        except ParseError as e:
            self._fail("PARSE_ERROR", str(e))
            raise
        self.mapping = auto_map_columns(self.spreadsheet.columns, strategy=self.config.auto_map_strategy)
        logger.info(
            f"loaded {filename}: sheet={self.spreadsheet.sheet_name} "
            f"columns={len(self.spreadsheet.columns)} rows={len(self.spreadsheet)}"
        )
        return dict(self.mapping)

    def load_file(self, path: Path) -> ColumnMapping:
        path = Path(path)
        return self.load(path.read_bytes(), path.name)

    def set_mapping(self, column: str, target: CanonicalField | str | None) -> ColumnMapping:
        """Override one column; invalidates any earlier preview."""
        self._require(ImportStatus.PENDING, ImportStatus.PREVIEWED)
        self.mapping = set_column_mapping(self.mapping, column, target)
        if self.status is ImportStatus.PREVIEWED:
            self.status = ImportStatus.PENDING
            self.preview_result = None
        return dict(self.mapping)

    def validate_cells(self) -> CellValidationResult:
        sheet = self.loaded_spreadsheet()
        return validate_cells(sheet.rows, sheet.columns)

    def preview(self) -> ImportPreview:
        """Map, diff and analyze against the current store snapshot.

        Raises:
            MappingIncompleteError: a required field has no column
        """
        self._require(ImportStatus.PENDING, ImportStatus.PREVIEWED)
        sheet = self.loaded_spreadsheet()
        try:
            ensure_required_mapped(self.mapping)
        except MappingIncompleteError as e:
            logger.warning(f"import {self.id}: {e}")
            raise

        rows = apply_mapping(
            sheet.rows,
            self.mapping,
            date_order=self.config.date_order,
            null_sentinels=self.config.null_sentinels,
        )
        diff = compute_diff(rows, self.store.list_guests())
        alerts = analyze_diff(diff, self.config.analyzer)
        cells = validate_cells(sheet.rows, sheet.columns)

        if diff.errors:
            # 再プレビューでは未記録の行エラーだけ追記
            fresh = [e for e in diff.errors if (e.row_number, tuple(e.errors)) not in self._logged_row_errors]
            self._logged_row_errors.update((e.row_number, tuple(e.errors)) for e in fresh)
            self.error_log.extend_row_errors(self.filename, fresh)
            path = self.error_log.flush()
            logger.warning(f"import {self.id}: {len(diff.errors)} rows excluded (see {path})")

        self.preview_result = ImportPreview(diff=diff, alerts=alerts, cell_validation=cells)
        self.status = ImportStatus.PREVIEWED
        counts = diff.counts()
        logger.info(
            "preview %s: added=%d modified=%d removed=%d unchanged=%d errors=%d alerts=%d",
            self.id, counts["added"], counts["modified"], counts["removed"],
            counts["unchanged"], counts["errors"], len(alerts),
        )
        return self.preview_result

    def apply(self, remove_deleted: bool = False, performed_by: str | None = None) -> ApplyResult:
        """Commit the previewed diff. The session ends completed or failed."""
        self._require(ImportStatus.PREVIEWED)
        if self.preview_result is None:
            raise SessionStateError(f"session {self.id} has no preview")
        self.status = ImportStatus.APPLYING
        try:
            result = apply_diff(
                self.store,
                self.preview_result.diff,
                remove_deleted=remove_deleted,
                import_session_id=self.id,
                performed_by=performed_by,
            )
        except ConcurrentModificationError as e:
            self._fail("CONCURRENT_MODIFICATION", str(e))
            raise
        except ValidationError as e:
            self._fail("VALIDATION_ERROR", str(e))
            raise
        except ApplyError as e:
            self._fail("APPLY_ERROR", str(e))
            raise
        self.apply_result = result
        self.status = ImportStatus.COMPLETED
        self.end_time = datetime.now(UTC)
        return result

    def cancel(self) -> None:
        """Abandon the session; the store is never touched."""
        self._require(ImportStatus.PENDING, ImportStatus.PREVIEWED)
        self.status = ImportStatus.CANCELLED
        self.end_time = datetime.now(UTC)
        logger.info(f"import {self.id} cancelled")

    # ------------------------------------------------------------------
    def report(self) -> ImportReport:
        diff_counts: dict[str, Any] = self.preview_result.diff.counts() if self.preview_result else {}
        return ImportReport(
            session_id=self.id,
            filename=self.filename,
            status=self.status,
            total_rows=len(self.spreadsheet) if self.spreadsheet is not None else 0,
            diff_counts=diff_counts,
            result=self.apply_result,
            start_time=self.start_time,
            end_time=self.end_time or datetime.now(UTC),
            error=self.error,
            alerts=list(self.preview_result.alerts) if self.preview_result else [],
        )
