from __future__ import annotations

from ..models.import_session import ImportReport

"""SUMMARY line rendering for one import session.

Format:
SUMMARY file={name} status={status} rows={rows} added={a} modified={m}
removed={r} unchanged={u} errors={e} alerts={n} elapsed_sec={elapsed}

added / modified / removed are the applied counts once the session has been
applied, and the previewed counts otherwise (a removal that was not applied
reports removed=0).
"""

__all__ = [
    "render_summary_line",
    "format_seconds",
]


def format_seconds(value: float) -> str:
    """Render seconds without scientific notation ("0", "2", "0.000125", "1.5")."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(report: ImportReport) -> str:
    """Render the SUMMARY line for an import report.

    Examples:
        >>> from guestops.models.import_session import ImportReport, ImportStatus
        >>> r = ImportReport(
        ...     session_id="s1", filename="roster.xlsx", status=ImportStatus.PREVIEWED,
        ...     total_rows=3, diff_counts={"added": 1, "modified": 1, "removed": 0,
        ...     "unchanged": 1, "errors": 0},
        ... )
        >>> render_summary_line(r)
        'SUMMARY file=roster.xlsx status=previewed rows=3 added=1 modified=1 removed=0 unchanged=1 errors=0 alerts=0 elapsed_sec=0'
    """
    counts = dict(report.diff_counts)
    if report.result is not None:
        counts["added"] = report.result.added
        counts["modified"] = report.result.modified
        counts["removed"] = report.result.removed
    return (
        f"SUMMARY file={report.filename} "
        f"status={report.status.value} "
        f"rows={report.total_rows} "
        f"added={counts.get('added', 0)} "
        f"modified={counts.get('modified', 0)} "
        f"removed={counts.get('removed', 0)} "
        f"unchanged={counts.get('unchanged', 0)} "
        f"errors={counts.get('errors', 0)} "
        f"alerts={len(report.alerts)} "
        f"elapsed_sec={format_seconds(report.elapsed_seconds)}"
    )
