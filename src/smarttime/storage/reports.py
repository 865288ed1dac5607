"""Saved time reports under ``reports/YYYY/MM/DD.json``."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any

from .files import read_json, write_json_atomic


class TimeReportRepository:
    def __init__(self, data_dir: Path) -> None:
        self._dir = Path(data_dir) / "reports"

    @property
    def reports_dir(self) -> Path:
        return self._dir

    def report_path(self, day: date) -> Path:
        return self._dir / f"{day.year:04d}" / f"{day.month:02d}" / f"{day.day:02d}.json"

    def read_report(self, day: date) -> dict[str, Any] | None:
        try:
            return read_json(self.report_path(day))
        except (FileNotFoundError, json.JSONDecodeError):
            return None

    def save_report(self, report: dict[str, Any]) -> Path:
        """Write ``report`` to the file named by its ``date`` field (``YYYY-MM-DD``)."""

        try:
            day = date.fromisoformat(str(report["date"]))
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Time report has no valid date: {report.get('date')!r}") from exc
        return write_json_atomic(self.report_path(day), report)


__all__ = ["TimeReportRepository"]
