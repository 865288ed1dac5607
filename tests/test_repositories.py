from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest

from smarttime.storage import ProjectRepository, TimeReportRepository


def test_project_add_update_delete(tmp_path: Path) -> None:
    repository = ProjectRepository(tmp_path)

    repository.add_or_update_project("main", "/w", "Alpha")
    repository.add_or_update_project("main", "/w", "Beta")
    repository.add_or_update_project("main", "/other", "Gamma")

    assert repository.read_projects() == {"main": {"/w": "Beta", "/other": "Gamma"}}

    repository.delete_project("main", "/w")
    repository.delete_project("main", "/other")
    repository.delete_project("missing", "/nowhere")

    assert repository.read_projects() == {}


def test_unbound_projects_are_unique(tmp_path: Path) -> None:
    repository = ProjectRepository(tmp_path)

    repository.add_unbound_project("Internal")
    repository.add_unbound_project("Internal")

    assert repository.read_projects() == {"_unbound": ["Internal"]}


def test_malformed_projects_file_reads_empty(tmp_path: Path) -> None:
    repository = ProjectRepository(tmp_path)
    repository.path.write_text(json.dumps({"main": "not-a-mapping"}), encoding="utf-8")
    assert repository.read_projects() == {}

    repository.path.write_text(json.dumps({"main": {"/w": "A"}, "_unbound": "nope"}), encoding="utf-8")
    assert repository.read_projects() == {"main": {"/w": "A"}}

    repository.path.write_text("[", encoding="utf-8")
    assert repository.read_projects() == {}


def test_time_report_round_trip(tmp_path: Path) -> None:
    repository = TimeReportRepository(tmp_path)
    report = {"date": "2026-02-15", "entries": []}

    path = repository.save_report(report)

    assert path == tmp_path / "reports" / "2026" / "02" / "15.json"
    assert repository.read_report(date(2026, 2, 15)) == report
    assert repository.read_report(date(2026, 2, 16)) is None


def test_time_report_requires_date(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        TimeReportRepository(tmp_path).save_report({"entries": []})
