"""Project assignments stored in ``projects.json``."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .files import read_json, write_json_atomic

logger = logging.getLogger(__name__)

UNBOUND_KEY = "_unbound"

ProjectMap = dict[str, Any]
"""``{branch: {directory: project}, "_unbound": [project, ...]}``"""


class ProjectRepository:
    """Read-modify-write access to the branch/directory -> project map."""

    def __init__(self, data_dir: Path) -> None:
        self._path = Path(data_dir) / "projects.json"

    @property
    def path(self) -> Path:
        return self._path

    def read_projects(self) -> ProjectMap:
        """Return the project map, or ``{}`` when missing or malformed."""

        try:
            parsed = read_json(self._path)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("projects.json could not be read, treating as empty: %s", exc)
            return {}
        if not isinstance(parsed, dict):
            logger.warning("projects.json has unexpected format, treating as empty")
            return {}

        for key in list(parsed):
            if key == UNBOUND_KEY:
                if not isinstance(parsed[key], list):
                    logger.warning("projects.json _unbound is not an array, ignoring")
                    del parsed[key]
                continue
            if not isinstance(parsed[key], dict):
                logger.warning("projects.json has unexpected format, treating as empty")
                return {}
        return parsed

    def save_projects(self, projects: ProjectMap) -> Path:
        return write_json_atomic(self._path, projects)

    def add_or_update_project(self, branch: str, directory: str, project: str) -> None:
        projects = self.read_projects()
        projects.setdefault(branch, {})[directory] = project
        self.save_projects(projects)

    def delete_project(self, branch: str, directory: str) -> None:
        projects = self.read_projects()
        directories = projects.get(branch)
        if not isinstance(directories, dict) or directory not in directories:
            return
        del directories[directory]
        if not directories:
            del projects[branch]
        self.save_projects(projects)

    def add_unbound_project(self, project: str) -> None:
        projects = self.read_projects()
        unbound = projects.setdefault(UNBOUND_KEY, [])
        if project in unbound:
            return
        unbound.append(project)
        self.save_projects(projects)


__all__ = ["ProjectMap", "ProjectRepository", "UNBOUND_KEY"]
