"""Small filesystem helpers shared by the repositories."""

from __future__ import annotations

import json
import os
import uuid
from pathlib import Path
from typing import Any

TEMP_SUFFIX = ".tmp"


def write_json_atomic(path: Path, payload: Any) -> Path:
    """Write ``payload`` as indented JSON, replacing ``path`` in one rename."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}{TEMP_SUFFIX}")
    try:
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.write("\n")
        os.replace(temp_path, path)
    finally:
        temp_path.unlink(missing_ok=True)
    return path


def read_json(path: Path) -> Any:
    with Path(path).open("r", encoding="utf-8") as handle:
        return json.load(handle)


__all__ = ["TEMP_SUFFIX", "read_json", "write_json_atomic"]
