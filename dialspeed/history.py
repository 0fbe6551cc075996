"""
Result history persistence.

Results are stored as JSON-lines in ``~/.dialspeed/history.jsonl``.  Each
line is a self-contained JSON object with a timestamp, so the file can be
appended to safely (no need to parse the whole file to add a record).

``JsonlResultStore`` is the persistence collaborator handed to
``ResultAssembler``; the measurement core itself never touches the disk.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .results import MeasurementResult


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

_DEFAULT_DIR = os.path.join(Path.home(), ".dialspeed")
_DEFAULT_FILE = "history.jsonl"
_MAX_DISPLAY = 20  # show last N entries in --history


def _history_path() -> str:
    return os.path.join(_DEFAULT_DIR, _DEFAULT_FILE)


class JsonlResultStore:
    """Append-only JSON-lines store for :class:`MeasurementResult`."""

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = path

    @property
    def path(self) -> str:
        return self._path or _history_path()

    # -- Write --------------------------------------------------------------

    def save(self, result: MeasurementResult) -> str:
        """Append *result* as a single JSON line.  Returns the file path."""
        path = self.path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

        with open(path, "a", encoding="utf-8") as fh:
            fh.write(json.dumps(result.to_dict(), ensure_ascii=False) + "\n")

        return path

    # -- Read ---------------------------------------------------------------

    def load(self, limit: int = _MAX_DISPLAY) -> List[Dict[str, Any]]:
        """Return the most recent *limit* results, newest last."""
        path = self.path
        if not os.path.isfile(path):
            return []

        entries: List[Dict[str, Any]] = []
        with open(path, encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue  # skip corrupt lines
                if isinstance(entry, dict):
                    entries.append(entry)

        return entries[-limit:] if limit > 0 else entries

    def average_bandwidth(self) -> float:
        """Mean of every stored download and upload speed; 0 when empty."""
        speeds: List[float] = []
        for entry in self.load(limit=0):
            for key in ("download_mbps", "upload_mbps"):
                value = entry.get(key)
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    speeds.append(float(value))
        if not speeds:
            return 0.0
        return sum(speeds) / len(speeds)
