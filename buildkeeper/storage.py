"""
State Storage
=============

JSON documents in the buildkeeper state directory. Read and write failures
are logged and reported to the caller instead of raised, so a component can
keep running on its in-memory state when the disk misbehaves.

There is no locking: two processes sharing a state directory will clobber
each other's writes.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

METRICS_FILE = "metrics.json"
ALERTS_FILE = "alerts.json"
RESOLUTION_HISTORY_FILE = "resolution-history.json"
HEALTH_REPORT_FILE = "health-report.json"


class JsonStateStore:
    """Reads and writes whole JSON documents under one directory."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    def path(self, name: str) -> Path:
        return self.state_dir / name

    def exists(self, name: str) -> bool:
        return self.path(name).exists()

    def read(self, name: str) -> Optional[Any]:
        """
        Load a document.

        Returns:
            Parsed JSON, or None if the file is missing or unreadable
        """
        path = self.path(name)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load %s: %s", path, e)
            return None

    def write(self, name: str, data: Any) -> bool:
        """
        Replace a document on disk.

        Returns:
            True if the write succeeded
        """
        path = self.path(name)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
            return True
        except (OSError, TypeError) as e:
            logger.warning("Could not save %s: %s", path, e)
            return False
