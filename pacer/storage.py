"""JSON file helpers shared by the state stores."""

import json
import logging
import os
import tempfile
from typing import Optional

logger = logging.getLogger(__name__)


def read_json(path: str) -> Optional[object]:
    """Read a JSON document, returning None when it is absent or unparseable."""
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable state file %s: %s", path, exc)
        return None


def write_json_atomic(path: str, data: object) -> None:
    """Write a JSON document via temp file + rename so readers never see a partial record."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
