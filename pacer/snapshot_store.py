"""Append-only store of usage snapshots with bounded retention."""

import logging
import math
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from pacer.models import (
    KeyReading,
    Snapshot,
    clamp_pct,
    format_instant,
    from_epoch,
    parse_instant,
)
from pacer.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    def append(self, snapshot: Snapshot) -> bool: ...

    def read_recent(self, max_points: int) -> List[Snapshot]: ...

    def read_since(self, since: datetime) -> List[Snapshot]: ...

    def prune(self, older_than: datetime) -> int: ...


def _parse_pct(value: object) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return clamp_pct(value)


def parse_key_reading(raw: object) -> Optional[KeyReading]:
    """Parse one ``{"5h", "5h_reset", "7d", "7d_reset"}`` entry; None if malformed."""
    if not isinstance(raw, dict):
        return None
    five_hour = _parse_pct(raw.get("5h"))
    seven_day = _parse_pct(raw.get("7d"))
    if five_hour is None or seven_day is None:
        return None
    return KeyReading(
        five_hour_pct=five_hour,
        seven_day_pct=seven_day,
        five_hour_reset=parse_instant(raw.get("5h_reset")),
        seven_day_reset=parse_instant(raw.get("7d_reset")),
    )


def parse_snapshot(raw: object) -> Optional[Snapshot]:
    """Parse a collector record ``{"ts": ..., "keys": {...}}``.

    Returns None for records without a numeric timestamp or a key map.
    Individual malformed key entries are dropped.
    """
    if not isinstance(raw, dict):
        return None
    ts = raw.get("ts")
    keys = raw.get("keys")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        return None
    if not isinstance(keys, dict):
        return None
    try:
        timestamp = from_epoch(ts)
    except (OverflowError, OSError, ValueError):
        return None

    readings: Dict[str, KeyReading] = {}
    for key_id, entry in keys.items():
        reading = parse_key_reading(entry)
        if reading is None:
            logger.debug("Skipping malformed reading for key %s", key_id)
            continue
        readings[str(key_id)] = reading
    return Snapshot(timestamp=timestamp, keys=readings)


def snapshot_to_record(snapshot: Snapshot) -> Dict[str, object]:
    return {
        "ts": snapshot.timestamp.timestamp(),
        "keys": {
            key_id: {
                "5h": reading.five_hour_pct,
                "5h_reset": format_instant(reading.five_hour_reset),
                "7d": reading.seven_day_pct,
                "7d_reset": format_instant(reading.seven_day_reset),
            }
            for key_id, reading in snapshot.keys.items()
        },
    }


class JsonSnapshotStore:
    """Snapshot store backed by a single ``{"snapshots": [...]}`` JSON file."""

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> List[Snapshot]:
        data = read_json(self.path)
        if not isinstance(data, dict) or not isinstance(data.get("snapshots"), list):
            return []

        snapshots: List[Snapshot] = []
        skipped = 0
        for raw in data["snapshots"]:
            snapshot = parse_snapshot(raw)
            if snapshot is None:
                skipped += 1
                continue
            snapshots.append(snapshot)
        if skipped:
            logger.warning("Skipped %d malformed snapshot records in %s", skipped, self.path)
        snapshots.sort(key=lambda item: item.timestamp)
        return snapshots

    def _save(self, snapshots: List[Snapshot]) -> None:
        write_json_atomic(
            self.path, {"snapshots": [snapshot_to_record(s) for s in snapshots]}
        )

    def append(self, snapshot: Snapshot) -> bool:
        """Append a snapshot; returns False when it is older than the last stored one."""
        snapshots = self._load()
        if snapshots and snapshot.timestamp < snapshots[-1].timestamp:
            logger.debug(
                "Dropping out-of-order snapshot at %s (last stored %s)",
                snapshot.timestamp.isoformat(),
                snapshots[-1].timestamp.isoformat(),
            )
            return False

        snapshots.append(snapshot)
        self._save(snapshots)
        return True

    def read_recent(self, max_points: int) -> List[Snapshot]:
        if max_points <= 0:
            return []
        return self._load()[-max_points:]

    def read_since(self, since: datetime) -> List[Snapshot]:
        return [s for s in self._load() if s.timestamp >= since]

    def prune(self, older_than: datetime) -> int:
        """Drop snapshots older than ``older_than``; returns how many were removed."""
        snapshots = self._load()
        kept = [s for s in snapshots if s.timestamp >= older_than]
        removed = len(snapshots) - len(kept)
        if removed:
            self._save(kept)
            logger.info("Pruned %d snapshots older than %s", removed, older_than.isoformat())
        return removed
