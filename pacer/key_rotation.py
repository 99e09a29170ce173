"""Credential key rotation bookkeeping."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pacer.aggregator import aggregate_key_usage
from pacer.models import (
    EVENT_KEY_SWITCHED,
    KEY_STATUSES,
    STATUS_ACTIVE,
    STATUS_EXHAUSTED,
    STATUS_EXPIRED,
    STATUS_INVALID,
    KeyReading,
    KeyRecord,
    KeyRotationState,
    KeyUsage,
    RotationEvent,
    from_epoch,
    utc_now,
)
from pacer.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

STATE_VERSION = 1
UNUSABLE_STATUSES = (STATUS_INVALID, STATUS_EXPIRED)


class KeyRotationStore:
    """Rotation state persisted as a version 1 JSON record."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> KeyRotationState:
        data = read_json(self.path)
        if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
            return KeyRotationState()
        if not isinstance(data.get("keys"), dict):
            return KeyRotationState()

        state = KeyRotationState()
        for key_id, raw in data["keys"].items():
            record = _parse_key_record(str(key_id), raw)
            if record is not None:
                state.keys[record.id] = record

        active = data.get("active_key_id")
        if isinstance(active, str) and active in state.keys:
            state.active_key_id = active

        log = data.get("rotation_log")
        if isinstance(log, list):
            for entry in log:
                event = _parse_rotation_event(entry)
                if event is not None:
                    state.rotation_log.append(event)
        return state

    def save(self, state: KeyRotationState) -> None:
        write_json_atomic(
            self.path,
            {
                "version": STATE_VERSION,
                "active_key_id": state.active_key_id,
                "keys": {
                    key_id: {
                        "status": record.status,
                        "subscriptionType": record.subscription_type,
                        "last_usage": (
                            {
                                "five_hour": record.last_usage.five_hour,
                                "seven_day": record.last_usage.seven_day,
                            }
                            if record.last_usage
                            else None
                        ),
                    }
                    for key_id, record in state.keys.items()
                },
                "rotation_log": [
                    {"timestamp": event.timestamp.timestamp() * 1000, "event": event.event}
                    for event in state.rotation_log
                ],
            },
        )


def _parse_key_record(key_id: str, raw: object) -> Optional[KeyRecord]:
    if not isinstance(raw, dict):
        return None
    status = raw.get("status")
    if status not in KEY_STATUSES:
        return None

    usage = None
    raw_usage = raw.get("last_usage")
    if isinstance(raw_usage, dict):
        five_hour = raw_usage.get("five_hour")
        seven_day = raw_usage.get("seven_day")
        if isinstance(five_hour, (int, float)) and isinstance(seven_day, (int, float)):
            usage = KeyUsage(five_hour=float(five_hour), seven_day=float(seven_day))

    subscription = raw.get("subscriptionType") or raw.get("subscription_type")
    return KeyRecord(
        id=key_id,
        status=status,
        subscription_type=subscription if isinstance(subscription, str) else "unknown",
        last_usage=usage,
    )


def _parse_rotation_event(raw: object) -> Optional[RotationEvent]:
    if not isinstance(raw, dict):
        return None
    ts = raw.get("timestamp")
    event = raw.get("event")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not isinstance(event, str):
        return None
    try:
        return RotationEvent(timestamp=from_epoch(ts), event=event)
    except (OverflowError, OSError, ValueError):
        return None


class KeyRotationManager:
    """Tracks key status and the single active key of the pool."""

    def __init__(self, store: KeyRotationStore, exhausted_threshold_pct: float = 100.0):
        self.store = store
        self.exhausted_threshold_pct = exhausted_threshold_pct
        self.state: KeyRotationState = store.load()
        self._lock: asyncio.Lock = asyncio.Lock()

    async def observe_key(
        self, key_id: str, subscription_type: str = "unknown"
    ) -> KeyRecord:
        """Register a key the first time it is seen; returns its record."""
        async with self._lock:
            record = self.state.keys.get(key_id)
            if record is None:
                record = KeyRecord(id=key_id, subscription_type=subscription_type)
                self.state.keys[key_id] = record
                logger.info("Tracking new key %s", record.key_prefix())
            elif subscription_type != "unknown":
                record.subscription_type = subscription_type

            if self.state.active_key_id is None and record.status == STATUS_ACTIVE:
                self.state.active_key_id = key_id

            self.store.save(self.state)
            return record

    async def record_rotation(
        self, new_key_id: str, now: Optional[datetime] = None
    ) -> bool:
        """Make ``new_key_id`` the active key.

        Appends exactly one ``key_switched`` event per change; reassigning
        the current key is a no-op and returns False.

        Raises:
            ValueError: If the key is not tracked
        """
        async with self._lock:
            switched = self._switch_to(new_key_id, now or utc_now())
            if switched:
                self.store.save(self.state)
            return switched

    async def record_usage(
        self, key_id: str, reading: KeyReading, now: Optional[datetime] = None
    ) -> None:
        """Store a key's latest usage, marking it exhausted at the threshold."""
        async with self._lock:
            record = self._require(key_id)
            record.last_usage = KeyUsage(
                five_hour=reading.five_hour_pct, seven_day=reading.seven_day_pct
            )
            if record.status == STATUS_ACTIVE and (
                reading.five_hour_pct >= self.exhausted_threshold_pct
                or reading.seven_day_pct >= self.exhausted_threshold_pct
            ):
                self._set_status(record, STATUS_EXHAUSTED, now or utc_now())
            self.store.save(self.state)

    async def mark_status(
        self, key_id: str, status: str, now: Optional[datetime] = None
    ) -> KeyRecord:
        """Move a key to ``status``, rotating away if it was the active key.

        Raises:
            ValueError: If the key is not tracked or the status is unknown
        """
        if status not in KEY_STATUSES:
            raise ValueError(f"Unknown key status: {status}")
        async with self._lock:
            record = self._require(key_id)
            self._set_status(record, status, now or utc_now())
            self.store.save(self.state)
            return record

    def count_rotations(self, since: datetime) -> int:
        return sum(
            1
            for event in self.state.rotation_log
            if event.event == EVENT_KEY_SWITCHED and event.timestamp >= since
        )

    def usable_keys(self) -> List[KeyRecord]:
        return [
            record
            for record in self.state.keys.values()
            if record.status not in UNUSABLE_STATUSES
        ]

    def get_status(self, hours: int = 24, now: Optional[datetime] = None) -> Dict[str, object]:
        now = now or utc_now()
        active_id = self.state.active_key_id
        active_records = [
            record
            for record in self.state.keys.values()
            if record.status == STATUS_ACTIVE
        ]

        return {
            "current_key_id": (
                self.state.keys[active_id].key_prefix()
                if active_id in self.state.keys
                else None
            ),
            "total_keys": len(self.state.keys),
            "active_keys": len(active_records),
            "exhausted_keys": sum(
                1 for r in self.state.keys.values() if r.status == STATUS_EXHAUSTED
            ),
            "keys": [
                self._format_key_status(record, record.id == active_id)
                for record in self.state.keys.values()
            ],
            "rotation_events": self.count_rotations(now - timedelta(hours=hours)),
            "aggregate": aggregate_key_usage(active_records),
        }

    def _format_key_status(self, record: KeyRecord, is_current: bool) -> Dict[str, object]:
        usage = record.last_usage
        return {
            "key_id": record.key_prefix(),
            "status": record.status,
            "subscription_type": record.subscription_type,
            "five_hour_pct": usage.five_hour if usage else None,
            "seven_day_pct": usage.seven_day if usage else None,
            "is_current": is_current,
        }

    def _require(self, key_id: str) -> KeyRecord:
        record = self.state.keys.get(key_id)
        if record is None:
            raise ValueError(f"Key {key_id} not found")
        return record

    def _switch_to(self, key_id: str, now: datetime) -> bool:
        record = self._require(key_id)
        if self.state.active_key_id == key_id:
            return False

        previous = self.state.active_key_id
        record.status = STATUS_ACTIVE
        self.state.active_key_id = key_id
        self.state.rotation_log.append(
            RotationEvent(timestamp=now, event=EVENT_KEY_SWITCHED)
        )
        logger.info(
            "Switched active key %s -> %s",
            self.state.keys[previous].key_prefix() if previous in self.state.keys else None,
            record.key_prefix(),
        )
        return True

    def _set_status(self, record: KeyRecord, status: str, now: datetime) -> None:
        if record.status == status:
            return
        logger.info("Key %s: %s -> %s", record.key_prefix(), record.status, status)
        record.status = status

        if status == STATUS_ACTIVE:
            if self.state.active_key_id is None:
                self._switch_to(record.id, now)
            return

        if self.state.active_key_id != record.id:
            return

        replacement = self._select_replacement(exclude=record.id)
        if replacement is None:
            self.state.active_key_id = None
            logger.warning("No usable key left to replace %s", record.key_prefix())
            return
        self._switch_to(replacement.id, now)

    def _select_replacement(self, exclude: str) -> Optional[KeyRecord]:
        candidates = [record for record in self.usable_keys() if record.id != exclude]
        if not candidates:
            return None

        # Active keys first, then the most headroom in the 5-hour window.
        candidates.sort(
            key=lambda item: (
                item.status != STATUS_ACTIVE,
                item.last_usage.five_hour if item.last_usage else 0.0,
            )
        )
        return candidates[0]
