"""Data models for usage telemetry, key rotation and task pacing."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

STATUS_ACTIVE = "active"
STATUS_EXHAUSTED = "exhausted"
STATUS_INVALID = "invalid"
STATUS_EXPIRED = "expired"
KEY_STATUSES = (STATUS_ACTIVE, STATUS_EXHAUSTED, STATUS_INVALID, STATUS_EXPIRED)

EVENT_KEY_SWITCHED = "key_switched"

METRIC_FIVE_HOUR = "5h"
METRIC_SEVEN_DAY = "7d"

TRIGGER_CONTINUOUS = "continuous"
TRIGGER_COMMIT = "commit"
TRIGGER_PROMPT = "prompt"
TRIGGER_FILE_CHANGE = "file-change"

# Epoch values above this are milliseconds (year ~5138 in seconds).
_EPOCH_MS_THRESHOLD = 1e11


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def from_epoch(value: float) -> datetime:
    """Convert epoch seconds (or milliseconds) to an aware UTC datetime."""
    seconds = float(value)
    if seconds > _EPOCH_MS_THRESHOLD:
        seconds /= 1000.0
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def parse_instant(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime, None when unusable."""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_instant(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class KeyReading:
    """Quota utilization reported for one key at sample time."""

    five_hour_pct: float
    seven_day_pct: float
    five_hour_reset: Optional[datetime] = None
    seven_day_reset: Optional[datetime] = None


@dataclass(frozen=True)
class Snapshot:
    """One timestamped sample of every key's utilization buckets."""

    timestamp: datetime
    keys: Dict[str, KeyReading] = field(default_factory=dict)


@dataclass(frozen=True)
class AggregateSnapshot:
    """Pool-wide utilization derived from a Snapshot."""

    timestamp: datetime
    five_hour_pct: float
    seven_day_pct: float
    five_hour_reset: Optional[datetime] = None
    seven_day_reset: Optional[datetime] = None
    key_count: int = 0


@dataclass(frozen=True)
class TrendEstimate:
    slope: float  # pct per hour
    intercept: float  # pct at the first sample


@dataclass(frozen=True)
class Projection:
    """Forecast of a metric at its reset time; value is None when unknown."""

    metric: str
    value: Optional[float] = None
    reset_time: Optional[datetime] = None


@dataclass
class KeyUsage:
    """Last known usage of a tracked key, as kept in the rotation state."""

    five_hour: float
    seven_day: float


@dataclass
class KeyRecord:
    id: str
    status: str = STATUS_ACTIVE
    subscription_type: str = "unknown"
    last_usage: Optional[KeyUsage] = None

    def key_prefix(self) -> str:
        if len(self.id) <= 8:
            return self.id
        return f"{self.id[:8]}..."


@dataclass(frozen=True)
class RotationEvent:
    timestamp: datetime
    event: str = EVENT_KEY_SWITCHED


@dataclass
class KeyRotationState:
    """Represents the state of the credential key pool."""

    active_key_id: Optional[str] = None
    keys: Dict[str, KeyRecord] = field(default_factory=dict)
    rotation_log: List[RotationEvent] = field(default_factory=list)


@dataclass(frozen=True)
class CooldownAdjustment:
    """The pool-wide control signal written once per control cycle."""

    factor: float = 1.0
    target_pct: float = 90.0
    projected_at_reset_pct: Optional[float] = None
    constraining_metric: Optional[str] = None
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class CooldownState:
    """Whole adjustment record: default and effective minutes per cooldown key."""

    defaults: Dict[str, int]
    effective: Dict[str, int]
    adjustment: CooldownAdjustment = field(default_factory=CooldownAdjustment)


@dataclass(frozen=True)
class TaskDefinition:
    name: str
    trigger: str
    cooldown_key: Optional[str] = None
    default_minutes: Optional[int] = None
    description: str = ""


@dataclass(frozen=True)
class TaskRunState:
    task_name: str
    last_run: Optional[datetime] = None


@dataclass(frozen=True)
class ScheduleEntry:
    name: str
    trigger: str
    default_interval_minutes: Optional[int]
    effective_interval_minutes: Optional[int]
    last_run: Optional[datetime]
    next_run: Optional[datetime]
    seconds_until_next: Optional[int]

    @property
    def is_interval_scheduled(self) -> bool:
        return self.effective_interval_minutes is not None
