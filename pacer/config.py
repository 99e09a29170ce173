"""Configuration management for the usage pacer."""

import os
from dataclasses import dataclass, field
from typing import Dict
from dotenv import load_dotenv


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    state_dir: str = ".pacer/state"
    snapshots_file: str = ""
    key_rotation_file: str = ""
    automation_config_file: str = ""
    automation_state_file: str = ""
    target_pct: float = 90.0
    min_factor: float = 0.25
    max_factor: float = 4.0
    min_cooldown_minutes: int = 1
    cooldown_overrides: Dict[str, int] = field(default_factory=dict)
    trend_window: int = 30
    snapshot_retention_days: float = 7.0
    exhausted_threshold_pct: float = 100.0
    control_interval_seconds: int = 600
    port: int = 8000
    host: str = "0.0.0.0"
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.snapshots_file:
            self.snapshots_file = os.path.join(self.state_dir, "usage-snapshots.json")
        if not self.key_rotation_file:
            self.key_rotation_file = os.path.join(
                self.state_dir, "api-key-rotation.json"
            )
        if not self.automation_config_file:
            self.automation_config_file = os.path.join(
                self.state_dir, "automation-config.json"
            )
        if not self.automation_state_file:
            self.automation_state_file = os.path.join(
                self.state_dir, "automation-state.json"
            )

        if not 0 < self.target_pct <= 100:
            raise ValueError("TARGET_PCT must be greater than 0 and at most 100")
        if not 0 < self.min_factor < 1 < self.max_factor:
            raise ValueError("MIN_FACTOR and MAX_FACTOR must satisfy 0 < min < 1 < max")
        if self.min_cooldown_minutes < 1:
            raise ValueError("MIN_COOLDOWN_MINUTES must be at least 1")
        if self.trend_window < 3:
            raise ValueError("TREND_WINDOW must be at least 3")
        if self.snapshot_retention_days <= 0:
            raise ValueError("SNAPSHOT_RETENTION_DAYS must be positive")
        if self.control_interval_seconds < 0:
            raise ValueError("CONTROL_INTERVAL_SECONDS must not be negative")
        for key, minutes in self.cooldown_overrides.items():
            if minutes < 1:
                raise ValueError(f"Cooldown override for {key} must be at least 1 minute")


def parse_overrides(raw: str) -> Dict[str, int]:
    """Parse ``key=minutes,key=minutes`` into a dict.

    Raises:
        ValueError: If an entry is not of the form ``key=<int>``
    """
    overrides: Dict[str, int] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, minutes = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid COOLDOWN_OVERRIDES entry: {item!r}")
        try:
            overrides[key.strip()] = int(minutes.strip())
        except ValueError:
            raise ValueError(f"Invalid COOLDOWN_OVERRIDES entry: {item!r}")
    return overrides


def load_config(use_dotenv: bool = True) -> Config:
    """Load configuration from environment variables.

    Returns:
        Config: Configured application settings

    Raises:
        ValueError: If environment variables are invalid
    """
    if use_dotenv:
        load_dotenv()

    return Config(
        state_dir=os.getenv("PACER_STATE_DIR", ".pacer/state"),
        snapshots_file=os.getenv("SNAPSHOTS_FILE", ""),
        key_rotation_file=os.getenv("KEY_ROTATION_FILE", ""),
        automation_config_file=os.getenv("AUTOMATION_CONFIG_FILE", ""),
        automation_state_file=os.getenv("AUTOMATION_STATE_FILE", ""),
        target_pct=float(os.getenv("TARGET_PCT", "90")),
        min_factor=float(os.getenv("MIN_FACTOR", "0.25")),
        max_factor=float(os.getenv("MAX_FACTOR", "4.0")),
        min_cooldown_minutes=int(os.getenv("MIN_COOLDOWN_MINUTES", "1")),
        cooldown_overrides=parse_overrides(os.getenv("COOLDOWN_OVERRIDES", "")),
        trend_window=int(os.getenv("TREND_WINDOW", "30")),
        snapshot_retention_days=float(os.getenv("SNAPSHOT_RETENTION_DAYS", "7")),
        exhausted_threshold_pct=float(os.getenv("EXHAUSTED_THRESHOLD_PCT", "100")),
        control_interval_seconds=int(os.getenv("CONTROL_INTERVAL_SECONDS", "600")),
        port=int(os.getenv("PORT", "8000")),
        host=os.getenv("HOST", "0.0.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
