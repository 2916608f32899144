"""Configuration management for portfolio-pulse."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


def _default_base_dir() -> Path:
    """Resolve the data home. PORTFOLIO_PULSE_HOME wins over ~/.portfolio-pulse."""
    home = os.environ.get("PORTFOLIO_PULSE_HOME", "")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".portfolio-pulse"


# Yahoo endpoints are reached through these when direct calls are blocked.
# "{url}" is replaced by the URL-encoded target, "{raw_url}" by the raw one.
KNOWN_RELAYS = [
    "https://api.allorigins.win/raw?url={url}",
    "https://corsproxy.io/?{raw_url}",
    "https://cors-anywhere.herokuapp.com/{raw_url}",
]

# Keys in settings.yaml that may override Config defaults
TUNABLE_KEYS = {
    "user_id",
    "relays",
    "relay_attempts",
    "rate_limit_per_second",
    "mf_attempts",
    "retry_backoff_seconds",
    "yahoo_timeout_seconds",
    "nse_timeout_seconds",
    "mf_timeout_seconds",
    "directory_timeout_seconds",
    "request_delay_seconds",
    "manual_refresh_gap_seconds",
    "daily_refresh_gap_seconds",
    "alert_threshold_percent",
    "history_days",
}


@dataclass
class Config:
    """Application configuration."""

    # Paths
    base_dir: Path = field(default_factory=_default_base_dir)
    data_dir: Path = field(init=False)
    exports_dir: Path = field(init=False)
    db_path: Path = field(init=False)
    settings_file: Path = field(init=False)

    # Identity of the portfolio owner; authentication lives elsewhere
    user_id: str = "local"

    # Quote sources
    relays: list[str] = field(default_factory=list)  # empty = direct requests
    relay_attempts: int = 3
    rate_limit_per_second: float = 5.0
    mf_attempts: int = 3
    retry_backoff_seconds: float = 1.0
    yahoo_timeout_seconds: float = 10.0
    nse_timeout_seconds: float = 8.0
    mf_timeout_seconds: float = 10.0
    directory_timeout_seconds: float = 15.0

    # Refresh cycle
    request_delay_seconds: float = 0.5  # between holdings, third-party rate limits
    manual_refresh_gap_seconds: float = 2.0
    daily_refresh_gap_seconds: float = 3.0
    alert_threshold_percent: float = 5.0
    history_days: int = 30

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir)
        self.data_dir = self.base_dir / "data"
        self.exports_dir = self.base_dir / "exports"
        self.db_path = self.data_dir / "portfolio.db"
        self.settings_file = self.data_dir / "settings.yaml"

        # Ensure directories exist
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.exports_dir.mkdir(parents=True, exist_ok=True)


def load_settings(config: Config) -> Config:
    """Apply overrides from settings.yaml to a config in place."""
    if not config.settings_file.exists():
        return config

    with open(config.settings_file) as f:
        data = yaml.safe_load(f) or {}

    types = {f.name: f.type for f in fields(Config)}
    for key, value in data.items():
        if key not in TUNABLE_KEYS:
            raise ValueError(f"Unknown setting in {config.settings_file.name}: {key}")
        if key == "relays":
            value = [str(r) for r in (value or [])]
        elif types[key] in (float, "float"):
            value = float(value)
        elif types[key] in (int, "int"):
            value = int(value)
        setattr(config, key, value)
    return config


def save_settings(config: Config, **overrides) -> None:
    """Persist overrides to settings.yaml, merging with what is already there."""
    data: dict = {}
    if config.settings_file.exists():
        with open(config.settings_file) as f:
            data = yaml.safe_load(f) or {}

    for key, value in overrides.items():
        if key not in TUNABLE_KEYS:
            raise ValueError(f"Unknown setting: {key}")
        data[key] = value
        setattr(config, key, value)

    with open(config.settings_file, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def get_config() -> Config:
    """Get the default configuration, with settings.yaml applied."""
    return load_settings(Config())
