"""Configuration loading from JSON files."""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

log = logging.getLogger(__name__)
_USER_CONFIG = Path.home() / ".config" / "chargeguard" / "config.json"
_SYSTEM_CONFIG = Path("/etc/chargeguard/config.json")

DEFAULT = "default"

_THRESH_KEY = re.compile(r"^(START|STOP)_CHARGE_THRESH_(\w+)$")
_SWITCHES = {"NATACPI_ENABLE": "natacpi_enable", "TPSMAPI_ENABLE": "tpsmapi_enable"}


@dataclass
class ChargeConfig:
    thresholds: dict[str, int | str] = field(default_factory=dict)
    natacpi_enable: bool = True
    tpsmapi_enable: bool = True

    def __post_init__(self):
        for key, value in self.thresholds.items():
            if not _THRESH_KEY.match(key):
                raise ValueError(f"charge: unknown key {key!r}")
            if value == DEFAULT:
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"charge.{key} must be an integer or {DEFAULT!r}, got {value!r}")

    def threshold(self, kind: str, battery_id: str) -> int | str | None:
        return self.thresholds.get(f"{kind.upper()}_CHARGE_THRESH_{battery_id}")

    @property
    def battery_ids(self) -> list[str]:
        ids = []
        for key in self.thresholds:
            battery_id = _THRESH_KEY.match(key).group(2)
            if battery_id not in ids:
                ids.append(battery_id)
        return ids


@dataclass
class DischargeConfig:
    poll_interval: float = 5.0
    start_interval: float = 1.0
    start_ticks: int = 15
    lock_file: Path = Path("/run/chargeguard/discharge.lock")

    def __post_init__(self):
        self.lock_file = Path(self.lock_file)
        if self.poll_interval < 0 or self.start_interval < 0:
            raise ValueError("discharge intervals must not be negative")
        if self.start_ticks < 1:
            raise ValueError(f"discharge.start_ticks must be at least 1, got {self.start_ticks}")


@dataclass
class DaemonConfig:
    port: int = 7381
    log_level: str = "info"


@dataclass
class Config:
    charge: ChargeConfig = field(default_factory=ChargeConfig)
    discharge: DischargeConfig = field(default_factory=DischargeConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)


def load_config(path: Path | None = None) -> Config:
    if path is not None:
        candidates = [path]
    else:
        candidates = [_USER_CONFIG, _SYSTEM_CONFIG]

    for candidate in candidates:
        if candidate.is_file():
            log.info("Loading config from %s", candidate)
            data = json.loads(candidate.read_text())
            return _parse(data)

    log.info("No config file found, using defaults")
    return Config()


def _parse_charge(data: dict) -> ChargeConfig:
    thresholds = {}
    switches = {}
    for key, value in data.items():
        if key in _SWITCHES:
            switches[_SWITCHES[key]] = bool(int(value))
        else:
            thresholds[key] = value
    return ChargeConfig(thresholds=thresholds, **switches)


def _parse(data: dict) -> Config:
    charge_data = data.get("charge", {})
    discharge_data = data.get("discharge", {})
    daemon_data = data.get("daemon", {})

    return Config(
        charge=_parse_charge(charge_data),
        discharge=DischargeConfig(**discharge_data),
        daemon=DaemonConfig(**daemon_data),
    )
