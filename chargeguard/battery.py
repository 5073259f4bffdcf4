"""Native power-supply scan, battery telemetry and the battery registry."""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from chargeguard.sysfile import SYS_ROOT, read_int, read_sysfile

log = logging.getLogger(__name__)

POWER_SUPPLY_DIR = Path("class/power_supply")

DEFAULT_BATTERY = "DEFAULT"

# Common AC adapter directory names
_AC_NAMES = ("AC", "AC0", "ADP0", "ADP1", "ACAD", "ac")


def power_supply_root(sys_root: Path = SYS_ROOT) -> Path:
    return sys_root / POWER_SUPPLY_DIR


def _supply_type(entry: Path) -> str | None:
    return read_sysfile(entry / "type")


def find_batteries(root: Path) -> list[Path]:
    """Every power supply of type Battery, in stable name order."""
    if not root.is_dir():
        return []
    found = [entry for entry in sorted(root.iterdir()) if _supply_type(entry) == "Battery"]
    for path in found:
        log.debug("Found battery at %s", path)
    return found


def find_ac_adapter(root: Path) -> Path | None:
    for name in _AC_NAMES:
        path = root / name
        if path.is_dir():
            log.debug("Found AC adapter at %s", path)
            return path

    if not root.is_dir():
        return None
    for entry in sorted(root.iterdir()):
        if _supply_type(entry) == "Mains":
            log.debug("Found AC adapter at %s (via type scan)", entry)
            return entry
    return None


def read_ac_online(root: Path) -> bool | None:
    ac = find_ac_adapter(root)
    if ac is None:
        return None
    online = read_sysfile(ac / "online")
    if online is None:
        return None
    return online == "1"


@dataclass(frozen=True, slots=True)
class Telemetry:
    percent: int | None = None
    status: str | None = None
    energy_now_mwh: int | None = None
    energy_full_mwh: int | None = None
    design_mwh: int | None = None
    power_mw: int | None = None
    voltage_mv: int | None = None
    cycle_count: int | None = None
    temperature_c: float | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def _micro_to_milli(value: int | None) -> int | None:
    if value is None:
        return None
    return value // 1000


def _energy_mwh(path: Path, stem: str, voltage_uv: int | None) -> int | None:
    energy = read_int(path / f"energy_{stem}")
    if energy is not None:
        return _micro_to_milli(energy)
    # Batteries reporting charge in µAh need the design voltage to convert
    charge = read_int(path / f"charge_{stem}")
    if charge is None or not voltage_uv:
        return None
    return charge * (voltage_uv // 1000) // 1_000_000


def read_native_telemetry(path: Path) -> Telemetry:
    voltage_uv = read_int(path / "voltage_now")
    design_uv = read_int(path / "voltage_min_design") or voltage_uv
    return Telemetry(
        percent=read_int(path / "capacity"),
        status=read_sysfile(path / "status"),
        energy_now_mwh=_energy_mwh(path, "now", design_uv),
        energy_full_mwh=_energy_mwh(path, "full", design_uv),
        design_mwh=_energy_mwh(path, "full_design", design_uv),
        power_mw=_micro_to_milli(read_int(path / "power_now")),
        voltage_mv=_micro_to_milli(voltage_uv),
        cycle_count=read_int(path / "cycle_count"),
    )


@dataclass(frozen=True, slots=True)
class Battery:
    id: str
    index: int
    telemetry_path: Path
    start_threshold_path: Path | None = None
    stop_threshold_path: Path | None = None
    discharge_flag_path: Path | None = None
    native_path: Path | None = None


def native_battery(path: Path, index: int) -> Battery:
    return Battery(id=path.name, index=index, telemetry_path=path, native_path=path)


class BatteryRegistry:
    def __init__(self, batteries: list[Battery]):
        self._batteries = list(batteries)

    def __iter__(self):
        return iter(self._batteries)

    def __len__(self) -> int:
        return len(self._batteries)

    @property
    def ids(self) -> list[str]:
        return [b.id for b in self._batteries]

    def resolve(self, battery_id: str = DEFAULT_BATTERY) -> Battery | None:
        if not self._batteries:
            return None
        if battery_id == DEFAULT_BATTERY:
            return self._batteries[0]
        for battery in self._batteries:
            if battery.id == battery_id:
                return battery
        log.debug("Battery %s not present", battery_id)
        return None
