"""Capability model shared by the vendor charge-control drivers.

A driver probes the machine once and returns one of three result
variants: ``Detection`` (the driver applies and found batteries),
``NoMatch`` (the hardware is not this vendor's, try the next driver) or
``NoBatteries`` (the driver applies but no battery is present, stop).
The ``Capabilities`` record produced by a successful probe is immutable
and passed explicitly to every later operation.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path

from chargeguard.battery import (
    Battery,
    BatteryRegistry,
    Telemetry,
    find_batteries,
    native_battery,
    power_supply_root,
    read_native_telemetry,
)
from chargeguard.config import ChargeConfig
from chargeguard.sysfile import SYS_ROOT, read_int, read_sysfile, write_sysfile

log = logging.getLogger(__name__)

START = "start"
STOP = "stop"

_DMI_DIR = Path("class/dmi/id")


class DriverStatus(Enum):
    SUPPORTED = auto()
    DISABLED_BY_CONFIG = auto()
    MODULE_LOAD_ERROR = auto()
    MODULE_NOT_INSTALLED = auto()
    HARDWARE_UNSUPPORTED = auto()
    NO_KERNEL_SUPPORT = auto()
    UNKNOWN = auto()


class Method(Enum):
    NATIVE_ACPI = auto()
    VENDOR_DRIVER = auto()
    NONE = auto()


class WriteStatus(Enum):
    UNCHANGED = auto()
    WRITTEN = auto()
    WRITE_ERROR = auto()
    DISCARDED = auto()


class Unsupported(Enum):
    UNSUPPORTED = auto()


UNSUPPORTED = Unsupported.UNSUPPORTED


@dataclass(frozen=True, slots=True)
class Capabilities:
    read_method: Method = Method.NATIVE_ACPI
    threshold_method: Method = Method.NONE
    discharge_method: Method = Method.NONE
    default_start: int | None = None
    default_stop: int | None = None
    start_values: range | tuple[int, ...] | None = None
    stop_values: range | tuple[int, ...] | None = None
    min_gap: int | None = None

    def legal_range(self, kind: str) -> range | tuple[int, ...] | None:
        return self.start_values if kind == START else self.stop_values

    def has_register(self, kind: str) -> bool:
        return self.legal_range(kind) is not None

    def default(self, kind: str) -> int | None:
        return self.default_start if kind == START else self.default_stop

    def range_text(self, kind: str) -> str:
        values = self.legal_range(kind)
        if values is None:
            return "not available"
        if isinstance(values, range):
            return f"{values.start}..{values.stop - 1}"
        return " or ".join(str(v) for v in values)

    def as_dict(self) -> dict:
        return {
            "read_method": self.read_method.name.lower(),
            "threshold_method": self.threshold_method.name.lower(),
            "discharge_method": self.discharge_method.name.lower(),
            "default_start": self.default_start,
            "default_stop": self.default_stop,
            "start_range": self.range_text(START) if self.has_register(START) else None,
            "stop_range": self.range_text(STOP) if self.has_register(STOP) else None,
            "min_gap": self.min_gap,
        }


@dataclass(frozen=True)
class Detection:
    driver: "ChargeDriver"
    status: DriverStatus
    capabilities: Capabilities
    batteries: BatteryRegistry = field(default_factory=lambda: BatteryRegistry([]))


@dataclass(frozen=True)
class NoMatch:
    driver_name: str | None


@dataclass(frozen=True)
class NoBatteries:
    driver_name: str
    status: DriverStatus


class ChargeDriver:
    name = "generic"

    def __init__(self, sys_root: Path = SYS_ROOT):
        self._sys_root = sys_root

    @property
    def power_supply_root(self) -> Path:
        return power_supply_root(self._sys_root)

    def probe(self, config: ChargeConfig) -> Detection | NoMatch | NoBatteries:
        raise NotImplementedError

    def _dmi(self, name: str) -> str:
        return read_sysfile(self._sys_root / _DMI_DIR / name) or ""

    def _native_batteries(self) -> list[Battery]:
        return [native_battery(path, index)
                for index, path in enumerate(find_batteries(self.power_supply_root))]

    @staticmethod
    def _threshold_path(battery: Battery, kind: str) -> Path | None:
        return battery.start_threshold_path if kind == START else battery.stop_threshold_path

    def read_threshold(self, battery: Battery, kind: str) -> int | None | Unsupported:
        path = self._threshold_path(battery, kind)
        if path is None:
            return UNSUPPORTED
        return read_int(path)

    def write_threshold(self, battery: Battery, kind: str, value: int) -> WriteStatus | Unsupported:
        path = self._threshold_path(battery, kind)
        if path is None:
            return UNSUPPORTED
        if not write_sysfile(value, path):
            return WriteStatus.WRITE_ERROR
        return WriteStatus.WRITTEN

    def read_force_discharge(self, battery: Battery) -> bool | None | Unsupported:
        return UNSUPPORTED

    def write_force_discharge(self, battery: Battery, enable: bool) -> bool | Unsupported:
        return UNSUPPORTED

    def read_telemetry(self, battery: Battery) -> Telemetry:
        return read_native_telemetry(battery.telemetry_path)

    def read_charge_percent(self, battery: Battery) -> int | None:
        return None


def detect(config: ChargeConfig, drivers: list[ChargeDriver]) -> Detection | NoMatch | NoBatteries:
    for driver in drivers:
        result = driver.probe(config)
        if isinstance(result, NoMatch):
            log.debug("Driver %s does not match this hardware", driver.name)
            continue
        if isinstance(result, NoBatteries):
            log.error("Driver %s applies but found no batteries (%s)",
                      driver.name, result.status.name.lower())
        else:
            log.info("Using driver %s: %s, %d battery(ies)",
                     driver.name, result.status.name.lower(), len(result.batteries))
        return result
    log.info("No charge control driver matches this hardware")
    return NoMatch(None)
