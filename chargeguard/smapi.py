"""ThinkPad tp_smapi driver: dual threshold registers and forced discharge."""

import logging
from collections.abc import Callable
from pathlib import Path

from chargeguard.battery import Battery, BatteryRegistry, Telemetry, read_native_telemetry
from chargeguard.config import ChargeConfig
from chargeguard.driver import (
    UNSUPPORTED,
    Capabilities,
    ChargeDriver,
    Detection,
    DriverStatus,
    Method,
    NoBatteries,
    NoMatch,
    Unsupported,
)
from chargeguard.sysfile import SYS_ROOT, ModuleLoad, load_kernel_module, read_int, read_sysfile, write_sysfile

log = logging.getLogger(__name__)

MODULE = "tp_smapi"
SMAPI_DIR = Path("devices/platform/smapi")

_SLOTS = ("BAT0", "BAT1")
_START_FILE = "start_charge_thresh"
_STOP_FILE = "stop_charge_thresh"
_DISCHARGE_FILE = "force_discharge"
_CONTROL_FILES = (_START_FILE, _STOP_FILE, _DISCHARGE_FILE)

_VENDORS = ("LENOVO", "IBM")

SMAPI_CAPABILITIES = Capabilities(
    read_method=Method.VENDOR_DRIVER,
    threshold_method=Method.VENDOR_DRIVER,
    discharge_method=Method.VENDOR_DRIVER,
    default_start=96,
    default_stop=100,
    start_values=range(2, 97),
    stop_values=range(6, 101),
    min_gap=4,
)


class SmapiDriver(ChargeDriver):
    name = "tp_smapi"

    def __init__(
        self,
        sys_root: Path = SYS_ROOT,
        module_loader: Callable[[str], ModuleLoad] = load_kernel_module,
    ):
        super().__init__(sys_root)
        self._module_loader = module_loader
        self._data_dir = sys_root / SMAPI_DIR

    def matches(self) -> bool:
        return (self._dmi("sys_vendor") in _VENDORS
                and self._dmi("product_version").startswith("ThinkPad"))

    def probe(self, config: ChargeConfig) -> Detection | NoMatch | NoBatteries:
        if not self.matches():
            return NoMatch(self.name)

        if not config.tpsmapi_enable:
            log.info("tp_smapi disabled by configuration")
            return self._fallback(DriverStatus.DISABLED_BY_CONFIG)

        if not self._data_dir.is_dir():
            load = self._module_loader(MODULE)
            if not self._data_dir.is_dir():
                if load is ModuleLoad.NOT_INSTALLED:
                    return self._fallback(DriverStatus.MODULE_NOT_INSTALLED)
                return self._fallback(DriverStatus.MODULE_LOAD_ERROR)

        slots = [self._data_dir / name for name in _SLOTS
                 if read_sysfile(self._data_dir / name / "installed") == "1"]
        if not slots:
            log.info("tp_smapi loaded but reports no installed battery")
            return self._fallback(DriverStatus.UNKNOWN)

        # Only the first installed slot is checked; the EC either supports
        # the control registers for all slots or for none.
        first = slots[0]
        if all(read_sysfile(first / name) is not None for name in _CONTROL_FILES):
            status = DriverStatus.SUPPORTED
            capabilities = SMAPI_CAPABILITIES
        else:
            log.warning("tp_smapi control nodes of %s are unreadable", first.name)
            status = DriverStatus.HARDWARE_UNSUPPORTED
            capabilities = Capabilities()

        batteries = [self._battery(slot, capabilities) for slot in slots]
        return Detection(self, status, capabilities, BatteryRegistry(batteries))

    def _fallback(self, status: DriverStatus) -> Detection | NoBatteries:
        batteries = self._native_batteries()
        if not batteries:
            return NoBatteries(self.name, status)
        return Detection(self, status, Capabilities(), BatteryRegistry(batteries))

    def _battery(self, slot: Path, capabilities: Capabilities) -> Battery:
        native = self.power_supply_root / slot.name
        native_path = native if native.is_dir() else None
        vendor_read = capabilities.read_method is Method.VENDOR_DRIVER
        controls = capabilities.threshold_method is Method.VENDOR_DRIVER
        return Battery(
            id=slot.name,
            index=int(slot.name[3:]),
            telemetry_path=slot if vendor_read or native_path is None else native_path,
            start_threshold_path=slot / _START_FILE if controls else None,
            stop_threshold_path=slot / _STOP_FILE if controls else None,
            discharge_flag_path=slot / _DISCHARGE_FILE if controls else None,
            native_path=native_path,
        )

    def _vendor_telemetry(self, battery: Battery) -> bool:
        return battery.telemetry_path.is_relative_to(self._data_dir)

    def read_threshold(self, battery: Battery, kind: str) -> int | None | Unsupported:
        value = super().read_threshold(battery, kind)
        if value == 0:
            # 0 means the EC runs on its built-in default
            return SMAPI_CAPABILITIES.default(kind)
        return value

    def read_force_discharge(self, battery: Battery) -> bool | None | Unsupported:
        if battery.discharge_flag_path is None:
            return UNSUPPORTED
        value = read_int(battery.discharge_flag_path)
        if value is None:
            return None
        return value == 1

    def write_force_discharge(self, battery: Battery, enable: bool) -> bool | Unsupported:
        if battery.discharge_flag_path is None:
            return UNSUPPORTED
        return write_sysfile(1 if enable else 0, battery.discharge_flag_path)

    def read_telemetry(self, battery: Battery) -> Telemetry:
        if not self._vendor_telemetry(battery):
            return read_native_telemetry(battery.telemetry_path)
        path = battery.telemetry_path
        temperature = read_int(path / "temperature")
        return Telemetry(
            percent=read_int(path / "remaining_percent"),
            status=read_sysfile(path / "state"),
            energy_now_mwh=read_int(path / "remaining_capacity"),
            energy_full_mwh=read_int(path / "last_full_capacity"),
            design_mwh=read_int(path / "design_capacity"),
            power_mw=read_int(path / "power_now"),
            voltage_mv=read_int(path / "voltage"),
            cycle_count=read_int(path / "cycle_count"),
            temperature_c=temperature / 1000 if temperature is not None else None,
        )

    def read_charge_percent(self, battery: Battery) -> int | None:
        if not self._vendor_telemetry(battery):
            return None
        return read_int(battery.telemetry_path / "remaining_percent")
