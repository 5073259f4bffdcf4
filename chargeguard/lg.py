"""LG lg-laptop driver: a single battery care limit of 80 or 100 percent."""

import logging
from pathlib import Path

from chargeguard.battery import Battery, BatteryRegistry
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
    WriteStatus,
)
from chargeguard.sysfile import SYS_ROOT, read_int, write_sysfile

log = logging.getLogger(__name__)

CARE_LIMIT = Path("devices/platform/lg-laptop/battery_care_limit")

LG_CAPABILITIES = Capabilities(
    read_method=Method.NATIVE_ACPI,
    threshold_method=Method.VENDOR_DRIVER,
    discharge_method=Method.NONE,
    default_stop=100,
    stop_values=(80, 100),
)


class LgDriver(ChargeDriver):
    name = "lg-laptop"

    def __init__(self, sys_root: Path = SYS_ROOT):
        super().__init__(sys_root)
        self._care_limit = sys_root / CARE_LIMIT

    def matches(self) -> bool:
        return self._dmi("sys_vendor") == "LG Electronics"

    def probe(self, config: ChargeConfig) -> Detection | NoMatch | NoBatteries:
        if not self.matches():
            return NoMatch(self.name)

        capabilities = Capabilities()
        if not config.natacpi_enable:
            log.info("Native ACPI charge control disabled by configuration")
            status = DriverStatus.DISABLED_BY_CONFIG
        else:
            value = read_int(self._care_limit)
            if value is None:
                status = DriverStatus.NO_KERNEL_SUPPORT
            elif value == 0:
                log.info("battery_care_limit present but inert on this model")
                status = DriverStatus.HARDWARE_UNSUPPORTED
            else:
                status = DriverStatus.SUPPORTED
                capabilities = LG_CAPABILITIES

        controls = capabilities.threshold_method is Method.VENDOR_DRIVER
        batteries = [
            Battery(
                id=b.id,
                index=b.index,
                telemetry_path=b.telemetry_path,
                stop_threshold_path=self._care_limit if controls else None,
                native_path=b.native_path,
            )
            for b in self._native_batteries()
        ]
        if not batteries:
            return NoBatteries(self.name, status)
        return Detection(self, status, capabilities, BatteryRegistry(batteries))

    def write_threshold(self, battery: Battery, kind: str, value: int) -> WriteStatus | Unsupported:
        path = self._threshold_path(battery, kind)
        if path is None:
            return UNSUPPORTED
        if not write_sysfile(value, path):
            return WriteStatus.WRITE_ERROR
        retained = read_int(path)
        if retained != value:
            log.warning("Firmware discarded care limit %d (reads %s)", value, retained)
            return WriteStatus.DISCARDED
        return WriteStatus.WRITTEN
