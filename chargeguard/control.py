"""Charge control facade: detection once, then thresholds, discharge and status."""

import logging
from collections.abc import Callable
from pathlib import Path

from chargeguard.battery import DEFAULT_BATTERY, Battery, Telemetry, read_ac_online
from chargeguard.config import Config
from chargeguard.discharge import CancelToken, DischargeController, DischargeSession, DischargeState
from chargeguard.driver import (
    START,
    STOP,
    UNSUPPORTED,
    ChargeDriver,
    Detection,
    Method,
    NoBatteries,
    NoMatch,
    detect,
)
from chargeguard.lg import LgDriver
from chargeguard.lock import ExclusiveLock
from chargeguard.smapi import SmapiDriver
from chargeguard.sysfile import SYS_ROOT
from chargeguard.thresholds import Origin, Outcome, ThresholdController, ThresholdResult

log = logging.getLogger(__name__)


class HardwareError(RuntimeError):
    pass


def default_drivers(sys_root: Path = SYS_ROOT) -> list[ChargeDriver]:
    return [SmapiDriver(sys_root), LgDriver(sys_root)]


class ChargeControl:
    def __init__(self, config: Config, sys_root: Path = SYS_ROOT, drivers: list[ChargeDriver] | None = None):
        self._config = config
        self._sys_root = sys_root
        self._drivers = drivers if drivers is not None else default_drivers(sys_root)
        self._result: Detection | NoMatch | NoBatteries | None = None

    @property
    def config(self) -> Config:
        return self._config

    @property
    def result(self) -> Detection | NoMatch | NoBatteries:
        if self._result is None:
            self._result = detect(self._config.charge, self._drivers)
        return self._result

    @property
    def detection(self) -> Detection:
        result = self.result
        if isinstance(result, NoMatch):
            raise HardwareError("no supported charge control hardware found")
        if isinstance(result, NoBatteries):
            raise HardwareError(f"{result.driver_name}: no batteries found")
        return result

    def ac_online(self) -> bool | None:
        return read_ac_online(self.detection.driver.power_supply_root)

    def resolve(self, battery_id: str = DEFAULT_BATTERY) -> Battery | None:
        return self.detection.batteries.resolve(battery_id)

    # --- Reporting ---

    def status(self) -> dict:
        result = self.result
        if isinstance(result, NoMatch):
            return {"driver": result.driver_name, "status": "no_match",
                    "capabilities": None, "ac_online": None, "batteries": []}
        if isinstance(result, NoBatteries):
            return {"driver": result.driver_name, "status": result.status.name.lower(),
                    "capabilities": None, "ac_online": None, "batteries": []}
        return {
            "driver": result.driver.name,
            "status": result.status.name.lower(),
            "capabilities": result.capabilities.as_dict(),
            "ac_online": self.ac_online(),
            "batteries": [self.battery_status(b) for b in result.batteries],
        }

    def battery_status(self, battery: Battery) -> dict:
        detection = self.detection
        driver = detection.driver
        caps = detection.capabilities

        thresholds = None
        if caps.threshold_method is not Method.NONE:
            thresholds = {}
            for kind in (START, STOP):
                value = driver.read_threshold(battery, kind)
                thresholds[kind] = None if value is UNSUPPORTED else value

        force_discharge = driver.read_force_discharge(battery)
        return {
            "id": battery.id,
            "index": battery.index,
            "telemetry": driver.read_telemetry(battery).as_dict(),
            "thresholds": thresholds,
            "discharge_supported": caps.discharge_method is not Method.NONE,
            "force_discharge": None if force_discharge is UNSUPPORTED else force_discharge,
        }

    # --- Thresholds ---

    def set_thresholds(
        self,
        battery_id: str,
        start: int | str | None,
        stop: int | str | None,
        origin: Origin = Origin.INTERACTIVE,
    ) -> ThresholdResult:
        battery = self.resolve(battery_id)
        if battery is None:
            return ThresholdResult(Outcome.NOT_FOUND, battery_id,
                                   message=f"battery {battery_id} not present")
        return ThresholdController(self.detection).write(battery, start, stop, origin)

    def apply_config(self) -> list[ThresholdResult]:
        charge = self._config.charge
        detection = self.detection
        controller = ThresholdController(detection)
        ids = detection.batteries.ids
        ids += [i for i in charge.battery_ids if i not in ids]

        results = []
        for battery_id in ids:
            battery = detection.batteries.resolve(battery_id)
            if battery is None:
                log.debug("Skipping configuration for absent battery %s", battery_id)
                continue
            results.append(controller.write(
                battery,
                charge.threshold(START, battery_id),
                charge.threshold(STOP, battery_id),
                Origin.CONFIG,
            ))
        return results

    # --- Discharge ---

    def discharge(
        self,
        battery_id: str = DEFAULT_BATTERY,
        cancel: CancelToken | None = None,
        on_state: Callable[[DischargeState], None] | None = None,
        on_tick: Callable[[Telemetry], None] | None = None,
    ) -> DischargeSession | None:
        battery = self.resolve(battery_id)
        if battery is None:
            log.error("Battery %s not present", battery_id)
            return None
        cfg = self._config.discharge
        controller = DischargeController(
            self.detection,
            ExclusiveLock(cfg.lock_file),
            self.ac_online,
            poll_interval=cfg.poll_interval,
            start_interval=cfg.start_interval,
            start_ticks=cfg.start_ticks,
        )
        return controller.run(battery, cancel, on_state, on_tick)
