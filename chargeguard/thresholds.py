"""Threshold controller: validate, order and apply start/stop charge thresholds.

The firmware enforces ``start <= stop - min_gap`` at every instant, so the
two registers are written in an order computed from the currently
effective values: when the new start lies above the old stop, stop goes
first, otherwise start goes first. Both writes are always attempted.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto

from chargeguard.battery import Battery
from chargeguard.config import DEFAULT
from chargeguard.driver import START, STOP, UNSUPPORTED, Detection, Method, WriteStatus

log = logging.getLogger(__name__)


class Origin(Enum):
    CONFIG = auto()
    INTERACTIVE = auto()


class Outcome(Enum):
    SUCCESS = auto()
    NOT_CONFIGURED = auto()
    INVALID_START = auto()
    INVALID_STOP = auto()
    INVALID_GAP = auto()
    READ_ERROR = auto()
    WRITE_ERROR = auto()
    DISCARDED_BY_FIRMWARE = auto()
    UNSUPPORTED = auto()
    NOT_FOUND = auto()


_WRITE_OUTCOMES = {
    WriteStatus.UNCHANGED: Outcome.SUCCESS,
    WriteStatus.WRITTEN: Outcome.SUCCESS,
    WriteStatus.DISCARDED: Outcome.DISCARDED_BY_FIRMWARE,
    WriteStatus.WRITE_ERROR: Outcome.WRITE_ERROR,
}
# Lowest to highest severity
_SEVERITY = (Outcome.SUCCESS, Outcome.DISCARDED_BY_FIRMWARE, Outcome.WRITE_ERROR)


@dataclass(frozen=True, slots=True)
class RegisterResult:
    kind: str
    old: int
    new: int
    status: WriteStatus

    @property
    def changed(self) -> bool:
        return self.status is WriteStatus.WRITTEN

    def as_dict(self) -> dict:
        return {"kind": self.kind, "old": self.old, "new": self.new, "status": self.status.name.lower()}


@dataclass(frozen=True)
class ThresholdResult:
    outcome: Outcome
    battery_id: str
    registers: tuple[RegisterResult, ...] = ()
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.NOT_CONFIGURED)

    def register(self, kind: str) -> RegisterResult | None:
        for result in self.registers:
            if result.kind == kind:
                return result
        return None

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "outcome": self.outcome.name.lower(),
            "battery": self.battery_id,
            "registers": [r.as_dict() for r in self.registers],
            "message": self.message,
        }


def _legal(value, values) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value in values


class ThresholdController:
    def __init__(self, detection: Detection):
        self._driver = detection.driver
        self._caps = detection.capabilities

    def check_pair(self, start: int | None, stop: int | None, battery_id: str = "") -> tuple[Outcome, str]:
        """Validate requested values; a ``None`` value is skipped."""
        caps = self._caps
        if start is not None and not _legal(start, caps.legal_range(START)):
            return Outcome.INVALID_START, (
                f"start charge threshold ({start}) for {battery_id} is invalid, "
                f"accepted values: {caps.range_text(START)}")
        if stop is not None and not _legal(stop, caps.legal_range(STOP)):
            return Outcome.INVALID_STOP, (
                f"stop charge threshold ({stop}) for {battery_id} is invalid, "
                f"accepted values: {caps.range_text(STOP)}")
        if caps.min_gap is not None and start is not None and stop is not None:
            if start + caps.min_gap > stop:
                return Outcome.INVALID_GAP, (
                    f"start charge threshold ({start}) for {battery_id} must be at least "
                    f"{caps.min_gap} below the stop threshold ({stop})")
        return Outcome.SUCCESS, ""

    def _substitute(self, kind: str, value):
        if value == DEFAULT:
            return self._caps.default(kind)
        return value

    def write(
        self,
        battery: Battery,
        start: int | str | None = None,
        stop: int | str | None = None,
        origin: Origin = Origin.INTERACTIVE,
    ) -> ThresholdResult:
        caps = self._caps
        if start is None and stop is None and origin is Origin.CONFIG:
            log.debug("%s: no thresholds configured", battery.id)
            return ThresholdResult(Outcome.NOT_CONFIGURED, battery.id)

        if caps.threshold_method is Method.NONE:
            return ThresholdResult(Outcome.UNSUPPORTED, battery.id,
                                   message="charge thresholds are not supported")

        if start is None and stop is None:
            start = stop = DEFAULT

        if not caps.has_register(START):
            if start not in (None, DEFAULT):
                log.info("%s: start threshold not available, ignoring %s", battery.id, start)
            start = None

        start = self._substitute(START, start)
        stop = self._substitute(STOP, stop)

        outcome, message = self.check_pair(start, stop, battery.id)
        if outcome is not Outcome.SUCCESS:
            log.error(message)
            return ThresholdResult(outcome, battery.id, message=message)

        kinds = [kind for kind in (START, STOP) if caps.has_register(kind)]
        old = {}
        for kind in kinds:
            value = self._driver.read_threshold(battery, kind)
            if value is None or value is UNSUPPORTED:
                message = f"cannot read the current {kind} charge threshold of {battery.id}"
                log.error(message)
                return ThresholdResult(Outcome.READ_ERROR, battery.id, message=message)
            old[kind] = value

        new = {START: start, STOP: stop}
        filled = False
        for kind in kinds:
            if new[kind] is None:
                new[kind] = old[kind]
                filled = True
        if filled:
            outcome, message = self.check_pair(new[START], new[STOP], battery.id)
            if outcome is not Outcome.SUCCESS:
                log.error(message)
                return ThresholdResult(outcome, battery.id, message=message)

        results = tuple(self._write_register(battery, kind, old[kind], new[kind])
                        for kind in self.write_order(old, new))
        outcome = max((_WRITE_OUTCOMES[r.status] for r in results), key=_SEVERITY.index)
        if outcome is Outcome.SUCCESS:
            message = f"{battery.id}: " + ", ".join(
                f"{r.kind}={r.new}" + ("" if r.changed else " (no change)") for r in results)
        else:
            message = f"{battery.id}: " + ", ".join(
                f"{r.kind}={r.new} {r.status.name.lower()}" for r in results)
        return ThresholdResult(outcome, battery.id, results, message)

    def write_order(self, old: dict, new: dict) -> list[str]:
        """Stop goes first only when the new start exceeds the old stop.

        The comparison is against the old stop itself, not the old stop minus
        the gap: raising (40, 50) to (48, 60) writes start first, so the
        firmware briefly holds (48, 50).
        """
        if START in old and STOP in old and new[START] > old[STOP]:
            return [STOP, START]
        return [kind for kind in (START, STOP) if kind in old]

    def _write_register(self, battery: Battery, kind: str, old: int, new: int) -> RegisterResult:
        if new == old:
            log.info("%s: %s threshold %d, no change", battery.id, kind, new)
            return RegisterResult(kind, old, new, WriteStatus.UNCHANGED)
        status = self._driver.write_threshold(battery, kind, new)
        if status is UNSUPPORTED:
            status = WriteStatus.WRITE_ERROR
        if status is WriteStatus.WRITTEN:
            log.info("%s: %s threshold %d -> %d", battery.id, kind, old, new)
        else:
            log.error("%s: writing %s threshold %d failed (%s)",
                      battery.id, kind, new, status.name.lower())
        return RegisterResult(kind, old, new, status)
