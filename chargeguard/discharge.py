"""Forced discharge state machine.

IDLE -> REQUESTED -> STARTING -> RUNNING -> DONE, with the abnormal
terminals FAILED_TO_START, CANCELLED, INTERRUPTED_BY_AC and NOT_EMPTIED.
The discharge flag is system-wide physical state, so a session holds the
exclusive lock from REQUESTED until it reaches any terminal state.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto

from chargeguard.battery import Battery, Telemetry
from chargeguard.driver import STOP, UNSUPPORTED, Detection, Method
from chargeguard.lock import ExclusiveLock

log = logging.getLogger(__name__)

MIN_STOP_THRESHOLD = 6
EMPTY_PERCENT = 0

START_INTERVAL = 1.0
START_TICKS = 15
POLL_INTERVAL = 5.0


class DischargeState(Enum):
    IDLE = auto()
    REQUESTED = auto()
    STARTING = auto()
    RUNNING = auto()
    FAILED_TO_START = auto()
    CANCELLED = auto()
    INTERRUPTED_BY_AC = auto()
    NOT_EMPTIED = auto()
    DONE = auto()


class DischargeOutcome(Enum):
    DONE = auto()
    UNSUPPORTED = auto()
    READ_ERROR = auto()
    STOP_THRESHOLD_TOO_LOW = auto()
    CHARGE_LEVEL_TOO_HIGH = auto()
    CHARGE_LEVEL_UNKNOWN = auto()
    ALREADY_RUNNING = auto()
    FAILED_TO_START = auto()
    CANCELLED = auto()
    INTERRUPTED_BY_AC = auto()
    NOT_EMPTIED = auto()
    LOCK_ERROR = auto()


# Outcomes that end a session without an error
_BENIGN = (DischargeOutcome.DONE, DischargeOutcome.CANCELLED, DischargeOutcome.INTERRUPTED_BY_AC)


class CancelToken:
    """Set from a signal handler or another thread to stop a running discharge."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


@dataclass
class DischargeSession:
    battery: Battery
    lock: ExclusiveLock
    state: DischargeState = DischargeState.IDLE
    outcome: DischargeOutcome | None = None
    last_percent: int | None = None
    message: str = ""

    @property
    def is_error(self) -> bool:
        return self.outcome not in _BENIGN


class DischargeController:
    def __init__(
        self,
        detection: Detection,
        lock: ExclusiveLock,
        ac_online: Callable[[], bool | None],
        poll_interval: float = POLL_INTERVAL,
        start_interval: float = START_INTERVAL,
        start_ticks: int = START_TICKS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._driver = detection.driver
        self._caps = detection.capabilities
        self._lock = lock
        self._ac_online = ac_online
        self._poll_interval = poll_interval
        self._start_interval = start_interval
        self._start_ticks = start_ticks
        self._sleep = sleep

    def run(
        self,
        battery: Battery,
        cancel: CancelToken | None = None,
        on_state: Callable[[DischargeState], None] | None = None,
        on_tick: Callable[[Telemetry], None] | None = None,
    ) -> DischargeSession:
        session = DischargeSession(battery, self._lock)
        if self._caps.discharge_method is Method.NONE or battery.discharge_flag_path is None:
            return self._reject(session, DischargeOutcome.UNSUPPORTED,
                                "forced discharge is not supported")

        stop = self._driver.read_threshold(battery, STOP)
        if stop is None or stop is UNSUPPORTED:
            return self._reject(session, DischargeOutcome.READ_ERROR,
                                f"cannot read the stop charge threshold of {battery.id}")
        if stop < MIN_STOP_THRESHOLD:
            return self._reject(session, DischargeOutcome.STOP_THRESHOLD_TOO_LOW,
                                f"stop charge threshold of {battery.id} ({stop}) "
                                f"is below {MIN_STOP_THRESHOLD}")

        percent = self._driver.read_charge_percent(battery)
        if percent is None:
            return self._reject(session, DischargeOutcome.CHARGE_LEVEL_UNKNOWN,
                                f"charge level of {battery.id} is unknown")
        session.last_percent = percent
        limit = stop - (self._caps.min_gap or 0)
        if percent > limit:
            return self._reject(session, DischargeOutcome.CHARGE_LEVEL_TOO_HIGH,
                                f"charge level of {battery.id} ({percent}%) is above {limit}%")

        try:
            acquired = self._lock.try_acquire()
        except OSError as e:
            return self._reject(session, DischargeOutcome.LOCK_ERROR,
                                f"cannot open lock file {self._lock.path}: {e.strerror or e}")
        if not acquired:
            return self._reject(session, DischargeOutcome.ALREADY_RUNNING,
                                "another discharge is already in progress")
        try:
            return self._run_locked(session, cancel or CancelToken(), on_state, on_tick)
        finally:
            self._lock.release()

    def _reject(self, session: DischargeSession, outcome: DischargeOutcome, message: str) -> DischargeSession:
        log.error(message)
        session.outcome = outcome
        session.message = message
        return session

    def _enter(self, session, state, on_state):
        log.debug("%s: discharge %s -> %s", session.battery.id,
                  session.state.name.lower(), state.name.lower())
        session.state = state
        if on_state is not None:
            on_state(state)

    def _finish(self, session, state, outcome, message, on_state) -> DischargeSession:
        self._enter(session, state, on_state)
        session.outcome = outcome
        session.message = message
        if session.is_error:
            log.error(message)
        elif outcome is DischargeOutcome.DONE:
            log.info(message)
        else:
            log.warning(message)
        return session

    def _run_locked(self, session, cancel, on_state, on_tick) -> DischargeSession:
        battery = session.battery
        self._enter(session, DischargeState.REQUESTED, on_state)
        self._enter(session, DischargeState.STARTING, on_state)
        if self._driver.write_force_discharge(battery, True) is not True:
            return self._finish(session, DischargeState.FAILED_TO_START,
                                DischargeOutcome.FAILED_TO_START,
                                f"discharge of {battery.id} failed (hardware malfunction?)",
                                on_state)

        for _ in range(self._start_ticks):
            if self._driver.read_force_discharge(battery) is True:
                break
            self._sleep(self._start_interval)
        else:
            self._driver.write_force_discharge(battery, False)
            return self._finish(session, DischargeState.FAILED_TO_START,
                                DischargeOutcome.FAILED_TO_START,
                                f"discharge of {battery.id} did not start (hardware malfunction?)",
                                on_state)

        self._enter(session, DischargeState.RUNNING, on_state)
        while self._driver.read_force_discharge(battery) is True:
            if cancel.cancelled:
                return self._cancel(session, on_state)
            telemetry = self._driver.read_telemetry(battery)
            if telemetry.percent is not None:
                session.last_percent = telemetry.percent
            if on_tick is not None:
                on_tick(telemetry)
            if cancel.wait(self._poll_interval):
                return self._cancel(session, on_state)

        percent = self._driver.read_charge_percent(battery)
        session.last_percent = percent
        if percent is None:
            return self._finish(session, DischargeState.NOT_EMPTIED, DischargeOutcome.READ_ERROR,
                                f"charge level of {battery.id} is unknown after the discharge",
                                on_state)
        if percent <= EMPTY_PERCENT:
            return self._finish(session, DischargeState.DONE, DischargeOutcome.DONE,
                                f"discharge of {battery.id} completed", on_state)
        if self._ac_online():
            return self._finish(session, DischargeState.INTERRUPTED_BY_AC,
                                DischargeOutcome.INTERRUPTED_BY_AC,
                                f"{battery.id} was not discharged completely, "
                                f"AC power was connected", on_state)
        return self._finish(session, DischargeState.NOT_EMPTIED, DischargeOutcome.NOT_EMPTIED,
                            f"{battery.id} was not discharged completely, "
                            f"firmware ended the discharge (hardware malfunction?)", on_state)

    def _cancel(self, session, on_state) -> DischargeSession:
        battery = session.battery
        if self._driver.write_force_discharge(battery, False) is not True:
            log.error("%s: resetting the discharge flag failed", battery.id)
        self._lock.release()
        return self._finish(session, DischargeState.CANCELLED, DischargeOutcome.CANCELLED,
                            f"discharge of {battery.id} cancelled", on_state)
