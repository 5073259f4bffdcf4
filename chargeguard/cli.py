"""Command implementations for the chargeguard command line."""

import argparse
import signal
import sys

from chargeguard.battery import DEFAULT_BATTERY
from chargeguard.config import DEFAULT
from chargeguard.control import ChargeControl, HardwareError
from chargeguard.discharge import CancelToken, DischargeOutcome, DischargeState
from chargeguard.thresholds import Outcome, ThresholdResult


def threshold_arg(value: str) -> int | str:
    if value == DEFAULT:
        return DEFAULT
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer or {DEFAULT!r}, got {value!r}")


def _fmt(value, unit="") -> str:
    return "--" if value is None else f"{value}{unit}"


def _print_battery(b: dict):
    t = b["telemetry"]
    print(f"{b['id']}:")
    status = f" ({t['status'].lower()})" if t.get("status") else ""
    print(f"  Charge:     {_fmt(t['percent'], '%')}{status}")
    print(f"  Energy:     {_fmt(t['energy_now_mwh'])} / {_fmt(t['energy_full_mwh'])} mWh"
          f" (design {_fmt(t['design_mwh'])} mWh)")
    print(f"  Power:      {_fmt(t['power_mw'], ' mW')}")
    if t.get("cycle_count") is not None:
        print(f"  Cycles:     {t['cycle_count']}")
    if t.get("temperature_c") is not None:
        print(f"  Temp:       {t['temperature_c']:.1f} C")

    thresholds = b["thresholds"]
    if thresholds is None:
        print("  Thresholds: not available")
    else:
        parts = [f"{kind} {_fmt(thresholds[kind], '%')}" for kind in ("start", "stop")
                 if thresholds.get(kind) is not None]
        print(f"  Thresholds: {', '.join(parts) or 'unreadable'}")

    if b["discharge_supported"]:
        active = "active" if b["force_discharge"] else "inactive"
        print(f"  Discharge:  supported ({active})")
    else:
        print("  Discharge:  not supported")


def cmd_status(control: ChargeControl):
    s = control.status()
    print(f"Driver:     {s['driver'] or 'none'} ({s['status']})")
    if s["ac_online"] is not None:
        print(f"AC:         {'online' if s['ac_online'] else 'offline'}")
    for battery in s["batteries"]:
        _print_battery(battery)


def _report(result: ThresholdResult, verbose: bool) -> bool:
    if result.outcome is Outcome.NOT_CONFIGURED:
        if verbose:
            print(f"{result.battery_id}: not configured")
        return True
    if not result.ok:
        print(f"Error: {result.message}", file=sys.stderr)
        for r in result.registers:
            print(f"  {r.kind}: {r.old} -> {r.new} {r.status.name.lower()}", file=sys.stderr)
        return False
    print(result.message)
    if verbose:
        for r in result.registers:
            print(f"  {r.kind}: {r.old} -> {r.new} {r.status.name.lower()}")
    return True


def cmd_setcharge(control: ChargeControl, start, stop, battery_id=DEFAULT_BATTERY, verbose=False):
    result = control.set_thresholds(battery_id, start, stop)
    if not _report(result, verbose):
        sys.exit(1)


def cmd_apply(control: ChargeControl, verbose=False):
    results = control.apply_config()
    ok = True
    for result in results:
        ok = _report(result, verbose) and ok
    if not ok:
        sys.exit(1)


def _print_tick(battery_id, telemetry):
    print(f"{battery_id}: {_fmt(telemetry.percent, '%')} {telemetry.status or ''}"
          f" {_fmt(telemetry.power_mw, ' mW')}  (Ctrl+C to cancel)")


def cmd_discharge(control: ChargeControl, battery_id=DEFAULT_BATTERY):
    cancel = CancelToken()
    # Ctrl+C cancels only while the discharge is running
    trapped = []

    def on_state(state):
        if state is DischargeState.RUNNING:
            trapped.append(signal.signal(signal.SIGINT, lambda signum, frame: cancel.cancel()))
        elif trapped:
            signal.signal(signal.SIGINT, trapped.pop() or signal.default_int_handler)

    try:
        session = control.discharge(battery_id, cancel, on_state,
                                    lambda t: _print_tick(battery_id, t))
    finally:
        if trapped:
            signal.signal(signal.SIGINT, trapped.pop() or signal.default_int_handler)

    if session is None:
        print(f"Error: battery {battery_id} not present", file=sys.stderr)
        sys.exit(1)
    if session.outcome is DischargeOutcome.CANCELLED:
        print("Discharge cancelled")
        return
    if session.is_error:
        print(f"Error: {session.message}", file=sys.stderr)
        sys.exit(1)
    if session.outcome is DischargeOutcome.INTERRUPTED_BY_AC:
        print(f"Warning: {session.message}")
    else:
        print(session.message)


def run_command(args, control: ChargeControl):
    dispatch = {
        "status": lambda: cmd_status(control),
        "setcharge": lambda: cmd_setcharge(control, args.start, args.stop, args.battery, args.verbose),
        "apply": lambda: cmd_apply(control, args.verbose),
        "discharge": lambda: cmd_discharge(control, args.battery),
    }
    try:
        dispatch[args.command]()
    except HardwareError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
