"""chargeguard entry point: python -m chargeguard"""

import asyncio
import logging
import signal
from pathlib import Path

from aiohttp import web

from chargeguard.battery import DEFAULT_BATTERY
from chargeguard.config import load_config
from chargeguard.control import ChargeControl
from chargeguard.server import create_app

log = logging.getLogger("chargeguard")


def main():
    import argparse

    from chargeguard.cli import threshold_arg

    parser = argparse.ArgumentParser(description="Laptop battery charge control")
    parser.add_argument("-c", "--config", type=Path, help="Path to config.json")
    parser.add_argument("--log-level", default=None, help="Log level")
    parser.add_argument("-v", "--verbose", action="store_true", help="Report every register")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show driver and battery status (default)")

    setcharge_parser = sub.add_parser("setcharge", help="Set charge thresholds")
    setcharge_parser.add_argument("start", type=threshold_arg, help="Start threshold or 'default'")
    setcharge_parser.add_argument("stop", type=threshold_arg, help="Stop threshold or 'default'")
    setcharge_parser.add_argument("battery", nargs="?", default=DEFAULT_BATTERY, help="Battery, e.g. BAT1")

    sub.add_parser("apply", help="Apply thresholds from the config file")

    discharge_parser = sub.add_parser("discharge", help="Force a full discharge")
    discharge_parser.add_argument("battery", nargs="?", default=DEFAULT_BATTERY, help="Battery, e.g. BAT1")

    serve_parser = sub.add_parser("serve", help="Run the HTTP status service")
    serve_parser.add_argument("-p", "--port", type=int, help="Override HTTP port")

    args = parser.parse_args()
    if args.command is None:
        args.command = "status"

    config = load_config(args.config)
    if args.log_level:
        config.daemon.log_level = args.log_level

    level = getattr(logging, config.daemon.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)-25s %(levelname)-7s %(message)s",
        datefmt="%H:%M:%S",
    )

    control = ChargeControl(config)

    if args.command == "serve":
        if args.port:
            config.daemon.port = args.port
        log.info("chargeguard v0.1.0 starting")
        asyncio.run(_serve(control, config.daemon.port))
    else:
        from chargeguard.cli import run_command
        run_command(args, control)


async def _serve(control: ChargeControl, port: int):
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    app = create_app(control, stop_event=stop_event)

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    status = control.status()
    log.info("Driver %s: %s", status["driver"], status["status"])

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    log.info("HTTP server listening on http://127.0.0.1:%d", port)

    try:
        await stop_event.wait()
    finally:
        await runner.cleanup()


if __name__ == "__main__":
    main()
