"""Scoped read/write of single-value sysfs nodes and kernel module loading."""

import logging
import subprocess
from enum import Enum, auto
from pathlib import Path

log = logging.getLogger(__name__)

SYS_ROOT = Path("/sys")


class ModuleLoad(Enum):
    LOADED = auto()
    NOT_INSTALLED = auto()
    LOAD_ERROR = auto()


def read_sysfile(path: Path) -> str | None:
    try:
        value = path.read_text().strip()
    except OSError as e:
        log.debug("read %s failed: %s", path, e)
        return None
    log.debug("read %s = %r", path, value)
    return value


def read_int(path: Path) -> int | None:
    value = read_sysfile(path)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        log.debug("Non-integer value in %s: %r", path, value)
        return None


def write_sysfile(value, path: Path) -> bool:
    try:
        path.write_text(f"{value}\n")
    except OSError as e:
        log.debug("write %s <- %s failed: %s", path, value, e)
        return False
    log.debug("write %s <- %s", path, value)
    return True


def load_kernel_module(name: str) -> ModuleLoad:
    try:
        info = subprocess.run(["modinfo", name], capture_output=True, text=True)
    except OSError as e:
        log.warning("Cannot run modinfo: %s", e)
        return ModuleLoad.LOAD_ERROR
    if info.returncode != 0:
        log.info("Kernel module %s is not installed", name)
        return ModuleLoad.NOT_INSTALLED

    try:
        probe = subprocess.run(["modprobe", name], capture_output=True, text=True)
    except OSError as e:
        log.warning("Cannot run modprobe: %s", e)
        return ModuleLoad.LOAD_ERROR
    if probe.returncode != 0:
        log.warning("Loading kernel module %s failed: %s", name, probe.stderr.strip())
        return ModuleLoad.LOAD_ERROR

    log.info("Loaded kernel module %s", name)
    return ModuleLoad.LOADED
