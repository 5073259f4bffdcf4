from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--hardware",
        action="store_true",
        default=False,
        help="Run read-only tests against the real machine's sysfs",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--hardware"):
        return
    skip = pytest.mark.skip(reason="needs --hardware flag and a supported laptop")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip)


class FakeSysfs:
    """A /sys tree under tmp_path with the nodes the drivers look at."""

    def __init__(self, root: Path):
        self.root = root

    def write(self, rel: str, value):
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{value}\n")
        return path

    def read(self, rel: str) -> str:
        return (self.root / rel).read_text().strip()

    def thinkpad(self):
        self.write("class/dmi/id/sys_vendor", "LENOVO")
        self.write("class/dmi/id/product_version", "ThinkPad X220")

    def lg(self):
        self.write("class/dmi/id/sys_vendor", "LG Electronics")
        self.write("class/dmi/id/product_version", "gram")

    def native_battery(self, name="BAT0", capacity=72, status="Discharging", **extra):
        self.write(f"class/power_supply/{name}/type", "Battery")
        self.write(f"class/power_supply/{name}/capacity", capacity)
        self.write(f"class/power_supply/{name}/status", status)
        for key, value in extra.items():
            self.write(f"class/power_supply/{name}/{key}", value)

    def ac(self, online=True, name="AC"):
        self.write(f"class/power_supply/{name}/type", "Mains")
        self.write(f"class/power_supply/{name}/online", 1 if online else 0)

    def smapi_battery(self, name="BAT0", installed=1, start=96, stop=100,
                      force_discharge=0, remaining_percent=50, **extra):
        base = f"devices/platform/smapi/{name}"
        self.write(f"{base}/installed", installed)
        self.write(f"{base}/start_charge_thresh", start)
        self.write(f"{base}/stop_charge_thresh", stop)
        self.write(f"{base}/force_discharge", force_discharge)
        self.write(f"{base}/remaining_percent", remaining_percent)
        self.write(f"{base}/state", "idle")
        for key, value in extra.items():
            self.write(f"{base}/{key}", value)

    def care_limit(self, value):
        self.write("devices/platform/lg-laptop/battery_care_limit", value)


@pytest.fixture
def sysfs(tmp_path):
    return FakeSysfs(tmp_path / "sys")
