import logging
from unittest.mock import patch

import pytest

from chargeguard.config import ChargeConfig
from chargeguard.driver import START, STOP, WriteStatus
from chargeguard.lg import LgDriver
from chargeguard.smapi import SmapiDriver
from chargeguard.sysfile import ModuleLoad, read_int, write_sysfile
from chargeguard.thresholds import Origin, Outcome, ThresholdController

log = logging.getLogger(__name__)

_SMAPI = "devices/platform/smapi/BAT0"


def _probe(sysfs, driver_cls=SmapiDriver):
    if driver_cls is SmapiDriver:
        driver = SmapiDriver(sysfs.root, module_loader=lambda name: ModuleLoad.NOT_INSTALLED)
    else:
        driver = driver_cls(sysfs.root)
    return driver.probe(ChargeConfig())


@pytest.fixture
def thinkpad(sysfs):
    sysfs.thinkpad()
    sysfs.smapi_battery("BAT0", start=96, stop=100)
    return sysfs


@pytest.fixture
def detection(thinkpad):
    return _probe(thinkpad)


@pytest.fixture
def controller(detection):
    return ThresholdController(detection)


@pytest.fixture
def bat0(detection):
    return detection.batteries.resolve("BAT0")


def _thresholds(sysfs):
    return int(sysfs.read(f"{_SMAPI}/start_charge_thresh")), int(sysfs.read(f"{_SMAPI}/stop_charge_thresh"))


# --- validation ---


def test_validation_over_all_pairs(controller):
    for start in range(0, 102):
        for stop in range(0, 102):
            outcome, message = controller.check_pair(start, stop, "BAT0")
            if not 2 <= start <= 96:
                assert outcome is Outcome.INVALID_START
            elif not 6 <= stop <= 100:
                assert outcome is Outcome.INVALID_STOP
            elif start + 4 > stop:
                assert outcome is Outcome.INVALID_GAP
            else:
                assert outcome is Outcome.SUCCESS
                assert message == ""


def test_invalid_start_message(controller, bat0, thinkpad):
    result = controller.write(bat0, 97, 100)
    assert result.outcome is Outcome.INVALID_START
    assert "2..96" in result.message
    assert result.registers == ()
    assert _thresholds(thinkpad) == (96, 100)


def test_invalid_stop_message(controller, bat0):
    result = controller.write(bat0, 40, 101)
    assert result.outcome is Outcome.INVALID_STOP
    assert "6..100" in result.message


def test_invalid_gap(controller, bat0, thinkpad):
    result = controller.write(bat0, 78, 80)
    assert result.outcome is Outcome.INVALID_GAP
    assert "at least 4 below" in result.message
    assert _thresholds(thinkpad) == (96, 100)


def test_non_integer_value_is_invalid(controller, bat0):
    assert controller.write(bat0, "seventy", 80).outcome is Outcome.INVALID_START


def test_not_configured_from_config(controller, bat0):
    with patch("chargeguard.driver.read_int") as mock_read:
        result = controller.write(bat0, None, None, Origin.CONFIG)
    assert result.outcome is Outcome.NOT_CONFIGURED
    assert result.ok is True
    mock_read.assert_not_called()


def test_interactive_without_values_resets_to_defaults(controller, bat0, thinkpad):
    thinkpad.smapi_battery("BAT0", start=40, stop=80)
    result = controller.write(bat0, None, None, Origin.INTERACTIVE)
    assert result.outcome is Outcome.SUCCESS
    assert _thresholds(thinkpad) == (96, 100)


def test_default_sentinel(controller, bat0, thinkpad):
    thinkpad.smapi_battery("BAT0", start=40, stop=80)
    result = controller.write(bat0, 50, "default")
    assert result.outcome is Outcome.SUCCESS
    assert _thresholds(thinkpad) == (50, 100)


# --- hardware reads and writes ---


def test_read_error_aborts_before_writes(controller, bat0, thinkpad):
    (thinkpad.root / _SMAPI / "stop_charge_thresh").unlink()
    with patch("chargeguard.driver.write_sysfile") as mock_write:
        result = controller.write(bat0, 40, 80)
    assert result.outcome is Outcome.READ_ERROR
    assert "stop" in result.message
    mock_write.assert_not_called()


def test_no_change_writes_nothing(controller, bat0):
    with patch("chargeguard.driver.write_sysfile") as mock_write:
        result = controller.write(bat0, 96, 100)
    assert result.outcome is Outcome.SUCCESS
    mock_write.assert_not_called()
    assert result.register(START).status is WriteStatus.UNCHANGED
    assert result.register(STOP).status is WriteStatus.UNCHANGED
    assert "no change" in result.message


def test_example_lower_start_only(controller, bat0, thinkpad):
    """old=(96,100), new=(90,100): start first, stop untouched."""
    with patch("chargeguard.driver.write_sysfile", wraps=write_sysfile) as mock_write:
        result = controller.write(bat0, 90, 100)

    assert result.outcome is Outcome.SUCCESS
    assert [r.kind for r in result.registers] == [START, STOP]
    assert result.register(START).changed is True
    assert result.register(STOP).status is WriteStatus.UNCHANGED
    mock_write.assert_called_once_with(90, thinkpad.root / _SMAPI / "start_charge_thresh")
    assert _thresholds(thinkpad) == (90, 100)


def test_start_above_old_stop_writes_stop_first(controller, bat0, thinkpad):
    thinkpad.smapi_battery("BAT0", start=40, stop=50)
    with patch("chargeguard.driver.write_sysfile", wraps=write_sysfile) as mock_write:
        result = controller.write(bat0, 60, 80)

    assert [r.kind for r in result.registers] == [STOP, START]
    written = [call.args[1].name for call in mock_write.call_args_list]
    assert written == ["stop_charge_thresh", "start_charge_thresh"]
    assert _thresholds(thinkpad) == (60, 80)


def test_start_below_old_stop_writes_start_first(controller, bat0, thinkpad):
    thinkpad.smapi_battery("BAT0", start=60, stop=80)
    result = controller.write(bat0, 20, 40)
    assert [r.kind for r in result.registers] == [START, STOP]
    assert _thresholds(thinkpad) == (20, 40)


def test_start_within_gap_of_old_stop_writes_start_first(controller, bat0, thinkpad):
    # 48 does not exceed the old stop of 50, so start is written first
    thinkpad.smapi_battery("BAT0", start=40, stop=50)
    result = controller.write(bat0, 48, 60)
    assert result.outcome is Outcome.SUCCESS
    assert [r.kind for r in result.registers] == [START, STOP]
    assert _thresholds(thinkpad) == (48, 60)


class _GapEnforcingDriver(SmapiDriver):
    """Rejects any write that would leave start > stop - 4, like the EC."""

    def write_threshold(self, battery, kind, value):
        start = read_int(battery.start_threshold_path)
        stop = read_int(battery.stop_threshold_path)
        if kind == START:
            start = value
        else:
            stop = value
        if start > stop - 4:
            return WriteStatus.WRITE_ERROR
        return super().write_threshold(battery, kind, value)


@pytest.mark.parametrize("old, new", [
    ((40, 50), (60, 80)),
    ((60, 80), (20, 40)),
    ((20, 30), (90, 100)),
    ((90, 100), (2, 6)),
])
def test_firmware_never_sees_inverted_pair(sysfs, old, new):
    sysfs.thinkpad()
    sysfs.smapi_battery("BAT0", start=old[0], stop=old[1])
    driver = _GapEnforcingDriver(sysfs.root, module_loader=lambda name: ModuleLoad.NOT_INSTALLED)
    detection = driver.probe(ChargeConfig())

    result = ThresholdController(detection).write(detection.batteries.resolve(), *new)

    assert result.outcome is Outcome.SUCCESS
    assert _thresholds(sysfs) == new


def test_both_writes_attempted_after_failure(controller, bat0, detection):
    with patch.object(detection.driver, "write_threshold",
                      side_effect=[WriteStatus.WRITE_ERROR, WriteStatus.WRITTEN]) as mock_write:
        result = controller.write(bat0, 40, 80)

    assert mock_write.call_count == 2
    assert result.outcome is Outcome.WRITE_ERROR
    assert result.ok is False
    assert result.register(START).status is WriteStatus.WRITE_ERROR
    assert result.register(STOP).status is WriteStatus.WRITTEN


def test_write_error_outranks_discarded(controller, bat0, detection):
    with patch.object(detection.driver, "write_threshold",
                      side_effect=[WriteStatus.DISCARDED, WriteStatus.WRITE_ERROR]):
        result = controller.write(bat0, 40, 80)
    assert result.outcome is Outcome.WRITE_ERROR


def test_single_value_keeps_other_register(controller, bat0, thinkpad):
    thinkpad.smapi_battery("BAT0", start=40, stop=80)
    result = controller.write(bat0, None, 90, Origin.CONFIG)
    assert result.outcome is Outcome.SUCCESS
    assert result.register(START).status is WriteStatus.UNCHANGED
    assert _thresholds(thinkpad) == (40, 90)


def test_single_value_gap_checked_against_hardware(controller, bat0, thinkpad):
    thinkpad.smapi_battery("BAT0", start=40, stop=80)
    with patch("chargeguard.driver.write_sysfile") as mock_write:
        result = controller.write(bat0, 78, None, Origin.CONFIG)
    assert result.outcome is Outcome.INVALID_GAP
    mock_write.assert_not_called()


def test_unsupported_without_threshold_method(sysfs):
    sysfs.thinkpad()
    sysfs.native_battery("BAT0")
    detection = _probe(sysfs)
    result = ThresholdController(detection).write(detection.batteries.resolve(), 40, 80)
    assert result.outcome is Outcome.UNSUPPORTED


def test_not_configured_without_threshold_method(sysfs):
    sysfs.thinkpad()
    sysfs.native_battery("BAT0")
    detection = _probe(sysfs)
    result = ThresholdController(detection).write(detection.batteries.resolve(), origin=Origin.CONFIG)
    assert result.outcome is Outcome.NOT_CONFIGURED
    assert result.ok is True


def test_result_as_dict(controller, bat0):
    data = controller.write(bat0, 90, 100).as_dict()
    assert data["ok"] is True
    assert data["outcome"] == "success"
    assert data["battery"] == "BAT0"
    assert data["registers"][0] == {"kind": "start", "old": 96, "new": 90, "status": "written"}


# --- lg-laptop care limit ---


@pytest.fixture
def gram(sysfs):
    sysfs.lg()
    sysfs.native_battery("BAT0")
    sysfs.care_limit(100)
    return sysfs


def test_lg_set_care_limit(gram):
    detection = _probe(gram, LgDriver)
    result = ThresholdController(detection).write(detection.batteries.resolve(), None, 80)
    assert result.outcome is Outcome.SUCCESS
    assert [r.kind for r in result.registers] == [STOP]
    assert gram.read("devices/platform/lg-laptop/battery_care_limit") == "80"


def test_lg_ignores_start(gram):
    detection = _probe(gram, LgDriver)
    result = ThresholdController(detection).write(detection.batteries.resolve(), 75, 80)
    assert result.outcome is Outcome.SUCCESS
    assert result.register(START) is None


def test_lg_rejects_continuous_values(gram):
    detection = _probe(gram, LgDriver)
    result = ThresholdController(detection).write(detection.batteries.resolve(), None, 90)
    assert result.outcome is Outcome.INVALID_STOP
    assert "80 or 100" in result.message


def test_lg_discarded_by_firmware(gram):
    detection = _probe(gram, LgDriver)
    with patch("chargeguard.lg.read_int", return_value=100):
        result = ThresholdController(detection).write(detection.batteries.resolve(), None, 80)
    assert result.outcome is Outcome.DISCARDED_BY_FIRMWARE
    assert result.register(STOP).status is WriteStatus.DISCARDED
    log.info("Result: %s", result.message)


def test_lg_write_error(gram):
    detection = _probe(gram, LgDriver)
    with patch("chargeguard.lg.write_sysfile", return_value=False):
        result = ThresholdController(detection).write(detection.batteries.resolve(), None, 80)
    assert result.outcome is Outcome.WRITE_ERROR


def test_lg_default_is_100(gram):
    gram.care_limit(80)
    detection = _probe(gram, LgDriver)
    result = ThresholdController(detection).write(detection.batteries.resolve(), "default", "default")
    assert result.outcome is Outcome.SUCCESS
    assert gram.read("devices/platform/lg-laptop/battery_care_limit") == "100"
