"""
Unit tests for the dispatch controller
Covers both regimes, the depth-of-discharge floor, reserves and error cases
"""

import pytest
import pytz
from datetime import datetime, timedelta

from smartess.exceptions import ConfigurationError, ControllerError, NoNextChargeError, NoNextRateError
from smartess.schedulers.controller import Controller, ControllerInputState, REGIME_CHARGING, REGIME_DISCHARGING
from smartess.schedulers.rate import Rate
from smartess.schedulers.window import Weekday

UTC = pytz.UTC


def utc(*args) -> datetime:
    return UTC.localize(datetime(*args))


def rate(name, start, end, charge=False, discharge=None, reserve=0.0, days=None) -> Rate:
    window = {"start": start, "end": end}
    if days is not None:
        window["days"] = days
    return Rate.model_validate({
        "name": name,
        "windows": [window],
        "charge": {"kind": "target_capacity"} if charge else {"kind": "disabled"},
        "discharge": discharge or {"kind": "disabled"},
        "reserve": reserve,
    })


def state(load=1000.0, soc=0.5, capacity=10.0) -> ControllerInputState:
    return ControllerInputState(system_load=load, soc=soc, capacity=capacity, voltage=52.0)


@pytest.fixture
def spread_table():
    return [
        rate("Night", "23:00", "08:59", charge=True),
        rate("Day", "09:00", "22:59", discharge={"kind": "spread"}),
    ]


@pytest.fixture
def reserve_table():
    return [
        rate("Night", "23:00", "08:59", charge=True),
        rate("Day", "09:00", "16:59", discharge={"kind": "spread"}, reserve=0.5),
        rate("Peak", "17:00", "18:59", discharge={"kind": "proportional", "fraction": 0.5}, reserve=1.5),
        rate("Evening", "19:00", "22:59", discharge={"kind": "disabled"}),
    ]


class TestChargingRegime:
    """Current rate enables charging"""

    def test_charging_output(self, spread_table):
        ctr = Controller(spread_table, depth_of_discharge=0.9, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 2, 0), state(load=750, soc=0.6))

        assert out.regime == REGIME_CHARGING
        assert out.disable_charge is False
        assert out.disable_feed_in is True
        assert out.grid_load == 32000.0
        assert out.battery_load == 0.0
        assert out.using_capacity == 0.0
        assert out.reserve_capacity == 0.0
        assert out.hours_until_charge is None
        assert out.soc == pytest.approx(0.5)
        assert out.current_rate.rate.name == "Night"
        assert out.current_rate.start == utc(2022, 5, 2, 23, 0)
        assert out.next_rate.rate.name == "Day"
        assert out.next_charge is out.current_rate

    def test_custom_import_ceiling(self, spread_table):
        ctr = Controller(spread_table, max_grid_import_w=9000, tz=UTC)
        assert ctr.desired_state(utc(2022, 5, 3, 2, 0), state()).grid_load == 9000

    def test_invariant_over_the_night(self, spread_table):
        ctr = Controller(spread_table, depth_of_discharge=0.8, tz=UTC)
        now = utc(2022, 5, 2, 23, 0)
        while now <= utc(2022, 5, 3, 8, 59):
            out = ctr.desired_state(now, state(load=3000, soc=0.95))
            assert out.disable_charge is False
            assert out.disable_feed_in is True
            assert out.battery_load == 0
            now += timedelta(minutes=17)


class TestDischargingRegime:
    """Current rate does not charge"""

    def test_spread_over_hours_until_charge(self, spread_table):
        ctr = Controller(spread_table, depth_of_discharge=1.0, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 13, 0), state(load=800, soc=0.5, capacity=10))

        assert out.regime == REGIME_DISCHARGING
        assert out.disable_charge is True
        assert out.hours_until_charge == 10.0
        assert out.using_capacity == 5.0
        assert out.battery_load == 500.0
        assert out.grid_load == 300.0
        assert out.disable_feed_in is False
        assert out.next_charge.rate.name == "Night"
        assert out.next_charge.start == utc(2022, 5, 3, 23, 0)
        assert out.next_rate is not out.current_rate

    def test_grid_load_never_negative(self, spread_table):
        ctr = Controller(spread_table, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 13, 0), state(load=200, soc=0.5, capacity=10))
        assert out.battery_load == 500.0
        assert out.grid_load == 0.0

    def test_whole_minutes_until_charge(self, spread_table):
        ctr = Controller(spread_table, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 12, 0, 30), state())
        assert out.hours_until_charge == pytest.approx(659 / 60)

    def test_at_depth_of_discharge_floor(self, spread_table):
        ctr = Controller(spread_table, depth_of_discharge=0.9, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 12, 0), state(load=1000, soc=0.1))
        assert out.soc == 0.0
        assert out.using_capacity == 0
        assert out.battery_load == 0
        assert out.disable_feed_in is True
        assert out.grid_load == 1000

    def test_below_depth_of_discharge_floor(self, spread_table):
        ctr = Controller(spread_table, depth_of_discharge=0.9, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 12, 0), state(soc=0.05))
        assert out.soc == 0.0
        assert out.using_capacity == 0
        assert out.disable_feed_in is True

    def test_just_above_floor(self, spread_table):
        ctr = Controller(spread_table, depth_of_discharge=0.9, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 12, 0), state(load=1000, soc=0.11, capacity=10))
        assert out.soc == pytest.approx(0.01)
        assert out.using_capacity > 0
        assert out.using_capacity == pytest.approx(0.1)
        assert out.battery_load == pytest.approx(0.1 / 11 * 1000)
        assert out.disable_feed_in is False

    def test_tiny_margin_above_floor_is_usable(self, spread_table):
        ctr = Controller(spread_table, depth_of_discharge=0.9, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 12, 0), state(load=1000, soc=0.1 + 1e-7, capacity=10000))
        assert out.soc == pytest.approx(1e-7)
        assert out.using_capacity > 0
        assert out.using_capacity == pytest.approx(1e-3)
        assert out.battery_load > 0
        assert out.disable_feed_in is False

    def test_reserve_equal_to_available(self, spread_table):
        ctr = Controller([
            spread_table[0],
            rate("Day", "09:00", "16:59", discharge={"kind": "spread"}),
            rate("Peak", "17:00", "22:59", reserve=0.3),
        ], depth_of_discharge=0.9, tz=UTC)
        # 3 kWh * 0.1 above the floor differs from the 0.3 kWh reserve only by float noise
        out = ctr.desired_state(utc(2022, 5, 3, 12, 0), state(soc=0.2, capacity=3))
        assert out.reserve_capacity == 0.3
        assert out.using_capacity == 0.0
        assert out.disable_feed_in is True

    def test_proportional_to_load(self, reserve_table):
        ctr = Controller(reserve_table, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 17, 30), state(load=2000, soc=0.5))
        assert out.current_rate.rate.name == "Peak"
        assert out.battery_load == 1000.0
        assert out.grid_load == 1000.0
        assert out.disable_feed_in is False

    def test_disabled_discharge(self, reserve_table):
        ctr = Controller(reserve_table, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 20, 0), state(load=1200, soc=0.9))
        assert out.current_rate.rate.name == "Evening"
        assert out.battery_load == 0.0
        assert out.grid_load == 1200.0
        assert out.using_capacity > 0
        assert out.disable_feed_in is True

    def test_reserve_for_upcoming_windows(self, reserve_table):
        ctr = Controller(reserve_table, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 12, 0), state(soc=0.5, capacity=10))
        # Day contains now and is excluded; Peak (1.5) and Evening (0) are upcoming
        assert out.reserve_capacity == 1.5
        assert out.using_capacity == 3.5
        assert out.battery_load == pytest.approx(3.5 / 11 * 1000)

    def test_active_window_reserve_excluded(self, reserve_table):
        ctr = Controller(reserve_table, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 17, 0), state())
        assert out.reserve_capacity == 0.0

    def test_reserve_exceeds_available(self, reserve_table):
        ctr = Controller(reserve_table, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 12, 0), state(soc=0.1, capacity=10))
        assert out.using_capacity == 0.0
        assert out.battery_load == 0.0
        assert out.disable_feed_in is True

    def test_proportional_with_no_capacity_blocks_feed_in(self, reserve_table):
        ctr = Controller(reserve_table, depth_of_discharge=0.5, tz=UTC)
        out = ctr.desired_state(utc(2022, 5, 3, 17, 30), state(load=2000, soc=0.4))
        assert out.using_capacity == 0.0
        assert out.disable_feed_in is True

    def test_loads_never_negative(self, reserve_table):
        ctr = Controller(reserve_table, depth_of_discharge=0.8, tz=UTC)
        start = utc(2022, 5, 2, 0, 0)
        for step in range(0, 2 * 24 * 60, 41):
            for soc in (0.0, 0.15, 0.2, 0.21, 0.6, 1.0):
                for load in (0.0, 350.0, 4200.0):
                    out = ctr.desired_state(start + timedelta(minutes=step), state(load=load, soc=soc))
                    assert out.grid_load >= 0
                    assert out.battery_load >= 0
                    assert out.using_capacity >= 0
                    if out.using_capacity == 0:
                        assert out.disable_feed_in is True
                    if out.current_rate.rate.charge_enabled:
                        assert out.disable_charge is False
                        assert out.battery_load == 0

    def test_summary(self, spread_table):
        ctr = Controller(spread_table, tz=UTC)
        summary = ctr.desired_state(utc(2022, 5, 3, 13, 0), state()).summary()
        assert summary["regime"] == "discharging"
        assert summary["current_rate"] == "Day"
        assert summary["next_charge"] == "Night"
        assert summary["hours_until_charge"] == 10.0
        assert summary["next_charge_start"] == "2022-05-03T23:00:00+00:00"

    def test_pure(self, reserve_table):
        ctr = Controller(reserve_table, tz=UTC)
        now = utc(2022, 5, 3, 12, 0)
        a = ctr.desired_state(now, state())
        b = ctr.desired_state(now, state())
        assert a.summary() == b.summary()


class TestControllerErrors:
    """Configuration problems surface as typed errors"""

    def test_empty_table(self):
        ctr = Controller([], tz=UTC)
        with pytest.raises(ConfigurationError):
            ctr.desired_state(utc(2022, 5, 3, 12, 0), state())

    def test_windows_without_days(self):
        ctr = Controller([rate("Never", "09:00", "10:00", charge=True, days=[])], tz=UTC)
        with pytest.raises(ConfigurationError):
            ctr.desired_state(utc(2022, 5, 3, 12, 0), state())

    def test_no_next_rate(self):
        ctr = Controller([rate("Night", "23:00", "08:59", charge=True, days=[Weekday.MONDAY])], tz=UTC)
        with pytest.raises(NoNextRateError):
            ctr.desired_state(utc(2022, 5, 3, 12, 0), state())

    def test_no_next_charge(self, reserve_table):
        ctr = Controller(reserve_table[1:], tz=UTC)
        with pytest.raises(NoNextChargeError):
            ctr.desired_state(utc(2022, 5, 3, 12, 0), state())

    def test_errors_share_a_base(self):
        assert issubclass(NoNextChargeError, ControllerError)
        assert issubclass(NoNextRateError, ControllerError)
        assert issubclass(ConfigurationError, ControllerError)

    def test_overlapping_rates_rejected(self):
        with pytest.raises(ConfigurationError, match="Overlapping"):
            Controller([
                rate("A", "09:00", "12:00", charge=True),
                rate("B", "11:00", "13:00"),
            ])

    @pytest.mark.parametrize("dod", [-0.1, 1.5])
    def test_invalid_depth_of_discharge(self, spread_table, dod):
        with pytest.raises(ConfigurationError):
            Controller(spread_table, depth_of_discharge=dod)
