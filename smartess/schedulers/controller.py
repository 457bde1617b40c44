"""
Dispatch controller.

Stateless per tick: given "now", the tariff table and a snapshot of system
state it picks one of two regimes.

Charging regime (current rate enables charging):
    charger on, feed-in off, grid import at the configured ceiling,
    battery idle.

Discharging regime:
    usable capacity above the depth-of-discharge floor, less the reserve held
    for upcoming windows before the next charge, is handed out according to
    the current rate's discharge policy.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Dict, List, Optional, Sequence

from smartess.exceptions import ConfigurationError, NoNextRateError
from smartess.schedulers.rate import DischargeProportional, DischargeSpread, Rate
from smartess.schedulers.schedule import ScheduleEntry, find_overlaps, first_charge, get_schedule
from smartess.timezone_utils import ensure_aware, resolve_timezone

log = logging.getLogger(__name__)

DEFAULT_MAX_GRID_IMPORT_W = 32000.0

# differences this small are float noise, e.g. soc == 1 - DoD computed as 1e-17
FLOAT_NOISE = 1e-12

REGIME_CHARGING = "charging"
REGIME_DISCHARGING = "discharging"


@dataclass(frozen=True)
class ControllerInputState:
    """Per-tick snapshot supplied by the caller."""

    system_load: float  # W
    soc: float  # 0-1
    capacity: float  # kWh
    voltage: float = 0.0  # V, informational


@dataclass(frozen=True, eq=False)
class ControllerOutputState:
    disable_charge: bool
    disable_feed_in: bool
    soc: float
    grid_load: float
    battery_load: float
    using_capacity: float
    reserve_capacity: float
    current_rate: ScheduleEntry
    next_rate: ScheduleEntry
    next_charge: ScheduleEntry
    hours_until_charge: Optional[float] = None

    @property
    def regime(self) -> str:
        return REGIME_DISCHARGING if self.disable_charge else REGIME_CHARGING

    def summary(self) -> Dict[str, Any]:
        """Flat, JSON friendly view for logging and MQTT."""
        return {
            "regime": self.regime,
            "disable_charge": self.disable_charge,
            "disable_feed_in": self.disable_feed_in,
            "soc": round(self.soc, 4),
            "grid_load_w": round(self.grid_load, 1),
            "battery_load_w": round(self.battery_load, 1),
            "using_capacity_kwh": round(self.using_capacity, 3),
            "reserve_capacity_kwh": round(self.reserve_capacity, 3),
            "hours_until_charge": None if self.hours_until_charge is None else round(self.hours_until_charge, 3),
            "current_rate": self.current_rate.rate.name,
            "current_rate_start": self.current_rate.start.isoformat(),
            "next_rate": self.next_rate.rate.name,
            "next_rate_start": self.next_rate.start.isoformat(),
            "next_charge": self.next_charge.rate.name,
            "next_charge_start": self.next_charge.start.isoformat(),
        }


def _above(value: float, floor: float) -> float:
    """`value - floor`, never negative; float noise around the floor counts as zero."""
    diff = value - floor
    if diff <= 0 or math.isclose(value, floor, rel_tol=0.0, abs_tol=FLOAT_NOISE):
        return 0.0
    return diff


class Controller:
    """
    Tariff-aware dispatch controller.

    The rate table is read-only for the life of the instance; to change tariffs
    build a new Controller and swap it in whole.
    """

    def __init__(self, rates: Sequence[Rate], depth_of_discharge: float = 1.0,
                 max_grid_import_w: float = DEFAULT_MAX_GRID_IMPORT_W, tz: Optional[tzinfo] = None):
        if not 0.0 <= depth_of_discharge <= 1.0:
            raise ConfigurationError(f"depth_of_discharge must be within 0..1, got {depth_of_discharge}")
        if max_grid_import_w < 0:
            raise ConfigurationError(f"max_grid_import_w must not be negative, got {max_grid_import_w}")

        overlaps = find_overlaps(rates)
        if overlaps:
            pairs = ", ".join(f"'{a.name}'/'{b.name}'" for a, b in overlaps)
            raise ConfigurationError(f"Overlapping rate windows: {pairs}")

        self.rates: tuple = tuple(rates)
        self.depth_of_discharge = depth_of_discharge
        self.max_grid_import_w = max_grid_import_w
        self.tz = tz

    @classmethod
    def from_table(cls, table, max_grid_import_w: float = DEFAULT_MAX_GRID_IMPORT_W,
                   tz: Optional[tzinfo] = None) -> "Controller":
        return cls(table.rates, table.depth_of_discharge, max_grid_import_w=max_grid_import_w, tz=tz)

    def get_schedule(self, now: datetime) -> List[ScheduleEntry]:
        return get_schedule(self.rates, now, self.tz)

    def next_charge(self, now: datetime) -> ScheduleEntry:
        return first_charge(self.get_schedule(now))

    def soc_above_floor(self, soc: float) -> float:
        return _above(soc, 1.0 - self.depth_of_discharge)

    def desired_state(self, now: datetime, state: ControllerInputState) -> ControllerOutputState:
        """
        Compute dispatch targets for `now`.

        Raises:
            ConfigurationError: no rate produces an occurrence
            NoNextRateError: fewer than two schedule entries
            NoNextChargeError: no rate enables charging
        """
        now = ensure_aware(now, resolve_timezone(self.tz))
        schedule = self.get_schedule(now)
        if not schedule:
            raise ConfigurationError("No current rate found: the tariff table produces no occurrences")
        if len(schedule) < 2:
            raise NoNextRateError(f"No next rate found after '{schedule[0].rate.name}'")

        current, next_rate = schedule[0], schedule[1]
        charge_entry = first_charge(schedule)
        soc = self.soc_above_floor(state.soc)

        if current.rate.charge_enabled:
            log.debug(f"Charging regime: rate '{current.rate.name}' until {current.end.isoformat()}")
            return ControllerOutputState(
                disable_charge=False,
                disable_feed_in=True,
                soc=soc,
                grid_load=self.max_grid_import_w,
                battery_load=0.0,
                using_capacity=0.0,
                reserve_capacity=0.0,
                current_rate=current,
                next_rate=next_rate,
                next_charge=charge_entry,
            )

        reserve = sum(
            e.rate.reserve
            for e in schedule
            if e.start < charge_entry.start and not e.contains(now)
        )
        kwh_available = state.capacity * soc
        remaining = _above(kwh_available, reserve)

        minutes = charge_entry.occurrence.minutes_from(now)
        hours = max(minutes, 0) / 60.0

        policy = current.rate.discharge
        if isinstance(policy, DischargeSpread):
            battery_load = remaining / hours * 1000.0 if hours > 0 else 0.0
        elif isinstance(policy, DischargeProportional):
            battery_load = state.system_load * policy.fraction
        else:
            battery_load = 0.0
        battery_load = max(0.0, battery_load)

        log.debug(
            f"Discharging regime: rate '{current.rate.name}', soc above floor {soc:.3f}, "
            f"available {kwh_available:.3f} kWh, reserve {reserve:.3f} kWh, remaining {remaining:.3f} kWh, "
            f"{hours:.2f} h until '{charge_entry.rate.name}'"
        )

        return ControllerOutputState(
            disable_charge=True,
            disable_feed_in=remaining == 0 or battery_load == 0,
            soc=soc,
            grid_load=max(0.0, state.system_load - battery_load),
            battery_load=battery_load,
            using_capacity=remaining,
            reserve_capacity=reserve,
            current_rate=current,
            next_rate=next_rate,
            next_charge=charge_entry,
            hours_until_charge=hours,
        )
