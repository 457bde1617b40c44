from typing import Optional, List
from pydantic import BaseModel

from smartess.adapters.victron_registers import ActiveInput, AlarmState, Line, VEBusAlarm, VEBusMode, VEBusState


class LineDetail(BaseModel):
    voltage_v: float
    current_a: float
    frequency_hz: float
    power_w: float


class AlarmReading(BaseModel):
    alarm: VEBusAlarm
    line: Optional[Line] = None
    state: AlarmState = AlarmState.OK

    @property
    def active(self) -> bool:
        return self.state is not AlarmState.OK


class SystemTelemetry(BaseModel):
    ts: str
    load_power_w: float
    batt_soc_pct: float
    batt_voltage_v: Optional[float] = None
    batt_current_a: Optional[float] = None
    capacity_kwh: Optional[float] = None  # only when read from the battery monitor
    mode: Optional[VEBusMode] = None
    state: Optional[VEBusState] = None
    active_input: Optional[ActiveInput] = None
    alarms: List[AlarmReading] = []

    @property
    def soc(self) -> float:
        """State of charge as a 0-1 fraction."""
        return self.batt_soc_pct / 100.0

    def active_alarms(self) -> List[AlarmReading]:
        return [a for a in self.alarms if a.active]


class DispatchCommand(BaseModel):
    """What gets written to the ESS for one tick."""
    set_point_w: int
    disable_charge: bool
    disable_feed_in: bool
    line: Line = Line.L1
