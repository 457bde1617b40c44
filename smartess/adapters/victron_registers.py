"""
Victron GX Modbus-TCP register translation tables.

Pure functions only: register addresses, scale factors and the mapping
between raw integer codes and the closed enums used by the rest of the
package. All I/O lives in smartess.adapters.victron.
"""

from enum import Enum, IntEnum
from typing import List, Tuple, Type, TypeVar

from smartess.exceptions import AdapterError

# Default Modbus unit ids on a GX device
VEBUS_UNIT_ID = 227
BATTERY_UNIT_ID = 225
SYSTEM_UNIT_ID = 100

INT16_MIN = -32768
INT16_MAX = 32767


class Line(IntEnum):
    L1 = 1
    L2 = 2
    L3 = 3

    @classmethod
    def parse(cls, value) -> "Line":
        if isinstance(value, Line):
            return value
        try:
            if isinstance(value, str):
                return cls[value.strip().upper()]
            return cls(int(value))
        except (KeyError, ValueError):
            raise AdapterError(f"Unknown line {value!r}") from None


class VEBusMode(IntEnum):
    CHARGER_ONLY = 1
    INVERTER_ONLY = 2
    ON = 3
    OFF = 4


class VEBusState(IntEnum):
    OFF = 0
    LOW_POWER = 1
    FAULT = 2
    BULK = 3
    ABSORPTION = 4
    FLOAT = 5
    STORAGE = 6
    EQUALIZE = 7
    PASSTHROUGH = 8
    INVERTING = 9
    POWER_ASSIST = 10
    POWER_SUPPLY = 11
    BULK_PROTECTION = 252


class ActiveInput(IntEnum):
    AC_INPUT_1 = 0
    AC_INPUT_2 = 1
    DISCONNECTED = 240

    def to_line(self) -> Line:
        if self is ActiveInput.AC_INPUT_1:
            return Line.L1
        if self is ActiveInput.AC_INPUT_2:
            return Line.L2
        raise AdapterError("No active input")


class AlarmState(IntEnum):
    OK = 0
    WARNING = 1
    ALARM = 2


class VEBusAlarm(str, Enum):
    HIGH_TEMPERATURE = "high_temperature"
    LOW_BATTERY = "low_battery"
    OVERLOAD = "overload"
    TEMPERATURE_SENSOR = "temperature_sensor"
    VOLTAGE_SENSOR = "voltage_sensor"
    LINE_TEMPERATURE = "line_temperature"
    LINE_LOW_BATTERY = "line_low_battery"
    LINE_OVERLOAD = "line_overload"
    LINE_RIPPLE = "line_ripple"
    PHASE_ROTATION = "phase_rotation"
    GRID_LOST = "grid_lost"

    @property
    def per_line(self) -> bool:
        return self in _LINE_ALARM_BASE


def label(member: Enum) -> str:
    """Human readable name, e.g. VEBusState.POWER_ASSIST -> "Power Assist"."""
    return member.name.replace("_", " ").title()


E = TypeVar("E", bound=IntEnum)


def decode_enum(enum_cls: Type[E], raw: int) -> E:
    """Map a raw register code onto `enum_cls`, rejecting unknown codes."""
    try:
        return enum_cls(raw)
    except ValueError:
        raise AdapterError(f"Invalid {enum_cls.__name__} code {raw}") from None


# --- VE.Bus (unit 227) -------------------------------------------------------

REG_OUTPUT_FREQUENCY = 21
REG_ACTIVE_INPUT_CURRENT_LIMIT = 22
REG_BATTERY_VOLTAGE = 26
REG_BATTERY_CURRENT = 27
REG_PHASE_COUNT = 28
REG_ACTIVE_INPUT = 29
REG_SOC = 30
REG_STATE = 31
REG_MODE = 33


def input_voltage_register(line: Line) -> int:
    return 2 + int(line)


def input_current_register(line: Line) -> int:
    return 5 + int(line)


def input_frequency_register(line: Line) -> int:
    return 8 + int(line)


def input_power_register(line: Line) -> int:
    return 11 + int(line)


def output_voltage_register(line: Line) -> int:
    return 14 + int(line)


def output_current_register(line: Line) -> int:
    return 16 + int(line)


def output_power_register(line: Line) -> int:
    return 22 + int(line)


def ac_input_ignore_register(line: Line) -> int:
    if line is Line.L1:
        return 69
    if line is Line.L2:
        return 70
    raise AdapterError("No AC input ignore register for L3")


_SINGLE_ALARM_REGISTERS = {
    VEBusAlarm.HIGH_TEMPERATURE: 34,
    VEBusAlarm.LOW_BATTERY: 35,
    VEBusAlarm.OVERLOAD: 36,
    VEBusAlarm.TEMPERATURE_SENSOR: 42,
    VEBusAlarm.VOLTAGE_SENSOR: 43,
    VEBusAlarm.PHASE_ROTATION: 63,
    VEBusAlarm.GRID_LOST: 64,
}

# per-line alarms repeat every 4 registers from L1
_LINE_ALARM_BASE = {
    VEBusAlarm.LINE_TEMPERATURE: 44,
    VEBusAlarm.LINE_LOW_BATTERY: 45,
    VEBusAlarm.LINE_OVERLOAD: 46,
    VEBusAlarm.LINE_RIPPLE: 47,
}


def alarm_register(alarm: VEBusAlarm, line: Line = None) -> int:
    if alarm in _LINE_ALARM_BASE:
        if line is None:
            raise AdapterError(f"Alarm {alarm.value} needs a line")
        return _LINE_ALARM_BASE[alarm] + 4 * (int(line) - 1)
    if line is not None:
        raise AdapterError(f"Alarm {alarm.value} is not per line")
    return _SINGLE_ALARM_REGISTERS[alarm]


def all_alarm_points() -> List[Tuple[VEBusAlarm, Line]]:
    """Every (alarm, line) the VE.Bus reports, in register read order (19 points)."""
    points = [(a, None) for a in (
        VEBusAlarm.HIGH_TEMPERATURE,
        VEBusAlarm.LOW_BATTERY,
        VEBusAlarm.OVERLOAD,
        VEBusAlarm.TEMPERATURE_SENSOR,
        VEBusAlarm.VOLTAGE_SENSOR,
    )]
    for line in Line:
        points.extend((a, line) for a in _LINE_ALARM_BASE)
    points.append((VEBusAlarm.PHASE_ROTATION, None))
    points.append((VEBusAlarm.GRID_LOST, None))
    return points


# --- ESS control (unit 227) --------------------------------------------------

REG_DISABLE_CHARGE = 38
REG_DISABLE_FEED_IN = 39

_POWER_SET_POINT_REGISTERS = {Line.L1: 37, Line.L2: 40, Line.L3: 41}


def power_set_point_register(line: Line) -> int:
    return _POWER_SET_POINT_REGISTERS[Line.parse(line)]


def encode_flag(value: bool) -> int:
    return 1 if value else 0


# --- Battery monitor (unit 225) ----------------------------------------------

REG_BATTERY_CAPACITY = 309


# --- Scaling -----------------------------------------------------------------

def to_signed16(raw: int) -> int:
    raw &= 0xFFFF
    return raw - 0x10000 if raw & 0x8000 else raw


def encode_int16(value: int) -> int:
    """Two's complement register word for a signed 16-bit value."""
    if not INT16_MIN <= value <= INT16_MAX:
        raise AdapterError(f"Value {value} does not fit in int16")
    return value & 0xFFFF


def decode_voltage(raw: int) -> float:
    return raw / 10.0


def decode_current(raw: int) -> float:
    return to_signed16(raw) / 10.0


def decode_frequency(raw: int) -> float:
    return raw / 100.0


def decode_power(raw: int) -> float:
    # scale factor 0.1: one count is 10 W
    return to_signed16(raw) * 10.0


def decode_battery_voltage(raw: int) -> float:
    return raw / 100.0


def decode_soc_pct(raw: int) -> float:
    return raw / 10.0


def decode_capacity_ah(raw: int) -> float:
    return raw / 10.0
