import logging
from typing import List, Optional

from smartess.adapters.base import EnergySystemAdapter, ModbusClientMixin
from smartess.adapters import victron_registers as regs
from smartess.adapters.victron_registers import ActiveInput, AlarmState, Line, VEBusMode, VEBusState
from smartess.config import VictronConfig
from smartess.exceptions import AdapterError
from smartess.models import AlarmReading, DispatchCommand, LineDetail, SystemTelemetry
from smartess.timezone_utils import now_utc

log = logging.getLogger(__name__)


class VictronAdapter(ModbusClientMixin, EnergySystemAdapter):
    """Victron ESS over a GX device's Modbus TCP server."""

    def __init__(self, cfg: VictronConfig, read_capacity: bool = False):
        self.cfg = cfg
        self.host = cfg.host
        self.port = cfg.port
        self.timeout = cfg.timeout
        self.line = Line.parse(cfg.line)
        self.read_capacity = read_capacity
        self.client = None
        if read_capacity and cfg.battery_unit_id is None:
            raise AdapterError("battery_unit_id is required to read battery capacity")

    async def connect(self):
        await self._connect_tcp()

    async def close(self):
        await self._close_tcp()

    async def _bus(self, address: int) -> int:
        return await self._read_u16(self.cfg.vebus_unit_id, address)

    async def output_info(self, line: Line) -> LineDetail:
        return LineDetail(
            voltage_v=regs.decode_voltage(await self._bus(regs.output_voltage_register(line))),
            current_a=regs.decode_current(await self._bus(regs.output_current_register(line))),
            frequency_hz=regs.decode_frequency(await self._bus(regs.REG_OUTPUT_FREQUENCY)),
            power_w=regs.decode_power(await self._bus(regs.output_power_register(line))),
        )

    async def input_info(self, line: Line) -> LineDetail:
        return LineDetail(
            voltage_v=regs.decode_voltage(await self._bus(regs.input_voltage_register(line))),
            current_a=regs.decode_current(await self._bus(regs.input_current_register(line))),
            frequency_hz=regs.decode_frequency(await self._bus(regs.input_frequency_register(line))),
            power_w=regs.decode_power(await self._bus(regs.input_power_register(line))),
        )

    async def get_soc_pct(self) -> float:
        return regs.decode_soc_pct(await self._bus(regs.REG_SOC))

    async def get_mode(self) -> VEBusMode:
        return regs.decode_enum(VEBusMode, await self._bus(regs.REG_MODE))

    async def set_mode(self, mode: VEBusMode) -> None:
        await self._write_u16(self.cfg.vebus_unit_id, regs.REG_MODE, int(mode))

    async def get_state(self) -> VEBusState:
        return regs.decode_enum(VEBusState, await self._bus(regs.REG_STATE))

    async def get_active_input(self) -> ActiveInput:
        return regs.decode_enum(ActiveInput, await self._bus(regs.REG_ACTIVE_INPUT))

    async def set_ac_input_ignore(self, line: Line, ignore: bool) -> None:
        address = regs.ac_input_ignore_register(line)
        await self._write_u16(self.cfg.vebus_unit_id, address, regs.encode_flag(ignore))

    async def get_alarms(self) -> List[AlarmReading]:
        readings = []
        for alarm, line in regs.all_alarm_points():
            raw = await self._bus(regs.alarm_register(alarm, line))
            readings.append(AlarmReading(alarm=alarm, line=line, state=regs.decode_enum(AlarmState, raw)))
        return readings

    async def get_capacity_kwh(self, battery_voltage_v: Optional[float]) -> Optional[float]:
        """Battery monitor capacity (Ah) converted to kWh at the present battery voltage."""
        raw = await self._read_u16(self.cfg.battery_unit_id, regs.REG_BATTERY_CAPACITY)
        capacity_ah = regs.decode_capacity_ah(raw)
        if not battery_voltage_v or capacity_ah <= 0:
            log.warning(f"Cannot derive capacity in kWh (capacity {capacity_ah} Ah, voltage {battery_voltage_v} V)")
            return None
        return capacity_ah * battery_voltage_v / 1000.0

    async def poll(self) -> SystemTelemetry:
        output = await self.output_info(self.line)
        batt_v = regs.decode_battery_voltage(await self._bus(regs.REG_BATTERY_VOLTAGE))
        batt_i = regs.decode_current(await self._bus(regs.REG_BATTERY_CURRENT))

        tel = SystemTelemetry(
            ts=now_utc().isoformat(),
            load_power_w=output.power_w,
            batt_soc_pct=await self.get_soc_pct(),
            batt_voltage_v=batt_v,
            batt_current_a=batt_i,
            mode=await self.get_mode(),
            state=await self.get_state(),
            active_input=await self.get_active_input(),
            capacity_kwh=await self.get_capacity_kwh(batt_v) if self.read_capacity else None,
            alarms=await self.get_alarms() if self.cfg.read_alarms else [],
        )
        log.debug(
            f"Victron poll: load {tel.load_power_w:.0f} W, SoC {tel.batt_soc_pct:.1f}%, "
            f"state {regs.label(tel.state)}, mode {regs.label(tel.mode)}"
        )
        return tel

    async def apply(self, cmd: DispatchCommand):
        unit = self.cfg.vebus_unit_id
        await self._write_u16(unit, regs.power_set_point_register(cmd.line), regs.encode_int16(cmd.set_point_w))
        await self._write_u16(unit, regs.REG_DISABLE_FEED_IN, regs.encode_flag(cmd.disable_feed_in))
        await self._write_u16(unit, regs.REG_DISABLE_CHARGE, regs.encode_flag(cmd.disable_charge))
        log.debug(
            f"ESS set point {cmd.set_point_w} W on {cmd.line.name}, "
            f"disable_feed_in={cmd.disable_feed_in}, disable_charge={cmd.disable_charge}"
        )
