from typing import List, Optional
from abc import ABC, abstractmethod
import asyncio
import logging

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from smartess.exceptions import AdapterError
from smartess.models import DispatchCommand, SystemTelemetry

log = logging.getLogger(__name__)


class EnergySystemAdapter(ABC):
    """
    Boundary between the controller and a physical energy system.

    poll() supplies the per-tick telemetry snapshot; apply() writes the
    grid set point and the charge/feed-in enable pair.
    """

    @abstractmethod
    async def connect(self): ...
    @abstractmethod
    async def close(self): ...
    @abstractmethod
    async def poll(self) -> SystemTelemetry: ...
    @abstractmethod
    async def apply(self, cmd: DispatchCommand): ...


class ModbusClientMixin:
    """
    Modbus TCP helpers shared by adapters.

    Adapters using this mixin must define `self.client`, `self.host`,
    `self.port` and `self.timeout`. Requests are serialized with a lock since
    one TCP connection carries every unit id.
    """

    client: Optional[AsyncModbusTcpClient] = None
    _modbus_lock: Optional[asyncio.Lock] = None

    def _lock(self) -> asyncio.Lock:
        if self._modbus_lock is None:
            self._modbus_lock = asyncio.Lock()
        return self._modbus_lock

    async def _connect_tcp(self):
        self.client = AsyncModbusTcpClient(self.host, port=self.port, timeout=self.timeout)
        ok = await self.client.connect()
        if not ok:
            raise AdapterError(f"Modbus TCP connection failed to {self.host}:{self.port}")
        log.info(f"Connected to Modbus TCP {self.host}:{self.port}")

    async def _close_tcp(self):
        if self.client is not None:
            self.client.close()
            self.client = None

    def _require_client(self) -> AsyncModbusTcpClient:
        if self.client is None or not self.client.connected:
            raise AdapterError("client not connected")
        return self.client

    async def _read_input_regs(self, unit_id: int, address: int, count: int = 1) -> List[int]:
        client = self._require_client()
        async with self._lock():
            try:
                rr = await client.read_input_registers(address=address, count=count, device_id=unit_id)
            except ModbusException as e:
                raise AdapterError(f"Modbus read failed @{address} (unit {unit_id}): {e}") from e
        if rr.isError():
            raise AdapterError(f"Modbus read error @{address} (unit {unit_id})")
        log.debug(f"READ unit={unit_id} @{address} x{count} -> {rr.registers}")
        return list(rr.registers)

    async def _read_u16(self, unit_id: int, address: int) -> int:
        return (await self._read_input_regs(unit_id, address, 1))[0]

    async def _write_u16(self, unit_id: int, address: int, value: int) -> None:
        client = self._require_client()
        async with self._lock():
            try:
                rq = await client.write_register(address=address, value=value, device_id=unit_id)
            except ModbusException as e:
                raise AdapterError(f"Modbus write failed at {address} (unit {unit_id}): {e}") from e
        if rq.isError():
            raise AdapterError(f"Modbus write error at {address} (unit {unit_id}): {rq}")
        log.debug(f"WRITE unit={unit_id} @{address} <- {value}")
