from typing import Optional, List, Literal
from pydantic import BaseModel, Field

from smartess.schedulers.rate import Rate


class MqttConfig(BaseModel):
    host: str
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    base_topic: str = "smart_ess"
    client_id: str = "smart-ess"


class PollingConfig(BaseModel):
    interval_secs: float = Field(ge=0.5, default=10.0)


class VictronConfig(BaseModel):
    host: str
    port: int = 502
    vebus_unit_id: int = 227
    battery_unit_id: Optional[int] = None  # typically 225; needed for read_capacity
    timeout: float = Field(gt=0, default=1.5)
    line: Literal["L1", "L2", "L3"] = "L1"  # phase used for load reads and the set point
    read_alarms: bool = False


class BatteryConfig(BaseModel):
    capacity_kwh: float = Field(gt=0, default=7.2)
    # Read capacity (Ah) from the battery monitor and convert with battery voltage
    read_capacity: bool = False


class DispatchConfig(BaseModel):
    max_grid_import_w: float = Field(ge=0, default=32000.0)
    min_set_point_w: int = 50
    # What to do when the controller cannot produce a decision for a tick
    on_error: Literal["hold", "skip", "halt"] = "hold"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class TariffTable(BaseModel):
    """Rate table plus the depth-of-discharge fraction (1 - DoD is the SoC floor)."""
    rates: List[Rate] = Field(default_factory=list)
    depth_of_discharge: float = Field(ge=0.0, le=1.0, default=1.0)


class HubConfig(BaseModel):
    timezone: str = "UTC"
    tariffs_file: str = "smart_ess.yaml"
    victron: VictronConfig
    polling: PollingConfig = PollingConfig()
    battery: BatteryConfig = BatteryConfig()
    dispatch: DispatchConfig = DispatchConfig()
    mqtt: Optional[MqttConfig] = None
    logging: LoggingConfig = LoggingConfig()
