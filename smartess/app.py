import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

from smartess.adapters.base import EnergySystemAdapter
from smartess.adapters.victron import VictronAdapter
from smartess.adapters.victron_registers import INT16_MAX, Line, label
from smartess.config import HubConfig, TariffTable
from smartess.config_manager import ConfigurationManager
from smartess.exceptions import AdapterError, ControllerError
from smartess.models import DispatchCommand, SystemTelemetry
from smartess.mqtt import Mqtt
from smartess.schedulers.controller import Controller, ControllerInputState, ControllerOutputState
from smartess.timezone_utils import get_configured_timezone, now_utc

log = logging.getLogger(__name__)


class SmartEssApp:
    """
    Polling loop: poll the ESS, ask the controller for a decision and write
    it back, once per `polling.interval_secs`.

    When `tariffs_path` is given the tariff file is re-read whenever its
    modification time changes.
    """

    def __init__(self, cfg: HubConfig, table: TariffTable,
                 adapter: Optional[EnergySystemAdapter] = None, mqtt: Optional[Mqtt] = None,
                 tariffs_path: Optional[Path] = None):
        self.cfg = cfg
        self._configure_logging()
        self.controller = self.build_controller(table)
        self.adapter = adapter or VictronAdapter(cfg.victron, read_capacity=cfg.battery.read_capacity)
        if mqtt is None and cfg.mqtt is not None:
            mqtt = Mqtt(cfg.mqtt)
        self.mqtt = mqtt
        self.line = Line.parse(cfg.victron.line)
        self.last_command: Optional[DispatchCommand] = None
        self.last_decision: Optional[ControllerOutputState] = None
        self._connected = False
        self._running = False
        self.tariffs_path = Path(tariffs_path) if tariffs_path is not None else None
        self._tariffs_mtime = self._tariffs_mtime_ns()

    def _configure_logging(self):
        """Configure logging based on config settings."""
        log_config = self.cfg.logging

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_config.level.upper()))
        if not root_logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(log_config.format))
            root_logger.addHandler(handler)

        # pymodbus logs every failed transaction; our own errors carry enough context
        logging.getLogger("pymodbus").setLevel(logging.CRITICAL)

    def build_controller(self, table: TariffTable) -> Controller:
        return Controller.from_table(
            table,
            max_grid_import_w=self.cfg.dispatch.max_grid_import_w,
            tz=get_configured_timezone(),
        )

    def reload_tariffs(self, table: TariffTable) -> None:
        """Swap in a controller for a new tariff table. A failing table leaves the old one active."""
        controller = self.build_controller(table)
        self.controller = controller
        log.info(f"Tariff table reloaded: {len(table.rates)} rates")

    def _tariffs_mtime_ns(self) -> Optional[int]:
        if self.tariffs_path is None:
            return None
        try:
            return self.tariffs_path.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def check_tariffs(self) -> bool:
        """
        Reload the tariff file if it changed on disk since it was last read.

        A file that fails to parse or validate is logged and the running
        controller is kept; it is retried only after the file changes again.

        Returns:
            True when a new tariff table is in effect
        """
        mtime = self._tariffs_mtime_ns()
        if mtime is None or mtime == self._tariffs_mtime:
            return False
        self._tariffs_mtime = mtime

        try:
            table = ConfigurationManager().load_tariffs(self.tariffs_path)
            self.reload_tariffs(table)
        except (ValueError, yaml.YAMLError, ControllerError) as e:
            log.error(f"Ignoring changed tariff file {self.tariffs_path}, keeping current tariffs: {e}")
            return False
        return True

    def to_input_state(self, tel: SystemTelemetry) -> ControllerInputState:
        return ControllerInputState(
            system_load=tel.load_power_w,
            soc=tel.soc,
            capacity=tel.capacity_kwh or self.cfg.battery.capacity_kwh,
            voltage=tel.batt_voltage_v or 0.0,
        )

    def to_command(self, decision: ControllerOutputState) -> DispatchCommand:
        set_point = max(int(decision.grid_load), self.cfg.dispatch.min_set_point_w)
        return DispatchCommand(
            set_point_w=min(set_point, INT16_MAX),
            disable_charge=decision.disable_charge,
            disable_feed_in=decision.disable_feed_in,
            line=self.line,
        )

    async def init(self):
        await self._ensure_connected()

    async def _ensure_connected(self):
        if not self._connected:
            await self.adapter.connect()
            self._connected = True

    def _on_controller_error(self, e: ControllerError) -> Optional[DispatchCommand]:
        policy = self.cfg.dispatch.on_error
        if policy == "halt":
            log.error(f"Controller error, halting: {e}")
            raise e
        if policy == "hold" and self.last_command is not None:
            log.error(f"Controller error, holding previous dispatch: {e}")
            return self.last_command
        log.error(f"Controller error, skipping tick: {e}")
        return None

    async def tick(self, now: Optional[datetime] = None) -> Optional[DispatchCommand]:
        """
        Run one poll -> decide -> apply cycle.

        Returns the command written to the ESS, or None when nothing was written.
        """
        now = now or now_utc()
        try:
            await self._ensure_connected()
            tel = await self.adapter.poll()
        except AdapterError as e:
            log.warning(f"Poll failed, skipping tick: {e}")
            self._connected = False
            return None

        for alarm in tel.active_alarms():
            where = f" {alarm.line.name}" if alarm.line is not None else ""
            log.warning(f"VE.Bus alarm {alarm.alarm.value}{where}: {label(alarm.state)}")

        controller = self.controller
        decision = None
        try:
            decision = controller.desired_state(now, self.to_input_state(tel))
        except ControllerError as e:
            cmd = self._on_controller_error(e)
        else:
            cmd = self.to_command(decision)
            self.last_decision = decision
            log.info(
                f"{decision.regime}: rate '{decision.current_rate.rate.name}', load {tel.load_power_w:.0f} W, "
                f"SoC {tel.batt_soc_pct:.1f}%, battery {decision.battery_load:.0f} W, "
                f"set point {cmd.set_point_w} W, feed-in {'off' if cmd.disable_feed_in else 'on'}"
            )

        if cmd is not None:
            try:
                await self.adapter.apply(cmd)
            except AdapterError as e:
                log.warning(f"Failed to apply dispatch: {e}")
                self._connected = False
                cmd = None
            else:
                self.last_command = cmd

        self._publish(tel, decision, cmd)
        return cmd

    def _publish(self, tel: SystemTelemetry, decision: Optional[ControllerOutputState],
                 cmd: Optional[DispatchCommand]):
        if self.mqtt is None:
            return
        self.mqtt.pub(self.mqtt.topic("telemetry"), tel.model_dump(mode="json"))
        payload = decision.summary() if decision is not None else {"regime": None}
        payload["command"] = cmd.model_dump(mode="json") if cmd is not None else None
        self.mqtt.pub(self.mqtt.topic("dispatch"), payload)

    async def run(self):
        interval = self.cfg.polling.interval_secs
        log.info(f"Starting Smart ESS loop, polling every {interval} seconds")
        self._running = True
        while self._running:
            try:
                self.check_tariffs()
                await self.tick()
            except ControllerError:
                # only reaches here with on_error == "halt"
                raise
            except Exception as e:
                log.error(f"Error in polling loop: {e}", exc_info=True)
            await asyncio.sleep(interval)

    def stop(self):
        self._running = False

    async def shutdown(self):
        self._running = False
        await self.adapter.close()
        self._connected = False
        if self.mqtt is not None:
            self.mqtt.close()
        log.info("Smart ESS stopped")
