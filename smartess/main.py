import os
import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

from smartess.app import SmartEssApp
from smartess.config import HubConfig, TariffTable
from smartess.config_manager import ConfigurationManager
from smartess.schedulers.controller import Controller
from smartess.schedulers.schedule import schedule_to_frame
from smartess.timezone_utils import get_configured_timezone, now_utc

log = logging.getLogger(__name__)


def _resolve_config_path(cli_path: str | None) -> Path:
    """
    Resolve config path with the following precedence:
    1) CLI: --config /path/to/config.yaml
    2) ENV: SMARTESS_CONFIG=/path/to/config.yaml
    3) Default: <project_root>/config.yaml  (parent of the 'smartess' package dir)
    """
    if cli_path:
        return Path(cli_path).expanduser().resolve()

    env = os.getenv("SMARTESS_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    return Path(__file__).resolve().parents[1] / "config.yaml"


def load_config(path: str | Path, tariffs: Optional[str] = None) -> tuple[HubConfig, TariffTable]:
    """Load the hub configuration and its tariff table (created empty when missing)."""
    manager = ConfigurationManager(str(Path(path).expanduser().resolve()))
    cfg = manager.load_config()
    table = manager.load_tariffs(tariffs)
    return cfg, table


def print_schedule(cfg: HubConfig, table: TariffTable) -> None:
    controller = Controller.from_table(table, cfg.dispatch.max_grid_import_w, tz=get_configured_timezone())
    frame = schedule_to_frame(controller.get_schedule(now_utc()), get_configured_timezone())
    if frame.empty:
        print("No upcoming rate windows configured.")
        return
    print(frame.to_string(index=False))


async def amain(cfg_path: str | Path | None, tariffs: Optional[str] = None, once: bool = False) -> None:
    config_path = _resolve_config_path(str(cfg_path) if cfg_path else None)
    cfg, table = load_config(config_path, tariffs)
    tariffs_path = Path(tariffs) if tariffs else ConfigurationManager(str(config_path)).tariffs_path(cfg)
    app = SmartEssApp(cfg, table, tariffs_path=tariffs_path)
    try:
        await app.init()
        if once:
            await app.tick()
        else:
            await app.run()
    finally:
        await app.shutdown()


def main():
    parser = argparse.ArgumentParser(description="Tariff-aware Victron ESS dispatch controller")
    parser.add_argument("--config", help="Path to config.yaml", default=None)
    parser.add_argument("--tariffs", help="Path to the tariff file (overrides tariffs_file)", default=None)
    parser.add_argument("--schedule", action="store_true", help="Print the upcoming merged schedule and exit")
    parser.add_argument("--once", action="store_true", help="Run a single poll/dispatch tick and exit")
    args = parser.parse_args()

    if args.schedule:
        cfg, table = load_config(_resolve_config_path(args.config), args.tariffs)
        print_schedule(cfg, table)
        return

    try:
        asyncio.run(amain(args.config, args.tariffs, once=args.once))
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
