"""
Configuration Manager for Smart ESS

Loads the hub configuration (config.yaml) and the tariff table. A missing
tariff file is replaced by an empty placeholder so a first run starts up;
the controller then reports that no rate is configured until it is filled in.
"""

import yaml
import logging
from typing import Optional
from pathlib import Path

from smartess.config import HubConfig, TariffTable
from smartess.timezone_utils import initialize_timezones

log = logging.getLogger(__name__)


class ConfigurationManager:
    """Loads hub configuration and tariff tables from disk."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config_cache: Optional[HubConfig] = None

    def load_config(self) -> HubConfig:
        """Load configuration from config.yaml and initialize the timezone."""
        config = self._load_from_file()
        self._config_cache = config
        initialize_timezones(config.timezone)
        return config

    def _load_from_file(self) -> HubConfig:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        log.info(f"Configuration loaded from {self.config_path}")
        return HubConfig(**config_dict)

    def get_config(self) -> Optional[HubConfig]:
        return self._config_cache

    def tariffs_path(self, config: Optional[HubConfig] = None) -> Path:
        """Tariff file path; relative paths are taken from the config file's directory."""
        config = config or self._config_cache
        if config is None:
            raise RuntimeError("load_config() must run before the tariff path is known")
        path = Path(config.tariffs_file).expanduser()
        if not path.is_absolute():
            path = self.config_path.resolve().parent / path
        return path

    def load_tariffs(self, path: Optional[str | Path] = None) -> TariffTable:
        """
        Load the tariff table.

        JSON files are read too, JSON being a subset of YAML. When the file
        does not exist an empty placeholder is written and returned.

        Args:
            path: Tariff file (default: `tariffs_file` from the loaded config)
        """
        path = Path(path) if path is not None else self.tariffs_path()
        if not path.exists():
            log.warning(f"Tariff file not found, creating empty placeholder: {path}")
            table = TariffTable()
            self.save_tariffs(table, path)
            return table

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        table = TariffTable(**data)
        log.info(f"Loaded {len(table.rates)} rates from {path} (depth of discharge {table.depth_of_discharge})")
        return table

    def save_tariffs(self, table: TariffTable, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(table.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
        log.debug(f"Tariff table written to {path}")
