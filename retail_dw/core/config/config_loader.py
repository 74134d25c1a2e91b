"""
Configuration loading.

Reads engine configuration from a YAML file into validated models.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .policy import EtlConfig

DEFAULT_CONFIG_PATH = "config/etl_config.yaml"


class EtlConfigLoader:
    """
    Loads engine configuration from a YAML file.

    Expected YAML format:
    ```yaml
    policy:
      tax_rate: "0.18"
      completed_status: completed
      open_statuses: [pending, processing]
      spend_segments:
        - label: VIP
          min_spent: 100000
      default_segment: New
      price_ranges:
        - label: Budget
          upper_bound: 10000
      top_price_range: Luxury

    runtime:
      timeout_seconds: 1800
      stale_run_minutes: 120
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the config loader.

        Args:
            config_path: Path to the YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"ETL configuration file not found: {config_path}")

    def load(self) -> EtlConfig:
        """
        Load and validate the configuration.

        Returns:
            EtlConfig instance

        Raises:
            ValueError: If YAML is invalid or contains invalid values
        """
        with open(self.config_path) as f:
            raw = yaml.safe_load(f) or {}

        if not isinstance(raw, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        return self.from_dict(raw)

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> EtlConfig:
        """
        Build configuration from an already parsed mapping.

        Runtime keys may sit under a 'runtime' section or at the top level.
        """
        data: dict[str, Any] = {}
        if "policy" in raw:
            data["policy"] = raw["policy"] or {}

        runtime = raw.get("runtime") or {}
        for key in ("timeout_seconds", "stale_run_minutes"):
            if key in runtime:
                data[key] = runtime[key]
            elif key in raw:
                data[key] = raw[key]

        try:
            return EtlConfig(**data)
        except ValidationError as e:
            raise ValueError(f"Invalid ETL configuration: {e}") from e


def load_config(config_path: str | Path | None = None) -> EtlConfig:
    """
    Load configuration from a path, the ETL_CONFIG env var, or defaults.

    A missing default file yields the built-in defaults; an explicitly
    requested file that is missing raises FileNotFoundError.
    """
    path = config_path or os.getenv("ETL_CONFIG")
    if path:
        return EtlConfigLoader(path).load()
    if Path(DEFAULT_CONFIG_PATH).exists():
        return EtlConfigLoader(DEFAULT_CONFIG_PATH).load()
    return EtlConfig()
