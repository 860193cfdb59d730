"""YAML defaults for the FoundationMigrator command line."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from foundationmigrator.errors import MigratorError

PATH_KEYS = ("root", "tiers_dir", "state_dir", "backups_dir", "log_file")
FLAG_KEYS = ("allow_downgrade", "disable_removed_services", "verbose")


class ConfigLoader:
    """Reads `.foundationmigrator.yml` and checks every value before the CLI uses it."""

    SUPPORTED_KEYS = set(PATH_KEYS) | set(FLAG_KEYS) | {"health_url", "health_timeout", "keep_backups"}

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise MigratorError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise MigratorError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise MigratorError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(map(str, parsed.keys())) - self.SUPPORTED_KEYS)
        if unknown:
            raise MigratorError(f"Unknown configuration keys: {', '.join(unknown)}")

        for key, value in parsed.items():
            self._check_value(key, value)
        return parsed

    @staticmethod
    def _check_value(key: str, value: Any):
        # A null value behaves like an absent key.
        if value is None:
            return

        if key in PATH_KEYS or key == "health_url":
            if not isinstance(value, str) or not value.strip():
                raise MigratorError(f"Config key '{key}' must be a non-empty string.")
        elif key in FLAG_KEYS:
            if not isinstance(value, bool):
                raise MigratorError(f"Config key '{key}' must be true or false, got {value!r}.")
        elif key == "health_timeout":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise MigratorError(
                    f"Config key 'health_timeout' must be a positive number of seconds, got {value!r}."
                )
        elif key == "keep_backups":
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise MigratorError(
                    f"Config key 'keep_backups' must be a non-negative integer, got {value!r}."
                )
