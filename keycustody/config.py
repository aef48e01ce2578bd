from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError


class AppSettings(BaseModel):
    """Serializable application settings persisted to settings.json.

    Holds the hosted database connection, the operator name recorded on
    issue/return transactions, and logging level.
    """

    # Backend selection; "memory" keeps everything in-process (demo/offline)
    backend: Literal["supabase", "memory"] = "supabase"

    # Supabase / PostgREST
    supabase_url: str = ""  # e.g. https://abcd1234.supabase.co
    supabase_anon_key: str = ""
    employees_table: str = "employees"
    keys_table: str = "keys"
    transactions_table: str = "transactions"
    http_timeout: float = 20.0

    # Recorded as handled_by on every transaction
    operator_name: str = ""

    log_level: str = "INFO"

    # Metadata
    updated_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ConfigManager:
    """Handles load/save of `settings.json` at the project root.

    The config file is created if missing with default values. On POSIX systems,
    permissions are set to 600 because the file holds the database key.
    """

    def __init__(self, root_dir: Optional[Path] = None) -> None:
        self.log = logging.getLogger("ConfigManager")
        self.root_dir: Path = root_dir or Path(__file__).resolve().parents[1]
        self.config_path: Path = self.root_dir / "settings.json"

    def ensure_exists(self) -> None:
        if not self.config_path.exists():
            self.save(AppSettings())

    def load(self) -> AppSettings:
        if not self.config_path.exists():
            self.ensure_exists()
        try:
            content = self.config_path.read_text(encoding="utf-8")
            data: Dict[str, Any] = json.loads(content or "{}")
            return AppSettings(**data)
        except (json.JSONDecodeError, ValidationError):
            # Corrupt or invalid file: keep a backup and start from defaults
            backup_path = self.config_path.with_suffix(".bak")
            self.log.warning("Invalid settings file, backing up to %s", backup_path.name)
            try:
                self.config_path.replace(backup_path)
            except OSError:
                self.log.exception("Could not back up settings file")
            settings = AppSettings()
            self.save(settings)
            return settings

    def save(self, settings: AppSettings) -> None:
        settings.updated_at = datetime.now(timezone.utc).isoformat()
        payload = settings.model_dump()
        tmp_path = self.config_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        os.replace(tmp_path, self.config_path)
        self._harden_permissions()

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        settings = self.load()
        return getattr(settings, key, default)

    def set(self, key: str, value: Any) -> AppSettings:
        settings = self.load()
        if key not in AppSettings.model_fields:
            raise KeyError(f"Unknown config key: {key}")
        setattr(settings, key, value)
        self.save(settings)
        return settings

    def _harden_permissions(self) -> None:
        if os.name != "posix":
            return
        try:
            os.chmod(self.config_path, 0o600)
        except OSError:
            self.log.debug("chmod failed for %s", self.config_path)


def configure_logging(settings: AppSettings) -> None:
    level = getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def get_config_manager() -> ConfigManager:
    return ConfigManager()


__all__ = ["AppSettings", "ConfigManager", "configure_logging", "get_config_manager"]
