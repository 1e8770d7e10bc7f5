"""Konfigurace pro Whence."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from whence.core.exceptions import ConfigError


def default_config_path() -> Path:
    """Vrátí výchozí cestu ke konfiguraci podle XDG."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / "whence" / "config.json"


def default_data_dir() -> Path:
    """Vrátí výchozí datovou složku podle XDG."""
    data_home = os.environ.get("XDG_DATA_HOME")
    base = Path(data_home) if data_home else Path.home() / ".local" / "share"
    return base / "whence"


@dataclass
class Config:
    """Konfigurace serveru a importů."""

    # Složka s databází
    data_dir: Path

    # Uživatel, pod kterého se ukládají body bez explicitního uživatele
    default_user: str = "default"

    # Immich server (volitelné)
    immich_url: Optional[str] = None
    immich_api_key: Optional[str] = None

    # Verbose mode
    verbose: bool = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / "whence.db"

    @property
    def immich_configured(self) -> bool:
        return bool(self.immich_url and self.immich_api_key)

    def ensure_dirs(self) -> None:
        """Vytvoří potřebné složky."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls, path: Optional[Path] = None, data_dir: Optional[Path] = None) -> "Config":
        """Načte konfiguraci z JSON souboru.

        Chybějící soubor není chyba, použijí se výchozí hodnoty.

        Args:
            path: Cesta ke konfiguraci (výchozí podle XDG)
            data_dir: Přepíše datovou složku z konfigurace

        Returns:
            Config

        Raises:
            ConfigError: Pokud soubor nelze přečíst nebo není validní
        """
        path = path or default_config_path()
        data: dict = {}

        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Neplatný JSON v konfiguraci {path}: {e}")
            except OSError as e:
                raise ConfigError(f"Nelze přečíst konfiguraci {path}: {e}")

            if not isinstance(data, dict):
                raise ConfigError(f"Konfigurace {path} musí být JSON objekt")

        immich = data.get("immich") or {}
        if not isinstance(immich, dict):
            raise ConfigError("Sekce 'immich' musí být JSON objekt")

        if data_dir is None:
            data_dir = Path(data["data_dir"]).expanduser() if data.get("data_dir") else default_data_dir()

        return cls(
            data_dir=data_dir,
            default_user=data.get("default_user") or "default",
            immich_url=(immich.get("url") or "").rstrip("/") or None,
            immich_api_key=immich.get("api_key") or None,
        )
