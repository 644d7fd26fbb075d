"""
Application configuration loaded from config.ini.

Example config.ini:

    [Ledger]
    DatabasePath = C:\\BoxCounter\\ledger.db
    Mode = append
    BusyTimeoutSeconds = 5

    [Scanner]
    CooldownMs = 700

    [Reports]
    OutputDir = C:\\BoxCounter\\reports

    [Logging]
    LogDir = C:\\BoxCounter\\logs
    LogLevel = INFO

Every key is optional. A missing file gives the defaults below.
"""

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config.ini"
DEFAULT_MODE = "append"
DEFAULT_COOLDOWN_MS = 700
DEFAULT_BUSY_TIMEOUT = 5.0


def get_data_dir() -> Path:
    """
    Per-user data directory for the ledger database and reports.

    %APPDATA%\\BoxCounter  (Windows)
    ~/.local/share/BoxCounter  (Linux/Mac fallback)
    """
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / "BoxCounter"


@dataclass
class AppConfig:
    """Resolved settings used to build the ledger, controller and exporter."""
    db_path: Path
    ledger_mode: str = DEFAULT_MODE
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT
    cooldown_ms: int = DEFAULT_COOLDOWN_MS
    report_dir: Optional[Path] = None

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_ms / 1000.0


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> AppConfig:
    """
    Load config.ini into an AppConfig.

    Invalid mode values fall back to the default with a warning so that a
    typo never silently switches the identity-key policy of an existing
    ledger (the ledger itself refuses a mismatched mode).
    """
    config = configparser.ConfigParser()
    if Path(config_path).exists():
        try:
            config.read(config_path, encoding='utf-8')
            logger.info(f"Configuration loaded from {config_path}")
        except configparser.Error as e:
            logger.error(f"Failed to load config: {e}")
            config = configparser.ConfigParser()
    else:
        logger.debug(f"Config file not found: {config_path}, using defaults")

    data_dir = get_data_dir()

    db_path = Path(config.get('Ledger', 'DatabasePath', fallback=str(data_dir / "ledger.db")))

    mode = config.get('Ledger', 'Mode', fallback=DEFAULT_MODE).strip().lower()
    if mode not in ("append", "overwrite"):
        logger.warning(f"Unknown ledger mode '{mode}', using '{DEFAULT_MODE}'")
        mode = DEFAULT_MODE

    try:
        busy_timeout = config.getfloat('Ledger', 'BusyTimeoutSeconds', fallback=DEFAULT_BUSY_TIMEOUT)
    except ValueError:
        logger.warning(
            f"Invalid BusyTimeoutSeconds '{config.get('Ledger', 'BusyTimeoutSeconds')}', "
            f"using {DEFAULT_BUSY_TIMEOUT}"
        )
        busy_timeout = DEFAULT_BUSY_TIMEOUT

    try:
        cooldown_ms = config.getint('Scanner', 'CooldownMs', fallback=DEFAULT_COOLDOWN_MS)
    except ValueError:
        logger.warning(
            f"Invalid CooldownMs '{config.get('Scanner', 'CooldownMs')}', using {DEFAULT_COOLDOWN_MS}"
        )
        cooldown_ms = DEFAULT_COOLDOWN_MS
    if cooldown_ms < 0:
        logger.warning(f"Negative CooldownMs ({cooldown_ms}) ignored")
        cooldown_ms = DEFAULT_COOLDOWN_MS

    report_dir = Path(config.get('Reports', 'OutputDir', fallback=str(data_dir / "reports")))

    return AppConfig(
        db_path=db_path,
        ledger_mode=mode,
        busy_timeout=busy_timeout,
        cooldown_ms=cooldown_ms,
        report_dir=report_dir,
    )
