"""Optional connection settings read from ~/.tascam-preset.conf.

The file holds key=value lines:

    host=192.168.1.100
    port=54726
    password=secret

Lines starting with # are comments. A missing or invalid file is treated as
an empty config so the CLI falls back to its arguments.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values

CONFIG_FILENAME = ".tascam-preset.conf"

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MixerConfig:
    host: Optional[str] = None
    port: Optional[int] = None
    password: Optional[str] = None

    def merge(self, host: Optional[str] = None, port: Optional[int] = None,
              password: Optional[str] = None) -> "MixerConfig":
        """Return a config where the given values win over the file's values."""
        return MixerConfig(
            host=host if host is not None else self.host,
            port=port if port is not None else self.port,
            password=password if password is not None else self.password,
        )


def default_config_path() -> Path:
    return Path.home() / CONFIG_FILENAME


def load_config(path: Optional[Path] = None) -> MixerConfig:
    """Load the config file, returning an empty MixerConfig if it is absent or invalid."""
    if path is None:
        path = default_config_path()
    if not path.exists():
        return MixerConfig()

    try:
        # Passwords may contain "$", so no ${VAR} expansion
        values = dotenv_values(path, interpolate=False, encoding="utf-8")
        port = values.get("port")
        return MixerConfig(
            host=values.get("host"),
            port=int(port) if port else None,
            password=values.get("password"),
        )
    except (OSError, UnicodeDecodeError, ValueError) as e:
        _logger.warning(f"Ignoring invalid config file {path}: {e}")
        return MixerConfig()
