"""Configuration loading and management."""

from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomli
except ImportError:  # pragma: no cover
    import tomllib as tomli  # Python 3.11+


DEFAULT_SERVER_NAME = "versioned-archive"
DEFAULT_MAX_ENVELOPE_SIZE = 1048576  # 1MB


@dataclass
class Config:
    """Inspection server configuration."""

    # Server settings
    server_name: str = DEFAULT_SERVER_NAME
    log_level: str = "WARNING"

    # Modules imported at startup so their container declarations register
    container_modules: list[str] = field(default_factory=list)

    # Limits
    max_envelope_size: int = DEFAULT_MAX_ENVELOPE_SIZE

    @property
    def max_hex_length(self) -> int:
        """Longest hex string accepted by tools (two characters per byte)."""
        return self.max_envelope_size * 2


DEFAULT_CONFIG = Config()


def load_config(path: Path) -> Config:
    """Load configuration from TOML file.

    Args:
        path: Path to config file

    Returns:
        Loaded configuration, merged with defaults
    """
    if not path.exists():
        return Config()

    with open(path, "rb") as f:
        data = tomli.load(f)

    server = data.get("server", {})
    containers = data.get("containers", {})
    limits = data.get("limits", {})

    modules = containers.get("modules", [])
    if isinstance(modules, str):
        modules = [modules]

    return Config(
        server_name=server.get("name", DEFAULT_SERVER_NAME),
        log_level=str(server.get("log_level", "WARNING")).upper(),
        container_modules=list(modules),
        max_envelope_size=limits.get("max_envelope_size", DEFAULT_MAX_ENVELOPE_SIZE),
    )
