"""Configuration loading from environment variables and marcalink.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_HOME_DIR = Path.home() / ".marcalink"
_DEFAULT_DATA_DIR = _HOME_DIR / "user_data"
_DEFAULT_CACHE_DIR = _HOME_DIR / "cache"
_CONFIG_FILENAME = "marcalink.toml"


@dataclass
class ServerConfig:
    """Websocket server bind address."""

    host: str = "localhost"
    port: int = 8080


@dataclass
class ClientConfig:
    """Remote backend connection settings."""

    url: str = "ws://localhost:8080"
    open_timeout: float = 5.0
    reconnect_delay: float = 2.0


@dataclass
class MarcalinkConfig:
    """Top-level configuration."""

    backend: str = "filesystem"
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    data_dir: Path = _DEFAULT_DATA_DIR
    cache_dir: Path = _DEFAULT_CACHE_DIR
    pid_file: Path = _HOME_DIR / "marcalink.pid"
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MarcalinkConfig:
    """Load configuration from environment variables and optional marcalink.toml.

    Priority: environment variables > marcalink.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.marcalink/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _HOME_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    server_data = file_data.get("server", {})
    client_data = file_data.get("client", {})

    server = ServerConfig(
        host=os.getenv("MARCALINK_HOST", server_data.get("host", "localhost")),
        port=int(os.getenv("MARCALINK_PORT", server_data.get("port", 8080))),
    )
    default_url = f"ws://{server.host}:{server.port}"

    config = MarcalinkConfig(
        backend=os.getenv("MARCALINK_BACKEND", file_data.get("backend", "filesystem")),
        server=server,
        client=ClientConfig(
            url=os.getenv("MARCALINK_SERVER_URL", client_data.get("url", default_url)),
            open_timeout=float(
                os.getenv("MARCALINK_OPEN_TIMEOUT", client_data.get("open_timeout", 5.0))
            ),
            reconnect_delay=float(client_data.get("reconnect_delay", 2.0)),
        ),
        data_dir=Path(
            os.getenv("MARCALINK_DATA_DIR", file_data.get("data_dir", str(_DEFAULT_DATA_DIR)))
        ).expanduser(),
        cache_dir=Path(
            os.getenv("MARCALINK_CACHE_DIR", file_data.get("cache_dir", str(_DEFAULT_CACHE_DIR)))
        ).expanduser(),
        log_level=os.getenv("MARCALINK_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
