"""Configuration management for termbridge."""

import json
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any


def _default_config_dir() -> Path:
    """Get the default configuration directory."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        base = Path(xdg)
    else:
        base = Path.home() / ".config"
    return base / "termbridge"


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8081
    shell: str = ""  # empty: $SHELL, then sh
    cwd: str = ""  # empty: home directory
    term: str = "xterm-color"
    cols: int = 80
    rows: int = 24
    kill_grace_seconds: float = 2.0
    exit_drain_seconds: float = 0.5
    max_message_size: int = 16 * 1024 * 1024  # larger frames end the session (1009)
    ping_interval: float | None = 30
    ping_timeout: float | None = 10

    # TLS is off unless both are set
    tls_cert: str = ""
    tls_key: str = ""


@dataclass
class ClientConfig:
    url: str = "ws://localhost:8081"
    initial_resize_delay: float = 0.1
    ca_cert: str = ""


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)

    @classmethod
    def load(cls, config_dir: Path | None = None) -> "Config":
        """Load configuration from disk, or return defaults."""
        config_dir = config_dir or _default_config_dir()
        config_file = config_dir / "config.json"
        if not config_file.exists():
            return cls()
        data = json.loads(config_file.read_text())
        server_data = data.get("server", {})
        client_data = data.get("client", {})
        return cls(
            server=ServerConfig(**{
                k: v for k, v in server_data.items()
                if k in ServerConfig.__dataclass_fields__
            }),
            client=ClientConfig(**{
                k: v for k, v in client_data.items()
                if k in ClientConfig.__dataclass_fields__
            }),
        )

    def save(self, config_dir: Path | None = None) -> Path:
        """Save configuration to disk."""
        config_dir = config_dir or _default_config_dir()
        config_dir.mkdir(parents=True, exist_ok=True)
        config_file = config_dir / "config.json"
        data: dict[str, Any] = {
            "server": asdict(self.server),
            "client": asdict(self.client),
        }
        config_file.write_text(json.dumps(data, indent=2) + "\n")
        config_file.chmod(0o600)
        return config_file

    def apply_env(self, environ: dict[str, str] | None = None) -> "Config":
        """Override file values with TERMINAL_* environment variables."""
        environ = os.environ if environ is None else environ
        if environ.get("TERMINAL_HOST"):
            self.server.host = environ["TERMINAL_HOST"]
        if environ.get("TERMINAL_PORT"):
            self.server.port = int(environ["TERMINAL_PORT"])
        if environ.get("TERMINAL_SHELL"):
            self.server.shell = environ["TERMINAL_SHELL"]
        if environ.get("TERMINAL_URL"):
            self.client.url = environ["TERMINAL_URL"]
        return self

    @property
    def tls_enabled(self) -> bool:
        return bool(self.server.tls_cert and self.server.tls_key)

    @staticmethod
    def config_dir(override: Path | None = None) -> Path:
        return override or _default_config_dir()

    @staticmethod
    def cert_path(config_dir: Path | None = None) -> Path:
        return (config_dir or _default_config_dir()) / "server.crt"

    @staticmethod
    def key_path(config_dir: Path | None = None) -> Path:
        return (config_dir or _default_config_dir()) / "server.key"
