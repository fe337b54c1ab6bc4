"""Relay and client settings for signal-relay.

Later layers win: built-in defaults, then a TOML file, then environment
variables (SIGNAL_RELAY_HOST, SIGNAL_RELAY_PORT, SIGNAL_RELAY_PATH,
SIGNAL_RELAY_PING_INTERVAL, SIGNAL_RELAY_QUEUE_SIZE, SIGNAL_RELAY_URL), then
command-line options applied by the CLI.

Only one TOML file is read: ``signal-relay.toml`` in the working directory if
present, otherwise ``~/.signal-relay/config.toml``.

Example signal-relay.toml:

    [server]
    host = "0.0.0.0"
    port = 8000
    ping_interval = 5.0
    retain_original_id = false
    binary_without_target = "drop"

    [client]
    url = "ws://relay.example.org:8000/ws"
"""

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

from loguru import logger

LOCAL_CONFIG_NAME = "signal-relay.toml"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_PATH = "/ws"
DEFAULT_PING_INTERVAL = 5.0
DEFAULT_QUEUE_SIZE = 100
DEFAULT_BROADCAST_CAPACITY = 100
DEFAULT_MAX_MESSAGE_SIZE = 64 * 1024 * 1024  # 64 MiB

# What to do with a binary frame sent before any target_id was seen
BINARY_POLICY_ERROR = "error"
BINARY_POLICY_DROP = "drop"
VALID_BINARY_POLICIES = {BINARY_POLICY_ERROR, BINARY_POLICY_DROP}


@dataclass
class RelayConfig:
    """Settings for the relay server and its per-connection sessions.

    Attributes:
        host: Interface to bind the listening socket to.
        port: TCP port to listen on (0 picks an ephemeral port).
        path: Request path of the WebSocket endpoint.
        ping_interval: Seconds between keepalive pings on each connection.
        queue_size: Capacity of each connection's outbound queue.
        broadcast_capacity: Capacity of each sink subscription.
        max_message_size: Largest inbound message accepted, in bytes.
        retain_original_id: Keep the auto-assigned id registered after a
            client registers a custom id.
        confirm_registration: Reply with a ``registered`` envelope.
        binary_without_target: ``"error"`` to reply with an error envelope,
            ``"drop"`` to drop the frame silently.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    path: str = DEFAULT_PATH
    ping_interval: float = DEFAULT_PING_INTERVAL
    queue_size: int = DEFAULT_QUEUE_SIZE
    broadcast_capacity: int = DEFAULT_BROADCAST_CAPACITY
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    retain_original_id: bool = True
    confirm_registration: bool = True
    binary_without_target: str = BINARY_POLICY_ERROR

    def __post_init__(self):
        """Validate relay configuration after initialization."""
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Port out of range: {self.port}")
        if not self.path.startswith("/"):
            raise ValueError(f"Path must start with '/': {self.path}")
        if self.ping_interval <= 0:
            raise ValueError("Ping interval must be positive")
        if self.queue_size < 1:
            raise ValueError("Queue size must be at least 1")
        if self.broadcast_capacity < 1:
            raise ValueError("Broadcast capacity must be at least 1")
        if self.max_message_size < 1:
            raise ValueError("Max message size must be at least 1")
        if self.binary_without_target not in VALID_BINARY_POLICIES:
            raise ValueError(
                f"Invalid binary_without_target '{self.binary_without_target}'. "
                f"Valid values are: {', '.join(sorted(VALID_BINARY_POLICIES))}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "RelayConfig":
        """Create RelayConfig from TOML dictionary.

        Unknown keys and keys whose values have the wrong type are skipped
        with a warning.

        Args:
            data: Dictionary from TOML [server] section.

        Returns:
            RelayConfig instance.
        """
        known = {f.name: f.type for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Skipping unknown server config key: {key}")
                continue
            expected = known[key]
            if expected is float and isinstance(value, int) and not isinstance(value, bool):
                value = float(value)
            if not isinstance(value, expected) or (
                expected is int and isinstance(value, bool)
            ):
                logger.warning(
                    f"Skipping server config key {key}: expected "
                    f"{expected.__name__}, got {type(value).__name__}"
                )
                continue
            kwargs[key] = value
        return cls(**kwargs)

    def with_overrides(self, **overrides) -> "RelayConfig":
        """Return a copy with non-None overrides applied (CLI arguments)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @property
    def url(self) -> str:
        """WebSocket URL clients connect to."""
        return f"ws://{self.host}:{self.port}{self.path}"


class Config:
    """Configuration manager for signal-relay."""

    def __init__(self):
        """Initialize configuration with defaults."""
        self.server: RelayConfig = RelayConfig()
        self.client_url: str = self.server.url
        self._config_data: dict = {}

    def load(self) -> None:
        """Fill this config from the first config file found, then the environment."""
        config_file = self._find_config_file()
        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _home_config_path(self) -> Path:
        return Path.home() / ".signal-relay" / "config.toml"

    def _candidate_config_files(self) -> list[Path]:
        return [Path.cwd() / LOCAL_CONFIG_NAME, self._home_config_path()]

    def _find_config_file(self) -> Optional[Path]:
        """Return the first existing file of the project-local and per-user configs."""
        found = next((p for p in self._candidate_config_files() if p.is_file()), None)
        if found is None:
            logger.debug("No relay config file, using built-in defaults")
        else:
            logger.info(f"Reading relay config from {found}")
        return found

    def _load_config_file(self, config_file: Path) -> None:
        """Read ``[server]`` and ``[client]`` from a TOML file.

        A file that cannot be read or parsed leaves the defaults in place.
        """
        try:
            with open(config_file, "rb") as f:
                self._config_data = tomllib.load(f)

            server_data = self._config_data.get("server", {})
            if server_data:
                self.server = RelayConfig.from_dict(server_data)
                logger.debug(f"Loaded server config: {self.server}")

            client_data = self._config_data.get("client", {})
            if "url" in client_data:
                self.client_url = client_data["url"]
                logger.debug(f"Loaded client url from config: {self.client_url}")
            elif server_data:
                self.client_url = self.server.url

        except (OSError, tomllib.TOMLDecodeError, ValueError) as e:
            logger.warning(
                f"Failed to load config file {config_file}: {e}. Using defaults."
            )

    def _apply_env_overrides(self) -> None:
        """Layer SIGNAL_RELAY_* variables over the file settings.

        Unparseable or out-of-range values are logged and skipped. Command-line
        options are applied later by the CLI.
        """
        overrides = {}
        for env_name, key, cast in (
            ("SIGNAL_RELAY_HOST", "host", str),
            ("SIGNAL_RELAY_PORT", "port", int),
            ("SIGNAL_RELAY_PATH", "path", str),
            ("SIGNAL_RELAY_PING_INTERVAL", "ping_interval", float),
            ("SIGNAL_RELAY_QUEUE_SIZE", "queue_size", int),
        ):
            raw = os.getenv(env_name)
            if not raw:
                continue
            try:
                overrides[key] = cast(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {env_name} value '{raw}'")
                continue
            logger.info(f"Overriding {key} from env: {overrides[key]}")

        if overrides:
            try:
                self.server = self.server.with_overrides(**overrides)
            except ValueError as e:
                logger.warning(f"Ignoring environment overrides: {e}")

        url_override = os.getenv("SIGNAL_RELAY_URL")
        if url_override:
            self.client_url = url_override
            logger.info(f"Overriding client url from env: {self.client_url}")


_config: Optional[Config] = None


def get_config() -> Config:
    """Return the process-wide ``Config``, loading it on first use."""
    return _config if _config is not None else reload_config()


def reload_config() -> Config:
    """Re-read the config file and environment into a fresh shared ``Config``."""
    global _config
    config = Config()
    config.load()
    _config = config
    return config
