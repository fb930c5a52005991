"""Bridge configuration models and TOML loading helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import tomllib

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONFIG_FILE = Path.home() / ".config" / "sybaselink" / "config.toml"

DEFAULT_BRIDGE_PATH = (
    Path(__file__).resolve().parent.parent / "JavaSybaseLink" / "dist" / "JavaSybaseLink.jar"
)

LOG = logging.getLogger(__name__)


class BridgeConfig(BaseModel):
    """Connection settings forwarded to the helper process.

    Field names follow Python conventions; the camelCase keys used by the
    Node.js bridge client are accepted as aliases.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = "default"
    host: str
    port: int | str
    database: str
    username: str
    password: str = ""
    min_connections: int = Field(default=1, alias="minConnections")
    max_connections: int = Field(default=1, alias="maxConnections")
    connection_timeout: int = Field(default=30000, alias="connectionTimeout")
    idle_timeout: int = Field(default=60000, alias="idleTimeout")
    keepalive_time: int = Field(default=0, alias="keepaliveTime")
    max_lifetime: int = Field(default=1800000, alias="maxLifetime")
    transaction_connections: int = Field(default=5, alias="transactionConnections")
    log_timing: bool = Field(default=False, alias="logTiming")
    bridge_path: Path = Field(default=DEFAULT_BRIDGE_PATH, alias="pathToJavaBridge")
    java_command: str = Field(default="java", alias="javaCommand")
    command: list[str] | None = None
    encoding: str = "utf8"
    logs: bool = False

    def helper_args(self) -> list[str]:
        """Positional arguments in the order the helper parses them."""

        return [
            str(self.host),
            str(self.port),
            self.database,
            self.username,
            self.password,
            str(self.min_connections),
            str(self.max_connections),
            str(self.connection_timeout),
            str(self.idle_timeout),
            str(self.keepalive_time),
            str(self.max_lifetime),
            str(self.transaction_connections),
        ]

    def launch_command(self) -> list[str]:
        """Full argv used to spawn the helper."""

        prefix = list(self.command) if self.command else [self.java_command, "-jar", str(self.bridge_path)]
        return prefix + self.helper_args()

    def redacted_command(self) -> list[str]:
        """Launch argv with the password masked, suitable for logs."""

        argv = self.launch_command()
        if self.password:
            index = len(argv) - len(self.helper_args()) + 4
            argv[index] = "***"
        return argv

    @property
    def startup_timeout(self) -> float | None:
        """Seconds to wait for the handshake, derived from the pool timeout."""

        if self.connection_timeout <= 0:
            return None
        # Leave the helper room to report its own pool timeout first.
        return self.connection_timeout / 1000 + 5


class AppConfig(BaseModel):
    """Shape of the configuration file."""

    profiles: list[BridgeConfig] = Field(default_factory=list)
    active_profile: str | None = None

    def profile(self, name: str | None = None) -> BridgeConfig:
        """Return the named profile, the active one, or the first one."""

        wanted = name or self.active_profile
        if wanted is None:
            if not self.profiles:
                raise ValueError("No connection profiles configured.")
            return self.profiles[0]
        for profile in self.profiles:
            if profile.name == wanted:
                return profile
        raise ValueError(f"Profile '{wanted}' not found.")

    def with_active_profile(self, name: str) -> AppConfig:
        """Return a copy with the active profile updated."""

        return self.model_copy(update={"active_profile": name})


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file: %s", exc)
        return AppConfig()

    profiles: list[BridgeConfig] = []
    for entry in data.get("profiles", []):
        try:
            profiles.append(BridgeConfig.model_validate(entry))
        except ValidationError as exc:
            LOG.warning("Skipping invalid profile %r: %s", entry.get("name"), exc)
    active = data.get("active_profile")
    return AppConfig(
        profiles=profiles,
        active_profile=active if isinstance(active, str) else None,
    )


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    active_profile = raw.get("active_profile")
    if isinstance(active_profile, str):
        data["active_profile"] = active_profile
    profiles = raw.get("profiles")
    if isinstance(profiles, list):
        data["profiles"] = [
            profile for profile in profiles if isinstance(profile, dict) and profile.get("name")
        ]
    return data


__all__ = [
    "AppConfig",
    "BridgeConfig",
    "CONFIG_FILE",
    "DEFAULT_BRIDGE_PATH",
    "load_config",
]
