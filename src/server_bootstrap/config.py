"""Configuration management for Server Bootstrap."""

from pathlib import Path
from typing import Annotated, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def parse_port_list(value: object) -> Tuple[str, ...]:
    """Split a comma-separated allow-list into an ordered, de-duplicated tuple."""
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        raise ValueError(f"Unsupported port list: {value!r}")

    ports = []
    for item in items:
        item = item.strip()
        if item and item not in ports:
            ports.append(item)
    return tuple(ports)


class DesiredState(BaseSettings):
    """Target host configuration, built once from CLI and environment.

    Only real BOOTSTRAP_* variables are read. A ``.env`` file in the working
    directory is ignored here.
    """

    username: Optional[str] = Field(default=None, description="Admin user to create")
    ssh_public_key: Optional[str] = Field(
        default=None, description="Public key written to authorized_keys"
    )
    allowed_ports: Annotated[Tuple[str, ...], NoDecode] = Field(
        default=("22",), description="Ports or service names to allow inbound"
    )
    timezone: str = Field(default="UTC")
    disable_password_login: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_prefix="BOOTSTRAP_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("username", "ssh_public_key", mode="before")
    @classmethod
    def blank_to_none(cls, v: object) -> object:
        """Treat empty strings as not supplied."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("allowed_ports", mode="before")
    @classmethod
    def parse_allowed_ports(cls, v: object) -> Tuple[str, ...]:
        """Parse allowed ports from comma-separated string or list."""
        ports = parse_port_list(v)
        if not ports:
            raise ValueError("At least one port or service must be allowed")
        return ports


class PathsConfig(BaseSettings):
    """Locations of the host files the applier manages."""

    sshd_config: Path = Field(default=Path("/etc/ssh/sshd_config"))
    fail2ban_jail: Path = Field(default=Path("/etc/fail2ban/jail.local"))
    motd: Path = Field(default=Path("/etc/motd"))
    localtime: Path = Field(default=Path("/etc/localtime"))
    zoneinfo_dir: Path = Field(default=Path("/usr/share/zoneinfo"))
    os_release: Path = Field(default=Path("/etc/os-release"))
    auto_upgrades: Path = Field(default=Path("/etc/apt/apt.conf.d/20auto-upgrades"))

    model_config = SettingsConfigDict(
        env_prefix="BOOTSTRAP_PATH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    json_output: bool = Field(default=False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalize the level name and reject unknown ones."""
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return level


class BootstrapConfig(BaseSettings):
    """Ambient settings container."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def from_env(cls) -> "BootstrapConfig":
        """Create configuration from environment variables."""
        return cls(paths=PathsConfig(), logging=LoggingConfig())
