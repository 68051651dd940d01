"""Type definitions for Server Bootstrap."""

from enum import Enum
from typing import NamedTuple


class PackageManager(str, Enum):
    """Supported package managers."""

    APT = "apt"
    DNF = "dnf"
    YUM = "yum"
    NONE = "none"


class FirewallType(str, Enum):
    """Supported firewall backends."""

    UFW = "ufw"
    FIREWALLD = "firewalld"
    NONE = "none"


class Outcome(str, Enum):
    """Result of applying one facet."""

    APPLIED = "applied"
    ALREADY_SATISFIED = "already-satisfied"
    SKIPPED = "skipped"
    WARNING = "warning"
    FATAL = "fatal"


class HostCapabilities(NamedTuple):
    """What the host offers, probed once at start."""

    package_manager: PackageManager
    firewall_backend: FirewallType
    has_systemd: bool
    has_timedatectl: bool
    distro: str = "unknown"


class FacetResult(NamedTuple):
    """Outcome of a single facet."""

    facet: str
    outcome: Outcome
    detail: str = ""


class CommandResult(NamedTuple):
    """Result of command execution."""

    success: bool
    stdout: str
    stderr: str
    return_code: int = 0
