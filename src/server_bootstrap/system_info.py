"""Host capability detection for Server Bootstrap."""

import shutil
from pathlib import Path
from typing import Callable, List

from server_bootstrap.types import FirewallType, HostCapabilities, PackageManager

Which = Callable[[str], object]

# First match wins.
PACKAGE_MANAGERS = [
    ("apt-get", PackageManager.APT),
    ("dnf", PackageManager.DNF),
    ("yum", PackageManager.YUM),
]

FIREWALLS = [
    ("ufw", FirewallType.UFW),
    ("firewall-cmd", FirewallType.FIREWALLD),
]


def detect_distro(os_release: Path = Path("/etc/os-release")) -> str:
    """Read the distribution ID from os-release."""
    try:
        with open(os_release) as f:
            for line in f:
                if line.startswith("ID="):
                    return line.split("=", 1)[1].strip().strip('"').lower() or "unknown"
    except OSError:
        pass
    return "unknown"


def detect_package_manager(which: Which = shutil.which) -> PackageManager:
    """Detect available package manager."""
    for cmd, pm_type in PACKAGE_MANAGERS:
        if which(cmd):
            return pm_type
    return PackageManager.NONE


def detect_firewall(which: Which = shutil.which) -> FirewallType:
    """Detect available firewall tool."""
    for cmd, fw_type in FIREWALLS:
        if which(cmd):
            return fw_type
    return FirewallType.NONE


def probe(
    which: Which = shutil.which, os_release: Path = Path("/etc/os-release")
) -> HostCapabilities:
    """Probe the host once. Never raises; anything undetectable is none/False."""
    return HostCapabilities(
        package_manager=detect_package_manager(which),
        firewall_backend=detect_firewall(which),
        has_systemd=which("systemctl") is not None,
        has_timedatectl=which("timedatectl") is not None,
        distro=detect_distro(os_release),
    )


def service_command(caps: HostCapabilities, service: str, action: str) -> List[str]:
    """Get service control command for this host.

    ``enable-now`` enables and starts in one step where systemd is present.
    """
    if caps.has_systemd:
        if action == "enable-now":
            return ["systemctl", "enable", "--now", service]
        return ["systemctl", action, service]
    if action == "enable-now":
        action = "start"
    if action == "is-active":
        action = "status"
    return ["service", service, action]
