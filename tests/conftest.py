"""Pytest configuration and fixtures."""

import grp
import os
import pwd
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from server_bootstrap.applier import HostApplier
from server_bootstrap.config import DesiredState, PathsConfig
from server_bootstrap.exceptions import CommandExecutionError
from server_bootstrap.types import CommandResult, FirewallType, HostCapabilities, PackageManager

UBUNTU_SSHD_CONFIG = """\
Include /etc/ssh/sshd_config.d/*.conf

#Port 22
#PermitRootLogin prohibit-password
#PubkeyAuthentication yes
#PasswordAuthentication yes
KbdInteractiveAuthentication no
UsePAM yes
X11Forwarding yes
Subsystem sftp /usr/lib/openssh/sftp-server

Match User anoncvs
\tX11Forwarding no
"""

OK = CommandResult(True, "", "", 0)

# commands that show up once their package is installed
PROVIDED_BY = {"ufw": "ufw", "firewall-cmd": "firewalld"}


class FakeHost:
    """In-memory host that answers the commands the applier issues."""

    def __init__(self, home_root: Path, auto_upgrades: Path, groups: Sequence[str] = ("sudo",)):
        self.home_root = home_root
        self.auto_upgrades = auto_upgrades
        self.calls: List[List[str]] = []
        self.failures: Dict[Tuple[str, ...], CommandResult] = {}
        self.available: set = set()

        self.installed: set = set()
        self.timezone = "UTC"
        self.users: Dict[str, Path] = {}
        self.groups: Dict[str, List[str]] = {g: [] for g in groups}
        self.active_services: set = set()
        self.ufw_active = False
        self.ufw_defaults: Dict[str, str] = {}
        self.ufw_rules: List[str] = []
        self.fw_ports: List[str] = []
        self.fw_services: List[str] = []

    # executor interface

    def execute(self, args, check=True, env=None) -> CommandResult:
        args = list(args)
        self.calls.append(args)
        result = self._fail_for(args) or self._handle(args)
        if check and not result.success:
            raise CommandExecutionError(f"Command failed: {' '.join(args)}")
        return result

    def check_command_available(self, command: str) -> bool:
        return command in self.available or PROVIDED_BY.get(command) in self.installed

    # pwd / grp stand-ins

    def getpwnam(self, name: str) -> pwd.struct_passwd:
        if name not in self.users:
            raise KeyError(name)
        return pwd.struct_passwd(
            (name, "x", os.getuid(), os.getgid(), "", str(self.users[name]), "/bin/bash")
        )

    def getgrnam(self, name: str) -> grp.struct_group:
        if name not in self.groups:
            raise KeyError(name)
        gid = 90000 + sorted(self.groups).index(name)
        return grp.struct_group((name, "x", gid, list(self.groups[name])))

    # helpers for assertions

    def fail(self, *prefix: str) -> None:
        self.failures[prefix] = CommandResult(False, "", "boom", 1)

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == list(prefix) for call in self.calls)

    def _fail_for(self, args: List[str]) -> Optional[CommandResult]:
        for prefix, result in self.failures.items():
            if tuple(args[: len(prefix)]) == prefix:
                return result
        return None

    def _handle(self, args: List[str]) -> CommandResult:
        prog, rest = args[0], args[1:]

        if prog == "timedatectl":
            if rest[0] == "show":
                return CommandResult(True, self.timezone + "\n", "", 0)
            self.timezone = rest[1]
        elif prog == "dpkg" or prog == "rpm":
            return OK if rest[-1] in self.installed else CommandResult(False, "", "", 1)
        elif prog in ("apt-get", "dnf", "yum") and "install" in rest:
            self.installed.update(a for a in rest if a not in ("install", "-y"))
        elif prog == "useradd":
            home = self.home_root / rest[-1]
            home.mkdir(parents=True, exist_ok=True)
            self.users[rest[-1]] = home
        elif prog == "usermod":
            self.groups[rest[1]].append(rest[2])
        elif prog == "ufw":
            return self._ufw(rest)
        elif prog == "firewall-cmd":
            return self._firewalld(rest)
        elif prog == "systemctl":
            if rest[0] == "is-active":
                return OK if rest[-1] in self.active_services else CommandResult(False, "", "", 3)
            if rest[0] in ("restart", "start") or "--now" in rest:
                self.active_services.add(rest[-1])
        elif prog == "dpkg-reconfigure":
            self.auto_upgrades.parent.mkdir(parents=True, exist_ok=True)
            self.auto_upgrades.write_text(
                'APT::Periodic::Update-Package-Lists "1";\n'
                'APT::Periodic::Unattended-Upgrade "1";\n'
            )
        return OK

    def _ufw(self, rest: List[str]) -> CommandResult:
        if rest[0] == "status":
            if not self.ufw_active:
                return CommandResult(True, "Status: inactive\n", "", 0)
            lines = ["Status: active", f"Default: {self.ufw_defaults}"]
            lines += sorted(self.ufw_rules)
            return CommandResult(True, "\n".join(lines) + "\n", "", 0)
        if rest[0] == "default":
            self.ufw_defaults[rest[2]] = rest[1]
        elif rest[0] == "allow" and rest[1] not in self.ufw_rules:
            self.ufw_rules.append(rest[1])
        elif rest[-1] == "enable":
            self.ufw_active = True
        return OK

    def _firewalld(self, rest: List[str]) -> CommandResult:
        if "--list-all" in rest:
            out = "ports: {}\nservices: {}\n".format(
                " ".join(sorted(self.fw_ports)), " ".join(sorted(self.fw_services))
            )
            return CommandResult(True, out, "", 0)
        for arg in rest:
            if arg.startswith("--add-port=") and arg[11:] not in self.fw_ports:
                self.fw_ports.append(arg[11:])
            elif arg.startswith("--add-service=") and arg[14:] not in self.fw_services:
                self.fw_services.append(arg[14:])
        return OK


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep BOOTSTRAP_* / LOG_* from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith(("BOOTSTRAP_", "LOG_")):
            monkeypatch.delenv(name)


@pytest.fixture
def paths(tmp_path: Path) -> PathsConfig:
    """Host file locations rooted in a scratch directory."""
    etc = tmp_path / "etc"
    (etc / "ssh").mkdir(parents=True)
    (etc / "fail2ban").mkdir()
    (etc / "ssh" / "sshd_config").write_text(UBUNTU_SSHD_CONFIG)

    zoneinfo = tmp_path / "zoneinfo"
    for zone in ("UTC", "Europe/Warsaw"):
        (zoneinfo / zone).parent.mkdir(parents=True, exist_ok=True)
        (zoneinfo / zone).write_text(zone)

    return PathsConfig(
        sshd_config=etc / "ssh" / "sshd_config",
        fail2ban_jail=etc / "fail2ban" / "jail.local",
        motd=etc / "motd",
        localtime=etc / "localtime",
        zoneinfo_dir=zoneinfo,
        os_release=etc / "os-release",
        auto_upgrades=etc / "apt" / "apt.conf.d" / "20auto-upgrades",
    )


@pytest.fixture
def host(tmp_path: Path, paths: PathsConfig, monkeypatch: pytest.MonkeyPatch) -> FakeHost:
    """Fake host wired in place of pwd/grp lookups."""
    fake = FakeHost(tmp_path / "home", paths.auto_upgrades)
    monkeypatch.setattr("server_bootstrap.applier.pwd.getpwnam", fake.getpwnam)
    monkeypatch.setattr("server_bootstrap.applier.grp.getgrnam", fake.getgrnam)
    return fake


def make_caps(
    pm: PackageManager = PackageManager.APT,
    fw: FirewallType = FirewallType.UFW,
    systemd: bool = True,
    timedatectl: bool = True,
) -> HostCapabilities:
    return HostCapabilities(pm, fw, systemd, timedatectl, "ubuntu")


@pytest.fixture
def caps() -> HostCapabilities:
    return make_caps()


@pytest.fixture
def katto_state() -> DesiredState:
    """The full-featured example run."""
    return DesiredState(
        username="katto",
        ssh_public_key="ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIexample katto@laptop",
        allowed_ports="22,80,443",
        timezone="Europe/Warsaw",
        disable_password_login=True,
    )


@pytest.fixture
def make_applier(host: FakeHost, paths: PathsConfig):
    """Build a HostApplier bound to the fake host."""

    def _make(state: DesiredState, caps: HostCapabilities) -> HostApplier:
        return HostApplier(state, caps, paths=paths, executor=host)

    return _make
