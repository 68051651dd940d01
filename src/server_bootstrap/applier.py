"""Per-facet idempotent host configuration."""

import grp
import pwd
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from server_bootstrap.config import DesiredState, PathsConfig
from server_bootstrap.exceptions import FacetError
from server_bootstrap.sshd_config import SSHDConfigModel
from server_bootstrap.system_info import detect_firewall, service_command
from server_bootstrap.types import (
    CommandResult,
    FacetResult,
    FirewallType,
    HostCapabilities,
    Outcome,
    PackageManager,
)
from server_bootstrap.utils.command import CommandExecutor
from server_bootstrap.utils.file import FileManager

logger = structlog.get_logger(__name__)

APT_PACKAGES = [
    "curl", "wget", "git", "vim", "htop", "ufw", "fail2ban", "unzip",
    "ca-certificates", "gnupg", "lsb-release", "net-tools",
]
RPM_PACKAGES = [
    "curl", "wget", "git", "vim", "htop", "firewalld", "fail2ban", "unzip",
    "ca-certificates", "gnupg2", "net-tools",
]
UNATTENDED_PACKAGES = ["unattended-upgrades", "apt-listchanges"]
APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

ADMIN_GROUPS = ["sudo", "wheel"]
DEFAULT_SHELL = "/bin/bash"
SSH_SERVICES = ["ssh", "sshd"]

JAIL_LOCAL = """[DEFAULT]
bantime = 1h
findtime = 10m
maxretry = 5

[sshd]
enabled = true
"""

_NUMERIC_PORT = re.compile(r"^[0-9]+$")


def render_motd(firewall_backend: FirewallType) -> str:
    """Four-line login banner describing what was applied."""
    firewall = {
        FirewallType.UFW: "ufw enabled",
        FirewallType.FIREWALLD: "firewalld enabled",
        FirewallType.NONE: "not configured",
    }[firewall_backend]
    return (
        "Welcome! This server is managed by bootstrap-server\n"
        "- SSH root login: disabled\n"
        "- Check: sudo systemctl status fail2ban\n"
        f"- Firewall: {firewall}\n"
    )


def sshd_settings(state: DesiredState) -> Dict[str, str]:
    """Directives enforced in sshd_config."""
    settings = {"PermitRootLogin": "no"}
    if state.disable_password_login:
        settings["PasswordAuthentication"] = "no"
    settings["PubkeyAuthentication"] = "yes"
    settings["ChallengeResponseAuthentication"] = "no"
    return settings


class HostApplier:
    """Applies each facet of a DesiredState against the host.

    Every ``apply_*`` method returns a FacetResult. Recoverable problems come
    back as ``Outcome.WARNING``; fatal ones raise FacetError or
    CommandExecutionError for the orchestrator to record.
    """

    def __init__(
        self,
        state: DesiredState,
        caps: HostCapabilities,
        paths: Optional[PathsConfig] = None,
        executor: Optional[CommandExecutor] = None,
        file_manager: Optional[FileManager] = None,
    ) -> None:
        self.state = state
        self.caps = caps
        self.paths = paths or PathsConfig()
        self.executor = executor or CommandExecutor()
        self.files = file_manager or FileManager()

    # ------------------------------------------------------------------ helpers

    def _run(
        self, args: List[str], check: bool = False, env: Optional[Dict[str, str]] = None
    ) -> CommandResult:
        return self.executor.execute(args, check=check, env=env)

    def _service(self, service: str, action: str) -> CommandResult:
        return self._run(service_command(self.caps, service, action))

    def firewall_backend(self) -> FirewallType:
        """Firewall to configure.

        The capability snapshot predates the package step, which installs ufw
        or firewalld, so a missing backend is looked up again on the host.
        """
        if self.caps.firewall_backend != FirewallType.NONE:
            return self.caps.firewall_backend
        return detect_firewall(self.executor.check_command_available)

    @staticmethod
    def _user(username: str) -> Optional[pwd.struct_passwd]:
        try:
            return pwd.getpwnam(username)
        except KeyError:
            return None

    @staticmethod
    def _group(name: str) -> Optional[grp.struct_group]:
        try:
            return grp.getgrnam(name)
        except KeyError:
            return None

    # ---------------------------------------------------------------- timezone

    def apply_timezone(self) -> FacetResult:
        """Set the system timezone via timedatectl or the localtime symlink."""
        tz = self.state.timezone

        if self.caps.has_timedatectl:
            current = self._run(["timedatectl", "show", "--property=Timezone", "--value"])
            if current.success and current.stdout.strip() == tz:
                return FacetResult("timezone", Outcome.ALREADY_SATISFIED, tz)
            result = self._run(["timedatectl", "set-timezone", tz])
            if not result.success:
                return FacetResult(
                    "timezone", Outcome.WARNING, f"Failed to set timezone: {result.stderr.strip()}"
                )
            return FacetResult("timezone", Outcome.APPLIED, tz)

        zone_file = self.paths.zoneinfo_dir / tz
        if not zone_file.exists():
            return FacetResult("timezone", Outcome.WARNING, f"Unknown timezone: {tz}")
        try:
            changed = self.files.ensure_symlink(self.paths.localtime, zone_file)
        except OSError as e:
            return FacetResult("timezone", Outcome.WARNING, f"Failed to symlink timezone: {e}")
        return FacetResult(
            "timezone", Outcome.APPLIED if changed else Outcome.ALREADY_SATISFIED, tz
        )

    # ---------------------------------------------------------------- packages

    def _is_installed(self, package: str) -> bool:
        if self.caps.package_manager == PackageManager.APT:
            return self._run(["dpkg", "-s", package]).success
        return self._run(["rpm", "-q", "--whatprovides", package]).success

    def _missing(self, packages: List[str]) -> List[str]:
        return [p for p in packages if not self._is_installed(p)]

    def apply_packages(self) -> FacetResult:
        """Refresh the index, upgrade, and install the base tool set.

        Any command failure here aborts the run.
        """
        pm = self.caps.package_manager
        if pm == PackageManager.NONE:
            raise FacetError("packages", "Unsupported package manager.")

        if pm == PackageManager.APT:
            self._run(["apt-get", "update", "-y"], check=True, env=APT_ENV)
            self._run(["apt-get", "upgrade", "-y"], check=True, env=APT_ENV)
            missing = self._missing(APT_PACKAGES)
            if missing:
                self._run(["apt-get", "install", "-y", *missing], check=True, env=APT_ENV)
        else:
            self._run([pm.value, "-y", "update"], check=True)
            missing = self._missing(RPM_PACKAGES)
            if missing:
                self._run([pm.value, "-y", "install", *missing], check=True)

        if missing:
            return FacetResult("packages", Outcome.APPLIED, f"installed: {' '.join(missing)}")
        return FacetResult("packages", Outcome.ALREADY_SATISFIED, "base tools present")

    # -------------------------------------------------------------------- user

    def apply_user(self) -> FacetResult:
        """Create the admin user and put it in sudo (or wheel)."""
        username = self.state.username
        if not username:
            return FacetResult("user", Outcome.SKIPPED, "no username given")

        changes = []
        user = self._user(username)
        if user is None:
            self._run(["useradd", "-m", "-s", DEFAULT_SHELL, username], check=True)
            logger.info("user_created", user=username)
            changes.append("created")
            user = self._user(username)

        group = next((g for g in map(self._group, ADMIN_GROUPS) if g is not None), None)
        if group is None:
            return FacetResult(
                "user", Outcome.WARNING, f"no sudo or wheel group; '{username}' has no admin rights"
            )

        primary = user is not None and user.pw_gid == group.gr_gid
        if not primary and username not in group.gr_mem:
            self._run(["usermod", "-aG", group.gr_name, username], check=True)
            changes.append(f"added to {group.gr_name}")

        if changes:
            return FacetResult("user", Outcome.APPLIED, f"{username}: {', '.join(changes)}")
        return FacetResult("user", Outcome.ALREADY_SATISFIED, f"{username} in {group.gr_name}")

    # ----------------------------------------------------------------- ssh key

    def apply_ssh_key(self) -> FacetResult:
        """Write the single authorized key, replacing any existing file."""
        username, key = self.state.username, self.state.ssh_public_key
        if not username or not key:
            return FacetResult("ssh_key", Outcome.SKIPPED, "no username or key given")

        user = self._user(username)
        if user is None:
            raise FacetError("ssh_key", f"User '{username}' does not exist")

        ssh_dir = Path(user.pw_dir) / ".ssh"
        auth_keys = ssh_dir / "authorized_keys"
        try:
            changed = self.files.ensure_dir(ssh_dir, mode=0o700)
            changed |= self.files.write_file(auth_keys, key.strip() + "\n", mode=0o600)
            changed |= self.files.set_owner(ssh_dir, user.pw_uid, user.pw_gid)
            changed |= self.files.set_owner(auth_keys, user.pw_uid, user.pw_gid)
        except OSError as e:
            raise FacetError("ssh_key", f"Failed to install SSH key: {e}") from e

        if changed:
            logger.info("ssh_key_installed", user=username)
            return FacetResult("ssh_key", Outcome.APPLIED, str(auth_keys))
        return FacetResult("ssh_key", Outcome.ALREADY_SATISFIED, str(auth_keys))

    # ------------------------------------------------------------ ssh hardening

    def _validate_sshd(self, config: Path) -> Optional[str]:
        """Return sshd's complaint about config, None if fine or untestable."""
        for sshd_cmd in ["sshd", "/usr/sbin/sshd"]:
            if self.executor.check_command_available(sshd_cmd):
                result = self._run([sshd_cmd, "-t", "-f", str(config)])
                return None if result.success else result.stderr.strip() or "sshd -t failed"
        return None

    def _restart_ssh(self) -> bool:
        for name in SSH_SERVICES:
            if self._service(name, "restart").success:
                logger.debug("ssh_restarted", service=name)
                return True
        return False

    def apply_ssh_hardening(self) -> FacetResult:
        """Upsert the hardening directives and restart sshd if anything changed."""
        path = self.paths.sshd_config
        if not path.is_file():
            return FacetResult("ssh_hardening", Outcome.WARNING, f"SSHD config not found at {path}")

        original = self.files.read_file(path)
        model = SSHDConfigModel(original)
        model.apply(sshd_settings(self.state))
        content = model.render()

        password = "off" if self.state.disable_password_login else "on"
        if content == original:
            return FacetResult(
                "ssh_hardening", Outcome.ALREADY_SATISFIED, f"password login: {password}"
            )

        # the live file is only replaced once sshd accepts the staged copy
        try:
            staged = self.files.stage_file(path, content)
        except OSError as e:
            raise FacetError("ssh_hardening", f"Failed to write {path}: {e}") from e

        problem = self._validate_sshd(staged)
        try:
            if problem:
                self.files.discard_file(staged)
            else:
                self.files.commit_file(staged, path)
        except OSError as e:
            raise FacetError("ssh_hardening", f"Failed to write {path}: {e}") from e

        if problem:
            return FacetResult(
                "ssh_hardening", Outcome.WARNING, f"sshd rejected config, left unchanged: {problem}"
            )
        if not self._restart_ssh():
            return FacetResult("ssh_hardening", Outcome.WARNING, "Failed to restart SSH service")
        return FacetResult(
            "ssh_hardening", Outcome.APPLIED, f"root login disabled; password login: {password}"
        )

    # ---------------------------------------------------------------- firewall

    def _firewall_ufw(self) -> Tuple[bool, List[str]]:
        failures = []
        before = self._run(["ufw", "status", "verbose"]).stdout
        commands = [
            ["ufw", "default", "deny", "incoming"],
            ["ufw", "default", "allow", "outgoing"],
        ]
        commands += [["ufw", "allow", port] for port in self.state.allowed_ports]
        # Enabled after the rules, not before as bootstrap-server.sh does.
        # The resulting rule set is the same either way.
        commands.append(["ufw", "--force", "enable"])
        for cmd in commands:
            if not self._run(cmd).success:
                failures.append(" ".join(cmd))
        after = self._run(["ufw", "status", "verbose"]).stdout
        logger.debug("ufw_status", status=after)
        return before != after, failures

    def _firewall_firewalld(self) -> Tuple[bool, List[str]]:
        failures = []
        if not self._service("firewalld", "enable-now").success:
            failures.append("enable firewalld")
        before = self._run(["firewall-cmd", "--permanent", "--list-all"]).stdout
        for entry in self.state.allowed_ports:
            if _NUMERIC_PORT.match(entry):
                cmd = ["firewall-cmd", "--permanent", f"--add-port={entry}/tcp"]
            else:
                cmd = ["firewall-cmd", "--permanent", f"--add-service={entry}"]
            if not self._run(cmd).success:
                failures.append(" ".join(cmd))
        after = self._run(["firewall-cmd", "--permanent", "--list-all"]).stdout
        changed = before != after
        if changed and not self._run(["firewall-cmd", "--reload"]).success:
            failures.append("firewall-cmd --reload")
        logger.debug("firewalld_status", status=after)
        return changed, failures

    def apply_firewall(self) -> FacetResult:
        """Allow exactly the requested ports/services, deny other inbound."""
        handlers: Dict[FirewallType, Callable[[], Tuple[bool, List[str]]]] = {
            FirewallType.UFW: self._firewall_ufw,
            FirewallType.FIREWALLD: self._firewall_firewalld,
        }
        backend = self.firewall_backend()
        handler = handlers.get(backend)
        if handler is None:
            return FacetResult(
                "firewall", Outcome.WARNING, "No supported firewall (ufw or firewalld) found."
            )

        allowed = ",".join(self.state.allowed_ports)
        changed, failures = handler()
        if failures:
            return FacetResult("firewall", Outcome.WARNING, f"failed: {'; '.join(failures)}")
        if not changed:
            return FacetResult("firewall", Outcome.ALREADY_SATISFIED, f"allowed: {allowed}")
        return FacetResult(
            "firewall", Outcome.APPLIED, f"{backend.value} allowed: {allowed}"
        )

    # ------------------------------------------------------------------ fail2ban

    def apply_fail2ban(self) -> FacetResult:
        """Write the local jail and make sure fail2ban is running."""
        try:
            changed = self.files.write_file(self.paths.fail2ban_jail, JAIL_LOCAL)
        except OSError as e:
            raise FacetError("fail2ban", f"Failed to write {self.paths.fail2ban_jail}: {e}") from e

        if not changed and self._service("fail2ban", "is-active").success:
            return FacetResult("fail2ban", Outcome.ALREADY_SATISFIED, "sshd jail active")

        ok = self._service("fail2ban", "enable-now").success
        if ok and changed:
            # pick up the new jail if it was already running
            ok = self._service("fail2ban", "restart").success
        if not ok:
            return FacetResult("fail2ban", Outcome.WARNING, "fail2ban enable failed")
        return FacetResult("fail2ban", Outcome.APPLIED, "sshd jail enabled")

    # ------------------------------------------------------- unattended upgrades

    def _auto_upgrades_enabled(self) -> bool:
        content = self.files.read_file(self.paths.auto_upgrades)
        return 'APT::Periodic::Unattended-Upgrade "1";' in content

    def apply_unattended_upgrades(self) -> FacetResult:
        """Install and enable unattended-upgrades on apt hosts."""
        if self.caps.package_manager != PackageManager.APT:
            return FacetResult("unattended_upgrades", Outcome.SKIPPED, "apt only")

        missing = self._missing(UNATTENDED_PACKAGES)
        if not missing and self._auto_upgrades_enabled():
            return FacetResult("unattended_upgrades", Outcome.ALREADY_SATISFIED, "enabled")

        if missing:
            self._run(["apt-get", "install", "-y", *missing], check=True, env=APT_ENV)

        result = self._run(
            ["dpkg-reconfigure", "-f", "noninteractive", "unattended-upgrades"], env=APT_ENV
        )
        if not result.success:
            return FacetResult(
                "unattended_upgrades", Outcome.WARNING, "dpkg-reconfigure unattended-upgrades failed"
            )
        return FacetResult("unattended_upgrades", Outcome.APPLIED, "enabled")

    # -------------------------------------------------------------------- motd

    def apply_motd(self) -> FacetResult:
        """Write the login banner."""
        try:
            changed = self.files.write_file(self.paths.motd, render_motd(self.firewall_backend()))
        except OSError as e:
            raise FacetError("motd", f"Failed to write {self.paths.motd}: {e}") from e
        outcome = Outcome.APPLIED if changed else Outcome.ALREADY_SATISFIED
        return FacetResult("motd", outcome, str(self.paths.motd))


