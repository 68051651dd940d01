"""CLI entry point for Server Bootstrap."""

import argparse
import os
import sys
from typing import List, NoReturn, Optional

import structlog
from pydantic import ValidationError

from server_bootstrap import __version__
from server_bootstrap.applier import HostApplier
from server_bootstrap.config import BootstrapConfig, DesiredState
from server_bootstrap.exceptions import (
    BootstrapError,
    InvalidArgumentError,
    PrivilegeError,
)
from server_bootstrap.logging_config import setup_logging
from server_bootstrap.orchestrator import Orchestrator
from server_bootstrap.report import ReportCollector
from server_bootstrap.system_info import probe

logger = structlog.get_logger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting with status 2."""

    def error(self, message: str) -> NoReturn:
        raise InvalidArgumentError(message)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = _ArgumentParser(
        prog="bootstrap-server",
        allow_abbrev=False,
        description="One-shot hardening of a freshly provisioned Linux server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sudo bootstrap-server \\
    --username devops \\
    --ssh-key "ssh-ed25519 AAAAC3Nza... user@host" \\
    --ufw-ports "22,80,443" \\
    --timezone "Europe/Warsaw" \\
    --no-password-login

Environment variables:
  BOOTSTRAP_USERNAME, BOOTSTRAP_SSH_PUBLIC_KEY, BOOTSTRAP_ALLOWED_PORTS,
  BOOTSTRAP_TIMEZONE, BOOTSTRAP_DISABLE_PASSWORD_LOGIN  - defaults for the flags
  LOG_LEVEL, LOG_JSON                                   - logging output
        """,
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--username", metavar="NAME", help="Create a non-root sudo user")
    parser.add_argument(
        "--ssh-key", metavar="KEY", help="Authorized SSH public key for that user"
    )
    parser.add_argument(
        "--ufw-ports",
        metavar="PORTS",
        help='Comma-separated allowed ports or services (default: "22")',
    )
    parser.add_argument(
        "--timezone", metavar="REGION/CITY", help="Set system timezone (default: UTC)"
    )
    parser.add_argument(
        "--no-password-login",
        action="store_true",
        default=None,
        help="Disable SSH password authentication",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Raises:
        InvalidArgumentError: On an unknown flag or a flag missing its value
    """
    args, unknown = build_parser().parse_known_args(argv)
    if unknown:
        raise InvalidArgumentError(f"Unknown argument: {unknown[0]}")
    return args


def desired_state_from_args(
    args: argparse.Namespace, is_root: Optional[bool] = None
) -> DesiredState:
    """Validate privileges and build the desired state from parsed flags.

    Flags left unset fall back to BOOTSTRAP_* environment variables, then defaults.

    Raises:
        PrivilegeError: When not running as root
        InvalidArgumentError: When the resulting state is invalid
    """
    if is_root is None:
        is_root = os.geteuid() == 0
    if not is_root:
        raise PrivilegeError("Run as root or with sudo.")

    overrides = {
        "username": args.username,
        "ssh_public_key": args.ssh_key,
        "allowed_ports": args.ufw_ports,
        "timezone": args.timezone,
        "disable_password_login": args.no_password_login,
    }
    try:
        return DesiredState(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        raise InvalidArgumentError(str(e)) from e


def build_desired_state(
    argv: Optional[List[str]] = None, is_root: Optional[bool] = None
) -> DesiredState:
    """Turn raw CLI input into the immutable desired state.

    Args:
        argv: Arguments without the program name, sys.argv[1:] if None
        is_root: Override the effective-uid check

    Raises:
        InvalidArgumentError: On unrecognized input
        PrivilegeError: When not running as root
    """
    return desired_state_from_args(parse_args(argv), is_root=is_root)


def load_config() -> BootstrapConfig:
    """Load LOG_* and BOOTSTRAP_PATH_* settings.

    Raises:
        InvalidArgumentError: When a variable holds an invalid value
    """
    try:
        return BootstrapConfig.from_env()
    except ValidationError as e:
        raise InvalidArgumentError(f"Invalid configuration: {e}") from e


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """Main entry point for CLI.

    Raises:
        SystemExit: Always exits with appropriate code
    """
    setup_logging()
    report = ReportCollector()

    try:
        config = load_config()
        setup_logging(config.logging.level, config.logging.json_output)
        args = parse_args(argv)
        if args.verbose:
            setup_logging("DEBUG", config.logging.json_output)

        state = desired_state_from_args(args)
        caps = probe(os_release=config.paths.os_release)
        applier = HostApplier(state, caps, paths=config.paths)
        Orchestrator(applier, report).run()

        print(f"\n{report.summary()}")
        print(
            "\nAll done. Please test SSH access with your non-root user "
            "before closing the current session."
        )
        sys.exit(0)

    except KeyboardInterrupt:
        logger.error("interrupted")
        sys.exit(130)

    except BootstrapError as e:
        logger.error(str(e))
        if report.results:
            print(f"\n{report.summary()}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
