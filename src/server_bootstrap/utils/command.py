"""Command execution utilities."""

import os
import shutil
import subprocess
from typing import Mapping, Optional, Sequence

import structlog

from server_bootstrap.exceptions import CommandExecutionError
from server_bootstrap.types import CommandResult

logger = structlog.get_logger(__name__)


class CommandExecutor:
    """Execute system commands with proper error handling."""

    def __init__(self, timeout: Optional[int] = None) -> None:
        """Initialize command executor.

        Args:
            timeout: Per-command timeout in seconds, None waits indefinitely
        """
        self.timeout = timeout

    def execute(
        self,
        args: Sequence[str],
        check: bool = True,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """Execute a command without a shell.

        Args:
            args: Program and arguments
            check: Whether to raise exception on failure
            env: Extra environment variables layered over os.environ

        Returns:
            CommandResult with execution details

        Raises:
            CommandExecutionError: If command fails and check=True
        """
        cmd = " ".join(args)
        logger.debug("exec", cmd=cmd)

        run_env = None
        if env:
            run_env = dict(os.environ)
            run_env.update(env)

        try:
            result = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=run_env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            error_msg = f"Command timed out after {self.timeout}s: {cmd}"
            if check:
                raise CommandExecutionError(error_msg) from e
            return CommandResult(False, "", error_msg, -1)
        except OSError as e:
            error_msg = f"Command execution failed: {cmd}\nError: {e}"
            if check:
                raise CommandExecutionError(error_msg) from e
            return CommandResult(False, "", error_msg, -1)

        cmd_result = CommandResult(
            success=result.returncode == 0,
            stdout=result.stdout,
            stderr=result.stderr,
            return_code=result.returncode,
        )

        if check and not cmd_result.success:
            raise CommandExecutionError(
                f"Command failed: {cmd}\nError: {result.stderr.strip()}"
            )

        return cmd_result

    def check_command_available(self, command: str) -> bool:
        """Check if command is available on system."""
        return shutil.which(command) is not None
