"""Utility modules for Server Bootstrap."""

from server_bootstrap.utils.command import CommandExecutor
from server_bootstrap.utils.file import FileManager

__all__ = ["CommandExecutor", "FileManager"]
