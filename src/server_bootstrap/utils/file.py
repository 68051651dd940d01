"""File management utilities."""

import os
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class FileManager:
    """Idempotent file writes that only touch disk when something differs."""

    def read_file(self, filepath: Path) -> str:
        """Read file content, empty string if the file is missing."""
        if not filepath.exists():
            return ""
        with open(filepath) as f:
            return f.read()

    def write_file(self, filepath: Path, content: str, mode: Optional[int] = None) -> bool:
        """Write content to file unless it already holds exactly that content.

        Args:
            filepath: Path to file
            content: Content to write
            mode: Permission bits to enforce

        Returns:
            True if the file was created or changed
        """
        changed = False
        if not filepath.is_file() or self.read_file(filepath) != content:
            with open(filepath, "w") as f:
                f.write(content)
            logger.debug("file_written", path=str(filepath))
            changed = True

        if mode is not None and self.set_mode(filepath, mode):
            changed = True

        return changed

    def ensure_dir(self, path: Path, mode: Optional[int] = None) -> bool:
        """Create directory if missing and enforce its mode.

        Returns:
            True if any change was made
        """
        changed = False
        if not path.is_dir():
            path.mkdir(parents=True, exist_ok=True)
            changed = True

        if mode is not None and self.set_mode(path, mode):
            changed = True

        return changed

    def set_mode(self, path: Path, mode: int) -> bool:
        """chmod if needed, returns True when the mode changed."""
        if (path.stat().st_mode & 0o7777) == mode:
            return False
        os.chmod(path, mode)
        return True

    def set_owner(self, path: Path, uid: int, gid: int) -> bool:
        """chown if needed, returns True when ownership changed."""
        st = path.stat()
        if st.st_uid == uid and st.st_gid == gid:
            return False
        os.chown(path, uid, gid)
        return True

    def ensure_symlink(self, link: Path, target: Path) -> bool:
        """Point link at target, replacing whatever is there.

        Returns:
            True if the link was created or replaced
        """
        if link.is_symlink() and Path(os.readlink(link)) == target:
            return False

        tmp = link.with_name(f".{link.name}.tmp")
        if tmp.is_symlink() or tmp.exists():
            tmp.unlink()
        os.symlink(target, tmp)
        os.replace(tmp, link)
        return True

    def stage_file(self, filepath: Path, content: str) -> Path:
        """Write content to a hidden sibling of filepath, keeping filepath's mode.

        Returns:
            Path of the staged copy, to be passed to commit_file or discard_file
        """
        staged = filepath.with_name(f".{filepath.name}.new")
        with open(staged, "w") as f:
            f.write(content)
        if filepath.exists():
            os.chmod(staged, filepath.stat().st_mode & 0o7777)
        return staged

    def commit_file(self, staged: Path, filepath: Path) -> None:
        """Atomically move a staged copy over filepath."""
        os.replace(staged, filepath)
        logger.debug("file_written", path=str(filepath))

    def discard_file(self, staged: Path) -> None:
        staged.unlink(missing_ok=True)
