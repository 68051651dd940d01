"""Line-preserving model of sshd_config for idempotent directive upserts."""

import re
from typing import Dict, List, NamedTuple, Optional


class ConfigLine(NamedTuple):
    """One physical line of sshd_config."""

    text: str
    key: Optional[str] = None  # lower-cased directive name, commented or not
    active: bool = False


_DIRECTIVE_RE = re.compile(r"^(#?)\s*([A-Za-z][A-Za-z0-9]*)(?:\s|=|$)")


def parse_line(text: str) -> ConfigLine:
    """Classify a line as a directive (possibly commented out) or other text."""
    m = _DIRECTIVE_RE.match(text)
    if not m:
        return ConfigLine(text)
    return ConfigLine(text, m.group(2).lower(), not m.group(1))


class SSHDConfigModel:
    """Ordered list of sshd_config lines with find-or-insert by directive.

    Only the global section is edited: lines from the first ``Match`` block on
    are left alone, and appended directives go in front of it.
    """

    def __init__(self, content: str = "") -> None:
        self.trailing_newline = content.endswith("\n") or not content
        self.lines: List[ConfigLine] = [parse_line(t) for t in content.splitlines()]

    def _global_end(self) -> int:
        for i, line in enumerate(self.lines):
            if line.active and line.key == "match":
                return i
        return len(self.lines)

    def get(self, directive: str) -> Optional[str]:
        """Value of the first active directive in the global section."""
        key = directive.lower()
        for line in self.lines[: self._global_end()]:
            if line.active and line.key == key:
                parts = re.split(r"[\s=]+", line.text.strip(), maxsplit=1)
                return parts[1] if len(parts) > 1 else ""
        return None

    def upsert(self, directive: str, value: str) -> None:
        """Set directive to value.

        The first matching line, commented or not, becomes the active one;
        later active duplicates are commented out; with no match the
        directive is appended to the global section.
        """
        key = directive.lower()
        wanted = f"{directive} {value}"
        end = self._global_end()

        found = False
        for i in range(end):
            line = self.lines[i]
            if line.key != key:
                continue
            if not found:
                self.lines[i] = parse_line(wanted)
                found = True
            elif line.active:
                self.lines[i] = parse_line(f"#{line.text}")

        if not found:
            self.lines.insert(end, parse_line(wanted))

    def apply(self, settings: Dict[str, str]) -> None:
        """Upsert every directive in settings, in order."""
        for directive, value in settings.items():
            self.upsert(directive, value)

    def render(self) -> str:
        """Serialize back to file content."""
        text = "\n".join(line.text for line in self.lines)
        if self.lines and self.trailing_newline:
            text += "\n"
        return text
