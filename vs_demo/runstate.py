"""
Run-state file: every identifier a run produces, as KEY=value lines.

The file is sourceable by a shell and grouped in `# <Section>` blocks. Each
phase appends the ids it produced; later phases read them back instead of
rediscovering them. A section can be replaced on re-run.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .config import load_env_file
from .exceptions import ConfigurationError


class RunState:
    """Append-only KEY=value record of produced identifiers."""

    def __init__(self, path, network: Optional[str] = None):
        self.path = Path(path)
        self.network = network

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Dict[str, str]:
        """All recorded values; later lines win."""
        if not self.path.exists():
            return {}
        return load_env_file(self.path)

    def get(self, key: str) -> Optional[str]:
        return self.load().get(key) or None

    def require(self, key: str) -> str:
        value = self.get(key)
        if not value:
            raise ConfigurationError(f"{key} is required (check {self.path})")
        return value

    def _header(self) -> List[str]:
        generated = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        lines = ["# VS Demo - Resource IDs", f"# Generated: {generated}"]
        if self.network:
            lines.append(f"# Network: {self.network}")
        return lines

    @staticmethod
    def _format(title: str, values: Mapping[str, object]) -> List[str]:
        lines = ["", f"# {title}"]
        for key, value in values.items():
            text = "" if value is None else str(value)
            if not text:
                raise ValueError(f"Refusing to record empty value for {key}")
            lines.append(f"{key}={text}")
        return lines

    def append_section(self, title: str, values: Mapping[str, object]) -> None:
        """Append a `# title` block. Empty values are refused."""
        lines = self._format(title, values)
        if not self.path.exists():
            lines = self._header() + lines
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write("\n".join(lines) + "\n")

    def append(self, values: Mapping[str, object]) -> None:
        """Append values to the last section."""
        lines = self._format("", values)[2:]
        with open(self.path, "a") as f:
            f.write("\n".join(lines) + "\n")

    def replace_section(self, title: str, values: Mapping[str, object]) -> None:
        """Drop any previous `# title` block, then append a fresh one."""
        new_lines = self._format(title, values)
        if self.path.exists():
            kept = _without_section(self.path.read_text().splitlines(), title)
            self.path.write_text("\n".join(kept).rstrip("\n") + "\n")
        else:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            if not self.path.stat().st_size:
                f.write("\n".join(self._header()) + "\n")
            f.write("\n".join(new_lines) + "\n")

    def sections(self) -> Dict[str, Dict[str, str]]:
        """Values grouped by section title."""
        result: Dict[str, Dict[str, str]] = {}
        current = ""
        if not self.path.exists():
            return result
        for line in self.path.read_text().splitlines():
            stripped = line.strip()
            if stripped.startswith("# ") and "=" not in stripped:
                current = stripped[2:]
            elif "=" in stripped and not stripped.startswith("#"):
                key, _, value = stripped.partition("=")
                result.setdefault(current, {})[key] = value
        return result


def _without_section(lines: List[str], title: str) -> List[str]:
    """Remove the `# title` line through the next blank line."""
    kept, skipping = [], False
    for line in lines:
        if line.strip() == f"# {title}":
            skipping = True
            # drop the blank separator written before the section
            if kept and not kept[-1].strip():
                kept.pop()
            continue
        if skipping:
            if not line.strip():
                skipping = False
                kept.append(line)
            continue
        kept.append(line)
    return kept
