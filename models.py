"""Data models for the Agent Panel core."""

from dataclasses import dataclass, field
from pathlib import Path

# Muted but distinct accent colors, one per workspace folder
WORKSPACE_ACCENT_COLORS = (
    "#6b9ac4",  # Muted blue
    "#82b366",  # Muted green
    "#c4a46b",  # Muted gold
    "#b36b82",  # Muted rose
    "#9b82b3",  # Muted purple
    "#6bc4b3",  # Muted teal
    "#c47a6b",  # Muted coral
    "#7a8c9e",  # Muted steel
)


def accent_color_for(folder_index: int | None) -> str | None:
    """Accent color for a workspace folder index, None for single-root workspaces."""
    if folder_index is None:
        return None
    return WORKSPACE_ACCENT_COLORS[folder_index % len(WORKSPACE_ACCENT_COLORS)]


@dataclass(frozen=True)
class TerminalConfig:
    """Snapshot of the settings a process is spawned with."""

    command: str = "claude"
    args: tuple[str, ...] = ()
    auto_run: bool = True
    shell: str = ""  # empty means platform default
    env: dict[str, str] = field(default_factory=dict)
    direct_mode: bool = True

    def command_line(self) -> list[str]:
        return [self.command, *self.args]


@dataclass
class Session:
    """One interactive process shown as a tab in the panel."""

    id: str
    name: str
    is_active: bool = False
    folder_index: int | None = None
    waiting_for_input: bool = False
    cwd: Path | None = None
    cols: int = 80
    rows: int = 24
    config: TerminalConfig | None = None

    def summary(self) -> dict:
        """Tab information sent to the display side."""
        info = {
            "id": self.id,
            "name": self.name,
            "isActive": self.is_active,
            "isWaitingForInput": self.waiting_for_input,
        }
        color = accent_color_for(self.folder_index)
        if color is not None:
            info["accentColor"] = color
        return info


@dataclass
class CommandFlag:
    """A flag harvested from a program's help text."""

    flag: str  # long form, or the short form when there is no long form
    short_flag: str | None = None
    description: str = ""
    takes_value: bool = False
    value_hint: str | None = None


@dataclass
class ParsedHelp:
    """Result of introspecting a program's help output."""

    command: str
    flags: list[CommandFlag] = field(default_factory=list)
    subcommands: list[str] = field(default_factory=list)
    parse_errors: list[str] = field(default_factory=list)
