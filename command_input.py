"""Flag suggestions for a command line being typed."""

from dataclasses import dataclass, field
from typing import Callable

from help_executor import HelpExecutor
from models import CommandFlag, ParsedHelp


@dataclass
class ParsedInput:
    command: str
    existing_args: list[str]
    partial: str  # flag currently being typed, if any


@dataclass
class CommandInputResult:
    command: str
    args: list[str] = field(default_factory=list)
    cancelled: bool = False


def parse_input(value: str) -> ParsedInput:
    """Split typed text into command, completed args and a partial flag."""
    parts = value.split()
    command = parts[0] if parts else ""
    args = parts[1:]
    last = args[-1] if args else ""
    is_partial = last.startswith("-") and "=" not in last and not value.endswith(" ")
    return ParsedInput(
        command=command,
        existing_args=args[:-1] if is_partial else args,
        partial=last if is_partial else "",
    )


def filter_flags(flags: list[CommandFlag], partial: str, existing_args: list[str]) -> list[CommandFlag]:
    """Flags not used yet that match what is being typed."""
    used = {a.split("=", 1)[0] for a in existing_args if a.startswith("-")}
    lower = partial.lower()
    result = []
    for f in flags:
        if f.flag in used or (f.short_flag and f.short_flag in used):
            continue
        if lower and lower not in f.flag.lower() and lower not in (f.short_flag or "").lower():
            continue
        result.append(f)
    return result


def apply_flag(value: str, flag: CommandFlag) -> str:
    """Replace the partial flag with ``flag``; ``=`` follows flags that take a value."""
    parts = value.split()
    if len(parts) > 1 and parts[-1].startswith("-") and "=" not in parts[-1] and not value.endswith(" "):
        parts.pop()
    new_value = " ".join(parts)
    new_value = new_value + (" " if new_value else "") + flag.flag
    return new_value + ("=" if flag.takes_value else " ")


def to_result(value: str) -> CommandInputResult:
    """Final command line as program plus argument list; blank means cancelled."""
    parts = value.split()
    if not parts:
        return CommandInputResult(command="", cancelled=True)
    return CommandInputResult(command=parts[0], args=parts[1:])


def format_label(flag: CommandFlag) -> str:
    label = f"{flag.short_flag}, {flag.flag}" if flag.short_flag else flag.flag
    return label + (f" {flag.value_hint}" if flag.value_hint else "")


class CommandInput:
    """State behind a flag-suggestion box.

    Help is fetched only when the command token changes: straight from the
    executor's cache when it is fresh, debounced otherwise. Typing further
    arguments just re-filters the flags already known.
    """

    def __init__(self, executor: HelpExecutor, on_suggestions: Callable[[list[CommandFlag]], None],
                 debounce_key: str = "command-input"):
        self.executor = executor
        self.on_suggestions = on_suggestions
        self.debounce_key = debounce_key
        self.value = ""
        self.current_command = ""
        self.help: ParsedHelp | None = None
        self.busy = False

    @property
    def available_flags(self) -> list[CommandFlag]:
        return self.help.flags if self.help is not None else []

    def set_value(self, value: str):
        self.value = value
        parsed = parse_input(value)
        if not parsed.command:
            # Cleared input withdraws the last suggestions
            self.current_command = ""
            self.help = None
            self.busy = False
            self._publish()
        elif parsed.command != self.current_command:
            self.current_command = parsed.command
            self.help = None
            cached = self.executor.cached(parsed.command)
            if cached is not None:
                self._on_help(cached)
                return
            self.busy = True
            self.executor.get_debounced_help(parsed.command, self._on_help, key=self.debounce_key)
        else:
            self._publish()

    def select(self, flag: CommandFlag):
        self.set_value(apply_flag(self.value, flag))

    def find_flag(self, name: str) -> CommandFlag | None:
        """Known flag by its long or short form."""
        for f in self.available_flags:
            if name in (f.flag, f.short_flag):
                return f
        return None

    def suggestions(self) -> list[CommandFlag]:
        parsed = parse_input(self.value)
        return filter_flags(self.available_flags, parsed.partial, parsed.existing_args)

    def _on_help(self, result: ParsedHelp):
        if result.command != self.current_command:
            return
        self.help = result
        self.busy = False
        self._publish()

    def _publish(self):
        self.on_suggestions(self.suggestions())
