"""Detect sessions that are idle and waiting on terminal input.

Every output chunk and every keystroke of a session is fed in. When the
trailing lines of recent output look like a prompt, a single-shot timer is
armed; if no further output arrives before it fires, the session is flagged
as waiting. Any keystroke clears the flag at once.
"""

import codecs
import re
import time
from dataclasses import dataclass, field

from PySide6.QtCore import QObject, QTimer, Signal

from error_handler import handle_configuration_error
from logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DELAY_MS = 300
TAIL_LIMIT = 4096
MATCH_LINES = 6

BUILTIN_PATTERNS = [
    # Confirmation prompts
    r"\b(?:continue|proceed|confirm|overwrite|are you sure|do you want to)\b[^\n]*\?\s*$",
    # Yes/no prompts: (y/n), [Y/n], (yes/no)
    r"[\[(]\s*y(?:es)?\s*/\s*n(?:o)?\s*[\])]",
    # Interactive menus: highlighted entry and navigation hints
    r"^\s*(?:❯|›|▸|>)\s*\d*[.)]?\s+\S",
    r"↑/↓|\b(?:use arrow keys|enter to (?:select|confirm|submit)|esc to (?:cancel|exit))\b",
    # REPL-style prompts on an otherwise empty last line
    r"^\s*(?:>>>|\.\.\.|In \[\d+\]:|irb\([^)]*\)[^\n]*>|>|\$|%|#|❯)\s?$",
    # Tool-specific hint phrases
    r"\bpress (?:enter|return|any key)\b",
    r"\bwaiting for (?:your )?input\b",
    r"\b(?:password|passphrase)(?: for [^\n:]+)?:\s*$",
    r"\b(?:allow|approve|deny)\b[^\n]*\?",
]

_ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def clean_output(text: str) -> str:
    """Strip escape sequences and collapse carriage-return redraws."""
    text = _ANSI_RE.sub("", text)
    text = text.replace("\r\n", "\n")
    if "\r" in text:
        # Spinners redraw the same line; keep only the final frame of each line
        text = "\n".join(part.split("\r")[-1] for part in text.split("\n"))
    return _CONTROL_RE.sub("", text)


def compile_patterns(user_patterns: list[str] | None = None) -> list[re.Pattern]:
    """Built-in prompt patterns plus the valid user-supplied ones."""
    compiled = [re.compile(p, re.IGNORECASE | re.MULTILINE) for p in BUILTIN_PATTERNS]
    for pattern in user_patterns or []:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE | re.MULTILINE))
        except re.error as e:
            handle_configuration_error(e, config_key=f"prompt_patterns: {pattern}")
    return compiled


def trailing_window(tail: str, lines: int = MATCH_LINES) -> str:
    """Last few non-blank lines of the tail."""
    kept = [line for line in tail.split("\n") if line.strip()]
    return "\n".join(kept[-lines:])


@dataclass
class DetectorState:
    """Per-session detector bookkeeping."""

    timer: QTimer
    last_output_at: float = 0.0
    waiting: bool = False
    tail: str = ""
    decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace")
    )


class PromptDetector(QObject):
    """Per-session Idle/Waiting state machine driven by output and keystrokes."""

    notification_changed = Signal(str, bool)  # session_id, waiting

    def __init__(self, user_patterns: list[str] | None = None, delay_ms: int = DEFAULT_DELAY_MS, parent=None):
        super().__init__(parent)
        self.delay_ms = delay_ms
        self._patterns = compile_patterns(user_patterns)
        self._states: dict[str, DetectorState] = {}

    def set_patterns(self, user_patterns: list[str] | None):
        """Rebuild the pattern list; takes effect on the next output chunk."""
        self._patterns = compile_patterns(user_patterns)

    def set_delay(self, delay_ms: int):
        self.delay_ms = max(0, int(delay_ms))

    def add_session(self, session_id: str) -> DetectorState:
        state = self._states.get(session_id)
        if state is None:
            timer = QTimer(self)
            timer.setSingleShot(True)
            timer.timeout.connect(lambda sid=session_id: self._on_timeout(sid))
            state = DetectorState(timer=timer)
            self._states[session_id] = state
        return state

    def remove_session(self, session_id: str):
        state = self._states.pop(session_id, None)
        if state is not None:
            state.timer.stop()
            state.timer.deleteLater()

    def clear(self):
        for session_id in list(self._states):
            self.remove_session(session_id)

    def is_waiting(self, session_id: str) -> bool:
        state = self._states.get(session_id)
        return bool(state and state.waiting)

    def matches(self, text: str) -> bool:
        window = trailing_window(text)
        return any(p.search(window) for p in self._patterns)

    def on_output(self, session_id: str, data: str | bytes):
        state = self.add_session(session_id)
        if isinstance(data, bytes):
            data = state.decoder.decode(data)
        state.last_output_at = time.monotonic()
        state.tail = (state.tail + clean_output(data))[-TAIL_LIMIT:]

        state.timer.stop()
        if self.matches(state.tail):
            state.timer.start(self.delay_ms)

    def on_input(self, session_id: str):
        state = self._states.get(session_id)
        if state is None:
            return
        state.timer.stop()
        # The user answered; whatever prompt was on screen is stale now
        state.tail = ""
        if state.waiting:
            state.waiting = False
            self.notification_changed.emit(session_id, False)

    def _on_timeout(self, session_id: str):
        state = self._states.get(session_id)
        if state is None or state.waiting:
            return
        state.waiting = True
        logger.debug(f"Session {session_id} is waiting for input")
        self.notification_changed.emit(session_id, True)
