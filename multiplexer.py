"""Session multiplexer: many interactive processes behind one panel."""

import dataclasses
import time
import uuid
from pathlib import Path

from PySide6.QtCore import QObject, Signal, Slot

from config import (
    default_config,
    get_notification_delay,
    get_prompt_patterns,
    get_workspace_folders,
    terminal_config_from,
)
from error_handler import handle_process_exit
from logging_config import get_logger
from models import Session, TerminalConfig, accent_color_for
from prompt_detector import PromptDetector
from pty_manager import PtyManager
from workspace import WorkspaceResolver

logger = get_logger(__name__)

# Exit reports for a session are dropped this long after a restart kills it
RESTART_GRACE_SECONDS = 0.1
DEFAULT_COLS = 80
DEFAULT_ROWS = 24


def generate_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"


class SessionMultiplexer(QObject):
    """Owns every session of one panel and decides which one is visible.

    Exactly one session is active whenever at least one exists. Output from
    each process goes to the display (``output``) and to the prompt detector;
    detector transitions come back out as ``notification``.
    """

    output = Signal(str, object)  # session_id, raw bytes
    cleared = Signal(str)
    sessions_updated = Signal(object)  # list of tab summaries
    session_created = Signal(str, str, object)  # id, name, accent color or None
    session_switched = Signal(str)
    session_removed = Signal(str)
    notification = Signal(str, bool)
    folder_choice_requested = Signal(int, object)  # request id, list of folder paths

    def __init__(
        self,
        settings: dict | None = None,
        pty_manager: PtyManager | None = None,
        detector: PromptDetector | None = None,
        resolver: WorkspaceResolver | None = None,
        parent=None,
    ):
        super().__init__(parent)
        self.pty_manager = pty_manager or PtyManager(self)
        self.detector = detector or PromptDetector(parent=self)
        self.resolver = resolver or WorkspaceResolver()
        self.restart_grace = RESTART_GRACE_SECONDS

        self._sessions: dict[str, Session] = {}
        self._active_id: str | None = None
        self._counter = 0
        self._cols = DEFAULT_COLS
        self._rows = DEFAULT_ROWS
        self._restart_deadlines: dict[str, float] = {}
        # Creations waiting on a folder choice, by request id
        self._pending_choices: dict[int, dict] = {}
        self._choice_counter = 0
        self._disposed = False

        self.update_config(settings if settings is not None else default_config())

        self.pty_manager.data_received.connect(self._on_data)
        self.pty_manager.exited.connect(self._on_exit)
        self.pty_manager.error.connect(self._on_spawn_error)
        self.detector.notification_changed.connect(self._on_notification)

    # -- queries -------------------------------------------------------

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[Session]:
        """Sessions in creation order."""
        return list(self._sessions.values())

    def summaries(self) -> list[dict]:
        return [s.summary() for s in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)

    # -- configuration -------------------------------------------------

    def update_config(self, settings: dict):
        """Use new settings for future spawns; running processes keep theirs."""
        self.settings = settings
        self.terminal_config = terminal_config_from(settings)
        self.detector.set_patterns(get_prompt_patterns(settings))
        self.detector.set_delay(get_notification_delay(settings))
        self.resolver.set_folders(get_workspace_folders(settings))
        logger.debug(f"Configuration applied: command {self.terminal_config.command!r}, "
                     f"{len(self.resolver.folders)} workspace folder(s)")

    # -- lifecycle -----------------------------------------------------

    def create_session(
        self,
        config: TerminalConfig | None = None,
        cols: int | None = None,
        rows: int | None = None,
        cwd: Path | str | None = None,
        folder_index: int | None = None,
    ) -> str:
        """Create, activate and spawn a new session; returns its id.

        With several workspace roots and no ``cwd``, ``folder_index`` picks the
        root; a missing or invalid index means the first one.
        """
        config = config or self.terminal_config
        cols = cols or self._cols
        rows = rows or self._rows
        resolved = self.resolver.resolve(cwd, folder_index)

        self._counter += 1
        session = Session(
            id=generate_session_id(),
            name=f"Agent {self._counter}",
            folder_index=resolved.folder_index,
            cwd=resolved.path,
            cols=cols,
            rows=rows,
            config=config,
        )
        self._sessions[session.id] = session
        self.detector.add_session(session.id)
        self._activate(session.id)
        logger.info(f"Created {session.name} ({session.id}) in {session.cwd}", extra={"session_id": session.id})

        self.session_created.emit(session.id, session.name, accent_color_for(session.folder_index))
        self.pty_manager.spawn(session.id, config, cols, rows, session.cwd)
        self._publish()
        return session.id

    def request_session(
        self,
        config: TerminalConfig | None = None,
        cols: int | None = None,
        rows: int | None = None,
    ) -> str | None:
        """Create a session, first asking for a folder when several roots exist.

        Returns the new id, or None when creation waits on ``choose_folder``.
        """
        if not self.resolver.needs_choice():
            return self.create_session(config, cols, rows)

        self._choice_counter += 1
        request_id = self._choice_counter
        self._pending_choices[request_id] = {"config": config, "cols": cols, "rows": rows}
        logger.debug(f"Waiting for a folder choice (request {request_id})")
        self.folder_choice_requested.emit(request_id, [str(f) for f in self.resolver.folders])
        return None

    def choose_folder(self, request_id: int, folder_index: int | None) -> str | None:
        """Finish a pending creation; None for ``folder_index`` means dismissed."""
        pending = self._pending_choices.pop(request_id, None)
        if pending is None or self._disposed:
            logger.debug(f"Ignoring folder choice for unknown request {request_id}")
            return None
        return self.create_session(**pending, folder_index=folder_index)

    def create_session_with_command(self, command: str, args: list[str] | None = None, **kwargs) -> str | None:
        """Create a session running ``command`` instead of the configured program."""
        config = dataclasses.replace(self.terminal_config, command=command, args=tuple(args or ()))
        return self.request_session(config, **kwargs)

    def close_session(self, session_id: str):
        """Kill and remove a session; the panel never ends up empty."""
        session = self._sessions.get(session_id)
        if session is None:
            return

        self.pty_manager.kill(session_id)
        self.detector.remove_session(session_id)
        self._restart_deadlines.pop(session_id, None)
        del self._sessions[session_id]
        logger.info(f"Closed {session.name} ({session_id})")
        self.session_removed.emit(session_id)

        if session.is_active:
            self._active_id = None
            if self._sessions:
                newest = next(reversed(self._sessions))
                self._activate(newest)
                self.session_switched.emit(newest)
            elif not self._disposed:
                self.create_session()
                return
        self._publish()

    def close_active_session(self):
        if self._active_id is not None:
            self.close_session(self._active_id)

    def restart(self, session_id: str | None = None):
        """Respawn a session's process with the current configuration."""
        session_id = session_id or self._active_id
        session = self._sessions.get(session_id) if session_id else None
        if session is None:
            return

        self.cleared.emit(session_id)
        # The kill below races with the old process's exit report
        self._restart_deadlines[session_id] = time.monotonic() + self.restart_grace
        self.pty_manager.kill(session_id)

        self.detector.remove_session(session_id)
        self.detector.add_session(session_id)
        if session.waiting_for_input:
            session.waiting_for_input = False
            self.notification.emit(session_id, False)

        session.config = self.terminal_config
        logger.info(f"Restarting {session.name} ({session_id})")
        self.pty_manager.spawn(session_id, session.config, session.cols, session.rows, session.cwd)
        self._publish()

    def clear(self, session_id: str | None = None):
        session_id = session_id or self._active_id
        if session_id in self._sessions:
            self.cleared.emit(session_id)

    def dispose(self):
        """Kill every process; later events are ignored."""
        self._disposed = True
        self._pending_choices.clear()
        self.pty_manager.kill_all()
        self.detector.clear()
        self._sessions.clear()
        self._active_id = None

    # -- navigation ----------------------------------------------------

    def switch_to(self, session_id: str):
        if session_id not in self._sessions or session_id == self._active_id:
            return
        self._activate(session_id)
        self.session_switched.emit(session_id)
        self._publish()

    def next(self):
        self._step(1)

    def previous(self):
        self._step(-1)

    def _step(self, offset: int):
        ids = list(self._sessions)
        if len(ids) <= 1:
            return
        current = ids.index(self._active_id) if self._active_id in self._sessions else 0
        self.switch_to(ids[(current + offset) % len(ids)])

    def _activate(self, session_id: str):
        previous = self._sessions.get(self._active_id) if self._active_id else None
        if previous is not None and previous.id != session_id:
            previous.is_active = False
        self._sessions[session_id].is_active = True
        self._active_id = session_id

    # -- routing -------------------------------------------------------

    def handle_ready(self, cols: int | None = None, rows: int | None = None):
        """Display is up: start the first session or re-send current state."""
        self._cols = cols or self._cols
        self._rows = rows or self._rows
        if not self._sessions:
            if self._pending_choices:
                # The display reloaded while a folder choice was open
                folders = [str(f) for f in self.resolver.folders]
                for request_id in self._pending_choices:
                    self.folder_choice_requested.emit(request_id, folders)
            else:
                self.request_session(cols=self._cols, rows=self._rows)
            return
        self._publish()
        if self._active_id:
            self.session_switched.emit(self._active_id)

    def write_input(self, session_id: str, data: str | bytes):
        if session_id not in self._sessions:
            return
        # A keystroke means the user is already answering
        self.detector.on_input(session_id)
        self.pty_manager.write(session_id, data)

    def resize(self, session_id: str, cols: int, rows: int):
        session = self._sessions.get(session_id)
        if session is None or cols <= 0 or rows <= 0:
            return
        session.cols, session.rows = cols, rows
        self._cols, self._rows = cols, rows
        self.pty_manager.resize(session_id, cols, rows)

    def _publish(self):
        self.sessions_updated.emit(self.summaries())

    @Slot(str, object)
    def _on_data(self, session_id: str, data: bytes):
        if self._disposed or session_id not in self._sessions:
            return
        self.output.emit(session_id, data)
        self.detector.on_output(session_id, data)

    @Slot(str, int)
    def _on_exit(self, session_id: str, exit_code: int):
        if self._disposed or session_id not in self._sessions:
            return
        deadline = self._restart_deadlines.get(session_id)
        if deadline is not None:
            if time.monotonic() < deadline:
                logger.debug(f"Suppressed exit report for restarted session {session_id}")
                return
            del self._restart_deadlines[session_id]
        info = handle_process_exit(session_id, exit_code)
        self.output.emit(session_id, f"\r\n{info.user_message}\r\n".encode("utf-8"))

    @Slot(str, str)
    def _on_spawn_error(self, session_id: str, message: str):
        if session_id not in self._sessions:
            return
        self.output.emit(session_id, f"\r\n{message}\r\n".encode("utf-8"))

    @Slot(str, bool)
    def _on_notification(self, session_id: str, show: bool):
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.waiting_for_input = show
        self.notification.emit(session_id, show)
        self._publish()
