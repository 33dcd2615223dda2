"""Pseudo-terminal process handles for panel sessions."""

import os
import select
import shlex
import shutil
import signal
import struct
import sys
import threading
from pathlib import Path

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from error_handler import handle_spawn_error
from logging_config import get_logger
from models import TerminalConfig

logger = get_logger(__name__)

# Grace period before a process that ignored SIGHUP is killed outright
FORCE_KILL_DELAY_MS = 2000
READ_CHUNK = 4096


def which(cmd: str, path: str | None = None) -> str | None:
    """Find command in PATH."""
    return shutil.which(cmd, path=path)


def default_shell() -> str:
    """Platform default interactive shell."""
    if sys.platform.startswith("win"):
        return os.environ.get("COMSPEC") or "cmd.exe"
    return os.environ.get("SHELL") or "/bin/bash"


def build_environment(config_env: dict[str, str]) -> dict[str, str]:
    """Child environment: inherited env, config overrides, forced terminal settings."""
    env = {k: v for k, v in os.environ.items() if v is not None}
    env.update(config_env)
    env.update({
        "TERM": "xterm-256color",
        "COLORTERM": "truecolor",
        "FORCE_COLOR": "1",
    })
    # Interactive tools downgrade their UI when they think they run in CI
    env.pop("CI", None)
    return env


def _set_winsize(fd: int, cols: int, rows: int):
    import fcntl
    import termios

    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


class PtyProcess(QObject):
    """One child process attached to its own pseudo-terminal."""

    data_received = Signal(str, object)  # session_id, raw output bytes
    exited = Signal(str, int)  # session_id, exit code

    def __init__(self, session_id: str, argv: list[str], cwd: Path, env: dict[str, str],
                 cols: int = 80, rows: int = 24, parent=None):
        super().__init__(parent)
        self.session_id = session_id
        self.argv = argv
        self.cwd = cwd
        self.env = env
        self.cols = cols
        self.rows = rows
        self.pid: int | None = None
        self.master_fd: int | None = None
        self.exit_code: int | None = None
        self._running = False
        self._reader: threading.Thread | None = None

    @property
    def alive(self) -> bool:
        return self.pid is not None and self.exit_code is None

    def start(self):
        """Fork the child. Raises OSError if the pty cannot be created."""
        import pty

        pid, fd = pty.fork()
        if pid == 0:  # Child process
            try:
                _set_winsize(0, self.cols, self.rows)
                os.chdir(self.cwd)
                os.execvpe(self.argv[0], self.argv, self.env)
            except BaseException as e:
                os.write(2, f"Error starting terminal: {e}\r\n".encode("utf-8", errors="replace"))
            finally:
                os._exit(127)

        self.pid = pid
        self.master_fd = fd
        self._running = True
        self._reader = threading.Thread(target=self._read_pty, name=f"pty-{self.session_id}")
        self._reader.daemon = True
        self._reader.start()
        logger.debug(f"Spawned {self.argv[0]} (pid {pid}) for {self.session_id}", extra={"session_id": self.session_id})

    def _read_pty(self):
        """Read from the pty until the child goes away, then reap it."""
        fd = self.master_fd
        while self._running:
            try:
                r, _, _ = select.select([fd], [], [], 0.1)
                if r:
                    data = os.read(fd, READ_CHUNK)
                    if not data:
                        break
                    self.data_received.emit(self.session_id, data)
            except OSError:
                # EIO on Linux once the child side is closed
                break

        code = self._reap()
        try:
            os.close(fd)
        except OSError:
            pass
        self.master_fd = None
        if code is not None:
            self.exited.emit(self.session_id, code)

    def _reap(self) -> int | None:
        try:
            _, status = os.waitpid(self.pid, 0)
        except ChildProcessError:
            return self.exit_code
        self.exit_code = os.waitstatus_to_exitcode(status)
        return self.exit_code

    def write(self, data: str | bytes):
        if self.master_fd is None:
            return
        payload = data.encode("utf-8", errors="replace") if isinstance(data, str) else data
        try:
            os.write(self.master_fd, payload)
        except OSError as e:
            logger.debug(f"Write to {self.session_id} failed: {e}")

    def resize(self, cols: int, rows: int):
        self.cols, self.rows = cols, rows
        if self.master_fd is None:
            return
        try:
            _set_winsize(self.master_fd, cols, rows)
        except OSError as e:
            logger.debug(f"Resize of {self.session_id} failed: {e}")

    def kill(self):
        """Hang up the child; escalate to SIGKILL if it is still around later."""
        if not self.alive:
            return
        try:
            os.kill(self.pid, signal.SIGHUP)
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"Kill of {self.session_id} ignored: {e}")
            return
        QTimer.singleShot(FORCE_KILL_DELAY_MS, self._force_kill)

    @Slot()
    def _force_kill(self):
        if not self.alive:
            return
        try:
            os.kill(self.pid, signal.SIGKILL)
        except (ProcessLookupError, OSError):
            pass


class PtyManager(QObject):
    """Owns the pseudo-terminal process of every session, keyed by session id."""

    data_received = Signal(str, object)
    exited = Signal(str, int)
    error = Signal(str, str)  # session_id, user-facing message

    def __init__(self, parent=None):
        super().__init__(parent)
        self._ptys: dict[str, PtyProcess] = {}
        # Killed handles stay referenced until their reader reports the exit
        self._retired: set[PtyProcess] = set()

    def spawn(self, session_id: str, config: TerminalConfig, cols: int, rows: int, cwd: Path) -> bool:
        """Start the session's process. Failures are reported, never raised."""
        self.kill(session_id)

        program = None
        try:
            env = build_environment(config.env)
            direct = config.direct_mode and bool(config.command)
            if direct:
                argv = config.command_line()
            else:
                argv = [config.shell or default_shell()]
            program = argv[0]

            resolved = which(program, path=env.get("PATH"))
            if resolved is None:
                raise FileNotFoundError(f"{program}: command not found")
            if not Path(cwd).is_dir():
                raise FileNotFoundError(f"working directory does not exist: {cwd}")
            argv = [resolved, *argv[1:]]

            proc = PtyProcess(session_id, argv, Path(cwd), env, cols, rows, parent=self)
            proc.data_received.connect(self.data_received)
            proc.exited.connect(self._on_exited)
            proc.start()
        except OSError as e:
            info = handle_spawn_error(e, session_id, program)
            self.error.emit(session_id, info.user_message)
            return False

        self._ptys[session_id] = proc
        if not direct and config.auto_run and config.command:
            proc.write("clear && " + shlex.join(config.command_line()) + "\r")
        return True

    @Slot(str, int)
    def _on_exited(self, session_id: str, code: int):
        proc = self.sender()
        self._retired.discard(proc)
        if self._ptys.get(session_id) is proc:
            del self._ptys[session_id]
        self.exited.emit(session_id, code)
        proc.deleteLater()

    def get(self, session_id: str) -> PtyProcess | None:
        return self._ptys.get(session_id)

    def write(self, session_id: str, data: str | bytes):
        proc = self.get(session_id)
        if proc:
            proc.write(data)

    def resize(self, session_id: str, cols: int, rows: int):
        proc = self.get(session_id)
        if proc:
            proc.resize(cols, rows)

    def kill(self, session_id: str):
        proc = self._ptys.pop(session_id, None)
        if proc is None:
            return
        if proc.alive:
            self._retired.add(proc)
        proc.kill()

    def kill_all(self):
        for session_id in list(self._ptys):
            self.kill(session_id)
