"""Message contract between the panel core and its display.

``RoutingSurface`` turns multiplexer signals into outbound message dicts and
dispatches inbound message dicts to the multiplexer. ``StdioBridge`` carries
those messages as JSON lines over stdin/stdout, with terminal output bytes
base64-encoded so escape sequences survive the trip.

Some requests need an answer from the user before the core can act on them:
``chooseFolder`` is answered by ``folderChosen`` and ``promptCommand`` by
``commandChosen``.
"""

import base64
import json
import sys
import threading
from typing import Callable, TextIO

from PySide6.QtCore import QObject, Signal, Slot

from command_input import CommandInput, format_label, to_result
from error_handler import ErrorInfo, ErrorSeverity
from help_executor import HelpExecutor
from logging_config import get_logger
from models import CommandFlag, ParsedHelp
from multiplexer import SessionMultiplexer

logger = get_logger(__name__)


def help_result_message(result: ParsedHelp, flags: list[CommandFlag] | None = None) -> dict:
    """``helpResult`` for ``result``; ``flags`` narrows the flags shown."""
    return {
        "type": "helpResult",
        "command": result.command,
        "flags": [
            {
                "flag": f.flag,
                "shortFlag": f.short_flag,
                "description": f.description,
                "takesValue": f.takes_value,
                "valueHint": f.value_hint,
                "label": format_label(f),
            }
            for f in (result.flags if flags is None else flags)
        ],
        "subcommands": result.subcommands,
        "parseErrors": result.parse_errors,
    }


class RoutingSurface(QObject):
    """Serializes core events to messages and routes messages to the core."""

    outbound = Signal(object)  # message dict
    _error_reported = Signal(object)  # ErrorInfo, possibly from a worker thread

    def __init__(
        self,
        multiplexer: SessionMultiplexer,
        help_executor: HelpExecutor | None = None,
        parent=None,
    ):
        super().__init__(parent)
        self.multiplexer = multiplexer
        self.help_executor = help_executor
        self.command_input = None
        if help_executor is not None:
            self.command_input = CommandInput(help_executor, self._on_suggestions, debounce_key="routing")

        multiplexer.output.connect(self._on_output)
        multiplexer.cleared.connect(lambda sid: self._send({"type": "clear", "id": sid}))
        multiplexer.sessions_updated.connect(lambda tabs: self._send({"type": "sessionsUpdate", "sessions": tabs}))
        multiplexer.session_created.connect(self._on_created)
        multiplexer.session_switched.connect(lambda sid: self._send({"type": "sessionSwitched", "id": sid}))
        multiplexer.session_removed.connect(lambda sid: self._send({"type": "sessionRemoved", "id": sid}))
        multiplexer.notification.connect(
            lambda sid, show: self._send({"type": "notification", "id": sid, "show": show})
        )
        multiplexer.folder_choice_requested.connect(
            lambda rid, folders: self._send({"type": "chooseFolder", "requestId": rid, "folders": folders})
        )
        self._error_reported.connect(self._on_error_reported)

        self._handlers: dict[str, Callable[[dict], None]] = {
            "ready": self._handle_ready,
            "input": self._handle_input,
            "resize": self._handle_resize,
            "newSession": lambda msg: self.multiplexer.request_session(),
            "folderChosen": self._handle_folder_chosen,
            "newSessionWithCommand": self._handle_new_with_command,
            "commandChosen": lambda msg: self._start_command(msg.get("command") or ""),
            "closeSession": lambda msg: self.multiplexer.close_session(str(msg["id"])),
            "switchSession": lambda msg: self.multiplexer.switch_to(str(msg["id"])),
            "closeActiveSession": lambda msg: self.multiplexer.close_active_session(),
            "nextSession": lambda msg: self.multiplexer.next(),
            "previousSession": lambda msg: self.multiplexer.previous(),
            "restart": lambda msg: self.multiplexer.restart(msg.get("id")),
            "clear": lambda msg: self.multiplexer.clear(msg.get("id")),
            "helpQuery": self._handle_help_query,
            "selectFlag": self._handle_select_flag,
        }

    def dispatch(self, message: dict):
        """Route one inbound message; malformed ones are logged and dropped."""
        if not isinstance(message, dict):
            logger.warning(f"Ignoring non-object message: {message!r}")
            return
        handler = self._handlers.get(message.get("type"))
        if handler is None:
            logger.warning(f"Ignoring unknown message type: {message.get('type')!r}")
            return
        try:
            handler(message)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed {message.get('type')} message: {e}")

    def report_error(self, info: ErrorInfo):
        """Error handler listener: forwards errors and worse to the display."""
        if info.severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL):
            self._error_reported.emit(info)

    def _send(self, message: dict):
        self.outbound.emit(message)

    @Slot(str, object)
    def _on_output(self, session_id: str, data: bytes):
        self._send({"type": "output", "id": session_id, "data": data})

    def _on_created(self, session_id: str, name: str, accent_color):
        message = {"type": "sessionCreated", "id": session_id, "name": name}
        if accent_color:
            message["accentColor"] = accent_color
        self._send(message)

    @Slot(object)
    def _on_error_reported(self, info: ErrorInfo):
        message = {"type": "error", "category": info.category.value, "message": info.user_message}
        session_id = (info.context or {}).get("session_id")
        if session_id:
            message["id"] = session_id
        self._send(message)

    def _on_suggestions(self, flags: list[CommandFlag]):
        result = self.command_input.help or ParsedHelp(command=self.command_input.current_command)
        self._send(help_result_message(result, flags))

    def _handle_ready(self, msg: dict):
        self.multiplexer.handle_ready(int(msg.get("cols") or 80), int(msg.get("rows") or 24))

    def _handle_input(self, msg: dict):
        data = msg["data"]
        if data:
            self.multiplexer.write_input(str(msg["id"]), data)

    def _handle_resize(self, msg: dict):
        self.multiplexer.resize(str(msg["id"]), int(msg["cols"]), int(msg["rows"]))

    def _handle_folder_chosen(self, msg: dict):
        index = msg.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            # Dismissed
            index = None
        self.multiplexer.choose_folder(int(msg["requestId"]), index)

    def _handle_new_with_command(self, msg: dict):
        line = msg.get("command")
        if line is None:
            default = " ".join(self.multiplexer.terminal_config.command_line())
            self._send({"type": "promptCommand", "default": default})
            return
        self._start_command(str(line))

    def _start_command(self, line: str):
        result = to_result(str(line))
        if result.cancelled:
            logger.debug("New session with command cancelled")
            return
        self.multiplexer.create_session_with_command(result.command, result.args)

    def _handle_help_query(self, msg: dict):
        if self.command_input is None:
            return
        value = msg["value"] if "value" in msg else msg["command"]
        self.command_input.set_value(str(value))

    def _handle_select_flag(self, msg: dict):
        if self.command_input is None:
            return
        flag = self.command_input.find_flag(str(msg["flag"]))
        if flag is None:
            logger.debug(f"Ignoring unknown flag {msg['flag']!r}")
            return
        self.command_input.select(flag)
        self._send({"type": "commandValue", "value": self.command_input.value})


class StdinReader(QObject):
    """Reads JSON lines from a stream on a background thread."""

    message_received = Signal(object)
    closed = Signal()

    def __init__(self, stream: TextIO, parent=None):
        super().__init__(parent)
        self.stream = stream
        self._thread = threading.Thread(target=self._read, name="stdin-reader")
        self._thread.daemon = True

    def start(self):
        self._thread.start()

    def _read(self):
        for line in self.stream:
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except ValueError as e:
                logger.warning(f"Ignoring invalid JSON message: {e}")
                continue
            self.message_received.emit(message)
        self.closed.emit()


class StdioBridge(QObject):
    """JSON-lines transport for a RoutingSurface."""

    finished = Signal()  # input stream reached EOF

    def __init__(self, surface: RoutingSurface, stdin: TextIO | None = None,
                 stdout: TextIO | None = None, parent=None):
        super().__init__(parent)
        self.surface = surface
        self.stdout = stdout or sys.stdout
        self.reader = StdinReader(stdin or sys.stdin, self)
        self.reader.message_received.connect(self._on_message)
        self.reader.closed.connect(self._on_closed)
        surface.outbound.connect(self._on_outbound)

    def start(self):
        self.reader.start()

    @Slot(object)
    def _on_message(self, message):
        if isinstance(message, dict) and message.get("type") == "input" and message.get("encoding") == "base64":
            message = {**message, "data": base64.b64decode(message.get("data") or "")}
        self.surface.dispatch(message)

    @Slot(object)
    def _on_outbound(self, message: dict):
        if message.get("type") == "output":
            message = {**message, "data": base64.b64encode(message["data"]).decode("ascii"), "encoding": "base64"}
        self.stdout.write(json.dumps(message, ensure_ascii=False) + "\n")
        self.stdout.flush()

    @Slot()
    def _on_closed(self):
        logger.info("Input stream closed, shutting down")
        self.finished.emit()
