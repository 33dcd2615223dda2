"""Tests for the routing surface and its JSON-lines bridge."""

import base64
import io
import json
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from error_handler import ErrorCategory, ErrorHandler
from models import WORKSPACE_ACCENT_COLORS, CommandFlag, ParsedHelp
from multiplexer import SessionMultiplexer
from prompt_detector import PromptDetector
from routing import RoutingSurface, StdioBridge, help_result_message

FLAGS = [
    CommandFlag(flag="--version", description="Show version"),
    CommandFlag(flag="--model", description="Model name", takes_value=True, value_hint="MODEL"),
]


@pytest.fixture
def mux(qapp, fake_pty, sample_config):
    mux = SessionMultiplexer(sample_config, pty_manager=fake_pty, detector=PromptDetector())
    yield mux
    mux.dispose()


@pytest.fixture
def executor():
    executor = Mock()
    executor.cached.return_value = None
    return executor


@pytest.fixture
def surface(mux, executor):
    # Same wiring as main(): multiplexer plus help executor, nothing else
    return RoutingSurface(mux, executor)


@pytest.fixture
def sent(surface):
    messages = []
    surface.outbound.connect(lambda message: messages.append(message))
    return messages


@pytest.fixture
def roots(temp_dir: Path, sample_config) -> list[Path]:
    folders = [temp_dir / "a", temp_dir / "b"]
    for folder in folders:
        folder.mkdir()
    sample_config["workspace_folders"] = [str(f) for f in folders]
    return folders


def _types(messages):
    return [m["type"] for m in messages]


def _deliver_help(executor, result):
    executor.get_debounced_help.call_args.args[1](result)


class TestDispatch:
    """Tests for inbound message routing."""

    def test_ready_starts_first_session(self, surface, sent, mux, fake_pty):
        """Test that the display's ready message creates the first session."""
        surface.dispatch({"type": "ready", "cols": 120, "rows": 40})

        assert len(mux) == 1
        assert fake_pty.spawned[0][2:4] == (120, 40)
        assert _types(sent) == ["sessionCreated", "sessionsUpdate"]
        assert sent[0]["name"] == "Agent 1"
        assert "accentColor" not in sent[0]

    def test_input_and_resize(self, surface, mux, fake_pty):
        sid = mux.create_session()

        surface.dispatch({"type": "input", "id": sid, "data": "y\r"})
        surface.dispatch({"type": "input", "id": sid, "data": ""})
        surface.dispatch({"type": "resize", "id": sid, "cols": 90, "rows": 20})

        assert fake_pty.writes == [(sid, "y\r")]
        assert fake_pty.resizes == [(sid, 90, 20)]

    def test_session_management_messages(self, surface, sent, mux):
        """Test new, switch, next, previous and close messages."""
        surface.dispatch({"type": "newSession"})
        surface.dispatch({"type": "newSession"})
        first, second = [s.id for s in mux.sessions()]

        surface.dispatch({"type": "switchSession", "id": first})
        assert mux.active_id == first
        surface.dispatch({"type": "nextSession"})
        assert mux.active_id == second
        surface.dispatch({"type": "previousSession"})
        assert mux.active_id == first

        surface.dispatch({"type": "closeSession", "id": second})
        assert {"type": "sessionRemoved", "id": second} in sent
        surface.dispatch({"type": "closeActiveSession"})

        assert len(mux) == 1
        assert mux.active_id not in (first, second)

    def test_restart_and_clear(self, surface, sent, mux, fake_pty):
        sid = mux.create_session()

        surface.dispatch({"type": "clear"})
        surface.dispatch({"type": "restart", "id": sid})

        assert sent.count({"type": "clear", "id": sid}) == 2
        assert len(fake_pty.spawned) == 2

    @pytest.mark.parametrize("message", [
        {"type": "bogus"},
        {"no": "type"},
        ["not", "a", "dict"],
        {"type": "resize", "id": "x", "cols": "wide", "rows": 1},
        {"type": "input"},
        {"type": "folderChosen", "index": 0},
        {"type": "selectFlag"},
    ])
    def test_bad_messages_ignored(self, surface, sent, mux, message):
        surface.dispatch(message)

        assert sent == []
        assert len(mux) == 0


class TestFolderChoice:
    """Tests for choosing a workspace root through the display."""

    def test_new_session_asks_for_folder(self, roots, surface, sent, mux, fake_pty):
        """Test that several roots produce a chooseFolder request and nothing else."""
        surface.dispatch({"type": "newSession"})

        assert len(mux) == 0
        assert fake_pty.spawned == []
        assert sent == [{"type": "chooseFolder", "requestId": 1, "folders": [str(f) for f in roots]}]

    def test_chosen_folder_creates_session(self, roots, surface, sent, mux, fake_pty):
        """Test that the answer creates the session in that root with its accent color."""
        surface.dispatch({"type": "newSession"})
        request_id = sent[-1]["requestId"]

        surface.dispatch({"type": "folderChosen", "requestId": request_id, "index": 1})

        assert fake_pty.spawned[-1][4] == roots[1]
        created = [m for m in sent if m["type"] == "sessionCreated"][0]
        assert created["accentColor"] == WORKSPACE_ACCENT_COLORS[1]
        assert mux.get(created["id"]).folder_index == 1

    @pytest.mark.parametrize("index", [None, 9, True])
    def test_dismissed_choice_uses_first_folder(self, roots, surface, sent, fake_pty, index):
        surface.dispatch({"type": "newSession"})
        surface.dispatch({"type": "folderChosen", "requestId": sent[-1]["requestId"], "index": index})

        assert fake_pty.spawned[-1][4] == roots[0]

    def test_answer_is_used_once(self, roots, surface, sent, mux):
        surface.dispatch({"type": "newSession"})
        answer = {"type": "folderChosen", "requestId": sent[-1]["requestId"], "index": 0}

        surface.dispatch(answer)
        surface.dispatch(answer)
        surface.dispatch({"type": "folderChosen", "requestId": 42, "index": 0})

        assert len(mux) == 1

    def test_ready_asks_and_reasks_after_reload(self, roots, surface, sent, mux):
        """Test that a reloaded display is asked again for the pending first session."""
        surface.dispatch({"type": "ready", "cols": 100, "rows": 30})
        surface.dispatch({"type": "ready", "cols": 100, "rows": 30})

        assert _types(sent) == ["chooseFolder", "chooseFolder"]
        assert sent[0]["requestId"] == sent[1]["requestId"]
        surface.dispatch({"type": "folderChosen", "requestId": sent[0]["requestId"], "index": 1})
        assert len(mux) == 1

    def test_command_session_asks_for_folder(self, roots, surface, sent, fake_pty):
        surface.dispatch({"type": "newSessionWithCommand", "command": "python3 -q"})
        surface.dispatch({"type": "folderChosen", "requestId": sent[-1]["requestId"], "index": 1})

        _, config, _, _, cwd = fake_pty.spawned[-1]
        assert config.command_line() == ["python3", "-q"]
        assert cwd == roots[1]


class TestCommandPrompt:
    """Tests for starting a session with an ad-hoc command."""

    def test_new_session_with_command(self, surface, fake_pty):
        surface.dispatch({"type": "newSessionWithCommand", "command": "python3 -q -X dev"})
        assert fake_pty.spawned[-1][1].command_line() == ["python3", "-q", "-X", "dev"]

    def test_prompt_then_answer(self, surface, sent, fake_pty):
        """Test that a bare request asks the display, and the answer starts the session."""
        surface.dispatch({"type": "newSessionWithCommand"})

        assert sent == [{"type": "promptCommand", "default": "sh -c echo hi"}]
        assert fake_pty.spawned == []

        surface.dispatch({"type": "commandChosen", "command": "aider --model gpt"})

        assert fake_pty.spawned[-1][1].command_line() == ["aider", "--model", "gpt"]

    @pytest.mark.parametrize("answer", [None, "", "   "])
    def test_cancelled_prompt(self, surface, fake_pty, answer):
        surface.dispatch({"type": "newSessionWithCommand"})
        surface.dispatch({"type": "commandChosen", "command": answer})

        assert fake_pty.spawned == []


class TestSuggestions:
    """Tests for flag suggestions over the routing surface."""

    def test_help_query(self, surface, sent, executor):
        """Test that help queries are debounced and answered with filtered flags."""
        surface.dispatch({"type": "helpQuery", "value": "claude --mo"})

        call = executor.get_debounced_help.call_args
        assert call.args[0] == "claude"
        assert call.kwargs["key"] == "routing"

        _deliver_help(executor, ParsedHelp(command="claude", flags=FLAGS, subcommands=["config"]))

        assert sent[-1]["type"] == "helpResult"
        assert [f["flag"] for f in sent[-1]["flags"]] == ["--model"]
        assert sent[-1]["flags"][0]["label"] == "--model MODEL"
        assert sent[-1]["subcommands"] == ["config"]

    def test_typing_refilters_without_fetching(self, surface, sent, executor):
        surface.dispatch({"type": "helpQuery", "value": "claude "})
        _deliver_help(executor, ParsedHelp(command="claude", flags=FLAGS))
        surface.dispatch({"type": "helpQuery", "value": "claude --ver"})

        assert executor.get_debounced_help.call_count == 1
        assert [f["flag"] for f in sent[-1]["flags"]] == ["--version"]

    def test_cleared_query_withdraws_suggestions(self, surface, sent, executor):
        surface.dispatch({"type": "helpQuery", "value": "claude "})
        _deliver_help(executor, ParsedHelp(command="claude", flags=FLAGS))

        surface.dispatch({"type": "helpQuery", "value": ""})

        assert sent[-1] == {"type": "helpResult", "command": "", "flags": [], "subcommands": [], "parseErrors": []}

    def test_select_flag(self, surface, sent, executor):
        """Test that picking a suggestion rewrites the command line."""
        surface.dispatch({"type": "helpQuery", "value": "claude --mo"})
        _deliver_help(executor, ParsedHelp(command="claude", flags=FLAGS))

        surface.dispatch({"type": "selectFlag", "flag": "--model"})

        assert sent[-1] == {"type": "commandValue", "value": "claude --model="}
        surface.dispatch({"type": "selectFlag", "flag": "--missing"})
        assert sent[-1]["type"] == "commandValue"

    def test_no_executor(self, mux, fake_pty):
        surface = RoutingSurface(mux)
        sent = []
        surface.outbound.connect(sent.append)

        surface.dispatch({"type": "helpQuery", "value": "git"})
        surface.dispatch({"type": "selectFlag", "flag": "--version"})

        assert sent == []


class TestErrorReports:
    """Tests for forwarding handled errors to the display."""

    def test_spawn_error_is_forwarded(self, surface, sent):
        handler = ErrorHandler()
        handler.set_notification_callback(surface.report_error)

        handler.handle_spawn_error(FileNotFoundError("nope"), "session-1", "claude")

        assert sent[-1]["type"] == "error"
        assert sent[-1]["category"] == "spawn"
        assert sent[-1]["id"] == "session-1"
        assert "'claude' was not found" in sent[-1]["message"]

    def test_quiet_errors_stay_local(self, surface, sent):
        handler = ErrorHandler()
        handler.set_notification_callback(surface.report_error)

        handler.handle_help_probe_error(OSError("boom"), "git", "--help")
        handler.handle_process_exit("session-1", 2)

        assert sent == []

    def test_error_from_worker_thread(self, surface, sent, wait_until):
        """Test that errors raised off the control thread arrive through the event loop."""
        handler = ErrorHandler()
        handler.set_notification_callback(surface.report_error)

        worker = threading.Thread(target=lambda: handler.handle_error(RuntimeError("late"), ErrorCategory.UNKNOWN))
        worker.start()
        worker.join()

        assert wait_until(lambda: sent)
        assert sent[-1] == {"type": "error", "category": "unknown", "message": "An unexpected error occurred: late"}


class TestOutbound:
    """Tests for outbound messages."""

    def test_output_and_notifications(self, surface, sent, mux, fake_pty, wait_until):
        sid = mux.create_session()
        sent.clear()

        fake_pty.data_received.emit(sid, b"Overwrite? (y/n) ")

        assert sent[0] == {"type": "output", "id": sid, "data": b"Overwrite? (y/n) "}
        assert wait_until(lambda: {"type": "notification", "id": sid, "show": True} in sent)

    def test_help_result_message(self):
        result = ParsedHelp(
            command="ls",
            flags=[CommandFlag(flag="--width", short_flag="-w", description="Set width",
                               takes_value=True, value_hint="COLS")],
            subcommands=[],
        )

        assert help_result_message(result) == {
            "type": "helpResult",
            "command": "ls",
            "flags": [{
                "flag": "--width",
                "shortFlag": "-w",
                "description": "Set width",
                "takesValue": True,
                "valueHint": "COLS",
                "label": "-w, --width COLS",
            }],
            "subcommands": [],
            "parseErrors": [],
        }
        assert help_result_message(result, [])["flags"] == []

class TestStdioBridge:
    """Tests for the JSON-lines transport."""

    def test_reads_messages_until_eof(self, surface, mux, wait_until):
        """Test that each JSON line is dispatched and EOF finishes the bridge."""
        stdin = io.StringIO(
            '{"type": "ready", "cols": 80, "rows": 24}\n'
            "\n"
            "not json\n"
            '{"type": "newSession"}\n'
        )
        bridge = StdioBridge(surface, stdin=stdin, stdout=io.StringIO())
        finished = []
        bridge.finished.connect(lambda: finished.append(True))

        bridge.start()

        assert wait_until(lambda: finished)
        assert len(mux) == 2

    def test_output_is_base64(self, surface, mux, fake_pty):
        stdout = io.StringIO()
        StdioBridge(surface, stdin=io.StringIO(), stdout=stdout)
        sid = mux.create_session()

        fake_pty.data_received.emit(sid, b"\x1b[31mred\x1b[0m")

        lines = [json.loads(line) for line in stdout.getvalue().splitlines()]
        output = [m for m in lines if m["type"] == "output"][0]
        assert output["encoding"] == "base64"
        assert base64.b64decode(output["data"]) == b"\x1b[31mred\x1b[0m"

    def test_base64_input_is_decoded(self, surface, mux, fake_pty):
        bridge = StdioBridge(surface, stdin=io.StringIO(), stdout=io.StringIO())
        sid = mux.create_session()

        bridge._on_message({"type": "input", "id": sid, "data": "bHMNCg==", "encoding": "base64"})

        assert fake_pty.writes == [(sid, b"ls\r\n")]
