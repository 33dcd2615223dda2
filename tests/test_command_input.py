"""Tests for the flag-suggestion model."""

from unittest.mock import Mock

import pytest

from command_input import (
    CommandInput,
    apply_flag,
    filter_flags,
    format_label,
    parse_input,
    to_result,
)
from models import CommandFlag, ParsedHelp

FLAGS = [
    CommandFlag(flag="--verbose", short_flag="-v", description="Verbose output"),
    CommandFlag(flag="--output", short_flag="-o", description="Output file", takes_value=True, value_hint="<file>"),
    CommandFlag(flag="--model", description="Model name", takes_value=True, value_hint="MODEL"),
]


class TestParseInput:
    """Tests for parse_input."""

    def test_command_only(self):
        parsed = parse_input("claude")

        assert parsed.command == "claude"
        assert parsed.existing_args == []
        assert parsed.partial == ""

    def test_partial_flag(self):
        """Test that a trailing dash-word is the flag being typed."""
        parsed = parse_input("claude --verbose --mo")

        assert parsed.existing_args == ["--verbose"]
        assert parsed.partial == "--mo"

    def test_trailing_space_finishes_the_flag(self):
        parsed = parse_input("claude --verbose ")

        assert parsed.existing_args == ["--verbose"]
        assert parsed.partial == ""

    def test_flag_with_value_is_not_partial(self):
        assert parse_input("claude --model=opus").partial == ""

    def test_empty(self):
        assert parse_input("").command == ""


class TestFilterAndApply:
    """Tests for filter_flags and apply_flag."""

    def test_filter_by_partial(self):
        assert [f.flag for f in filter_flags(FLAGS, "--mo", [])] == ["--model"]

    def test_filter_matches_short_form(self):
        assert [f.flag for f in filter_flags(FLAGS, "-o", [])] == ["--output"]

    def test_used_flags_are_hidden(self):
        """Test that flags already on the line, long or short, are excluded."""
        remaining = filter_flags(FLAGS, "", ["-v", "--model=opus"])
        assert [f.flag for f in remaining] == ["--output"]

    def test_apply_replaces_partial(self):
        assert apply_flag("claude --mo", FLAGS[2]) == "claude --model="

    def test_apply_after_space(self):
        assert apply_flag("claude ", FLAGS[0]) == "claude --verbose "

    def test_to_result(self):
        result = to_result("claude --model=opus --verbose")

        assert result.command == "claude"
        assert result.args == ["--model=opus", "--verbose"]
        assert result.cancelled is False

    def test_blank_result_is_cancelled(self):
        assert to_result("   ").cancelled is True

    def test_format_label(self):
        assert format_label(FLAGS[1]) == "-o, --output <file>"
        assert format_label(FLAGS[0]) == "-v, --verbose"


class TestCommandInput:
    """Tests for the CommandInput state holder."""

    def setup_method(self):
        """Set up test fixtures."""
        self.executor = Mock()
        self.executor.cached.return_value = None
        self.published = []
        self.model = CommandInput(self.executor, self.published.append)

    def _deliver(self, result):
        callback = self.executor.get_debounced_help.call_args.args[1]
        callback(result)

    def test_help_requested_when_command_changes(self):
        """Test that typing a new command fetches help once."""
        self.model.set_value("cla")
        self.model.set_value("claude")

        calls = self.executor.get_debounced_help.call_args_list
        assert [c.args[0] for c in calls] == ["cla", "claude"]
        assert calls[-1].kwargs["key"] == "command-input"
        assert self.model.busy is True

    def test_typing_args_only_refilters(self):
        """Test that arguments after the command do not refetch help."""
        self.model.set_value("claude ")
        self._deliver(ParsedHelp(command="claude", flags=FLAGS))
        self.model.set_value("claude --mo")

        assert self.executor.get_debounced_help.call_count == 1
        assert [f.flag for f in self.published[-1]] == ["--model"]

    def test_stale_result_ignored(self):
        """Test that help for a command no longer typed is dropped."""
        self.model.set_value("git")
        stale = self.executor.get_debounced_help.call_args.args[1]
        self.model.set_value("ls")

        stale(ParsedHelp(command="git", flags=FLAGS))

        assert self.model.available_flags == []
        assert self.published == []

    def test_select_flag(self):
        self.model.set_value("claude ")
        self._deliver(ParsedHelp(command="claude", flags=FLAGS))

        self.model.select(self.model.find_flag("-v"))
        result = to_result(self.model.value)

        assert result.command == "claude"
        assert result.args == ["--verbose"]
        assert FLAGS[0] not in self.model.suggestions()

    @pytest.mark.parametrize("value", ["", "   "])
    def test_blank_value_does_not_fetch(self, value):
        self.model.set_value(value)
        self.executor.get_debounced_help.assert_not_called()

    def test_clearing_input_withdraws_suggestions(self):
        """Test that an emptied input publishes no suggestions and forgets the command."""
        self.model.set_value("claude ")
        self._deliver(ParsedHelp(command="claude", flags=FLAGS))
        assert self.published[-1] == FLAGS

        self.model.set_value("")

        assert self.published[-1] == []
        assert self.model.current_command == ""
        assert self.model.available_flags == []

        self.model.set_value("claude ")
        assert self.executor.get_debounced_help.call_count == 2

    def test_cached_help_skips_debounce(self):
        """Test that a fresh cache entry is used immediately."""
        self.executor.cached.return_value = ParsedHelp(command="claude", flags=FLAGS)

        self.model.set_value("claude --ver")

        self.executor.get_debounced_help.assert_not_called()
        assert self.model.busy is False
        assert [f.flag for f in self.published[-1]] == ["--verbose"]

    def test_find_flag(self):
        self.model.set_value("claude ")
        self._deliver(ParsedHelp(command="claude", flags=FLAGS))

        assert self.model.find_flag("--model") is FLAGS[2]
        assert self.model.find_flag("-o") is FLAGS[1]
        assert self.model.find_flag("--nope") is None
