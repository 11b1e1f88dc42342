"""Tests for medbot.commands — catalog enums and the command matcher."""

from __future__ import annotations

import logging

from medbot.commands import (
    CommandCategory,
    CommandMatcher,
    HandlerType,
    compile_format,
    parse_category,
    parse_handler,
)

from conftest import make_command


class TestParsing:
    """Enum parsing is total and tolerant of catalog spellings."""

    def test_category_aliases(self):
        assert parse_category("points") is CommandCategory.CURRENCY
        assert parse_category("XP") is CommandCategory.EXPERIENCE
        assert parse_category("Internal") is CommandCategory.INTERNAL

    def test_unknown_category(self):
        assert parse_category("weather") is CommandCategory.UNKNOWN

    def test_handler_camel_case(self):
        assert parse_handler("InfoSecond") is HandlerType.INFO_SECOND
        assert parse_handler("LastFollower") is HandlerType.LAST_FOLLOWER
        assert parse_handler("follow_age") is HandlerType.FOLLOW_AGE
        assert parse_handler("GAMBLE") is HandlerType.GAMBLE

    def test_unknown_handler(self):
        assert parse_handler("dance") is HandlerType.UNKNOWN


class TestCompileFormat:
    """Placeholder → regex translation."""

    def test_numeric_and_word_placeholders(self):
        pattern = compile_format("!addgold {0} {1}")
        assert pattern.match("!addgold 50 alice")
        assert pattern.match("!ADDGOLD 50 Alice")
        assert not pattern.match("!addgold fifty alice")
        assert not pattern.match("!addgold 50 alice extra")

    def test_literal_characters_escaped(self):
        pattern = compile_format("!what? {0}")
        assert pattern.match("!what? 3")
        assert not pattern.match("!wha 3")


class TestMatcher:
    """Candidate scan, arity and regex check."""

    def _matcher(self, *formats: str) -> CommandMatcher:
        return CommandMatcher([make_command(f) for f in formats], logging.getLogger("test"))

    def test_match_with_args(self):
        matcher = self._matcher("!med", "!addgold {0} {1}")
        result = matcher.match("!addgold 50 alice")
        assert result is not None
        assert result.command.format == "!addgold {0} {1}"
        assert result.args == ["50", "alice"]

    def test_case_insensitive_trigger(self):
        matcher = self._matcher("!med")
        assert matcher.match("!MED") is not None

    def test_arity_mismatch(self):
        matcher = self._matcher("!addgold {0} {1}")
        assert matcher.match("!addgold 50") is None

    def test_first_registered_wins(self):
        matcher = self._matcher("!help", "!help {1}")
        assert matcher.match("!help").command.format == "!help"
        assert matcher.match("!help gold").command.format == "!help {1}"

    def test_failed_regex_discards(self):
        """A candidate that fails the regex check ends the search."""
        matcher = self._matcher("!gamble {0}", "!gamble {1}")
        assert matcher.match("!gamble all") is None

    def test_substring_candidate(self):
        """A prefix of a trigger is a candidate but fails the full check."""
        matcher = self._matcher("!medals")
        assert matcher.match("!med") is None

    def test_not_a_command(self):
        matcher = self._matcher("!med")
        assert matcher.match("hello") is None
        assert matcher.match("") is None

    def test_find_by_name(self):
        matcher = self._matcher("!med", "!addgold {0} {1}")
        assert matcher.find_by_name("addgold").format == "!addgold {0} {1}"
        assert matcher.find_by_name("!MED").format == "!med"
        assert matcher.find_by_name("nope") is None

    def test_definition_properties(self):
        command = make_command("!addgold {0} {1}")
        assert command.name == "!addgold"
        assert command.arity == 2
