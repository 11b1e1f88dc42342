"""Tests for medbot.line_classifier module."""

from __future__ import annotations

import logging

from medbot.line_classifier import (
    Badge,
    ChatMessage,
    Join,
    Keepalive,
    Part,
    StateUpdate,
    Unknown,
    classify,
    parse_badge,
    parse_badges,
    parse_chat_text,
)

CHAT = (
    "@badge-info=;badges=moderator/1,subscriber/12;color=#FF0000;display-name=Alice;"
    "emotes=;id=abc;mod=1;user-id=1234;user-type=mod "
    ":alice!alice@alice.tmi.twitch.tv PRIVMSG #testchannel :!addgold 50 bob"
)


class TestClassify:
    """Marker detection and field extraction."""

    def test_chat_message(self):
        event = classify(CHAT)
        assert isinstance(event, ChatMessage)
        assert event.sender == "alice"
        assert event.display_name == "Alice"
        assert event.user_id == "1234"
        assert event.text == "!addgold 50 bob"
        assert event.badges == frozenset({Badge.MODERATOR, Badge.SUBSCRIBER})

    def test_chat_without_tags_has_no_badges(self):
        event = classify(":bob!bob@bob.tmi.twitch.tv PRIVMSG #testchannel :hello there ")
        assert isinstance(event, ChatMessage)
        assert event.badges is None
        assert event.text == "hello there"

    def test_chat_text_keeps_later_colons(self):
        line = ":bob!bob@bob.tmi.twitch.tv PRIVMSG #testchannel :time is 12:30"
        assert parse_chat_text(line) == "time is 12:30"

    def test_empty_badge_tag_is_empty_set(self):
        line = "@badges=;display-name=Bob :bob!bob@bob.tmi.twitch.tv PRIVMSG #c :hi"
        event = classify(line)
        assert event.badges == frozenset()

    def test_join(self):
        event = classify(":carol!carol@carol.tmi.twitch.tv JOIN #testchannel")
        assert event == Join(username="carol")

    def test_part(self):
        event = classify(":Carol!Carol@carol.tmi.twitch.tv PART #testchannel")
        assert event == Part(username="carol")

    def test_userstate_uses_display_name(self):
        line = (
            "@badge-info=;badges=moderator/1;color=;display-name=MedBot;emote-sets=0;mod=1 "
            ":tmi.twitch.tv USERSTATE #testchannel"
        )
        event = classify(line)
        assert isinstance(event, StateUpdate)
        assert event.username == "medbot"
        assert event.badges == frozenset({Badge.MODERATOR})

    def test_keepalive(self):
        assert classify("PING :tmi.twitch.tv") == Keepalive()

    def test_unknown(self):
        line = ":tmi.twitch.tv 001 medbot :Welcome, GLHF!"
        assert classify(line) == Unknown(raw=line)

    def test_privmsg_wins_over_later_markers(self):
        """A chat message whose text mentions JOIN or PING is still chat."""
        line = ":bob!bob@bob.tmi.twitch.tv PRIVMSG #c :JOIN me PING :tmi.twitch.tv"
        event = classify(line)
        assert isinstance(event, ChatMessage)
        assert event.text == "JOIN me PING :tmi.twitch.tv"

    def test_crlf_stripped(self):
        assert classify("PING :tmi.twitch.tv\r\n") == Keepalive()


class TestBadges:
    """Badge parsing is total."""

    def test_known_badges(self):
        assert parse_badge("broadcaster") is Badge.BROADCASTER
        assert parse_badge("Moderator") is Badge.MODERATOR
        assert parse_badge("sub-gifter") is Badge.SUB_GIFTER
        assert parse_badge("global_mod") is Badge.GLOBAL_MOD

    def test_unknown_badge(self, caplog):
        caplog.set_level(logging.DEBUG, logger="medbot.classifier")
        assert parse_badge("glitchcon2020") is Badge.UNKNOWN
        assert "glitchcon2020" in caplog.text

    def test_unknown_badges_stay_below_warning(self, caplog):
        classify("@badges=founder/0,artist-badge/1,no_audio/1 :a!a@a PRIVMSG #c :hi")
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_badge_tag_absent(self):
        assert parse_badges(":a!a@a PRIVMSG #c :hi") is None

    def test_badge_info_not_confused_with_badges(self):
        line = "@badge-info=subscriber/3;badges=vip/1 :a!a@a PRIVMSG #c :hi"
        assert parse_badges(line) == frozenset({Badge.VIP})
