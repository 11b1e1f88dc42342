"""Inbound line classifier — raw IRC protocol lines to typed chat events.

Pure functions only: nothing here touches presence, the transport or the
store. The engine decides what to do with each classified event.

Recognised markers, first match wins::

    PRIVMSG  ->  ChatMessage
    JOIN     ->  Join
    PART     ->  Part
    USERSTATE -> StateUpdate
    PING :tmi.twitch.tv -> Keepalive
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

logger = logging.getLogger("medbot.classifier")

KEEPALIVE_PING = "PING :tmi.twitch.tv"
KEEPALIVE_PONG = "PONG :tmi.twitch.tv"


# ═══════════════════════════════════════════════════════════════
#  Data types
# ═══════════════════════════════════════════════════════════════


class Badge(Enum):
    ADMIN = "admin"
    BITS = "bits"
    BROADCASTER = "broadcaster"
    GLOBAL_MOD = "global_mod"
    MODERATOR = "moderator"
    PARTNER = "partner"
    PREMIUM = "premium"
    STAFF = "staff"
    SUBSCRIBER = "subscriber"
    SUB_GIFTER = "sub-gifter"
    TURBO = "turbo"
    VIP = "vip"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ChatMessage:
    sender: str
    text: str
    display_name: str | None = None
    user_id: str | None = None
    # None when the line carried no badge tag at all
    badges: frozenset[Badge] | None = None


@dataclass(frozen=True)
class Join:
    username: str


@dataclass(frozen=True)
class Part:
    username: str


@dataclass(frozen=True)
class StateUpdate:
    username: str
    badges: frozenset[Badge] | None = None


@dataclass(frozen=True)
class Keepalive:
    pass


@dataclass(frozen=True)
class Unknown:
    raw: str


ClassifiedLine = Union[ChatMessage, Join, Part, StateUpdate, Keepalive, Unknown]


# ═══════════════════════════════════════════════════════════════
#  Field extraction
# ═══════════════════════════════════════════════════════════════

_PRIVMSG_RE = re.compile(r"\bPRIVMSG\b")
_JOIN_RE = re.compile(r"\bJOIN\b")
_PART_RE = re.compile(r"\bPART\b")
_USERSTATE_RE = re.compile(r"\bUSERSTATE\b")
_NICK_RE = re.compile(r":([^!\s:]+)!([^@\s]+)@")
_DISPLAY_NAME_RE = re.compile(r"display-name=([^;\s]*)")
_USER_ID_RE = re.compile(r"user-id=(\d+)")
_BADGES_RE = re.compile(r"(?:^|[@;])badges=([^;\s]*)")


def parse_badge(name: str) -> Badge:
    """Map a badge name onto ``Badge``. Total: unrecognised names become UNKNOWN."""
    key = name.strip().lower()
    for badge in Badge:
        if badge.value == key or badge.name.lower() == key.replace("-", "_"):
            return badge
    logger.debug("Unknown badge %r", name)
    return Badge.UNKNOWN


def parse_badges(line: str) -> frozenset[Badge] | None:
    """Badge set from the ``badges=`` tag, or None when the tag is absent."""
    tags, _ = _split_tags(line)
    match = _BADGES_RE.search(tags)
    if match is None:
        return None
    value = match.group(1)
    if not value:
        return frozenset()
    return frozenset(
        parse_badge(item.split("/", 1)[0]) for item in value.split(",") if item
    )


def parse_display_name(line: str) -> str | None:
    tags, _ = _split_tags(line)
    match = _DISPLAY_NAME_RE.search(tags)
    if match and match.group(1):
        return match.group(1)
    return None


def parse_user_id(line: str) -> str | None:
    tags, _ = _split_tags(line)
    match = _USER_ID_RE.search(tags)
    return match.group(1) if match else None


def parse_username(line: str) -> str | None:
    """Sender from the ``nick!user@host`` prefix, else the lowercased display name."""
    _, rest = _split_tags(line)
    match = _NICK_RE.search(rest)
    if match:
        return match.group(2).lower()
    display = parse_display_name(line)
    return display.lower() if display else None


def parse_chat_text(line: str) -> str:
    """Everything after the first ``:`` that follows PRIVMSG, trimmed."""
    _, rest = _split_tags(line)
    marker = _PRIVMSG_RE.search(rest)
    if marker is None:
        return ""
    tail = rest[marker.end():]
    colon = tail.find(":")
    if colon < 0:
        return ""
    return tail[colon + 1:].strip()


def _split_tags(line: str) -> tuple[str, str]:
    """Split an IRCv3 tagged line into (tags, remainder)."""
    if line.startswith("@"):
        head, _, rest = line.partition(" ")
        return head, rest
    return "", line


# ═══════════════════════════════════════════════════════════════
#  Classification
# ═══════════════════════════════════════════════════════════════


def classify(line: str) -> ClassifiedLine:
    """Classify one raw protocol line. Never raises."""
    line = line.rstrip("\r\n")
    _, rest = _split_tags(line)

    if _PRIVMSG_RE.search(rest):
        sender = parse_username(line)
        if sender is None:
            logger.debug("PRIVMSG without a sender: %s", line)
            return Unknown(raw=line)
        return ChatMessage(
            sender=sender,
            text=parse_chat_text(line),
            display_name=parse_display_name(line),
            user_id=parse_user_id(line),
            badges=parse_badges(line),
        )

    if _JOIN_RE.search(rest):
        username = parse_username(line)
        return Join(username=username) if username else Unknown(raw=line)

    if _PART_RE.search(rest):
        username = parse_username(line)
        return Part(username=username) if username else Unknown(raw=line)

    if _USERSTATE_RE.search(rest):
        username = parse_username(line)
        if username is None:
            return Unknown(raw=line)
        return StateUpdate(username=username, badges=parse_badges(line))

    if KEEPALIVE_PING in line:
        return Keepalive()

    return Unknown(raw=line)
