"""
Messaging Helpers

Conversation identifiers and quiet-hours arithmetic.

A conversation id is relative to the viewer: ``"<other_id>_<other_type>"``.
The conversation key is the same for both participants and is used for
typing indicators.
"""

from datetime import time
from typing import NamedTuple

PARTICIPANT_TYPES = ("parent", "teacher", "admin")


class Participant(NamedTuple):
    id: str
    type: str


def conversation_id(other: Participant) -> str:
    return f"{other.id}_{other.type}"


def parse_conversation_id(value: str) -> Participant:
    """
    Split a viewer-relative conversation id.

    Raises:
        ValueError: If the id is not ``<id>_<type>`` with a known type
    """
    other_id, sep, other_type = value.rpartition("_")
    if not sep or not other_id or other_type not in PARTICIPANT_TYPES:
        raise ValueError(f"Invalid conversation id: {value!r}")
    return Participant(other_id, other_type)


def conversation_key(a: Participant, b: Participant) -> str:
    """Order-independent key for the conversation between two participants."""
    first, second = sorted((f"{a.type}:{a.id}", f"{b.type}:{b.id}"))
    return f"{first}|{second}"


def in_quiet_hours(now: time, start: time | None, end: time | None) -> bool:
    """
    True if ``now`` falls inside the quiet window [start, end].

    Windows that cross midnight (e.g. 21:00-07:00) are supported.
    """
    if start is None or end is None or start == end:
        return False
    if start < end:
        return start <= now <= end
    return now >= start or now <= end
