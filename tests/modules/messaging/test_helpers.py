"""
Tests for conversation ids and quiet hours.
"""

from datetime import time

import pytest

from kinderhub.modules.messaging.helpers import (
    Participant,
    conversation_id,
    conversation_key,
    in_quiet_hours,
    parse_conversation_id,
)

TEACHER = Participant("22222222-2222-2222-2222-222222222222", "teacher")
PARENT = Participant("11111111-1111-1111-1111-111111111111", "parent")


class TestConversationId:
    def test_parse_reverses_format(self):
        assert parse_conversation_id(conversation_id(TEACHER)) == TEACHER

    def test_ids_containing_underscores(self):
        assert parse_conversation_id("legacy_id_admin") == Participant("legacy_id", "admin")

    @pytest.mark.parametrize("value", ["", "abc", "abc_", "_teacher", "abc_student"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_conversation_id(value)

    def test_key_is_shared_by_both_sides(self):
        assert conversation_key(PARENT, TEACHER) == conversation_key(TEACHER, PARENT)

    def test_key_differs_by_type(self):
        admin = Participant(TEACHER.id, "admin")
        assert conversation_key(PARENT, TEACHER) != conversation_key(PARENT, admin)


class TestQuietHours:
    def test_no_window(self):
        assert not in_quiet_hours(time(23, 0), None, None)
        assert not in_quiet_hours(time(23, 0), time(22, 0), None)

    def test_equal_start_and_end_is_an_empty_window(self):
        assert not in_quiet_hours(time(22, 0), time(22, 0), time(22, 0))
        assert not in_quiet_hours(time(3, 0), time(22, 0), time(22, 0))

    def test_same_day_window(self):
        assert in_quiet_hours(time(13, 30), time(13, 0), time(14, 0))
        assert not in_quiet_hours(time(14, 1), time(13, 0), time(14, 0))

    @pytest.mark.parametrize(
        ("now", "expected"),
        [(time(21, 0), True), (time(23, 59), True), (time(3, 0), True), (time(7, 0), True),
         (time(7, 1), False), (time(12, 0), False)],
    )
    def test_window_across_midnight(self, now, expected):
        assert in_quiet_hours(now, time(21, 0), time(7, 0)) is expected
