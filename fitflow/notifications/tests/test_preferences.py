"""Tests for preference resolution."""

import logging
from datetime import time

import pytest

from fitflow.enums import Channel, NotificationType
from fitflow.notifications.preferences import (
    ChannelPreference,
    ScheduleHint,
    get_users_with_enabled_preference,
    parse_schedule_time,
    resolve_preferences,
)


class TestParseScheduleTime:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("08:00", time(8, 0)),
            (" 18:30 ", time(18, 30)),
            ("07:15:00", time(7, 15)),
            ("", None),
            (None, None),
            ("8am", None),
            ("25:00", None),
        ],
    )
    def test_parse(self, value, expected):
        assert parse_schedule_time(value) == expected


class TestResolvePreferences:
    @pytest.mark.asyncio
    async def test_no_rows_means_disabled(self, engine, seed):
        user_id = await seed.user()
        async with engine.connect() as conn:
            assert await resolve_preferences(conn, user_id, NotificationType.daily_summary) == []

    @pytest.mark.asyncio
    async def test_returns_enabled_channels_with_schedule(self, engine, seed):
        user_id = await seed.user()
        await seed.preference(
            user_id,
            NotificationType.daily_summary,
            Channel.sms,
            schedule_time="08:00",
            timezone="America/Toronto",
        )
        await seed.preference(user_id, NotificationType.daily_summary, Channel.email)
        await seed.preference(
            user_id, NotificationType.daily_summary, Channel.push, enabled=False
        )
        await seed.preference(user_id, NotificationType.payment_receipt, Channel.push)

        async with engine.connect() as conn:
            preferences = await resolve_preferences(conn, user_id, NotificationType.daily_summary)

        assert preferences == [
            ChannelPreference(Channel.email),
            ChannelPreference(Channel.sms, ScheduleHint(time(8, 0), "America/Toronto")),
        ]

    @pytest.mark.asyncio
    async def test_malformed_schedule_is_ignored(self, engine, seed, caplog):
        user_id = await seed.user()
        await seed.preference(
            user_id, NotificationType.daily_summary, Channel.email, schedule_time="noonish"
        )

        with caplog.at_level(logging.WARNING):
            async with engine.connect() as conn:
                preferences = await resolve_preferences(
                    conn, user_id, NotificationType.daily_summary
                )

        assert preferences == [ChannelPreference(Channel.email, None)]
        assert "noonish" in caplog.text


class TestUsersWithEnabledPreference:
    @pytest.mark.asyncio
    async def test_distinct_enabled_users(self, engine, seed):
        first = await seed.user()
        second = await seed.user()
        disabled = await seed.user()
        for channel in (Channel.email, Channel.sms):
            await seed.preference(first, NotificationType.daily_summary, channel)
        await seed.preference(second, NotificationType.daily_summary, Channel.email)
        await seed.preference(
            disabled, NotificationType.daily_summary, Channel.email, enabled=False
        )

        async with engine.connect() as conn:
            user_ids = await get_users_with_enabled_preference(
                conn, NotificationType.daily_summary
            )

        assert user_ids == [first, second]
