"""Tests for the summary builder (rendering and generator fallback)."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from fitflow.notifications.errors import GenerationUnavailable
from fitflow.notifications.summary import (
    DAILY_SUMMARY_SYSTEM,
    build_appointment_reminder,
    build_booking_confirmation,
    build_daily_summary,
    build_payment_receipt,
    build_progress_insights,
    build_progress_prompt,
    build_session_summary,
    format_amount,
)
from fitflow.notifications.templates import SMS_MAX_LENGTH

TORONTO = "America/Toronto"


def make_appointment(appointment_id=1, start=None, client_id=10, client_name="Jo Park", **extra):
    start = start or datetime(2024, 3, 10, 13, 0, tzinfo=timezone.utc)
    appointment = {
        "appointment_id": appointment_id,
        "trainer_id": 1,
        "class_type": "Personal Training",
        "location": "Downtown Studio",
        "start_time": start,
        "end_time": start + timedelta(hours=1),
        "trainer_name": "Sam Strength",
        "participants": [
            {"client_id": client_id, "user_id": client_id + 100, "client_name": client_name}
        ]
        if client_id
        else [],
    }
    appointment.update(extra)
    return appointment


NOTES = {
    10: [
        {
            "session_date": date(2024, 3, 3),
            "plan": "Add tempo squats",
            "assessment": "Knee feels good",
            "private_notes": "Mentioned stress at work",
        }
    ]
}


class TestDailySummary:
    @pytest.mark.asyncio
    async def test_templated_rendering(self):
        appointments = [
            make_appointment(),
            make_appointment(
                2,
                start=datetime(2024, 3, 10, 15, 30, tzinfo=timezone.utc),
                client_id=None,
                location=None,
            ),
        ]

        content = await build_daily_summary(
            "Sam", date(2024, 3, 10), appointments, NOTES, TORONTO
        )

        assert content.subject == "Your Schedule for Sunday, March 10"
        assert "Hi Sam," in content.email_body
        assert "2 appointments scheduled" in content.email_body
        assert "9:00 AM - 10:00 AM: Personal Training" in content.email_body
        assert "Client: Jo Park" in content.email_body
        assert "Mar 3: Add tempo squats" in content.email_body
        assert "Client: No client assigned" in content.email_body
        assert "Location: TBD" in content.email_body
        assert "Insights" not in content.email_body
        assert content.sms_body.startswith("FitFlow: 2 appointments on Mar 10:")
        assert "9:00 AM - Jo Park" in content.sms_body

    @pytest.mark.asyncio
    async def test_single_appointment_wording(self):
        content = await build_daily_summary(
            "Sam", date(2024, 3, 10), [make_appointment()], {}, TORONTO
        )
        assert "1 appointment scheduled" in content.email_body

    @pytest.mark.asyncio
    async def test_sms_lists_three_and_counts_the_rest(self):
        appointments = [
            make_appointment(i, start=datetime(2024, 3, 10, 12 + i, tzinfo=timezone.utc))
            for i in range(5)
        ]

        content = await build_daily_summary("Sam", date(2024, 3, 10), appointments, {}, TORONTO)

        assert content.sms_body.count("Jo Park") == 3
        assert content.sms_body.endswith("+2 more")
        assert len(content.sms_body) <= SMS_MAX_LENGTH

    @pytest.mark.asyncio
    async def test_sms_capped_for_long_names(self):
        appointments = [
            make_appointment(i, client_name="Bartholomew " * 5) for i in range(3)
        ]

        content = await build_daily_summary("Sam", date(2024, 3, 10), appointments, {}, TORONTO)

        assert len(content.sms_body) <= SMS_MAX_LENGTH

    @pytest.mark.asyncio
    async def test_generator_adds_insights(self):
        generate = AsyncMock(return_value="  Jo's knee is better; progress squats.  ")

        content = await build_daily_summary(
            "Sam", date(2024, 3, 10), [make_appointment()], NOTES, TORONTO, generate=generate
        )

        assert "Insights for the day:" in content.email_body
        assert "Jo's knee is better; progress squats." in content.email_body
        prompt = generate.call_args[0][0]
        assert "Personal Training" in prompt
        assert "Trainer notes: Mentioned stress at work" in prompt
        assert generate.call_args[1]["system"] == DAILY_SUMMARY_SYSTEM

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "generate",
        [
            AsyncMock(side_effect=GenerationUnavailable("disabled")),
            AsyncMock(side_effect=RuntimeError("provider exploded")),
            AsyncMock(return_value=""),
            AsyncMock(return_value=None),
        ],
    )
    async def test_generator_failure_falls_back(self, generate):
        baseline = await build_daily_summary(
            "Sam", date(2024, 3, 10), [make_appointment()], NOTES, TORONTO
        )

        content = await build_daily_summary(
            "Sam", date(2024, 3, 10), [make_appointment()], NOTES, TORONTO, generate=generate
        )

        assert content == baseline

    @pytest.mark.asyncio
    async def test_slow_generator_falls_back(self):
        async def slow(prompt, **kwargs):
            await asyncio.sleep(1)
            return "too late"

        with patch("fitflow.notifications.summary.get_llm_timeout", return_value=0.01):
            content = await build_daily_summary(
                "Sam", date(2024, 3, 10), [make_appointment()], {}, TORONTO, generate=slow
            )

        assert "too late" not in content.email_body


class TestAppointmentReminder:
    @pytest.mark.asyncio
    async def test_templated_rendering(self):
        content = await build_appointment_reminder("Jo", make_appointment(), TORONTO)

        assert content.subject == "Reminder: Personal Training on Sunday, March 10"
        assert "Sunday, March 10 at 9:00 AM" in content.email_body
        assert "Trainer: Sam Strength" in content.email_body
        assert content.sms_body == (
            "FitFlow reminder: Personal Training with Sam Strength on "
            "Sun Mar 10, 9:00 AM at Downtown Studio."
        )

    @pytest.mark.asyncio
    async def test_personal_note_from_generator(self):
        generate = AsyncMock(return_value="Great progress on squats, keep it up!")

        content = await build_appointment_reminder(
            "Jo",
            make_appointment(),
            TORONTO,
            previous_sessions=4,
            last_plan="Add tempo squats",
            generate=generate,
        )

        assert "Great progress on squats" in content.email_body
        prompt = generate.call_args[0][0]
        assert "Previous sessions: 4" in prompt
        assert "Last session focus: Add tempo squats" in prompt

    @pytest.mark.asyncio
    async def test_sms_capped(self):
        appointment = make_appointment(location="The Very Long Named Studio " * 6)

        content = await build_appointment_reminder("Jo", appointment, TORONTO)

        assert len(content.sms_body) <= SMS_MAX_LENGTH
        assert content.sms_body.endswith("…")

    def test_booking_confirmation(self):
        content = build_booking_confirmation("Jo", make_appointment(), TORONTO)

        assert content.subject == "Booked: Personal Training on Sunday, March 10"
        assert content.sms_body.startswith("FitFlow: Booked Personal Training")


class TestSessionSummary:
    NOTE = {
        "session_date": date(2024, 3, 3),
        "subjective": "Felt strong",
        "objective": "Squat 5x5 @ 80kg",
        "assessment": "Good depth",
        "plan": "Increase to 85kg",
        "private_notes": "Going through a divorce",
    }

    @pytest.mark.asyncio
    async def test_fallback_never_includes_private_notes(self):
        content = await build_session_summary("Jo", self.NOTE)

        assert content.subject == "Your session summary for Sunday, March 3"
        assert "Assessment: Good depth" in content.email_body
        assert "Next steps: Increase to 85kg" in content.email_body
        assert "divorce" not in content.email_body
        assert "divorce" not in content.sms_body

    @pytest.mark.asyncio
    async def test_generated_summary_and_prompt(self):
        generate = AsyncMock(return_value="Solid squats today. Next time: 85kg.")

        content = await build_session_summary("Jo", self.NOTE, generate=generate)

        assert "Solid squats today." in content.email_body
        assert "divorce" not in generate.call_args[0][0]

    @pytest.mark.asyncio
    async def test_sms_capped(self):
        generate = AsyncMock(return_value="Long summary sentence. " * 20)

        content = await build_session_summary("Jo", self.NOTE, generate=generate)

        assert len(content.sms_body) <= SMS_MAX_LENGTH

    @pytest.mark.asyncio
    async def test_empty_note(self):
        content = await build_session_summary("Jo", {"session_date": date(2024, 3, 3)})
        assert "Your trainer has added notes" in content.email_body


class TestProgressInsights:
    # Newest first, as the session note query returns them
    SESSIONS = [
        {
            "session_date": date(2024, 3, 3),
            "assessment": "Squat depth solid at 80kg",
            "plan": "Increase to 85kg",
            "private_notes": "Trainer-only remark",
        },
        {"session_date": date(2024, 2, 25), "assessment": None, "plan": "Hold 80kg"},
        {"session_date": date(2024, 2, 18), "assessment": "Knee pain gone", "plan": "Add load"},
    ]

    @pytest.mark.asyncio
    async def test_needs_three_sessions(self):
        generate = AsyncMock(return_value="Great progress")

        assert await build_progress_insights("Jo", self.SESSIONS[:2], generate=generate) is None
        assert await build_progress_insights("Jo", [], generate=generate) is None
        generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_template_fallback_oldest_first(self):
        content = await build_progress_insights("Jo", self.SESSIONS)

        assert content.subject == "Your progress over your last 3 sessions"
        assert "from Sunday, February 18 to Sunday, March 3" in content.email_body
        body = content.email_body
        assert body.index("- Feb 18: Knee pain gone") < body.index(
            "- Mar 3: Squat depth solid at 80kg"
        )
        assert "- Feb 25: No assessment recorded" in body
        assert "Next steps: Increase to 85kg" in body
        assert "Trainer-only" not in body

    @pytest.mark.asyncio
    async def test_generated_insights(self):
        generate = AsyncMock(return_value="Strength is trending up.\nKeep adding load.")

        content = await build_progress_insights("Jo", self.SESSIONS, generate=generate)

        assert "Strength is trending up." in content.email_body
        assert content.sms_body == (
            "FitFlow progress (3 sessions): Strength is trending up. Keep adding load."
        )
        assert generate.call_args.kwargs["max_tokens"] == 300

    @pytest.mark.asyncio
    async def test_generator_failure_falls_back(self):
        generate = AsyncMock(side_effect=GenerationUnavailable("no key"))

        content = await build_progress_insights("Jo", self.SESSIONS, generate=generate)

        assert "- Feb 18: Knee pain gone" in content.email_body
        assert len(content.sms_body) <= SMS_MAX_LENGTH

    def test_prompt_numbers_sessions_and_omits_private_notes(self):
        prompt = build_progress_prompt(sorted(self.SESSIONS, key=lambda s: s["session_date"]))

        assert "Session 1 (2024-02-18):" in prompt
        assert "Session 3 (2024-03-03):" in prompt
        assert "- Assessment: N/A" in prompt
        assert "Trainer-only" not in prompt


class TestPaymentReceipt:
    def test_format_amount(self):
        assert format_amount(4500, "usd") == "$45.00"
        assert format_amount(123456, "CAD") == "$1,234.56"
        assert format_amount(4500, "eur") == "45.00 EUR"

    def test_receipt_with_link(self):
        content = build_payment_receipt(
            recipient_name="Jo",
            amount_cents=4500,
            currency="usd",
            description="10-session package",
            reference="pi_123",
            paid_at=datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc),
            timezone=TORONTO,
            receipt_url="https://pay.example.com/r/pi_123",
        )

        assert content.subject == "Payment received: $45.00"
        assert "Reference: pi_123" in content.email_body
        assert "[View your receipt](https://pay.example.com/r/pi_123)" in content.email_body
        assert content.sms_body == (
            "FitFlow: Payment of $45.00 received for 10-session package. Ref pi_123."
        )

    def test_receipt_without_link(self):
        content = build_payment_receipt(
            "Jo", 4500, "usd", "Drop-in", "pi_9", datetime(2024, 3, 10, tzinfo=timezone.utc), None
        )
        assert "View your receipt" not in content.email_body
