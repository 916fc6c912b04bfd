"""
Summary builder - renders notification content.

Builders take plain dicts fetched by the caller and return a RenderedContent
with an email subject/body and an SMS body. Daily summaries, reminders,
session summaries and progress insights can be enriched by an optional text
generator. When the generator is missing, fails, times out or returns
nothing, the templated rendering is used instead. Enrichment never fails a
notification.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable

from fitflow.config import get_llm_timeout
from fitflow.notifications.errors import GenerationUnavailable
from fitflow.notifications.templates import RenderedContent, get_message, render
from fitflow.timezone import (
    format_date_in_timezone,
    format_time_in_timezone,
    get_timezone,
)

logger = logging.getLogger(__name__)

# generate(prompt, system=..., max_tokens=...) -> text
TextGenerator = Callable[..., Awaitable[str]]


DAILY_SUMMARY_SYSTEM = (
    "You are a helpful fitness assistant that provides concise, actionable "
    "summaries for personal trainers. Focus on key points that will help the "
    "trainer prepare for their sessions."
)
SESSION_SUMMARY_SYSTEM = (
    "You are a fitness expert summarizing session notes. Be concise and focus "
    "on key progress indicators and actionable next steps."
)
PROGRESS_INSIGHTS_SYSTEM = (
    "You are a fitness analytics expert. Analyze training progress and provide "
    "actionable insights."
)
REMINDER_SYSTEM = (
    "You are a friendly fitness assistant creating personalized appointment "
    "reminders. Keep it brief and motivating."
)


def default_generator() -> TextGenerator:
    """The LiteLLM-backed generator."""
    # Import here to avoid circular imports
    from fitflow.llm import generate_text

    return generate_text


async def _try_generate(
    generate: TextGenerator | None,
    prompt: str,
    system: str,
    max_tokens: int,
) -> str | None:
    """Run the generator, returning None on any kind of failure."""
    if generate is None:
        return None

    timeout = get_llm_timeout()
    try:
        text = await asyncio.wait_for(
            generate(prompt, system=system, max_tokens=max_tokens), timeout=timeout
        )
    except GenerationUnavailable as e:
        logger.info(f"Text generation unavailable, using template: {e}")
        return None
    except asyncio.TimeoutError:
        logger.warning(f"Text generation timed out after {timeout}s, using template")
        return None
    except Exception as e:
        logger.warning(f"Text generation failed, using template: {e}")
        return None

    text = (text or "").strip()
    return text or None


# =============================================================================
# Formatting helpers
# =============================================================================


def _long_date(day: date) -> str:
    # "Sunday, March 10" not "Sunday, March 010"
    return day.strftime("%A, %B %d").replace(" 0", " ")


def _short_date(day: date) -> str:
    return day.strftime("%b %d").replace(" 0", " ")


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def _first_participant(appointment: dict[str, Any]) -> dict[str, Any] | None:
    participants = appointment.get("participants") or []
    return participants[0] if participants else None


def _short_start(start: datetime, tz_name: str | None) -> str:
    """e.g. "Sun Mar 10, 9:30 AM" in the recipient's timezone."""
    local = start.astimezone(get_timezone(tz_name))
    return f"{local.strftime('%a %b')} {local.day}, {format_time_in_timezone(start, tz_name)}"


def format_amount(amount_cents: int, currency: str = "usd") -> str:
    """Format minor units for display, e.g. 4500, "usd" -> "$45.00"."""
    value = amount_cents / 100
    if currency.lower() in ("usd", "cad", "aud"):
        return f"${value:,.2f}"
    return f"{value:,.2f} {currency.upper()}"


# =============================================================================
# Daily summary (trainers)
# =============================================================================


def build_daily_summary_prompt(
    appointments: list[dict[str, Any]],
    client_notes: dict[int, list[dict[str, Any]]],
) -> str:
    lines = [
        "Generate a brief daily summary for a personal trainer with the "
        "following appointments:",
        "",
    ]
    for index, appointment in enumerate(appointments, start=1):
        client = _first_participant(appointment)
        lines.append(
            f"{index}. {appointment['start_time'].isoformat()} - "
            f"{appointment['end_time'].isoformat()}"
        )
        lines.append(f"   Client: {(client or {}).get('client_name') or 'Not assigned'}")
        lines.append(f"   Type: {appointment['class_type']}")
        notes = client_notes.get(client["client_id"]) if client else None
        if notes:
            last = notes[0]
            lines.append(f"   Last session plan: {last.get('plan') or 'No plan recorded'}")
            if last.get("private_notes"):
                lines.append(f"   Trainer notes: {last['private_notes']}")
        lines.append("")

    lines += [
        "Provide:",
        "1. Key preparation points for the day",
        "2. Important client considerations based on their history",
        "3. Any scheduling considerations or potential issues",
        "",
        "Keep the summary concise and actionable.",
    ]
    return "\n".join(lines)


async def build_daily_summary(
    recipient_name: str,
    day: date,
    appointments: list[dict[str, Any]],
    client_notes: dict[int, list[dict[str, Any]]],
    timezone: str | None,
    generate: TextGenerator | None = None,
) -> RenderedContent:
    """
    Render a trainer's schedule for a day.

    Args:
        recipient_name: Greeting name (business name or first name)
        day: Local date the schedule covers
        appointments: Appointment dicts (start_time/end_time UTC, participants)
        client_notes: client_id -> recent session notes, newest first
        timezone: Trainer's IANA timezone for displayed times
        generate: Optional text generator for the insights section
    """
    items = []
    sms_items = []
    for appointment in appointments:
        client = _first_participant(appointment)
        client_name = (client or {}).get("client_name") or "No client assigned"
        start = format_time_in_timezone(appointment["start_time"], timezone)
        item = get_message(
            "daily_summary",
            "appointment_item",
            {
                "start_time": start,
                "end_time": format_time_in_timezone(appointment["end_time"], timezone),
                "class_type": appointment["class_type"],
                "client_name": client_name,
                "location": appointment.get("location") or "TBD",
            },
        )
        notes = client_notes.get(client["client_id"]) if client else None
        if notes:
            item += "  Recent notes:\n"
            for note in notes[:2]:
                item += (
                    get_message(
                        "daily_summary",
                        "notes_item",
                        {
                            "note_date": _short_date(note["session_date"]),
                            "note_text": note.get("plan") or note.get("assessment") or "No notes",
                        },
                    )
                    + "\n"
                )
        items.append(item)

        if len(sms_items) < 3:
            sms_items.append(
                get_message(
                    "daily_summary",
                    "sms_item",
                    {"start_time": start, "client_name": (client or {}).get("client_name") or "TBD"},
                )
            )

    if len(appointments) > 3:
        sms_items.append(get_message("daily_summary", "sms_more", {"count": len(appointments) - 3}))

    insights_text = await _try_generate(
        generate,
        build_daily_summary_prompt(appointments, client_notes),
        DAILY_SUMMARY_SYSTEM,
        max_tokens=500,
    )
    insights = get_message("daily_summary", "insights", {"text": insights_text}) if insights_text else ""

    count = len(appointments)
    context = {
        "name": recipient_name,
        "date": _long_date(day),
        "date_short": _short_date(day),
        "appointment_count": count,
        "appointment_word": _plural(count, "appointment"),
        "appointment_list": "\n".join(items),
        "insights": insights,
        "sms_list": "\n".join(sms_items),
    }
    return render("daily_summary", context)


# =============================================================================
# Appointment reminders (clients)
# =============================================================================


def _appointment_context(
    recipient_name: str,
    appointment: dict[str, Any],
    timezone: str | None,
) -> dict[str, Any]:
    start = appointment["start_time"]
    return {
        "name": recipient_name,
        "class_type": appointment["class_type"],
        "trainer_name": appointment.get("trainer_name") or "your trainer",
        "location": appointment.get("location") or "the studio",
        "date": format_date_in_timezone(start, timezone),
        "start_time": f"{format_date_in_timezone(start, timezone)} at "
        f"{format_time_in_timezone(start, timezone)}",
        "start_time_short": _short_start(start, timezone),
    }


async def build_appointment_reminder(
    recipient_name: str,
    appointment: dict[str, Any],
    timezone: str | None,
    previous_sessions: int = 0,
    last_plan: str | None = None,
    generate: TextGenerator | None = None,
) -> RenderedContent:
    """Render a reminder for an upcoming appointment, optionally with a personal note."""
    context = _appointment_context(recipient_name, appointment, timezone)

    prompt = (
        "Create a personalized appointment reminder for:\n"
        f"Client: {recipient_name}\n"
        f"Appointment: {appointment['class_type']}\n"
        f"Time: {context['start_time']}\n"
        f"Previous sessions: {previous_sessions}\n"
        f"Last session focus: {last_plan or 'First session'}\n\n"
        "Make it friendly, motivating, and include a relevant tip based on their history."
    )
    note = await _try_generate(generate, prompt, REMINDER_SYSTEM, max_tokens=200)
    context["personal_note"] = f"{note}\n\n" if note else ""

    return render("appointment_reminder", context)


def build_booking_confirmation(
    recipient_name: str,
    appointment: dict[str, Any],
    timezone: str | None,
) -> RenderedContent:
    context = _appointment_context(recipient_name, appointment, timezone)
    return render("appointment_booked", context)


# =============================================================================
# Session summaries (clients)
# =============================================================================


def _fallback_session_summary(session_note: dict[str, Any]) -> str:
    # Private notes are trainer-only and never rendered for the client
    lines = []
    if session_note.get("assessment"):
        lines.append(f"Assessment: {session_note['assessment']}")
    if session_note.get("plan"):
        lines.append(f"Next steps: {session_note['plan']}")
    return "\n".join(lines) or "Your trainer has added notes for this session."


async def build_session_summary(
    recipient_name: str,
    session_note: dict[str, Any],
    generate: TextGenerator | None = None,
) -> RenderedContent:
    """Render a client-facing summary of a session note."""
    prompt = (
        "Summarize this fitness session concisely:\n\n"
        f"Subjective: {session_note.get('subjective') or 'N/A'}\n"
        f"Objective: {session_note.get('objective') or 'N/A'}\n"
        f"Assessment: {session_note.get('assessment') or 'N/A'}\n"
        f"Plan: {session_note.get('plan') or 'N/A'}\n\n"
        "Provide a 2-3 sentence summary focusing on progress and next steps."
    )
    summary = await _try_generate(generate, prompt, SESSION_SUMMARY_SYSTEM, max_tokens=150)
    if summary is None:
        summary = _fallback_session_summary(session_note)

    context = {
        "name": recipient_name,
        "date": _long_date(session_note["session_date"]),
        "summary": summary,
    }
    sms_context = {
        "date": _short_date(session_note["session_date"]),
        "summary": " ".join(summary.split()),
    }
    return render("session_summary", context, sms_context)


# =============================================================================
# Progress insights (clients)
# =============================================================================

PROGRESS_MIN_SESSIONS = 3


def build_progress_prompt(sessions: list[dict[str, Any]]) -> str:
    lines = ["Analyze the following training sessions and provide progress insights:", ""]
    for index, session in enumerate(sessions, start=1):
        lines.append(f"Session {index} ({session['session_date'].isoformat()}):")
        lines.append(f"- Assessment: {session.get('assessment') or 'N/A'}")
        lines.append(f"- Objective: {session.get('objective') or 'N/A'}")
        lines.append(f"- Plan: {session.get('plan') or 'N/A'}")
        lines.append("")
    lines += [
        "Provide:",
        "1. Progress trends observed",
        "2. Areas of improvement",
        "3. Recommendations for next sessions",
        "4. Any concerns to address",
    ]
    return "\n".join(lines)


def _fallback_progress_insights(sessions: list[dict[str, Any]]) -> str:
    lines = [
        get_message(
            "progress_insights",
            "session_item",
            {
                "date": _short_date(session["session_date"]),
                "assessment": session.get("assessment") or "No assessment recorded",
            },
        )
        for session in sessions
    ]
    latest_plan = sessions[-1].get("plan")
    if latest_plan:
        lines += ["", get_message("progress_insights", "next_steps", {"plan": latest_plan})]
    return "\n".join(lines)


async def build_progress_insights(
    recipient_name: str,
    session_notes: list[dict[str, Any]],
    generate: TextGenerator | None = None,
) -> RenderedContent | None:
    """
    Render a client's progress across their recent sessions.

    Args:
        recipient_name: Greeting name
        session_notes: Recent session notes in any order
        generate: Optional text generator for the analysis

    Returns:
        None when there are fewer than PROGRESS_MIN_SESSIONS sessions,
        since there is no trend to report yet
    """
    if len(session_notes) < PROGRESS_MIN_SESSIONS:
        return None

    sessions = sorted(session_notes, key=lambda note: note["session_date"])
    insights = await _try_generate(
        generate, build_progress_prompt(sessions), PROGRESS_INSIGHTS_SYSTEM, max_tokens=300
    )
    if insights is None:
        insights = _fallback_progress_insights(sessions)

    context = {
        "name": recipient_name,
        "session_count": len(sessions),
        "first_date": _long_date(sessions[0]["session_date"]),
        "last_date": _long_date(sessions[-1]["session_date"]),
        "insights": insights,
    }
    return render("progress_insights", context, {"insights": " ".join(insights.split())})


# =============================================================================
# Payment receipts
# =============================================================================


def build_payment_receipt(
    recipient_name: str,
    amount_cents: int,
    currency: str,
    description: str,
    reference: str,
    paid_at: datetime,
    timezone: str | None,
    receipt_url: str | None = None,
) -> RenderedContent:
    context = {
        "name": recipient_name,
        "amount": format_amount(amount_cents, currency),
        "description": description,
        "reference": reference,
        "date": format_date_in_timezone(paid_at, timezone),
        "receipt_link": f"[View your receipt]({receipt_url})\n" if receipt_url else "",
    }
    return render("payment_receipt", context)
