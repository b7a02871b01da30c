"""
Calendar integration for extracted medical events.
Builds calendar payloads for events and medication reminders and records
a simulated sync per user in the ``calendar_syncs`` table.
"""

import base64
import uuid
from datetime import date, datetime, time, timedelta, timezone as dt_timezone, tzinfo
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from ..utils.config import settings
from ..utils.logging import get_logger

logger = get_logger(__name__)

CALENDAR_COLORS = {
    "surgery": "11",
    "procedure": "6",
    "appointment": "7",
    "follow_up": "2",
    "test": "5",
    "medication": "4",
    "reminder": "8",
}

REMINDER_PRESETS = {
    "surgery": [
        {"method": "popup", "minutes": 60 * 24},
        {"method": "popup", "minutes": 60 * 2},
        {"method": "email", "minutes": 60 * 24},
    ],
    "procedure": [
        {"method": "popup", "minutes": 60 * 12},
        {"method": "popup", "minutes": 60},
    ],
    "test": [
        {"method": "popup", "minutes": 60 * 12},
        {"method": "popup", "minutes": 30},
    ],
    "appointment": [
        {"method": "popup", "minutes": 60},
        {"method": "popup", "minutes": 15},
    ],
    "follow_up": [{"method": "popup", "minutes": 60}],
    "medication": [{"method": "popup", "minutes": 5}],
}

EVENT_DURATIONS = {
    "surgery": 180,
    "procedure": 90,
    "appointment": 60,
    "follow_up": 30,
    "test": 30,
    "medication": 15,
}

DEFAULT_SCHEDULE_DAYS = 30
SOURCE = "voice_conversation"
FOOTER = "Created by Revado Voice AI"


def _field(item: Dict[str, Any], *names: str, default=None):
    """First present value among camelCase/snake_case aliases."""
    for name in names:
        if item.get(name) is not None:
            return item[name]
    return default


def _zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return dt_timezone.utc
    return ZoneInfo(name)


def parse_time_string(value: str) -> time:
    """Parse ``"09:00"``, ``"9:30 pm"`` or ``"02:30 PM"``."""

    parts = value.strip().split()
    clock = parts[0]
    period = parts[1].lower() if len(parts) > 1 else None
    hours_str, _, minutes_str = clock.partition(":")
    hours = int(hours_str)
    minutes = int(minutes_str) if minutes_str else 0
    if period == "pm" and hours != 12:
        hours += 12
    elif period == "am" and hours == 12:
        hours = 0
    return time(hours, minutes)


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def duration_for(event_type: str) -> int:
    return EVENT_DURATIONS.get(event_type, 60)


def build_event_description(event: Dict[str, Any]) -> str:
    lines = [event.get("description") or ""]
    provider = event.get("provider")
    location = event.get("location")
    if provider:
        lines.append(f"\nProvider: {provider}")
    if location:
        lines.append(f"Location: {location}")

    instructions = _field(event, "prepInstructions", "prep_instructions") or []
    if _field(event, "needsPrep", "needs_prep", default=False) and instructions:
        lines.append("\nPREPARATION REQUIRED:")
        lines.extend(f"- {instruction}" for instruction in instructions)

    if event.get("priority"):
        lines.append(f"\nPriority: {event['priority'].upper()}")
    if event.get("confidence"):
        lines.append(f"\nAI Confidence: {round(event['confidence'] * 100)}%")
    lines.append(f"\n{FOOTER}")
    return "\n".join(lines)


def build_medication_description(medication: Dict[str, Any]) -> str:
    lines = [f"Medication: {medication['name']}"]
    for label, key in (
        ("Dosage", "dosage"),
        ("Instructions", "instructions"),
        ("Prescribed by", "prescriber"),
        ("Reason", "reason"),
    ):
        if medication.get(key):
            lines.append(f"{label}: {medication[key]}")

    side_effects = _field(medication, "sideEffects", "side_effects") or []
    if side_effects:
        lines.append("\nPossible Side Effects:")
        lines.extend(f"- {effect}" for effect in side_effects)
    interactions = medication.get("interactions") or []
    if interactions:
        lines.append("\nDrug Interactions:")
        lines.extend(f"- {interaction}" for interaction in interactions)
    lines.append(f"\n{FOOTER}")
    return "\n".join(lines)


def create_calendar_event(event: Dict[str, Any], timezone: Optional[str] = None) -> Dict[str, Any]:
    """Calendar payload for a medical event."""

    tz_name = timezone or settings.calendar_timezone
    tz = _zone(tz_name)
    event_type = event.get("type") or "appointment"
    start = datetime.combine(
        _as_date(event["date"]), parse_time_string(event.get("time") or "09:00 AM"), tzinfo=tz
    )
    end = start + timedelta(minutes=duration_for(event_type))

    return {
        "summary": event.get("title"),
        "description": build_event_description(event),
        "start": {"dateTime": start.isoformat(), "timeZone": tz_name},
        "end": {"dateTime": end.isoformat(), "timeZone": tz_name},
        "location": event.get("location") or "",
        "colorId": CALENDAR_COLORS.get(event_type, CALENDAR_COLORS["appointment"]),
        "reminders": {
            "useDefault": False,
            "overrides": REMINDER_PRESETS.get(event_type, REMINDER_PRESETS["appointment"]),
        },
        "extendedProperties": {
            "private": {
                "revado_event_id": event.get("id"),
                "revado_type": event_type,
                "revado_priority": event.get("priority"),
                "revado_provider": event.get("provider") or "",
                "revado_source": SOURCE,
                "revado_confidence": str(event.get("confidence") or 0.9),
            }
        },
    }


def create_medication_reminder(
    medication: Dict[str, Any], when: datetime, timezone: Optional[str] = None
) -> Dict[str, Any]:
    """15-minute "Take <name>" reminder at ``when``."""

    tz_name = timezone or settings.calendar_timezone
    end = when + timedelta(minutes=duration_for("medication"))
    return {
        "summary": f"Take {medication['name']}",
        "description": build_medication_description(medication),
        "start": {"dateTime": when.isoformat(), "timeZone": tz_name},
        "end": {"dateTime": end.isoformat(), "timeZone": tz_name},
        "colorId": CALENDAR_COLORS["medication"],
        "reminders": {"useDefault": False, "overrides": REMINDER_PRESETS["medication"]},
        "extendedProperties": {
            "private": {
                "revado_medication_id": medication.get("id"),
                "revado_type": "medication_reminder",
                "revado_dosage": medication.get("dosage") or "",
                "revado_frequency": medication.get("frequency") or "",
                "revado_source": SOURCE,
            }
        },
    }


def _reminder_times(medication: Dict[str, Any]) -> Optional[List[time]]:
    frequency = (medication.get("frequency") or "once daily").lower()
    reminder_time = _field(medication, "reminderTime", "reminder_time") or "09:00"
    if "once daily" in frequency or "1 time per day" in frequency:
        return [parse_time_string(reminder_time)]
    if "twice daily" in frequency or "2 times per day" in frequency:
        return [time(9, 0), time(21, 0)]
    if "three times daily" in frequency or "3 times per day" in frequency:
        return [time(8, 0), time(14, 0), time(20, 0)]
    if "weekly" in frequency:
        return [parse_time_string(reminder_time)]
    return None


def generate_medication_schedule(
    medication: Dict[str, Any],
    start_date: date,
    end_date: Optional[date] = None,
    timezone: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Reminder events from ``start_date`` through ``end_date`` inclusive.

    Daily frequencies produce one reminder per dose per day, ``weekly``
    one reminder every seven days. Without an end date the window is 30
    days. Unknown frequencies produce no reminders.
    """
    times = _reminder_times(medication)
    if times is None:
        logger.warning(f"Unsupported medication frequency: {medication.get('frequency')}")
        return []

    tz_name = timezone or settings.calendar_timezone
    tz = _zone(tz_name)
    end = end_date or start_date + timedelta(days=DEFAULT_SCHEDULE_DAYS)
    step = timedelta(days=7 if "weekly" in (medication.get("frequency") or "").lower() else 1)

    reminders = []
    current = start_date
    while current <= end:
        for dose_time in times:
            when = datetime.combine(current, dose_time, tzinfo=tz)
            reminders.append(create_medication_reminder(medication, when, tz_name))
        current += step
    return reminders


def build_sync_payloads(extraction: Dict[str, Any], today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Calendar payloads for extracted events plus reminders for started medications."""

    today = today or date.today()
    payloads = [create_calendar_event(event) for event in extraction.get("events") or []]
    for medication in extraction.get("medications") or []:
        if medication.get("action") != "start" or not medication.get("frequency"):
            continue
        start = _as_date(_field(medication, "startDate", "start_date", default=today))
        end_value = _field(medication, "endDate", "end_date")
        end = _as_date(end_value) if end_value else today + timedelta(days=DEFAULT_SCHEDULE_DAYS)
        payloads.extend(generate_medication_schedule(medication, start, end))
    return payloads


class CalendarService:
    """Simulated calendar provider backed by the storage service."""

    def __init__(self, storage):
        self.storage = storage

    async def sync(
        self,
        user_id: str,
        payloads: Iterable[Dict[str, Any]],
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        created = datetime.utcnow().isoformat() + "Z"
        results = []
        for index, payload in enumerate(payloads):
            private = payload.get("extendedProperties", {}).get("private", {})
            calendar_event_id = f"cal_{uuid.uuid4().hex[:16]}"
            eid = base64.urlsafe_b64encode(calendar_event_id.encode()).decode().rstrip("=")
            results.append({
                "localId": private.get("revado_event_id")
                or private.get("revado_medication_id")
                or f"temp_{index}",
                "calendarEventId": calendar_event_id,
                "status": "created",
                "htmlLink": f"https://calendar.google.com/calendar/event?eid={eid}",
                "created": created,
                "summary": payload.get("summary"),
                "start": payload.get("start"),
                "end": payload.get("end"),
            })

        sync = await self.storage.create_calendar_sync(
            user_id,
            {
                "record_id": record_id,
                "events_count": len(results),
                "results": results,
                "success": True,
            },
        )
        logger.info(
            "Calendar sync recorded",
            extra={"extra_fields": {"sync_id": sync["id"], "events": len(results), "record_id": record_id}},
        )
        return {
            "success": True,
            "eventsCreated": len(results),
            "results": results,
            "syncId": sync["id"],
            "message": f"Successfully created {len(results)} calendar events",
        }

    async def history(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.storage.list_calendar_syncs(user_id)

    async def remove(self, user_id: str, calendar_event_id: str) -> bool:
        removed = await self.storage.mark_calendar_event_deleted(user_id, calendar_event_id)
        if removed:
            logger.info(f"Calendar event {calendar_event_id} marked deleted")
        return removed
