"""
Built-in tool handlers registered at startup.
"""

from datetime import date, datetime, timedelta
from typing import Any
from uuid import uuid4

from vetcall.clinics.repository import ClinicRepository
from vetcall.shared.database import SessionScope
from vetcall.shared.logging import get_logger
from vetcall.tools.registry import ToolContext, ToolRegistry

logger = get_logger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
SLOT_MINUTES = 30
MAX_DAYS_AHEAD = 14


def format_time(time_24h: str) -> str:
    """'13:05' -> '1:05 PM'."""
    parts = time_24h.split(":")
    hours = int(parts[0] or 0)
    minutes = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    period = "PM" if hours >= 12 else "AM"
    return f"{hours % 12 or 12}:{minutes:02d} {period}"


def format_day_hours(day: dict[str, Any] | None) -> str:
    if not day or day.get("closed"):
        return "Closed"
    return f"{format_time(day['open'])} - {format_time(day['close'])}"


def build_slots(day: dict[str, Any] | None, slot_minutes: int = SLOT_MINUTES) -> list[str]:
    """Start times between open and close for an open day."""
    if not day or day.get("closed") or not day.get("open") or not day.get("close"):
        return []
    opens = datetime.strptime(day["open"], "%H:%M")
    closes = datetime.strptime(day["close"], "%H:%M")
    slots: list[str] = []
    current = opens
    while current + timedelta(minutes=slot_minutes) <= closes:
        slots.append(format_time(current.strftime("%H:%M")))
        current += timedelta(minutes=slot_minutes)
    return slots


def clamp_days_ahead(value: Any) -> int:
    """Days to scan, between 1 and MAX_DAYS_AHEAD; unreadable input gives the maximum."""
    try:
        days = int(value)
    except (TypeError, ValueError):
        return MAX_DAYS_AHEAD
    return min(max(1, days), MAX_DAYS_AHEAD)


def register_built_in_tools(registry: ToolRegistry, session_scope: SessionScope) -> None:
    """Register the default tool set on ``registry``."""

    async def book_appointment(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        requested_date = params.get("date")
        logger.info(
            "Book appointment called",
            extra={
                "call_id": context.call_id,
                "date": requested_date,
                "reason": params.get("reason"),
                "pet_name": params.get("petName") or params.get("pet_name"),
            },
        )
        return {
            "success": True,
            "appointmentId": f"apt_{uuid4().hex[:12]}",
            "date": requested_date or "next available",
            "message": "Appointment booking request received. Our team will confirm shortly.",
        }

    async def lookup_pet_records(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        criteria = {
            "petName": params.get("petName"),
            "ownerName": params.get("ownerName"),
            "phoneNumber": params.get("phoneNumber"),
        }
        logger.info("Lookup pet records called", extra={"call_id": context.call_id})
        return {
            "found": False,
            "message": "Record lookup is not available for this clinic.",
            "searchCriteria": criteria,
        }

    async def send_sms_notification(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        phone = str(params.get("phoneNumber") or "")
        logger.info(
            "Send SMS called",
            extra={
                "call_id": context.call_id,
                "phone_number": f"{phone[:6]}****" if phone else None,
                "message_length": len(str(params.get("message") or "")),
            },
        )
        return {"sent": False, "message": "SMS sending is not available for this clinic."}

    async def get_clinic_hours(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        if not context.assistant_id:
            return {
                "success": False,
                "error": "Assistant ID not available",
                "message": "Unable to retrieve clinic hours.",
            }

        async with session_scope() as session:
            clinic = await ClinicRepository(session).get_clinic_for_assistant(context.assistant_id)

        if clinic is None:
            logger.warning(
                "Clinic not found for assistant",
                extra={"assistant_id": context.assistant_id},
            )
            return {
                "success": False,
                "error": "Clinic not found",
                "message": "Unable to retrieve clinic hours.",
            }
        if not clinic.business_hours:
            return {
                "success": False,
                "error": "Hours not configured",
                "message": "Business hours are not yet configured. Please contact the clinic directly.",
            }

        return {
            "success": True,
            "clinic_name": clinic.name,
            "hours": {day: format_day_hours(clinic.business_hours.get(day)) for day in WEEKDAYS},
            "emergencyInfo": "For after-hours emergencies, please call our emergency line.",
        }

    async def check_availability(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        raw_date = params.get("date")
        if not raw_date:
            return {
                "error": "Date is required",
                "message": "Please provide a date to check availability.",
            }
        try:
            requested = date.fromisoformat(str(raw_date))
        except ValueError:
            return {
                "error": "Invalid date",
                "message": "Please provide the date as YYYY-MM-DD.",
            }
        if not context.assistant_id:
            return {
                "error": "Assistant ID not available",
                "message": "Unable to check availability. Assistant context not found.",
            }

        provider_name = str(params.get("provider_name") or "").strip()
        async with session_scope() as session:
            repository = ClinicRepository(session)
            clinic = await repository.get_clinic_for_assistant(context.assistant_id)
            provider = None
            if clinic is not None and provider_name:
                provider = await repository.find_provider(clinic.id, provider_name)
        if clinic is None:
            return {
                "error": "Clinic not found",
                "message": "Unable to check availability. Clinic configuration not found.",
            }

        weekday = WEEKDAYS[requested.weekday()]
        slots = build_slots((clinic.business_hours or {}).get(weekday))
        # An unmatched provider name leaves the clinic-wide schedule in place.
        if provider is not None and not provider.works_on(weekday):
            slots = []
        logger.info(
            "Availability check",
            extra={
                "date": requested.isoformat(),
                "provider": provider.name if provider else None,
                "available_count": len(slots),
            },
        )
        result: dict[str, Any] = {
            "date": requested.isoformat(),
            "available_times": slots,
            "total_available": len(slots),
            "message": (
                f"We have {len(slots)} available slots on {requested.isoformat()}"
                if slots
                else f"No available slots on {requested.isoformat()}."
            ),
        }
        if provider is not None:
            result["provider"] = provider.name
        return result

    async def check_availability_range(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        days_ahead = clamp_days_ahead(params.get("days_ahead"))
        if not context.assistant_id:
            return {
                "available": False,
                "error": "Assistant ID not available",
                "message": "Unable to check availability. Assistant context not found.",
            }

        async with session_scope() as session:
            clinic = await ClinicRepository(session).get_clinic_for_assistant(context.assistant_id)
        if clinic is None:
            return {
                "available": False,
                "error": "Clinic not found",
                "message": "Unable to check availability. Clinic configuration not found.",
            }

        start = date.today()
        days: list[dict[str, Any]] = []
        for offset in range(days_ahead):
            current = start + timedelta(days=offset)
            weekday = WEEKDAYS[current.weekday()]
            slots = build_slots((clinic.business_hours or {}).get(weekday))
            if slots:
                days.append(
                    {
                        "date": current.isoformat(),
                        "day": weekday.capitalize(),
                        "available_count": len(slots),
                        "times": slots,
                    }
                )

        total_slots = sum(day["available_count"] for day in days)
        logger.info(
            "Availability range check",
            extra={"days_ahead": days_ahead, "days_with_availability": len(days), "total_slots": total_slots},
        )
        if not days:
            return {
                "available": False,
                "days_checked": days_ahead,
                "days_with_availability": 0,
                "total_slots": 0,
                "message": (
                    f"I'm sorry, there are no available appointments in the next {days_ahead} days. "
                    "Would you like me to take your information for a callback?"
                ),
            }

        first = days[0]
        return {
            "available": True,
            "days_checked": days_ahead,
            "days_with_availability": len(days),
            "total_slots": total_slots,
            "first_available": {"date": first["date"], "day": first["day"], "times": first["times"][:5]},
            "availability": days[:7],
            "message": (
                f"We have availability on {len(days)} days over the next {days_ahead} days. "
                f"The first opening is {first['day']} {first['date']} at {first['times'][0]}."
            ),
        }

    registry.register("book_appointment", book_appointment, "Book a follow-up appointment for the pet")
    registry.register("lookup_pet_records", lookup_pet_records, "Look up pet medical records")
    registry.register("send_sms_notification", send_sms_notification, "Send an SMS to the pet owner")
    registry.register("get_clinic_hours", get_clinic_hours, "Get the clinic's business hours")
    registry.register("check_availability", check_availability, "Check availability for a date")
    registry.register(
        "check_availability_range",
        check_availability_range,
        "Check availability across the coming days",
    )
