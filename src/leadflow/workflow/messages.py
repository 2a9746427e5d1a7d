"""Generated ledger bodies.

Plain string templates: these are what the RM and PSM read in their inbox,
so they stay close to the wording the business already uses.
"""

from __future__ import annotations

from datetime import datetime

from leadflow.workflow.directory import LeadProfile

REMINDER_TITLE = "Follow-up Reminder"
ESCALATION_TITLES = {
    1: "Lead Escalation - Level 1",
    2: "Lead Escalation - Level 2",
    3: "Lead Escalated to PSM",
}
SEND_BACK_TITLE = "Lead Sent Back to RM"
UNKNOWN_DEALER = "Unknown Dealer"
NOT_PROVIDED = "Not provided"


def assignment_title(profile: LeadProfile | None) -> str:
    if profile and profile.dealer_name:
        anchor = profile.anchor_name or "Unknown Anchor"
        return f"New Lead Assignment - {profile.dealer_name} with {anchor}"
    return "New Lead Assignment"


def assignment_email(profile: LeadProfile | None, lead_id: str, rm_id: str, now: datetime) -> str:
    today = now.strftime("%B %d, %Y")
    if profile is None:
        return (
            f"Dear {rm_id},\n\n"
            f"Lead {lead_id} has been assigned to you on {today}.\n\n"
            "Please log in to the Lead Management System to view the details.\n\n"
            "Regards,\nSCF Lead Management System"
        )

    def _v(value: str) -> str:
        return value or NOT_PROVIDED

    return (
        f"Dear {profile.rm_name or rm_id},\n\n"
        f"A new lead has been assigned to you on {today}.\n\n"
        "LEAD DETAILS:\n"
        f"- Dealer/Firm: {_v(profile.dealer_name)}\n"
        f"- Anchor: {_v(profile.anchor_name)}\n"
        f"- Contact Person: {_v(profile.contact_person)}\n"
        f"- Mobile: {_v(profile.mobile)}\n"
        f"- Email: {_v(profile.email)}\n"
        f"- City: {_v(profile.city)}\n"
        f"- Pincode: {_v(profile.pincode)}\n"
        f"- Dealer Address: {_v(profile.address)}\n\n"
        "Please take appropriate action on this lead at your earliest convenience. "
        "You can reply to this email with your updates or log them directly in the "
        "Lead Management System.\n\n"
        "Required Action:\n"
        "1. Contact the dealer within 48 hours\n"
        "2. Update the status in the system\n"
        "3. Provide regular feedback on progress\n\n"
        "Regards,\nSCF Lead Management System"
    )


def reminder_body(dealer_name: str | None, days: int) -> str:
    return (
        f"This is a reminder that the lead for {dealer_name or UNKNOWN_DEALER} "
        f"has been awaiting your response for {days} days."
    )


def escalation_body(level: int, days: int) -> str:
    if level == 3:
        return "This lead has been escalated to PSM after multiple unanswered reminders to RM."
    return f"This lead has been escalated due to inactivity for {days} days."


def send_back_body(psm_id: str, note: str) -> str:
    return (
        f"The PSM ({psm_id}) has sent this lead back to you for further action.\n\n"
        f"PSM note:\n{note.strip()}\n\n"
        "Please review the note and update the lead in the system."
    )
