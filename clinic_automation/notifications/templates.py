"""Message text for automation notifications."""

from dataclasses import dataclass
from datetime import date, datetime
from html import escape
from typing import Iterable, Optional, Sequence, Tuple

from clinic_automation.models import DailySummary, NotificationIntent


@dataclass(frozen=True)
class MessageText:
    title: str
    body: str


def _money(amount: float) -> str:
    return f"${amount:,.2f}"


def _day(value) -> str:
    if isinstance(value, datetime):
        return value.strftime("%B %d, %Y at %H:%M")
    if isinstance(value, date):
        return value.strftime("%B %d, %Y")
    return str(value)


def render_email_html(intent: NotificationIntent, clinic_name: str) -> str:
    """Minimal HTML wrapper used when a job does not supply its own email body."""
    paragraphs = "".join(
        f"<p>{escape(line)}</p>" for line in intent.message.split("\n") if line.strip()
    )
    action = ""
    if intent.action_url:
        action = f"""
            <p style="text-align: center; margin: 30px 0;">
                <a href="{escape(intent.action_url)}"
                   style="background-color: #4F46E5; color: white; padding: 12px 24px;
                          text-decoration: none; border-radius: 6px; display: inline-block;">
                    View details
                </a>
            </p>"""
    return f"""
        <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>{escape(intent.title)}</h2>
            {paragraphs}{action}
            <p style="color: #666; font-size: 14px;">{escape(clinic_name)}</p>
        </body>
        </html>
        """


# =============================================================================
# Appointments
# =============================================================================

def appointment_reminder(first_name: str, starts_at: datetime, doctor_name: Optional[str],
                         clinic_name: str) -> MessageText:
    with_doctor = f" with {doctor_name}" if doctor_name else ""
    return MessageText(
        title="Appointment Reminder",
        body=(
            f"Hi {first_name}, this is a reminder of your appointment{with_doctor} at {clinic_name} "
            f"on {_day(starts_at)}. Reply C to confirm or call us to reschedule."
        ),
    )


def missed_appointment(first_name: str, appointment_day, reschedule_url: str) -> MessageText:
    return MessageText(
        title="Missed Appointment",
        body=(
            f"Hi {first_name}, we noticed you missed your appointment on {_day(appointment_day)}. "
            f"We understand things come up. Would you like to reschedule? Visit {reschedule_url}"
        ),
    )


def restriction_notice(restriction: str, no_show_count: int) -> MessageText:
    if restriction == "deposit_required":
        body = (
            f"Due to multiple missed appointments ({no_show_count} no-shows), a deposit will be "
            "required for future appointments. Please contact the clinic for more information."
        )
    elif restriction == "walk_in_only":
        body = (
            f"Due to repeated missed appointments ({no_show_count} no-shows), you will need to book "
            "as a walk-in patient for future appointments. Please contact the clinic if you have questions."
        )
    elif restriction == "banned":
        body = (
            f"Due to multiple missed appointments ({no_show_count} no-shows), future appointments "
            "require administrative approval. Please contact the clinic to discuss booking options."
        )
    else:
        body = "Your booking restrictions have been lifted. Thank you for keeping your appointments."
    return MessageText(title="Appointment Booking Policy Update", body=body)


def restriction_staff_alert(patient_name: str, restriction: str, no_show_count: int) -> MessageText:
    return MessageText(
        title="Patient Appointment Restriction Applied",
        body=f"{patient_name} ({no_show_count} no-shows) - {restriction.replace('_', ' ').upper()}",
    )


def followup_booked(first_name: str, day: date, time_of_day: str, code: str) -> MessageText:
    return MessageText(
        title="Follow-up Appointment Scheduled",
        body=(
            f"Hi {first_name}, your follow-up appointment ({code}) has been scheduled for "
            f"{_day(day)} at {time_of_day}. Please contact us if you need to change it."
        ),
    )


def doctor_assigned(first_name: str, doctor_name: str, starts_at: Optional[datetime]) -> MessageText:
    when = f" on {_day(starts_at)}" if starts_at else ""
    return MessageText(
        title="Doctor Assigned",
        body=f"Hi {first_name}, {doctor_name} will see you for your appointment{when}.",
    )


# =============================================================================
# Financial
# =============================================================================

def payment_reminder(first_name: str, invoice_number: str, balance: float, days: int, level: str) -> MessageText:
    amount = _money(balance)
    if level == "final":
        return MessageText(
            title=f"URGENT: Final Payment Notice - Invoice {invoice_number}",
            body=(
                f"Dear {first_name}, URGENT: your invoice {invoice_number} has an outstanding balance of "
                f"{amount}. This is a final notice. Please settle immediately to avoid service interruption."
            ),
        )
    if level == "second":
        return MessageText(
            title=f"Payment Reminder - Invoice {invoice_number} ({days} days overdue)",
            body=(
                f"Dear {first_name}, reminder: your invoice {invoice_number} has an outstanding balance of "
                f"{amount} ({days} days overdue). Please settle your account soon."
            ),
        )
    return MessageText(
        title=f"Payment Reminder - Invoice {invoice_number}",
        body=(
            f"Dear {first_name}, friendly reminder: your invoice {invoice_number} has an outstanding "
            f"balance of {amount}. Please settle at your convenience."
        ),
    )


def invoice_created(first_name: str, invoice_number: str, total: float) -> MessageText:
    return MessageText(
        title=f"New Invoice {invoice_number}",
        body=f"Hi {first_name}, invoice {invoice_number} for {_money(total)} has been issued for your recent visit.",
    )


# =============================================================================
# Inventory
# =============================================================================

def inventory_expiry(items: Sequence[Tuple[str, float, str, int]]) -> MessageText:
    """items: (name, quantity, unit, days until expiry)"""
    lines = [f"- {name}: {quantity:g} {unit} expire in {days} day{'s' if days != 1 else ''}"
             for name, quantity, unit, days in items]
    return MessageText(
        title="Inventory Expiring Soon",
        body="The following inventory items are approaching expiry:\n" + "\n".join(lines),
    )


def reorder_summary(groups: Iterable[Tuple[str, Sequence[Tuple[str, float, str, str]]]], total: int) -> MessageText:
    """groups: (priority, [(name, quantity, unit, reason)]) in priority order"""
    sections = []
    for priority, requests in groups:
        lines = [f"- {name}: Order {quantity:g} {unit} ({reason.replace('_', ' ')})"
                 for name, quantity, unit, reason in requests]
        sections.append(f"{priority.upper()}:\n" + "\n".join(lines))
    return MessageText(
        title="Inventory Reorder Requests",
        body="Inventory reorder request:\n\n" + "\n\n".join(sections)
             + f"\n\nTotal items requiring reorder: {total}",
    )


# =============================================================================
# Documents / memberships / prescriptions / welcome
# =============================================================================

def document_expiry(first_name: str, title: str, days: int, level: str) -> MessageText:
    prefix = {"urgent": "URGENT: ", "warning": "Important: "}.get(level, "")
    return MessageText(
        title=f"{prefix}Document Expiring - {title}",
        body=(
            f"Hi {first_name}, your {title} expires in {days} day{'s' if days != 1 else ''}. "
            "Please provide an updated copy to the clinic."
        ),
    )


def document_staff_alert(patient_name: str, title: str, days: int) -> MessageText:
    return MessageText(
        title="Critical Patient Document Expiring",
        body=f"{patient_name}'s {title} expires in {days} days.",
    )


def membership_reminder(first_name: str, tier: str, days: int, expiry) -> MessageText:
    return MessageText(
        title="Membership Renewal Reminder",
        body=(
            f"Hi {first_name}, your {tier} membership expires in {days} day{'s' if days != 1 else ''} "
            f"({_day(expiry)}). Renew now to keep your benefits."
        ),
    )


def membership_expired(first_name: str, tier: str) -> MessageText:
    return MessageText(
        title="Membership Expired",
        body=f"Hi {first_name}, your {tier} membership has expired. Contact us to renew.",
    )


def prescription_expiry(first_name: str, code: str, days: int, level: str, controlled: bool) -> MessageText:
    prefix = {"urgent": "URGENT: ", "warning": "Important: "}.get(level, "")
    note = " As this is a controlled medication, a new consultation is required." if controlled else ""
    return MessageText(
        title=f"{prefix}Prescription Expiring",
        body=(
            f"Hi {first_name}, your prescription {code} expires in {days} day{'s' if days != 1 else ''}. "
            f"Please contact your doctor to renew it.{note}"
        ),
    )


def welcome(first_name: str, clinic_name: str) -> MessageText:
    return MessageText(
        title=f"Welcome to {clinic_name}",
        body=(
            f"Hi {first_name}, welcome to {clinic_name}! You can book appointments, view invoices "
            "and message the clinic from your patient portal."
        ),
    )


# =============================================================================
# Lab results / reports
# =============================================================================

def lab_result_ready(first_name: str, test_type: str, request_code: Optional[str]) -> MessageText:
    return MessageText(
        title="Lab Results Available",
        body=(
            f"Hi {first_name}, your lab results for {test_type} are now available. "
            f"Request code: {request_code or 'N/A'}. Please contact the clinic to view your results."
        ),
    )


def lab_result_doctor(test_type: str, critical: bool) -> MessageText:
    if critical:
        return MessageText(
            title="URGENT: Abnormal Lab Results",
            body=f"Lab results for {test_type} show abnormal/critical values. Immediate review required.",
        )
    return MessageText(
        title="Lab Results Available",
        body=f"Lab results for {test_type} are now available for review.",
    )


def _report_rows(summary: DailySummary) -> Sequence[Tuple[str, str]]:
    rows = [("New patients", str(summary.new_patients)),
            ("Appointments", str(summary.appointments_total))]
    rows += [(f"  {status}", str(count)) for status, count in sorted(summary.appointments_by_status.items())]
    rows += [
        ("Visits", f"{summary.visits_total} ({summary.visits_closed} closed)"),
        ("New invoices", str(summary.new_invoices)),
        ("Paid invoices", str(summary.paid_invoices)),
        ("Revenue", _money(summary.revenue)),
        ("Outstanding balance", _money(summary.outstanding_balance)),
    ]
    return rows


def daily_report(summary: DailySummary, clinic_name: str) -> MessageText:
    lines = [f"{label}: {value}" for label, value in _report_rows(summary)]
    return MessageText(
        title=f"Daily Report - {_day(summary.day)}",
        body=f"{clinic_name} activity for {_day(summary.day)}\n" + "\n".join(lines),
    )


def daily_report_html(summary: DailySummary, clinic_name: str) -> str:
    cells = "".join(
        f"<tr><td style=\"padding: 4px 12px;\">{escape(label.strip())}</td>"
        f"<td style=\"padding: 4px 12px; text-align: right;\">{escape(value)}</td></tr>"
        for label, value in _report_rows(summary)
    )
    return f"""
        <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Daily Report - {escape(_day(summary.day))}</h2>
            <table style="border-collapse: collapse;">{cells}</table>
            <p style="color: #666; font-size: 14px;">{escape(clinic_name)}</p>
        </body>
        </html>
        """
