import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import httpx

from app.core.config import settings
from app.models.booking import Booking
from app.models.user import User

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


def _send_email_sync(to_email: str, subject: str, html_body: str) -> bool:
    """Send email via SMTP (blocking). Use from background task."""
    if not settings.email_enabled:
        logger.debug("Email disabled (SMTP not configured), skipping send")
        return False
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.from_name} <{settings.from_email}>"
    msg["To"] = to_email
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.from_email, [to_email], msg.as_string())
        logger.info("Email sent to %s", to_email)
        return True
    except Exception as e:
        logger.exception("Failed to send email to %s: %s", to_email, e)
        return False


def _html_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def build_booking_html(
    heading: str,
    recipient_name: str,
    intro: str,
    booking: Booking,
    extra_rows: list[tuple[str, str]] | None = None,
    closing: str = "",
) -> str:
    """Shared layout for booking emails: heading, detail table, footer."""
    date_str = booking.appointment_date.strftime("%A, %B %d, %Y")
    rows = [
        ("Service", _html_escape(booking.service_name)),
        ("Date", date_str),
        ("Time", f"{booking.start_time} – {booking.end_time} ({_html_escape(booking.timezone)})"),
        ("Duration", f"{booking.service_duration_minutes} minutes"),
    ]
    rows.extend(extra_rows or [])
    rows_html = "".join(
        f'<p style="margin:0 0 8px 0;font-size:14px;color:#111827;"><strong>{label}:</strong> {value}</p>'
        for label, value in rows
    )
    return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{heading}</title>
</head>
<body style="margin:0;padding:0;font-family:Arial,sans-serif;background-color:#f3f4f6;">
  <div style="max-width:600px;margin:0 auto;padding:32px;background:#ffffff;">
    <h2 style="margin:0 0 8px 0;color:#111827;">{heading}</h2>
    <p style="color:#374151;">Hello {_html_escape(recipient_name or 'there')},</p>
    <p style="color:#374151;">{intro}</p>
    <div style="background-color:#f5f5f5;padding:20px;border-radius:5px;margin:20px 0;">
      {rows_html}
    </div>
    <p style="color:#374151;">{closing}</p>
    <p style="margin:24px 0 0 0;font-size:13px;color:#6b7280;">{settings.site_name} &nbsp;·&nbsp; {settings.contact_email}</p>
  </div>
</body>
</html>
"""


def send_booking_confirmation(customer: User, booking: Booking) -> bool:
    """Compose and send booking confirmation (call from background task)."""
    subject = f"{settings.site_name} – Booking Confirmed"
    html = build_booking_html(
        heading="Booking Confirmed!",
        recipient_name=customer.first_name,
        intro="Your appointment has been confirmed with the following details:",
        booking=booking,
        extra_rows=[("Total Amount", f"{booking.payment_amount} {booking.payment_currency.upper()}")],
        closing=(
            "If you need to cancel or reschedule, please do so at least "
            f"{settings.cancel_window_hours} hours in advance."
        ),
    )
    return _send_email_sync(customer.email, subject, html)


def send_booking_cancellation(customer: User, booking: Booking, reason: str | None) -> bool:
    subject = f"{settings.site_name} – Booking Cancelled"
    extra = [("Reason", _html_escape(reason or "Not specified"))]
    if booking.refund_amount:
        extra.append(("Refund", f"{booking.refund_amount} {booking.payment_currency.upper()}"))
    html = build_booking_html(
        heading="Booking Cancelled",
        recipient_name=customer.first_name,
        intro="Your appointment has been cancelled:",
        booking=booking,
        extra_rows=extra,
        closing="If you have any questions, please contact us.",
    )
    return _send_email_sync(customer.email, subject, html)


def send_reminder(customer: User, booking: Booking) -> bool:
    subject = f"{settings.site_name} – Appointment Reminder"
    html = build_booking_html(
        heading="Appointment Reminder",
        recipient_name=customer.first_name,
        intro="This is a reminder about your upcoming appointment:",
        booking=booking,
        closing="We look forward to seeing you!",
    )
    return _send_email_sync(customer.email, subject, html)


async def send_sms(to_phone: str, body: str) -> bool:
    """Send an SMS through the Twilio REST API. Failures are logged, never raised."""
    if not settings.sms_enabled:
        logger.debug("SMS disabled (Twilio not configured), skipping send")
        return False
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                TWILIO_MESSAGES_URL.format(sid=settings.twilio_account_sid),
                auth=(settings.twilio_account_sid, settings.twilio_auth_token),
                data={"To": to_phone, "From": settings.twilio_from_number, "Body": body},
                timeout=10.0,
            )
        if resp.status_code not in (200, 201):
            logger.warning("Twilio send failed: status=%s body=%s", resp.status_code, resp.text[:500])
            return False
        logger.info("SMS sent to %s (sid=%s)", to_phone, resp.json().get("sid"))
        return True
    except httpx.HTTPError as e:
        logger.exception("Failed to send SMS to %s: %s", to_phone, e)
        return False


async def send_otp(phone: str, code: str) -> bool:
    body = (
        f"Your verification code is: {code}. "
        f"This code will expire in {settings.otp_expire_minutes} minutes."
    )
    return await send_sms(phone, body)
