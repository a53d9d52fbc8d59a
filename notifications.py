"""
Outbound email.

Sending is best effort: every helper returns True/False and never raises, so a
mail outage cannot undo the operation that triggered it. SendGrid is used when
SENDGRID_API_KEY is set, plain SMTP when EMAIL_HOST is set, otherwise the
message is only logged.
"""

import os
import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)

SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY")
EMAIL_HOST = os.getenv("EMAIL_HOST")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD")
EMAIL_FROM = os.getenv("EMAIL_FROM", "noreply@refocus.app")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


def email_transport() -> str:
    if SENDGRID_API_KEY:
        return "sendgrid"
    if EMAIL_HOST:
        return "smtp"
    return "disabled"


def _send_email_via_sendgrid(to_email: str, subject: str, content_text: str) -> bool:
    from sendgrid import SendGridAPIClient
    from sendgrid.helpers.mail import Mail
    message = Mail(
        from_email=EMAIL_FROM,
        to_emails=to_email,
        subject=subject,
        plain_text_content=content_text,
    )
    SendGridAPIClient(SENDGRID_API_KEY).send(message)
    return True


def _send_email_via_smtp(to_email: str, subject: str, content_text: str) -> bool:
    message = EmailMessage()
    message["From"] = EMAIL_FROM
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(content_text)
    with smtplib.SMTP(EMAIL_HOST, EMAIL_PORT, timeout=10) as smtp:
        smtp.starttls()
        if EMAIL_USER and EMAIL_PASSWORD:
            smtp.login(EMAIL_USER, EMAIL_PASSWORD)
        smtp.send_message(message)
    return True


def send_email(to_email: str, subject: str, content_text: str) -> bool:
    transport = email_transport()
    if transport == "disabled":
        logger.info("Email transport not configured, skipping '%s' to %s", subject, to_email)
        return False
    try:
        if transport == "sendgrid":
            return _send_email_via_sendgrid(to_email, subject, content_text)
        return _send_email_via_smtp(to_email, subject, content_text)
    except Exception:
        logger.warning("Failed to send '%s' to %s", subject, to_email, exc_info=True)
        return False


def send_verification_email(email: str, name: str, token: str) -> bool:
    link = f"{FRONTEND_URL}/verify-email/{token}"
    return send_email(
        email,
        "Verify your ReFocus account",
        f"Hi {name},\n\nPlease verify your email address by opening this link:\n{link}\n\n"
        "The link expires in 24 hours.",
    )


def send_coach_approval_email(email: str, name: str) -> bool:
    return send_email(
        email,
        "Your ReFocus coach application was approved",
        f"Hi {name},\n\nCongratulations! You are now a ReFocus coach. "
        f"Set up your coach profile at {FRONTEND_URL}/coach/profile.",
    )


def send_coach_rejection_email(email: str, name: str, reason: str) -> bool:
    return send_email(
        email,
        "Update on your ReFocus coach application",
        f"Hi {name},\n\nUnfortunately your coach application was not approved.\n\nReason: {reason}\n\n"
        "You are welcome to apply again later.",
    )


def send_password_reset_notification(email: str, name: str) -> bool:
    return send_email(
        email,
        "Your ReFocus password was reset",
        f"Hi {name},\n\nAn administrator has reset your password. "
        "If you did not expect this, please contact support.",
    )
