import logging
import smtplib
from email.message import EmailMessage
from html import escape

from config import Settings

logger = logging.getLogger(__name__)

WELCOME_SUBJECT = "Welcome to FinanceTracker!"


def build_welcome_message(sender: str, to: str, name: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = WELCOME_SUBJECT
    message["From"] = sender
    message["To"] = to
    message.set_content(
        f"Hi {name},\n\n"
        "Welcome to FinanceTracker! Your account has been created successfully.\n\n"
        "FinanceTracker Team"
    )
    message.add_alternative(
        f"<p>Hi <strong>{escape(name)}</strong>,</p>"
        "<p>Welcome to <strong>FinanceTracker</strong>! "
        "Your account has been created successfully.</p>"
        "<p>FinanceTracker Team</p>",
        subtype="html",
    )
    return message


def send_welcome_email(settings: Settings, to: str, name: str) -> None:
    message = build_welcome_message(settings.mail_sender, to, name)
    if settings.smtp_secure:
        client = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=10)
    else:
        client = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10)
    with client:
        if not settings.smtp_secure:
            client.ehlo()
            if client.has_extn("starttls"):
                client.starttls()
                client.ehlo()
        if settings.smtp_user and settings.smtp_password:
            client.login(settings.smtp_user, settings.smtp_password)
        client.send_message(message)


def deliver_welcome_email(settings: Settings, to: str, name: str) -> None:
    """Best-effort delivery run after the response is sent. Never raises."""
    if not settings.smtp_host:
        logger.info(f"welcome_email: skipped to={to} reason=smtp_not_configured")
        return
    try:
        send_welcome_email(settings, to, name)
    except Exception:
        logger.exception(f"welcome_email: failed to={to}")
        return
    logger.info(f"welcome_email: sent to={to}")
