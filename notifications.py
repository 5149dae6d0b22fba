"""Budget alert delivery over SMTP."""
import logging
import re
import smtplib
from dataclasses import asdict, dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)

_LINE_BREAKS = re.compile(r"[\r\n]+")


class UnsupportedNotificationType(ValueError):
    """Raised for any notification channel other than email."""


@dataclass
class BudgetNotificationData:
    user_id: int
    budget_id: int
    budget_name: str
    category_name: str
    budget_amount: float
    total_spent: float
    percentage: int
    threshold: int
    user_email: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def render_subject(data: BudgetNotificationData) -> str:
    # header values must stay on one line
    budget_name = _LINE_BREAKS.sub(" ", data.budget_name)
    return f"Budget Alert: {data.percentage}% of {budget_name} spent"


def render_body(data: BudgetNotificationData) -> str:
    return (
        "Budget Alert!\n\n"
        f"You've reached {data.percentage}% of your {data.budget_name} budget.\n\n"
        f"Category: {data.category_name}\n"
        f"Amount Spent: ${data.total_spent:.2f}\n"
        f"Threshold Alert: {data.threshold}%\n\n"
        "This is an automated notification to help you stay on track with your expenses.\n"
    )


def send_email_notification(data: BudgetNotificationData) -> SendResult:
    if not settings.smtp_configured:
        logger.error("Email service not configured; SMTP_HOST is unset")
        return SendResult(success=False, error="Email service not configured")

    try:
        message = EmailMessage()
        message["Subject"] = render_subject(data)
        message["From"] = settings.from_email
        message["To"] = data.user_email
        message["Message-ID"] = make_msgid(domain=settings.from_email.split("@")[-1])
        message.set_content(render_body(data))

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_username and settings.smtp_password:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)
    except (smtplib.SMTPException, OSError, ValueError) as exc:
        logger.error("Email send error for %s: %s", data.user_email, exc)
        return SendResult(success=False, error=str(exc))

    return SendResult(success=True, message_id=message["Message-ID"])


def send_budget_notification(
    data: BudgetNotificationData, channel: str = "email"
) -> SendResult:
    if channel == "email":
        return send_email_notification(data)
    raise UnsupportedNotificationType("Only email notifications are supported")
