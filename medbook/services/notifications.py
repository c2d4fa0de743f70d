"""
Notification port and its implementations.

The lifecycle engine only knows ``Notifier``; the concrete delivery channel is
chosen at the edge (``get_notifier``). Delivery is fire-and-forget: the
``NotificationDispatcher`` logs a failure once and drops it, so a broken mail
server never unwinds an appointment transition.
"""
from abc import ABC, abstractmethod
import datetime
from email.message import EmailMessage
import logging
import smtplib

from pydantic import BaseModel

from ..core.config import settings

logger = logging.getLogger(__name__)


class AppointmentNotice(BaseModel):
    """Detached snapshot of a confirmed appointment, safe to use after commit."""
    appointment_id: int
    email: str
    name: str
    type: str
    date: datetime.date
    time: str


class Notifier(ABC):
    """Abstract delivery capability consumed by the services."""

    @abstractmethod
    def send_appointment_confirmation(self, notice: AppointmentNotice) -> None:
        ...

    @abstractmethod
    def send_registration_confirmation(self, email: str, name: str) -> None:
        ...


def appointment_confirmation_text(notice: AppointmentNotice) -> str:
    return (
        "Hello, your appointment is confirmed!\n\n"
        "Details:\n"
        f"- Type: {notice.type}\n"
        f"- Date: {notice.date.isoformat()}\n"
        f"- Time: {notice.time}\n\n"
        "Thank you!"
    )


def registration_text(name: str) -> str:
    return (
        f"Hello {name},\n\n"
        "Your registration was successful!\n\n"
        "Thank you for joining us!"
    )


class SMTPNotifier(Notifier):
    """Sends plain-text mail through an SMTP relay with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = None,
        password: str = None,
        sender: str = None,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.timeout = timeout

    def _send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    def send_appointment_confirmation(self, notice: AppointmentNotice) -> None:
        self._send(notice.email, "Appointment Confirmation", appointment_confirmation_text(notice))

    def send_registration_confirmation(self, email: str, name: str) -> None:
        self._send(email, "Registration Successful", registration_text(name))


class LoggingNotifier(Notifier):
    """Used when no SMTP relay is configured: records the message in the log."""

    def send_appointment_confirmation(self, notice: AppointmentNotice) -> None:
        logger.info(
            f"[mail disabled] Appointment Confirmation to {notice.email} "
            f"for appointment {notice.appointment_id}"
        )

    def send_registration_confirmation(self, email: str, name: str) -> None:
        logger.info(f"[mail disabled] Registration Successful to {email}")


class NotificationDispatcher:
    """Runs a notifier call, logging a failure once and never re-raising."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    def appointment_confirmed(self, notice: AppointmentNotice) -> bool:
        try:
            self.notifier.send_appointment_confirmation(notice)
        except Exception:
            logger.exception(
                f"Confirmation email for appointment {notice.appointment_id} "
                f"to {notice.email} failed; dropping"
            )
            return False
        logger.info(f"Confirmation email sent for appointment {notice.appointment_id}")
        return True

    def user_registered(self, email: str, name: str) -> bool:
        try:
            self.notifier.send_registration_confirmation(email, name)
        except Exception:
            logger.exception(f"Registration email to {email} failed; dropping")
            return False
        logger.info(f"Registration email sent to {email}")
        return True


def run_inline(func, *args, **kwargs):
    """Default scheduler: run the deferred call immediately."""
    func(*args, **kwargs)


def get_notifier() -> Notifier:
    """Notifier dependency: SMTP when configured, log-only otherwise."""
    if settings.SMTP_HOST:
        return SMTPNotifier(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            sender=settings.SMTP_SENDER,
        )
    return LoggingNotifier()
