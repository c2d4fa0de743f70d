"""
Appointment lifecycle engine.

Statuses move pending -> confirmed -> completed, with cancellation allowed
only while the payment is still pending. Payment status is a separate axis
that only ever moves pending -> completed.

Booking is serialized per owner: an in-process lock guards the
count-then-insert sequence, and the owner's user row is read ``FOR UPDATE``
so that separate processes sharing a PostgreSQL database queue up behind
the same row lock. Transitions on a single appointment read the row
``FOR UPDATE`` and are additionally protected by the model's version
counter.
"""
from contextlib import contextmanager
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlencode
import logging
import threading

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AlreadyPaidError, InvalidStateError, LimitExceededError,
    NotFoundError, ValidationError
)
from ..core.security import UserRole
from ..models.appointment import (
    ACTIVE_STATUSES, Appointment, AppointmentStatus, PaymentStatus
)
from ..models.user import User
from ..schemas.appointment import BookAppointmentRequest
from ..stores.appointment_store import AppointmentStore
from ..stores.user_store import UserStore
from .notifications import (
    AppointmentNotice, LoggingNotifier, NotificationDispatcher, Notifier, run_inline
)

logger = logging.getLogger(__name__)

REQUIRED_BOOKING_FIELDS = ("type", "date", "time", "reason", "name", "mobile")

# owner id -> [lock, number of threads holding or waiting on it]
_owner_locks = {}
_owner_locks_guard = threading.Lock()


@contextmanager
def _owner_lock(owner_id: int):
    """Hold the booking lock for ``owner_id``; the entry is dropped once unused."""
    with _owner_locks_guard:
        entry = _owner_locks.setdefault(owner_id, [threading.Lock(), 0])
        entry[1] += 1

    try:
        with entry[0]:
            yield
    finally:
        with _owner_locks_guard:
            entry[1] -= 1
            if not entry[1]:
                del _owner_locks[owner_id]


class AppointmentService:
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        schedule: Optional[Callable] = None,
        max_appointments: Optional[int] = None,
    ):
        self.db = db
        self.appointments = AppointmentStore(db)
        self.users = UserStore(db)
        self.notifications = NotificationDispatcher(notifier or LoggingNotifier())
        # Runs deferred work after the transition commits, e.g. BackgroundTasks.add_task
        self.schedule = schedule or run_inline
        self.max_appointments = (
            settings.MAX_APPOINTMENTS if max_appointments is None else max_appointments
        )

    def book_appointment(self, owner_id: int, details: BookAppointmentRequest) -> Appointment:
        """Create a pending appointment unless the owner is at the booking cap."""
        missing = [
            field for field in REQUIRED_BOOKING_FIELDS
            if not getattr(details, field)
        ]
        if missing:
            raise ValidationError(
                "All fields (type, date, time, reason, name, mobile) are required."
            )

        with _owner_lock(owner_id):
            owner = self.users.find_by_id(owner_id, for_update=True)
            if not owner:
                self.db.rollback()
                raise NotFoundError("User not found.")

            active = self.appointments.count_by_user_and_status(owner_id, ACTIVE_STATUSES)
            if active >= self.max_appointments:
                self.db.rollback()
                logger.info(
                    f"Booking rejected for user {owner_id}: "
                    f"{active} active appointments"
                )
                raise LimitExceededError(
                    "You have reached the maximum number of appointments allowed."
                )

            appointment = self.appointments.create(
                owner_id,
                **details.model_dump(include=set(REQUIRED_BOOKING_FIELDS)),
            )

        logger.info(f"Appointment {appointment.id} booked for user {owner_id}")
        return appointment

    def initiate_payment(
        self, appointment_id: int, caller: Optional[User] = None
    ) -> Tuple[str, Appointment]:
        """Produce a payment link; the appointment itself is not modified."""
        appointment = self._get(appointment_id, caller)

        if appointment.payment_status == PaymentStatus.COMPLETED:
            raise AlreadyPaidError("Payment already completed.")
        if appointment.status == AppointmentStatus.CANCELLED:
            raise InvalidStateError("Cannot pay for a cancelled appointment.")

        query = urlencode({
            "appointmentId": appointment.id,
            "amount": settings.APPOINTMENT_FEE,
        })
        return f"{settings.PAYMENT_GATEWAY_URL}?{query}", appointment

    def confirm_appointment(
        self,
        appointment_id: int,
        payment_id: Optional[str] = None,
        caller: Optional[User] = None,
    ) -> Appointment:
        """
        Mark the payment completed and the appointment confirmed.

        The payment id is taken as given; it is not checked against a payment
        processor. A confirmation email is scheduled after the commit.
        """
        appointment = self._get(appointment_id, caller, for_update=True)

        if appointment.payment_status == PaymentStatus.COMPLETED:
            self.db.rollback()
            raise AlreadyPaidError("Payment already completed.")
        if appointment.status != AppointmentStatus.PENDING:
            self.db.rollback()
            raise InvalidStateError(
                f"Cannot confirm a {appointment.status.value} appointment."
            )

        appointment.payment_status = PaymentStatus.COMPLETED
        appointment.payment_id = payment_id or settings.PLACEHOLDER_PAYMENT_ID
        appointment.status = AppointmentStatus.CONFIRMED
        appointment = self.appointments.update(appointment)
        logger.info(f"Appointment {appointment.id} confirmed (payment {appointment.payment_id})")

        notice = AppointmentNotice(
            appointment_id=appointment.id,
            email=appointment.user.email,
            name=appointment.name,
            type=appointment.type,
            date=appointment.date,
            time=appointment.time,
        )
        self.schedule(self.notifications.appointment_confirmed, notice)

        return appointment

    def cancel_appointment(
        self, appointment_id: int, caller: Optional[User] = None
    ) -> Appointment:
        appointment = self._get(appointment_id, caller, for_update=True)

        if appointment.payment_status == PaymentStatus.COMPLETED:
            self.db.rollback()
            raise AlreadyPaidError("Cannot cancel a completed appointment.")
        if not appointment.is_active:
            self.db.rollback()
            raise InvalidStateError(
                f"Cannot cancel a {appointment.status.value} appointment."
            )

        appointment.status = AppointmentStatus.CANCELLED
        appointment = self.appointments.update(appointment)
        logger.info(f"Appointment {appointment.id} cancelled")
        return appointment

    def complete_appointment(
        self, appointment_id: int, caller: Optional[User] = None
    ) -> Appointment:
        """Operator action closing a confirmed, paid appointment."""
        appointment = self._get(appointment_id, caller, for_update=True)

        if (
            appointment.status != AppointmentStatus.CONFIRMED
            or appointment.payment_status != PaymentStatus.COMPLETED
        ):
            self.db.rollback()
            raise InvalidStateError("Only confirmed, paid appointments can be completed.")

        appointment.status = AppointmentStatus.COMPLETED
        appointment = self.appointments.update(appointment)
        logger.info(f"Appointment {appointment.id} completed")
        return appointment

    def submit_feedback(
        self,
        appointment_id: int,
        feedback: Optional[str],
        caller: Optional[User] = None,
    ) -> Appointment:
        if not feedback or not feedback.strip():
            raise ValidationError("Feedback is required.")

        appointment = self._get(appointment_id, caller, for_update=True)

        if appointment.status != AppointmentStatus.COMPLETED:
            self.db.rollback()
            raise InvalidStateError(
                "Feedback can only be submitted for completed appointments."
            )

        appointment.feedback = feedback
        appointment = self.appointments.update(appointment)
        logger.info(f"Feedback stored for appointment {appointment.id}")
        return appointment

    def list_appointments(self, owner_id: int) -> List[Appointment]:
        return self.appointments.find_by_user(owner_id)

    def _get(
        self,
        appointment_id: int,
        caller: Optional[User] = None,
        for_update: bool = False,
    ) -> Appointment:
        """Load an appointment visible to ``caller`` (any appointment when None)."""
        appointment = self.appointments.find_by_id(appointment_id, for_update=for_update)

        if appointment and caller is not None and caller.role != UserRole.ADMIN:
            if appointment.user_id != caller.id:
                appointment = None

        if not appointment:
            if for_update:
                self.db.rollback()
            raise NotFoundError("Appointment not found.")
        return appointment
