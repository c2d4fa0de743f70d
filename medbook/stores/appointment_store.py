from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from .base import translate_store_errors
from ..models.appointment import Appointment, AppointmentStatus, PaymentStatus


class AppointmentStore:
    """Appointment store, indexed by id and by owner."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, user_id: int, **details) -> Appointment:
        appointment = Appointment(
            user_id=user_id,
            status=AppointmentStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            **details,
        )
        with translate_store_errors(self.db, "appointment create"):
            self.db.add(appointment)
            self.db.commit()
            self.db.refresh(appointment)
        return appointment

    def find_by_id(self, appointment_id: int, for_update: bool = False) -> Optional[Appointment]:
        with translate_store_errors(self.db, "appointment lookup"):
            query = self.db.query(Appointment).filter(Appointment.id == appointment_id)
            if for_update:
                query = query.with_for_update()
            return query.first()

    def find_by_user(self, user_id: int) -> List[Appointment]:
        """All appointments of an owner, earliest appointment date first."""
        with translate_store_errors(self.db, "appointment listing"):
            return (
                self.db.query(Appointment)
                .filter(Appointment.user_id == user_id)
                .order_by(Appointment.date.asc(), Appointment.id.asc())
                .all()
            )

    def count_by_user_and_status(
        self, user_id: int, statuses: Iterable[AppointmentStatus]
    ) -> int:
        with translate_store_errors(self.db, "appointment count"):
            return (
                self.db.query(Appointment)
                .filter(
                    Appointment.user_id == user_id,
                    Appointment.status.in_(list(statuses)),
                )
                .count()
            )

    def update(self, appointment: Appointment) -> Appointment:
        """Commit pending changes; a stale version raises InvalidStateError."""
        with translate_store_errors(self.db, "appointment update"):
            self.db.commit()
            self.db.refresh(appointment)
        return appointment
