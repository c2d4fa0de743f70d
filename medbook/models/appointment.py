from sqlalchemy import Column, Integer, String, ForeignKey, Date, DateTime, Text, Index, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"

# Statuses counted against the per-user booking cap
ACTIVE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_user_status", "user_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Owner
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Booking details
    type = Column(String(100), nullable=False)
    date = Column(Date, nullable=False, index=True)
    time = Column(String(50), nullable=False)
    reason = Column(Text, nullable=False)
    name = Column(String(100), nullable=False)
    mobile = Column(String(20), nullable=False)

    # Lifecycle
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING)
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_id = Column(String(255), nullable=True)
    feedback = Column(Text, nullable=True)

    # Optimistic concurrency counter, bumped on every UPDATE
    version = Column(Integer, nullable=False)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="appointments")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, user_id={self.user_id}, "
            f"status='{self.status}', payment_status='{self.payment_status}')>"
        )
