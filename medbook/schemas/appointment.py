"""Appointment schemas for API requests and responses."""
import datetime
from typing import List, Optional
from pydantic import Field

from .base import CamelModel
from ..models.appointment import AppointmentStatus, PaymentStatus


class BookAppointmentRequest(CamelModel):
    """Booking details. Presence of every field is enforced by the service."""
    type: Optional[str] = None
    date: Optional[datetime.date] = None
    time: Optional[str] = Field(None, description="Time slot, e.g. '10:00 AM'")
    reason: Optional[str] = None
    name: Optional[str] = None
    mobile: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": "General Checkup",
                "date": "2026-11-02",
                "time": "10:00 AM",
                "reason": "Annual checkup",
                "name": "Jane Doe",
                "mobile": "9876543210"
            }
        }
    }


class AppointmentIdRequest(CamelModel):
    appointment_id: Optional[int] = None


class ConfirmAppointmentRequest(AppointmentIdRequest):
    payment_id: Optional[str] = None


class FeedbackRequest(AppointmentIdRequest):
    feedback: Optional[str] = None


class AppointmentResponse(CamelModel):
    id: int
    user_id: int
    type: str
    date: datetime.date
    time: str
    reason: str
    name: str
    mobile: str
    status: AppointmentStatus
    payment_status: PaymentStatus
    payment_id: Optional[str] = None
    feedback: Optional[str] = None
    created_at: Optional[datetime.datetime] = None


class AppointmentEnvelope(CamelModel):
    success: bool = True
    message: str
    appointment: AppointmentResponse


class PaymentLinkResponse(CamelModel):
    success: bool = True
    message: str
    payment_link: str
    appointment: AppointmentResponse


class AppointmentListResponse(CamelModel):
    success: bool = True
    appointments: List[AppointmentResponse]
