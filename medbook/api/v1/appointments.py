from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session
from typing import Optional

from ...core.database import get_db
from ...core.exceptions import ValidationError
from ...api.deps import get_admin_user, get_current_user
from ...services.appointment_service import AppointmentService
from ...services.notifications import Notifier, get_notifier
from ...schemas.appointment import (
    AppointmentEnvelope, AppointmentIdRequest, AppointmentListResponse,
    AppointmentResponse, BookAppointmentRequest, ConfirmAppointmentRequest,
    FeedbackRequest, PaymentLinkResponse
)
from ...schemas.auth import MessageResponse
from ...models.user import User

router = APIRouter(prefix="/appointments", tags=["Appointments"])

def _require_id(appointment_id: Optional[int]) -> int:
    if appointment_id is None:
        raise ValidationError("Appointment ID is required.")
    return appointment_id

def _envelope(message: str, appointment) -> AppointmentEnvelope:
    return AppointmentEnvelope(
        message=message,
        appointment=AppointmentResponse.model_validate(appointment),
    )

@router.post("/book", response_model=AppointmentEnvelope, status_code=status.HTTP_201_CREATED)
def book_appointment(
    details: BookAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Book an appointment for the current user."""
    appointment = AppointmentService(db).book_appointment(current_user.id, details)
    return _envelope(
        "Appointment booked successfully. Please proceed with payment.", appointment
    )

@router.post("/initiate-payment", response_model=PaymentLinkResponse)
def initiate_payment(
    payload: AppointmentIdRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Generate a payment link for a pending appointment."""
    link, appointment = AppointmentService(db).initiate_payment(
        _require_id(payload.appointment_id), caller=current_user
    )
    return PaymentLinkResponse(
        message="Payment link generated successfully.",
        payment_link=link,
        appointment=AppointmentResponse.model_validate(appointment),
    )

@router.post("/confirm", response_model=AppointmentEnvelope)
def confirm_appointment(
    payload: ConfirmAppointmentRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """Record the payment and confirm the appointment."""
    service = AppointmentService(db, notifier, schedule=background_tasks.add_task)
    appointment = service.confirm_appointment(
        _require_id(payload.appointment_id), payload.payment_id, caller=current_user
    )
    return _envelope("Appointment confirmed successfully.", appointment)

@router.get("", response_model=AppointmentListResponse)
def list_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the current user's appointments, earliest date first."""
    appointments = AppointmentService(db).list_appointments(current_user.id)
    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(a) for a in appointments]
    )

@router.delete("/cancel/{appointment_id}", response_model=MessageResponse)
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Cancel an appointment whose payment is still pending."""
    AppointmentService(db).cancel_appointment(appointment_id, caller=current_user)
    return MessageResponse(message="Appointment cancelled successfully.")

@router.post("/complete", response_model=AppointmentEnvelope)
def complete_appointment(
    payload: AppointmentIdRequest,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Mark a confirmed appointment as completed (admin only)."""
    appointment = AppointmentService(db).complete_appointment(
        _require_id(payload.appointment_id), caller=admin_user
    )
    return _envelope("Appointment marked as completed.", appointment)

@router.post("/feedback", response_model=AppointmentEnvelope)
def submit_feedback(
    payload: FeedbackRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Attach feedback to a completed appointment."""
    appointment = AppointmentService(db).submit_feedback(
        _require_id(payload.appointment_id), payload.feedback, caller=current_user
    )
    return _envelope("Feedback submitted successfully.", appointment)
