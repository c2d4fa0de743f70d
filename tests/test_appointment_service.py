"""Lifecycle engine tests, run directly against the service and the stores."""
from concurrent.futures import ThreadPoolExecutor
import datetime
import logging

import pytest

from medbook.core.database import SessionLocal
from medbook.core.exceptions import (
    AlreadyPaidError, InvalidStateError, LimitExceededError,
    MedBookError, NotFoundError, ValidationError
)
from medbook.core.security import UserRole, get_password_hash
from medbook.models.appointment import ACTIVE_STATUSES, AppointmentStatus, PaymentStatus
from medbook.schemas.appointment import BookAppointmentRequest
from medbook.services import appointment_service
from medbook.services.appointment_service import AppointmentService
from medbook.stores.appointment_store import AppointmentStore
from medbook.stores.user_store import UserStore

from .conftest import RecordingNotifier


def make_details(**overrides) -> BookAppointmentRequest:
    details = {
        "type": "Dental",
        "date": datetime.date(2026, 11, 2),
        "time": "09:30 AM",
        "reason": "Tooth ache",
        "name": "Pat Example",
        "mobile": "9876543210",
    }
    details.update(overrides)
    return BookAppointmentRequest(**details)


@pytest.fixture
def owner(db_session):
    return UserStore(db_session).create(
        name="Pat Example",
        email="pat@example.com",
        mobile="9876543210",
        password_hash=get_password_hash("Secret#123"),
    )


@pytest.fixture
def service(db_session, notifier):
    return AppointmentService(db_session, notifier)


def test_book_creates_pending_appointment(service, owner):
    appointment = service.book_appointment(owner.id, make_details())

    assert appointment.user_id == owner.id
    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.payment_status == PaymentStatus.PENDING
    assert appointment.payment_id is None
    assert appointment.feedback is None


@pytest.mark.parametrize("field", ["type", "date", "time", "reason", "name", "mobile"])
def test_book_missing_field_creates_nothing(service, owner, db_session, field):
    with pytest.raises(ValidationError):
        service.book_appointment(owner.id, make_details(**{field: None}))

    assert AppointmentStore(db_session).find_by_user(owner.id) == []


def test_booking_cap(service, owner, db_session):
    for day in range(1, 6):
        service.book_appointment(owner.id, make_details(date=datetime.date(2026, 11, day)))

    with pytest.raises(LimitExceededError):
        service.book_appointment(owner.id, make_details())

    assert len(AppointmentStore(db_session).find_by_user(owner.id)) == 5


def test_booking_cap_is_configurable(db_session, owner):
    service = AppointmentService(db_session, max_appointments=1)
    service.book_appointment(owner.id, make_details())

    with pytest.raises(LimitExceededError):
        service.book_appointment(owner.id, make_details())


def test_book_for_unknown_owner(service, test_db):
    with pytest.raises(NotFoundError):
        service.book_appointment(9999, make_details())


def test_concurrent_bookings_respect_cap(owner):
    owner_id = owner.id

    def attempt(_):
        db = SessionLocal()
        try:
            AppointmentService(db).book_appointment(owner_id, make_details())
            return True
        except LimitExceededError:
            return False
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(12)))

    assert results.count(True) == 5

    db = SessionLocal()
    try:
        active = AppointmentStore(db).count_by_user_and_status(owner_id, ACTIVE_STATUSES)
    finally:
        db.close()
    assert active == 5


def test_owner_locks_are_released_after_booking(owner):
    owner_id = owner.id

    def attempt(target):
        db = SessionLocal()
        try:
            AppointmentService(db).book_appointment(target, make_details())
            return True
        except (LimitExceededError, NotFoundError):
            return False
        finally:
            db.close()

    targets = list(range(1000, 1100)) + [owner_id] * 8
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, targets))

    assert results.count(True) == 5
    assert appointment_service._owner_locks == {}


def test_initiate_payment_leaves_appointment_unchanged(service, owner):
    appointment = service.book_appointment(owner.id, make_details())
    version = appointment.version

    link, same = service.initiate_payment(appointment.id)

    assert link == f"https://payment-gateway.com/pay?appointmentId={appointment.id}&amount=1000"
    assert same.status == AppointmentStatus.PENDING
    assert same.payment_status == PaymentStatus.PENDING
    assert same.version == version


def test_initiate_payment_on_cancelled(service, owner):
    appointment = service.book_appointment(owner.id, make_details())
    service.cancel_appointment(appointment.id)

    with pytest.raises(InvalidStateError):
        service.initiate_payment(appointment.id)


def test_confirm_records_payment_and_notifies(service, owner, notifier):
    appointment = service.book_appointment(owner.id, make_details())

    confirmed = service.confirm_appointment(appointment.id, "pay123")

    assert confirmed.status == AppointmentStatus.CONFIRMED
    assert confirmed.payment_status == PaymentStatus.COMPLETED
    assert confirmed.payment_id == "pay123"

    [notice] = notifier.confirmations
    assert notice.appointment_id == appointment.id
    assert notice.email == "pat@example.com"
    assert notice.date == datetime.date(2026, 11, 2)


def test_confirm_defers_notification_to_scheduler(db_session, owner, notifier):
    scheduled = []
    service = AppointmentService(
        db_session, notifier, schedule=lambda func, *args: scheduled.append((func, args))
    )
    appointment = service.book_appointment(owner.id, make_details())

    service.confirm_appointment(appointment.id, "pay123")
    assert notifier.confirmations == []

    func, args = scheduled[0]
    func(*args)
    assert len(notifier.confirmations) == 1


def test_confirm_notification_failure_is_logged_and_dropped(db_session, owner, caplog):
    service = AppointmentService(db_session, RecordingNotifier(fail=True))
    appointment = service.book_appointment(owner.id, make_details())

    with caplog.at_level(logging.ERROR):
        confirmed = service.confirm_appointment(appointment.id, "pay123")

    assert confirmed.status == AppointmentStatus.CONFIRMED
    failures = [r for r in caplog.records if "failed; dropping" in r.getMessage()]
    assert len(failures) == 1


def test_confirm_twice_is_rejected(service, owner):
    appointment = service.book_appointment(owner.id, make_details())
    service.confirm_appointment(appointment.id, "pay123")

    with pytest.raises(AlreadyPaidError):
        service.confirm_appointment(appointment.id, "pay456")


@pytest.mark.parametrize("operation", [
    "initiate_payment", "confirm_appointment", "cancel_appointment", "complete_appointment"
])
def test_missing_appointment(service, test_db, operation):
    with pytest.raises(NotFoundError):
        getattr(service, operation)(404)


def test_confirm_cancelled_appointment(service, owner):
    appointment = service.book_appointment(owner.id, make_details())
    service.cancel_appointment(appointment.id)

    with pytest.raises(InvalidStateError):
        service.confirm_appointment(appointment.id, "pay123")


def test_cancel_pending(service, owner):
    appointment = service.book_appointment(owner.id, make_details())

    cancelled = service.cancel_appointment(appointment.id)
    assert cancelled.status == AppointmentStatus.CANCELLED


def test_cancel_after_payment_fails(service, owner):
    appointment = service.book_appointment(owner.id, make_details())
    service.confirm_appointment(appointment.id, "pay123")

    with pytest.raises(AlreadyPaidError, match="Cannot cancel a completed appointment."):
        service.cancel_appointment(appointment.id)


def test_cancel_twice_fails(service, owner):
    appointment = service.book_appointment(owner.id, make_details())
    service.cancel_appointment(appointment.id)

    with pytest.raises(InvalidStateError):
        service.cancel_appointment(appointment.id)


def test_cancelled_appointments_free_the_cap(service, owner):
    booked = [service.book_appointment(owner.id, make_details()) for _ in range(5)]
    service.cancel_appointment(booked[0].id)

    service.book_appointment(owner.id, make_details())


def test_feedback_only_after_completion(service, owner):
    appointment = service.book_appointment(owner.id, make_details())

    with pytest.raises(InvalidStateError):
        service.submit_feedback(appointment.id, "Very helpful")

    service.confirm_appointment(appointment.id, "pay123")
    with pytest.raises(InvalidStateError):
        service.submit_feedback(appointment.id, "Very helpful")

    service.complete_appointment(appointment.id)
    updated = service.submit_feedback(appointment.id, "Very helpful")
    assert updated.feedback == "Very helpful"

    [listed] = service.list_appointments(owner.id)
    assert listed.feedback == "Very helpful"


@pytest.mark.parametrize("text", ["", "   ", None])
def test_feedback_requires_text(service, owner, text):
    appointment = service.book_appointment(owner.id, make_details())

    with pytest.raises(ValidationError):
        service.submit_feedback(appointment.id, text)


def test_complete_requires_confirmed_payment(service, owner):
    appointment = service.book_appointment(owner.id, make_details())

    with pytest.raises(InvalidStateError):
        service.complete_appointment(appointment.id)


def test_completed_is_terminal(service, owner):
    appointment = service.book_appointment(owner.id, make_details())
    service.confirm_appointment(appointment.id, "pay123")
    service.complete_appointment(appointment.id)

    with pytest.raises(AlreadyPaidError):
        service.cancel_appointment(appointment.id)
    with pytest.raises(InvalidStateError):
        service.complete_appointment(appointment.id)


def test_list_is_sorted_by_date(service, owner):
    for day in (20, 3, 11):
        service.book_appointment(owner.id, make_details(date=datetime.date(2026, 11, day)))

    dates = [a.date.day for a in service.list_appointments(owner.id)]
    assert dates == [3, 11, 20]


def test_other_owner_cannot_address_appointment(service, owner, db_session):
    appointment = service.book_appointment(owner.id, make_details())
    stranger = UserStore(db_session).create(
        name="Stranger",
        email="stranger@example.com",
        mobile="9000000001",
        password_hash=get_password_hash("Secret#123"),
    )

    with pytest.raises(NotFoundError):
        service.cancel_appointment(appointment.id, caller=stranger)

    stranger.role = UserRole.ADMIN
    UserStore(db_session).save(stranger)
    assert service.cancel_appointment(appointment.id, caller=stranger).status == (
        AppointmentStatus.CANCELLED
    )


def test_concurrent_confirm_and_cancel_apply_once(owner):
    db = SessionLocal()
    try:
        appointment_id = AppointmentService(db).book_appointment(owner.id, make_details()).id
    finally:
        db.close()

    def run(operation):
        session = SessionLocal()
        try:
            service = AppointmentService(session)
            if operation == "confirm":
                service.confirm_appointment(appointment_id, "pay123")
            else:
                service.cancel_appointment(appointment_id)
            return operation
        except MedBookError:
            return None
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = [o for o in pool.map(run, ["confirm", "cancel"]) if o]

    assert len(outcomes) == 1

    db = SessionLocal()
    try:
        final = AppointmentStore(db).find_by_id(appointment_id)
        if outcomes == ["confirm"]:
            assert final.status == AppointmentStatus.CONFIRMED
            assert final.payment_status == PaymentStatus.COMPLETED
        else:
            assert final.status == AppointmentStatus.CANCELLED
            assert final.payment_status == PaymentStatus.PENDING
    finally:
        db.close()
