from datetime import datetime, time, timedelta

import pytest
from fastapi.testclient import TestClient

from clinic_scheduling.api.deps import get_payment_collaborator, get_session
from clinic_scheduling.core.errors import PaymentInitiationFailed
from clinic_scheduling.core.security import Role, create_access_token
from clinic_scheduling.main import app
from clinic_scheduling.models.booking import Booking, BookingState
from clinic_scheduling.services.payment_service import PaymentInitiation

PROVIDER_ID = 7
PATIENT_ID = 11


class FakePayments:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[int] = []

    async def initiate(self, booking: Booking, email: str) -> PaymentInitiation:
        self.calls.append(booking.id)
        if self.fail:
            raise PaymentInitiationFailed()
        return PaymentInitiation(reference=f"appt_{booking.id}_1", authorization_url="https://checkout.test/x")


def _auth(actor_id: int, role: Role, email: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(actor_id, role, email)}"}


PATIENT_AUTH = _auth(PATIENT_ID, Role.PATIENT, "patient@example.com")
PROVIDER_AUTH = _auth(PROVIDER_ID, Role.PROVIDER)
SYSTEM_AUTH = _auth(0, Role.SYSTEM)


@pytest.fixture
def payments() -> FakePayments:
    return FakePayments()


@pytest.fixture
def client(session_maker, payments):
    async def override_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_payment_collaborator] = lambda: payments
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def slot(monday, add_window) -> datetime:
    add_window(monday, time(9), time(12))
    return datetime.combine(monday, time(9))


def _book_body(start: datetime) -> dict:
    return {"provider_id": PROVIDER_ID, "slot_start_utc": start.isoformat()}


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_list_slots_uses_server_duration_and_buffer(client, slot, monday) -> None:
    resp = client.get(f"/api/v1/providers/{PROVIDER_ID}/slots", params={"date": monday.isoformat()})

    assert resp.status_code == 200
    body = resp.json()
    assert body["no_availability"] is False
    assert body["duration_minutes"] == 45
    starts = [s["start_utc"] for s in body["slots"]]
    assert starts == [
        slot.isoformat(),
        (slot + timedelta(minutes=45)).isoformat(),
        (slot + timedelta(minutes=90)).isoformat(),
        (slot + timedelta(minutes=135)).isoformat(),
    ]


def test_list_slots_flags_no_availability(client, monday) -> None:
    resp = client.get(f"/api/v1/providers/{PROVIDER_ID}/slots", params={"date": monday.isoformat()})

    assert resp.status_code == 200
    assert resp.json()["no_availability"] is True
    assert resp.json()["slots"] == []


def test_book_starts_payment(client, slot, payments) -> None:
    resp = client.post("/api/v1/bookings", json=_book_body(slot), headers=PATIENT_AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["next_action"] == "initiate_payment"
    assert body["payment"]["authorization_url"] == "https://checkout.test/x"
    assert body["booking"]["status"] == "scheduled"
    assert body["booking"]["payment_status"] == "pending"
    assert body["booking"]["patient_id"] == PATIENT_ID
    assert payments.calls == [body["booking"]["id"]]


def test_payment_failure_keeps_hold_and_retry_reuses_it(client, slot, payments, count_bookings) -> None:
    payments.fail = True
    failed = client.post("/api/v1/bookings", json=_book_body(slot), headers=PATIENT_AUTH)

    assert failed.status_code == 502
    assert failed.json()["code"] == "payment_initiation_failed"
    token = failed.json()["idempotency_token"]

    payments.fail = False
    retried = client.post(
        "/api/v1/bookings", json=_book_body(slot), headers={**PATIENT_AUTH, "Idempotency-Key": token}
    )

    assert retried.status_code == 200
    assert retried.json()["reused"] is True
    assert retried.json()["booking"]["id"] == failed.json()["booking_id"]
    assert count_bookings() == 1


def test_second_patient_gets_slot_taken(client, slot) -> None:
    client.post("/api/v1/bookings", json=_book_body(slot), headers=PATIENT_AUTH)
    other = _auth(12, Role.PATIENT, "other@example.com")

    resp = client.post("/api/v1/bookings", json=_book_body(slot), headers=other)

    assert resp.status_code == 409
    assert resp.json()["code"] == "slot_taken"


def test_booking_requires_token(client, slot) -> None:
    resp = client.post("/api/v1/bookings", json=_book_body(slot))

    assert resp.status_code == 401


def test_patient_cannot_waive_payment(client, slot) -> None:
    body = {**_book_body(slot), "waive_payment": True}

    resp = client.post("/api/v1/bookings", json=body, headers=PATIENT_AUTH)

    assert resp.status_code == 403


def test_admin_books_with_waived_payment(client, slot, payments) -> None:
    body = {**_book_body(slot), "patient_id": PATIENT_ID, "waive_payment": True}

    resp = client.post("/api/v1/bookings", json=body, headers=_auth(1, Role.ADMIN))

    assert resp.status_code == 200
    assert resp.json()["next_action"] == "none"
    assert resp.json()["booking"]["payment_status"] == "waived"
    assert payments.calls == []


def test_events_cancel_and_lookup(client, slot) -> None:
    booked = client.post("/api/v1/bookings", json=_book_body(slot), headers=PATIENT_AUTH).json()
    booking_id = booked["booking"]["id"]

    paid = client.post(
        f"/api/v1/bookings/{booking_id}/events", json={"event": "payment_succeeded"}, headers=SYSTEM_AUTH
    )
    assert paid.status_code == 200
    assert paid.json()["status"] == "confirmed"

    by_token = client.get(f"/api/v1/bookings/by-token/{booked['booking']['idempotency_token']}", headers=PATIENT_AUTH)
    assert by_token.json()["id"] == booking_id

    cancelled = client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=PROVIDER_AUTH)
    assert cancelled.status_code == 200
    assert cancelled.json()["booking"]["status"] == "cancelled"

    again = client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=PATIENT_AUTH)
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"


def test_completed_booking_cancel_is_rejected(client, add_booking, slot) -> None:
    booking = add_booking(slot, minutes=45, state=BookingState.COMPLETED_PAID)

    resp = client.post(f"/api/v1/bookings/{booking.id}/cancel", headers=PATIENT_AUTH)

    assert resp.status_code == 409
    assert client.get(f"/api/v1/bookings/{booking.id}", headers=PATIENT_AUTH).json()["status"] == "completed"


def test_other_patient_cannot_read_booking(client, add_booking, slot) -> None:
    booking = add_booking(slot, minutes=45)

    resp = client.get(f"/api/v1/bookings/{booking.id}", headers=_auth(12, Role.PATIENT))

    assert resp.status_code == 404
    assert resp.json()["code"] == "booking_not_found"


def test_list_my_bookings(client, add_booking, slot) -> None:
    add_booking(slot, minutes=45)
    add_booking(slot, minutes=45, patient_id=12, provider_id=8)

    mine = client.get("/api/v1/bookings", headers=PATIENT_AUTH).json()
    provider_view = client.get("/api/v1/bookings", headers=PROVIDER_AUTH).json()

    assert [b["patient_id"] for b in mine] == [PATIENT_ID]
    assert [b["provider_id"] for b in provider_view] == [PROVIDER_ID]


def test_provider_manages_availability_and_closures(client, monday) -> None:
    windows = [{"day_of_week": 1, "start_time": "09:00:00", "end_time": "12:00:00"}]

    put = client.put(f"/api/v1/providers/{PROVIDER_ID}/availability", json=windows, headers=PROVIDER_AUTH)
    assert put.status_code == 200
    assert len(put.json()) == 1

    closure = client.post(
        f"/api/v1/providers/{PROVIDER_ID}/closures",
        json={"closed_on": monday.isoformat(), "reason": "Training"},
        headers=PROVIDER_AUTH,
    )
    assert closure.status_code == 201

    slots = client.get(f"/api/v1/providers/{PROVIDER_ID}/slots", params={"date": monday.isoformat()}).json()
    assert slots["no_availability"] is True
    assert len(client.get(f"/api/v1/providers/{PROVIDER_ID}/closures").json()) == 1


def test_other_provider_cannot_edit_schedule(client) -> None:
    windows = [{"day_of_week": 1, "start_time": "09:00:00", "end_time": "12:00:00"}]

    resp = client.put(f"/api/v1/providers/{PROVIDER_ID}/availability", json=windows, headers=_auth(8, Role.PROVIDER))

    assert resp.status_code == 403


def test_window_must_end_after_start(client) -> None:
    windows = [{"day_of_week": 1, "start_time": "12:00:00", "end_time": "09:00:00"}]

    resp = client.put(f"/api/v1/providers/{PROVIDER_ID}/availability", json=windows, headers=PROVIDER_AUTH)

    assert resp.status_code == 422


def test_system_listing_needs_provider_id(client, add_booking, slot) -> None:
    add_booking(slot, minutes=45)

    missing = client.get("/api/v1/bookings", headers=SYSTEM_AUTH)
    scoped = client.get("/api/v1/bookings", params={"provider_id": PROVIDER_ID}, headers=SYSTEM_AUTH)

    assert missing.status_code == 422
    assert missing.json()["code"] == "invalid_booking_request"
    assert [b["provider_id"] for b in scoped.json()] == [PROVIDER_ID]
