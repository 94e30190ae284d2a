from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from taxihub.config import settings
from taxihub.models.models import Booking
from taxihub.services.booking_lifecycle import ACTION_ROLES

from conftest import (
    ADMIN_HEADERS,
    STAFF_HEADERS,
    make_user,
    make_vehicle,
    bearer,
    booking_payload,
    fetch_booking,
    audit_rows,
    dt,
)


def _create(client, user, **overrides):
    resp = client.post("/bookings", json=booking_payload(**overrides), headers=bearer(user))
    assert resp.status_code == 200, resp.text
    return resp.json()["id"]


# create

def test_create_booking_is_scheduled_even_with_driver(client, db, sent_emails, calendar_calls):
    admin = make_user(db, role="admin")
    driver = make_user(db, role="driver")

    resp = client.post("/bookings", json=booking_payload(driver_id=driver.id), headers=bearer(admin))

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    booking = fetch_booking(db, body["id"])
    assert booking.status == "scheduled"
    assert booking.driver_id == driver.id
    assert booking.assigned_at is not None
    assert booking.created_by_role == "admin"
    assert booking.start_time == dt("2025-01-10T09:00")
    assert booking.admin_approve_token

    audit = audit_rows(db, booking.id)
    assert [(a.action, a.actor_role) for a in audit] == [("create", "admin")]


def test_create_records_actor_role_from_token(client, db, sent_emails):
    customer = make_user(db, role="customer")
    booking_id = _create(client, customer, created_by_name="Jane")
    booking = fetch_booking(db, booking_id)
    assert booking.created_by_role == "customer"
    assert booking.created_by_name == "Jane"


def test_create_sends_admin_and_contact_emails(client, db, sent_emails):
    customer = make_user(db)
    booking_id = _create(client, customer)
    subjects = {m["subject"]: m["to"] for m in sent_emails}
    assert subjects[f"New booking (id {booking_id}) pending approval"] == "dispatch@example.com"
    assert subjects["We received your booking request (pending confirmation)"] == "jane@example.com"


def test_create_blank_optional_fields_are_stored_as_null(client, db, sent_emails):
    customer = make_user(db)
    booking_id = _create(client, customer, contact_email="", pickup_point="", admin_note="")
    booking = fetch_booking(db, booking_id)
    assert booking.contact_email is None
    assert booking.pickup_point is None
    assert booking.admin_note is None


def test_create_requires_bearer_token(client, db):
    resp = client.post("/bookings", json=booking_payload())
    assert resp.status_code == 401
    assert resp.json()["ok"] is False
    assert db.query(Booking).count() == 0


def test_failed_commit_is_a_server_error(client, db, sent_emails, monkeypatch):
    user = make_user(db)
    headers = bearer(user)

    def broken_commit(self):
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(Session, "commit", broken_commit)
    resp = client.post("/bookings", json=booking_payload(), headers=headers)

    assert resp.status_code == 500
    assert resp.json() == {"ok": False, "error": "Server error"}
    assert db.query(Booking).count() == 0
    assert sent_emails == []

def test_create_rejects_bad_time_format(client, db):
    user = make_user(db)
    resp = client.post("/bookings", json=booking_payload(start_time="2025-01-10 09:00"), headers=bearer(user))
    assert resp.status_code == 400
    body = resp.json()
    assert body["ok"] is False
    assert "start_time must be ISO-like" in body["error"]


def test_create_rejects_timezone_suffix(client, db):
    user = make_user(db)
    resp = client.post("/bookings", json=booking_payload(end_time="2025-01-10T10:00:00Z"), headers=bearer(user))
    assert resp.status_code == 400


def test_create_across_clock_change(client, db, sent_emails, monkeypatch):
    monkeypatch.setattr(settings, "tz_default", "America/Vancouver")
    user = make_user(db)

    skipped = client.post("/bookings", json=booking_payload(
        start_time="2025-03-09T02:30", end_time="2025-03-09T03:15"), headers=bearer(user))
    assert skipped.status_code == 400
    assert skipped.json()["error"] == "start_time: 2025-03-09T02:30:00 does not exist in America/Vancouver (clock change)"

    spanning = client.post("/bookings", json=booking_payload(
        start_time="2025-03-09T01:30", end_time="2025-03-09T03:15"), headers=bearer(user))
    assert spanning.status_code == 200
    booking = fetch_booking(db, spanning.json()["id"])
    assert booking.start_time == dt("2025-03-09T09:30")
    assert booking.end_time == dt("2025-03-09T10:15")

def test_create_rejects_inverted_window(client, db):
    user = make_user(db)
    resp = client.post(
        "/bookings",
        json=booking_payload(start_time="2025-01-10T10:00", end_time="2025-01-10T10:00"),
        headers=bearer(user),
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "end_time must be after start_time"


def test_create_rejects_non_positive_service_id(client, db):
    user = make_user(db)
    resp = client.post("/bookings", json=booking_payload(service_id=0), headers=bearer(user))
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("service_id")


def test_create_rejects_unknown_source(client, db):
    user = make_user(db)
    resp = client.post("/bookings", json=booking_payload(source="fax"), headers=bearer(user))
    assert resp.status_code == 400


def test_create_with_inactive_driver_writes_nothing(client, db, sent_emails):
    admin = make_user(db, role="admin")
    inactive = make_user(db, role="driver", status="inactive")

    resp = client.post("/bookings", json=booking_payload(driver_id=inactive.id), headers=bearer(admin))

    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "Driver not found or inactive"}
    assert db.query(Booking).count() == 0
    assert sent_emails == []


def test_create_with_nonexistent_or_non_driver_user(client, db):
    admin = make_user(db, role="admin")
    customer = make_user(db, role="customer")
    for driver_id in (9999, customer.id):
        resp = client.post("/bookings", json=booking_payload(driver_id=driver_id), headers=bearer(admin))
        assert resp.status_code == 400
    assert db.query(Booking).count() == 0


def test_create_with_inactive_vehicle(client, db):
    admin = make_user(db, role="admin")
    vehicle = make_vehicle(db, status="inactive")
    resp = client.post("/bookings", json=booking_payload(vehicle_id=vehicle.id), headers=bearer(admin))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Vehicle not found or inactive"
    assert db.query(Booking).count() == 0


# update

def test_update_single_field_leaves_everything_else(client, db, sent_emails, calendar_calls):
    user = make_user(db)
    booking_id = _create(client, user, estimated_price_cents=4500)
    before = {c.name: getattr(fetch_booking(db, booking_id), c.name) for c in Booking.__table__.columns}

    resp = client.patch(f"/bookings/{booking_id}", json={"admin_note": "VIP"}, headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    after = {c.name: getattr(fetch_booking(db, booking_id), c.name) for c in Booking.__table__.columns}
    assert after["admin_note"] == "VIP"
    for column in before:
        if column in ("admin_note", "updated_at"):
            continue
        assert after[column] == before[column], column

    audit = audit_rows(db, booking_id)
    assert audit[-1].action == "update"
    assert audit[-1].note == "VIP"
    assert calendar_calls == [booking_id]


def test_update_can_clear_nullable_price(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user, estimated_price_cents=4500)
    resp = client.patch(f"/bookings/{booking_id}", json={"estimated_price_cents": None}, headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert fetch_booking(db, booking_id).estimated_price_cents is None


def test_update_rejects_null_for_required_columns(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)
    resp = client.patch(f"/bookings/{booking_id}", json={"status": None}, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert fetch_booking(db, booking_id).status == "scheduled"


def test_empty_update_is_a_noop(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)
    resp = client.patch(f"/bookings/{booking_id}", json={}, headers=ADMIN_HEADERS)
    assert resp.json() == {"ok": True}
    assert [a.action for a in audit_rows(db, booking_id)] == ["create"]


def test_update_reschedule_tracks_original_window(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)

    client.patch(f"/bookings/{booking_id}", json={"start_time": "2025-01-10T11:00", "end_time": "2025-01-10T12:00"},
                 headers=ADMIN_HEADERS)
    client.patch(f"/bookings/{booking_id}", json={"end_time": "2025-01-10T12:30"}, headers=ADMIN_HEADERS)

    booking = fetch_booking(db, booking_id)
    assert booking.original_start_time == dt("2025-01-10T09:00")
    assert booking.original_end_time == dt("2025-01-10T10:00")
    assert booking.start_time == dt("2025-01-10T11:00")
    assert booking.end_time == dt("2025-01-10T12:30")
    assert booking.move_count == 2


def test_update_rejects_window_that_inverts_after_merge(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)
    resp = client.patch(f"/bookings/{booking_id}", json={"end_time": "2025-01-10T08:00"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert fetch_booking(db, booking_id).end_time == dt("2025-01-10T10:00")


def test_update_status_off_the_advisory_map_is_allowed(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)
    resp = client.patch(f"/bookings/{booking_id}", json={"status": "completed"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert fetch_booking(db, booking_id).status == "completed"


def test_update_with_inactive_driver_writes_nothing(client, db, sent_emails):
    user = make_user(db)
    inactive = make_user(db, role="driver", status="suspended")
    booking_id = _create(client, user)

    resp = client.patch(f"/bookings/{booking_id}", json={"driver_id": inactive.id, "admin_note": "x"},
                        headers=ADMIN_HEADERS)

    assert resp.status_code == 400
    booking = fetch_booking(db, booking_id)
    assert booking.driver_id is None
    assert booking.admin_note is None
    assert [a.action for a in audit_rows(db, booking_id)] == ["create"]


def test_update_reassigning_driver_notifies_both_drivers(client, db, sent_emails):
    user = make_user(db)
    first = make_user(db, role="driver", email="first.driver@example.com")
    second = make_user(db, role="driver", email="second.driver@example.com")
    booking_id = _create(client, user, driver_id=first.id)
    sent_emails.clear()

    client.patch(f"/bookings/{booking_id}", json={"driver_id": second.id}, headers=ADMIN_HEADERS)

    by_recipient = {m["to"]: m["subject"] for m in sent_emails}
    assert by_recipient["jane@example.com"] == f"Booking updated (#{booking_id})"
    assert by_recipient["second.driver@example.com"] == f"Assigned booking updated (#{booking_id})"
    assert "first.driver@example.com" in by_recipient
    assert fetch_booking(db, booking_id).driver_id == second.id


def test_update_can_unassign_driver(client, db, sent_emails):
    user = make_user(db)
    driver = make_user(db, role="driver")
    booking_id = _create(client, user, driver_id=driver.id)
    client.patch(f"/bookings/{booking_id}", json={"driver_id": None}, headers=ADMIN_HEADERS)
    booking = fetch_booking(db, booking_id)
    assert booking.driver_id is None
    assert booking.assigned_at is None


def test_update_requires_admin_header(client, db, sent_emails):
    admin = make_user(db, role="admin")
    booking_id = _create(client, admin)

    assert client.patch(f"/bookings/{booking_id}", json={"admin_note": "x"}).status_code == 401
    assert client.patch(f"/bookings/{booking_id}", json={"admin_note": "x"},
                        headers={"x-admin-token": "wrong"}).status_code == 401
    # A bearer admin is not enough for header-gated commands
    assert client.patch(f"/bookings/{booking_id}", json={"admin_note": "x"}, headers=bearer(admin)).status_code == 401
    # Staff secret does not grant admin commands
    assert client.patch(f"/bookings/{booking_id}", json={"admin_note": "x"}, headers=STAFF_HEADERS).status_code == 401
    # The admin secret is accepted in the staff header too
    ok = client.patch(f"/bookings/{booking_id}", json={"admin_note": "x"},
                      headers={"x-staff-token": "test-admin-token"})
    assert ok.status_code == 200


def test_command_access_follows_action_roles(client, db, sent_emails, monkeypatch):
    user = make_user(db)
    booking_id = _create(client, user)
    assert client.get(f"/bookings/{booking_id}/audit", headers=STAFF_HEADERS).status_code == 401

    monkeypatch.setitem(ACTION_ROLES, "audit", {"admin", "staff"})
    assert client.get(f"/bookings/{booking_id}/audit", headers=STAFF_HEADERS).status_code == 200

    monkeypatch.setitem(ACTION_ROLES, "create", {"admin"})
    resp = client.post("/bookings", json=booking_payload(), headers=bearer(user))
    assert resp.status_code == 403
    assert resp.json() == {"ok": False, "error": "Not allowed to create bookings"}


def test_update_unknown_booking_is_404(client, db):
    resp = client.patch("/bookings/424242", json={"admin_note": "x"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": "Booking not found"}


# confirm

def test_confirm_without_driver_succeeds(client, db, sent_emails, calendar_calls):
    user = make_user(db)
    booking_id = _create(client, user)

    resp = client.post(f"/bookings/{booking_id}/confirm", headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    booking = fetch_booking(db, booking_id)
    assert booking.status == "confirmed"
    assert booking.driver_id is None
    assert booking.confirmed_at is not None
    assert booking.customer_verify_token
    assert calendar_calls == [booking_id]
    verify = [m for m in sent_emails if m["subject"] == "Booking confirmed - please verify details"]
    assert len(verify) == 1
    assert f"/bookings/{booking_id}/customer-verify?token={booking.customer_verify_token}" in verify[0]["html"]


def test_confirm_assigns_driver_and_emails_them(client, db, sent_emails):
    user = make_user(db)
    driver = make_user(db, role="driver", email="dan.driver@example.com", first_name="Dan", last_name="Driver")
    booking_id = _create(client, user)

    resp = client.post(f"/bookings/{booking_id}/confirm", json={"driver_id": driver.id}, headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    booking = fetch_booking(db, booking_id)
    assert booking.driver_id == driver.id
    assert booking.assigned_at is not None
    assignment = [m for m in sent_emails if m["to"] == "dan.driver@example.com"]
    assert assignment[0]["subject"] == f"New assignment: Booking #{booking_id}"
    assert "Hello Dan Driver" in assignment[0]["html"]
    assert [a.action for a in audit_rows(db, booking_id)] == ["create", "confirm"]


def test_confirm_with_inactive_driver_changes_nothing(client, db, sent_emails):
    user = make_user(db)
    inactive = make_user(db, role="driver", status="inactive")
    booking_id = _create(client, user)

    resp = client.post(f"/bookings/{booking_id}/confirm", json={"driver_id": inactive.id}, headers=ADMIN_HEADERS)

    assert resp.status_code == 400
    booking = fetch_booking(db, booking_id)
    assert booking.status == "scheduled"
    assert booking.confirmed_at is None
    assert [a.action for a in audit_rows(db, booking_id)] == ["create"]


def test_confirm_unknown_booking_is_404(client, db):
    resp = client.post("/bookings/999/confirm", headers=ADMIN_HEADERS)
    assert resp.status_code == 404
    assert resp.json()["error"] == "Booking not found"


def test_confirm_can_require_driver(client, db, sent_emails, monkeypatch):
    monkeypatch.setattr(settings, "require_driver_on_confirm", True)
    user = make_user(db)
    booking_id = _create(client, user)

    resp = client.post(f"/bookings/{booking_id}/confirm", headers=ADMIN_HEADERS)

    assert resp.status_code == 400
    assert fetch_booking(db, booking_id).status == "scheduled"


# decision

def test_decline_cancels_and_audits_once(client, db, sent_emails, calendar_calls):
    user = make_user(db)
    booking_id = _create(client, user)

    resp = client.post(f"/bookings/{booking_id}/decision", json={"action": "decline", "reason": "No cars <today>"},
                       headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    assert fetch_booking(db, booking_id).status == "cancelled"
    cancels = [a for a in audit_rows(db, booking_id) if a.action == "cancel"]
    assert len(cancels) == 1
    assert cancels[0].note == "No cars <today>"
    declined = [m for m in sent_emails if m["subject"] == f"Booking declined (#{booking_id})"]
    assert "Reason: No cars &lt;today&gt;" in declined[0]["html"]
    assert calendar_calls == [booking_id]


def test_decision_confirm_behaves_like_confirm(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)
    resp = client.post(f"/bookings/{booking_id}/decision", json={"action": "confirm"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert fetch_booking(db, booking_id).status == "confirmed"
    assert [a.action for a in audit_rows(db, booking_id)] == ["create", "confirm"]


def test_decision_rejects_unknown_action(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)
    resp = client.post(f"/bookings/{booking_id}/decision", json={"action": "maybe"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert fetch_booking(db, booking_id).status == "scheduled"


# delete / verify / audit

def test_soft_delete_hides_booking(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)

    resp = client.delete(f"/bookings/{booking_id}", headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    booking = fetch_booking(db, booking_id)
    assert booking.deleted is True
    assert booking.status == "cancelled"
    listed = client.get("/bookings", headers=bearer(user)).json()["items"]
    assert booking_id not in [b["id"] for b in listed]
    assert client.post(f"/bookings/{booking_id}/confirm", headers=ADMIN_HEADERS).status_code == 404
    assert client.delete(f"/bookings/{booking_id}", headers=ADMIN_HEADERS).status_code == 404


def test_customer_verify(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)
    client.post(f"/bookings/{booking_id}/confirm", headers=ADMIN_HEADERS)
    token = fetch_booking(db, booking_id).customer_verify_token

    assert client.get(f"/bookings/{booking_id}/customer-verify", params={"token": "nope"}).status_code == 403
    resp = client.get(f"/bookings/{booking_id}/customer-verify", params={"token": token})
    assert resp.status_code == 200
    assert resp.json()["verified_at"].endswith("Z")
    # Idempotent
    client.get(f"/bookings/{booking_id}/customer-verify", params={"token": token})
    assert [a.action for a in audit_rows(db, booking_id)] == ["create", "confirm", "customer_verify"]


def test_audit_history(client, db, sent_emails):
    user = make_user(db)
    booking_id = _create(client, user)
    client.patch(f"/bookings/{booking_id}", json={"admin_note": "call first"}, headers=ADMIN_HEADERS)
    client.post(f"/bookings/{booking_id}/decision", json={"action": "decline"}, headers=ADMIN_HEADERS)

    resp = client.get(f"/bookings/{booking_id}/audit", headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    items = resp.json()["items"]
    assert [i["action"] for i in items] == ["create", "update", "cancel"]
    assert all(i["valid"] for i in items)
    assert client.get(f"/bookings/{booking_id}/audit", headers=bearer(user)).status_code == 401


# list

def test_list_filters_and_orders_newest_first(client, db, sent_emails):
    user = make_user(db)
    first = _create(client, user, source="phone")
    second = _create(client, user, source="web")
    third = _create(client, user, source="web")
    client.post(f"/bookings/{third}/confirm", headers=ADMIN_HEADERS)

    all_items = client.get("/bookings", headers=bearer(user)).json()["items"]
    assert [b["id"] for b in all_items] == [third, second, first]

    web = client.get("/bookings", params={"source": "web"}, headers=bearer(user)).json()["items"]
    assert [b["id"] for b in web] == [third, second]

    confirmed = client.get("/bookings", params={"status": "confirmed", "source": "web"},
                           headers=bearer(user)).json()["items"]
    assert [b["id"] for b in confirmed] == [third]


def test_list_serializes_times_as_utc_iso(client, db, sent_emails):
    user = make_user(db)
    _create(client, user)
    item = client.get("/bookings", headers=bearer(user)).json()["items"][0]
    assert item["start_time"] == "2025-01-10T09:00:00Z"
    assert item["end_time"] == "2025-01-10T10:00:00Z"
    assert item["created_at"].endswith("Z")
    assert item["confirmed_at"] is None


def test_list_hides_admin_fields_from_non_admins(client, db, sent_emails):
    customer = make_user(db)
    admin = make_user(db, role="admin")
    _create(client, customer, admin_note="tips well")

    item = client.get("/bookings", headers=bearer(customer)).json()["items"][0]
    assert "admin_note" not in item
    assert "admin_approve_token" not in item
    assert "customer_verify_token" not in item

    admin_item = client.get("/bookings", headers=bearer(admin)).json()["items"][0]
    assert admin_item["admin_note"] == "tips well"


def test_list_requires_bearer(client, db):
    resp = client.get("/bookings")
    assert resp.status_code == 401
    assert resp.json() == {"ok": False, "error": "Not authenticated"}


def test_list_rejects_unknown_status(client, db):
    user = make_user(db)
    assert client.get("/bookings", params={"status": "lost"}, headers=bearer(user)).status_code == 400
