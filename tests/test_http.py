from booking_app.services.audit import recent_events

from conftest import DOCTOR_ID


def _book(client, headers, starts_at, **extra):
    payload = {"doctor_id": DOCTOR_ID, "patient_id": "patient-1", "starts_at": starts_at, **extra}
    return client.post("/appointments", json=payload, headers=headers)


def test_health_and_csrf_token(client):
    assert client.get("/healthz").get_json() == {"ok": True}
    assert client.get("/csrf-token").get_json()["csrf_token"]


def test_posts_without_csrf_token_are_refused(client, doctor):
    resp = client.post(
        "/appointments",
        json={"doctor_id": DOCTOR_ID, "patient_id": "patient-1", "starts_at": "2025-03-03T09:00:00Z"},
    )
    assert resp.status_code == 400
    assert "CSRF" in resp.get_json()["errors"][0]


def test_book_then_conflict(client, doctor, csrf_headers):
    first = _book(client, csrf_headers, "2025-03-03T09:00:00Z", duration_minutes=60)
    assert first.status_code == 201
    appointment = first.get_json()["appointment"]
    assert appointment["status"] == "pending"
    assert appointment["ends_at"] == "2025-03-03T10:00:00+00:00"

    clash = _book(client, csrf_headers, "2025-03-03T09:30:00+00:00")
    assert clash.status_code == 409
    body = clash.get_json()
    assert body["reason"] == "SlotTaken"
    assert body["error"] == "This time was just booked. Please pick another slot."


def test_business_rejections_are_unprocessable(client, doctor, csrf_headers):
    weekend = _book(client, csrf_headers, "2025-03-08T10:00:00Z")
    assert weekend.status_code == 422
    assert weekend.get_json()["reason"] == "OutsideAvailability"

    past = _book(client, csrf_headers, "2025-03-01T10:00:00Z")
    assert past.status_code == 422
    assert past.get_json()["error"] == "Cannot book appointments in the past."

    too_long = _book(client, csrf_headers, "2025-03-03T09:00:00Z", duration_minutes=600)
    assert too_long.get_json()["reason"] == "InvalidDuration"


def test_booking_form_errors(client, doctor, csrf_headers):
    naive = _book(client, csrf_headers, "2025-03-03T09:00:00")
    assert naive.status_code == 400
    assert "starts_at" in naive.get_json()["errors"]

    missing = client.post("/appointments", json={"doctor_id": DOCTOR_ID}, headers=csrf_headers)
    assert missing.status_code == 400
    assert {"patient_id", "starts_at"} <= set(missing.get_json()["errors"])


def test_unknown_doctor_is_404(client, app_ctx, csrf_headers):
    resp = client.post(
        "/appointments",
        json={"doctor_id": "nobody", "patient_id": "patient-1", "starts_at": "2025-03-03T09:00:00Z"},
        headers=csrf_headers,
    )
    assert resp.status_code == 404


def test_validate_endpoint_reports_decision(client, doctor, csrf_headers):
    resp = client.post(
        "/appointments/validate",
        json={"doctor_id": DOCTOR_ID, "starts_at": "2025-03-08T10:00:00Z", "duration_minutes": 30},
        headers=csrf_headers,
    )
    assert resp.status_code == 200
    decision = resp.get_json()["decision"]
    assert decision["accepted"] is False
    assert decision["reason"] == "OutsideAvailability"
    assert decision["message"] == "Doctor is not available on Saturdays."


def test_confirm_cancel_and_history(client, doctor, csrf_headers):
    appt_id = _book(client, csrf_headers, "2025-03-03T11:00:00Z").get_json()["appointment"]["id"]

    confirmed = client.post(f"/appointments/{appt_id}/confirm", headers={**csrf_headers, "X-Actor-Id": "payments"})
    assert confirmed.get_json()["appointment"]["status"] == "confirmed"

    again = client.post(f"/appointments/{appt_id}/confirm", headers=csrf_headers)
    assert again.status_code == 400

    cancelled = client.post(f"/appointments/{appt_id}/cancel", headers=csrf_headers)
    assert cancelled.get_json()["appointment"]["status"] == "cancelled"

    events = client.get(f"/appointments/{appt_id}/history").get_json()["events"]
    assert [e["action"] for e in events] == [
        "appointment_cancelled",
        "appointment_confirmed",
        "appointment_reserved",
    ]
    assert events[1]["actor_id"] == "payments"

    assert client.get("/appointments/missing").status_code == 404


def test_confirm_after_hold_expired(client, doctor, csrf_headers, clock):
    appt_id = _book(client, csrf_headers, "2025-03-03T11:00:00Z").get_json()["appointment"]["id"]
    clock.advance(minutes=31)

    resp = client.post(f"/appointments/{appt_id}/confirm", headers=csrf_headers)
    assert resp.status_code == 409
    assert client.get(f"/appointments/{appt_id}").get_json()["appointment"]["status"] == "cancelled"


def test_reschedule_route(client, doctor, csrf_headers):
    appt_id = _book(client, csrf_headers, "2025-03-03T11:00:00Z").get_json()["appointment"]["id"]
    _book(client, csrf_headers, "2025-03-03T12:00:00Z")

    moved = client.post(
        f"/appointments/{appt_id}/reschedule", json={"starts_at": "2025-03-04T09:00:00Z"}, headers=csrf_headers
    )
    assert moved.status_code == 200
    assert moved.get_json()["appointment"]["starts_at"] == "2025-03-04T09:00:00+00:00"

    blocked = client.post(
        f"/appointments/{appt_id}/reschedule", json={"starts_at": "2025-03-03T12:00:00Z"}, headers=csrf_headers
    )
    assert blocked.status_code == 409


def test_register_doctor_and_edit_availability(client, csrf_headers):
    created = client.post("/doctors", json={"full_name": "Dr. Ines Varga", "timezone": "Europe/Budapest"}, headers=csrf_headers)
    assert created.status_code == 201
    doctor_id = created.get_json()["doctor"]["id"]

    availability = client.get(f"/doctors/{doctor_id}/availability").get_json()["availability"]
    assert availability["timezone"] == "Europe/Budapest"
    assert availability["schedule"]["monday"]["slots"] == [{"start": "09:00", "end": "17:00"}]

    bad = client.put(
        f"/doctors/{doctor_id}/availability",
        json={"schedule": {"monday": {"enabled": True, "slots": [{"start": "12:00", "end": "10:00"}]}}},
        headers=csrf_headers,
    )
    assert bad.status_code == 400

    updated = client.put(
        f"/doctors/{doctor_id}/availability",
        json={"schedule": {"tuesday": {"enabled": True, "slots": [{"start": "08:00", "end": "09:00"}]}}},
        headers=csrf_headers,
    )
    assert updated.status_code == 200
    schedule = updated.get_json()["availability"]["schedule"]
    assert schedule["monday"]["enabled"] is False
    assert schedule["tuesday"]["slots"] == [{"start": "08:00", "end": "09:00"}]

    # 08:00 Budapest (UTC+1 in March) is 07:00 UTC.
    slots = client.get(f"/doctors/{doctor_id}/slots?start=2025-03-04&end=2025-03-04").get_json()["slots"]
    assert [s["start"] for s in slots] == ["2025-03-04T07:00:00+00:00", "2025-03-04T07:30:00+00:00"]


def test_blocked_dates_routes(client, doctor, csrf_headers):
    resp = client.post(
        f"/doctors/{DOCTOR_ID}/blocked-dates",
        json={"date": "2025-03-03", "start_time": "09:00", "end_time": "12:00", "reason": "training"},
        headers=csrf_headers,
    )
    assert resp.status_code == 201
    blocked_id = resp.get_json()["blocked_date"]["id"]

    slots = client.get(f"/doctors/{DOCTOR_ID}/slots?start=2025-03-03").get_json()["slots"]
    assert slots[0]["start"] == "2025-03-03T12:00:00+00:00"

    half = client.post(
        f"/doctors/{DOCTOR_ID}/blocked-dates", json={"date": "2025-03-04", "start_time": "09:00"}, headers=csrf_headers
    )
    assert half.status_code == 400

    assert client.delete(f"/doctors/{DOCTOR_ID}/blocked-dates/{blocked_id}", headers=csrf_headers).status_code == 200
    assert client.delete(f"/doctors/{DOCTOR_ID}/blocked-dates/{blocked_id}", headers=csrf_headers).status_code == 404
    slots = client.get(f"/doctors/{DOCTOR_ID}/slots?start=2025-03-03").get_json()["slots"]
    assert len(slots) == 16


def test_slots_query_validation(client, doctor):
    assert client.get(f"/doctors/{DOCTOR_ID}/slots").status_code == 400
    assert client.get(f"/doctors/{DOCTOR_ID}/slots?start=2025-03-10&end=2025-03-03").status_code == 400
    assert client.get(f"/doctors/{DOCTOR_ID}/slots?start=2025-03-01&end=2025-05-01").status_code == 400
    assert client.get(f"/doctors/{DOCTOR_ID}/slots?start=2025-03-03&duration=500").status_code == 400
    assert client.get("/doctors/nobody/slots?start=2025-03-03").status_code == 404


def test_rejection_message_names_the_closed_day(client, doctor, csrf_headers):
    resp = _book(client, csrf_headers, "2025-03-08T10:00:00Z")
    assert resp.status_code == 422
    body = resp.get_json()
    assert body["error"] == "Doctor is not available on Saturdays."
    assert body["detail"]["weekday"] == "saturday"

    event = recent_events(DOCTOR_ID)[0]
    assert (event["action"], event["result"]) == ("appointment_reserve", "rejected")
    assert event["meta"]["reason"] == "OutsideAvailability"


def test_list_appointments_route(client, doctor, csrf_headers):
    first = _book(client, csrf_headers, "2025-03-03T09:00:00Z").get_json()["appointment"]["id"]
    second = _book(client, csrf_headers, "2025-03-04T09:00:00Z", patient_id="patient-2").get_json()["appointment"]["id"]
    client.post(f"/appointments/{second}/confirm", headers=csrf_headers)

    def ids(query):
        resp = client.get(f"/appointments?{query}")
        assert resp.status_code == 200
        return [a["id"] for a in resp.get_json()["appointments"]]

    assert ids(f"doctor_id={DOCTOR_ID}") == [first, second]
    assert ids(f"doctor_id={DOCTOR_ID}&status=pending") == [first]
    assert ids("patient_id=patient-2") == [second]
    assert ids("from=2025-03-04T00:00:00Z&to=2025-03-05T00:00:00Z") == [second]

    assert client.get("/appointments?status=no-show").status_code == 400
    assert client.get("/appointments?from=2025-03-04T00:00:00").status_code == 400


def test_zero_duration_slots_query_is_refused(client, doctor):
    assert client.get(f"/doctors/{DOCTOR_ID}/slots?start=2025-03-03&duration=0").status_code == 400
