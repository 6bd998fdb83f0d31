from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from salon.api import app as api
from salon.app.services.shared_services import local_now
from salon.app.services.working_hours import WEEKDAY_NAMES

ALL_WEEK = [{"day": name, "hours": "10:00 - 20:00"} for name in WEEKDAY_NAMES["uk"]]


@pytest.fixture
def fake_bot(monkeypatch):
    bot = SimpleNamespace(send_message=AsyncMock(return_value=None))
    monkeypatch.setattr(api, "get_bot", lambda: bot)
    return bot


@pytest.fixture
def client(seed_salon, fake_bot):
    salon = seed_salon(working_hours=ALL_WEEK)
    test_client = TestClient(api.get_app())
    test_client.salon = salon
    test_client.day = (local_now() + timedelta(days=3)).date().isoformat()
    return test_client


def _book_payload(client, **overrides) -> dict:
    s = client.salon
    payload = {
        "salon_id": s.salon_id,
        "master_id": s.master_ids[0],
        "service_ids": [s.haircut, s.styling],
        "date": client.day,
        "time": "14:00",
        "first_name": "Олена",
        "last_name": "Коваль",
        "phone": "+380671234567",
    }
    payload.update(overrides)
    return payload


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_get_salon_by_slug(client):
    resp = client.get("/api/salons/beauty-lab")
    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "Beauty Lab"
    assert [m["name"] for m in body["masters"]] == ["Олена", "Ірина"]
    assert len(body["services"]) == 4
    assert isinstance(body["is_open"], bool)

    assert client.get("/api/salons/nope").status_code == 404


def test_slots_endpoint(client):
    s = client.salon
    resp = client.get("/api/slots", params={"salon_id": s.salon_id, "date": client.day, "master_id": s.master_ids[0]})
    assert resp.status_code == 200
    slots = resp.json()["slots"]
    assert len(slots) == 20
    assert slots[0] == {"time": "10:00", "available": True}

    bad = client.get("/api/slots", params={"salon_id": s.salon_id, "date": client.day, "master_id": "x"})
    assert bad.status_code == 400
    missing = client.get("/api/slots", params={"salon_id": 9999, "date": client.day})
    assert missing.status_code == 404


def test_duration_endpoint(client):
    s = client.salon
    resp = client.post("/api/duration", json={"salon_id": s.salon_id, "service_ids": [s.haircut, s.styling]})
    assert resp.json() == {"total_minutes": 75, "required_slots": 3, "rounded_duration_minutes": 90}

    missing = client.post("/api/duration", json={"salon_id": s.salon_id, "service_ids": [9999]})
    assert missing.status_code == 404
    assert missing.json()["detail"]["error"] == "not_found"


def test_book_then_slots_and_check_reflect_it(client, fake_bot):
    s = client.salon
    resp = client.post("/api/book", json=_book_payload(client))
    body = resp.json()
    assert body["ok"] is True
    assert body["time"] == "14:00"
    assert body["duration_minutes"] == 90
    assert body["status"] == "pending"
    assert Decimal(str(body["price"])) == Decimal("800")
    # Background delivery ran after the response
    fake_bot.send_message.assert_awaited_once()

    params = {
        "salon_id": s.salon_id,
        "date": client.day,
        "master_id": s.master_ids[0],
        "service_ids": f"{s.haircut},{s.styling}",
    }
    blocked = client.get("/api/check_slot", params={**params, "time": "13:30"}).json()
    assert blocked["available"] is False
    assert blocked["error"] == "slot_unavailable"
    assert blocked["message"] == "Потрібно 3 слотів підряд (90 хв). Оберіть інший час."

    free = client.get("/api/check_slot", params={**params, "time": "15:30"}).json()
    assert free == {"ok": True, "available": True, "times": ["15:30", "16:00", "16:30"], "error": None, "message": None}


def test_double_booking_returns_retryable_conflict(client):
    assert client.post("/api/book", json=_book_payload(client)).json()["ok"] is True
    body = client.post("/api/book", json=_book_payload(client, first_name="Ірина")).json()
    assert body["ok"] is False
    assert body["error"] == "slot_conflict"
    assert body["retryable"] is True


def test_book_any_specialist(client):
    first = client.post("/api/book", json=_book_payload(client, master_id="any")).json()
    second = client.post("/api/book", json=_book_payload(client, master_id="any", first_name="Ірина")).json()
    assert first["master_id"] == client.salon.master_ids[0]
    assert second["master_id"] == client.salon.master_ids[1]


def test_book_invalid_contact(client, fake_bot):
    body = client.post("/api/book", json=_book_payload(client, phone="123")).json()
    assert body["ok"] is False
    assert body["error"] == "invalid_contact"
    fake_bot.send_message.assert_not_awaited()


def test_book_idempotency_key(client):
    first = client.post("/api/book", json=_book_payload(client, idempotency_key="abc-1")).json()
    again = client.post("/api/book", json=_book_payload(client, idempotency_key="abc-1")).json()
    assert again["ok"] is True
    assert again["booking_id"] == first["booking_id"]


def test_cancel_and_status_endpoints(client):
    booking_id = client.post("/api/book", json=_book_payload(client)).json()["booking_id"]

    confirmed = client.post(f"/api/bookings/{booking_id}/status", json={"status": "confirmed"}).json()
    assert confirmed["status"] == "confirmed"

    invalid = client.post(f"/api/bookings/{booking_id}/status", json={"status": "pending"}).json()
    assert invalid["ok"] is False
    assert invalid["error"] == "invalid_status"

    cancelled = client.post("/api/cancel", json={"booking_id": booking_id}).json()
    assert cancelled["ok"] is True
    assert cancelled["status"] == "cancelled"

    missing = client.post("/api/cancel", json={"booking_id": 9999}).json()
    assert missing["error"] == "not_found"


def test_check_slot_malformed_time(client):
    s = client.salon
    resp = client.get("/api/check_slot", params={
        "salon_id": s.salon_id,
        "date": client.day,
        "time": "9:7x",
        "service_ids": str(s.haircut),
        "master_id": s.master_ids[0],
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["available"] is False
    assert body["error"] == "invalid_time"
