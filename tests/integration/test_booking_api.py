from datetime import date, timedelta

import httpx
import pytest

from tests.fixtures.booking_fixtures import PROVIDER_ID, appointment_payload, schedule_payload


def next_monday() -> date:
    day = date.today() + timedelta(days=7)
    return day + timedelta(days=-day.weekday() % 7)


def slot_json(day: date, start: str, end: str) -> dict:
    return {"start_time": start, "end_time": end, "datetime": f"{day.isoformat()}T{start}:00"}


@pytest.fixture
def booking_day():
    return next_monday()


@pytest.fixture
def marketplace(remote, booking_day):
    """Provider schedule, slots for any date and a successful booking."""

    def available_slots(request):
        day = date.fromisoformat(request.url.params["date"])
        return httpx.Response(
            200,
            json={
                "available_slots": [
                    slot_json(day, "09:00", "09:30"),
                    slot_json(day, "10:00", "10:30"),
                ]
            },
        )

    remote.routes[("GET", f"/providers/{PROVIDER_ID}/schedule-info")] = (200, schedule_payload())
    remote.routes[("GET", f"/providers/{PROVIDER_ID}/available-slots")] = available_slots
    remote.routes[("POST", "/appointments")] = (
        201,
        {
            "message": "Appointment booked successfully",
            "appointment": appointment_payload(
                start=f"{booking_day.isoformat()}T09:00:00",
                end=f"{booking_day.isoformat()}T09:30:00",
            ),
        },
    )
    return remote


async def fill_draft(client, booking_day):
    response = await client.post("/api/v1/booking/draft", json={"provider_id": PROVIDER_ID})
    assert response.status_code == 200
    response = await client.patch(
        "/api/v1/booking/draft",
        json={
            "selected_services": [1],
            "selected_date": booking_day.isoformat(),
            "selected_slot": slot_json(booking_day, "09:00", "09:30"),
            "notes": " First visit ",
        },
    )
    assert response.status_code == 200
    return response.json()


class TestBookingDraftAPI:
    @pytest.mark.asyncio
    async def test_empty_draft(self, client):
        response = await client.get("/api/v1/booking/draft")
        assert response.status_code == 200
        data = response.json()
        assert data["provider_id"] is None
        assert data["selected_services"] == []

    @pytest.mark.asyncio
    async def test_selections_persist_per_session(self, client, marketplace, booking_day, app):
        draft = await fill_draft(client, booking_day)
        assert draft["selected_date"] == booking_day.isoformat()
        assert draft["selected_time"] == "9:00 AM - 9:30 AM"
        assert draft["notes"] == "First visit"

        response = await client.get("/api/v1/booking/draft")
        assert response.json()["selected_services"] == [1]

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(
            transport=transport, base_url="http://test", headers={"X-Session-ID": "other"}
        ) as other:
            response = await other.get("/api/v1/booking/draft")
        assert response.json()["provider_id"] is None

    @pytest.mark.asyncio
    async def test_changing_date_clears_slot(self, client, marketplace, booking_day):
        await fill_draft(client, booking_day)
        response = await client.patch(
            "/api/v1/booking/draft",
            json={"selected_date": (booking_day + timedelta(days=1)).isoformat()},
        )
        assert response.status_code == 200
        assert response.json()["selected_slot"] is None
        assert response.json()["selected_time"] is None

    @pytest.mark.asyncio
    async def test_closed_day_rejected(self, client, marketplace, booking_day):
        await client.post("/api/v1/booking/draft", json={"provider_id": PROVIDER_ID})
        sunday = booking_day - timedelta(days=1)
        response = await client.patch(
            "/api/v1/booking/draft", json={"selected_date": sunday.isoformat()}
        )
        assert response.status_code == 422
        data = response.json()
        assert data["kind"] == "validation"
        assert "appointment_date" in data["field_errors"]

    @pytest.mark.asyncio
    async def test_unknown_draft_field_rejected(self, client):
        response = await client.patch("/api/v1/booking/draft", json={"price": 10})
        assert response.status_code == 422
        assert response.json()["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_abandon_clears_draft(self, client, marketplace, booking_day, fake_redis):
        await fill_draft(client, booking_day)
        response = await client.delete("/api/v1/booking/draft")
        assert response.status_code == 200
        assert response.json()["provider_id"] is None
        assert "booking_draft:session-1" not in fake_redis.store

    @pytest.mark.asyncio
    async def test_session_header_required(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as anonymous:
            response = await anonymous.get("/api/v1/booking/draft")
        assert response.status_code == 422
        assert response.json()["kind"] == "validation"


class TestSlotsAPI:
    @pytest.mark.asyncio
    async def test_not_ready_until_services_and_date_chosen(self, client, marketplace):
        await client.post("/api/v1/booking/draft", json={"provider_id": PROVIDER_ID})
        response = await client.get("/api/v1/booking/slots")
        assert response.status_code == 200
        assert response.json() == {"ready": False, "slots": []}
        assert not marketplace.calls("GET", f"/providers/{PROVIDER_ID}/available-slots")

    @pytest.mark.asyncio
    async def test_slots_for_selection(self, client, marketplace, booking_day):
        await client.post("/api/v1/booking/draft", json={"provider_id": PROVIDER_ID})
        await client.patch(
            "/api/v1/booking/draft",
            json={"selected_services": [1], "selected_date": booking_day.isoformat()},
        )
        response = await client.get("/api/v1/booking/slots")
        data = response.json()
        assert data["ready"] is True
        assert [slot["start_time"] for slot in data["slots"]] == ["09:00", "10:00"]
        assert data["slots"][0]["formatted_time"] == "9:00 AM - 9:30 AM"

        await client.get("/api/v1/booking/slots")
        assert len(marketplace.calls("GET", f"/providers/{PROVIDER_ID}/available-slots")) == 1

    @pytest.mark.asyncio
    async def test_slots_match_selected_services(self, client, marketplace, booking_day):
        marketplace.routes[("GET", f"/providers/{PROVIDER_ID}/available-slots")] = (
            200,
            {
                "available_slots": [
                    slot_json(booking_day, "09:00", "09:30"),
                    slot_json(booking_day, "09:00", "09:45"),
                ]
            },
        )
        await client.post("/api/v1/booking/draft", json={"provider_id": PROVIDER_ID})
        await client.patch(
            "/api/v1/booking/draft",
            json={"selected_services": [1, 2], "selected_date": booking_day.isoformat()},
        )
        response = await client.get("/api/v1/booking/slots")
        assert [slot["end_time"] for slot in response.json()["slots"]] == ["09:45"]


class TestSubmitAPI:
    @pytest.mark.asyncio
    async def test_submit_creates_appointment(self, client, marketplace, booking_day):
        await fill_draft(client, booking_day)
        response = await client.post("/api/v1/booking/submit")
        assert response.status_code == 201
        data = response.json()
        assert data["appointment"]["id"] == 101
        assert data["appointment"]["status"] == "pending"

        sent = marketplace.calls("POST", "/appointments")[0]
        assert sent.headers["Authorization"] == "Bearer patient-token"

        draft = (await client.get("/api/v1/booking/draft")).json()
        assert draft["provider_id"] is None

    @pytest.mark.asyncio
    async def test_incomplete_draft(self, client, marketplace):
        await client.post("/api/v1/booking/draft", json={"provider_id": PROVIDER_ID})
        response = await client.post("/api/v1/booking/submit")
        assert response.status_code == 422
        data = response.json()
        assert set(data["field_errors"]) == {"service_ids", "appointment_date", "start_time"}
        assert not marketplace.calls("POST", "/appointments")

    @pytest.mark.asyncio
    async def test_slot_too_short_for_services(self, client, marketplace, booking_day):
        await fill_draft(client, booking_day)
        await client.patch("/api/v1/booking/draft", json={"selected_services": [1, 2]})
        await client.patch(
            "/api/v1/booking/draft",
            json={"selected_slot": slot_json(booking_day, "09:00", "09:30")},
        )
        response = await client.post("/api/v1/booking/submit")
        assert response.status_code == 422
        assert "start_time" in response.json()["field_errors"]
        assert not marketplace.calls("POST", "/appointments")

    @pytest.mark.asyncio
    async def test_taken_slot_is_conflict(self, client, marketplace, booking_day):
        marketplace.routes[("POST", "/appointments")] = (
            422,
            {
                "message": "The given data was invalid.",
                "errors": {"start_time": ["This time slot is no longer available."]},
            },
        )
        await fill_draft(client, booking_day)
        response = await client.post("/api/v1/booking/submit")
        assert response.status_code == 409
        assert response.json()["kind"] == "conflict"

        draft = (await client.get("/api/v1/booking/draft")).json()
        assert draft["selected_slot"] is None
        assert draft["selected_services"] == [1]
        assert draft["selected_date"] == booking_day.isoformat()

    @pytest.mark.asyncio
    async def test_expired_session(self, client, marketplace, booking_day):
        marketplace.routes[("POST", "/appointments")] = (401, {"message": "Unauthenticated."})
        await fill_draft(client, booking_day)
        response = await client.post("/api/v1/booking/submit")
        assert response.status_code == 401
        assert response.json()["kind"] == "auth"
