"""Tests for the HTTP API and the WhatsApp webhook."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from tableback.config import Config
from tableback.models import ConversationType, ReplyRecord, ReservationStatus
from tableback.server import create_app, run_tick_loop

AUTH_TOKEN = "webhook-secret"
WEBHOOK_URL = "http://testserver/whatsapp/webhook"


@pytest.fixture
def config():
    return Config(twilio_auth_token=AUTH_TOKEN, ledger_path="")


@pytest.fixture
def client(config, engine):
    app = create_app(config=config, engine=engine, start_ticker=False)
    with TestClient(app) as client:
        yield client


def signed_post(client, params, token=AUTH_TOKEN):
    signature = RequestValidator(token).compute_signature(WEBHOOK_URL, params)
    return client.post(
        "/whatsapp/webhook", data=params, headers={"X-Twilio-Signature": signature}
    )


class TestStaffEndpoints:
    """Tests for reservation and waitlist endpoints."""

    def test_health(self, client):
        """Test the health check endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_add_reservation(self, client, engine):
        """Test creating a reservation through the API."""
        response = client.post(
            "/reservations",
            json={"name": "Alice", "phone": "+32470000001", "party_size": 4, "time": "19:00"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "attention"
        assert body["estimated_revenue"] == 240
        assert engine.store.get_reservation(body["id"]) is not None

    def test_invalid_reservation(self, client):
        """Test that invalid staff input is rejected."""
        response = client.post(
            "/reservations", json={"name": "Alice", "party_size": 0, "time": "19:00"}
        )

        assert response.status_code == 422

    def test_state(self, client, add_reservation, add_waitlist_entry):
        """Test the state snapshot endpoint."""
        add_reservation()
        add_waitlist_entry()

        state = client.get("/state").json()

        assert [r["name"] for r in state["reservations"]] == ["Alice"]
        assert [w["name"] for w in state["waitlist"]] == ["Bob"]
        assert state["in_flight_reservation_ids"] == []

    def test_remove_reservation(self, client, engine, add_reservation):
        """Test removing a reservation twice."""
        reservation = add_reservation()

        assert client.delete(f"/reservations/{reservation.id}").status_code == 200
        assert client.delete(f"/reservations/{reservation.id}").status_code == 404
        assert engine.store.reservations == []

    def test_clear_reservations(self, client, add_reservation):
        """Test removing every reservation."""
        add_reservation()
        add_reservation(name="Eve")

        assert client.delete("/reservations").json() == {"removed": 2}

    def test_waitlist_lifecycle(self, client, engine):
        """Test adding and removing a waitlist guest."""
        response = client.post(
            "/waitlist", json={"name": "Bob", "phone": "+32470000002", "party_size": 2}
        )
        entry_id = response.json()["id"]

        assert response.status_code == 201
        assert client.delete(f"/waitlist/{entry_id}").status_code == 200
        assert client.delete(f"/waitlist/{entry_id}").status_code == 404

    def test_contact_waitlist_entry(self, client, add_reservation, add_waitlist_entry):
        """Test that staff can offer an open table to a waitlist guest."""
        reservation = add_reservation()
        reservation.status = ReservationStatus.UNFILLED
        entry = add_waitlist_entry()

        body = client.post(f"/waitlist/{entry.id}/contact").json()

        assert body["offered"] is True
        assert body["reservation"]["id"] == reservation.id
        assert body["reservation"]["status"] == "processing"

    def test_contact_without_open_table(self, client, add_waitlist_entry):
        """Test contacting a guest when no table is open."""
        entry = add_waitlist_entry()

        assert client.post(f"/waitlist/{entry.id}/contact").json() == {
            "offered": False,
            "reservation": None,
        }

    def test_contact_unknown_entry(self, client):
        """Test contacting an unknown guest."""
        assert client.post("/waitlist/missing/contact").status_code == 404

    def test_update_settings(self, client, engine):
        """Test updating the automation settings."""
        response = client.put(
            "/settings/automation",
            json={"no_show_threshold_minutes": 20, "waitlist_response_minutes": 5},
        )

        assert response.status_code == 200
        assert engine.context.automation_settings.no_show_threshold_minutes == 20
        assert client.get("/settings").json()["automation"]["waitlist_response_minutes"] == 5

    def test_notifications(self, client, add_waitlist_entry):
        """Test the notifications endpoint."""
        add_waitlist_entry(name="Bob")

        notifications = client.get("/notifications").json()

        assert notifications[-1]["message"] == "Bob added to the waitlist"
        assert notifications[-1]["level"] == "info"

    def test_engine_missing(self, config):
        """Test that requests before startup get a 503."""
        app = create_app(config=config, start_ticker=False)

        response = TestClient(app).get("/state")

        assert response.status_code == 503


class TestConfirmationEndpoint:
    """Tests for GET /whatsapp/confirmation."""

    def test_no_reply_yet(self, client):
        """Test a lookup before any reply arrived."""
        body = client.get("/whatsapp/confirmation", params={"phone": "+32470000001"}).json()

        assert body == {
            "ok": True,
            "confirmed": False,
            "declined": False,
            "last_reply": None,
            "updated_at": None,
        }

    def test_reply_found_by_local_number(self, client, ledger):
        """Test a lookup by local number."""
        at = datetime(2026, 6, 15, 17, 5, tzinfo=timezone.utc)
        ledger.set("+32470000001", ReplyRecord(confirmed=True, last_reply="JA", updated_at=at))

        body = client.get("/whatsapp/confirmation", params={"phone": "0470000001"}).json()

        assert body["confirmed"] is True
        assert body["last_reply"] == "JA"
        assert body["updated_at"] == at.isoformat()

    def test_missing_phone(self, client):
        """Test a lookup without a phone number."""
        assert client.get("/whatsapp/confirmation", params={"phone": "  "}).status_code == 400


class TestWhatsAppWebhook:
    """Tests for POST /whatsapp/webhook."""

    def test_confirmation_reply(self, client, ledger):
        """Test that a signed YES is recorded and answered with TwiML."""
        response = signed_post(client, {"From": "whatsapp:+32470000001", "Body": "Ja"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert "Great, your reservation is confirmed" in response.text
        assert ledger.get("+32470000001").confirmed

    def test_offer_reply(self, client, ledger):
        """Test a signed NO to a waitlist offer."""
        ledger.set(
            "+32470000002",
            ReplyRecord(
                updated_at=datetime.now(timezone.utc),
                conversation_type=ConversationType.WAITLIST_OFFER,
                offer_expires_at=datetime.now(timezone.utc) + timedelta(minutes=10),
            ),
        )

        response = signed_post(client, {"From": "whatsapp:+32470000002", "Body": "no"})

        assert "offer the table to someone else" in response.text
        record = ledger.get("+32470000002")
        assert record.declined
        assert record.offer_closed

    def test_missing_signature(self, client, ledger):
        """Test that an unsigned message is rejected."""
        response = client.post(
            "/whatsapp/webhook", data={"From": "whatsapp:+32470000001", "Body": "Ja"}
        )

        assert response.status_code == 403
        assert ledger.get("+32470000001") is None

    def test_invalid_signature(self, client, ledger):
        """Test that a message signed with another token is rejected."""
        response = signed_post(
            client, {"From": "whatsapp:+32470000001", "Body": "Ja"}, token="wrong"
        )

        assert response.status_code == 403
        assert ledger.get("+32470000001") is None

    def test_auth_token_not_configured(self, engine):
        """Test that the webhook fails without an auth token."""
        app = create_app(
            config=Config(twilio_auth_token=None, ledger_path=""),
            engine=engine,
            start_ticker=False,
        )
        with TestClient(app) as client:
            response = client.post("/whatsapp/webhook", data={"Body": "Ja"})

        assert response.status_code == 500


class TestTickLoop:
    """Tests for the background tick loop."""

    @pytest.mark.asyncio
    async def test_loop_advances_engine(self, engine, clock, add_reservation):
        """Test that the loop keeps driving the engine until cancelled."""
        reservation = add_reservation()
        clock.at(17, 0)

        task = asyncio.create_task(run_tick_loop(engine, 0.01))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert reservation.reminder_count == 1

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, engine, monkeypatch):
        """Test that a failing tick does not end the loop."""
        calls = []

        def failing_tick():
            calls.append(1)
            raise RuntimeError("boom")

        monkeypatch.setattr(engine, "advance_time", failing_tick)
        task = asyncio.create_task(run_tick_loop(engine, 0.01))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(calls) > 1
