from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from app import create_app
from mite_engine.services.notification_service import (
    EmailNotificationSender,
    LoggingNotificationSender,
)
from mite_engine.utils.config import get_settings


CRON_TOKEN = "cron-secret"
START = (datetime.now(timezone.utc) + timedelta(days=1)).replace(
    hour=9, minute=0, second=0, microsecond=0
)


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        cron_token=CRON_TOKEN,
        forecast_api_key=None,
        outcome_api_key=None,
        notification_api_key=None,
        local_timezone="UTC",
    )


def _forecast() -> list[dict]:
    return [
        {
            "start_time": (START + timedelta(minutes=30 * index)).isoformat(),
            "temperature": 24.0,
            "humidity": 50.0,
            "precipitation_probability": 5.0,
        }
        for index in range(6)
    ]


def _headers(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def _create_item(client: TestClient, user_id: str = "alice", **location) -> int:
    location_body = {"latitude": 31.2304, "longitude": 121.4737, "floor_number": 2, "has_elevator": True}
    location_body.update(location)
    location_response = client.post("/locations", json=location_body, headers=_headers(user_id))
    assert location_response.status_code == 201
    item_response = client.post(
        "/items",
        json={
            "name": "Winter duvet",
            "material": "Cotton",
            "thickness": "Medium",
            "risk_score": 50.0,
            "location_id": location_response.json()["location_id"],
        },
        headers=_headers(user_id),
    )
    assert item_response.status_code == 201
    return item_response.json()["item_id"]


def test_self_service_flow_over_http(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_flow.db"))
    with TestClient(app) as client:
        item_id = _create_item(client)

        windows = client.post(f"/items/{item_id}/windows", json={"forecast": _forecast()})
        assert windows.status_code == 200
        body = windows.json()
        assert body["is_optimal_for_sun_drying"] is True
        assert body["reason"] == "Best drying time: 09:00-12:00"
        window = body["best_window"]

        prediction = client.post(f"/items/{item_id}/outcome-prediction", json={"window": window})
        assert prediction.status_code == 200
        outcome = prediction.json()
        assert outcome["source"] == "fallback"
        assert 10.0 <= outcome["score_reduction"] <= 40.0

        confirmed = client.post(
            f"/items/{item_id}/interventions",
            json={"window": window, "predicted_outcome": outcome},
            headers=_headers("alice"),
        )
        assert confirmed.status_code == 201
        assert confirmed.json()["state"] == "open"

        again = client.post(
            f"/items/{item_id}/interventions",
            json={"window": window, "predicted_outcome": outcome},
            headers=_headers("alice"),
        )
        assert again.status_code == 409
        assert again.json()["detail"]["current_status"] == "waiting_optimal_time"

        cron = {"Authorization": f"Bearer {CRON_TOKEN}"}
        ticked = client.post("/tick", json={"now": (START + timedelta(hours=4)).isoformat()}, headers=cron)
        assert ticked.status_code == 200
        assert ticked.json()["transition_count"] == 2

        item = client.get(f"/items/{item_id}").json()
        assert item["status"] == "normal"
        assert item["risk_score"] == outcome["final_score"]

        history = client.get(f"/items/{item_id}/history").json()
        assert [entry["state"] for entry in history] == ["completed"]


def test_helper_order_flow_over_http(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_orders.db"))
    with TestClient(app) as client:
        item_id = _create_item(client)
        start = datetime.now(timezone.utc) + timedelta(hours=2)
        window = {
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(hours=3)).isoformat(),
            "avg_temperature": 24.0,
            "avg_humidity": 50.0,
            "avg_precipitation_probability": 5.0,
            "suitability_score": 66.0,
        }
        outcome = {"effectiveness_score": 85.0, "score_reduction": 25.0, "final_score": 25.0}

        created = client.post(
            "/orders",
            json={"item_id": item_id, "window": window, "predicted_outcome": outcome},
            headers=_headers("alice"),
        )
        assert created.status_code == 201
        order_id = created.json()["order"]["order_id"]
        assert created.json()["cost"]["total_cost"] == 20.0

        nearby = client.get(
            "/orders/nearby",
            params={"latitude": 31.2310, "longitude": 121.4740},
            headers=_headers("bob"),
        )
        assert [entry["order"]["order_id"] for entry in nearby.json()["orders"]] == [order_id]

        assert client.post(f"/orders/{order_id}/accept", headers=_headers("bob")).status_code == 200
        conflict = client.post(f"/orders/{order_id}/accept", headers=_headers("carol"))
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["current_status"] == "accepted"

        assert client.post(f"/orders/{order_id}/begin", headers=_headers("bob")).status_code == 200
        completed = client.post(f"/orders/{order_id}/complete", headers=_headers("bob"))
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"

        item = client.get(f"/items/{item_id}").json()
        assert item["risk_score"] == 25.0
        assert item["status"] == "normal"

        paid = client.post(f"/orders/{order_id}/pay", headers=_headers("alice"))
        assert paid.json()["is_paid"] is True


def test_error_mapping(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_errors.db"))
    with TestClient(app) as client:
        assert client.get("/items/404").status_code == 404

        item = client.post("/items", json={"name": "Pillow"}, headers=_headers("alice")).json()
        unavailable = client.post(f"/items/{item['item_id']}/windows")
        assert unavailable.status_code == 503
        assert "try again" in unavailable.json()["detail"].lower()

        assert client.post("/items", json={"name": "Pillow"}).status_code == 401
        assert client.post("/tick").status_code == 401
        assert client.post("/tick", headers={"Authorization": "Bearer wrong"}).status_code == 401

        forbidden = client.post(f"/items/{item['item_id']}/interventions/cancel", headers=_headers("bob"))
        assert forbidden.status_code == 403


def test_quote_endpoint_warns_on_missing_floor(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_quote.db"))
    with TestClient(app) as client:
        quote = client.get("/orders/quote", params={"thickness": "Extra Thick"})
        assert quote.status_code == 200
        assert quote.json()["total_cost"] == 30.0
        assert len(quote.json()["warnings"]) == 2


def test_growth_tick_endpoint_reports_skips(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_growth.db"))
    with TestClient(app) as client:
        client.post("/items", json={"name": "Pillow"}, headers=_headers("alice"))
        response = client.post(
            "/risk/growth-tick",
            headers={"Authorization": f"Bearer {CRON_TOKEN}"},
        )
        assert response.status_code == 200
        assert response.json()["skipped"] == 1


def test_intervention_outcome_and_window_are_checked_over_http(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_checks.db"))
    with TestClient(app) as client:
        item_id = _create_item(client)
        window = client.post(f"/items/{item_id}/windows", json={"forecast": _forecast()}).json()[
            "best_window"
        ]

        forged = client.post(
            f"/items/{item_id}/interventions",
            json={
                "window": window,
                "predicted_outcome": {
                    "effectiveness_score": 60.0,
                    "score_reduction": 10.0,
                    "final_score": 0.0,
                },
            },
            headers=_headers("alice"),
        )
        assert forged.status_code == 422

        ended_start = datetime.now(timezone.utc) - timedelta(days=2)
        ended = client.post(
            f"/items/{item_id}/interventions",
            json={
                "window": {
                    **window,
                    "start_time": ended_start.isoformat(),
                    "end_time": (ended_start + timedelta(hours=3)).isoformat(),
                },
                "predicted_outcome": {
                    "effectiveness_score": 60.0,
                    "score_reduction": 10.0,
                    "final_score": 40.0,
                },
            },
            headers=_headers("alice"),
        )
        assert ended.status_code == 409
        assert ended.json()["detail"]["current_status"] == "normal"

        item = client.get(f"/items/{item_id}").json()
        assert item["status"] == "normal"
        assert item["risk_score"] == 50.0


def test_email_notifications_are_wired_when_configured(tmp_path):
    plain = create_app(_build_test_settings(tmp_path, "api_plain.db"))
    assert isinstance(plain.state.notifier, LoggingNotificationSender)

    emailing = create_app(
        replace(_build_test_settings(tmp_path, "api_email.db"), notification_api_key="resend-key"),
        recipient_resolver={"alice": "alice@example.com"}.get,
    )
    assert isinstance(emailing.state.notifier, EmailNotificationSender)
