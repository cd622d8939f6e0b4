"""
Tests for the alert lifecycle endpoints.

Covers:
- Create / get / list / active / stats
- Acknowledge, resolve, escalate, edit
- Error envelope with the current alert state on illegal transitions
- Delivery receipts
- Manual sweep
"""

import pytest

MANUAL = {
    "subject_id": "subj-1",
    "alert_type": "medical",
    "severity": "high",
    "title": "Missed medication",
    "notify": False,
}


async def _create(client, **overrides) -> dict:
    response = await client.post("/api/v1/alerts", json={**MANUAL, **overrides})
    assert response.status_code == 201
    return response.json()


class TestCreateAndRead:
    @pytest.mark.asyncio
    async def test_create(self, client):
        alert = await _create(client)
        assert alert["status"] == "active"
        assert alert["priority"] == 6
        assert alert["escalation_level"] == 0
        assert alert["notifications"] == []

    @pytest.mark.asyncio
    async def test_create_with_notifications(self, client, make_contact):
        await make_contact()
        alert = await _create(client, notify=True)
        assert len(alert["notifications"]) == 3

    @pytest.mark.asyncio
    async def test_create_sos_rejected(self, client):
        response = await client.post("/api/v1/alerts", json={**MANUAL, "alert_type": "sos"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E1001"

    @pytest.mark.asyncio
    async def test_title_too_long(self, client):
        response = await client.post("/api/v1/alerts", json={**MANUAL, "title": "x" * 101})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_unknown(self, client):
        response = await client.get("/api/v1/alerts/alert_missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E1002"

    @pytest.mark.asyncio
    async def test_list_sorted_and_filtered(self, client):
        low = await _create(client, severity="low")
        critical = await _create(client, severity="critical")
        await _create(client, subject_id="subj-2")

        response = await client.get("/api/v1/alerts", params={"subject_id": "subj-1"})
        body = response.json()
        assert body["total"] == 2
        assert [a["alert_id"] for a in body["alerts"]] == [critical["alert_id"], low["alert_id"]]

        response = await client.get("/api/v1/alerts", params={"severity": "low"})
        assert [a["alert_id"] for a in response.json()["alerts"]] == [low["alert_id"]]

    @pytest.mark.asyncio
    async def test_list_status_filter_and_paging(self, client):
        first = await _create(client)
        await _create(client)
        await client.post(f"/api/v1/alerts/{first['alert_id']}/resolve", json={"user_id": "u"})

        resolved = await client.get("/api/v1/alerts", params={"status": "resolved"})
        assert [a["alert_id"] for a in resolved.json()["alerts"]] == [first["alert_id"]]

        page = await client.get("/api/v1/alerts", params={"limit": 1, "offset": 1})
        assert page.json()["total"] == 2
        assert len(page.json()["alerts"]) == 1

    @pytest.mark.asyncio
    async def test_list_limit_bounds(self, client):
        response = await client.get("/api/v1/alerts", params={"limit": 500})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_active(self, client):
        open_alert = await _create(client)
        closed = await _create(client)
        await client.post(f"/api/v1/alerts/{closed['alert_id']}/resolve", json={"user_id": "u"})

        response = await client.get("/api/v1/alerts/active", params={"subject_id": "subj-1"})
        assert [a["alert_id"] for a in response.json()] == [open_alert["alert_id"]]

    @pytest.mark.asyncio
    async def test_stats(self, client):
        alert = await _create(client)
        await _create(client, alert_type="fall", severity="critical")
        await client.post(f"/api/v1/alerts/{alert['alert_id']}/acknowledge", json={"user_id": "u"})

        response = await client.get("/api/v1/alerts/stats", params={"subject_id": "subj-1", "days": 1})
        body = response.json()
        assert body["total"] == 2
        assert body["by_type"] == {"medical": 1, "fall": 1}
        assert body["by_status"] == {"acknowledged": 1, "active": 1}
        assert body["mean_acknowledge_minutes"] is not None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_acknowledge_and_resolve(self, client):
        alert = await _create(client)
        url = f"/api/v1/alerts/{alert['alert_id']}"

        acked = await client.post(f"{url}/acknowledge", json={"user_id": "caregiver-1"})
        assert acked.status_code == 200
        assert acked.json()["status"] == "acknowledged"
        assert acked.json()["acknowledged_by"] == "caregiver-1"

        resolved = await client.post(f"{url}/resolve", json={"user_id": "caregiver-1"})
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["resolved_at"] is not None

    @pytest.mark.asyncio
    async def test_double_resolve_returns_current_state(self, client):
        alert = await _create(client)
        url = f"/api/v1/alerts/{alert['alert_id']}/resolve"
        await client.post(url, json={"user_id": "first"})

        response = await client.post(url, json={"user_id": "second"})
        assert response.status_code == 409
        body = response.json()
        assert body["error"]["code"] == "E1004"
        assert body["alert"]["status"] == "resolved"
        assert body["alert"]["resolved_by"] == "first"

    @pytest.mark.asyncio
    async def test_acknowledge_resolved(self, client):
        alert = await _create(client)
        url = f"/api/v1/alerts/{alert['alert_id']}"
        await client.post(f"{url}/resolve", json={"user_id": "u"})
        response = await client.post(f"{url}/acknowledge", json={"user_id": "u"})
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "E1003"

    @pytest.mark.asyncio
    async def test_missing_user_id(self, client):
        alert = await _create(client)
        response = await client.post(f"/api/v1/alerts/{alert['alert_id']}/acknowledge", json={})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_escalate(self, client, make_contact):
        contact = await make_contact()
        alert = await _create(client)
        response = await client.post(
            f"/api/v1/alerts/{alert['alert_id']}/escalate",
            json={"channel": "sms", "contact_id": contact.contact_id},
        )
        body = response.json()
        assert response.status_code == 200
        assert body["escalation_level"] == 1
        assert body["escalation_history"][0]["contact_id"] == contact.contact_id
        assert [n["channel"] for n in body["notifications"]] == ["sms"]

    @pytest.mark.asyncio
    async def test_escalation_caps_at_three(self, client):
        alert = await _create(client)
        url = f"/api/v1/alerts/{alert['alert_id']}/escalate"
        for _ in range(4):
            response = await client.post(url, json={"channel": "email"})
        body = response.json()
        assert body["escalation_level"] == 3
        assert body["status"] == "escalated"
        assert len(body["escalation_history"]) == 4

    @pytest.mark.asyncio
    async def test_patch(self, client):
        alert = await _create(client, severity="low")
        response = await client.patch(
            f"/api/v1/alerts/{alert['alert_id']}",
            json={"severity": "critical", "tags": ["reviewed"]},
        )
        body = response.json()
        assert body["severity"] == "critical"
        assert body["priority"] == 10
        assert body["tags"] == ["reviewed"]

    @pytest.mark.asyncio
    async def test_delivery_receipt(self, client, make_contact, controller):
        contact = await make_contact()
        alert = await _create(client, notify=True)
        await controller.dispatcher.tasks.drain(timeout=5)

        response = await client.put(
            f"/api/v1/alerts/{alert['alert_id']}/notifications/{contact.contact_id}",
            json={"channel": "push", "status": "delivered"},
        )
        push = next(n for n in response.json()["notifications"] if n["channel"] == "push")
        assert push["status"] == "delivered"

    @pytest.mark.asyncio
    async def test_delivery_receipt_unknown_entry(self, client):
        alert = await _create(client)
        response = await client.put(
            f"/api/v1/alerts/{alert['alert_id']}/notifications/contact_x",
            json={"channel": "sms", "status": "delivered"},
        )
        assert response.status_code == 404


class TestSweepEndpoint:
    @pytest.mark.asyncio
    async def test_sweep_runs(self, client):
        await _create(client)
        response = await client.post("/api/v1/alerts/sweep")
        assert response.status_code == 200
        assert response.json() == {"auto_resolved": [], "escalated": []}

    @pytest.mark.asyncio
    async def test_overdue_listing(self, client):
        response = await client.get("/api/v1/alerts/overdue")
        assert response.status_code == 200
        assert response.json() == []
