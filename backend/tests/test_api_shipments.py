"""HTTP tests for the shipment and exception endpoints."""

import pytest
from sqlalchemy import select

from inbound.models import Shipment, ShipmentLineItem

BASE = "/api/shipments"


async def create(client, headers, **fields) -> dict:
    resp = await client.post(f"{BASE}/", json={"warehouse_id": "wh-main", **fields}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def to_receiving(client, headers, photos, db_session, account_id: str) -> dict:
    """Drive a new shipment through dock intake and confirmation."""
    shipment = await create(client, headers)
    sid = shipment["id"]

    resp = await client.patch(
        f"{BASE}/{sid}/fields",
        json={"account_id": account_id, "signed_pieces": 4, "vendor_name": "Hartley & Co"},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    resp = await client.post(f"{BASE}/{sid}/exceptions/select", json={"code": "NO_EXCEPTIONS"}, headers=headers)
    assert resp.status_code == 200, resp.text

    await photos(await db_session.get(Shipment, sid))

    resp = await client.post(f"{BASE}/{sid}/dock-intake/complete", json={}, headers=headers)
    assert resp.status_code == 200, resp.text
    resp = await client.post(f"{BASE}/{sid}/confirm", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.mark.api
class TestShipmentEndpoints:
    @pytest.mark.asyncio
    async def test_requires_auth(self, client):
        resp = await client.get(f"{BASE}/")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_create_and_get(self, client, auth_headers):
        shipment = await create(client, auth_headers, vendor_name="Hartley & Co")
        assert shipment["stage"] == "draft"
        assert shipment["shipment_number"].startswith("SHP-")

        resp = await client.get(f"{BASE}/{shipment['id']}", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["vendor_name"] == "Hartley & Co"

    @pytest.mark.asyncio
    async def test_list_filters_by_stage(self, client, auth_headers):
        await create(client, auth_headers)
        await create(client, auth_headers)

        resp = await client.get(f"{BASE}/", params={"stage": "draft"}, headers=auth_headers)
        assert resp.json()["total"] == 2
        resp = await client.get(f"{BASE}/", params={"stage": "closed"}, headers=auth_headers)
        assert resp.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_unknown_shipment(self, client, auth_headers):
        resp = await client.get(f"{BASE}/nope", headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_autosave_fields_and_stale_version(self, client, auth_headers):
        shipment = await create(client, auth_headers)
        sid = shipment["id"]

        resp = await client.patch(
            f"{BASE}/{sid}/fields",
            params={"expected_version": shipment["version"]},
            json={"driver_name": "R. Okafor"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["changed"] == ["driver_name"]
        assert body["shipment"]["version"] == shipment["version"] + 1

        resp = await client.patch(
            f"{BASE}/{sid}/fields",
            params={"expected_version": shipment["version"]},
            json={"driver_name": "Someone else"},
            headers=auth_headers,
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "STALE_SHIPMENT"

    @pytest.mark.asyncio
    async def test_dock_intake_punch_list(self, client, auth_headers):
        shipment = await create(client, auth_headers)
        sid = shipment["id"]

        resp = await client.get(f"{BASE}/{sid}/dock-intake/validation", headers=auth_headers)
        assert resp.json()["ready"] is False
        assert len(resp.json()["errors"]) == 5

        resp = await client.post(f"{BASE}/{sid}/dock-intake/complete", json={}, headers=auth_headers)
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_FAILED"
        assert "Signed pieces must be greater than 0" in error["details"]["errors"]

        resp = await client.get(f"{BASE}/{sid}", headers=auth_headers)
        assert resp.json()["stage"] == "draft"

    @pytest.mark.asyncio
    async def test_confirm_from_draft_conflicts(self, client, auth_headers):
        shipment = await create(client, auth_headers)
        resp = await client.post(f"{BASE}/{shipment['id']}/confirm", headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_full_receiving_flow(
        self, client, auth_headers, alerts, photos, db_session, account, receiving_location,
    ):
        shipment = await to_receiving(client, auth_headers, photos, db_session, account.id)
        sid = shipment["id"]
        assert shipment["stage"] == "receiving"

        resp = await client.put(
            f"{BASE}/{sid}/lines",
            json={"lines": [
                {"description": "Sofa cushion", "received_quantity": 3, "package_count": 1},
                {"description": "Floor lamp", "received_quantity": 1},
            ]},
            headers=auth_headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["received_pieces"] == 4
        assert resp.json()["hints"]["description"] == "Floor lamp"

        resp = await client.post(f"{BASE}/{sid}/close", json={}, headers=auth_headers)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["shipment"]["stage"] == "closed"
        assert body["received_pieces"] == 4
        assert body["units_created"] == 4
        assert body["containers_created"] == 1
        assert body["warnings"] == []
        assert alerts.alerts == []

        resp = await client.get(f"{BASE}/{sid}/inventory", headers=auth_headers)
        inventory = resp.json()
        assert len(inventory["units"]) == 4
        assert [c["unit_count"] for c in inventory["containers"]] == [3]

        resp = await client.patch(f"{BASE}/{sid}/fields", json={"notes": "late"}, headers=auth_headers)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "FIELD_LOCKED"

    @pytest.mark.asyncio
    async def test_close_failure_keeps_lines(
        self, client, auth_headers, photos, db_session, account,
    ):
        # No receiving location configured for the warehouse
        shipment = await to_receiving(client, auth_headers, photos, db_session, account.id)
        sid = shipment["id"]

        resp = await client.post(
            f"{BASE}/{sid}/close",
            json={"lines": [{"description": "Sofa cushion", "received_quantity": 3}]},
            headers=auth_headers,
        )
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "MATERIALIZATION_FAILED"

        resp = await client.get(f"{BASE}/{sid}", headers=auth_headers)
        assert resp.json()["stage"] == "receiving"
        lines = (await db_session.execute(
            select(ShipmentLineItem).where(ShipmentLineItem.shipment_id == sid)
        )).scalars().all()
        assert [l.description for l in lines] == ["Sofa cushion"]

    @pytest.mark.asyncio
    async def test_close_without_lines_needs_override(
        self, client, auth_headers, operator_headers, photos, db_session, account, receiving_location,
    ):
        shipment = await to_receiving(client, auth_headers, photos, db_session, account.id)
        sid = shipment["id"]

        resp = await client.post(f"{BASE}/{sid}/close", json={"lines": []}, headers=auth_headers)
        assert resp.status_code == 422

        resp = await client.post(
            f"{BASE}/{sid}/close",
            json={"lines": [], "override_reason": "Paperwork only"},
            headers=operator_headers,
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "OVERRIDE_REQUIRED"

        resp = await client.post(
            f"{BASE}/{sid}/close",
            json={"lines": [], "override_reason": "Paperwork only"},
            headers=auth_headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["override_used"] is True
        # Signed 4, received 0
        assert len(resp.json()["discrepancy_ids"]) == 1

    @pytest.mark.asyncio
    async def test_flag_requires_permission(self, client, auth_headers, operator_headers):
        shipment = await create(client, auth_headers)
        url = f"{BASE}/{shipment['id']}/flag"

        resp = await client.post(url, json={"exception_type": "mis_ship"}, headers=operator_headers)
        assert resp.status_code == 403

        resp = await client.post(url, json={"exception_type": "mis_ship"}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["shipment"]["exception_type"] == "mis_ship"

        resp = await client.post(url, json={"exception_type": "lost"}, headers=auth_headers)
        assert resp.status_code == 422


@pytest.mark.api
class TestExceptionEndpoints:
    @pytest.mark.asyncio
    async def test_chip_selection(self, client, auth_headers):
        shipment = await create(client, auth_headers)
        url = f"{BASE}/{shipment['id']}/exceptions"

        resp = await client.post(f"{url}/select", json={"code": "DAMAGE", "note": "Corner"}, headers=auth_headers)
        assert resp.json()["selected"] == ["DAMAGE"]

        resp = await client.post(f"{url}/select", json={"code": "NO_EXCEPTIONS"}, headers=auth_headers)
        assert resp.json()["selected"] == ["NO_EXCEPTIONS"]
        assert resp.json()["entries"] == []

        resp = await client.post(f"{url}/select", json={"code": "WET"}, headers=auth_headers)
        assert resp.json()["selected"] == ["WET"]

    @pytest.mark.asyncio
    async def test_resolve_and_reopen(self, client, auth_headers):
        shipment = await create(client, auth_headers)
        url = f"{BASE}/{shipment['id']}/exceptions"
        resp = await client.post(f"{url}/select", json={"code": "DAMAGE"}, headers=auth_headers)
        entry_id = resp.json()["entries"][0]["id"]

        resp = await client.post(f"{url}/{entry_id}/resolve", json={"resolution_note": ""}, headers=auth_headers)
        assert resp.status_code == 422

        resp = await client.post(
            f"{url}/{entry_id}/resolve", json={"resolution_note": "Credited"}, headers=auth_headers,
        )
        assert resp.json()["status"] == "resolved"

        resp = await client.post(f"{url}/{entry_id}/reopen", headers=auth_headers)
        assert resp.json()["status"] == "open"
        assert resp.json()["resolution_note"] is None

    @pytest.mark.asyncio
    async def test_entry_must_belong_to_shipment(self, client, auth_headers):
        first = await create(client, auth_headers)
        second = await create(client, auth_headers)
        resp = await client.post(
            f"{BASE}/{first['id']}/exceptions/select", json={"code": "WET"}, headers=auth_headers,
        )
        entry_id = resp.json()["entries"][0]["id"]

        resp = await client.post(
            f"{BASE}/{second['id']}/exceptions/{entry_id}/resolve",
            json={"resolution_note": "x"}, headers=auth_headers,
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_discrepancy_alerts(self, client, auth_headers, alerts):
        shipment = await create(client, auth_headers)
        url = f"{BASE}/{shipment['id']}/discrepancies"

        resp = await client.post(
            url, json={"discrepancy_type": "DAMAGE", "description": "Torn wrap"}, headers=auth_headers,
        )
        assert resp.status_code == 201
        assert resp.json()["warnings"] == []
        assert alerts.types() == ["receiving_discrepancy"]

        resp = await client.get(url, params={"status": "open"}, headers=auth_headers)
        assert [d["discrepancy_type"] for d in resp.json()] == ["DAMAGE"]


@pytest.mark.api
@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
