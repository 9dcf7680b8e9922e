"""
API endpoint tests.

Drives the HTTP surface against the test engine bound in conftest.
"""

import pytest
from datetime import timedelta

from weighbridge.tests.factories import START

pytestmark = pytest.mark.asyncio


async def create(client, vehicle_reg="ND 123-456", **fields):
    payload = {"vehicle_reg": vehicle_reg, "order_ref": "ORD-1001", **fields}
    response = await client.post("/v1/allocations", json=payload)
    assert response.status_code == 201
    return response.json()


async def apply(client, allocation_id, event, **fields):
    return await client.post(f"/v1/allocations/{allocation_id}/transitions", json={"event": event, **fields})


async def test_health_check(client):
    await create(client)
    response = await client.get("/health", headers={"X-Correlation-ID": "gate-42"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["route"] == ["mine", "lions_park", "bulk_connections"]
    assert body["open_allocations"] == 1
    assert body["stockpiles"] == 2
    assert response.headers["X-Correlation-ID"] == "gate-42"


async def test_create_and_fetch_allocation(client):
    created = await create(client, transporter_ref="TR-BULK", product="chrome")

    assert created["status"] == "scheduled"
    assert created["current_site"] == "mine"
    assert created["site_status_label"] == "scheduled"

    response = await client.get(f"/v1/allocations/{created['id']}")
    assert response.status_code == 200
    assert response.json()["transporter_ref"] == "TR-BULK"


async def test_create_allocation_validation_error(client):
    response = await client.post("/v1/allocations", json={"vehicle_reg": "", "order_ref": "ORD-1001"})
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


async def test_create_allocation_with_duplicate_route_site(client):
    response = await client.post(
        "/v1/allocations",
        json={"vehicle_reg": "ND 1", "order_ref": "ORD-1001", "route": ["mine", "mine"]},
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_ALLOCATION_001"


async def test_unknown_allocation_is_404(client):
    response = await client.get("/v1/allocations/ALLOC-404")
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


async def test_full_site_pass_over_http(client):
    allocation = await create(client, route=["mine", "bulk_connections"])
    allocation_id = allocation["id"]

    response = await apply(client, allocation_id, "check_in", site_id="mine")
    assert response.json()["site_status_label"] == "at_mine"
    await apply(client, allocation_id, "begin_weigh")

    response = await client.post(
        f"/v1/allocations/{allocation_id}/measurements",
        json={"site_id": "mine", "gross_kg": 54200, "tare_kg": 15000, "ticket_ref": "T-1"},
    )
    assert response.status_code == 201
    assert response.json()["location"] == "origin"
    assert response.json()["net_kg"] == 39200

    await apply(client, allocation_id, "weigh_complete")
    response = await apply(client, allocation_id, "dispatch", driver_status="ready_for_dispatch")
    assert response.status_code == 200
    assert response.json()["site_status_label"] == "in_transit_to_bulk_connections"

    journey = await client.get(f"/v1/allocations/{allocation_id}/journey")
    assert [e["event"] for e in journey.json()] == ["check_in", "begin_weigh", "weigh_complete", "dispatch"]

    events = await client.get(f"/v1/allocations/{allocation_id}/events")
    assert events.json() == ["check_in", "cancel"]


async def test_weigh_complete_without_reading_is_conflict(client):
    allocation = await create(client)
    await apply(client, allocation["id"], "check_in")
    await apply(client, allocation["id"], "begin_weigh")

    response = await apply(client, allocation["id"], "weigh_complete")
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_MEASUREMENT_001"


async def test_exit_gate_refusal_carries_reason_code(client):
    allocation = await create(client)
    await apply(client, allocation["id"], "check_in")

    response = await apply(client, allocation["id"], "dispatch", gate="exit", driver_status="verified")

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "ERR_TRANSITION_002"
    assert body["details"]["reason_code"] == "pending_permit"


async def test_dispatch_without_gate_still_checks_driver(client):
    allocation = await create(client, driver_validation_status="verified")
    await apply(client, allocation["id"], "check_in")

    response = await apply(client, allocation["id"], "dispatch")

    assert response.status_code == 409
    assert response.json()["details"]["reason_code"] == "pending_permit"
    assert (await client.get(f"/v1/allocations/{allocation['id']}")).json()["status"] == "arrived"


async def test_illegal_transition_is_conflict(client):
    allocation = await create(client)
    await apply(client, allocation["id"], "cancel")

    response = await apply(client, allocation["id"], "check_in")
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_TRANSITION_001"


async def test_tare_above_gross_rejected(client):
    allocation = await create(client)
    response = await client.post(
        f"/v1/allocations/{allocation['id']}/measurements",
        json={"site_id": "mine", "gross_kg": 10000, "tare_kg": 12000},
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_MEASUREMENT_002"


async def test_list_allocations_by_status(client):
    first = await create(client, "ND 1")
    await create(client, "ND 2")
    await apply(client, first["id"], "cancel")

    response = await client.get("/v1/allocations", params={"status": "cancelled"})
    assert [a["id"] for a in response.json()] == [first["id"]]

    response = await client.get("/v1/allocations", params={"vehicle_reg": "nd2"})
    assert [a["vehicle_reg"] for a in response.json()] == ["ND 2"]


async def test_gate_check_in_by_plate(client):
    allocation = await create(client, "ND 123-456")

    response = await client.post("/v1/gate/check-in", json={"vehicle_reg": "nd123-456", "site_id": "mine"})

    assert response.status_code == 200
    assert response.json()["id"] == allocation["id"]
    assert response.json()["status"] == "arrived"


async def test_gate_unknown_plate_raises_alert(client):
    response = await client.post("/v1/gate/check-in", json={"vehicle_reg": "XYZ 999 GP", "site_id": "mine"})
    assert response.status_code == 404

    alerts = (await client.get("/v1/alerts")).json()
    assert alerts["total"] == 1
    assert alerts["critical"] == 1
    assert alerts["alerts"][0]["rule"] == "unallocated_truck"
    assert alerts["alerts"][0]["entity_id"] == "XYZ999GP"


async def test_readings_without_offset_keep_alerts_working(client):
    allocation = await create(client, route=["mine", "bulk_connections"])
    for site, gross in (("mine", 54200), ("bulk_connections", 50000)):
        response = await client.post(
            f"/v1/allocations/{allocation['id']}/measurements",
            json={"site_id": site, "gross_kg": gross, "tare_kg": 15000, "captured_at": "2025-03-10T07:00:00"},
        )
        assert response.status_code == 201
    await client.post("/v1/stockpiles/SP-CHROME-A/adjust", json={"surveyed_tonnes": 9800})

    response = await client.get("/v1/alerts")

    assert response.status_code == 200
    assert {a["rule"] for a in response.json()["alerts"]} == {"weight_variance_5", "stockpile_95"}


async def test_alert_acknowledgement(client):
    await client.post("/v1/stockpiles/SP-CHROME-A/adjust", json={"surveyed_tonnes": 9700})
    alerts = (await client.get("/v1/alerts")).json()
    alert_id = alerts["alerts"][0]["id"]
    assert alert_id == "stockpile_95:stockpile:SP-CHROME-A"

    response = await client.post(f"/v1/alerts/{alert_id}/acknowledge")
    assert response.json() == {"alert_id": alert_id, "acknowledged": True}

    alerts = (await client.get("/v1/alerts")).json()
    assert alerts["alerts"][0]["acknowledged"] is True
    assert alerts["unacknowledged"] == 0

    hidden = (await client.get("/v1/alerts", params={"include_acknowledged": "false"})).json()
    assert hidden["total"] == 0

    await client.delete(f"/v1/alerts/{alert_id}/acknowledge")
    alerts = (await client.get("/v1/alerts")).json()
    assert alerts["alerts"][0]["acknowledged"] is False


async def test_alerts_filtered_by_severity(client):
    await client.post("/v1/stockpiles/SP-CHROME-A/adjust", json={"surveyed_tonnes": 9700})
    await client.post("/v1/stockpiles/SP-MANGANESE/adjust", json={"surveyed_tonnes": 4300})

    warnings = (await client.get("/v1/alerts", params={"severity": "warning"})).json()
    assert [a["rule"] for a in warnings["alerts"]] == ["stockpile_85"]


async def test_stockpile_credit_and_audit(client):
    response = await client.post("/v1/stockpiles/SP-MANGANESE/credit", json={"tonnes": 4500})
    assert response.status_code == 200
    assert response.json()["current_tonnes"] == 5000

    audit = (await client.get("/v1/stockpiles/SP-MANGANESE/audit")).json()
    assert audit[0]["overflow_tonnes"] == 500


async def test_strict_stockpile_credit_conflict(client):
    response = await client.post("/v1/stockpiles/SP-MANGANESE/credit", json={"tonnes": 4500, "strict": True})
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_CAPACITY_001"


async def test_register_stockpile(client):
    response = await client.post(
        "/v1/stockpiles",
        json={"id": "SP-NEW", "name": "New", "product": "chrome", "capacity_tonnes": 2000},
    )
    assert response.status_code == 201

    duplicate = await client.post(
        "/v1/stockpiles",
        json={"id": "SP-NEW", "name": "New", "product": "chrome", "capacity_tonnes": 2000},
    )
    assert duplicate.status_code == 409
    assert len((await client.get("/v1/stockpiles")).json()) == 3


async def test_assign_stockpile(client):
    allocation = await create(client, expected_tonnes=34)
    response = await client.post(
        f"/v1/allocations/{allocation['id']}/stockpile",
        json={"stockpile_id": "SP-CHROME-A"},
    )
    assert response.status_code == 200
    assert response.json()["destination_stockpile_id"] == "SP-CHROME-A"

    stockpile = (await client.get("/v1/stockpiles/SP-CHROME-A")).json()
    assert stockpile["pending_inbound_trucks"] == 1
    assert stockpile["pending_inbound_tonnes"] == 34


async def test_reference_data(client):
    transporters = (await client.get("/v1/transporters")).json()
    assert {t["id"] for t in transporters} == {"TR-BULK", "TR-SWIFT"}

    response = await client.post("/v1/orders", json={
        "id": "ORD-2000",
        "product": "chrome",
        "client": "Harbour Metals",
        "planned_trucks": 1,
        "planned_tonnes": 34,
        "deadline": (START + timedelta(days=9)).isoformat(),
    })
    assert response.status_code == 201
    assert len((await client.get("/v1/orders")).json()) == 3


async def test_reports(client):
    allocation = await create(client, product="chrome")
    await apply(client, allocation["id"], "check_in")

    pipeline = (await client.get("/v1/reports/pipeline")).json()
    assert pipeline["by_status"]["arrived"] == 1
    assert pipeline["by_site_label"] == {"at_mine": 1}

    products = (await client.get("/v1/reports/products")).json()
    assert products == [{"product": "chrome", "trucks": 1, "tonnes": 0.0}]

    hourly = (await client.get("/v1/reports/hourly")).json()
    assert len(hourly) == 24

    throughput = (await client.get("/v1/reports/throughput")).json()
    assert throughput["trucks"] == 0

    summary = (await client.get("/v1/reports/stockpiles")).json()
    assert summary["stockpiles"] == 2

    for path in ("turnaround", "transporters", "daily", "variance"):
        assert (await client.get(f"/v1/reports/{path}")).status_code == 200


async def test_audit_endpoint(client):
    allocation = await create(client)
    response = await client.get("/v1/audit", params={"entity_id": allocation["id"]})
    assert response.status_code == 200
    assert response.json()[0]["action"] == "ALLOCATION_CREATED"
