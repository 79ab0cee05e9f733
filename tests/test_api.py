from decimal import Decimal

from bomledger.models.company import Company


def _seed_company(session_local, *, name: str = "Acme Candles", settings: dict | None = None) -> str:
    db = session_local()
    try:
        company = Company(name=name, settings=settings)
        db.add(company)
        db.commit()
        return company.id
    finally:
        db.close()


def _headers(company_id: str, *, role: str = "admin", user_id: str = "user-1") -> dict[str, str]:
    return {"X-Company-Id": company_id, "X-User-Id": user_id, "X-User-Role": role}


def _create_location(client, headers, *, name: str = "Main warehouse") -> dict:
    res = client.post("/locations", json={"name": name}, headers=headers)
    assert res.status_code == 200, res.text
    return res.json()


def _create_component(client, headers, *, name: str, code: str, cost: str, lot_tracked: bool = False) -> dict:
    res = client.post(
        "/components",
        json={"name": name, "sku_code": code, "cost_per_unit": cost, "is_lot_tracked": lot_tracked},
        headers=headers,
    )
    assert res.status_code == 200, res.text
    return res.json()


def _create_sku(client, headers, *, code: str = "CANDLE-8OZ") -> dict:
    res = client.post("/skus", json={"name": "Candle 8oz", "internal_code": code}, headers=headers)
    assert res.status_code == 200, res.text
    return res.json()


def _create_bom(client, headers, *, sku_id: str, lines: list[tuple[str, str]], start: str = "2024-01-01") -> dict:
    res = client.post(
        f"/skus/{sku_id}/bom-versions",
        json={
            "version_name": "v1",
            "effective_start_date": start,
            "is_active": True,
            "lines": [{"component_id": cid, "quantity_per_unit": qty} for cid, qty in lines],
        },
        headers=headers,
    )
    assert res.status_code == 200, res.text
    return res.json()


def _receive(client, headers, *, component_id: str, quantity: str, **extra) -> dict:
    res = client.post(
        "/transactions/receipt",
        json={"component_id": component_id, "quantity": quantity, "transaction_date": "2024-02-01", **extra},
        headers=headers,
    )
    assert res.status_code == 200, res.text
    return res.json()


def _candle_setup(client, headers) -> dict:
    location = _create_location(client, headers)
    wax = _create_component(client, headers, name="Soy wax", code="WAX", cost="2.50")
    wick = _create_component(client, headers, name="Wick", code="WICK", cost="0.25")
    sku = _create_sku(client, headers)
    bom = _create_bom(client, headers, sku_id=sku["id"], lines=[(wax["id"], "2"), (wick["id"], "1")])
    return {"location": location, "wax": wax, "wick": wick, "sku": sku, "bom": bom}


def test_health_and_ready(test_context):
    client, _ = test_context

    assert client.get("/health").json() == {"ok": True}
    res = client.get("/ready")
    assert res.status_code == 200, res.text


def test_missing_identity_headers_return_401_envelope(test_context):
    client, _ = test_context

    res = client.get("/components")
    assert res.status_code == 401
    error = res.json()["error"]
    assert error["code"] == "unauthorized"
    assert error["path"] == "/components"
    assert error["request_id"]


def test_unknown_company_and_role_are_rejected(test_context):
    client, session_local = test_context
    company_id = _seed_company(session_local)

    missing = client.get("/components", headers=_headers("no-such-company"))
    assert missing.status_code == 404

    bad_role = client.get("/components", headers=_headers(company_id, role="owner"))
    assert bad_role.status_code == 403


def test_viewer_can_read_but_not_write(test_context):
    client, session_local = test_context
    company_id = _seed_company(session_local)

    viewer = _headers(company_id, role="viewer")
    assert client.get("/components", headers=viewer).status_code == 200

    res = client.post(
        "/components",
        json={"name": "Soy wax", "sku_code": "WAX", "cost_per_unit": "2.50"},
        headers=viewer,
    )
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "forbidden"


def test_build_flow_consumes_stock_and_reports_cost(test_context):
    client, session_local = test_context
    headers = _headers(_seed_company(session_local))
    setup = _candle_setup(client, headers)

    assert setup["location"]["is_default"] is True
    assert Decimal(setup["bom"]["unit_cost"]) == Decimal("5.25")

    _receive(client, headers, component_id=setup["wax"]["id"], quantity="10")
    _receive(client, headers, component_id=setup["wick"]["id"], quantity="3")

    buildable = client.get(f"/skus/{setup['sku']['id']}/buildable", headers=headers)
    assert buildable.status_code == 200, buildable.text
    assert buildable.json()["max_buildable"] == 3
    assert buildable.json()["limiting_components"][0]["component_name"] == "Wick"

    res = client.post(
        "/transactions/build",
        json={"sku_id": setup["sku"]["id"], "units_to_build": 2, "transaction_date": "2024-03-01"},
        headers=headers,
    )
    assert res.status_code == 200, res.text
    payload = res.json()
    transaction = payload["transaction"]
    assert payload["warnings"] == []
    assert transaction["type"] == "build"
    assert transaction["status"] == "approved"
    assert transaction["bom_version_id"] == setup["bom"]["id"]
    assert Decimal(transaction["unit_bom_cost"]) == Decimal("5.25")
    assert Decimal(transaction["total_bom_cost"]) == Decimal("10.50")
    changes = {line["component_id"]: Decimal(line["quantity_change"]) for line in transaction["lines"]}
    assert changes == {setup["wax"]["id"]: Decimal("-4"), setup["wick"]["id"]: Decimal("-2")}

    wax = client.get(f"/components/{setup['wax']['id']}", headers=headers).json()
    assert Decimal(wax["quantity_on_hand"]) == Decimal("6")

    listed = client.get("/transactions", params={"type": "build"}, headers=headers)
    assert listed.status_code == 200, listed.text
    assert [item["id"] for item in listed.json()["items"]] == [transaction["id"]]


def test_insufficient_stock_returns_shortfall_details(test_context):
    client, session_local = test_context
    headers = _headers(_seed_company(session_local))
    setup = _candle_setup(client, headers)
    _receive(client, headers, component_id=setup["wax"]["id"], quantity="3")

    res = client.post(
        "/transactions/build",
        json={"sku_id": setup["sku"]["id"], "units_to_build": 2, "transaction_date": "2024-03-01"},
        headers=headers,
    )
    assert res.status_code == 400, res.text
    error = res.json()["error"]
    assert error["code"] == "insufficient_inventory"
    short = {item["component_name"]: Decimal(item["shortage"]) for item in error["details"]}
    assert short == {"Soy wax": Decimal("1"), "Wick": Decimal("2")}

    listed = client.get("/transactions", params={"type": "build"}, headers=headers)
    assert listed.json()["items"] == []


def test_build_before_any_effective_bom_returns_422(test_context):
    client, session_local = test_context
    headers = _headers(_seed_company(session_local))
    setup = _candle_setup(client, headers)

    res = client.post(
        "/transactions/build",
        json={"sku_id": setup["sku"]["id"], "units_to_build": 1, "transaction_date": "2023-12-31"},
        headers=headers,
    )
    assert res.status_code == 422, res.text
    assert res.json()["error"]["code"] == "no_bom_effective"


def test_stale_bom_version_update_conflicts(test_context):
    client, session_local = test_context
    headers = _headers(_seed_company(session_local))
    setup = _candle_setup(client, headers)
    bom = setup["bom"]

    first = client.patch(
        f"/bom-versions/{bom['id']}",
        json={"version": bom["version"], "notes": "poured at 70C"},
        headers=headers,
    )
    assert first.status_code == 200, first.text
    assert first.json()["version"] == bom["version"] + 1

    stale = client.patch(
        f"/bom-versions/{bom['id']}",
        json={"version": bom["version"], "notes": "poured at 80C"},
        headers=headers,
    )
    assert stale.status_code == 409, stale.text
    assert stale.json()["error"]["code"] == "version_conflict"


def test_activated_bom_lines_are_locked(test_context):
    client, session_local = test_context
    headers = _headers(_seed_company(session_local))
    setup = _candle_setup(client, headers)
    bom = setup["bom"]

    res = client.patch(
        f"/bom-versions/{bom['id']}",
        json={"version": bom["version"], "lines": [{"component_id": setup["wax"]["id"], "quantity_per_unit": "3"}]},
        headers=headers,
    )
    assert res.status_code == 409, res.text
    assert res.json()["error"]["code"] == "bom_version_locked"


def test_draft_review_via_api(test_context):
    client, session_local = test_context
    headers = _headers(_seed_company(session_local))
    setup = _candle_setup(client, headers)
    wax_id = setup["wax"]["id"]

    created = client.post(
        "/drafts",
        json={"type": "receipt", "component_id": wax_id, "quantity": "5", "transaction_date": "2024-02-01"},
        headers=headers,
    )
    assert created.status_code == 200, created.text
    draft = created.json()["transaction"]
    assert draft["status"] == "draft"

    assert client.get("/drafts/count", headers=headers).json() == {"pending": 1}
    wax = client.get(f"/components/{wax_id}", headers=headers).json()
    assert Decimal(wax["quantity_on_hand"]) == Decimal("0")

    approved = client.post(f"/drafts/{draft['id']}/approve", headers=headers)
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "approved"
    assert approved.json()["reviewed_by_id"] == "user-1"

    wax = client.get(f"/components/{wax_id}", headers=headers).json()
    assert Decimal(wax["quantity_on_hand"]) == Decimal("5")

    again = client.post(f"/drafts/{draft['id']}/reject", json={"reason": "late"}, headers=headers)
    assert again.status_code == 409, again.text
    assert again.json()["error"]["code"] == "invalid_transition"


def test_batch_approve_reports_each_draft(test_context):
    client, session_local = test_context
    headers = _headers(_seed_company(session_local))
    setup = _candle_setup(client, headers)

    receipt = client.post(
        "/drafts",
        json={
            "type": "receipt",
            "component_id": setup["wick"]["id"],
            "quantity": "4",
            "transaction_date": "2024-02-01",
        },
        headers=headers,
    ).json()["transaction"]
    build = client.post(
        "/drafts",
        json={
            "type": "build",
            "sku_id": setup["sku"]["id"],
            "units_to_build": 1,
            "transaction_date": "2024-03-01",
            "allow_insufficient_inventory": True,
        },
        headers=headers,
    )
    assert build.status_code == 200, build.text
    assert build.json()["warnings"]

    adjustment = client.post(
        "/drafts",
        json={
            "type": "adjustment",
            "component_id": setup["wax"]["id"],
            "quantity_change": "-1",
            "reason": "spillage",
            "transaction_date": "2024-03-01",
        },
        headers=headers,
    )
    # Staging still checks stock for a plain adjustment.
    assert adjustment.status_code == 400, adjustment.text

    res = client.post(
        "/drafts/batch-approve",
        json={"draft_ids": [receipt["id"], build.json()["transaction"]["id"], "missing-draft"]},
        headers=headers,
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["summary"] == {"total": 3, "succeeded": 2, "failed": 1}
    by_id = {item["id"]: item for item in body["results"]}
    assert by_id[receipt["id"]]["transaction"]["status"] == "approved"
    assert by_id["missing-draft"]["code"] == "not_found"


def test_company_settings_roundtrip(test_context):
    client, session_local = test_context
    company_id = _seed_company(session_local)

    current = client.get("/company/settings", headers=_headers(company_id, role="viewer"))
    assert current.status_code == 200, current.text
    assert current.json()["allow_negative_inventory"] is False

    denied = client.patch(
        "/company/settings",
        json={"allow_negative_inventory": True},
        headers=_headers(company_id, role="ops"),
    )
    assert denied.status_code == 403

    updated = client.patch(
        "/company/settings",
        json={"allow_negative_inventory": True, "reorder_warning_multiplier": 2.0},
        headers=_headers(company_id),
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["allow_negative_inventory"] is True
    assert updated.json()["reorder_warning_multiplier"] == 2.0

    empty = client.patch("/company/settings", json={}, headers=_headers(company_id))
    assert empty.status_code == 422


def test_lot_trace_lists_builds_that_used_a_lot(test_context):
    client, session_local = test_context
    headers = _headers(_seed_company(session_local))
    _create_location(client, headers)
    oil = _create_component(client, headers, name="Fragrance oil", code="OIL", cost="4", lot_tracked=True)
    sku = _create_sku(client, headers, code="CANDLE-LAV")
    _create_bom(client, headers, sku_id=sku["id"], lines=[(oil["id"], "1")])

    _receive(client, headers, component_id=oil["id"], quantity="5", lot_number="L-100", expiry_date="2025-01-01")
    built = client.post(
        "/transactions/build",
        json={"sku_id": sku["id"], "units_to_build": 3, "transaction_date": "2024-03-01"},
        headers=headers,
    )
    assert built.status_code == 200, built.text
    lot_id = built.json()["transaction"]["lines"][0]["lot_id"]
    assert built.json()["transaction"]["lines"][0]["lot_number"] == "L-100"

    trace = client.get(f"/lots/{lot_id}/trace", headers=headers)
    assert trace.status_code == 200, trace.text
    body = trace.json()
    assert Decimal(body["lot"]["balance"]) == Decimal("2")
    assert [(item["internal_code"], Decimal(item["quantity_used"])) for item in body["affected_skus"]] == [
        ("CANDLE-LAV", Decimal("3"))
    ]


def test_draft_edit_and_delete_via_api(test_context):
    client, session_local = test_context
    headers = _headers(_seed_company(session_local))
    setup = _candle_setup(client, headers)
    wax_id = setup["wax"]["id"]

    def _stage(quantity: str) -> dict:
        res = client.post(
            "/drafts",
            json={"type": "receipt", "component_id": wax_id, "quantity": quantity, "transaction_date": "2024-02-01"},
            headers=headers,
        )
        assert res.status_code == 200, res.text
        return res.json()["transaction"]

    pending = _stage("5")
    edited = client.patch(f"/drafts/{pending['id']}", json={"quantity": "7", "notes": "recount"}, headers=headers)
    assert edited.status_code == 200, edited.text
    body = edited.json()["transaction"]
    assert body["id"] == pending["id"]
    assert body["notes"] == "recount"
    assert [Decimal(line["quantity_change"]) for line in body["lines"]] == [Decimal("7")]

    wrong_field = client.patch(f"/drafts/{pending['id']}", json={"units_to_build": 3}, headers=headers)
    assert wrong_field.status_code == 400, wrong_field.text
    empty = client.patch(f"/drafts/{pending['id']}", json={}, headers=headers)
    assert empty.status_code == 422, empty.text

    approved = _stage("2")
    assert client.post(f"/drafts/{approved['id']}/approve", headers=headers).status_code == 200
    rejected = _stage("3")
    assert client.post(f"/drafts/{rejected['id']}/reject", json={"reason": "dupe"}, headers=headers).status_code == 200
    for reviewed in (approved, rejected):
        patch = client.patch(f"/drafts/{reviewed['id']}", json={"quantity": "9"}, headers=headers)
        assert patch.status_code == 409, patch.text
        assert patch.json()["error"]["code"] == "invalid_transition"
        delete = client.delete(f"/drafts/{reviewed['id']}", headers=headers)
        assert delete.status_code == 409, delete.text

    removed = client.delete(f"/drafts/{pending['id']}", headers=headers)
    assert removed.status_code == 200, removed.text
    assert removed.json()["id"] == pending["id"]
    assert client.get("/drafts/count", headers=headers).json() == {"pending": 0}
    assert client.get(f"/drafts/{pending['id']}", headers=headers).status_code == 404
    listed = client.get("/drafts", params={"status": "draft"}, headers=headers).json()
    assert listed["pagination"]["total"] == 0

    wax = client.get(f"/components/{wax_id}", headers=headers).json()
    assert Decimal(wax["quantity_on_hand"]) == Decimal("2")
