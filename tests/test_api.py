def _queue_head(client, ref, card, lot):
    return client.post(f"/workcenters/{ref.fitup_wc}/material-queue", json={
        "product_id": ref.head_id,
        "vendor_head_id": ref.head_lot_vendor_id,
        "lot_number": lot,
        "card_code": card,
    })


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True}
    assert res.headers["X-Request-Id"]


def test_request_id_is_propagated(client):
    res = client.get("/health", headers={"X-Request-Id": "abc-123"})
    assert res.headers["X-Request-Id"] == "abc-123"


def test_queue_round_trip(client, ref):
    res = _queue_head(client, ref, "01", "L100")
    assert res.status_code == 201
    body = res.json()
    assert body["position"] == 1
    assert body["status"] == "PENDING"
    assert body["card_color"] == "Red"

    listed = client.get(f"/workcenters/{ref.fitup_wc}/material-queue").json()
    assert [i["id"] for i in listed] == [body["id"]]

    drawn = client.post(f"/workcenters/{ref.fitup_wc}/queue/advance")
    assert drawn.status_code == 200
    assert drawn.json()["empty"] is False
    assert drawn.json()["lot_number"] == "L100"

    empty = client.post(f"/workcenters/{ref.fitup_wc}/queue/advance")
    assert empty.json() == {"empty": True}

    txns = client.get(f"/workcenters/{ref.fitup_wc}/queue-transactions", params={"limit": 10}).json()
    assert sorted(t["action"] for t in txns) == ["added", "advanced"]


def test_queue_validation_is_400_with_field(client, ref):
    res = client.post(f"/workcenters/{ref.rolls_wc}/material-queue", json={
        "product_id": ref.plate_id, "coil_number": "C1", "quantity": 2,
    })
    assert res.status_code == 400
    assert res.json() == {"error": "validation_error", "detail": "heat_number required", "field": "heat_number"}


def test_malformed_body_is_400(client, ref):
    res = client.post(f"/workcenters/{ref.rolls_wc}/material-queue", json={"quantity": "many"})
    assert res.status_code == 400
    assert res.json()["field"] == "quantity"


def test_unknown_work_center_is_404(client):
    assert client.post("/workcenters/missing/queue/advance").status_code == 404
    assert client.get("/workcenters/missing/material-queue").status_code == 404


def test_editing_consumed_item_is_409(client, ref):
    item = _queue_head(client, ref, "01", "L100").json()
    client.post(f"/workcenters/{ref.fitup_wc}/queue/advance")
    res = client.put(f"/workcenters/{ref.fitup_wc}/material-queue/{item['id']}", json={"lot_number": "L101"})
    assert res.status_code == 409
    assert res.json()["error"] == "conflict"
    assert client.delete(f"/workcenters/{ref.fitup_wc}/material-queue/{item['id']}").status_code == 409


def test_delete_pending_item(client, ref):
    item = _queue_head(client, ref, "01", "L100").json()
    assert client.delete(f"/workcenters/{ref.fitup_wc}/material-queue/{item['id']}").status_code == 204
    assert client.get(f"/workcenters/{ref.fitup_wc}/material-queue").json() == []
    assert client.delete(f"/workcenters/{ref.fitup_wc}/material-queue/{item['id']}").status_code == 404


def test_duplicate_card_is_409(client, ref):
    _queue_head(client, ref, "01", "L100")
    assert _queue_head(client, ref, "01", "L101").status_code == 409


def test_card_lookup(client, ref):
    _queue_head(client, ref, "01", "L100")
    res = client.get("/material-queue/card/KC;01")
    assert res.status_code == 200
    assert res.json()["lot_number"] == "L100"
    assert client.get("/material-queue/card/99").status_code == 404


def test_assembly_flow(client, ref, make_shell):
    for serial in ("S1", "S2", "S3"):
        make_shell(serial)
    for card, lot in (("01", "L100"), ("02", "L200")):
        _queue_head(client, ref, card, lot)
        client.post(f"/workcenters/{ref.fitup_wc}/queue/advance")

    assert client.get("/assemblies/next-alpha-code", params={"plant_id": ref.plant_id}).json()["alpha_code"] == "AA"
    payload = {
        "shells": ["S1", "S2"],
        "left_head_lot_id": "L100",
        "right_head_lot_id": "L200",
        "tank_size": 120,
        "work_center_id": ref.assembly_wc,
        "production_line_id": ref.line_id,
        "operator_id": ref.operator_id,
        "welder_ids": [ref.welder_id],
    }
    res = client.post("/assemblies", json=payload)
    assert res.status_code == 201
    assert res.json()["alpha_code"] == "AA"

    again = client.post("/assemblies", json=payload)
    assert again.status_code == 400
    assert again.json()["field"] == "shells"

    res = client.post("/assemblies/AA/reassemble", json={"shells": ["S3"]})
    assert res.status_code == 200
    assert res.json()["alpha_code"] == "AA"

    ctx = client.get("/serial-numbers/S3/context").json()
    assert ctx["existing_assembly"]["shells"] == ["S3", "S2"]

    lookup = client.get("/serial-numbers/S1/lookup").json()
    shell_1 = next(c for c in lookup["tree_nodes"][0]["children"] if c["tank_location"] == "Shell 1")
    assert shell_1["serial"] == "S3"
    assert shell_1["replaced"][0]["serial"] == "S1"

    married = client.post("/assemblies/AA/hydro-marriage", json={
        "sellable_serial": "TK-1", "work_center_id": ref.hydro_wc, "operator_id": ref.operator_id,
        "inspection_result": "Pass",
    })
    assert married.status_code == 201
    assert client.post("/assemblies/AA/reassemble", json={"shells": ["S1"]}).status_code == 404


def test_assembly_missing_fields_is_400(client, ref):
    res = client.post("/assemblies", json={"shells": ["S1"]})
    assert res.status_code == 400
    assert res.json()["error"] == "validation_error"


def test_unknown_serial_is_404(client, ref):
    assert client.get("/serial-numbers/NOPE/lookup").status_code == 404
    assert client.get("/serial-numbers/NOPE/context").status_code == 404
    assert client.get("/assemblies/next-alpha-code", params={"plant_id": "missing"}).status_code == 404
