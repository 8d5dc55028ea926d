from decimal import Decimal


def money(value):
    return Decimal(str(value))


def check_in_and_seat(client, headers, table_id, party_size=2):
    session = client.post("/sessions", json={"party_size": party_size, "customer_name": "Ann"}, headers=headers).json()
    seated = client.put(f"/sessions/{session['id']}/seat", json={"table_id": table_id}, headers=headers)
    assert seated.status_code == 200
    return seated.json()


def submit(client, headers, session, items, parent_order_id=None):
    response = client.post("/orders", json={
        "session_id": session["id"],
        "table_id": session["table_id"],
        "items": items,
        "parent_order_id": parent_order_id,
    }, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_requires_token(client):
    response = client.post("/sessions", json={"party_size": 2})
    assert response.status_code == 401

    response = client.post("/sessions", json={"party_size": 2}, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_capacity_warning_scenario(client, headers, small_table):
    session = client.post("/sessions", json={"party_size": 4}, headers=headers).json()
    assert session["status"] == "WAITING"

    response = client.put(f"/sessions/{session['id']}/seat", json={"table_id": small_table.id}, headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["session"]["status"] == "SEATED"
    assert body["session"]["table_number"] == 1
    assert len(body["warnings"]) == 1


def test_seat_conflict(client, headers, table):
    check_in_and_seat(client, headers, table.id)
    other = client.post("/sessions", json={"party_size": 2}, headers=headers).json()

    response = client.put(f"/sessions/{other['id']}/seat", json={"table_id": table.id}, headers=headers)
    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "ConflictError"
    assert body["context"]["table_id"] == table.id

    assert client.get(f"/sessions/{other['id']}", headers=headers).json()["status"] == "WAITING"


def test_request_validation_is_reported_as_validation_error(client, headers):
    response = client.post("/sessions", json={"party_size": "many"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


def test_unknown_session_is_404(client, headers):
    response = client.get("/sessions/999", headers=headers)
    assert response.status_code == 404
    assert response.json()["context"] == {"entity": "session", "id": 999}


def test_order_lifecycle(client, headers, table, menu):
    session = check_in_and_seat(client, headers, table.id)
    order = submit(client, headers, session, [
        {"menu_item_id": menu["burger"].id, "quantity": 2},
        {"menu_item_id": menu["coffee"].id, "quantity": 1, "notes": "no sugar"},
    ])
    assert money(order["total_amount"]) == Decimal("28.00")
    assert money(order["items"][0]["line_total"]) == Decimal("25.00")

    response = client.patch(f"/orders/{order['id']}/status", json={"status": "READY"}, headers=headers)
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidStateError"
    assert response.json()["context"]["to_status"] == "READY"

    response = client.patch(f"/orders/{order['id']}/status", json={"status": "CONFIRMED"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["confirmed_at"] is not None

    coffee_id = order["items"][1]["id"]
    response = client.delete(f"/orders/{order['id']}/items/{coffee_id}", headers=headers)
    assert response.status_code == 200
    assert money(response.json()["total_amount"]) == Decimal("25.00")

    assert client.get(f"/sessions/{session['id']}", headers=headers).json()["status"] == "ORDERED"


def test_remove_item_from_cancelled_order(client, headers, table, menu):
    session = check_in_and_seat(client, headers, table.id)
    order = submit(client, headers, session, [
        {"menu_item_id": menu["burger"].id, "quantity": 1},
        {"menu_item_id": menu["water"].id, "quantity": 1},
    ])
    client.patch(f"/orders/{order['id']}/status", json={"status": "CANCELLED", "reason": "left"}, headers=headers)

    response = client.delete(f"/orders/{order['id']}/items/{order['items'][0]['id']}", headers=headers)
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidStateError"


def test_bulk_status_update(client, headers, table, menu):
    session = check_in_and_seat(client, headers, table.id)
    first = submit(client, headers, session, [{"menu_item_id": menu["burger"].id, "quantity": 1}])
    second = submit(client, headers, session, [{"menu_item_id": menu["coffee"].id, "quantity": 1}])
    client.patch(f"/orders/{second['id']}/status", json={"status": "CANCELLED"}, headers=headers)

    response = client.patch("/orders/status", json={"order_ids": [first["id"], second["id"]], "status": "CONFIRMED"},
                            headers=headers)
    assert response.status_code == 200
    results = response.json()
    assert [r["ok"] for r in results] == [True, False]
    assert results[1]["error"] == "InvalidStateError"


def test_session_order_groups(client, headers, table, menu):
    session = check_in_and_seat(client, headers, table.id)
    main = submit(client, headers, session, [{"menu_item_id": menu["burger"].id, "quantity": 1}])
    submit(client, headers, session, [{"menu_item_id": menu["coffee"].id, "quantity": 2}], parent_order_id=main["id"])

    body = client.get(f"/sessions/{session['id']}/order-groups", headers=headers).json()
    assert money(body["running_total"]) == Decimal("18.50")
    assert len(body["groups"]) == 1
    assert body["groups"][0]["submission_count"] == 2
    assert body["groups"][0]["status"] == "PENDING"


def test_department_view(client, headers, table, menu):
    session = check_in_and_seat(client, headers, table.id)
    submit(client, headers, session, [{"menu_item_id": menu["coffee"].id, "quantity": 1}])

    kitchen = client.get("/departments/kitchen/pending", headers=headers).json()
    cafe = client.get("/departments/cafe/pending", headers=headers).json()
    assert kitchen["orders"] == []
    assert len(cafe["orders"]) == 1
    assert client.get("/departments/load", headers=headers).json() == {"cafe": 1}


def test_billing_and_checkout(client, headers, table, menu):
    session = check_in_and_seat(client, headers, table.id)
    submit(client, headers, session, [{"menu_item_id": menu["burger"].id, "quantity": 8}])

    response = client.post("/billing/process", json={
        "session_id": session["id"],
        "payment_method": "CASH",
        "extra_charges": [{"description": "Service", "amount": "10", "is_percentage": True}],
        "discount": {"fixed_amount": "5"},
        "received_amount": "90",
    }, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"

    response = client.post("/billing/process", json={
        "session_id": session["id"],
        "payment_method": "CASH",
        "extra_charges": [{"description": "Service", "amount": "10", "is_percentage": True}],
        "discount": {"fixed_amount": "5"},
        "received_amount": "110",
    }, headers=headers)
    assert response.status_code == 200
    payment = response.json()
    assert money(payment["subtotal_amount"]) == Decimal("100.00")
    assert money(payment["final_amount"]) == Decimal("105.00")
    assert money(payment["change_amount"]) == Decimal("5.00")

    assert client.get(f"/sessions/{session['id']}/payments", headers=headers).json()[0]["id"] == payment["id"]

    response = client.put(f"/sessions/{session['id']}/checkout", headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "COMPLETED"

    tables = {t["number"]: t for t in client.get("/tables").json()}
    assert tables[1]["is_available"] is True


def test_split_and_share_payment(client, headers, table, menu):
    session = check_in_and_seat(client, headers, table.id)
    submit(client, headers, session, [{"menu_item_id": menu["burger"].id, "quantity": 8}])

    response = client.post("/billSplit", json={
        "session_id": session["id"],
        "strategy": "EQUAL",
        "params": {"number_of_people": 3},
    }, headers=headers)
    assert response.status_code == 200
    split = response.json()
    assert [money(s["amount"]) for s in split["shares"]] == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]

    response = client.post("/billSplit/payment", json={"split_id": split["id"], "share_index": 2, "amount": "10"},
                           headers=headers)
    assert response.status_code == 200
    share = response.json()
    assert share["status"] == "PARTIAL"
    assert money(share["remaining"]) == Decimal("23.33")

    response = client.post("/billSplit/payment", json={"split_id": split["id"], "share_index": 2, "amount": "0"},
                           headers=headers)
    assert response.status_code == 400

    fetched = client.get(f"/billSplit/{split['id']}", headers=headers).json()
    assert fetched["shares"][2]["status"] == "PARTIAL"


def test_by_item_split_over_api(client, headers, table, menu):
    session = check_in_and_seat(client, headers, table.id)
    order = submit(client, headers, session, [
        {"menu_item_id": menu["burger"].id, "quantity": 1},
        {"menu_item_id": menu["coffee"].id, "quantity": 1},
    ])
    burger_id, coffee_id = [i["id"] for i in order["items"]]

    response = client.post("/billSplit", json={
        "session_id": session["id"],
        "strategy": "BY_ITEM",
        "params": {"assignments": {str(coffee_id): 1}, "number_of_payers": 3},
    }, headers=headers)
    assert response.status_code == 200
    shares = response.json()["shares"]
    assert [money(s["amount"]) for s in shares] == [Decimal("12.50"), Decimal("3.00"), Decimal("0.00")]
    assert shares[0]["item_ids"] == [burger_id]


def test_unknown_group_status_is_validation_error(client, headers, table, menu):
    session = check_in_and_seat(client, headers, table.id)
    submit(client, headers, session, [{"menu_item_id": menu["burger"].id, "quantity": 1}])

    response = client.get("/orders/groups", params={"status": "EATEN"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
