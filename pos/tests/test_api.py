import time


def seed(client, stock=5):
    product = client.post(
        "/api/products",
        json={"name": "Burger", "price": 10, "taxRate": 10, "isTrackable": True, "initialStock": stock},
    )
    assert product.status_code == 201
    table = client.post("/api/tables", json={"tableNumber": "T1", "capacity": 4})
    assert table.status_code == 201
    return product.json()["data"], table.json()["data"]


def place(client, table_id, product_id, quantity, **extra):
    return client.post(
        "/api/orders",
        json={"tableId": table_id, "items": [{"productId": product_id, "quantity": quantity}], **extra},
        headers={"X-User-ID": "waiter-7"},
    )


def wait_for_audit(client, **params):
    # audit rows are written by a background worker
    for _ in range(50):
        rows = client.get("/api/audit/logs", params=params).json()["data"]
        if rows:
            return rows
        time.sleep(0.05)
    return []


def test_health_and_metrics(client) -> None:
    assert client.get("/health").json() == {"ok": True, "data": {"status": "ok"}}
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "orders_created_total" in resp.text


def test_order_lifecycle_over_http(client) -> None:
    product, table = seed(client)

    resp = place(client, table["id"], product["id"], 2, customerName="Ada")
    assert resp.status_code == 201
    order = resp.json()["data"]
    assert order["status"] == "pending"
    assert order["customer_name"] == "Ada"
    assert order["created_by"] == "waiter-7"
    assert order["total"] == 22.0

    assert client.get(f"/api/tables/{table['id']}").json()["data"]["status"] == "occupied"
    assert client.get(f"/api/inventory/{product['id']}").json()["data"]["current_stock"] == 3

    resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "confirmed"})
    assert resp.json()["data"]["status"] == "confirmed"
    listed = client.get("/api/orders", params={"status": "confirmed", "tableId": table["id"]})
    assert [o["id"] for o in listed.json()["data"]] == [order["id"]]

    resp = client.post(f"/api/orders/{order['id']}/cancel")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "cancelled"
    assert client.get(f"/api/inventory/{product['id']}").json()["data"]["current_stock"] == 5
    assert client.get(f"/api/tables/{table['id']}").json()["data"]["status"] == "available"

    trail = wait_for_audit(client, tableName="orders", action="CANCEL")
    assert trail[0]["record_id"] == str(order["id"])
    assert trail[0]["new_values"]["status"] == "cancelled"


def test_error_envelopes(client) -> None:
    product, table = seed(client, stock=1)

    missing = client.get("/api/orders/999")
    assert missing.status_code == 404
    body = missing.json()
    assert body["ok"] is False
    assert body["code"] == 404
    assert body["error"]

    short = place(client, table["id"], product["id"], 3)
    assert short.status_code == 400
    assert short.json()["details"]["available"] == 1
    assert short.json()["details"]["requested"] == 3

    malformed = client.post("/api/orders", json={"tableId": table["id"], "items": "burger"})
    assert malformed.status_code == 400
    assert malformed.json()["error"] == "Invalid request"

    order = place(client, table["id"], product["id"], 1).json()["data"]
    bad_status = client.put(f"/api/orders/{order['id']}/status", json={"status": "eaten"})
    assert bad_status.status_code == 400
    skipped = client.put(f"/api/orders/{order['id']}/status", json={"status": "completed"})
    assert skipped.status_code == 400
    assert skipped.json()["details"] == {"current": "pending", "requested": "completed"}

    for step in ("confirmed", "preparing", "ready", "served", "completed"):
        client.put(f"/api/orders/{order['id']}/status", json={"status": step})
    refused = client.post(f"/api/orders/{order['id']}/cancel", json={"reason": "late"})
    assert refused.status_code == 400
    assert refused.json()["error"] == "Cannot cancel a completed order"


def test_oversized_and_non_finite_numbers_are_rejected(client) -> None:
    product, table = seed(client)
    water = client.post("/api/products", json={"name": "Water", "price": 1.5}).json()["data"]

    huge = place(client, table["id"], water["id"], 10**20)
    assert huge.status_code == 400
    assert huge.json()["details"]["quantity"] == 10**20
    restock = client.post(
        f"/api/inventory/{product['id']}/adjust",
        json={"adjustmentType": "in", "quantity": 10**20},
    )
    assert restock.status_code == 400
    assert client.get(f"/api/inventory/{product['id']}").json()["data"]["current_stock"] == 5

    for literal in ("NaN", "Infinity", "-Infinity"):
        body = (
            '{"tableId": %d, "items": [{"productId": %d, "quantity": 1}], "discountAmount": %s}'
            % (table["id"], product["id"], literal)
        )
        resp = client.post(
            "/api/orders", content=body, headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request"
    priced = client.post(
        "/api/products",
        content='{"name": "Soup", "price": NaN}',
        headers={"Content-Type": "application/json"},
    )
    assert priced.status_code == 400
    assert client.get("/api/sync/orders").json()["data"] == []



def test_inventory_endpoints(client) -> None:
    product, _ = seed(client, stock=4)

    resp = client.post(
        f"/api/inventory/{product['id']}/adjust",
        json={"adjustmentType": "out", "quantity": 2, "reason": "spoiled"},
    )
    assert resp.json()["data"]["new_stock"] == 2

    bulk = client.post(
        "/api/inventory/bulk-adjust",
        json={"adjustments": [{"productId": product["id"], "adjustmentType": "out", "quantity": 9}]},
    )
    assert bulk.status_code == 400
    assert bulk.json()["details"]["product_id"] == product["id"]

    movements = client.get("/api/inventory/movements", params={"productId": product["id"]})
    assert [m["movement_type"] for m in movements.json()["data"]] == ["out", "in"]
    assert client.get("/api/inventory/low-stock").json()["data"] == []
    assert client.get("/api/inventory/4242").status_code == 404


def test_table_and_reservation_endpoints(client) -> None:
    _, table = seed(client)

    assert client.post("/api/tables", json={"tableNumber": "T1"}).status_code == 409
    assert client.put(f"/api/tables/{table['id']}/status", json={"status": "melted"}).status_code == 400
    assert client.put("/api/tables/999/status", json={"status": "cleaning"}).status_code == 404

    resp = client.post(
        "/api/reservations",
        json={
            "tableId": table["id"],
            "customerName": "Grace",
            "reservationDate": "2030-05-01",
            "reservationTime": "19:30",
            "partySize": 2,
        },
    )
    assert resp.status_code == 201
    reservation = resp.json()["data"]
    seated = client.put(f"/api/reservations/{reservation['id']}/status", json={"status": "seated"})
    assert seated.json()["data"]["status"] == "seated"
    assert client.get(f"/api/tables/{table['id']}").json()["data"]["status"] == "occupied"
    listed = client.get("/api/reservations", params={"date": "2030-05-01"}).json()["data"]
    assert [r["id"] for r in listed] == [reservation["id"]]


def test_sync_and_dashboard(client) -> None:
    product, table = seed(client)
    order = place(client, table["id"], product["id"], 1).json()["data"]

    inventory = client.get("/api/sync/inventory").json()["data"]
    assert [row["product_id"] for row in inventory] == [product["id"]]
    tables = client.get("/api/sync/tables").json()["data"]
    assert tables[0]["status"] == "occupied"
    orders = client.get("/api/sync/orders").json()["data"]
    assert [o["id"] for o in orders] == [order["id"]]

    for step in ("confirmed", "preparing", "ready", "served", "completed"):
        client.put(f"/api/orders/{order['id']}/status", json={"status": step})
    metrics = client.get("/api/dashboard/metrics").json()["data"]
    assert metrics["sales"]["today_orders"] == 1
    assert metrics["sales"]["today_sales"] == 11.0
    assert metrics["inventory"]["total_products"] == 1
    assert client.get("/api/sync/orders").json()["data"] == []


def test_audit_and_integrity_endpoints(client) -> None:
    product, _ = seed(client)

    report = client.post("/api/audit/integrity-check").json()["data"]
    assert report["status"] == "PASS"

    created = wait_for_audit(client, tableName="products")
    assert created[0]["record_id"] == str(product["id"])
    trail = client.get(f"/api/audit/trail/products/{product['id']}").json()["data"]
    assert [row["action"] for row in trail] == ["CREATE"]
    summary = client.get("/api/audit/summary").json()["data"]
    assert any(row["table_name"] == "products" for row in summary)


def test_backup_endpoints(client) -> None:
    seed(client)

    full = client.post("/api/backup/full", json={"description": "nightly"})
    assert full.status_code == 201
    name = full.json()["data"]["filename"]
    incremental = client.post("/api/backup/incremental")
    assert incremental.status_code == 201

    listed = client.get("/api/backup/list").json()["data"]
    assert {b["filename"] for b in listed} == {name, incremental.json()["data"]["filename"]}
    assert client.get(f"/api/backup/{name}/verify").json()["data"]["valid"] is True
    restored = client.post(f"/api/backup/{name}/restore", params={"preBackup": "false"})
    assert restored.status_code == 200
    assert restored.json()["data"]["type"] == "full"
    assert client.get("/api/sync/tables").json()["data"][0]["table_number"] == "T1"
    assert client.delete(f"/api/backup/{name}").json()["data"]["deleted"] is True
    assert client.get(f"/api/backup/{name}/verify").status_code == 404
    assert client.get("/api/backup/config.json/verify").status_code == 400


def test_request_id_is_echoed_and_reported(client) -> None:
    resp = client.get("/api/orders/999", headers={"X-Request-ID": "req-42"})

    assert resp.headers["X-Request-ID"] == "req-42"
    assert resp.json()["request_id"] == "req-42"
    assert client.get("/health").headers["X-Request-ID"]


def test_actor_dependency_module(client) -> None:
    from pos.app.deps import context

    assert context.__doc__.startswith("Dependency helpers")
    resp = client.post(
        "/api/tables", json={"tableNumber": "B2"}, headers={"X-User-ID": "host-1"}
    )
    assert resp.status_code == 201
    trail = wait_for_audit(client, tableName="tables")
    assert trail[0]["user_id"] == "host-1"
