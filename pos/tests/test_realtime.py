import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect, WebSocketState

from pos.app.events import ORDER_COMPLETED, EventBus
from pos.app.main import create_app
from pos.app.middlewares import realtime_guard
from pos.app.realtime import Broadcaster
from pos.app.routes_metrics import event_handler_errors_total

STEPS = ("confirmed", "preparing", "ready", "served")


def seed_order(client, quantity=1):
    product = client.post(
        "/api/products",
        json={"name": "Soup", "price": 6, "isTrackable": True, "initialStock": 10},
    ).json()["data"]
    table = client.post("/api/tables", json={"tableNumber": "T9"}).json()["data"]
    order = client.post(
        "/api/orders",
        json={"tableId": table["id"], "items": [{"productId": product["id"], "quantity": quantity}]},
    ).json()["data"]
    return product, table, order


def test_connect_subscribe_and_receive(client) -> None:
    with client.websocket_connect("/ws") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        assert hello["payload"]["client_id"]
        assert hello["timestamp"]

        ws.send_json({"type": "subscribe", "payload": {"events": ["order:created"]}})
        assert ws.receive_json()["payload"] == {"events": ["order:created"]}

        _, table, order = seed_order(client)

        pushed = ws.receive_json()
        assert pushed["type"] == "order:created"
        assert pushed["payload"]["id"] == order["id"]
        assert pushed["payload"]["table_id"] == table["id"]

        stats = client.get("/api/ws/stats").json()["data"]
        assert stats["total_connections"] == 1
        assert stats["subscriptions"] == {"order:created": 1}


def test_unsubscribed_client_only_gets_replies(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        seed_order(client)

        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"


def test_subscription_management_and_bad_messages(client) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_json({"type": "subscribe", "payload": {"events": ["a", "b"]}})
        assert ws.receive_json()["payload"]["events"] == ["a", "b"]
        ws.send_json({"type": "unsubscribe", "payload": {"events": "a"}})
        reply = ws.receive_json()
        assert reply["type"] == "unsubscription:confirmed"
        assert reply["payload"]["events"] == ["b"]

        ws.send_text("{not json")
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["payload"]["message"] == "Invalid message format"

        ws.send_json(["subscribe"])
        assert ws.receive_json()["type"] == "error"

        ws.send_bytes(b"\x00\x01")
        assert ws.receive_json()["payload"]["message"] == "Invalid message format"

        ws.send_json({"type": "dance"})
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"


def test_completion_fans_out_derived_updates(client) -> None:
    product, table, order = seed_order(client, quantity=2)
    for step in STEPS:
        client.put(f"/api/orders/{order['id']}/status", json={"status": step})

    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "subscribe", "payload": {"events": ["*"]}})
        ws.receive_json()

        client.put(f"/api/orders/{order['id']}/status", json={"status": "completed"})

        received = [ws.receive_json() for _ in range(6)]

    assert [m["type"] for m in received] == [
        "order:updated",
        "order:completed",
        "dashboard:update",
        "dashboard:sales_update",
        "inventory:update",
        "table:status_changed",
    ]
    dashboard = received[2]["payload"]
    assert dashboard["type"] == "order_completed"
    assert dashboard["metrics"]["sales"]["today_orders"] == 1
    assert received[4]["payload"] == {
        "type": "items_sold",
        "items": [{"product_id": product["id"], "quantity_sold": 2}],
    }
    assert received[5]["payload"]["table_id"] == table["id"]
    assert received[5]["payload"]["status"] == "available"


def test_per_ip_connection_limit(settings) -> None:
    app = create_app(settings.model_copy(update={"max_conn_per_ip": 1}))
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            with pytest.raises(WebSocketDisconnect) as exc:
                with client.websocket_connect("/ws"):
                    pass
            assert exc.value.code == 1013
    realtime_guard.connections.clear()


def test_single_event_subscriber_gets_one_message_per_completion(client) -> None:
    product, table, first = seed_order(client)
    second = client.post(
        "/api/orders",
        json={"tableId": table["id"], "items": [{"productId": product["id"], "quantity": 1}]},
    ).json()["data"]
    for order in (first, second):
        for step in STEPS:
            client.put(f"/api/orders/{order['id']}/status", json={"status": step})

    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "subscribe", "payload": {"events": ["order:completed"]}})
        ws.receive_json()

        for order in (first, second):
            client.put(f"/api/orders/{order['id']}/status", json={"status": "completed"})
        ws.send_json({"type": "ping"})

        received = [ws.receive_json() for _ in range(3)]

    assert [m["type"] for m in received] == ["order:completed", "order:completed", "pong"]
    assert [m["payload"]["id"] for m in received[:2]] == [first["id"], second["id"]]


class FakeSocket:
    def __init__(self) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent = []
        self.fail = False

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.client_state = WebSocketState.DISCONNECTED


@pytest.mark.anyio
async def test_dead_sockets_are_dropped_without_errors() -> None:
    bus = EventBus()
    broadcaster = Broadcaster(bus)
    closed, broken, live = FakeSocket(), FakeSocket(), FakeSocket()
    clients = [await broadcaster.connect(ws, "10.0.0.1") for ws in (closed, broken, live)]
    for client in clients:
        broadcaster.subscribe(client, ["order:completed"])
    before = event_handler_errors_total.labels(event=ORDER_COMPLETED)._value.get()

    closed.client_state = WebSocketState.DISCONNECTED
    broken.fail = True
    await bus.publish(ORDER_COMPLETED, {"id": 1})

    assert [m["type"] for m in closed.sent] == ["connected"]
    assert [m["type"] for m in broken.sent] == ["connected"]
    assert [m["type"] for m in live.sent] == ["connected", "order:completed"]
    assert broadcaster.clients == [clients[2]]
    assert event_handler_errors_total.labels(event=ORDER_COMPLETED)._value.get() == before

    assert await broadcaster.broadcast(ORDER_COMPLETED, {"id": 2}) == 1
    await broadcaster.close()
