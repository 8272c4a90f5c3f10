"""Event fanout and the WebSocket channels it feeds."""

import asyncio

import pytest
import redis
from starlette.websockets import WebSocketDisconnect

from restopos.services import notification_service
from restopos.services.notification_service import NotificationFanout
from restopos.services.websocket_service import Channel, ConnectionManager, EventType


class FakeSocket:

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def accept(self):
        pass

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


def _token(headers, key):
    return headers[key]["Authorization"].split(" ", 1)[1]


# ============== Fanout ==============

class TestFanout:

    def test_history_without_loop(self, notifier):
        message = notifier.publish(EventType.KOT_READY, {"kot_id": 1}, channels=(Channel.KITCHEN,))

        assert message.event == "kot:ready"
        assert notifier.events(EventType.KOT_READY) == [message]
        assert notifier.events(EventType.KOT_CREATED) == []
        assert notifier.events() == [message]

    def test_delivers_to_channel_subscribers(self):
        manager = ConnectionManager()
        fanout = NotificationFanout(manager)
        kitchen, tables = FakeSocket(), FakeSocket()

        async def scenario():
            await manager.connect(kitchen, Channel.KITCHEN.value, user_id=1)
            await manager.connect(tables, Channel.TABLES.value, user_id=2)
            fanout.bind_loop(asyncio.get_running_loop())
            fanout.publish(EventType.KOT_CREATED, {"kot_id": 9}, channels=(Channel.KITCHEN,))
            await asyncio.sleep(0.01)

        asyncio.run(scenario())

        assert [m["event"] for m in kitchen.sent] == ["kot:created"]
        assert kitchen.sent[0]["data"] == {"kot_id": 9}
        assert "timestamp" in kitchen.sent[0]
        assert tables.sent == []

    def test_dead_socket_is_dropped(self):
        manager = ConnectionManager()
        fanout = NotificationFanout(manager)
        dead = FakeSocket(fail=True)

        async def scenario():
            await manager.connect(dead, Channel.ORDERS.value)
            fanout.bind_loop(asyncio.get_running_loop())
            fanout.publish(EventType.ORDER_BILLED, {"order_id": 1})
            await asyncio.sleep(0.01)

        asyncio.run(scenario())

        assert manager.get_connection_count(Channel.ORDERS.value) == 0

    def test_closed_loop_is_ignored(self, notifier):
        loop = asyncio.new_event_loop()
        loop.close()
        notifier.bind_loop(loop)

        notifier.publish(EventType.TABLE_UPDATED, {"table_id": 1}, channels=(Channel.TABLES,))

        assert len(notifier.history) == 1

    def test_unreachable_redis_does_not_break_publish(self):
        fanout = NotificationFanout(ConnectionManager(), redis_url="redis://127.0.0.1:1/0")
        message = fanout.publish(EventType.ORDER_BILLED, {"order_id": 1})
        assert message.event == "order:billed"

    def test_failed_redis_pauses_the_mirror(self, monkeypatch):
        attempts = []
        now = [100.0]

        class DeadRedis:
            def publish(self, channel, payload):
                attempts.append(channel)
                raise redis.ConnectionError("connection refused")

        monkeypatch.setattr(notification_service.redis, "from_url", lambda url, **kwargs: DeadRedis())
        fanout = NotificationFanout(
            ConnectionManager(), redis_url="redis://localhost:6399/0",
            redis_retry_seconds=30, clock=lambda: now[0],
        )

        fanout.publish(EventType.ORDER_BILLED, {"order_id": 1})
        assert len(attempts) == 1
        assert fanout._redis is None

        now[0] += 10
        fanout.publish(EventType.ORDER_BILLED, {"order_id": 2})
        assert len(attempts) == 1

        now[0] += 25
        fanout.publish(EventType.ORDER_BILLED, {"order_id": 3})
        assert len(attempts) == 2
        assert len(fanout.events(EventType.ORDER_BILLED)) == 3

    def test_history_is_bounded(self):
        fanout = NotificationFanout(ConnectionManager(), history_size=3)
        for i in range(5):
            fanout.publish(EventType.KOT_CREATED, {"kot_id": i})
        assert [m.data["kot_id"] for m in fanout.history] == [2, 3, 4]


# ============== WebSocket endpoints ==============

class TestWebSocket:

    def test_ping_pong(self, client, headers):
        with client.websocket_connect(f"/ws/kitchen?token={_token(headers, 'kitchen')}") as ws:
            ws.send_text("ping")
            assert ws.receive_text() == "pong"

    def test_rejects_missing_token(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/orders") as ws:
                ws.receive_text()

    def test_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/tables?token=forged") as ws:
                ws.receive_text()

    def test_table_events_reach_floor_view(self, client, headers, tables):
        with client.websocket_connect(f"/ws/tables?token={_token(headers, 'captain')}") as ws:
            response = client.post(
                f"/api/v1/tables/{tables['t1'].id}/session",
                json={"guestCount": 2},
                headers=headers["captain"],
            )
            assert response.status_code == 201

            message = ws.receive_json()

        assert message["event"] == "table:updated"
        assert message["data"]["table_id"] == tables["t1"].id
        assert message["data"]["status"] == "occupied"

    def test_ticket_events_reach_kitchen(self, client, headers, tables, menu):
        t1 = tables["t1"].id
        client.post(f"/api/v1/tables/{t1}/session", json={"guestCount": 2}, headers=headers["captain"])
        order = client.post(
            "/api/v1/orders", json={"orderType": "dine_in", "tableId": t1}, headers=headers["captain"]
        ).json()
        client.post(
            f"/api/v1/orders/{order['id']}/items",
            json={"items": [{"menuItemId": menu["beer"].id, "quantity": 2}]},
            headers=headers["captain"],
        )

        with client.websocket_connect(f"/ws/kitchen?token={_token(headers, 'bar')}") as ws:
            client.post(f"/api/v1/orders/{order['id']}/kot", headers=headers["captain"])
            message = ws.receive_json()

        assert message["event"] == "kot:created"
        assert message["data"]["station"] == "bar"
        assert message["data"]["table_number"] == "T1"
        assert message["data"]["items"][0]["name"] == "Kingfisher"
        assert message["data"]["items"][0]["quantity"] == 2
