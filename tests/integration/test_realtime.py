"""Integration tests for the /ws observer channel."""

from __future__ import annotations

from fastapi.testclient import TestClient

from src.selection.store import SelectionStore
from tests.conftest import BridgeStub, make_relay_app


class TestObserverChannel:
    def test_connect_sends_selection_snapshot(self, store: SelectionStore) -> None:
        store.add("111@c.us")
        with TestClient(make_relay_app(store)) as client:
            with client.websocket_connect("/ws") as ws:
                assert ws.receive_json() == {
                    "event": "selectedChats",
                    "data": ["111@c.us"],
                }

    def test_select_command_broadcasts_to_all(self, store: SelectionStore) -> None:
        with TestClient(make_relay_app(store)) as client:
            with client.websocket_connect("/ws") as first, \
                    client.websocket_connect("/ws") as second:
                first.receive_json()
                second.receive_json()
                first.send_json({"event": "selectChat", "data": "222@c.us"})
                expected = {"event": "selectedChats", "data": ["222@c.us"]}
                assert first.receive_json() == expected
                assert second.receive_json() == expected
        assert store.contains("222@c.us")

    def test_rest_selection_reaches_observers(self, store: SelectionStore) -> None:
        with TestClient(make_relay_app(store)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                resp = client.post("/api/select", json={"chatId": "333@c.us"})
                assert resp.status_code == 200
                assert ws.receive_json() == {"event": "selectedChats", "data": ["333@c.us"]}

    def test_unknown_command_gets_error(self, store: SelectionStore) -> None:
        with TestClient(make_relay_app(store)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                ws.send_json({"event": "archiveChat", "data": "x"})
                assert ws.receive_json() == {
                    "event": "error",
                    "data": "Unknown command: archiveChat",
                }

    def test_non_json_frame_gets_error_and_stays_open(self, store: SelectionStore) -> None:
        with TestClient(make_relay_app(store)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                ws.send_text("not json")
                assert ws.receive_json() == {"event": "error", "data": "Malformed command"}

                ws.send_json({"event": "selectChat", "data": "111@c.us"})
                assert ws.receive_json() == {"event": "selectedChats", "data": ["111@c.us"]}

    def test_binary_frame_gets_error(self, store: SelectionStore) -> None:
        with TestClient(make_relay_app(store)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                ws.send_bytes(b"\xff\x00")
                assert ws.receive_json() == {"event": "error", "data": "Malformed command"}

    def test_binary_json_frame_is_accepted(self, store: SelectionStore) -> None:
        with TestClient(make_relay_app(store)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                ws.send_bytes(b'{"event": "selectChat", "data": "222@c.us"}')
                assert ws.receive_json() == {"event": "selectedChats", "data": ["222@c.us"]}
        assert store.contains("222@c.us")

    def test_session_lifecycle_is_broadcast(self, store: SelectionStore) -> None:
        stub = BridgeStub(chats=[{"id": "111@c.us", "name": "Alice"}])
        app = make_relay_app(store, stub)
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                assert client.post("/api/session/restart").status_code == 202

                client.post("/webhook/session", json={"type": "qr", "qr": "2@abc"})
                assert ws.receive_json() == {"event": "qr", "data": "2@abc"}

                client.post("/webhook/session", json={"type": "ready"})
                ready = ws.receive_json()
                assert ready["event"] == "ready"
                assert ready["data"]["chats"][0]["id"] == "111@c.us"

                client.post(
                    "/webhook/session",
                    json={"type": "disconnected", "reason": "LOGOUT"},
                )
                assert ws.receive_json() == {
                    "event": "whatsappDisconnected",
                    "data": {"reason": "LOGOUT"},
                }

    def test_ready_snapshot_for_late_joiner(self, store: SelectionStore) -> None:
        stub = BridgeStub(chats=[{"id": "111@c.us", "name": "Alice"}])
        app = make_relay_app(store, stub)
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as early:
                early.receive_json()
                client.post("/api/session/restart")
                client.post("/webhook/session", json={"type": "ready"})
                assert early.receive_json()["event"] == "ready"

            with client.websocket_connect("/ws") as late:
                first = late.receive_json()
                assert first["event"] == "ready"
                assert first["data"]["chats"][0]["name"] == "Alice"
                assert late.receive_json()["event"] == "selectedChats"
