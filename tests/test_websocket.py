import pytest
from starlette.websockets import WebSocketDisconnect

from app import app
from auth import create_access_token


def authenticate(session, user_id):
    session.send_json({"event": "authenticate", "data": create_access_token(user_id)})
    reply = session.receive_json()
    assert reply == {"event": "authenticated", "data": {"userId": str(user_id)}}


def test_connected_frame_carries_connection_id(client):
    with client.websocket_connect("/ws") as ws:
        hello = ws.receive_json()
        assert hello["event"] == "connected"
        assert hello["data"]["connectionId"] in app.state.relay.connections


def test_invalid_token_gets_auth_error_and_connection_stays_open(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "authenticate", "data": "not-a-jwt"})
        assert ws.receive_json() == {"event": "auth_error", "data": {"message": "Invalid token"}}

        ws.send_json({"event": "authenticate", "data": {"token": create_access_token(7)}})
        assert ws.receive_json()["event"] == "authenticated"


def test_expired_token_reports_reason(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "authenticate", "data": create_access_token(7, expires_in=-60)})
        assert ws.receive_json() == {"event": "auth_error", "data": {"message": "Token expired"}}


def test_room_message_between_two_clients(client):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        assert a.receive_json()["event"] == "connected"
        assert b.receive_json()["event"] == "connected"

        # join before authenticating, the ack proves the join was handled
        a.send_json({"event": "join_room", "data": "r1"})
        authenticate(a, "u1")
        b.send_json({"event": "join_room", "data": "r1"})
        authenticate(b, "u2")

        a.send_json({"event": "send_message", "data": {"roomId": "r1", "text": "hi"}})

        frame = b.receive_json()
        assert frame["event"] == "receive_message"
        assert frame["data"]["text"] == "hi"
        assert frame["data"]["timestamp"]


def test_call_invite_between_two_clients(client):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        assert a.receive_json()["event"] == "connected"
        assert b.receive_json()["event"] == "connected"

        authenticate(b, "u2")
        authenticate(a, "u1")

        a.send_json({"event": "call_user", "data": {"targetUserId": "u2", "callerName": "Alice", "callType": "video"}})

        frame = b.receive_json()
        assert frame == {
            "event": "incoming_call",
            "data": {"callerId": "u1", "callerName": "Alice", "callType": "video"},
        }

        b.send_json({"event": "call_accepted", "data": {"callerId": "u1"}})
        assert a.receive_json() == {"event": "call_accepted", "data": {"targetUserId": "u2"}}


def test_call_to_offline_user_produces_nothing(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        authenticate(ws, "u1")

        ws.send_json({"event": "call_user", "data": {"targetUserId": "ghost", "callType": "audio"}})
        # the next frame answers the unknown event, nothing was sent for the call
        ws.send_json({"event": "noop"})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["data"]["event"] == "noop"


def test_unauthenticated_call_to_offline_user_produces_nothing(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_json({"event": "call_user", "data": {"targetUserId": "ghost"}})
        ws.send_json({"event": "noop"})
        assert ws.receive_json() == {"event": "error", "data": {"event": "noop", "message": "Unknown event 'noop'"}}


def test_malformed_frames_are_answered_with_errors(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_text("not json")
        assert ws.receive_json()["event"] == "error"

        ws.send_json({"data": {}})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Missing 'event'"}}

        ws.send_json({"event": "offer", "data": {"offer": {"type": "offer"}}})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["data"]["event"] == "offer"


def test_disconnect_clears_presence(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        authenticate(ws, "u1")
        assert app.state.relay.registry.lookup("u1") is not None

    # the server side finishes its disconnect path before the next request
    health = client.get("/api/health").json()
    assert health["online_users"] == 0
    assert app.state.relay.registry.lookup("u1") is None


def test_server_closes_socket_after_unexpected_error(client):
    with client.websocket_connect("/ws") as ws:
        connection_id = ws.receive_json()["data"]["connectionId"]
        authenticate(ws, "u1")

        # binary frames are not part of the protocol and end the receive loop
        ws.send_bytes(b"\x00")
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()

        assert connection_id not in app.state.relay.connections
        assert app.state.relay.registry.lookup("u1") is None
