"""
Relay wire protocol: event names and JSON envelope framing.

Every relay frame is a JSON object ``{"event": <name>, "data": <payload>}``.
"""
import json
from typing import Any, Tuple

from .exceptions import MessageError


# client -> server
JOIN_ROOM = "join-room"
SEND_MESSAGE = "send-message"

# server -> client
CONNECTED = "connected"
ROOM_USERS = "room-users"
USER_CONNECTED = "user-connected"
USER_DISCONNECTED = "user-disconnected"
RECEIVE_MESSAGE = "receive-message"

# both directions
SIGNAL = "signal"

CLIENT_EVENTS = (JOIN_ROOM, SIGNAL, SEND_MESSAGE)
SERVER_EVENTS = (CONNECTED, ROOM_USERS, USER_CONNECTED, USER_DISCONNECTED, SIGNAL, RECEIVE_MESSAGE)


def make_event(event: str, data: Any = None) -> dict:
    """Build a relay envelope."""
    return {'event': event, 'data': data}


def encode_event(event: str, data: Any = None) -> str:
    return json.dumps(make_event(event, data))


def decode_event(raw: str) -> Tuple[str, Any]:
    """Parse a relay frame into ``(event, data)``."""
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MessageError("Relay frame is not valid JSON", {"error": str(e)})
    if not isinstance(frame, dict) or not isinstance(frame.get('event'), str):
        raise MessageError("Relay frame missing event name")
    return frame['event'], frame.get('data')
