"""
Signaling relay: room membership and envelope forwarding.
"""

from .rooms import Room, RoomRegistry
from .server import RelayServer, create_app

__all__ = [
    'Room',
    'RoomRegistry',
    'RelayServer',
    'create_app'
]
