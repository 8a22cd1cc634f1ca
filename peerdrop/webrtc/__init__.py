"""
Client side of PeerDrop: relay client, peer sessions and data channels.
"""

from .peer_manager import PeerSessionManager
from .session import PeerSession, SessionRole, SessionState
from .data_channel import DataChannel, DataChannelManager
from .message_handler import WebRTCMessageHandler
from .signaling import SignalingClient

__all__ = [
    'PeerSessionManager',
    'PeerSession',
    'SessionRole',
    'SessionState',
    'DataChannel',
    'DataChannelManager',
    'WebRTCMessageHandler',
    'SignalingClient'
]
