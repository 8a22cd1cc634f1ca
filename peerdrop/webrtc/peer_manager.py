"""
Peer session management: one manager per client, one session per remote.
"""
import asyncio
import secrets
import string
from typing import Any, Callable, Dict, List, Optional, Set

from aiortc import RTCPeerConnection

from ..core import protocol
from ..core.config import ClientConfig
from ..core.exceptions import MessageError, SignalingError
from ..core.logging import LoggerMixin, debug_log
from ..core.messages import (
    DEFAULT_MIME_TYPE, ApplicationMessage, ControlMessage, FileData, FileMeta,
    message_from_dict, message_to_dict
)
from ..core.validation_utils import ValidationUtils
from .data_channel import DataChannelManager
from .session import PeerSession, SessionRole
from .signaling import CANDIDATE, DISCONNECT, OFFER, SignalingClient, signal_kind


MESSAGE_RECEIVED = "message-received"
CONNECTION_STATE_CHANGED = "connection-state-changed"
PEER_JOINED = "peer-joined"
PEER_LEFT = "peer-left"

EVENTS = (MESSAGE_RECEIVED, CONNECTION_STATE_CHANGED, PEER_JOINED, PEER_LEFT)

ROOM_ID_ALPHABET = string.ascii_lowercase + string.digits
ROOM_ID_LENGTH = 8


def generate_room_id() -> str:
    """Short random room token. Uniqueness is probabilistic."""
    return ''.join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


class PeerSessionManager(LoggerMixin):
    """Drives negotiation with every peer in a room and multiplexes messages.
    
    Role assignment follows the relay's introductions: a peer announced by
    ``user-connected`` joined after us, so we initiate; peers listed in
    ``room-users`` were there first, so we wait for their offer.
    
    Events (one subscriber each, a later ``on()`` replaces the earlier one):
    
    - ``message-received(message, from_id)``
    - ``connection-state-changed(is_any_channel_open)``
    - ``peer-joined(user_id)``
    - ``peer-left(user_id)``
    """
    
    def __init__(self, config: Optional[ClientConfig] = None,
                 signaling: Optional[SignalingClient] = None,
                 connection_factory: Optional[Callable[[], Any]] = None):
        super().__init__()
        self.config = config or ClientConfig()
        self.signaling = signaling or SignalingClient(self.config.relay_url)
        self.connection_factory = connection_factory or self._create_connection
        
        self.sessions: Dict[str, PeerSession] = {}
        self.data_channel_manager = DataChannelManager()
        self.room_id = ""
        
        self.callbacks: Dict[str, Optional[Callable]] = {event: None for event in EVENTS}
        self._any_open = False
        self._closed = False
        self._tasks: Set[asyncio.Future] = set()
        
        self._setup_signaling_handlers()
    
    def _create_connection(self) -> RTCPeerConnection:
        return RTCPeerConnection(configuration=self.config.rtc_config)
    
    def _setup_signaling_handlers(self):
        self.signaling.on(protocol.ROOM_USERS, self._on_room_users)
        self.signaling.on(protocol.USER_CONNECTED, self._on_user_connected)
        self.signaling.on(protocol.USER_DISCONNECTED, self._on_user_disconnected)
        self.signaling.on(protocol.SIGNAL, self._on_signal)
        self.signaling.on(protocol.RECEIVE_MESSAGE, self._on_receive_message)
        self.signaling.on(DISCONNECT, self._on_relay_disconnect)
    
    def on(self, event: str, callback: Callable):
        """Subscribe to a manager event, replacing any previous subscriber."""
        if event not in self.callbacks:
            raise ValueError(f"Unknown event: {event}")
        self.callbacks[event] = callback
    
    def _notify(self, event: str, *args):
        callback = self.callbacks.get(event)
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                self._spawn(result)
        except Exception as e:
            self.log_error(f"Error in event callback", {
                "event": event,
                "error": str(e),
                "error_type": type(e).__name__
            })
    
    def _spawn(self, coro) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
    
    @property
    def participant_id(self) -> Optional[str]:
        return self.signaling.participant_id
    
    async def connect(self):
        """Connect to the relay."""
        await self.signaling.connect()
    
    async def join_room(self, room_id: str):
        error = ValidationUtils.validate_identifier(room_id, "room_id")
        if error:
            raise ValueError(error)
        self.room_id = room_id
        debug_log(f"🏠 [PeerManager] Joining room {room_id}")
        await self.signaling.join_room(room_id)
    
    async def create_room(self) -> str:
        """Join a freshly generated room and return its id."""
        room_id = generate_room_id()
        await self.join_room(room_id)
        return room_id
    
    def get_room_id(self) -> str:
        return self.room_id
    
    def get_session(self, remote_id: str) -> Optional[PeerSession]:
        return self.sessions.get(remote_id)
    
    def _open_session(self, remote_id: str, role: SessionRole) -> PeerSession:
        """Create a fresh session, discarding any previous one for the same remote."""
        previous = self.sessions.pop(remote_id, None)
        if previous is not None:
            self.data_channel_manager.remove_channel(remote_id)
            self._spawn(previous.close("replaced"))
        
        session = PeerSession(
            remote_id=remote_id,
            role=role,
            connection=self.connection_factory(),
            send_signal=self.signaling.send_signal,
            negotiation_timeout=self.config.negotiation_timeout
        )
        session.on_connected = self._on_session_connected
        session.on_closed = self._on_session_closed
        session.on_message = self._on_channel_message
        self.sessions[remote_id] = session
        
        debug_log(f"🔗 [PeerManager] Session created", {
            "remote_id": remote_id,
            "role": role.value,
            "total_sessions": len(self.sessions)
        })
        return session
    
    def _on_room_users(self, user_ids: List[str]):
        if self._closed:
            return
        if not isinstance(user_ids, list):
            self.log_warning(f"Invalid room-users payload", {"payload": user_ids})
            return
        
        debug_log(f"🏠 [PeerManager] Existing users in room", {"user_ids": user_ids})
        for user_id in user_ids:
            if user_id == self.participant_id or user_id in self.sessions:
                continue
            self._open_session(user_id, SessionRole.RESPONDER)
    
    def _on_user_connected(self, user_id: str):
        if self._closed:
            return
        if ValidationUtils.validate_identifier(user_id, "userId"):
            self.log_warning(f"Invalid user-connected payload", {"payload": user_id})
            return
        
        debug_log(f"🏠 [PeerManager] User connected to room: {user_id}")
        session = self._open_session(user_id, SessionRole.INITIATOR)
        self._spawn(session.start())
        self._notify(PEER_JOINED, user_id)
    
    async def _on_user_disconnected(self, user_id: str):
        debug_log(f"🏠 [PeerManager] User disconnected from room: {user_id}")
        session = self.sessions.get(user_id)
        if session is not None:
            await session.close("peer left")
        self._notify(PEER_LEFT, user_id)
    
    def _on_signal(self, data: Dict[str, Any]):
        if self._closed:
            return
        error = ValidationUtils.validate_required_fields(data, ['userId', 'signal'])
        if error:
            self.log_warning(f"Invalid signal payload", {"error": error})
            return
        
        from_id, body = data['userId'], data['signal']
        session = self.sessions.get(from_id)
        if session is None:
            if signal_kind(body) not in (OFFER, CANDIDATE):
                self.log_warning(f"Signal from unknown peer dropped", {
                    "from_id": from_id,
                    "kind": signal_kind(body)
                })
                return
            session = self._open_session(from_id, SessionRole.RESPONDER)
        
        self._spawn(session.handle_signal(body))
    
    def _on_receive_message(self, data: Dict[str, Any]):
        error = ValidationUtils.validate_required_fields(data, ['userId', 'message'])
        if error:
            self.log_warning(f"Invalid receive-message payload", {"error": error})
            return
        
        try:
            message = message_from_dict(data['message'])
        except MessageError as e:
            self.log_warning(f"Dropping malformed relayed message", {
                "from_id": data['userId'],
                "error": str(e)
            })
            return
        
        self._notify(MESSAGE_RECEIVED, message, data['userId'])
    
    async def _on_relay_disconnect(self, _data=None):
        debug_log(f"🔌 [PeerManager] Relay connection lost, closing {len(self.sessions)} sessions")
        await self._close_sessions("relay disconnected")
    
    def _on_session_connected(self, session: PeerSession):
        self.data_channel_manager.add_channel(session.channel)
        self._update_connection_state()
    
    def _on_session_closed(self, session: PeerSession):
        if self.sessions.get(session.remote_id) is session:
            del self.sessions[session.remote_id]
            self.data_channel_manager.remove_channel(session.remote_id)
        self._update_connection_state()
    
    def _on_channel_message(self, message: ApplicationMessage, remote_id: str):
        self._notify(MESSAGE_RECEIVED, message, remote_id)
    
    def _update_connection_state(self):
        any_open = self.data_channel_manager.is_any_open()
        if any_open != self._any_open:
            self._any_open = any_open
            self._notify(CONNECTION_STATE_CHANGED, any_open)
    
    async def send_message(self, message: ControlMessage) -> bool:
        """Send a control message to every peer with an open channel.
        
        Returns whether at least one channel accepted it. With no open channel
        the message is broadcast live through the relay instead.
        """
        if isinstance(message, FileData):
            raise MessageError("File data must be sent with send_file")
        payload = message_to_dict(message)
        
        sent = self.data_channel_manager.broadcast_message(message) > 0
        if sent:
            return True
        
        if not self.room_id:
            self.log_warning(f"No open channel and no room joined, message dropped")
            return False
        
        try:
            await self.signaling.send_message(self.room_id, payload)
            debug_log(f"📤 [PeerManager] Message sent through relay", {"room_id": self.room_id})
        except SignalingError as e:
            self.log_warning(f"Relay fallback failed", {"error": str(e)})
        return False
    
    async def send_file(self, name: str, data: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> bool:
        """Send a file on every open channel. Files are never relayed."""
        meta = FileMeta(name=name, size=len(data), mime_type=mime_type or DEFAULT_MIME_TYPE)
        sent_count = self.data_channel_manager.broadcast_file(meta, bytes(data))
        if not sent_count:
            self.log_warning(f"File not sent: no open data channel", {"name": name, "size": meta.size})
        return sent_count > 0
    
    def is_connected(self) -> bool:
        return self.data_channel_manager.is_any_open()
    
    def get_status(self) -> Dict[str, Any]:
        return {
            'participant_id': self.participant_id,
            'room_id': self.room_id,
            'connected': self.is_connected(),
            'sessions': {
                remote_id: {'role': session.role.value, 'state': session.state.value}
                for remote_id, session in self.sessions.items()
            }
        }
    
    async def _close_sessions(self, reason: str):
        sessions = list(self.sessions.values())
        if sessions:
            await asyncio.gather(*(session.close(reason) for session in sessions))
        self._update_connection_state()
    
    async def close(self):
        """Tear down every session and disconnect from the relay."""
        if self._closed:
            return
        self._closed = True
        debug_log(f"🧹 [PeerManager] Closing peer session manager")
        
        await self._close_sessions("manager closed")
        self.data_channel_manager.close_all()
        await self.signaling.close()
        
        for task in list(self._tasks):
            task.cancel()
