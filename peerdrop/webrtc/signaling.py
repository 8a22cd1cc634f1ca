"""
Relay client and negotiation envelope helpers.
"""
import asyncio
from typing import Any, Callable, Dict, Optional

import websockets

from ..core import protocol
from ..core.exceptions import MessageError, SignalingError
from ..core.logging import LoggerMixin, debug_log


OFFER = "offer"
ANSWER = "answer"
CANDIDATE = "candidate"

# Emitted locally when the relay transport goes away
DISCONNECT = "disconnect"


def signal_kind(body: Any) -> Optional[str]:
    """Classify a signal body as an offer, answer or candidate."""
    if not isinstance(body, dict):
        return None
    if body.get('type') in (OFFER, ANSWER):
        return body['type']
    if 'candidate' in body:
        return CANDIDATE
    return None


def describe(description) -> Dict[str, str]:
    """Wire form of an RTCSessionDescription."""
    return {'type': description.type, 'sdp': description.sdp}


class SignalingClient(LoggerMixin):
    """Connection to the signaling relay.
    
    Inbound events are delivered to at most one handler per event name; a
    later ``on()`` for the same event replaces the earlier handler.
    """
    
    def __init__(self, url: str):
        super().__init__()
        self.url = url
        self.participant_id: Optional[str] = None
        self.websocket = None
        self.handlers: Dict[str, Callable] = {}
        self._listen_task: Optional[asyncio.Task] = None
        self._connected: Optional[asyncio.Event] = None
    
    def on(self, event: str, handler: Callable):
        """Set the handler for an inbound relay event."""
        self.handlers[event] = handler
    
    @property
    def connected(self) -> bool:
        return self.websocket is not None and self._connected is not None and self._connected.is_set()
    
    async def connect(self, timeout: float = 10.0):
        """Open the relay connection and wait for the assigned participant id."""
        debug_log(f"🔌 [Signaling] Connecting to relay", {"url": self.url})
        # Bound to the running loop
        self._connected = asyncio.Event()
        
        try:
            self.websocket = await websockets.connect(self.url, ping_interval=30, ping_timeout=10)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise SignalingError("Failed to connect to relay", {"url": self.url, "error": str(e)})
        
        self._listen_task = asyncio.create_task(self._listen())
        
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise SignalingError("Relay did not assign a participant id", {"url": self.url})
        
        debug_log(f"✅ [Signaling] Connected to relay", {"participant_id": self.participant_id})
    
    async def emit(self, event: str, data: Any = None):
        """Send an event to the relay."""
        if self.websocket is None:
            raise SignalingError("Not connected to relay", {"event": event})
        try:
            await self.websocket.send(protocol.encode_event(event, data))
        except websockets.exceptions.ConnectionClosed as e:
            raise SignalingError("Relay connection closed", {"event": event, "error": str(e)})
    
    async def join_room(self, room_id: str):
        await self.emit(protocol.JOIN_ROOM, room_id)
    
    async def send_signal(self, target_id: str, body: Dict[str, Any]):
        await self.emit(protocol.SIGNAL, {'userId': target_id, 'signal': body})
    
    async def send_message(self, room_id: str, message: Dict[str, Any]):
        await self.emit(protocol.SEND_MESSAGE, {'roomId': room_id, 'message': message})
    
    async def _listen(self):
        """Read relay frames until the connection closes."""
        try:
            async for raw in self.websocket:
                try:
                    event, data = protocol.decode_event(raw)
                except MessageError as e:
                    self.log_warning(f"Dropping malformed relay frame", {"error": str(e)})
                    continue
                
                if event == protocol.CONNECTED:
                    self.participant_id = (data or {}).get('userId')
                    self._connected.set()
                    continue
                
                await self._dispatch(event, data)
        except websockets.exceptions.ConnectionClosed as e:
            debug_log(f"🔌 [Signaling] Relay connection closed", {"reason": str(e)})
        finally:
            self.websocket = None
            self._connected.clear()
            await self._dispatch(DISCONNECT, None)
    
    async def _dispatch(self, event: str, data: Any):
        handler = self.handlers.get(event)
        if handler is None:
            debug_log(f"📡 [Signaling] No handler for relay event", {"event": event}, "DEBUG")
            return
        try:
            result = handler(data)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.log_error(f"Error in relay event handler", {
                "event": event,
                "error": str(e),
                "error_type": type(e).__name__
            })
    
    async def close(self):
        """Disconnect from the relay."""
        websocket = self.websocket
        if websocket is not None:
            await websocket.close()
        if self._listen_task is not None:
            try:
                await asyncio.wait_for(self._listen_task, 5)
            except asyncio.TimeoutError:
                self._listen_task.cancel()
            self._listen_task = None
