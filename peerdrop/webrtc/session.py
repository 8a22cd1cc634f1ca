"""
Peer session: negotiation state machine for one remote participant.
"""
import asyncio
import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from aiortc import RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from ..core.exceptions import NegotiationError, SignalingError
from ..core.logging import LoggerMixin, debug_log
from ..core.validation_utils import ValidationUtils
from .data_channel import DataChannel
from .signaling import ANSWER, CANDIDATE, OFFER, describe, signal_kind


class SessionState(str, Enum):
    NEW = "new"
    OFFER_SENT = "offer-sent"
    ANSWER_PENDING = "answer-pending"
    ANSWER_SENT = "answer-sent"
    CONNECTED = "connected"
    CLOSED = "closed"


class SessionRole(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


# Connection states that end a session
TERMINAL_CONNECTION_STATES = ("failed", "disconnected", "closed")


class PeerSession(LoggerMixin):
    """One pairwise negotiation and its resulting data channel.
    
    The initiator creates the data channel and the offer; the responder waits
    for the offer and answers it. Only the channel opening moves a session to
    ``CONNECTED``. ``CLOSED`` is terminal: once reached, late negotiation
    results and events are ignored.
    """
    
    def __init__(self, remote_id: str, role: SessionRole, connection: Any,
                 send_signal: Callable[[str, Dict[str, Any]], Awaitable[None]],
                 negotiation_timeout: Optional[float] = None):
        super().__init__()
        self.remote_id = remote_id
        self.role = role
        self.connection = connection
        self.state = SessionState.NEW
        self.pending_candidates: List[Dict[str, Any]] = []
        self.created_at = datetime.datetime.now()
        
        self._send_signal = send_signal
        self._channel: Optional[DataChannel] = None
        self._lock = asyncio.Lock()
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._close_task: Optional[asyncio.Future] = None
        
        # Set by the owning manager
        self.on_connected: Optional[Callable[["PeerSession"], None]] = None
        self.on_closed: Optional[Callable[["PeerSession"], None]] = None
        self.on_message: Optional[Callable] = None
        
        self._setup_connection_handlers()
        if negotiation_timeout:
            self._arm_timeout(negotiation_timeout)
    
    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED
    
    @property
    def channel(self) -> Optional[DataChannel]:
        """The data channel, once negotiation has succeeded."""
        if self.state is SessionState.CONNECTED:
            return self._channel
        return None
    
    def _setup_connection_handlers(self):
        """Set up event handlers for the peer connection."""
        connection = self.connection
        
        @connection.on("datachannel")
        def on_datachannel(channel):
            if self.role is SessionRole.RESPONDER:
                self._attach_channel(channel)
            else:
                self.log_warning(f"Ignoring data channel announced to initiator", {"remote_id": self.remote_id})
        
        @connection.on("connectionstatechange")
        async def on_connection_state_change():
            connection_state = connection.connectionState
            debug_log(f"🔗 [Session] Connection state with {self.remote_id}: {connection_state}", {
                "session_state": self.state.value
            })
            if connection_state in TERMINAL_CONNECTION_STATES:
                await self.close(f"connection {connection_state}")
    
    def _attach_channel(self, channel: Any):
        if self._channel is not None:
            self.log_warning(f"Session already has a data channel", {"remote_id": self.remote_id})
            return
        self._channel = DataChannel(
            remote_id=self.remote_id,
            channel=channel,
            on_open=self._on_channel_open,
            on_close=self._on_channel_close,
            on_message=self._on_channel_message
        )
        # Channels announced by the remote may already be open
        if self._channel.is_open:
            self._on_channel_open()
    
    def _transition(self, new_state: SessionState):
        if self.closed:
            return
        if self.state is SessionState.CONNECTED and new_state is not SessionState.CLOSED:
            return
        debug_log(f"🤝 [Session] {self.remote_id}: {self.state.value} -> {new_state.value}", {
            "role": self.role.value
        })
        self.state = new_state
    
    async def _signal(self, body: Dict[str, Any]):
        try:
            await self._send_signal(self.remote_id, body)
        except SignalingError as e:
            self.log_warning(f"Failed to send signal", {
                "remote_id": self.remote_id,
                "error": str(e)
            })
    
    async def start(self):
        """Create the data channel and send the offer (initiator only)."""
        if self.role is not SessionRole.INITIATOR:
            raise NegotiationError("Only the initiator creates an offer", {"remote_id": self.remote_id})
        
        async with self._lock:
            if self.closed or self.state is not SessionState.NEW:
                return
            
            try:
                self._attach_channel(self.connection.createDataChannel("data"))
                offer = await self.connection.createOffer()
                # Gathers local candidates into the SDP
                await self.connection.setLocalDescription(offer)
            except Exception as e:
                self.log_error(f"Failed to create offer", {
                    "remote_id": self.remote_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
                return
            
            if self.closed:
                return
            self._transition(SessionState.OFFER_SENT)
            await self._signal(describe(self.connection.localDescription))
            self._transition(SessionState.ANSWER_PENDING)
    
    async def handle_signal(self, body: Dict[str, Any]):
        """Apply an offer, answer or candidate forwarded by the relay.
        
        Malformed or out-of-order bodies are logged and leave the session in
        its current state.
        """
        async with self._lock:
            if self.closed:
                debug_log(f"🤝 [Session] Ignoring signal for closed session", {"remote_id": self.remote_id}, "DEBUG")
                return
            
            kind = signal_kind(body)
            try:
                if kind == OFFER:
                    await self._handle_offer(body)
                elif kind == ANSWER:
                    await self._handle_answer(body)
                elif kind == CANDIDATE:
                    await self._handle_candidate(body)
                else:
                    raise NegotiationError("Unrecognized signal body")
            except NegotiationError as e:
                self.log_warning(f"Rejected signal", {
                    "remote_id": self.remote_id,
                    "kind": kind,
                    "state": self.state.value,
                    "error": str(e)
                })
            except Exception as e:
                self.log_error(f"Error handling signal", {
                    "remote_id": self.remote_id,
                    "kind": kind,
                    "state": self.state.value,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
    
    async def _handle_offer(self, body: Dict[str, Any]):
        if self.role is not SessionRole.RESPONDER:
            raise NegotiationError("Initiator received an offer")
        if self.connection.remoteDescription is not None:
            raise NegotiationError("Offer already applied")
        error = ValidationUtils.validate_description(body, OFFER)
        if error:
            raise NegotiationError(error)
        
        await self.connection.setRemoteDescription(RTCSessionDescription(sdp=body['sdp'], type=body['type']))
        await self._flush_candidates()
        
        answer = await self.connection.createAnswer()
        await self.connection.setLocalDescription(answer)
        
        if self.closed:
            return
        self._transition(SessionState.ANSWER_SENT)
        await self._signal(describe(self.connection.localDescription))
    
    async def _handle_answer(self, body: Dict[str, Any]):
        if self.role is not SessionRole.INITIATOR:
            raise NegotiationError("Responder received an answer")
        if self.state is not SessionState.ANSWER_PENDING or self.connection.remoteDescription is not None:
            raise NegotiationError("Answer received out of order")
        error = ValidationUtils.validate_description(body, ANSWER)
        if error:
            raise NegotiationError(error)
        
        await self.connection.setRemoteDescription(RTCSessionDescription(sdp=body['sdp'], type=body['type']))
        await self._flush_candidates()
    
    async def _handle_candidate(self, body: Dict[str, Any]):
        if not body.get('candidate'):
            debug_log(f"🧊 [Session] End of candidates from {self.remote_id}", level="DEBUG")
            return
        
        if self.connection.remoteDescription is None:
            self.pending_candidates.append(body)
            debug_log(f"🧊 [Session] Queued candidate from {self.remote_id}", {
                "queued": len(self.pending_candidates)
            }, "DEBUG")
            return
        
        await self._add_candidate(body)
    
    async def _add_candidate(self, body: Dict[str, Any]):
        sdp = body['candidate']
        if sdp.startswith("candidate:"):
            sdp = sdp[len("candidate:"):]
        try:
            candidate = candidate_from_sdp(sdp)
        except (AssertionError, ValueError, IndexError) as e:
            raise NegotiationError("Malformed candidate", {"candidate": body['candidate'], "error": str(e)})
        candidate.sdpMid = body.get('sdpMid')
        candidate.sdpMLineIndex = body.get('sdpMLineIndex')
        await self.connection.addIceCandidate(candidate)
    
    async def _flush_candidates(self):
        """Replay candidates that arrived before the remote description."""
        queued, self.pending_candidates = self.pending_candidates, []
        if queued:
            debug_log(f"🧊 [Session] Replaying {len(queued)} queued candidates from {self.remote_id}")
        for body in queued:
            try:
                await self._add_candidate(body)
            except Exception as e:
                self.log_warning(f"Failed to apply queued candidate", {
                    "remote_id": self.remote_id,
                    "error": str(e)
                })
    
    def _on_channel_open(self):
        if self.state in (SessionState.CONNECTED, SessionState.CLOSED):
            return
        self._transition(SessionState.CONNECTED)
        self._cancel_timeout()
        if self.on_connected is not None:
            self.on_connected(self)
    
    def _on_channel_close(self):
        if not self.closed:
            self._close_task = asyncio.ensure_future(self.close("data channel closed"))
    
    def _on_channel_message(self, message, remote_id: str):
        if self.on_message is not None:
            self.on_message(message, remote_id)
    
    def _arm_timeout(self, timeout: float):
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(timeout, self._on_timeout)
    
    def _cancel_timeout(self):
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
    
    def _on_timeout(self):
        self._timeout_handle = None
        if self.state in (SessionState.CONNECTED, SessionState.CLOSED):
            return
        self.log_warning(f"Negotiation timed out", {
            "remote_id": self.remote_id,
            "state": self.state.value
        })
        self._close_task = asyncio.ensure_future(self.close("negotiation timeout"))
    
    async def close(self, reason: str = "closed"):
        """Tear down the channel and connection. Safe to call more than once."""
        if self.closed:
            return
        self.state = SessionState.CLOSED
        self._cancel_timeout()
        self.pending_candidates = []
        
        debug_log(f"🔌 [Session] Session with {self.remote_id} closed", {
            "role": self.role.value,
            "reason": reason
        })
        
        if self._channel is not None:
            self._channel.close()
        
        if self.on_closed is not None:
            try:
                self.on_closed(self)
            except Exception as e:
                self.log_error(f"Error in session close callback", {
                    "remote_id": self.remote_id,
                    "error": str(e)
                })
        
        try:
            await self.connection.close()
        except Exception as e:
            self.log_warning(f"Error closing peer connection", {
                "remote_id": self.remote_id,
                "error": str(e)
            })
