"""
Signaling relay server.

Keeps room membership and forwards negotiation envelopes between participants.
Envelope bodies and application messages are never inspected, only routed.
"""
import asyncio
import json
import uuid
from typing import Any, Dict, Optional

from aiohttp import web

from ..core import protocol
from ..core.config import RelayConfig
from ..core.exceptions import MessageError
from ..core.logging import LoggerMixin, debug_log, setup_logging
from ..core.validation_utils import ValidationUtils
from .rooms import RoomRegistry


class RelayServer(LoggerMixin):
    """Routes relay events between registered participant transports.
    
    A transport is anything with an async ``send_json(data)`` method and a
    ``closed`` attribute; in production it is an aiohttp ``WebSocketResponse``.
    """
    
    def __init__(self, config: Optional[RelayConfig] = None):
        super().__init__()
        self.config = config or RelayConfig()
        self.rooms = RoomRegistry()
        self.connections: Dict[str, Any] = {}
        
        debug_log(f"🚀 [Relay] Relay server initialized", {"config": str(self.config)})
    
    def register(self, transport: Any, participant_id: Optional[str] = None) -> str:
        """Register a transport and assign it a participant id."""
        if participant_id is None:
            participant_id = uuid.uuid4().hex
            while participant_id in self.connections:
                participant_id = uuid.uuid4().hex
        self.connections[participant_id] = transport
        
        debug_log(f"🔗 [Relay] Participant connected", {
            "participant_id": participant_id,
            "total_connections": len(self.connections)
        })
        return participant_id
    
    async def dispatch(self, participant_id: str, raw: str):
        """Handle one inbound text frame from a participant."""
        try:
            event, data = protocol.decode_event(raw)
        except MessageError as e:
            self.log_warning(f"Dropping malformed relay frame", {
                "participant_id": participant_id,
                "error": str(e)
            })
            return
        
        if event == protocol.JOIN_ROOM:
            error = ValidationUtils.validate_identifier(data, "roomId")
            if error:
                self.log_warning(f"Invalid join-room request", {"participant_id": participant_id, "error": error})
                return
            await self.join(participant_id, data)
        
        elif event == protocol.SIGNAL:
            error = ValidationUtils.validate_required_fields(data, ['userId', 'signal'])
            if error:
                self.log_warning(f"Invalid signal envelope", {"participant_id": participant_id, "error": error})
                return
            await self.relay_signal(participant_id, data['userId'], data['signal'])
        
        elif event == protocol.SEND_MESSAGE:
            error = ValidationUtils.validate_required_fields(data, ['roomId', 'message'])
            if error:
                self.log_warning(f"Invalid send-message request", {"participant_id": participant_id, "error": error})
                return
            await self.relay_message(participant_id, data['roomId'], data['message'])
        
        else:
            self.log_warning(f"Unknown relay event", {
                "participant_id": participant_id,
                "event": event,
                "known_events": list(protocol.CLIENT_EVENTS)
            })
    
    async def join(self, participant_id: str, room_id: str):
        """Register a participant in a room and introduce it to the other members."""
        debug_log(f"🏠 [Relay] User {participant_id} joining room {room_id}")
        
        others, added = await self.rooms.join(participant_id, room_id)
        
        if added:
            for member_id in others:
                await self._emit(member_id, protocol.USER_CONNECTED, participant_id)
        
        await self._emit(participant_id, protocol.ROOM_USERS, others)
    
    async def relay_signal(self, from_id: str, target_id: str, signal: Any) -> bool:
        """Forward a negotiation envelope body to its target, tagged with the sender."""
        debug_log(f"📡 [Relay] Relaying signal from {from_id} to {target_id}")
        
        if target_id not in self.connections:
            debug_log(f"📡 [Relay] Signal target not registered, dropping", {
                "from_id": from_id,
                "target_id": target_id
            }, "DEBUG")
            return False
        
        return await self._emit(target_id, protocol.SIGNAL, {'userId': from_id, 'signal': signal})
    
    async def relay_message(self, from_id: str, room_id: str, message: Any) -> int:
        """Broadcast an application message to every other member of a room."""
        members = await self.rooms.members(room_id)
        
        debug_log(f"💬 [Relay] Message in room {room_id}", {
            "from_id": from_id,
            "type": message.get('type') if isinstance(message, dict) else None,
            "recipients": max(len(members) - (1 if from_id in members else 0), 0)
        })
        
        sent_count = 0
        for member_id in members:
            if member_id == from_id:
                continue
            if await self._emit(member_id, protocol.RECEIVE_MESSAGE, {'userId': from_id, 'message': message}):
                sent_count += 1
        return sent_count
    
    async def leave(self, participant_id: str):
        """Unregister a participant and tell the rooms it was in."""
        self.connections.pop(participant_id, None)
        
        affected = await self.rooms.leave(participant_id)
        for room_id, remaining in affected.items():
            for member_id in remaining:
                await self._emit(member_id, protocol.USER_DISCONNECTED, participant_id)
        
        debug_log(f"🔌 [Relay] User disconnected: {participant_id}", {
            "rooms_left": list(affected.keys()),
            "total_connections": len(self.connections)
        })
    
    async def _emit(self, participant_id: str, event: str, data: Any) -> bool:
        """Fire-and-forget write to one participant. Returns whether it was written."""
        transport = self.connections.get(participant_id)
        if transport is None or transport.closed:
            return False
        
        try:
            await transport.send_json(protocol.make_event(event, data))
            return True
        except Exception as e:
            self.log_error(f"Failed to write to participant", {
                "participant_id": participant_id,
                "event": event,
                "error": str(e),
                "error_type": type(e).__name__
            })
            return False
    
    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Serve one participant over a WebSocket for its whole lifetime."""
        ws = web.WebSocketResponse(heartbeat=self.config.heartbeat)
        await ws.prepare(request)
        
        participant_id = self.register(ws)
        await self._emit(participant_id, protocol.CONNECTED, {'userId': participant_id})
        
        try:
            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    await self.dispatch(participant_id, msg.data)
                elif msg.type == web.WSMsgType.ERROR:
                    self.log_warning(f"WebSocket error", {
                        "participant_id": participant_id,
                        "error": str(ws.exception())
                    })
                    break
        finally:
            await self.leave(participant_id)
        
        return ws
    
    def get_status(self) -> Dict[str, Any]:
        return {
            'connections': len(self.connections),
            'rooms': self.rooms.get_room_count(),
            'participants': self.rooms.get_participant_count(),
            'room_sizes': self.rooms.get_status()
        }
    
    async def cleanup(self):
        """Close every participant transport."""
        debug_log(f"🧹 [Relay] Closing {len(self.connections)} connections")
        for transport in list(self.connections.values()):
            try:
                await transport.close()
            except Exception as e:
                self.log_warning(f"Error closing transport", {"error": str(e)})


async def handle_status(request: web.Request) -> web.Response:
    """Handle status request."""
    relay = request.app['relay']
    return web.json_response(relay.get_status())


async def handle_connection_offer(request: web.Request) -> web.Response:
    """Placeholder offer storage endpoint. Negotiation happens over the relay."""
    try:
        params = await request.json()
    except json.JSONDecodeError:
        return web.json_response(
            {'success': False, 'error': 'Failed to process connection request'},
            status=400
        )
    
    debug_log(f"📥 [HTTP] Connection offer received", {
        "connection_id": params.get('connectionId') if isinstance(params, dict) else None
    })
    return web.json_response({'success': True, 'message': 'Connection offer received'})


async def handle_connection_lookup(request: web.Request) -> web.Response:
    """Placeholder offer lookup endpoint."""
    connection_id = request.query.get('id')
    if not connection_id:
        return web.json_response({'success': False, 'error': 'Connection ID is required'}, status=400)
    
    return web.json_response({
        'success': True,
        'offer': {'type': 'offer', 'sdp': 'dummy-sdp-for-demo'}
    })


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """Allow any origin, like the browser clients expect."""
    if request.method == 'OPTIONS':
        response = web.Response(status=204)
    else:
        response = await handler(request)
    response.headers['Access-Control-Allow-Origin'] = '*'
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
    return response


def create_app(relay: Optional[RelayServer] = None) -> web.Application:
    """Build the aiohttp application serving the relay."""
    relay = relay or RelayServer()
    
    app = web.Application(middlewares=[cors_middleware])
    app['relay'] = relay
    
    app.router.add_get("/ws", relay.handle_websocket)
    app.router.add_get("/status", handle_status)
    app.router.add_post("/api/connection", handle_connection_offer)
    app.router.add_get("/api/connection", handle_connection_lookup)
    
    async def on_shutdown(app):
        await app['relay'].cleanup()
    
    app.on_shutdown.append(on_shutdown)
    return app


async def main(config: Optional[RelayConfig] = None):
    """Run the relay server until cancelled."""
    config = config or RelayConfig()
    setup_logging(level=config.log_level, log_file=config.log_file)
    debug_log(f"🚀 [Main] Starting PeerDrop relay")
    
    app = create_app(RelayServer(config))
    runner = web.AppRunner(app)
    await runner.setup()
    
    try:
        site = web.TCPSite(runner, config.host, config.port)
        await site.start()
        debug_log(f"✅ [Main] Relay listening on {config.host}:{config.port}")
        
        await asyncio.Future()
    finally:
        await runner.cleanup()
