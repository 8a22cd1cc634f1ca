"""
Inbound data channel frame handling.
"""
from typing import Callable, Optional, Union

from ..core.exceptions import MessageError
from ..core.logging import LoggerMixin, debug_log
from ..core.messages import ApplicationMessage, FileData, FileMeta, decode_message


class WebRTCMessageHandler(LoggerMixin):
    """Turns raw channel frames from one remote into application messages.
    
    Text frames are control messages. A binary frame is paired with the most
    recent ``FileMeta`` frame seen on the same channel, which it consumes.
    """
    
    def __init__(self, remote_id: str):
        super().__init__()
        self.remote_id = remote_id
        self.pending_meta: Optional[FileMeta] = None
        self.listener: Optional[Callable[[ApplicationMessage, str], None]] = None
    
    def set_listener(self, callback: Callable[[ApplicationMessage, str], None]):
        self.listener = callback
    
    def handle_message(self, frame: Union[str, bytes]) -> Optional[ApplicationMessage]:
        """Decode one frame and hand the result to the listener."""
        if isinstance(frame, (bytes, bytearray, memoryview)):
            message = self._handle_binary(bytes(frame))
        else:
            try:
                message = decode_message(frame)
            except MessageError as e:
                self.log_error(f"Failed to decode control frame", {
                    "remote_id": self.remote_id,
                    "error": str(e),
                    "frame": frame[:200]
                })
                return None
            if isinstance(message, FileMeta):
                self.pending_meta = message
        
        debug_log(f"🔵 [WebRTC] Message received from {self.remote_id}", {
            "message_type": type(message).__name__
        }, "DEBUG")
        
        if self.listener is not None:
            self.listener(message, self.remote_id)
        return message
    
    def _handle_binary(self, data: bytes) -> FileData:
        meta, self.pending_meta = self.pending_meta, None
        if meta is None:
            self.log_warning(f"Binary frame without file metadata", {
                "remote_id": self.remote_id,
                "size": len(data)
            })
        elif meta.size != len(data):
            self.log_warning(f"File size does not match metadata", {
                "remote_id": self.remote_id,
                "name": meta.name,
                "expected": meta.size,
                "received": len(data)
            })
        return FileData(data=data, meta=meta)
