"""
Data channel management for peer sessions.
"""
from typing import Any, Callable, Dict

from ..core.logging import LoggerMixin, debug_log
from ..core.messages import ControlMessage, FileMeta, encode_message
from .message_handler import WebRTCMessageHandler


class DataChannel(LoggerMixin):
    """One direct channel to one remote participant.
    
    Wraps an aiortc ``RTCDataChannel`` and decodes its inbound frames.
    """
    
    def __init__(self, remote_id: str, channel: Any,
                 on_open: Callable[[], None],
                 on_close: Callable[[], None],
                 on_message: Callable):
        super().__init__()
        self.remote_id = remote_id
        self.channel = channel
        self.message_handler = WebRTCMessageHandler(remote_id)
        self.message_handler.set_listener(on_message)
        self._on_open = on_open
        self._on_close = on_close
        
        self._setup_channel_handlers()
    
    @property
    def is_open(self) -> bool:
        return self.channel.readyState == "open"
    
    def _setup_channel_handlers(self):
        channel = self.channel
        
        @channel.on("open")
        def on_open():
            debug_log(f"🔗 [DataChannel] Data channel with {self.remote_id} opened")
            self._on_open()
        
        @channel.on("message")
        def on_message(message):
            try:
                self.message_handler.handle_message(message)
            except Exception as e:
                self.log_error("Error handling data channel message", {
                    "remote_id": self.remote_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
        
        @channel.on("close")
        def on_close():
            debug_log(f"🔌 [DataChannel] Data channel with {self.remote_id} closed")
            self._on_close()
            
    def send_message(self, message: ControlMessage) -> bool:
        """Write a control message as a text frame. Returns whether it was sent."""
        if not self.is_open:
            self.log_warning(f"Cannot send message: data channel not open", {
                "remote_id": self.remote_id,
                "ready_state": self.channel.readyState
            })
            return False
        
        try:
            self.channel.send(encode_message(message))
            return True
        except Exception as e:
            self.log_error(f"Failed to send message on data channel", {
                "remote_id": self.remote_id,
                "error": str(e),
                "error_type": type(e).__name__
            })
            return False
    
    def send_file(self, meta: FileMeta, data: bytes) -> bool:
        """Write a metadata frame immediately followed by the file bytes."""
        if not self.send_message(meta):
            return False
        
        try:
            self.channel.send(data)
            return True
        except Exception as e:
            self.log_error(f"Failed to send file data on data channel", {
                "remote_id": self.remote_id,
                "name": meta.name,
                "error": str(e),
                "error_type": type(e).__name__
            })
            return False
    
    def close(self):
        if self.channel.readyState not in ("closing", "closed"):
            self.channel.close()


class DataChannelManager(LoggerMixin):
    """Tracks the open channel of every connected remote."""
    
    def __init__(self):
        super().__init__()
        self.data_channels: Dict[str, DataChannel] = {}
    
    def add_channel(self, channel: DataChannel):
        self.log_info(f"Adding data channel", {
            "remote_id": channel.remote_id,
            "total_channels": len(self.data_channels) + 1
        })
        self.data_channels[channel.remote_id] = channel
    
    def remove_channel(self, remote_id: str):
        """Forget a remote's channel."""
        if remote_id not in self.data_channels:
            return
        del self.data_channels[remote_id]
        self.log_info(f"Removing data channel", {
            "remote_id": remote_id,
            "total_channels": len(self.data_channels)
        })
    
    def broadcast_message(self, message: ControlMessage) -> int:
        """Send a control message on every open channel. Returns how many accepted it."""
        sent_count = 0
        for channel in list(self.data_channels.values()):
            if channel.is_open and channel.send_message(message):
                sent_count += 1
        
        debug_log(f"📤 [DataChannel] Broadcast completed", {
            "message_type": type(message).__name__,
            "sent_count": sent_count,
            "total_channels": len(self.data_channels)
        })
        return sent_count
    
    def broadcast_file(self, meta: FileMeta, data: bytes) -> int:
        """Send a file on every open channel. Returns how many accepted it."""
        sent_count = 0
        for channel in list(self.data_channels.values()):
            if channel.is_open and channel.send_file(meta, data):
                sent_count += 1
        
        debug_log(f"📤 [DataChannel] File broadcast completed", {
            "name": meta.name,
            "size": meta.size,
            "sent_count": sent_count
        })
        return sent_count
    
    def is_any_open(self) -> bool:
        return any(channel.is_open for channel in self.data_channels.values())
    
    def close_all(self):
        for channel in list(self.data_channels.values()):
            channel.close()
        self.data_channels.clear()
