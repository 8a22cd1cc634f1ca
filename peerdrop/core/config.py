"""
Configuration management for PeerDrop.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional

from aiortc import RTCConfiguration, RTCIceServer


DEFAULT_STUN_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
]


@dataclass
class RelayConfig:
    """Signaling relay server settings."""
    
    host: str = "0.0.0.0"
    port: int = 3001
    
    # WebSocket heartbeat interval in seconds (None disables pings)
    heartbeat: Optional[float] = 30.0
    
    log_level: str = "INFO"
    log_file: Optional[str] = "peerdrop_relay.log"
    
    def __post_init__(self):
        """Override settings from environment variables."""
        self.host = os.environ.get('PEERDROP_HOST', self.host)
        self.port = int(os.environ.get('PORT', self.port))
        
        heartbeat = os.environ.get('PEERDROP_HEARTBEAT')
        if heartbeat is not None:
            self.heartbeat = float(heartbeat) or None
        
        self.log_level = os.environ.get('LOG_LEVEL', self.log_level)
    
    def __str__(self) -> str:
        return f"RelayConfig(host={self.host}, port={self.port}, heartbeat={self.heartbeat})"


@dataclass
class ClientConfig:
    """Peer session manager settings."""
    
    relay_url: str = "ws://localhost:3001/ws"
    
    # STUN only; no TURN relay fallback
    stun_servers: List[str] = field(default_factory=lambda: list(DEFAULT_STUN_SERVERS))
    
    # Seconds a session may stay unconnected before it is closed (None waits forever)
    negotiation_timeout: Optional[float] = None
    
    rtc_config: Optional[RTCConfiguration] = None
    
    def __post_init__(self):
        """Override settings from environment variables."""
        self.relay_url = os.environ.get('PEERDROP_RELAY_URL', self.relay_url)
        
        stun_servers = os.environ.get('PEERDROP_STUN_SERVERS')
        if stun_servers:
            self.stun_servers = [url.strip() for url in stun_servers.split(',') if url.strip()]
        
        timeout = os.environ.get('PEERDROP_NEGOTIATION_TIMEOUT')
        if timeout:
            self.negotiation_timeout = float(timeout)
        
        if self.rtc_config is None:
            self._build_rtc_config()
    
    def _build_rtc_config(self):
        """Build WebRTC configuration from the STUN server list."""
        ice_servers = [RTCIceServer(urls=url) for url in self.stun_servers]
        self.rtc_config = RTCConfiguration(iceServers=ice_servers)
    
    def __str__(self) -> str:
        return (
            f"ClientConfig(relay_url={self.relay_url}, stun_servers={len(self.stun_servers)}, "
            f"negotiation_timeout={self.negotiation_timeout})"
        )
