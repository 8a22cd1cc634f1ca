"""
Core module for PeerDrop.
Contains configuration, logging, exceptions and the shared message types.
"""

from .config import RelayConfig, ClientConfig
from .logging import setup_logging, debug_log, LoggerMixin
from .exceptions import PeerDropError, SignalingError, NegotiationError, MessageError
from .messages import TextMessage, PasswordMessage, FileMeta, FileData

__all__ = [
    'RelayConfig',
    'ClientConfig',
    'setup_logging',
    'debug_log',
    'LoggerMixin',
    'PeerDropError',
    'SignalingError',
    'NegotiationError',
    'MessageError',
    'TextMessage',
    'PasswordMessage',
    'FileMeta',
    'FileData'
]
