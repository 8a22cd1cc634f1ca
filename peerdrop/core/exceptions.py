"""
Custom exception classes for PeerDrop.
"""


class PeerDropError(Exception):
    """Base exception for PeerDrop."""
    
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}
    
    def __str__(self):
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class SignalingError(PeerDropError):
    """Raised when the relay transport is unavailable."""
    pass


class NegotiationError(PeerDropError):
    """Raised when a description or candidate cannot be applied."""
    pass


class MessageError(PeerDropError):
    """Raised when an application message is malformed or unsupported."""
    pass
