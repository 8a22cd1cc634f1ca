"""
Application message types exchanged between peers.

Control messages (text, password, file metadata) travel as JSON text frames.
File contents travel as a raw binary frame right after their metadata frame on
the same channel.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .exceptions import MessageError
from .validation_utils import ValidationUtils


TEXT = "text"
PASSWORD = "password"
FILE_META = "file-meta"

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class TextMessage:
    content: str


@dataclass(frozen=True)
class PasswordMessage:
    """Same shape as a text message; the UI treats the content as secret."""
    content: str


@dataclass(frozen=True)
class FileMeta:
    name: str
    size: int
    mime_type: str = DEFAULT_MIME_TYPE


@dataclass(frozen=True)
class FileData:
    """Raw file contents, paired with the metadata frame that preceded it."""
    data: bytes
    meta: Optional[FileMeta] = None


ControlMessage = Union[TextMessage, PasswordMessage, FileMeta]
ApplicationMessage = Union[TextMessage, PasswordMessage, FileMeta, FileData]


def message_to_dict(message: ControlMessage) -> Dict[str, Any]:
    """Convert a control message to its wire dictionary."""
    if isinstance(message, TextMessage):
        return {'type': TEXT, 'content': message.content}
    if isinstance(message, PasswordMessage):
        return {'type': PASSWORD, 'content': message.content}
    if isinstance(message, FileMeta):
        return {
            'type': FILE_META,
            'name': message.name,
            'size': message.size,
            'mimeType': message.mime_type
        }
    if isinstance(message, FileData):
        raise MessageError("File data is sent as a binary frame, not a control message")
    raise MessageError(f"Unsupported message type: {type(message).__name__}")


def message_from_dict(data: Dict[str, Any]) -> ControlMessage:
    """Build a control message from its wire dictionary."""
    error = ValidationUtils.validate_required_fields(data, ['type'])
    if error:
        raise MessageError(error)
    
    message_type = data['type']
    if message_type in (TEXT, PASSWORD):
        error = ValidationUtils.validate_required_fields(data, ['content'])
        if error:
            raise MessageError(error, {"type": message_type})
        if not isinstance(data['content'], str):
            raise MessageError("Message content must be a string", {"type": message_type})
        if message_type == TEXT:
            return TextMessage(content=data['content'])
        return PasswordMessage(content=data['content'])
    
    if message_type == FILE_META:
        error = ValidationUtils.validate_required_fields(data, ['name', 'size'])
        if error:
            raise MessageError(error, {"type": message_type})
        size = data['size']
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise MessageError("File size must be a non-negative integer", {"size": size})
        return FileMeta(
            name=str(data['name']),
            size=size,
            mime_type=data.get('mimeType') or DEFAULT_MIME_TYPE
        )
    
    raise MessageError(f"Unknown message type: {message_type}")


def encode_message(message: ControlMessage) -> str:
    """Serialize a control message to a text frame."""
    return json.dumps(message_to_dict(message))


def decode_message(frame: str) -> ControlMessage:
    """Parse a text frame into a control message."""
    try:
        data = json.loads(frame)
    except json.JSONDecodeError as e:
        raise MessageError("Control frame is not valid JSON", {"error": str(e)})
    return message_from_dict(data)
