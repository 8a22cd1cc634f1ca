import json

import pytest

from peerdrop.core import protocol
from peerdrop.core.exceptions import MessageError
from peerdrop.core.messages import (
    FileData, FileMeta, PasswordMessage, TextMessage,
    decode_message, encode_message, message_from_dict, message_to_dict
)
from peerdrop.webrtc.message_handler import WebRTCMessageHandler


def test_file_meta_uses_wire_field_names():
    meta = FileMeta(name="notes.txt", size=12, mime_type="text/plain")
    
    assert message_to_dict(meta) == {
        'type': 'file-meta', 'name': 'notes.txt', 'size': 12, 'mimeType': 'text/plain'
    }


@pytest.mark.parametrize("message", [
    TextMessage(content="hi"),
    PasswordMessage(content="hunter2"),
    FileMeta(name="a.bin", size=3, mime_type="application/octet-stream"),
])
def test_control_messages_survive_a_text_frame(message):
    assert decode_message(encode_message(message)) == message


def test_password_and_text_stay_distinct():
    frame = json.dumps({'type': 'password', 'content': 'secret'})
    
    assert decode_message(frame) == PasswordMessage(content="secret")
    assert decode_message(frame) != TextMessage(content="secret")


def test_file_meta_defaults_mime_type():
    message = message_from_dict({'type': 'file-meta', 'name': 'x', 'size': 0})
    
    assert message.mime_type == "application/octet-stream"


@pytest.mark.parametrize("data", [
    {'content': 'no type'},
    {'type': 'text'},
    {'type': 'text', 'content': 5},
    {'type': 'file-meta', 'name': 'x'},
    {'type': 'file-meta', 'name': 'x', 'size': -1},
    {'type': 'file-meta', 'name': 'x', 'size': '10'},
    {'type': 'video', 'content': 'x'},
    ['not', 'an', 'object'],
])
def test_malformed_messages_are_rejected(data):
    with pytest.raises(MessageError):
        message_from_dict(data)


def test_file_data_is_not_a_control_message():
    with pytest.raises(MessageError):
        message_to_dict(FileData(data=b"abc"))


def test_invalid_json_frame_is_rejected():
    with pytest.raises(MessageError):
        decode_message("{not json")


def test_relay_frames_carry_event_and_data():
    raw = protocol.encode_event(protocol.JOIN_ROOM, "r1")
    
    assert protocol.decode_event(raw) == ("join-room", "r1")
    with pytest.raises(MessageError):
        protocol.decode_event(json.dumps({'data': 1}))


class TestMessageHandler:
    def setup_method(self):
        self.received = []
        self.handler = WebRTCMessageHandler("peer")
        self.handler.set_listener(lambda message, remote_id: self.received.append((message, remote_id)))
    
    def test_binary_frame_is_paired_with_preceding_meta(self):
        meta = FileMeta(name="photo.png", size=4, mime_type="image/png")
        
        self.handler.handle_message(encode_message(meta))
        self.handler.handle_message(b"\x89PNG")
        
        assert self.received == [
            (meta, "peer"),
            (FileData(data=b"\x89PNG", meta=meta), "peer"),
        ]
        assert self.handler.pending_meta is None
    
    def test_meta_pairs_with_one_binary_frame_only(self):
        meta = FileMeta(name="a", size=1)
        self.handler.handle_message(encode_message(meta))
        self.handler.handle_message(b"1")
        self.handler.handle_message(b"2")
        
        assert self.received[-1] == (FileData(data=b"2", meta=None), "peer")
    
    def test_text_frames_between_meta_and_data_keep_the_pairing(self):
        meta = FileMeta(name="a", size=1)
        self.handler.handle_message(encode_message(meta))
        self.handler.handle_message(encode_message(TextMessage(content="uploading")))
        self.handler.handle_message(b"1")
        
        assert self.received[-1] == (FileData(data=b"1", meta=meta), "peer")
    
    def test_undecodable_frame_is_dropped(self):
        assert self.handler.handle_message("garbage") is None
        assert self.received == []
