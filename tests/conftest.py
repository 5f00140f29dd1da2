import hashlib
import socket
import struct
import threading

import pytest
import requests

from minitorrent import bencode
from minitorrent.peer import HANDSHAKE_LENGTH, recv_exactly

ANNOUNCE = b"http://tracker.example/announce"
REMOTE_PEER_ID = b"-RM0001-remotepeer01"


def make_torrent(content, piece_length, announce=ANNOUNCE, name=b"sample.txt"):
    pieces = b"".join(
        hashlib.sha1(content[i : i + piece_length]).digest()
        for i in range(0, len(content), piece_length)
    )
    return bencode.encode(
        {
            b"announce": announce,
            b"info": {
                b"name": name,
                b"length": len(content),
                b"piece length": piece_length,
                b"pieces": pieces,
            },
        }
    )


def frame(message_id, payload=b""):
    return struct.pack(">IB", len(payload) + 1, message_id) + payload


def read_frame(sock):
    (length,) = struct.unpack(">I", recv_exactly(sock, 4))
    body = recv_exactly(sock, length)
    return body[0], body[1:]


def serve_piece(sock, content, piece_length, corrupt=False):
    """Play the seeder side of one piece download."""
    sock.sendall(frame(5, b"\xff"))
    assert read_frame(sock) == (2, b"")
    sock.sendall(frame(1))
    while True:
        try:
            message_id, payload = read_frame(sock)
        except ConnectionError:
            return
        assert message_id == 6
        index, begin, length = struct.unpack(">III", payload)
        start = index * piece_length + begin
        block = content[start : start + length]
        if corrupt:
            block = bytes(b ^ 0xFF for b in block)
        sock.sendall(frame(7, struct.pack(">II", index, begin) + block))


def answer_handshake(sock):
    request = recv_exactly(sock, HANDSHAKE_LENGTH)
    sock.sendall(request[:48] + REMOTE_PEER_ID)
    return request


class ScriptedPeer:
    """Runs ``script(sock)`` on the far end of a socket pair in a thread."""

    def __init__(self, script):
        self.local, self.remote = socket.socketpair()
        self.error = None
        self.thread = threading.Thread(target=self._run, args=(script,), daemon=True)
        self.thread.start()

    def _run(self, script):
        try:
            script(self.remote)
        except Exception as e:
            self.error = e
        finally:
            self.remote.close()

    def join(self):
        self.thread.join(timeout=5)
        assert not self.thread.is_alive(), "scripted peer did not finish"
        if self.error is not None:
            raise self.error

    def close(self):
        self.local.close()
        self.remote.close()


@pytest.fixture
def scripted_peer():
    peers = []

    def start(script):
        peer = ScriptedPeer(script)
        peers.append(peer)
        return peer

    yield start
    for peer in peers:
        peer.close()


class FakeResponse:
    def __init__(self, content, status_code=200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error", response=self)


@pytest.fixture
def fake_tracker(monkeypatch):
    """Replace ``requests.get`` with a canned tracker reply.

    Set ``fake_tracker.reply`` to the bencoded body (or an exception to raise);
    every call is recorded in ``fake_tracker.calls``.
    """

    class Tracker:
        reply = bencode.encode({b"interval": 60, b"peers": b""})
        status_code = 200
        calls = []

        def get(self, url, params=None, **kwargs):
            self.calls.append((url, params, kwargs))
            if isinstance(self.reply, Exception):
                raise self.reply
            return FakeResponse(self.reply, self.status_code)

    tracker = Tracker()
    tracker.calls = []
    monkeypatch.setattr(requests, "get", tracker.get)
    return tracker
