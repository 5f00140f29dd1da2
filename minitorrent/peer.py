"""Peer-wire protocol: handshake and single-piece download.

Every read goes through :func:`recv_exactly`, so short reads are retried until
the full frame arrives and a peer hanging up mid-frame is reported as an error
rather than returned as truncated data.
"""
import hashlib
import logging
import socket
import struct
from collections import namedtuple

from .errors import PieceHashMismatch, ProtocolViolation

logger = logging.getLogger(__name__)

PROTOCOL = b"BitTorrent protocol"
HANDSHAKE_LENGTH = 1 + len(PROTOCOL) + 8 + 20 + 20
BLOCK_SIZE = 16 * 1024
# id byte, index and begin, then one block
MAX_MESSAGE_LENGTH = 1 + 8 + BLOCK_SIZE

CHOKE = 0
UNCHOKE = 1
INTERESTED = 2
NOT_INTERESTED = 3
HAVE = 4
BITFIELD = 5
REQUEST = 6
PIECE = 7

MESSAGE_NAMES = {
    CHOKE: "choke",
    UNCHOKE: "unchoke",
    INTERESTED: "interested",
    NOT_INTERESTED: "not interested",
    HAVE: "have",
    BITFIELD: "bitfield",
    REQUEST: "request",
    PIECE: "piece",
}

PeerMessage = namedtuple("PeerMessage", ["id", "payload"])
BlockRequest = namedtuple("BlockRequest", ["index", "begin", "length"])


def connect(address, timeout=None):
    ip, port = address
    return socket.create_connection((ip, int(port)), timeout=timeout)


def recv_exactly(sock, n):
    """Read exactly ``n`` bytes or raise :class:`ConnectionError`."""
    data = bytearray()
    while len(data) < n:
        chunk = sock.recv(n - len(data))
        if not chunk:
            raise ConnectionError(f"connection closed after {len(data)} of {n} bytes")
        data += chunk
    return bytes(data)


def build_handshake(info_hash, peer_id):
    if len(info_hash) != 20 or len(peer_id) != 20:
        raise ValueError("info hash and peer id must both be 20 bytes")
    return struct.pack(">B", len(PROTOCOL)) + PROTOCOL + b"\x00" * 8 + info_hash + peer_id


def handshake(sock, info_hash, peer_id):
    """Exchange handshakes and return the remote peer id.

    The info hash echoed by the remote side is not checked here.
    """
    sock.sendall(build_handshake(info_hash, peer_id))
    try:
        response = recv_exactly(sock, HANDSHAKE_LENGTH)
    except ConnectionError as e:
        raise ProtocolViolation(f"incomplete handshake: {e}") from e
    remote_id = response[-20:]
    logger.info("handshake complete, remote peer id %s", remote_id.hex())
    return remote_id


def read_message(sock, max_length=MAX_MESSAGE_LENGTH):
    """Read one framed message, skipping keep-alives.

    Frames longer than ``max_length`` are rejected before their body is read.
    """
    while True:
        (length,) = struct.unpack(">I", recv_exactly(sock, 4))
        if length:
            break
        logger.debug("keep-alive")
    if length > max_length:
        raise ProtocolViolation(f"message of {length} bytes exceeds the {max_length} byte limit")
    body = recv_exactly(sock, length)
    message = PeerMessage(body[0], body[1:])
    logger.debug(
        "received %s (%d payload bytes)",
        MESSAGE_NAMES.get(message.id, message.id),
        len(message.payload),
    )
    return message


def send_message(sock, message_id, payload=b""):
    sock.sendall(struct.pack(">IB", len(payload) + 1, message_id) + payload)


def expect_message(sock, message_id, max_length=MAX_MESSAGE_LENGTH):
    message = read_message(sock, max_length)
    if message.id != message_id:
        raise ProtocolViolation(
            f"expected {MESSAGE_NAMES[message_id]} message, "
            f"got {MESSAGE_NAMES.get(message.id, message.id)}"
        )
    return message


def block_requests(index, piece_size, block_size=BLOCK_SIZE):
    """Split a piece into block requests; only the last block may be short."""
    return [
        BlockRequest(index, begin, min(block_size, piece_size - begin))
        for begin in range(0, piece_size, block_size)
    ]


def request_block(sock, request):
    send_message(sock, REQUEST, struct.pack(">III", *request))
    message = expect_message(sock, PIECE)
    if len(message.payload) < 8:
        raise ProtocolViolation(f"piece message too short ({len(message.payload)} bytes)")
    index, begin = struct.unpack(">II", message.payload[:8])
    if (index, begin) != (request.index, request.begin):
        raise ProtocolViolation(
            f"asked for block {request.index}/{request.begin}, got {index}/{begin}"
        )
    block = message.payload[8:]
    if len(block) != request.length:
        raise ProtocolViolation(f"asked for {request.length} bytes, got {len(block)}")
    return block


def download_piece(sock, metadata, index, verify=False):
    """Download piece ``index`` over an already handshaken connection.

    The connection is closed when this returns, whether or not the download
    succeeded.
    """
    try:
        piece_size = metadata.piece_size(index)
        bitfield_length = 1 + (metadata.piece_count + 7) // 8
        expect_message(sock, BITFIELD, max(MAX_MESSAGE_LENGTH, bitfield_length))
        send_message(sock, INTERESTED)
        expect_message(sock, UNCHOKE)

        piece = bytearray()
        for request in block_requests(index, piece_size):
            logger.debug("requesting %s", request)
            piece += request_block(sock, request)
    finally:
        sock.close()

    piece = bytes(piece)
    if verify:
        digest = hashlib.sha1(piece).digest()
        if digest != metadata.piece_hashes[index]:
            raise PieceHashMismatch(index, metadata.piece_hashes[index], digest)
    logger.info("downloaded piece %d (%d bytes)", index, len(piece))
    return piece
