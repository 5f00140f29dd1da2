import logging
import random
import socket
import string
import struct
import time
from collections import namedtuple

import requests

from . import bencode
from .errors import FormatError, TrackerError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6881
PEER_ID_LENGTH = 20
PEER_ID_ALPHABET = string.ascii_letters + string.digits
COMPACT_PEER_LENGTH = 6

TrackerResponse = namedtuple("TrackerResponse", ["interval", "peers"])


class PeerAddress(namedtuple("PeerAddress", ["ip", "port"])):
    __slots__ = ()

    @classmethod
    def parse(cls, text):
        host, sep, port = text.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"expected <ip>:<port>, got {text!r}")
        return cls(host, int(port))

    def __str__(self):
        return f"{self.ip}:{self.port}"


def generate_peer_id(rng=None):
    """Return a 20-byte alphanumeric peer id.

    The default generator is seeded from the clock; pass ``rng`` (anything with
    a ``choice`` method, e.g. ``random.Random(0)``) for a reproducible id.
    """
    if rng is None:
        rng = random.Random(time.time_ns())
    return "".join(rng.choice(PEER_ID_ALPHABET) for _ in range(PEER_ID_LENGTH)).encode("ascii")


def decode_compact_peers(peers):
    """Split a compact peer string into :class:`PeerAddress` records."""
    usable = len(peers) - len(peers) % COMPACT_PEER_LENGTH
    if usable != len(peers):
        logger.warning("dropping %d trailing bytes of compact peer list", len(peers) - usable)
    peer_list = []
    for i in range(0, usable, COMPACT_PEER_LENGTH):
        ip = socket.inet_ntoa(peers[i : i + 4])
        port = struct.unpack("!H", peers[i + 4 : i + 6])[0]
        peer_list.append(PeerAddress(ip, port))
    return peer_list


def parse_response(content):
    reply = bencode.decode(content)
    if not isinstance(reply, dict):
        raise FormatError("tracker response is not a bencoded dictionary")
    if b"failure reason" in reply:
        reason = bencode.get_bytes(reply, b"failure reason").decode("utf-8", errors="replace")
        raise TrackerError(f"tracker refused announce: {reason}")
    interval = bencode.get_int(reply, b"interval")
    peers = reply.get(b"peers")
    if isinstance(peers, list):
        raise FormatError("tracker sent a non-compact peer list")
    peers = bencode.get_bytes(reply, b"peers")
    return TrackerResponse(interval, decode_compact_peers(peers))


def discover_peers(metadata, peer_id, port=DEFAULT_PORT, timeout=None):
    """Announce to ``metadata.announce`` and return a :class:`TrackerResponse`."""
    if len(peer_id) != PEER_ID_LENGTH:
        raise ValueError(f"peer id must be {PEER_ID_LENGTH} bytes, got {len(peer_id)}")
    params = {
        "info_hash": metadata.info_hash,
        "peer_id": peer_id,
        "port": port,
        "uploaded": 0,
        "downloaded": 0,
        "left": metadata.length,
        "compact": 1,
    }
    logger.debug("announcing %s to %s", metadata.info_hash_hex, metadata.announce)
    try:
        response = requests.get(metadata.announce, params=params, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise TrackerError(f"tracker request to {metadata.announce} failed: {e}") from e
    result = parse_response(response.content)
    logger.info("tracker returned %d peers, interval %ds", len(result.peers), result.interval)
    return result
