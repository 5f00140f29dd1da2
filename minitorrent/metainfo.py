import hashlib
import logging

from . import bencode
from .errors import FormatError

logger = logging.getLogger(__name__)

HASH_LENGTH = 20


class TorrentMetadata:
    """Single-file torrent metadata.

    ``info_hash`` is the SHA-1 of the canonical re-encoding of the ``info``
    dictionary, so two files that differ only in key order or in non-canonical
    formatting identify the same swarm.
    """

    def __init__(self, announce, name, piece_length, length, piece_hashes, info_hash):
        self.announce = announce
        self.name = name
        self.piece_length = piece_length
        self.length = length
        self.piece_hashes = tuple(piece_hashes)
        self._info_hash = info_hash

    @property
    def info_hash(self):
        return self._info_hash

    @property
    def info_hash_hex(self):
        return self._info_hash.hex()

    @property
    def piece_count(self):
        return len(self.piece_hashes)

    def piece_size(self, index):
        """Size in bytes of piece ``index``; only the last one may be short."""
        if not 0 <= index < self.piece_count:
            raise IndexError(f"piece index {index} out of range 0..{self.piece_count - 1}")
        if index < self.piece_count - 1:
            return self.piece_length
        remainder = self.length % self.piece_length
        return remainder or self.piece_length

    @classmethod
    def open(cls, path):
        with open(path, "rb") as f:
            data = f.read()
        return parse(data)

    def __repr__(self):
        return (
            f"TorrentMetadata(name={self.name!r}, length={self.length}, "
            f"piece_length={self.piece_length}, info_hash={self.info_hash_hex})"
        )


def parse(data):
    """Parse raw torrent-file bytes into :class:`TorrentMetadata`."""
    root = bencode.decode(data)
    if not isinstance(root, dict):
        raise FormatError("torrent file is not a bencoded dictionary")
    announce = bencode.get_str(root, b"announce")
    info = bencode.get_dict(root, b"info")

    name = bencode.get_str(info, b"name")
    length = bencode.get_int(info, b"length")
    piece_length = bencode.get_int(info, b"piece length")
    pieces = bencode.get_bytes(info, b"pieces")
    if length < 0:
        raise FormatError(f"negative length {length}")
    if piece_length <= 0:
        raise FormatError(f"piece length must be positive, got {piece_length}")
    if len(pieces) % HASH_LENGTH:
        raise FormatError(f"pieces length {len(pieces)} is not a multiple of {HASH_LENGTH}")

    piece_hashes = [pieces[i : i + HASH_LENGTH] for i in range(0, len(pieces), HASH_LENGTH)]
    expected = -(-length // piece_length)
    if len(piece_hashes) != expected:
        raise FormatError(
            f"{len(piece_hashes)} piece hashes for {expected} pieces "
            f"of {piece_length} bytes covering {length} bytes"
        )

    info_hash = hashlib.sha1(bencode.encode(info)).digest()
    logger.debug("parsed torrent %r, info hash %s", name, info_hash.hex())
    return TorrentMetadata(
        announce=announce,
        name=name,
        piece_length=piece_length,
        length=length,
        piece_hashes=piece_hashes,
        info_hash=info_hash,
    )
