from .bencode import decode, decode_partial, encode
from .errors import (
    FormatError,
    PieceHashMismatch,
    ProtocolViolation,
    TorrentError,
    TrackerError,
)
from .metainfo import TorrentMetadata, parse
from .peer import download_piece, handshake
from .tracker import PeerAddress, TrackerResponse, discover_peers, generate_peer_id

__version__ = "0.1.0"
