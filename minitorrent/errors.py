class TorrentError(Exception):
    """Base class for errors raised by minitorrent."""


class FormatError(TorrentError, ValueError):
    """Malformed bencode, torrent metadata or tracker response."""

    def __init__(self, message, offset=None):
        if offset is not None:
            message = f"{message} (at offset {offset})"
        super().__init__(message)
        self.offset = offset


class ProtocolViolation(TorrentError):
    """The remote peer broke the peer-wire protocol."""


class PieceHashMismatch(ProtocolViolation):
    def __init__(self, index, expected, actual):
        super().__init__(
            f"piece {index} hash mismatch: expected {expected.hex()}, got {actual.hex()}"
        )
        self.index = index
        self.expected = expected
        self.actual = actual


class TrackerError(TorrentError, OSError):
    """The tracker could not be reached or refused the announce."""
