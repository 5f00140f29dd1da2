import json
import logging
import os
import sys

from . import bencode, peer, tracker
from .errors import TrackerError
from .metainfo import TorrentMetadata
from .tracker import PeerAddress

logger = logging.getLogger(__name__)


def get_peer_id():
    peer_id = os.environ.get("MINITORRENT_PEER_ID")
    if peer_id:
        return peer_id.encode("ascii")
    return tracker.generate_peer_id()


def get_timeout():
    timeout = os.environ.get("MINITORRENT_TIMEOUT")
    return float(timeout) if timeout else None


def decode_value(bencoded_value):
    return bencode.bytes_to_str(bencode.decode(bencoded_value))


def torrent_info(torrent_file_path):
    metadata = TorrentMetadata.open(torrent_file_path)
    return {
        "announce": metadata.announce,
        "length": metadata.length,
        "info_hash": metadata.info_hash_hex,
        "piece_length": metadata.piece_length,
        "piece_hashes": [h.hex() for h in metadata.piece_hashes],
    }


def get_peers(metadata, peer_id):
    return tracker.discover_peers(metadata, peer_id, timeout=get_timeout()).peers


def peer_handshake(torrent_file_path, peer_address):
    metadata = TorrentMetadata.open(torrent_file_path)
    with peer.connect(PeerAddress.parse(peer_address), timeout=get_timeout()) as s:
        return peer.handshake(s, metadata.info_hash, get_peer_id()).hex()


def fetch_piece(metadata, peer_id, address, piece_index, verify=False):
    s = peer.connect(address, timeout=get_timeout())
    try:
        peer.handshake(s, metadata.info_hash, peer_id)
    except Exception:
        s.close()
        raise
    return peer.download_piece(s, metadata, piece_index, verify=verify)


def check_piece_index(metadata, piece_index):
    if not 0 <= piece_index < metadata.piece_count:
        raise ValueError(
            f"piece index {piece_index} out of range, {metadata.name} has {metadata.piece_count} pieces"
        )


def pick_peer(metadata, peer_id, peer_index=0):
    peers = get_peers(metadata, peer_id)
    if peer_index >= len(peers):
        raise TrackerError(
            f"tracker {metadata.announce} returned {len(peers)} peers, wanted peer #{peer_index}"
        )
    return peers[peer_index]


def download_piece(torrent_file_path, piece_index, output_file, peer_index=0):
    metadata = TorrentMetadata.open(torrent_file_path)
    check_piece_index(metadata, piece_index)
    peer_id = get_peer_id()
    address = pick_peer(metadata, peer_id, peer_index)
    logger.info("downloading piece %d from %s", piece_index, address)
    data = fetch_piece(metadata, peer_id, address, piece_index)
    with open(output_file, "wb") as f:
        f.write(data)
    return data


def download(torrent_file_path, output_file):
    metadata = TorrentMetadata.open(torrent_file_path)
    peer_id = get_peer_id()
    address = pick_peer(metadata, peer_id)
    partial = f"{output_file}.part"
    with open(partial, "wb") as f:
        try:
            for piece_index in range(metadata.piece_count):
                logger.info("downloading piece %d/%d", piece_index + 1, metadata.piece_count)
                f.write(fetch_piece(metadata, peer_id, address, piece_index, verify=True))
        except Exception:
            f.close()
            os.remove(partial)
            raise
    os.replace(partial, output_file)


def handle_decode_command(bencoded_value):
    print(json.dumps(decode_value(bencoded_value.encode())))


def handle_info_command(torrent_file_path):
    info = torrent_info(torrent_file_path)
    print(f"Tracker URL: {info['announce']}")
    print(f"Length: {info['length']}")
    print(f"Info Hash: {info['info_hash']}")
    print(f"Piece Length: {info['piece_length']}")
    print("Piece Hashes:")
    for piece_hash in info["piece_hashes"]:
        print(piece_hash)


def handle_peers_command(torrent_file_path):
    metadata = TorrentMetadata.open(torrent_file_path)
    for address in get_peers(metadata, get_peer_id()):
        print(address)


def handle_handshake_command(torrent_file_path, peer_address):
    print(f"Peer ID: {peer_handshake(torrent_file_path, peer_address)}")


def handle_download_piece_command(output_file, torrent_file_path, piece_index):
    download_piece(torrent_file_path, int(piece_index), output_file)
    print(f"Piece {piece_index} downloaded to {output_file}.")


def handle_download_command(output_file, torrent_file_path):
    download(torrent_file_path, output_file)
    print(f"Downloaded {torrent_file_path} to {output_file}.")


def usage(message):
    raise SystemExit(f"Usage: {sys.argv[0]} {message}")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(
        level=os.environ.get("MINITORRENT_LOG_LEVEL", "WARNING").upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )
    if not argv:
        usage("<command> [<args>]")
    command, args = argv[0], argv[1:]
    if command == "decode":
        if len(args) != 1:
            usage("decode <bencoded-value>")
        handle_decode_command(args[0])
    elif command == "info":
        if len(args) != 1:
            usage("info <torrent>")
        handle_info_command(args[0])
    elif command == "peers":
        if len(args) != 1:
            usage("peers <torrent>")
        handle_peers_command(args[0])
    elif command == "handshake":
        if len(args) != 2:
            usage("handshake <torrent> <ip>:<port>")
        handle_handshake_command(args[0], args[1])
    elif command == "download_piece":
        if len(args) != 4 or args[0] != "-o":
            usage("download_piece -o <output> <torrent> <piece-index>")
        handle_download_piece_command(args[1], args[2], args[3])
    elif command == "download":
        if len(args) != 3 or args[0] != "-o":
            usage("download -o <output> <torrent>")
        handle_download_command(args[1], args[2])
    else:
        raise NotImplementedError(f"Unknown command {command}")


if __name__ == "__main__":
    main()
