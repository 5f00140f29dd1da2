import random
from urllib.parse import parse_qsl, urlsplit

import pytest
import requests

from minitorrent import bencode, tracker
from minitorrent.errors import FormatError, TrackerError
from minitorrent.metainfo import parse
from minitorrent.tracker import PeerAddress

from conftest import ANNOUNCE, make_torrent

PEER_ID = b"00112233445566778899"


@pytest.fixture
def metadata():
    return parse(make_torrent(bytes(92063), 32768))


def test_decode_compact_peers():
    assert tracker.decode_compact_peers(bytes([178, 62, 82, 89, 0xC8, 0xCE])) == [
        PeerAddress("178.62.82.89", 51406)
    ]


def test_decode_compact_peers_keeps_order_and_drops_partial_record():
    peers = bytes([10, 0, 0, 1, 0x1A, 0xE1, 10, 0, 0, 2, 0x1A, 0xE2, 10, 0, 0])
    assert [str(p) for p in tracker.decode_compact_peers(peers)] == ["10.0.0.1:6881", "10.0.0.2:6882"]


def test_discover_peers(fake_tracker, metadata):
    fake_tracker.reply = bencode.encode(
        {b"interval": 60, b"peers": bytes([178, 62, 82, 89, 0xC8, 0xCE, 127, 0, 0, 1, 0x1A, 0xE1])}
    )
    response = tracker.discover_peers(metadata, PEER_ID)
    assert response.interval == 60
    assert response.peers == [PeerAddress("178.62.82.89", 51406), PeerAddress("127.0.0.1", 6881)]

    url, params, _ = fake_tracker.calls[0]
    assert url == ANNOUNCE.decode()
    assert params == {
        "info_hash": metadata.info_hash,
        "peer_id": PEER_ID,
        "port": 6881,
        "uploaded": 0,
        "downloaded": 0,
        "left": 92063,
        "compact": 1,
    }


def test_info_hash_is_sent_as_raw_bytes(metadata):
    params = {"info_hash": metadata.info_hash, "peer_id": PEER_ID}
    url = requests.Request("GET", metadata.announce, params=params).prepare().url
    query = dict(parse_qsl(urlsplit(url).query, encoding="latin-1"))
    assert query["info_hash"].encode("latin-1") == metadata.info_hash
    assert metadata.info_hash_hex not in url


def test_empty_peer_list_is_not_an_error(fake_tracker, metadata):
    assert tracker.discover_peers(metadata, PEER_ID).peers == []


def test_failure_reason(fake_tracker, metadata):
    fake_tracker.reply = bencode.encode({b"failure reason": b"unregistered torrent"})
    with pytest.raises(TrackerError, match="unregistered torrent"):
        tracker.discover_peers(metadata, PEER_ID)


def test_network_failure(fake_tracker, metadata):
    fake_tracker.reply = requests.ConnectionError("connection refused")
    with pytest.raises(TrackerError) as excinfo:
        tracker.discover_peers(metadata, PEER_ID)
    assert isinstance(excinfo.value, OSError)


def test_http_error_status(fake_tracker, metadata):
    fake_tracker.status_code = 500
    with pytest.raises(TrackerError):
        tracker.discover_peers(metadata, PEER_ID)


@pytest.mark.parametrize(
    "reply",
    [
        b"not bencode",
        b"le",
        bencode.encode({b"peers": b""}),
        bencode.encode({b"interval": 60}),
        bencode.encode({b"interval": 60, b"peers": [{b"ip": b"127.0.0.1", b"port": 6881}]}),
    ],
)
def test_malformed_reply(fake_tracker, metadata, reply):
    fake_tracker.reply = reply
    with pytest.raises(FormatError):
        tracker.discover_peers(metadata, PEER_ID)


def test_rejects_bad_peer_id(metadata):
    with pytest.raises(ValueError):
        tracker.discover_peers(metadata, b"short")


def test_generate_peer_id():
    peer_id = tracker.generate_peer_id()
    assert len(peer_id) == 20
    assert peer_id.isalnum()


def test_generate_peer_id_is_reproducible_with_seeded_rng():
    assert tracker.generate_peer_id(random.Random(7)) == tracker.generate_peer_id(random.Random(7))


def test_peer_address_parse():
    address = PeerAddress.parse("165.232.33.77:51467")
    assert address == ("165.232.33.77", 51467)
    assert str(address) == "165.232.33.77:51467"
    with pytest.raises(ValueError):
        PeerAddress.parse("165.232.33.77")
