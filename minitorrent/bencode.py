"""Bencode codec.

Decoding is strict: integers with leading zeros or ``-0``, truncated byte
strings, non-string dictionary keys, duplicate keys and containers nested
more than ``MAX_DEPTH`` levels deep are all rejected with
a :class:`FormatError` pointing at the offending offset. Decoded dictionaries
always come back with their keys in ascending byte order, so re-encoding a
decoded value reproduces its canonical form.

Values map onto plain Python types: ``int``, ``bytes``, ``list`` and ``dict``
with ``bytes`` keys.
"""
import bencodepy

from .errors import FormatError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
MAX_DEPTH = 200


def decode(data):
    """Decode a single bencoded value that spans all of ``data``."""
    data = _as_bytes(data)
    value, end = _decode_at(data, 0)
    if end != len(data):
        raise FormatError("trailing data after bencoded value", end)
    return value


def decode_partial(data):
    """Decode the first value in ``data`` and return ``(value, rest)``."""
    data = _as_bytes(data)
    value, end = _decode_at(data, 0)
    return value, data[end:]


def encode(value):
    return bencodepy.encode(_canonical(value))


def _as_bytes(data):
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    if not isinstance(data, bytes):
        raise TypeError(f"can only decode bytes, not {type(data).__name__}")
    return data


def _decode_at(data, pos, depth=0):
    lead = data[pos : pos + 1]
    if not lead:
        raise FormatError("unexpected end of input", pos)
    if lead == b"i":
        return _decode_int(data, pos)
    if lead == b"l":
        return _decode_list(data, pos, depth + 1)
    if lead == b"d":
        return _decode_dict(data, pos, depth + 1)
    if lead.isdigit():
        return _decode_bytes(data, pos)
    raise FormatError(f"unexpected byte {lead!r}", pos)


def _decode_int(data, pos):
    end = data.find(b"e", pos + 1)
    if end == -1:
        raise FormatError("unterminated integer", pos)
    numeral = data[pos + 1 : end]
    digits = numeral[1:] if numeral.startswith(b"-") else numeral
    if not digits or not digits.isdigit():
        raise FormatError(f"invalid integer {numeral!r}", pos)
    if digits.startswith(b"0") and len(digits) > 1:
        raise FormatError(f"integer with leading zero {numeral!r}", pos)
    if numeral == b"-0":
        raise FormatError("negative zero", pos)
    value = int(numeral)
    if not INT64_MIN <= value <= INT64_MAX:
        raise FormatError(f"integer out of 64-bit range {numeral!r}", pos)
    return value, end + 1


def _decode_bytes(data, pos):
    colon = data.find(b":", pos)
    if colon == -1:
        raise FormatError("byte string without ':' separator", pos)
    length = data[pos:colon]
    if not length.isdigit():
        raise FormatError(f"invalid byte string length {length!r}", pos)
    start = colon + 1
    end = start + int(length)
    if end > len(data):
        raise FormatError(
            f"byte string length {int(length)} exceeds the {len(data) - start} bytes available",
            pos,
        )
    return data[start:end], end


def _check_depth(depth, pos):
    if depth > MAX_DEPTH:
        raise FormatError(f"containers nested deeper than {MAX_DEPTH} levels", pos)


def _decode_list(data, pos, depth):
    _check_depth(depth, pos)
    items = []
    pos += 1
    while True:
        lead = data[pos : pos + 1]
        if not lead:
            raise FormatError("unterminated list", pos)
        if lead == b"e":
            return items, pos + 1
        item, pos = _decode_at(data, pos, depth)
        items.append(item)


def _decode_dict(data, pos, depth):
    _check_depth(depth, pos)
    pairs = {}
    pos += 1
    while True:
        lead = data[pos : pos + 1]
        if not lead:
            raise FormatError("unterminated dictionary", pos)
        if lead == b"e":
            return dict(sorted(pairs.items())), pos + 1
        if not lead.isdigit():
            raise FormatError("dictionary key is not a byte string", pos)
        key_pos = pos
        key, pos = _decode_bytes(data, pos)
        if key in pairs:
            raise FormatError(f"duplicate dictionary key {key!r}", key_pos)
        pairs[key], pos = _decode_at(data, pos, depth)


def _canonical(value):
    # bool is an int subclass but has no bencode form
    if isinstance(value, bool):
        raise TypeError("cannot bencode a bool")
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (list, tuple)):
        return [_canonical(item) for item in value]
    if isinstance(value, dict):
        items = {}
        for key, item in value.items():
            if isinstance(key, str):
                key = key.encode("utf-8")
            elif not isinstance(key, bytes):
                raise TypeError(f"dictionary keys must be bytes or str, not {type(key).__name__}")
            items[key] = _canonical(item)
        return dict(sorted(items.items()))
    raise TypeError(f"cannot bencode {type(value).__name__}")


def bytes_to_str(data):
    """Convert a decoded value into something ``json.dumps`` accepts."""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    elif isinstance(data, list):
        return [bytes_to_str(item) for item in data]
    elif isinstance(data, dict):
        return {bytes_to_str(k): bytes_to_str(v) for k, v in data.items()}
    return data


def _lookup(mapping, key, kind, types):
    if not isinstance(mapping, dict):
        raise FormatError(f"expected a dictionary holding {key!r}")
    try:
        value = mapping[key]
    except KeyError:
        raise FormatError(f"missing key {key!r}") from None
    if not isinstance(value, types) or isinstance(value, bool):
        raise FormatError(f"{key!r} should be {kind}, not {type(value).__name__}")
    return value


def get_int(mapping, key):
    return _lookup(mapping, key, "an integer", int)


def get_bytes(mapping, key):
    return _lookup(mapping, key, "a byte string", bytes)


def get_str(mapping, key):
    raw = get_bytes(mapping, key)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        raise FormatError(f"{key!r} is not valid UTF-8") from None


def get_list(mapping, key):
    return _lookup(mapping, key, "a list", list)


def get_dict(mapping, key):
    return _lookup(mapping, key, "a dictionary", dict)
