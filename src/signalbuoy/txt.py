"""TXT (attribute) record codec.

Brief:
  A TXT record is one or more strings, each a single length byte followed by
  0-255 bytes of payload. Service attributes are stored one per string as
  `key`, `key=` or `key=value`, where the key is UTF-8 text and the value is
  arbitrary bytes:

      | 0x08 | p | a | p | e | r | = | A | 4 |

  A record with zero strings is not allowed, so the empty attribute set is
  encoded as a single zero byte (one empty string).
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Union

from .errors import CodecError

TxtValue = Optional[Union[str, bytes, bytearray, memoryview]]

MAX_ENTRY_LENGTH = 255
MAX_RECORD_LENGTH = 65535

EMPTY_TXT_RECORD = b"\x00"


def _entry_bytes(key: str, value: TxtValue) -> bytes:
    """Brief: Build the payload of one TXT string for a key/value pair.

    Inputs:
      - key: Attribute name (non-empty, no '=').
      - value: None for a boolean attribute, str (UTF-8 encoded) or bytes.

    Outputs:
      - bytes: `key`, or `key=value`, without the length prefix.
    """

    if not isinstance(key, str):
        raise CodecError("TXT key must be str, got %s" % type(key).__name__)
    if not key:
        raise CodecError("TXT key must not be empty")
    if "=" in key:
        raise CodecError("TXT key %r must not contain '='" % key)

    key_data = key.encode("utf-8")
    if value is None:
        return key_data
    if isinstance(value, str):
        value_data = value.encode("utf-8")
    elif isinstance(value, (bytes, bytearray, memoryview)):
        value_data = bytes(value)
    else:
        raise CodecError(
            "TXT value for %r must be str or bytes, got %s"
            % (key, type(value).__name__)
        )
    return key_data + b"=" + value_data


def encode_txt(entries: Optional[Mapping[str, TxtValue]]) -> bytes:
    """Brief: Encode an attribute mapping as TXT record data.

    Inputs:
      - entries: Mapping of key -> value (None, str or bytes). Iteration order
        is preserved in the output.

    Outputs:
      - bytes: Concatenated length-prefixed strings. An empty or None mapping
        yields the canonical single zero byte.

    Raises:
      - CodecError: When a key is empty or contains '=', a value has an
        unsupported type, a single entry exceeds 255 bytes, or the whole
        record exceeds 65535 bytes.

    Example:
      >>> encode_txt({"foo": "bar"})
      b'\\x07foo=bar'
      >>> encode_txt({})
      b'\\x00'
    """

    if not entries:
        return EMPTY_TXT_RECORD

    out = bytearray()
    for key, value in entries.items():
        data = _entry_bytes(key, value)
        if len(data) > MAX_ENTRY_LENGTH:
            raise CodecError(
                "TXT entry %r is %d bytes; at most %d bytes fit in one string"
                % (key, len(data), MAX_ENTRY_LENGTH)
            )
        out.append(len(data))
        out += data

    if len(out) > MAX_RECORD_LENGTH:
        raise CodecError(
            "TXT record is %d bytes; the maximum is %d"
            % (len(out), MAX_RECORD_LENGTH)
        )
    return bytes(out)


def decode_txt(data: Union[bytes, bytearray, memoryview]) -> Dict[str, Optional[bytes]]:
    """Brief: Decode TXT record data into an ordered attribute mapping.

    Inputs:
      - data: Raw TXT rdata.

    Outputs:
      - dict: key -> value bytes. The value is None when the string carried
        no '=' and b"" when '=' was its last byte. Empty strings are skipped
        and a repeated key keeps its first value.

    Raises:
      - CodecError: When a length byte runs past the end of the buffer or a
        key is not valid UTF-8.

    Example:
      >>> decode_txt(b"\\x07foo=bar\\x04flag")
      {'foo': b'bar', 'flag': None}
    """

    buf = bytes(data)
    result: Dict[str, Optional[bytes]] = {}

    i = 0
    end = len(buf)
    while i < end:
        length = buf[i]
        start = i + 1
        stop = start + length
        if stop > end:
            raise CodecError(
                "Truncated TXT record: string at offset %d claims %d bytes, %d remain"
                % (i, length, end - start)
            )
        i = stop

        if length == 0:
            continue

        payload = buf[start:stop]
        key_data, sep, value = payload.partition(b"=")
        try:
            key = key_data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CodecError("TXT key at offset %d is not valid UTF-8" % (start,)) from exc

        if key in result:
            continue
        result[key] = value if sep else None

    return result
