"""
Length-aware search/replace inside PHP serialized values

WordPress stores arrays and objects in meta and option values using PHP's
serialize() format, where every string carries its byte length
(s:19:"https://example.com";). A plain SQL REPLACE() that changes the
length of a URL leaves those prefixes wrong and PHP then refuses to
unserialize the value. This module walks the structure using the original
lengths and re-emits every string with its new length.
"""

import re
from typing import List, Tuple

_SERIALIZED_START = re.compile(rb'^(a:\d+:\{|O:\d+:"|s:\d+:"|i:-?\d+;|b:[01];|d:[^;]+;|N;)')


class SerializedFormatError(ValueError):
    """The value is not well-formed PHP serialized data."""


def looks_serialized(value: str) -> bool:
    if not value:
        return False
    return bool(_SERIALIZED_START.match(value.strip().encode("utf-8")))


def replace_serialized(value: str, old: str, new: str) -> str:
    """
    Replaces old with new in every string of a serialized value

    Args:
        value: PHP serialized data
        old: Text to replace
        new: Replacement text

    Returns:
        str: Serialized data with corrected string lengths

    Raises:
        SerializedFormatError: If the value cannot be parsed
    """
    data = value.encode("utf-8")
    rewritten, end = _rewrite(data, 0, old.encode("utf-8"), new.encode("utf-8"))
    if end != len(data):
        raise SerializedFormatError(f"Trailing data at byte {end}")
    return rewritten.decode("utf-8")


def _expect(data: bytes, pos: int, token: bytes) -> int:
    if data[pos:pos + len(token)] != token:
        raise SerializedFormatError(f"Expected {token!r} at byte {pos}")
    return pos + len(token)


def _read_int(data: bytes, pos: int, terminator: bytes) -> Tuple[int, int]:
    end = data.find(terminator, pos)
    if end == -1:
        raise SerializedFormatError(f"Unterminated number at byte {pos}")
    try:
        return int(data[pos:end]), end + len(terminator)
    except ValueError:
        raise SerializedFormatError(f"Invalid length at byte {pos}") from None


def _read_string(data: bytes, pos: int) -> Tuple[bytes, int]:
    """Reads <len>:"<bytes>" starting at the length; returns content and position after the closing quote."""
    length, pos = _read_int(data, pos, b":")
    pos = _expect(data, pos, b'"')
    content = data[pos:pos + length]
    if len(content) != length:
        raise SerializedFormatError(f"String shorter than declared at byte {pos}")
    return content, _expect(data, pos + length, b'"')


def _replace_content(content: bytes, old: bytes, new: bytes) -> bytes:
    if old not in content:
        return content
    # Serialized data stored inside a string (double serialization)
    try:
        text = content.decode("utf-8")
        if looks_serialized(text):
            return replace_serialized(text, old.decode("utf-8"), new.decode("utf-8")).encode("utf-8")
    except (SerializedFormatError, UnicodeDecodeError):
        pass
    return content.replace(old, new)


def _rewrite(data: bytes, pos: int, old: bytes, new: bytes) -> Tuple[bytes, int]:
    tag = data[pos:pos + 1]

    if tag == b"N":
        return b"N;", _expect(data, pos, b"N;")

    if tag in (b"b", b"i", b"d", b"r", b"R"):
        pos = _expect(data, pos + 1, b":")
        end = data.find(b";", pos)
        if end == -1:
            raise SerializedFormatError(f"Unterminated scalar at byte {pos}")
        return data[pos - 2:end + 1], end + 1

    if tag in (b"s", b"E"):
        content, pos = _read_string(data, pos + 2)
        pos = _expect(data, pos, b";")
        if tag == b"s":
            content = _replace_content(content, old, new)
        return tag + b":%d:\"" % len(content) + content + b'";', pos

    if tag == b"a":
        count, pos = _read_int(data, pos + 2, b":")
        pos = _expect(data, pos, b"{")
        parts: List[bytes] = []
        for _ in range(count * 2):
            part, pos = _rewrite(data, pos, old, new)
            parts.append(part)
        pos = _expect(data, pos, b"}")
        return b"a:%d:{" % count + b"".join(parts) + b"}", pos

    if tag == b"O":
        class_name, pos = _read_string(data, pos + 2)
        pos = _expect(data, pos, b":")
        count, pos = _read_int(data, pos, b":")
        pos = _expect(data, pos, b"{")
        parts = []
        for _ in range(count * 2):
            part, pos = _rewrite(data, pos, old, new)
            parts.append(part)
        pos = _expect(data, pos, b"}")
        header = b'O:%d:"' % len(class_name) + class_name + b'":%d:{' % count
        return header + b"".join(parts) + b"}", pos

    if tag == b"C":
        # Custom serialization: payload format belongs to the class, copied as is
        start = pos
        _, pos = _read_string(data, pos + 2)
        pos = _expect(data, pos, b":")
        length, pos = _read_int(data, pos, b":")
        pos = _expect(data, pos, b"{")
        pos = _expect(data, pos + length, b"}")
        return data[start:pos], pos

    raise SerializedFormatError(f"Unsupported type {tag!r} at byte {pos}")
