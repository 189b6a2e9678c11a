# clarity.py
"""
Stackmate – Clarity values
==========================

Just enough of the Clarity wire format to talk to read-only contract
functions through the indexer: ``uint``/``buffer``/``principal`` arguments
out, any value back in. Addresses use the c32check encoding.

Decoded values map onto plain Python: integers, ``bytes``, ``bool``, ``str``
for principals and strings, ``list``, ``dict`` for tuples, ``None``/the inner
value for optionals, and ``ClarityResponse`` for ``(ok …)``/``(err …)``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Tuple

C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

# type prefixes
INT = 0x00
UINT = 0x01
BUFFER = 0x02
TRUE = 0x03
FALSE = 0x04
STANDARD_PRINCIPAL = 0x05
CONTRACT_PRINCIPAL = 0x06
RESPONSE_OK = 0x07
RESPONSE_ERR = 0x08
NONE = 0x09
SOME = 0x0A
LIST = 0x0B
TUPLE = 0x0C
STRING_ASCII = 0x0D
STRING_UTF8 = 0x0E

_UINT128_MAX = (1 << 128) - 1


class ClarityError(ValueError):
    """Malformed Clarity bytes or an argument that cannot be encoded."""


@dataclass(frozen=True, slots=True)
class ClarityResponse:
    ok: bool
    value: Any


# --------------------------------------------------------------------------- #
# c32check addresses                                                          #
# --------------------------------------------------------------------------- #


def _checksum(version: int, payload: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(bytes([version]) + payload).digest()).digest()[:4]


def c32_encode(data: bytes) -> str:
    number = int.from_bytes(data, "big")
    out = ""
    while number:
        out = C32_ALPHABET[number & 31] + out
        number >>= 5
    leading = len(data) - len(data.lstrip(b"\x00"))
    return "0" * leading + out


def c32_decode(text: str) -> bytes:
    text = text.upper()
    stripped = text.lstrip("0")
    number = 0
    for char in stripped:
        index = C32_ALPHABET.find(char)
        if index < 0:
            raise ClarityError(f"invalid c32 character {char!r}")
        number = number * 32 + index
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\x00" * (len(text) - len(stripped)) + body


def decode_address(address: str) -> Tuple[int, bytes]:
    """``SP…``/``ST…`` address to ``(version, hash160)``; the checksum is verified."""
    if len(address) < 5 or address[0].upper() != "S":
        raise ClarityError(f"not a Stacks address: {address!r}")
    version = C32_ALPHABET.find(address[1].upper())
    if version < 0:
        raise ClarityError(f"not a Stacks address: {address!r}")
    raw = c32_decode(address[2:])
    if len(raw) != 24:
        raise ClarityError(f"not a Stacks address: {address!r}")
    hash160, checksum = raw[:20], raw[20:]
    if _checksum(version, hash160) != checksum:
        raise ClarityError(f"bad checksum in address {address!r}")
    return version, hash160


def encode_address(version: int, hash160: bytes) -> str:
    return f"S{C32_ALPHABET[version]}{c32_encode(hash160 + _checksum(version, hash160))}"


# --------------------------------------------------------------------------- #
# serialisation                                                               #
# --------------------------------------------------------------------------- #


def uint_cv(value: int) -> bytes:
    value = int(value)
    if not 0 <= value <= _UINT128_MAX:
        raise ClarityError(f"uint out of range: {value}")
    return bytes([UINT]) + value.to_bytes(16, "big")


def buffer_cv(data: bytes) -> bytes:
    return bytes([BUFFER]) + len(data).to_bytes(4, "big") + bytes(data)


def principal_cv(principal: str) -> bytes:
    address, _, contract_name = principal.partition(".")
    version, hash160 = decode_address(address)
    if not contract_name:
        return bytes([STANDARD_PRINCIPAL, version]) + hash160
    name = contract_name.encode("ascii")
    return bytes([CONTRACT_PRINCIPAL, version]) + hash160 + bytes([len(name)]) + name


def to_hex(value: bytes) -> str:
    return "0x" + value.hex()


# --------------------------------------------------------------------------- #
# deserialisation                                                             #
# --------------------------------------------------------------------------- #


class _Reader:
    __slots__ = ("data", "pos")

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise ClarityError("truncated Clarity value")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return int.from_bytes(self.take(4), "big")


def _read_principal(reader: _Reader) -> str:
    version = reader.u8()
    return encode_address(version, reader.take(20))


def _read(reader: _Reader) -> Any:
    kind = reader.u8()
    if kind == INT:
        return int.from_bytes(reader.take(16), "big", signed=True)
    if kind == UINT:
        return int.from_bytes(reader.take(16), "big")
    if kind == BUFFER:
        return reader.take(reader.u32())
    if kind == TRUE:
        return True
    if kind == FALSE:
        return False
    if kind == STANDARD_PRINCIPAL:
        return _read_principal(reader)
    if kind == CONTRACT_PRINCIPAL:
        address = _read_principal(reader)
        name = reader.take(reader.u8()).decode("ascii")
        return f"{address}.{name}"
    if kind in (RESPONSE_OK, RESPONSE_ERR):
        return ClarityResponse(kind == RESPONSE_OK, _read(reader))
    if kind == NONE:
        return None
    if kind == SOME:
        return _read(reader)
    if kind == LIST:
        return [_read(reader) for _ in range(reader.u32())]
    if kind == TUPLE:
        fields = {}
        for _ in range(reader.u32()):
            key = reader.take(reader.u8()).decode("ascii")
            fields[key] = _read(reader)
        return fields
    if kind == STRING_ASCII:
        return reader.take(reader.u32()).decode("ascii")
    if kind == STRING_UTF8:
        return reader.take(reader.u32()).decode("utf-8")
    raise ClarityError(f"unknown Clarity type prefix 0x{kind:02x}")


def decode_hex(value: str) -> Any:
    """Decode one hex-serialised Clarity value (``0x`` prefix optional)."""
    text = value[2:] if value.startswith("0x") else value
    try:
        data = bytes.fromhex(text)
    except ValueError:
        raise ClarityError(f"not hex: {value[:20]!r}") from None
    reader = _Reader(data)
    result = _read(reader)
    if reader.pos != len(data):
        raise ClarityError("trailing bytes after Clarity value")
    return result
