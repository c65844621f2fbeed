"""Ledger word encoding.

The ledger speaks in field elements ("words"). Everything the client reads,
from event payloads to the aggregate game state, arrives as a flat list of
words that has to be walked with a cursor according to a known layout.
"""

from collections.abc import Callable, Sequence
from typing import TypeVar

from .exceptions import DecodeAnomaly
from .types import Direction, HexCoordinate

T = TypeVar("T")

# Modulus of the ledger's native word
FIELD_PRIME = 2**251 + 17 * 2**192 + 1

# Short strings pack at most 31 ASCII bytes into one word
SHORT_STRING_MAX_LEN = 31

OPTION_SOME = 0
OPTION_NONE = 1


def parse_word(value: str | int) -> int:
    """Parse a word given as an int, a ``0x`` hex string or a decimal string."""
    if isinstance(value, bool):
        raise DecodeAnomaly(f"Not a word: {value!r}")
    if isinstance(value, int):
        word = value
    else:
        text = value.strip().lower()
        try:
            word = int(text, 16) if text.startswith("0x") else int(text)
        except ValueError as e:
            raise DecodeAnomaly(f"Not a word: {value!r}") from e
    if not 0 <= word < FIELD_PRIME:
        raise DecodeAnomaly(f"Word out of field range: {word}")
    return word


def decode_signed(raw: int, bits: int = 32, modulus: int = FIELD_PRIME) -> int:
    """Reinterpret a raw word as a signed integer of ``bits`` width.

    Negative values may arrive either in the field's own representation
    (``modulus - |v|``) or in two's complement of ``bits`` width.
    """
    if not 0 <= raw < modulus:
        raise DecodeAnomaly(f"Word out of field range: {raw}")
    if raw > modulus // 2:
        value = raw - modulus
    elif raw >= 1 << (bits - 1):
        value = raw - (1 << bits)
    else:
        value = raw

    low = -(1 << (bits - 1))
    high = (1 << (bits - 1)) - 1
    if not low <= value <= high:
        raise DecodeAnomaly(f"Value {value} does not fit i{bits}")
    return value


def encode_signed(value: int) -> int:
    """Field-native encoding of a signed integer."""
    return value % FIELD_PRIME


def normalize_address(address: str | int) -> str:
    """Canonical lowercase hex form of an address (leading zeros dropped)."""
    if isinstance(address, int):
        return hex(address)
    try:
        return hex(int(address, 16))
    except ValueError:
        return address.lower()


def encode_short_string(text: str) -> int:
    """Pack up to 31 ASCII characters into a single word, big-endian."""
    data = text[:SHORT_STRING_MAX_LEN].encode("ascii")
    return int.from_bytes(data, "big")


def decode_short_string(word: int) -> str:
    if word == 0:
        return ""
    length = (word.bit_length() + 7) // 8
    if length > SHORT_STRING_MAX_LEN:
        raise DecodeAnomaly(f"Short string longer than {SHORT_STRING_MAX_LEN} bytes")
    data = word.to_bytes(length, "big")
    try:
        return data.decode("ascii")
    except UnicodeDecodeError as e:
        raise DecodeAnomaly("Short string is not ASCII") from e


class WordReader:
    """Sequential cursor over a list of ledger words.

    Every ``read_*`` method consumes exactly the words of its field and raises
    :class:`DecodeAnomaly` when the data is short or the value is out of range.
    """

    def __init__(self, words: Sequence[str | int], start: int = 0):
        self._words = [parse_word(w) for w in words]
        self._pos = start

    @property
    def position(self) -> int:
        return self._pos

    @property
    def remaining(self) -> int:
        return len(self._words) - self._pos

    def read(self) -> int:
        if self._pos >= len(self._words):
            raise DecodeAnomaly(f"Ran out of words at index {self._pos}")
        word = self._words[self._pos]
        self._pos += 1
        return word

    def read_many(self, count: int) -> list[int]:
        if count < 0 or count > self.remaining:
            raise DecodeAnomaly(f"Cannot read {count} words, {self.remaining} left")
        return [self.read() for _ in range(count)]

    def read_unsigned(self, bits: int) -> int:
        word = self.read()
        if word >= 1 << bits:
            raise DecodeAnomaly(f"Value {word} does not fit u{bits}")
        return word

    def read_bool(self) -> bool:
        word = self.read()
        if word not in (0, 1):
            raise DecodeAnomaly(f"Invalid bool word: {word}")
        return word == 1

    def read_i32(self) -> int:
        return decode_signed(self.read(), 32)

    def read_direction(self) -> Direction:
        word = self.read()
        try:
            return Direction(word)
        except ValueError as e:
            raise DecodeAnomaly(f"Invalid direction ordinal: {word}") from e

    def read_coordinate(self) -> HexCoordinate:
        q = self.read_i32()
        r = self.read_i32()
        return HexCoordinate(q=q, r=r)

    def read_address(self) -> str:
        return normalize_address(self.read())

    def read_short_string(self) -> str:
        return decode_short_string(self.read())

    def read_option(self, read_payload: Callable[[], T]) -> T | None:
        """Read an optional field: a discriminant, then the payload if present."""
        tag = self.read()
        if tag == OPTION_NONE:
            return None
        if tag != OPTION_SOME:
            raise DecodeAnomaly(f"Invalid option discriminant: {tag}")
        return read_payload()
