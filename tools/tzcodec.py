"""
Low-level encoding used by the tzdb.dat format

All values are big-endian. Strings are stored with an unsigned 16-bit byte count
followed by the UTF-8 encoded text.

UTC offsets and epoch seconds are compressed as most real values fall on a quarter-hour
boundary:

    offset  1 byte:  seconds / 900 (-72 to +72)
            5 bytes: 127 followed by int32 seconds

    epoch   3 bytes: (seconds + 4575744000) / 900, covering 1825 to 2300
            9 bytes: 255 followed by int64 seconds
"""

from __future__ import annotations
from struct import pack, unpack_from, calcsize, error as StructError

OFFSET_QUARTER_MAX = 72
OFFSET_ESCAPE = 127

EPOCH_MIN = -4_575_744_000
EPOCH_MAX = 10_413_792_000
EPOCH_ESCAPE = 255


class FormatError(ValueError):
    """File structure is invalid: bad header, truncated, index out of range, etc."""


class DecodeError(ValueError):
    """Serialized rule data could not be decoded"""

    def __init__(self, message: str, zone_id: str = None, version: str = None):
        super().__init__(message)
        self.zone_id = zone_id
        self.version = version

    def __str__(self):
        s = super().__str__()
        if self.zone_id:
            s += f' (TZDB:{self.zone_id}, version: {self.version})'
        return s


class UnknownZoneError(KeyError):
    def __init__(self, zone_id: str):
        super().__init__(zone_id)
        self.zone_id = zone_id

    def __str__(self):
        return f'Unknown time-zone ID: {self.zone_id}'


class Reader:
    """Cursor over a block of bytes

    Running out of data raises `error` which is FormatError for container data
    and DecodeError within serialized rules.
    """

    def __init__(self, data: bytes, error: type[ValueError] = DecodeError):
        self.data = data
        self.pos = 0
        self.error = error

    @property
    def at_end(self) -> bool:
        return self.pos >= len(self.data)

    def read_fmt(self, fmt: str) -> tuple:
        fmt = '>' + fmt
        size = calcsize(fmt)
        if self.pos + size > len(self.data):
            raise self.error(f'Unexpected end of data at offset {self.pos}, need {size} bytes')
        try:
            values = unpack_from(fmt, self.data, self.pos)
        except StructError as e:
            raise self.error(f'{e} at offset {self.pos}')
        self.pos += size
        return values

    def read(self, fmt: str) -> int:
        value, = self.read_fmt(fmt)
        return value

    def read_bytes(self, size: int) -> bytes:
        if size < 0 or self.pos + size > len(self.data):
            raise self.error(f'Unexpected end of data at offset {self.pos}, need {size} bytes')
        data = self.data[self.pos:self.pos + size]
        self.pos += size
        return bytes(data)

    def read_utf(self) -> str:
        size = self.read('H')
        data = self.read_bytes(size)
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise self.error(f'Invalid string at offset {self.pos - size}: {e}')


def write_utf(s: str) -> bytes:
    data = s.encode('utf-8')
    if len(data) > 0xffff:
        raise ValueError(f'String too long ({len(data)} bytes)')
    return pack('>H', len(data)) + data


def write_offset(seconds: int) -> bytes:
    quarters, rem = divmod(seconds, 900)
    if rem == 0 and -OFFSET_QUARTER_MAX <= quarters <= OFFSET_QUARTER_MAX:
        return pack('>b', quarters)
    return pack('>Bl', OFFSET_ESCAPE, seconds)


def read_offset(reader: Reader) -> int:
    value = reader.read('b')
    if value == OFFSET_ESCAPE:
        return reader.read('l')
    return value * 900


def write_epoch_sec(epoch: int) -> bytes:
    if EPOCH_MIN <= epoch < EPOCH_MAX and epoch % 900 == 0:
        store = (epoch - EPOCH_MIN) // 900
        return store.to_bytes(3, 'big')
    return pack('>Bq', EPOCH_ESCAPE, epoch)


def read_epoch_sec(reader: Reader) -> int:
    hi = reader.read('B')
    if hi == EPOCH_ESCAPE:
        return reader.read('q')
    lo = reader.read('H')
    return ((hi << 16) | lo) * 900 + EPOCH_MIN
