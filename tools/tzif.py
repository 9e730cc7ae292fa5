"""
Read timezone TZif files

See https://data.iana.org/time-zones/tzdb/tzfile.5.txt or `man tzfile`

TZif files are compiled from the IANA database sources (using `zic`) and provided with
all distributions of GNU/Linux, MacOS and FreeBSD as standard.

Each file corresponds to a specific IANA timezone (e.g. 'Europe/London') and contains
list of daylight savings transition times plus a POSIX rule string (see tzstr.py).
The purpose of the POSIX string is to allow transitions beyond those listed to be calculated.

Version 1 files contain only 32-bit data. Later versions follow this with a second
header and 64-bit data, then the POSIX string.
"""

from __future__ import annotations
from struct import unpack, calcsize
from dataclasses import dataclass
from tzcodec import FormatError

MAGIC = b'TZif'


def readfmt(fp, fmt: str):
    size = calcsize(fmt)
    data = fp.read(size)
    if len(data) < size:
        raise FormatError(f'Unexpected end of file, need {size} bytes, got {len(data)}')
    return unpack(fmt, data)


@dataclass
class Header:
    magic: bytes
    fmtver: bytes
    isutccnt: int
    isstdcnt: int
    leapcnt: int
    timecnt: int
    typecnt: int
    charcnt: int

    def __post_init__(self):
        # Make sure it is a tzfile(5) file
        if self.magic != MAGIC:
            raise FormatError(f'Got magic {self.magic}')
        if self.typecnt == 0:
            raise FormatError('No local time types')


@dataclass
class TTInfo:
    tt_utoff: int
    tt_isdst: bool
    tt_desigidx: int


@dataclass
class TzInfo:
    hdr: Header
    transitions: tuple[int, ...]
    ttindex: tuple[int, ...]
    timetypes: list[TTInfo]
    tznames: bytes
    leap: list[tuple[int, int]]
    stdwall: tuple[int, ...]
    utlocal: tuple[int, ...]

    def __init__(self, fp, time64: bool):
        timefmt = "q" if time64 else "l"
        hdr = self.hdr = Header(*readfmt(fp, '>4s c 15x 6L'))
        self.transitions = readfmt(fp, f'>{hdr.timecnt}{timefmt}')
        self.ttindex = readfmt(fp, f'>{hdr.timecnt}B')
        self.timetypes = [TTInfo(u, bool(d), i) for u, d, i in
                          (readfmt(fp, '>lBB') for _ in range(hdr.typecnt))]
        self.tznames, = readfmt(fp, f'>{hdr.charcnt}s')
        self.leap = [readfmt(fp, f'>{timefmt}l') for _ in range(hdr.leapcnt)]
        self.stdwall = readfmt(fp, f'>{hdr.isstdcnt}B')
        self.utlocal = readfmt(fp, f'>{hdr.isutccnt}B')
        for idx in self.ttindex:
            if idx >= hdr.typecnt:
                raise FormatError(f'Local time type index {idx} out of range')

    def get_ttinfo(self, i: int) -> TTInfo:
        idx = self.ttindex[i]
        return self.timetypes[idx]


@dataclass
class TzFile:
    info: list[TzInfo]
    tzstr: str | None

    def __init__(self, filename: str):
        with open(filename, "rb") as fp:
            try:
                info = TzInfo(fp, False)
                self.info = [info]
                if info.hdr.fmtver >= b'2':
                    info = TzInfo(fp, True)
                    self.info.append(info)
                    self.tzstr = fp.read().strip().decode() or None
                else:
                    self.tzstr = None
            except FormatError as e:
                raise FormatError(f'{e} reading {filename}') from e

    @property
    def data(self) -> TzInfo:
        """Most precise data block available"""
        return self.info[-1]
