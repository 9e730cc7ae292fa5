"""
Read and write `tzdb.dat` time-zone rule databases

File layout (big-endian, strings are length-prefixed UTF-8):

    byte        format version, always 1
    string      group identifier, always "TZDB"
    int16       version count N
    string[N]   version identifiers
    int16       region count R
    string[R]   region (zone) identifiers
    int16       rule count K
    K times:    int16 length, byte[length] serialized rules (see tzrules.py)
    N times:    int16 link count M
                M times: int16 region index, uint16 rule index

Each version's links replace those of the previous version, so a loaded database
holds only the links of the last version in the file.

Rule data is kept in serialized form until requested.
"""

from __future__ import annotations
import os
import threading
from dataclasses import dataclass
from struct import pack
from typing import BinaryIO
from tzcodec import Reader, FormatError, DecodeError, UnknownZoneError, write_utf
from tzrules import ZoneRules, read_record, write_record

FORMAT_VERSION = 1
GROUP_ID = 'TZDB'
TZDB_FILENAME = 'tzdb.dat'
# Counts and lengths are read as signed 16-bit values
COUNT_MAX = 0x7fff


@dataclass(frozen=True)
class Raw:
    data: bytes


@dataclass(frozen=True)
class Decoded:
    value: ZoneRules
    data: bytes = None  # Serialized form, if the rules came from a file


RuleSlot = Raw | Decoded


class TimeZoneDatabase:
    def __init__(self, version_id: str | None, region_ids: list[str], slots: dict[str, RuleSlot] = None):
        self.version_id = version_id
        self.region_ids = list(region_ids)
        self.slots = dict(slots or {})
        self._lock = threading.Lock()

    @classmethod
    def from_rules(cls, version_id: str, rules: dict[str, ZoneRules]) -> TimeZoneDatabase:
        return cls(version_id, list(rules), {zone_id: Decoded(r) for zone_id, r in rules.items()})

    def zone_ids(self) -> set[str]:
        return set(self.region_ids)

    def rules(self, zone_id: str) -> ZoneRules:
        """Get rules for a zone, decoding them on first access

        Raises UnknownZoneError if there's no entry for the zone, DecodeError if
        the stored data is invalid. A failed decode leaves the entry as it was.
        """
        slot = self.slots.get(zone_id)
        if slot is None:
            raise UnknownZoneError(zone_id)
        if isinstance(slot, Decoded):
            return slot.value
        with self._lock:
            slot = self.slots[zone_id]
            if isinstance(slot, Decoded):
                return slot.value
            try:
                value = read_record(slot.data)
            except DecodeError as e:
                e.zone_id = zone_id
                e.version = self.version_id
                raise
            if not isinstance(value, ZoneRules):
                raise DecodeError(f'Expected rules, found {type(value).__name__}', zone_id, self.version_id)
            self.slots[zone_id] = Decoded(value, slot.data)
            return value

    @property
    def decoded_count(self) -> int:
        return sum(1 for slot in self.slots.values() if isinstance(slot, Decoded))

    def __contains__(self, zone_id: str):
        return zone_id in self.slots

    def __len__(self):
        return len(self.region_ids)

    def __str__(self):
        return f'TZDB[{self.version_id}]'


def read_count(reader: Reader, what: str) -> int:
    count = reader.read('h')
    if count < 0:
        raise FormatError(f'Invalid {what} count {count} at offset {reader.pos - 2}')
    return count


def loads(data: bytes) -> TimeZoneDatabase:
    reader = Reader(data, FormatError)
    if reader.read('b') != FORMAT_VERSION:
        raise FormatError('File format not recognised')
    if reader.read_utf() != GROUP_ID:
        raise FormatError('File format not recognised')

    version_count = read_count(reader, 'version')
    version_id = None
    for _ in range(version_count):
        version_id = reader.read_utf()

    region_count = read_count(reader, 'region')
    region_ids = [reader.read_utf() for _ in range(region_count)]

    rule_count = read_count(reader, 'rule')
    blobs = [reader.read_bytes(read_count(reader, 'rule length')) for _ in range(rule_count)]

    slots = {}
    for _ in range(version_count):
        link_count = read_count(reader, 'link')
        slots.clear()
        for _ in range(link_count):
            region_index, rule_index = reader.read_fmt('hH')
            if not 0 <= region_index < region_count:
                raise FormatError(f'Region index {region_index} out of range, {region_count} regions')
            if rule_index >= rule_count:
                raise FormatError(f'Rule index {rule_index} out of range, {rule_count} rules')
            slots[region_ids[region_index]] = Raw(blobs[rule_index])

    return TimeZoneDatabase(version_id, region_ids, slots)


def load(fp: BinaryIO) -> TimeZoneDatabase:
    return loads(fp.read())


def load_file(path: str) -> TimeZoneDatabase:
    """Load a database from a file, or from a directory containing `tzdb.dat`"""
    if os.path.isdir(path):
        path = os.path.join(path, TZDB_FILENAME)
    with open(path, 'rb') as f:
        return load(f)


def get_slot_data(slot: RuleSlot) -> bytes:
    if isinstance(slot, Raw):
        return slot.data
    if slot.data is not None:
        return slot.data
    return write_record(slot.value)


def dumps(db: TimeZoneDatabase) -> bytes:
    """Serialize a database as a single version

    Identical rule data is stored once and shared between regions.
    """
    def check_count(count: int, what: str) -> int:
        if count > COUNT_MAX:
            raise ValueError(f'Too many {what} ({count})')
        return count

    versions = [] if db.version_id is None else [db.version_id]
    if not versions and db.slots:
        raise ValueError('Database has rules but no version identifier')

    region_index = {region: i for i, region in enumerate(db.region_ids)}
    blobs = []
    blob_index = {}
    links = []
    for region, slot in db.slots.items():
        if region not in region_index:
            raise ValueError(f'Region "{region}" has rules but is not in region list')
        data = get_slot_data(slot)
        check_count(len(data), f'bytes in rules for "{region}"')
        index = blob_index.get(data)
        if index is None:
            index = blob_index[data] = len(blobs)
            blobs.append(data)
        links.append((region_index[region], index))

    parts = [pack('>b', FORMAT_VERSION), write_utf(GROUP_ID)]
    parts.append(pack('>h', len(versions)))
    parts += [write_utf(v) for v in versions]
    parts.append(pack('>h', check_count(len(db.region_ids), 'regions')))
    parts += [write_utf(r) for r in db.region_ids]
    parts.append(pack('>h', check_count(len(blobs), 'rules')))
    for data in blobs:
        parts.append(pack('>h', len(data)) + data)
    for _ in versions:
        parts.append(pack('>h', check_count(len(links), 'links')))
        parts += [pack('>hH', r, b) for r, b in links]
    return b''.join(parts)


def dump(db: TimeZoneDatabase, fp: BinaryIO):
    fp.write(dumps(db))


def dump_file(db: TimeZoneDatabase, path: str):
    if os.path.isdir(path):
        path = os.path.join(path, TZDB_FILENAME)
    data = dumps(db)
    with open(path, 'wb') as f:
        f.write(data)
