"""
Builders for test data

Containers and rule records are assembled by hand here so tests don't rely on the
writer being tested.
"""

from __future__ import annotations

import struct

import pytest

# 2024-03-31 01:00 UTC and 2024-10-27 01:00 UTC, Europe/London DST changes
BST_START_2024 = 1711846800
BST_END_2024 = 1729990800


def utf(s: str) -> bytes:
    data = s.encode()
    return struct.pack('>H', len(data)) + data


def offset_bytes(seconds: int) -> bytes:
    assert seconds % 900 == 0
    return struct.pack('>b', seconds // 900)


def epoch_bytes(epoch: int) -> bytes:
    assert epoch % 900 == 0
    return ((epoch + 4_575_744_000) // 900).to_bytes(3, 'big')


def rules_blob(savings: list[int], wall: list[int], standard: int | None = None) -> bytes:
    """Serialized ZoneRules with no standard transitions and no recurring rules"""
    std = wall[0] if standard is None else standard
    data = b'\x01' + struct.pack('>l', 0) + offset_bytes(std)
    data += struct.pack('>l', len(savings))
    data += b''.join(epoch_bytes(t) for t in savings)
    data += b''.join(offset_bytes(o) for o in wall)
    data += struct.pack('>b', 0)
    return data


def build_tzdb(versions: list[str], regions: list[str], blobs: list[bytes],
               links: list[list[tuple[int, int]]], fmt: int = 1, group: str = 'TZDB') -> bytes:
    """links has one list of (region index, rule index) pairs per version"""
    parts = [struct.pack('>b', fmt), utf(group)]
    parts.append(struct.pack('>h', len(versions)))
    parts += [utf(v) for v in versions]
    parts.append(struct.pack('>h', len(regions)))
    parts += [utf(r) for r in regions]
    parts.append(struct.pack('>h', len(blobs)))
    parts += [struct.pack('>h', len(b)) + b for b in blobs]
    for version_links in links:
        parts.append(struct.pack('>h', len(version_links)))
        parts += [struct.pack('>hH', r, b) for r, b in version_links]
    return b''.join(parts)


def simple_tzdb(zones: dict[str, bytes], version: str = '2024a') -> bytes:
    """Single version database, one blob per zone in the given order"""
    regions = list(zones)
    return build_tzdb([version], regions, list(zones.values()),
                      [[(i, i) for i in range(len(regions))]])


def tzif_data(transitions: list[tuple[int, int]], types: list[tuple[int, int, int]],
              names: bytes, tzstr: str | None) -> bytes:
    """TZif file content; version 2 with footer if tzstr given, version 1 otherwise"""
    def block(time64: bool, version: bytes) -> bytes:
        timefmt = 'q' if time64 else 'l'
        hdr = struct.pack('>4sc15x6L', b'TZif', version, 0, 0, 0, len(transitions), len(types), len(names))
        data = struct.pack(f'>{len(transitions)}{timefmt}', *(t for t, _ in transitions))
        data += bytes(i for _, i in transitions)
        data += b''.join(struct.pack('>lBB', *tt) for tt in types)
        return hdr + data + names

    if tzstr is None:
        return block(False, b'\0')
    return block(False, b'2') + block(True, b'2') + f'\n{tzstr}\n'.encode()


LONDON_TYPES = [(-75, 0, 0), (0, 0, 4), (3600, 1, 8)]
LONDON_NAMES = b'LMT\0GMT\0BST\0'
LONDON_TRANSITIONS = [(-1_000_000_000, 1), (BST_START_2024, 2), (BST_END_2024, 1)]
LONDON_TZSTR = 'GMT0BST,M3.5.0/1,M10.5.0'


@pytest.fixture
def zoneinfo_dir(tmp_path):
    """Minimal compiled zoneinfo tree"""
    root = tmp_path / 'zoneinfo'
    (root / 'Europe').mkdir(parents=True)
    (root / 'Etc').mkdir()
    (root / 'version').write_text('2024b\n')
    (root / 'Europe' / 'London').write_bytes(
        tzif_data(LONDON_TRANSITIONS, LONDON_TYPES, LONDON_NAMES, LONDON_TZSTR))
    (root / 'Etc' / 'UTC').write_bytes(tzif_data([], [(0, 0, 0)], b'UTC\0', 'UTC0'))
    (root / 'Europe' / 'notes.txt').write_text('not a zone')
    return root
