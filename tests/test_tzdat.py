import io
import struct
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import BST_START_2024, BST_END_2024, build_tzdb, simple_tzdb, rules_blob
from tzcodec import FormatError, DecodeError, UnknownZoneError
from tzdat import (TimeZoneDatabase, Raw, Decoded, loads, load, load_file, dumps, dump, dump_file)
from tzrules import ZoneRules, ZoneOffset, Transition, write_record

LONDON_BLOB = rules_blob([BST_START_2024, BST_END_2024], [0, 3600, 0])
UTC_BLOB = rules_blob([], [0])
PARIS_BLOB = rules_blob([BST_START_2024, BST_END_2024], [3600, 7200, 3600])


def sample_data() -> bytes:
    return simple_tzdb({
        'Europe/London': LONDON_BLOB,
        'Etc/UTC': UTC_BLOB,
        'Europe/Paris': PARIS_BLOB,
    })


def test_load():
    db = loads(sample_data())
    assert db.version_id == '2024a'
    assert db.region_ids == ['Europe/London', 'Etc/UTC', 'Europe/Paris']
    assert db.zone_ids() == {'Europe/London', 'Etc/UTC', 'Europe/Paris'}
    assert db.slots['Etc/UTC'] == Raw(UTC_BLOB)
    assert len(db) == 3
    assert 'Europe/Paris' in db
    assert str(db) == 'TZDB[2024a]'


def test_load_file_object_and_directory(tmp_path):
    data = sample_data()
    assert load(io.BytesIO(data)).region_ids == loads(data).region_ids
    (tmp_path / 'tzdb.dat').write_bytes(data)
    assert load_file(str(tmp_path)).version_id == '2024a'
    assert load_file(str(tmp_path / 'tzdb.dat')).version_id == '2024a'


def test_last_version_links_win():
    data = build_tzdb(
        ['2023c', '2024a'],
        ['Europe/London', 'Etc/UTC'],
        [LONDON_BLOB, UTC_BLOB],
        [
            [(0, 0), (1, 1)],
            [(0, 1)],
        ])
    db = loads(data)
    assert db.version_id == '2024a'
    # Region list is shared by all versions, links only from the last one
    assert db.zone_ids() == {'Europe/London', 'Etc/UTC'}
    assert db.slots == {'Europe/London': Raw(UTC_BLOB)}
    with pytest.raises(UnknownZoneError):
        db.rules('Etc/UTC')


def test_duplicate_region_last_link_wins():
    data = build_tzdb(['2024a'], ['Etc/UTC', 'Etc/UTC'], [LONDON_BLOB, UTC_BLOB], [[(0, 0), (1, 1)]])
    db = loads(data)
    assert db.region_ids == ['Etc/UTC', 'Etc/UTC']
    assert db.zone_ids() == {'Etc/UTC'}
    assert db.slots['Etc/UTC'] == Raw(UTC_BLOB)


def test_no_versions():
    db = loads(build_tzdb([], ['Etc/UTC'], [UTC_BLOB], []))
    assert db.version_id is None
    assert db.slots == {}


def test_bad_format_version():
    data = bytearray(sample_data())
    data[0] = 2
    with pytest.raises(FormatError, match='not recognised'):
        loads(bytes(data))


def test_bad_group():
    data = build_tzdb(['2024a'], [], [], [[]], group='TZDC')
    with pytest.raises(FormatError, match='not recognised'):
        loads(data)


def test_truncated():
    data = sample_data()
    for size in range(len(data)):
        with pytest.raises(FormatError):
            loads(data[:size])


def test_region_index_out_of_range():
    data = build_tzdb(['2024a'], ['Etc/UTC'], [UTC_BLOB], [[(1, 0)]])
    with pytest.raises(FormatError, match='Region index 1'):
        loads(data)
    data = build_tzdb(['2024a'], ['Etc/UTC'], [UTC_BLOB], [[(-1, 0)]])
    with pytest.raises(FormatError):
        loads(data)


def test_rule_index_out_of_range():
    data = build_tzdb(['2024a'], ['Etc/UTC'], [UTC_BLOB], [[(0, 0x8000)]])
    # Rule index is unsigned
    with pytest.raises(FormatError, match='Rule index 32768'):
        loads(data)


def test_negative_count():
    data = b'\x01' + struct.pack('>H', 4) + b'TZDB' + struct.pack('>h', 0) + struct.pack('>h', -1)
    with pytest.raises(FormatError, match='region count'):
        loads(data)


def test_lazy_decode():
    db = loads(sample_data())
    assert db.decoded_count == 0
    rules = db.rules('Europe/London')
    assert isinstance(rules, ZoneRules)
    assert rules.transitions[0] == Transition(BST_START_2024, ZoneOffset(0), ZoneOffset(3600))
    assert db.slots['Europe/London'] == Decoded(rules, LONDON_BLOB)
    assert db.decoded_count == 1
    # Once decoded, the same value is always returned
    assert db.rules('Europe/London') is rules
    assert db.zone_ids() == {'Europe/London', 'Etc/UTC', 'Europe/Paris'}


def test_unknown_zone():
    db = loads(sample_data())
    with pytest.raises(UnknownZoneError) as exc:
        db.rules('Mars/Olympus')
    assert exc.value.zone_id == 'Mars/Olympus'


def test_decode_error_leaves_slot_raw():
    db = loads(simple_tzdb({'Etc/UTC': UTC_BLOB, 'Zone/Bad': b'\x09\x00'}, version='2024b'))
    for _ in range(2):
        with pytest.raises(DecodeError) as exc:
            db.rules('Zone/Bad')
        assert exc.value.zone_id == 'Zone/Bad'
        assert exc.value.version == '2024b'
        assert db.slots['Zone/Bad'] == Raw(b'\x09\x00')
    assert db.rules('Etc/UTC') == ZoneRules.fixed(ZoneOffset(0))


def test_non_rules_record():
    transition = write_record(Transition(BST_START_2024, ZoneOffset(0), ZoneOffset(3600)))
    db = loads(simple_tzdb({'Zone/Odd': transition}))
    with pytest.raises(DecodeError, match='Expected rules'):
        db.rules('Zone/Odd')
    assert isinstance(db.slots['Zone/Odd'], Raw)


def test_concurrent_decode():
    db = loads(sample_data())
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: db.rules('Europe/Paris'), range(32)))
    assert all(r is results[0] for r in results)
    assert db.decoded_count == 1


def test_dumps_reproduces_input():
    data = sample_data()
    db = loads(data)
    assert dumps(db) == data
    # Decoded entries keep their original encoding
    db.rules('Europe/London')
    assert dumps(db) == data


def test_dumps_shares_identical_rules():
    rules = ZoneRules.fixed(ZoneOffset(0))
    db = TimeZoneDatabase.from_rules('2024a', {'Etc/UTC': rules, 'Etc/GMT': rules})
    expected = build_tzdb(['2024a'], ['Etc/UTC', 'Etc/GMT'], [UTC_BLOB], [[(0, 0), (1, 0)]])
    assert dumps(db) == expected


def test_dump_round_trip(tmp_path):
    london = loads(sample_data()).rules('Europe/London')
    db = TimeZoneDatabase.from_rules('2024b', {
        'Europe/London': london,
        'Asia/Kolkata': ZoneRules.fixed(ZoneOffset(19800)),
    })
    buf = io.BytesIO()
    dump(db, buf)
    dump_file(db, str(tmp_path))
    assert (tmp_path / 'tzdb.dat').read_bytes() == buf.getvalue()

    loaded = load_file(str(tmp_path))
    assert loaded.version_id == '2024b'
    assert loaded.region_ids == ['Europe/London', 'Asia/Kolkata']
    assert loaded.rules('Europe/London') == london
    assert loaded.rules('Asia/Kolkata') == ZoneRules.fixed(ZoneOffset(19800))


def test_dumps_errors():
    rules = ZoneRules.fixed(ZoneOffset(0))
    with pytest.raises(ValueError, match='no version'):
        dumps(TimeZoneDatabase.from_rules(None, {'Etc/UTC': rules}))
    with pytest.raises(ValueError, match='not in region list'):
        dumps(TimeZoneDatabase('2024a', [], {'Etc/UTC': Decoded(rules)}))
