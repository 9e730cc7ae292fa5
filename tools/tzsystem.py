"""
Build a rule database from the locally installed zoneinfo

Each TZif file gives a list of transition instants, each selecting a local time type
(UT offset and DST flag), plus a POSIX string for times after the last transition.

TZif data has no explicit standard offset for DST periods, so the standard offset is
taken as that of the most recent non-DST local time type.
"""

import os
from tzdb import ZoneList, get_zoneinfo_path
from tzif import TzFile
from tzstr import decode_tzstr
from tzrules import ZoneRules, ZoneOffset, TransitionRule, local_datetime
from tzdat import TimeZoneDatabase


def extend_to_last_transition(last: int, last_rules: list[TransitionRule], std_trans: list, std_offsets: list,
                              sav_trans: list, wall_offsets: list):
    """Add the first rule transition after the final TZif transition

    Recurring rules apply after the last savings transition, but the POSIX string only
    applies after the last TZif transition. When trailing TZif transitions changed only
    the DST flag they weren't kept, so the rules would otherwise take over too early.
    """
    std = last_rules[0].standard_offset
    if std != std_offsets[-1] and (not std_trans or std_trans[-1] < last):
        std_trans.append(last)
        std_offsets.append(std)
    dt = local_datetime(last, wall_offsets[-1])
    if dt is None:
        return
    candidates = [rule.create_transition(year) for year in (dt.year, dt.year + 1) for rule in last_rules]
    for t in sorted(candidates, key=lambda t: t.epoch_second):
        if t.epoch_second > last and t.offset_after != wall_offsets[-1]:
            sav_trans.append(t.epoch_second)
            wall_offsets.append(t.offset_after)
            return


def build_rules(tzfile: TzFile) -> ZoneRules:
    info = tzfile.data
    first = info.timetypes[0]
    std_type = first if not first.tt_isdst else next((tt for tt in info.timetypes if not tt.tt_isdst), first)

    std_trans = []
    std_offsets = [ZoneOffset(std_type.tt_utoff)]
    sav_trans = []
    wall_offsets = [ZoneOffset(first.tt_utoff)]
    for i, t in enumerate(info.transitions):
        tti = info.get_ttinfo(i)
        if not tti.tt_isdst and tti.tt_utoff != std_offsets[-1].seconds:
            std_trans.append(t)
            std_offsets.append(ZoneOffset(tti.tt_utoff))
        # Changes in abbreviation or DST flag alone don't alter the wall offset
        if tti.tt_utoff != wall_offsets[-1].seconds:
            sav_trans.append(t)
            wall_offsets.append(ZoneOffset(tti.tt_utoff))

    last_rules = decode_tzstr(tzfile.tzstr).transition_rules() if tzfile.tzstr else []
    if last_rules and info.transitions and (not sav_trans or sav_trans[-1] < info.transitions[-1]):
        extend_to_last_transition(info.transitions[-1], last_rules, std_trans, std_offsets, sav_trans, wall_offsets)
    return ZoneRules(tuple(std_trans), tuple(std_offsets), tuple(sav_trans), tuple(wall_offsets), tuple(last_rules))


def load_system(zoneinfo_path: str = None) -> TimeZoneDatabase:
    if not zoneinfo_path:
        zoneinfo_path = get_zoneinfo_path()
    zones = ZoneList(zoneinfo_path)
    rules = {}
    for name in zones:
        try:
            tzfile = TzFile(os.path.join(zoneinfo_path, name))
            rules[name] = build_rules(tzfile)
        except (OSError, ValueError) as e:
            print(f'Zone {name} not available: {e}')
    return TimeZoneDatabase.from_rules(zones.version, rules)
