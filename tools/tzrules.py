"""
Time-zone rule records and their serialized form

A zone's rules are stored as a single serialized record, identified by a leading type byte:

    1   ZoneRules           Complete rule set for a zone
    2   Transition          A single offset change at a specific instant
    3   TransitionRule      Annually recurring offset change (e.g. start of daylight savings)

ZoneRules keeps the layout of the serialized data: historic standard offset changes,
historic wall offset changes, and the recurring rules which apply after the last
historic transition.
"""

from __future__ import annotations
import calendar
from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import IntEnum
from struct import pack
from tzcodec import (Reader, DecodeError, read_offset, write_offset,
                     read_epoch_sec, write_epoch_sec)

# Offsets are limited to +/- 18 hours
OFFSET_MAX = 18 * 3600
SECS_PER_DAY = 86400
EPOCH_ORDINAL = date(1970, 1, 1).toordinal()

MONTH_NAMES = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']
# ISO numbering, Monday is 1
DAY_NAMES = ['Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun']


class RecordType(IntEnum):
    RULES = 1
    TRANSITION = 2
    TRANSITION_RULE = 3


class TimeDefinition(IntEnum):
    UTC = 0
    WALL = 1
    STANDARD = 2

    @property
    def letter(self) -> str:
        return 'uws'[self]


@dataclass(frozen=True, order=True)
class ZoneOffset:
    seconds: int = 0

    def __post_init__(self):
        if not -OFFSET_MAX <= self.seconds <= OFFSET_MAX:
            raise ValueError(f'Zone offset not in valid range: {self.seconds}')

    def __str__(self):
        if self.seconds == 0:
            return 'Z'
        sign = '-' if self.seconds < 0 else '+'
        mins, secs = divmod(abs(self.seconds), 60)
        hours, mins = divmod(mins, 60)
        s = f'{sign}{hours:02}:{mins:02}'
        if secs:
            s += f':{secs:02}'
        return s

    def __repr__(self):
        return str(self)


def local_datetime(epoch: int, offset: ZoneOffset) -> datetime | None:
    try:
        return datetime(1970, 1, 1) + timedelta(seconds=epoch + offset.seconds)
    except OverflowError:
        return None


def epoch_of(d: date, secs: int, offset: ZoneOffset) -> int:
    return (d.toordinal() - EPOCH_ORDINAL) * SECS_PER_DAY + secs - offset.seconds


@dataclass(frozen=True)
class Transition:
    epoch_second: int
    offset_before: ZoneOffset
    offset_after: ZoneOffset

    @property
    def is_gap(self) -> bool:
        """Local clocks jump forward"""
        return self.offset_after.seconds > self.offset_before.seconds

    @property
    def is_overlap(self) -> bool:
        return not self.is_gap

    @property
    def duration(self) -> int:
        return self.offset_after.seconds - self.offset_before.seconds

    def __str__(self):
        dt = local_datetime(self.epoch_second, self.offset_before)
        if dt is None:
            when = f'@{self.epoch_second}'
        else:
            when = dt.isoformat(timespec='seconds' if dt.second else 'minutes')
        kind = 'Gap' if self.is_gap else 'Overlap'
        return f'Transition[{kind} at {when}{self.offset_before} to {self.offset_after}]'

    def __repr__(self):
        return str(self)


@dataclass(frozen=True)
class TransitionRule:
    month: int                  # 1-12
    day_of_month: int           # -28 to 31, negative counts back from end of month
    day_of_week: int | None     # 1=Monday
    time: time
    time_end_of_day: bool
    time_definition: TimeDefinition
    standard_offset: ZoneOffset
    offset_before: ZoneOffset
    offset_after: ZoneOffset

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f'Invalid month {self.month}')
        if not -28 <= self.day_of_month <= 31 or self.day_of_month == 0:
            raise ValueError(f'Day of month indicator must be between -28 and 31 inclusive excluding zero, got {self.day_of_month}')
        if self.day_of_week is not None and not 1 <= self.day_of_week <= 7:
            raise ValueError(f'Invalid day of week {self.day_of_week}')
        if self.time.microsecond:
            raise ValueError('Time must not contain fractional seconds')
        if self.time_end_of_day and self.time != time(0):
            raise ValueError('Time must be midnight when end of day flag is true')

    @property
    def seconds_of_day(self) -> int:
        if self.time_end_of_day:
            return SECS_PER_DAY
        return self.time.hour * 3600 + self.time.minute * 60 + self.time.second

    @property
    def on(self) -> str:
        """Day expression in zic(8) style, e.g. 'lastSun', 'Sun>=8', '25'"""
        dom = self.day_of_month
        if self.day_of_week is None:
            return str(dom)
        day = DAY_NAMES[self.day_of_week - 1]
        if dom == -1:
            return f'last{day}'
        if dom < 0:
            return f'{day}<=-{-dom}'
        return f'{day}>={dom}'

    def get_date(self, year: int) -> date:
        """Get effective date for given year, excluding end-of-day adjustment"""
        if self.day_of_month < 0:
            days_in_month = calendar.monthrange(year, self.month)[1]
            d = date(year, self.month, days_in_month + 1 + self.day_of_month)
            if self.day_of_week is not None:
                # previous or same
                d -= timedelta(days=(d.isoweekday() - self.day_of_week) % 7)
        else:
            d = date(year, self.month, self.day_of_month)
            if self.day_of_week is not None:
                # next or same
                d += timedelta(days=(self.day_of_week - d.isoweekday()) % 7)
        return d

    def create_transition(self, year: int) -> Transition:
        d = self.get_date(year)
        secs = self.seconds_of_day
        if self.time_definition == TimeDefinition.UTC:
            secs += self.offset_before.seconds
        elif self.time_definition == TimeDefinition.STANDARD:
            secs += self.offset_before.seconds - self.standard_offset.seconds
        return Transition(epoch_of(d, secs, self.offset_before), self.offset_before, self.offset_after)

    def __str__(self):
        kind = 'Gap' if self.offset_after.seconds > self.offset_before.seconds else 'Overlap'
        at = '24:00' if self.time_end_of_day else self.time.isoformat(timespec='seconds' if self.time.second else 'minutes')
        return (f'TransitionRule[{kind} {self.offset_before} to {self.offset_after}, '
                f'{MONTH_NAMES[self.month - 1]} {self.on} {at}{self.time_definition.letter}, '
                f'standard offset {self.standard_offset}]')

    def __repr__(self):
        return str(self)


@dataclass(frozen=True)
class ZoneRules:
    standard_transitions: tuple[int, ...]
    standard_offsets: tuple[ZoneOffset, ...]
    savings_instant_transitions: tuple[int, ...]
    wall_offsets: tuple[ZoneOffset, ...]
    last_rules: tuple[TransitionRule, ...] = ()

    def __post_init__(self):
        if len(self.standard_offsets) != len(self.standard_transitions) + 1:
            raise ValueError('Need one more standard offset than standard transitions')
        if len(self.wall_offsets) != len(self.savings_instant_transitions) + 1:
            raise ValueError('Need one more wall offset than savings transitions')

    @classmethod
    def fixed(cls, offset: ZoneOffset) -> ZoneRules:
        return cls((), (offset,), (), (offset,))

    @property
    def is_fixed_offset(self) -> bool:
        return not self.savings_instant_transitions and not self.last_rules

    @property
    def transitions(self) -> list[Transition]:
        return [Transition(t, self.wall_offsets[i], self.wall_offsets[i + 1])
                for i, t in enumerate(self.savings_instant_transitions)]

    def get_standard_offset(self, epoch: int) -> ZoneOffset:
        index = bisect_right(self.standard_transitions, epoch)
        return self.standard_offsets[index]

    def transitions_for_year(self, year: int) -> list[Transition]:
        return [rule.create_transition(year) for rule in self.last_rules]

    def get_offset(self, epoch: int) -> ZoneOffset:
        """Get the wall offset in effect at the given instant"""
        trans = self.savings_instant_transitions
        if self.last_rules and (not trans or epoch > trans[-1]):
            last_offset = self.wall_offsets[-1]
            dt = local_datetime(epoch, last_offset)
            if dt is None:
                raise ValueError(f'Instant out of range: {epoch}')
            transition = None
            for transition in self.transitions_for_year(dt.year):
                if epoch < transition.epoch_second:
                    return transition.offset_before
            return transition.offset_after
        index = bisect_right(trans, epoch)
        return self.wall_offsets[index]

    def __str__(self):
        return f'ZoneRules[currentStandardOffset={self.standard_offsets[-1]}]'


def read_transition_rule(reader: Reader) -> TransitionRule:
    data = reader.read('L')
    month = data >> 28
    dom = ((data >> 22) & 63) - 32
    dow = (data >> 19) & 7
    time_byte = (data >> 14) & 31
    defn = TimeDefinition((data >> 12) & 3)
    std_byte = (data >> 4) & 255
    before_byte = (data >> 2) & 3
    after_byte = data & 3

    secs = reader.read('l') if time_byte == 31 else (time_byte % 24) * 3600
    if not 0 <= secs < SECS_PER_DAY:
        raise DecodeError(f'Invalid time of day {secs}')
    std = reader.read('l') if std_byte == 255 else (std_byte - 128) * 900
    before = reader.read('l') if before_byte == 3 else std + before_byte * 1800
    after = reader.read('l') if after_byte == 3 else std + after_byte * 1800
    hours, secs = divmod(secs, 3600)
    return TransitionRule(
        month=month,
        day_of_month=dom,
        day_of_week=dow or None,
        time=time(hours, secs // 60, secs % 60),
        time_end_of_day=time_byte == 24,
        time_definition=defn,
        standard_offset=ZoneOffset(std),
        offset_before=ZoneOffset(before),
        offset_after=ZoneOffset(after),
    )


def write_transition_rule(rule: TransitionRule) -> bytes:
    time_secs = rule.seconds_of_day
    std = rule.standard_offset.seconds
    before_diff = rule.offset_before.seconds - std
    after_diff = rule.offset_after.seconds - std
    if time_secs % 3600 == 0:
        time_byte = 24 if rule.time_end_of_day else rule.time.hour
    else:
        time_byte = 31
    std_byte = std // 900 + 128 if std % 900 == 0 else 255
    before_byte = before_diff // 1800 if before_diff in (0, 1800, 3600) else 3
    after_byte = after_diff // 1800 if after_diff in (0, 1800, 3600) else 3
    data = ((rule.month << 28)
            + ((rule.day_of_month + 32) << 22)
            + ((rule.day_of_week or 0) << 19)
            + (time_byte << 14)
            + (rule.time_definition << 12)
            + (std_byte << 4)
            + (before_byte << 2)
            + after_byte)
    res = pack('>L', data)
    if time_byte == 31:
        res += pack('>l', time_secs)
    if std_byte == 255:
        res += pack('>l', std)
    if before_byte == 3:
        res += pack('>l', rule.offset_before.seconds)
    if after_byte == 3:
        res += pack('>l', rule.offset_after.seconds)
    return res


def read_transition(reader: Reader) -> Transition:
    epoch = read_epoch_sec(reader)
    before = ZoneOffset(read_offset(reader))
    after = ZoneOffset(read_offset(reader))
    if before == after:
        raise DecodeError('Offsets must not be equal')
    return Transition(epoch, before, after)


def write_transition(transition: Transition) -> bytes:
    return (write_epoch_sec(transition.epoch_second)
            + write_offset(transition.offset_before.seconds)
            + write_offset(transition.offset_after.seconds))


def read_zone_rules(reader: Reader) -> ZoneRules:
    def read_list(read_item, count):
        return tuple(read_item(reader) for _ in range(count))

    def read_offsets(count):
        return read_list(lambda r: ZoneOffset(read_offset(r)), count)

    std_size = reader.read('l')
    if std_size < 0:
        raise DecodeError(f'Negative transition count {std_size}')
    std_trans = read_list(read_epoch_sec, std_size)
    std_offsets = read_offsets(std_size + 1)
    sav_size = reader.read('l')
    if sav_size < 0:
        raise DecodeError(f'Negative transition count {sav_size}')
    sav_trans = read_list(read_epoch_sec, sav_size)
    wall_offsets = read_offsets(sav_size + 1)
    rule_size = reader.read('b')
    if rule_size < 0:
        raise DecodeError(f'Negative rule count {rule_size}')
    last_rules = read_list(read_transition_rule, rule_size)
    return ZoneRules(std_trans, std_offsets, sav_trans, wall_offsets, last_rules)


def write_zone_rules(rules: ZoneRules) -> bytes:
    if len(rules.last_rules) > 127:
        raise ValueError(f'Too many recurring rules ({len(rules.last_rules)})')
    parts = [pack('>l', len(rules.standard_transitions))]
    parts += [write_epoch_sec(t) for t in rules.standard_transitions]
    parts += [write_offset(o.seconds) for o in rules.standard_offsets]
    parts.append(pack('>l', len(rules.savings_instant_transitions)))
    parts += [write_epoch_sec(t) for t in rules.savings_instant_transitions]
    parts += [write_offset(o.seconds) for o in rules.wall_offsets]
    parts.append(pack('>b', len(rules.last_rules)))
    parts += [write_transition_rule(r) for r in rules.last_rules]
    return b''.join(parts)


def read_record(data: bytes) -> ZoneRules | Transition | TransitionRule:
    """Decode a complete serialized record"""
    reader = Reader(data, DecodeError)
    try:
        tag = reader.read('b')
        match tag:
            case RecordType.RULES:
                return read_zone_rules(reader)
            case RecordType.TRANSITION:
                return read_transition(reader)
            case RecordType.TRANSITION_RULE:
                return read_transition_rule(reader)
            case _:
                raise DecodeError(f'Unknown serialized type {tag}')
    except DecodeError:
        raise
    except ValueError as e:
        raise DecodeError(str(e)) from e


def write_record(value: ZoneRules | Transition | TransitionRule) -> bytes:
    match value:
        case ZoneRules():
            return pack('>b', RecordType.RULES) + write_zone_rules(value)
        case Transition():
            return pack('>b', RecordType.TRANSITION) + write_transition(value)
        case TransitionRule():
            return pack('>b', RecordType.TRANSITION_RULE) + write_transition_rule(value)
    raise TypeError(f'Cannot serialize {type(value).__name__}')
