"""
Decode POSIX timezone strings into recurring transition rules.

https://sourceware.org/glibc/manual/2.39/html_node/TZ-Variable.html

Only the 'M' format is implemented as it's the only one currently in use.

A string such as "GMT0BST,M3.5.0/1,M10.5.0" gives two rules: daylight time starts on
the last Sunday in March at 01:00 local (standard) time, and ends on the last Sunday in
October at 02:00 local (daylight) time.
"""

import re
from dataclasses import dataclass
from datetime import time
from tzrules import TransitionRule, TimeDefinition, ZoneOffset

DST_OFFSET_DEFAULT = 3600
TIME_DEFAULT = 2 * 3600


def decode_time(s: str) -> int:
    """Decode [+|-]hh[:mm[:ss]] into seconds"""
    fields = s.split(':')
    s = fields.pop(0)
    if s[0] == '-':
        sign = -1
        s = s[1:]
    else:
        sign = 1
    hours = int(s)
    mins = int(fields.pop(0)) if fields else 0
    secs = int(fields.pop(0)) if fields else 0
    return sign * ((hours * 3600) + (mins * 60) + secs)


def decode_offset(s: str) -> int:
    # Offset is 'West of UT' so negate it
    return -decode_time(s)


@dataclass
class Rule:
    name: str
    offset: int     # Seconds east of UT
    month: int = 0  # 0=January
    week: int = 1   # 1 <= week <= 5 (5 indicates 'last')
    day: int = 0    # 0=Sunday
    time: int = TIME_DEFAULT # Local time in seconds, may be negative or exceed 24 hours

    def __init__(self, name: str, offset: int, expr: str = None):
        self.name = name.strip('<>')
        self.offset = offset
        if expr is None:
            return
        m = re.fullmatch(r'M(\d+)\.(\d+)\.(\d+)(?:/(.+))?', expr)
        if not m:
            raise ValueError(f'Unsupported rule "{expr}"')
        g = m.groups()
        self.month = int(g[0]) - 1
        self.week = int(g[1])
        self.day = int(g[2])
        if g[3]:
            # Note: POSIX says non-negative, but Scoresbysund and Nuuk both violate this
            self.time = decode_time(g[3])
        if not (0 <= self.month < 12 and 1 <= self.week <= 5 and 0 <= self.day <= 6):
            raise ValueError(f'Invalid rule "{expr}"')

    def get_transition_rule(self, standard: ZoneOffset, before: ZoneOffset, after: ZoneOffset) -> TransitionRule:
        """Express as a rule taking effect at local wall time"""
        dom = -1 if self.week == 5 else (self.week - 1) * 7 + 1
        dow = self.day or 7
        secs = self.time
        end_of_day = secs == 86400
        if end_of_day:
            secs = 0
        else:
            # Times outside the day move the rule to a neighbouring day
            days, secs = divmod(secs, 86400)
            if days:
                dom += days
                dow = (dow - 1 + days) % 7 + 1
                if (dom < 0) != (dom - days < 0) or dom == 0:
                    raise ValueError(f'Cannot represent rule at {self.time} seconds for "{self.name}"')
        hours, secs = divmod(secs, 3600)
        return TransitionRule(
            month=self.month + 1,
            day_of_month=dom,
            day_of_week=dow,
            time=time(hours, secs // 60, secs % 60),
            time_end_of_day=end_of_day,
            time_definition=TimeDefinition.WALL,
            standard_offset=standard,
            offset_before=before,
            offset_after=after,
        )


@dataclass
class RulePair:
    std: Rule
    dst: Rule | None

    def transition_rules(self) -> list[TransitionRule]:
        """Get recurring rules in calendar order, empty if daylight time isn't used"""
        if not self.dst:
            return []
        std_offset = ZoneOffset(self.std.offset)
        dst_offset = ZoneOffset(self.dst.offset)
        # Transition to daylight time is given by dst rule, and back again by std rule
        rules = [
            self.dst.get_transition_rule(std_offset, std_offset, dst_offset),
            self.std.get_transition_rule(std_offset, dst_offset, std_offset),
        ]
        return sorted(rules, key=lambda r: r.month)


def decode_tzstr(tzstr: str) -> RulePair:
    if tzstr.startswith(':'):
        tzstr = tzstr[1:]
    m = re.fullmatch(r'''
        (<[^>]+>|[a-zA-Z]+)([\d:\-+]+)      # std offset
        (<[^>]+>|[a-zA-Z]+)?([\d:\-+]+)?    # [ dst [offset]
        (?:,([^,]+),([^,]+))?               # [ , date [ / time ] , date [ / time ] ]
        ''', tzstr, flags=re.VERBOSE)
    if not m:
        raise ValueError(f'Invalid TZ string "{tzstr}"')
    g = m.groups()
    try:
        std = Rule(g[0], decode_offset(g[1]), g[5])
        if g[2]:
            if g[3]:
                offset = decode_offset(g[3])
            else:
                offset = std.offset + DST_OFFSET_DEFAULT
            dst = Rule(g[2], offset, g[4])
            if not g[4]:
                raise ValueError('Missing daylight time rules')
        else:
            dst = None
    except ValueError as e:
        raise ValueError(f'Invalid TZ string "{tzstr}": {e}') from e
    return RulePair(std, dst)
