#!/usr/bin/python3
#
# Compare two time-zone rule databases.
#
# Reports zone identifiers present in only one of the databases, and zones whose
# rules differ. With a single database path the comparison is made against the
# locally installed zoneinfo.
#

from __future__ import annotations
import sys
from argparse import ArgumentParser, SUPPRESS
from dataclasses import dataclass, field
from tzcodec import FormatError, DecodeError, UnknownZoneError
from tzdat import TimeZoneDatabase, load_file, dump_file
import tzdb
from tzsystem import load_system
from tzrules import ZoneRules


@dataclass
class IdDiff:
    extra_in_a: list[str]
    extra_in_b: list[str]

    @property
    def identical(self) -> bool:
        return not self.extra_in_a and not self.extra_in_b


@dataclass
class RuleDelta:
    """Zone whose rules differ; a side which couldn't be decoded holds the exception instead"""
    zone_id: str
    rules_a: ZoneRules | Exception
    rules_b: ZoneRules | Exception

    @property
    def has_error(self) -> bool:
        return isinstance(self.rules_a, Exception) or isinstance(self.rules_b, Exception)


@dataclass
class RuleDiff:
    equal: list[str] = field(default_factory=list)
    differing: list[RuleDelta] = field(default_factory=list)

    @property
    def ids(self) -> list[str]:
        return [d.zone_id for d in self.differing]

    @property
    def errors(self) -> list[str]:
        return [d.zone_id for d in self.differing if d.has_error]


@dataclass
class DatabaseDiff:
    ids: IdDiff
    rules: RuleDiff


def diff_ids(a: TimeZoneDatabase, b: TimeZoneDatabase) -> IdDiff:
    ids_a = a.zone_ids()
    ids_b = b.zone_ids()
    return IdDiff(sorted(ids_a - ids_b), sorted(ids_b - ids_a))


def get_rules(db: TimeZoneDatabase, zone_id: str) -> ZoneRules | Exception:
    try:
        return db.rules(zone_id)
    except (UnknownZoneError, DecodeError) as e:
        return e


def diff_rules(a: TimeZoneDatabase, b: TimeZoneDatabase, zone_ids: set[str] = None) -> RuleDiff:
    """Compare rules for zones present in both databases

    A zone which fails to decode on either side is reported as differing. A zone
    with no rules on either side counts as equal.
    If zone_ids is given, only those zones are compared.
    """
    res = RuleDiff()
    common = a.zone_ids() & b.zone_ids()
    if zone_ids is not None:
        common &= zone_ids
    for zone_id in sorted(common):
        rules_a = get_rules(a, zone_id)
        rules_b = get_rules(b, zone_id)
        if isinstance(rules_a, ZoneRules) and rules_a == rules_b:
            res.equal.append(zone_id)
        elif isinstance(rules_a, UnknownZoneError) and isinstance(rules_b, UnknownZoneError):
            # Listed on both sides without rules
            res.equal.append(zone_id)
        else:
            res.differing.append(RuleDelta(zone_id, rules_a, rules_b))
    return res


def diff(a: TimeZoneDatabase, b: TimeZoneDatabase, zone_ids: set[str] = None) -> DatabaseDiff:
    return DatabaseDiff(diff_ids(a, b), diff_rules(a, b, zone_ids))


def print_diff(result: DatabaseDiff, names: tuple[str, str], file=sys.stdout):
    def out(s: str = ''):
        print(s, file=file)

    def transitions_str(rules: ZoneRules | Exception) -> str:
        if isinstance(rules, Exception):
            return f'Error: {rules}'
        return f'[{", ".join(str(t) for t in rules.transitions)}]'

    ids = result.ids
    if ids.extra_in_a:
        out(f'\tExtra regionId(s) in {names[0]}: {", ".join(ids.extra_in_a)}')
    if ids.extra_in_b:
        out(f'\tExtra regionId(s) in {names[1]}: {", ".join(ids.extra_in_b)}')
    if ids.identical:
        out('\tTwo regionIds are identical')

    out(f'IDs whose rules differ: {", ".join(result.rules.ids)}')
    for delta in result.rules.differing:
        out(f'id: {delta.zone_id}')
        out(f'\t{transitions_str(delta.rules_a)}')
        out(f'\t{transitions_str(delta.rules_b)}')


def load_system_database(source: str | None) -> TimeZoneDatabase:
    if source:
        tzdb.ZONEINFO_PATH = source
    return load_system()


def compare(args) -> int:
    if len(args.paths) > 2:
        print('At most two databases may be compared', file=sys.stderr)
        return 2
    try:
        tzdbs = [load_file(path) for path in args.paths]
        names = list(args.paths)
        if len(tzdbs) == 1:
            tzdbs.append(load_system_database(args.source))
            names.append('system')
    except (OSError, FormatError) as e:
        print(f'Unable to load TZDB time-zone rules: {e}', file=sys.stderr)
        return 1

    zone_ids = None
    if args.zone:
        known = sorted(tzdbs[0].zone_ids() | tzdbs[1].zone_ids())
        zone_ids = set()
        for s in args.zone:
            matches = tzdb.find_matches(known, s)
            if not matches:
                print(f"{s} doesn't match any known timezone names", file=sys.stderr)
                return 1
            zone_ids |= set(matches)

    for name, db in zip(names, tzdbs):
        print(f'{name} ver: {db.version_id}')

    result = diff(*tzdbs, zone_ids)
    print_diff(result, names)
    return 0


def compile_system(args) -> int:
    db = load_system_database(args.source)
    try:
        dump_file(db, args.output)
    except (OSError, ValueError) as e:
        print(f'Unable to write {args.output}: {e}', file=sys.stderr)
        return 1
    print(f'Wrote {len(db)} zones, version {db.version_id}, to {args.output}')
    return 0


def main(argv: list[str] = None) -> int:
    parser = ArgumentParser(description='Compare tzdb.dat time-zone rule databases')
    source_help = 'Optional path to compiled zoneinfo, overrides python zoneinfo settings'
    parser.add_argument('--source', help=source_help)
    parser.set_defaults(func=None)
    subparsers = parser.add_subparsers()

    sub = subparsers.add_parser('diff', help='Compare two databases, or one database against the local system')
    sub.add_argument('paths', nargs='+', metavar='PATH', help='tzdb.dat file, or directory containing one')
    sub.add_argument('--zone', action='append', help='Only compare zone(s) matching name, e.g. "Europe/London" or "eur", may be repeated')
    # Also accepted after the command; only set when given
    sub.add_argument('--source', default=SUPPRESS, help=source_help)
    sub.set_defaults(func=compare)

    sub = subparsers.add_parser('compile', help='Write local system zoneinfo as a tzdb.dat file')
    sub.add_argument('output', help='File or directory to write')
    sub.add_argument('--source', default=SUPPRESS, help=source_help)
    sub.set_defaults(func=compile_system)

    args = parser.parse_args(argv)
    if not args.func:
        parser.print_help()
        return 2
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
