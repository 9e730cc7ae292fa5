"""
Locate the compiled IANA timezone database on the local system
"""

import os
import re
from importlib import resources

# File containing compact textual source of IANA database, with version
TZDATA_ZI = 'tzdata.zi'

# The default cached path for zone information
ZONEINFO_PATH = None

ZONE_AREAS = [
    'Africa',
    'America',
    'Antarctica',
    'Arctic',
    'Asia',
    'Atlantic',
    'Australia',
    'Etc',
    'Europe',
    'Indian',
    'Pacific',
]


# Normalise path on Windows, backslashes are problematic
def normalise_path(path: str):
    return str(path).replace('\\', '/')


def find_zoneinfo_path():
    global ZONEINFO_PATH
    if ZONEINFO_PATH:
        return
    # Search list of standard directories
    import zoneinfo
    for path in zoneinfo.TZPATH:
        if os.path.exists(os.path.join(path, 'GMT')):
            ZONEINFO_PATH = normalise_path(path)
            return
    # Last resort, use tzdata package
    ZONEINFO_PATH = normalise_path(resources.files('tzdata') / 'zoneinfo')


def get_zoneinfo_path() -> str:
    if not ZONEINFO_PATH:
        find_zoneinfo_path()
    return ZONEINFO_PATH


def get_zoneinfo_version(zoneinfo_path: str = None) -> str:
    if not zoneinfo_path:
        zoneinfo_path = get_zoneinfo_path()
    for name in ['version', TZDATA_ZI]:
        filename = os.path.join(zoneinfo_path, name)
        if not os.path.exists(filename):
            continue
        with open(filename) as f:
            # Either just '2024a', or first line looks like '# version 2024a'
            return f.readline().strip().rpartition(' ')[2]
    return '0000x'


class ZoneList(list):
    def __init__(self, zoneinfo_path: str = None):
        if not zoneinfo_path:
            zoneinfo_path = get_zoneinfo_path()
        self.version = get_zoneinfo_version(zoneinfo_path)
        zones = set()
        for area in ZONE_AREAS:
            for root, _, names in os.walk(os.path.join(zoneinfo_path, area)):
                for name in names:
                    if '.' in name: # tzdata package has non-TZif files here
                        continue
                    path = os.path.join(root, name)
                    zones.add(normalise_path(os.path.relpath(path, zoneinfo_path)))
        self.extend(sorted(zones))


def find_matches(zones: list[str], name: str) -> list[str]:
    """Find zones matching name, ignoring case and punctuation other than signs

    An exact match returns only that zone, otherwise all zones starting with name.
    """
    def get_cmpstr(s: str):
        return re.sub(r'[^a-z0-9+-]', '', s.lower())
    matches = []
    cmp_name = get_cmpstr(name)
    for z in zones:
        cmpz = get_cmpstr(z)
        if cmpz == cmp_name:
            return [z] # Exact match
        if cmpz.startswith(cmp_name):
            matches.append(z) # Partial match
    return matches
