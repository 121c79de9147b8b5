#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Backup file naming for one log file family.

A destination file `N` keeps its rotated generations next to it as `N.<g>`
or `N.<g>.gz`, where g=1 is the most recent predecessor.  Suffixes are
zero padded to a width chosen once per rotation pass; older files keep
whatever width they were given when they were last renamed.
"""

import re
from typing import Iterable, List, Optional, Tuple

import natsort


def matcher(base_name: str) -> Tuple[re.Pattern, re.Pattern]:
    prefix = re.escape(base_name + ".")
    return (re.compile(r"^" + prefix + r"(\d+)$"),
            re.compile(r"^" + prefix + r"(\d+)\.gz$"))


def format_suffix(number: int, width: int) -> str:
    return str(number).rjust(width, "0")


class BackupNamer:
    '''
    Builds and recognizes backup names for a single base name.
    '''
    def __init__(self, base_name: str):
        self.base_name = base_name
        self.plain_re, self.gz_re = matcher(base_name)

    def parse_generation(self, file_name: str) -> Optional[Tuple[int, bool]]:
        '''
        Return (generation, is_compressed) or None when the name is not ours.
        '''
        m = self.gz_re.match(file_name)
        if m:
            return int(m.group(1)), True
        m = self.plain_re.match(file_name)
        if m:
            return int(m.group(1)), False
        return None

    def name_for(self, generation: int, width: int, compressed: bool) -> str:
        name = f"{self.base_name}.{format_suffix(generation, width)}"
        return name + ".gz" if compressed else name

    def backups(self, names: Iterable[str]) -> List[Tuple[str, int, bool]]:
        '''
        Pick the backups out of a directory listing, oldest generation first.
        '''
        found = []
        for name in natsort.natsorted(names, reverse=True):
            parsed = self.parse_generation(name)
            if parsed is None:
                continue
            found.append((name, parsed[0], parsed[1]))
        return found
