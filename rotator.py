#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Size-based rotation of one log file family.

A rotation pass shifts every backup `N.<g>` up to `N.<g+1>` (highest
generation first so no two files ever compete for a name), deletes
anything that would land beyond the retention count, gzips on the way
when asked to, and finally moves the live file `N` itself to `N.1`.
The pass runs under a directory scoped `rotate.lock` sentinel; when another
process already holds it the pass is skipped, not waited for.
"""

import gzip
import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from backups import BackupNamer
from rotate_errors import InvalidFileName

ROTATE_LOCK_NAME = "rotate.lock"

# ---------- Policy ----------

def should_rotate(current_size: int, incoming_length: int, max_size: int) -> bool:
    return max_size > 0 and current_size + incoming_length > max_size

# ---------- Helpers ----------

def decode_name(raw: bytes) -> str:
    try:
        return raw.decode(sys.getfilesystemencoding())
    except UnicodeDecodeError:
        raise InvalidFileName(raw) from None

def list_dir_names(directory: Path) -> List[str]:
    return [decode_name(raw) for raw in os.listdir(os.fsencode(directory))]

def gzip_file(src: Path, dst: Path):
    with open(src, "rb") as f_in, open(dst, "wb") as raw_out:
        with gzip.GzipFile(filename=dst.name, mode="wb", compresslevel=9, fileobj=raw_out) as f_out:
            shutil.copyfileobj(f_in, f_out, length=1024 * 1024)

# ---------- Rotation lock ----------

class RotationLock:
    '''
    Best-effort sentinel lock guarding the renames inside one directory.

    The file is created exclusively and removed on release.  acquire()
    never waits: it reports False when the sentinel already exists.
    '''
    def __init__(self, directory: Path):
        self.path = Path(directory) / ROTATE_LOCK_NAME
        self.acquired = False

    def acquire(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        # The sentinel is ours from here on, even if writing the pid fails.
        self.acquired = True
        with os.fdopen(fd, "w") as f:
            f.write(f"{os.getpid()}\n")
        return True

    def release(self):
        if not self.acquired:
            return
        self.acquired = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self):
        try:
            self.acquire()
        except OSError:
            self.release()
            raise
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

# ---------- Engine ----------

class RotationEngine:
    def __init__(self, dest_path: Path, backups: int, compress: bool):
        self.dest_path = Path(dest_path)
        self.dest_dir = self.dest_path.parent
        self.base_name = self.dest_path.name
        self.backups = max(0, backups)
        self.compress = compress
        self.namer = BackupNamer(self.base_name)

    def rotate(self) -> bool:
        '''
        Run one rotation pass.  Returns False when the pass was skipped
        because another rotation holds the directory lock.
        '''
        with RotationLock(self.dest_dir) as lock:
            if not lock.acquired:
                return False
            names = list_dir_names(self.dest_dir)
            # Width is fixed by the highest generation of this pass only.
            width: Optional[int] = None
            for name, generation, gzipped in self.namer.backups(names):
                if width is None:
                    width = len(str(generation + 1))
                self._shift(name, generation + 1, width, gzipped)
            self._shift(self.base_name, 1, width or 1, False)
        return True

    def _shift(self, name: str, new_generation: int, width: int, gzipped: bool):
        src = self.dest_dir / name
        if new_generation > self.backups:
            os.remove(src)
            return

        target = self.dest_dir / self.namer.name_for(
            new_generation, width, gzipped or self.compress)
        if self.compress and not gzipped:
            # The original only goes away once the gzip copy is complete.
            tmp = target.with_name(target.name + ".tmp")
            os.rename(src, tmp)
            gzip_file(tmp, target)
            os.remove(tmp)
        else:
            os.rename(src, target)
