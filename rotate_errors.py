#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Error types and stderr status lines shared by the outrotate modules.
"""

import sys
from datetime import datetime

# ---------- Status output ----------

QUIET = False

def human_ts():
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")

def log_msg(msg: str, error: bool = False):
    if QUIET and not error:
        return
    sys.stderr.write(f"[{human_ts()}] {msg}\n")
    sys.stderr.flush()

# ---------- Errors ----------

class OutrotateError(Exception):
    """Base class for everything that should stop a run with a clear message."""


class SpawnError(OutrotateError):
    def __init__(self, command: str, cause: BaseException):
        self.command = command
        self.cause = cause
        super().__init__(f"failed to start '{command}': {cause}")


class FileLocked(OutrotateError):
    def __init__(self, path):
        self.path = path
        super().__init__(
            f"Log file `{path}` is locked, maybe there's another outrotate instance running")


class InvalidFileName(OutrotateError):
    def __init__(self, raw: bytes):
        self.raw = raw
        super().__init__(f"Filename includes invalid unicode data: {raw!r}")


class LogIOError(OutrotateError):
    '''
    An OSError raised while reading, rotating or writing one stream,
    tagged with what was being done and to which file.
    '''
    def __init__(self, operation: str, path, cause: OSError):
        self.operation = operation
        self.path = path
        self.cause = cause
        super().__init__(f"{operation} {path}: {cause}")


def format_error(e: BaseException) -> str:
    name = e.__class__.__name__
    msg = str(e).strip()
    return f"{name}: {msg}" if msg else name
