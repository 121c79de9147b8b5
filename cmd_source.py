#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Start the supervised command with its output wired to pipes.
"""

import subprocess
from typing import Dict, List, Optional

from rotate_errors import SpawnError, log_msg


def run_cmd(command: str, args: List[str], separate_stderr: bool,
            cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None):
    '''
    Spawn `command args...` with stdin closed.

    Returns (process, stdout, stderr).  Without separate_stderr the child's
    stderr shares the stdout pipe and the returned stderr is None.
    '''
    argv = [command] + list(args)
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE if separate_stderr else subprocess.STDOUT,
            cwd=cwd,
            env=env,
        )
    except OSError as e:
        raise SpawnError(command, e) from e
    log_msg(f"Started '{' '.join(argv)}' as pid {proc.pid}")
    return proc, proc.stdout, proc.stderr
