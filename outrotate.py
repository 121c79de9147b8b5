#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
outrotate — run a command and keep its stdout / stderr in size-rotated log files.

  outrotate --stdout-logfile app.log --stdout-logfile-max-mb 100 \\
            --stdout-logfile-backups 5 --compress-stdout-logfile-backups \\
            -- myserver --port 8080

Without --stderr-logfile the command's stderr is merged into the stdout log.
Backups are kept next to the log as app.log.1, app.log.2, ... (.gz when
compressed), app.log.1 being the most recent.
"""

import argparse
import os
import sys
from typing import List, Optional, Tuple

import rotate_errors
from cmd_source import run_cmd
from redirect import StreamConfig, redirect_stdout_stderr
from rotate_errors import OutrotateError, format_error, log_msg

MB = 1 << 20

def _non_negative_int(s: str) -> int:
    try:
        v = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a non-negative number, got: {s}")
    if v < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative number, got: {s}")
    return v

def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="outrotate",
        description="Rotate your stdout / stderr: run a command and write its output to rotating log files.",
        formatter_class=argparse.RawDescriptionHelpFormatter)
    for stream in ("stdout", "stderr"):
        ap.add_argument(f"--{stream}-logfile", required=(stream == "stdout"), metavar="PATH",
                        help=f"Put process {stream} output in this file.")
        ap.add_argument(f"--{stream}-logfile-max-mb", type=_non_negative_int, default=0, metavar="N",
                        help=f"The maximum number of MB that may be consumed by --{stream}-logfile "
                             "before it is rotated (0 disables rotation).")
        ap.add_argument(f"--{stream}-logfile-backups", type=_non_negative_int, default=0, metavar="N",
                        help=f"The number of --{stream}-logfile backups to keep. If set to 0, no backups will be kept.")
        ap.add_argument(f"--compress-{stream}-logfile-backups", action="store_true",
                        help=f"Compress all --{stream}-logfile backups by gzip.")
    ap.add_argument("-w", "--cwd", default=None, help="Working directory for the command.")
    ap.add_argument("-v", "--env", action="append", default=[], help="Env var KEY=VALUE to add (can repeat).")
    ap.add_argument("-q", "--quiet", action="store_true", help="Only report errors on stderr.")
    ap.add_argument("command", nargs=argparse.REMAINDER, help="Command to run, followed by its arguments.")
    return ap

def parse_flags(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = _build_parser()
    args = ap.parse_args(argv)

    if args.command and args.command[0] == "--":
        args.command = args.command[1:]
    if not args.command:
        ap.error("a command to run is required")

    if args.stderr_logfile is None and (args.stderr_logfile_max_mb or args.stderr_logfile_backups
                                        or args.compress_stderr_logfile_backups):
        ap.error("--stderr-logfile-* options require --stderr-logfile")

    env = os.environ.copy()
    for kv in args.env:
        if "=" not in kv:
            ap.error(f"--env expects KEY=VALUE, got: {kv}")
        k, v = kv.split("=", 1)
        env[k] = v
    args.environ = env
    return args

def build_configs(args: argparse.Namespace) -> Tuple[StreamConfig, Optional[StreamConfig]]:
    stdout_cfg = StreamConfig(args.stdout_logfile, args.stdout_logfile_max_mb * MB,
                              args.stdout_logfile_backups, args.compress_stdout_logfile_backups)
    if args.stderr_logfile is None:
        return stdout_cfg, None
    if os.path.abspath(args.stderr_logfile) == os.path.abspath(args.stdout_logfile):
        log_msg("stderr log file is the stdout log file; merging stderr into stdout.")
        return stdout_cfg, None
    stderr_cfg = StreamConfig(args.stderr_logfile, args.stderr_logfile_max_mb * MB,
                              args.stderr_logfile_backups, args.compress_stderr_logfile_backups)
    return stdout_cfg, stderr_cfg

def run(argv: Optional[List[str]] = None) -> int:
    args = parse_flags(argv)
    rotate_errors.QUIET = args.quiet
    stdout_cfg, stderr_cfg = build_configs(args)

    try:
        proc, stdout, stderr = run_cmd(args.command[0], args.command[1:],
                                       separate_stderr=stderr_cfg is not None,
                                       cwd=args.cwd, env=args.environ)
        redirect_stdout_stderr(proc, stdout, stderr, stdout_cfg, stderr_cfg)
    except OutrotateError as e:
        log_msg(f"ERROR: {format_error(e)}", error=True)
        return 1
    log_msg("Done.")
    return 0

if __name__ == "__main__":
    sys.exit(run())
