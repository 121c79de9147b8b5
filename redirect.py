#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Per-stream redirect workers and the supervisor that runs them.

Each worker owns one input byte stream and one destination log file.  The
destination is held under an exclusive flock for the worker's whole life,
so a second outrotate pointed at the same file fails fast with FileLocked
instead of interleaving output.
"""

import fcntl
import os
import threading
from collections import namedtuple
from pathlib import Path
from typing import IO, List, Optional

from rotate_errors import FileLocked, LogIOError, OutrotateError, format_error, log_msg
from rotator import RotationEngine, decode_name, should_rotate

StreamConfig = namedtuple('StreamConfig', ['path', 'max_bytes', 'backups', 'compress'])

def _try_lock_exclusive(fp) -> bool:
    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True

# ---------- Worker ----------

class LogFileRedirectWorker:
    def __init__(self, src: IO[bytes], config: StreamConfig, name: str = "stdout"):
        self.src = src
        self.name = name
        self.dest_file_path = Path(config.path)
        self.dest_dir = self.dest_file_path.parent
        self.dest_file_name = decode_name(os.fsencode(self.dest_file_path.name))
        self.max_bytes = max(0, config.max_bytes)
        self.backups = max(0, config.backups)
        self.compress = bool(config.compress)
        self.engine = RotationEngine(self.dest_file_path, self.backups, self.compress)
        self.error: Optional[BaseException] = None

        try:
            self.dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LogIOError("create directory", self.dest_dir, e) from e
        self.dest = self._open_locked()
        self.size = os.fstat(self.dest.fileno()).st_size

    def __repr__(self):
        return (f"LogFileRedirectWorker(dest_file_path={self.dest_file_path}, "
                f"dest_dir={self.dest_dir}, dest_file_name={self.dest_file_name}, "
                f"backups={self.backups}, max_bytes={self.max_bytes}, size={self.size})")

    def _open_locked(self):
        # Append mode first: nothing is truncated until the lock is ours.
        try:
            fp = open(self.dest_file_path, "ab")
        except OSError as e:
            raise LogIOError("open", self.dest_file_path, e) from e
        try:
            locked = _try_lock_exclusive(fp)
        except OSError as e:
            fp.close()
            raise LogIOError("lock", self.dest_file_path, e) from e
        if not locked:
            fp.close()
            raise FileLocked(self.dest_file_path)
        return fp

    def _readline(self) -> bytes:
        try:
            return self.src.readline()
        except OSError as e:
            raise LogIOError("read", self.name, e) from e

    def _write(self, line: bytes):
        try:
            self.dest.write(line)
            self.dest.flush()
        except OSError as e:
            raise LogIOError("write", self.dest_file_path, e) from e
        self.size += len(line)

    def rotate(self):
        '''
        Rotate the family and start over with an empty, freshly locked
        destination.  The destination is recreated even when the pass was
        skipped because of a concurrent rotation.
        '''
        try:
            rotated = self.engine.rotate()
        except OSError as e:
            raise LogIOError("rotate", self.dest_file_path, e) from e
        self.close()
        self.dest = self._open_locked()
        try:
            self.dest.truncate(0)
        except OSError as e:
            raise LogIOError("truncate", self.dest_file_path, e) from e
        self.size = 0
        if rotated:
            log_msg(f"Rotated {self.dest_file_path}")

    def run(self):
        try:
            for line in iter(self._readline, b""):
                if should_rotate(self.size, len(line), self.max_bytes):
                    self.rotate()
                self._write(line)
        finally:
            # Dropping the read end lets a child still writing hit EPIPE
            # instead of blocking forever on a full pipe.
            self.close_src()
            self.close()

    def close(self):
        if self.dest is not None:
            self.dest.close()
            self.dest = None

    def close_src(self):
        close = getattr(self.src, "close", None)
        if close is not None:
            close()

    def _work(self):
        try:
            self.run()
        except Exception as e:
            self.error = e
            log_msg(f"Worker error ({self.name}): {format_error(e)}", error=True)

    def spawn(self) -> threading.Thread:
        t = threading.Thread(target=self._work, name=f"outrotate-{self.name}")
        t.start()
        return t

# ---------- Supervisor ----------

def _close_streams(*streams):
    for stream in streams:
        if stream is not None:
            stream.close()

def redirect_stdout_stderr(process, stdout: IO[bytes], stderr: Optional[IO[bytes]],
                           stdout_config: StreamConfig,
                           stderr_config: Optional[StreamConfig] = None) -> int:
    '''
    Drain the child's streams into their log files until it exits.

    Returns the child's exit status, or raises the first error any worker
    hit once every worker has finished.
    '''
    workers: List[LogFileRedirectWorker] = []
    try:
        workers.append(LogFileRedirectWorker(stdout, stdout_config, "stdout"))
        if stderr is not None:
            workers.append(LogFileRedirectWorker(stderr, stderr_config, "stderr"))
    except OutrotateError:
        for w in workers:
            w.close()
        process.kill()
        process.wait()
        _close_streams(stdout, stderr)
        raise

    for w in workers:
        extra = ", gzip" if w.compress else ""
        limit = f"max {w.max_bytes} bytes" if w.max_bytes else "unlimited"
        log_msg(f"{w.name} -> {w.dest_file_path} ({limit}, {w.backups} backups{extra})")

    threads = [w.spawn() for w in workers]
    returncode = process.wait()
    log_msg(f"Process {process.pid} exited with status {returncode}")
    for t in threads:
        t.join()
    _close_streams(stdout, stderr)

    for w in workers:
        if w.error is not None:
            raise w.error
    return returncode
