#!/usr/bin/env python3
'''
Tests for the rotation policy, the directory lock and the rotation engine.
'''

import gzip
import os
import tempfile
import unittest
from unittest import mock
from pathlib import Path

from rotate_errors import InvalidFileName
from rotator import ROTATE_LOCK_NAME, RotationEngine, RotationLock, gzip_file, should_rotate


class TestPolicy(unittest.TestCase):
    '''
    Tests for should_rotate
    '''
    def test_unlimited(self):
        '''
        A zero limit never rotates
        '''
        for current, incoming in ((0, 0), (10, 10), (1 << 40, 1 << 20)):
            self.assertFalse(should_rotate(current, incoming, 0))

    def test_threshold(self):
        '''
        Rotate only when the line would push the file past the limit
        '''
        for current in range(0, 12):
            for incoming in range(0, 12):
                self.assertEqual(should_rotate(current, incoming, 10), current + incoming > 10)

    def test_oversized_line(self):
        '''
        A line longer than the limit still asks for a rotation
        '''
        self.assertTrue(should_rotate(0, 11, 10))


class _DirTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.dest = self.dir / "app.log"

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, name, data):
        (self.dir / name).write_bytes(data)

    def read(self, name):
        return (self.dir / name).read_bytes()

    def names(self):
        return sorted(os.listdir(self.dir))


class TestRotationLock(_DirTestCase):
    '''
    Tests for RotationLock
    '''
    def test_exclusive(self):
        '''
        A second acquire fails until the first is released
        '''
        first = RotationLock(self.dir)
        second = RotationLock(self.dir)
        self.assertTrue(first.acquire())
        self.assertTrue((self.dir / ROTATE_LOCK_NAME).exists())
        self.assertFalse(second.acquire())
        first.release()
        self.assertFalse((self.dir / ROTATE_LOCK_NAME).exists())
        self.assertTrue(second.acquire())
        second.release()

    def test_failed_pid_write(self):
        '''
        A sentinel we created is removed even when writing into it fails
        '''
        def broken_fdopen(fd, *args, **kwds):
            os.close(fd)
            raise OSError(28, "No space left on device")

        with mock.patch("rotator.os.fdopen", side_effect=broken_fdopen):
            with self.assertRaises(OSError):
                with RotationLock(self.dir):
                    self.fail("lock body should not run")
        self.assertFalse((self.dir / ROTATE_LOCK_NAME).exists())
        self.assertTrue(RotationLock(self.dir).acquire())

    def test_release_without_acquire(self):
        '''
        Releasing a lock we never got leaves the sentinel alone
        '''
        self.write(ROTATE_LOCK_NAME, b"")
        with RotationLock(self.dir) as lock:
            self.assertFalse(lock.acquired)
        self.assertTrue((self.dir / ROTATE_LOCK_NAME).exists())


class TestRotationEngine(_DirTestCase):
    '''
    Tests for RotationEngine
    '''
    def test_first_rotation(self):
        '''
        The live file becomes generation 1
        '''
        self.write("app.log", b"live\n")
        self.assertTrue(RotationEngine(self.dest, 3, False).rotate())
        self.assertEqual(self.names(), ["app.log.1"])
        self.assertEqual(self.read("app.log.1"), b"live\n")

    def test_shift(self):
        '''
        Every generation moves up by one
        '''
        self.write("app.log", b"live\n")
        self.write("app.log.1", b"one\n")
        self.write("app.log.2", b"two\n")
        self.write("other.log.1", b"other\n")
        RotationEngine(self.dest, 3, False).rotate()
        self.assertEqual(self.names(), ["app.log.1", "app.log.2", "app.log.3", "other.log.1"])
        self.assertEqual(self.read("app.log.1"), b"live\n")
        self.assertEqual(self.read("app.log.2"), b"one\n")
        self.assertEqual(self.read("app.log.3"), b"two\n")

    def test_retention(self):
        '''
        Generations beyond the backup count are removed, with no gaps left
        '''
        self.write("app.log", b"live\n")
        self.write("app.log.1", b"one\n")
        self.write("app.log.2", b"two\n")
        RotationEngine(self.dest, 2, False).rotate()
        self.assertEqual(self.names(), ["app.log.1", "app.log.2"])
        self.assertEqual(self.read("app.log.1"), b"live\n")
        self.assertEqual(self.read("app.log.2"), b"one\n")

    def test_no_backups(self):
        '''
        With zero backups the live file is simply removed
        '''
        self.write("app.log", b"live\n")
        self.write("app.log.1", b"stale\n")
        RotationEngine(self.dest, 0, False).rotate()
        self.assertEqual(self.names(), [])

    def test_compress(self):
        '''
        Uncompressed files are gzipped on the way up, gzipped ones stay gzipped
        '''
        self.write("app.log", b"live\n")
        self.write("app.log.1", b"one\n")
        with gzip.open(self.dir / "app.log.2.gz", "wb") as f:
            f.write(b"two\n")
        RotationEngine(self.dest, 5, True).rotate()
        self.assertEqual(self.names(), ["app.log.1.gz", "app.log.2.gz", "app.log.3.gz"])
        with gzip.open(self.dir / "app.log.1.gz", "rb") as f:
            self.assertEqual(f.read(), b"live\n")
        with gzip.open(self.dir / "app.log.2.gz", "rb") as f:
            self.assertEqual(f.read(), b"one\n")
        with gzip.open(self.dir / "app.log.3.gz", "rb") as f:
            self.assertEqual(f.read(), b"two\n")

    def test_gz_kept_without_compress(self):
        '''
        Turning compression off does not decompress older backups
        '''
        self.write("app.log", b"live\n")
        with gzip.open(self.dir / "app.log.1.gz", "wb") as f:
            f.write(b"one\n")
        RotationEngine(self.dest, 5, False).rotate()
        self.assertEqual(self.names(), ["app.log.1", "app.log.2.gz"])

    def test_padding_per_pass(self):
        '''
        The suffix width comes from the highest generation of the pass
        and is applied to every file renamed in it
        '''
        self.write("app.log", b"live\n")
        for g in range(1, 10):
            self.write(f"app.log.{g}", f"{g}\n".encode())
        RotationEngine(self.dest, 20, False).rotate()
        expected = ["app.log.%02d" % g for g in range(1, 11)]
        self.assertEqual(self.names(), expected)
        self.assertEqual(self.read("app.log.01"), b"live\n")
        self.assertEqual(self.read("app.log.10"), b"9\n")

    def test_padding_counts_dropped_generation(self):
        '''
        The width is taken before retention drops the oldest file, so a
        full set of nine backups is written two digits wide
        '''
        self.write("app.log", b"live\n")
        for g in range(1, 10):
            self.write(f"app.log.{g}", f"{g}\n".encode())
        RotationEngine(self.dest, 9, False).rotate()
        self.assertEqual(self.names(), ["app.log.%02d" % g for g in range(1, 10)])
        self.write("app.log", b"again\n")
        RotationEngine(self.dest, 9, False).rotate()
        self.assertEqual(self.names(), ["app.log.%02d" % g for g in range(1, 10)])
        self.assertEqual(self.read("app.log.01"), b"again\n")
        self.assertEqual(self.read("app.log.02"), b"live\n")
        self.assertEqual(self.read("app.log.09"), b"7\n")

    def test_lock_held(self):
        '''
        A held directory lock skips the pass without touching anything
        '''
        self.write("app.log", b"live\n")
        self.write("app.log.1", b"one\n")
        self.write(ROTATE_LOCK_NAME, b"")
        self.assertFalse(RotationEngine(self.dest, 3, False).rotate())
        self.assertEqual(self.names(), ["app.log", "app.log.1", ROTATE_LOCK_NAME])

    def test_lock_released(self):
        '''
        The sentinel is gone after a pass
        '''
        self.write("app.log", b"live\n")
        RotationEngine(self.dest, 1, False).rotate()
        self.assertFalse((self.dir / ROTATE_LOCK_NAME).exists())

    def test_missing_live_file(self):
        '''
        Filesystem errors propagate and the lock is still released
        '''
        with self.assertRaises(FileNotFoundError):
            RotationEngine(self.dest, 1, False).rotate()
        self.assertFalse((self.dir / ROTATE_LOCK_NAME).exists())

    def test_invalid_file_name(self):
        '''
        An undecodable name in the directory fails the pass
        '''
        self.write("app.log", b"live\n")
        try:
            with open(os.path.join(os.fsencode(self.dir), b"bad-\xff\xfe"), "wb"):
                pass
        except OSError:
            self.skipTest("filesystem does not accept non-UTF-8 names")
        with self.assertRaises(InvalidFileName) as ctx:
            RotationEngine(self.dest, 1, False).rotate()
        self.assertEqual(ctx.exception.raw, b"bad-\xff\xfe")
        self.assertTrue(self.dest.exists())


class TestGzip(_DirTestCase):
    '''
    Tests for gzip_file
    '''
    def test_roundtrip(self):
        '''
        The gzip copy decodes to the source bytes and the source is left alone
        '''
        data = b"".join(b"line %d\n" % i for i in range(1000))
        self.write("src", data)
        gzip_file(self.dir / "src", self.dir / "dst.gz")
        with gzip.open(self.dir / "dst.gz", "rb") as f:
            self.assertEqual(f.read(), data)
        self.assertEqual(self.read("src"), data)


if __name__ == '__main__':
    unittest.main()
