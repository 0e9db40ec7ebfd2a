#! /usr/bin/env python3
'''
Output side of klogcat: the active log file, its byte accounting and the
numbered history that rotation maintains next to it.

The family for an output path looks like:

    kernel.log      active, newest
    kernel.log.1    previous
    ...
    kernel.log.N    oldest kept, N = max_rotated
'''

import errno
import glob
import os
import re
import stat
from typing import List, Optional

import natsort

from klogio import CaptureError, failure_retry, log

OPEN_FLAGS = os.O_WRONLY | os.O_APPEND | os.O_CREAT
OPEN_MODE = stat.S_IRUSR | stat.S_IWUSR
SHARED_MODE = 0o666
MAX_CHMOD_FAILURES = 10
STDOUT_FILENO = 1

# ---------- Output sink ----------

def open_log_file(path: str) -> int:
    try:
        return failure_retry(os.open, path, OPEN_FLAGS, OPEN_MODE)
    except OSError as e:
        raise CaptureError(f"couldn't open output file {path}", e.errno)


def initial_byte_count(path: str) -> int:
    try:
        return os.stat(path).st_size
    except FileNotFoundError:
        return 0


class OutputSink(object):
    '''
    The open active file plus the number of bytes written to it since the
    last rotation.  An empty path means standard output.
    '''
    def __init__(self, path: str, fd: int, byte_count: int = 0):
        self.path = path
        self.fd: Optional[int] = fd
        self.byte_count = byte_count

    @classmethod
    def open(cls, path: str) -> "OutputSink":
        if not path:
            return cls("", STDOUT_FILENO)
        fd = open_log_file(path)
        return cls(path, fd, initial_byte_count(path))

    @property
    def is_stdout(self) -> bool:
        return not self.path

    def write(self, data: bytes) -> int:
        view = memoryview(data)
        written = 0
        while written < len(view):
            try:
                written += failure_retry(os.write, self.fd, view[written:])
            except OSError as e:
                raise CaptureError("output error", e.errno)
        self.byte_count += written
        return written

    def close(self):
        fd, self.fd = self.fd, None
        if fd is None or self.is_stdout:
            return
        try:
            os.close(fd)
        except OSError as e:
            raise CaptureError(f"couldn't close output file {self.path}", e.errno)


class PermissionKeeper(object):
    '''
    Keeps the active file world read/writable.  Failures are tolerated up to
    a limit; past it the file system is assumed to be broken.
    '''
    def __init__(self, mode: int = SHARED_MODE, limit: int = MAX_CHMOD_FAILURES):
        self.mode = mode
        self.limit = limit
        self.failures = 0

    def apply(self, path: str):
        if not path:
            return
        try:
            os.chmod(path, self.mode)
        except OSError as e:
            self.failures += 1
            log(f"Error! chmod {path}: {e.strerror}, may be file system is corrupted "
                f"({self.failures}/{self.limit})", "ERROR")
            if self.failures > self.limit:
                raise CaptureError("Critical! Force stop logging", e.errno)

# ---------- Rotation ----------

def should_rotate(byte_count: int, rotate_kb: int) -> bool:
    return rotate_kb > 0 and byte_count // 1024 >= rotate_kb


def rotated_name(path: str, index: int) -> str:
    return path if index == 0 else f"{path}.{index}"


def family(path: str) -> List[str]:
    '''
    Existing numbered history files for path, oldest last.
    '''
    slot = re.compile(re.escape(path) + r"\.\d+$")
    names = [p for p in glob.glob(glob.escape(path) + ".*") if slot.match(p)]
    return natsort.natsorted(names)


def slot_of(name: str) -> int:
    return int(name.rsplit(".", 1)[1])


class RotationManager(object):
    def __init__(self, rotate_kb: int, max_rotated: int):
        self.rotate_kb = rotate_kb
        self.max_rotated = max(0, max_rotated)
        self.rotations = 0

    def should_rotate(self, sink: OutputSink, byte_count: Optional[int] = None) -> bool:
        '''
        Check byte_count against the threshold, or the sink's own count when
        byte_count is None.
        '''
        if sink.is_stdout:
            return False
        if byte_count is None:
            byte_count = sink.byte_count
        return should_rotate(byte_count, self.rotate_kb)

    def shift(self, path: str):
        for i in range(self.max_rotated, 0, -1):
            src = rotated_name(path, i - 1)
            dst = rotated_name(path, i)
            try:
                os.rename(src, dst)
            except OSError as e:
                if e.errno != errno.ENOENT:
                    log(f"while rotating log files, {src} -> {dst}: {e.strerror}", "ERROR")

    def prune(self, path: str):
        for name in family(path):
            if slot_of(name) <= self.max_rotated:
                continue
            try:
                os.unlink(name)
            except FileNotFoundError:
                pass
            except OSError as e:
                log(f"could not remove stale {name}: {e.strerror}", "ERROR")

    def rotate(self, sink: OutputSink) -> OutputSink:
        '''
        Close sink, shift the history one slot and hand back a fresh sink on
        the same path.  The old sink must not be used afterwards.
        '''
        if sink.is_stdout:
            return sink
        path = sink.path
        sink.close()

        if self.max_rotated:
            self.shift(path)
        else:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                log(f"while discarding {path}: {e.strerror}", "ERROR")
        self.prune(path)

        fresh = OutputSink(path, open_log_file(path))
        self.rotations += 1
        return fresh
