#! /usr/bin/env python3
'''
Reader for the kernel ring buffer device.

The device occasionally reports end of file without actually being done, so an
empty read closes and reopens it instead of ending the stream.  Chunks are
handed out as read; they can cut log records anywhere.
'''

import os
from typing import Iterator, Optional

from klogio import CaptureError, failure_retry, log

KMSG_PATH = "/proc/kmsg"
CHUNK_SIZE = 1024


class KernelSource(object):
    def __init__(self, path: str = KMSG_PATH, chunk_size: int = CHUNK_SIZE):
        self.path = path
        self.chunk_size = chunk_size
        self.fd: Optional[int] = None
        self.reopens = 0

    def __enter__(self):
        return self

    def __exit__(self, type, value, traceback): # pylint:disable=redefined-builtin
        self.close()

    def __iter__(self) -> Iterator[bytes]:
        while True:
            yield self.read_chunk()

    def open(self):
        try:
            self.fd = failure_retry(os.open, self.path, os.O_RDONLY)
        except OSError as e:
            raise CaptureError(f"Error! Open failed. {self.path}", e.errno)

    def close(self):
        if self.fd is not None:
            os.close(self.fd)
        self.fd = None

    def read_chunk(self) -> bytes:
        '''
        Block until the device has data and return up to chunk_size bytes of it.
        '''
        if self.fd is None:
            self.open()
        while True:
            try:
                data = failure_retry(os.read, self.fd, self.chunk_size)
            except OSError as e:
                self.close()
                raise CaptureError(f"Error! Read failed. {self.path}", e.errno)
            if data:
                return data
            log(f"Warn! Go to retry {self.path}", "WARNING")
            self.close()
            self.open()
            self.reopens += 1
