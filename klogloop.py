#! /usr/bin/env python3
'''
The capture loop.  Two strategies share the same rotation rules:

    kmsg   stream the ring buffer device chunk by chunk and count bytes as
           they are written
    dmesg  every period, drain the ring buffer with an external command
           appending to the output file, then measure the file

Both run until the process dies; a fatal condition surfaces as CaptureError.
'''

import os
import subprocess
import time
from collections import namedtuple
from typing import Callable, Optional

from klogio import CaptureError, log
from klogsink import (OutputSink, PermissionKeeper, RotationManager,
                      initial_byte_count)
from klogsource import KMSG_PATH, KernelSource

DEFAULT_PERIOD = 1.0
DEFAULT_DRAIN_CMD = ("dmesg", "-c")
BANNER = "\n--------- beginning of {path}\n"

CaptureConfig = namedtuple(
    'CaptureConfig',
    ['output_path', 'rotate_kb', 'max_rotated', 'mode', 'kmsg_path', 'period', 'drain_cmd'],
    defaults=('auto', KMSG_PATH, DEFAULT_PERIOD, DEFAULT_DRAIN_CMD))


class CaptureContext(object):
    '''
    Everything the loop owns: the active sink, rotation bookkeeping, the
    permission failure count and whether the start banner went out yet.
    '''
    def __init__(self, config: CaptureConfig):
        self.config = config
        self.sink = OutputSink.open(config.output_path)
        self.rotation = RotationManager(config.rotate_kb, config.max_rotated)
        self.permissions = PermissionKeeper()
        self.printed = False

    @property
    def path(self) -> str:
        return self.config.output_path

    def maybe_print_start(self):
        if self.printed:
            return
        self.printed = True
        self.sink.write(BANNER.format(path=self.path or "stdout").encode("utf-8"))

    def write(self, data: bytes) -> int:
        written = self.sink.write(data)
        self.permissions.apply(self.sink.path)
        return written

    def maybe_rotate(self, byte_count: Optional[int] = None) -> bool:
        '''
        Rotate if byte_count (the sink's own count when None) has reached
        the threshold.
        '''
        if not self.rotation.should_rotate(self.sink, byte_count):
            return False
        self.sink = self.rotation.rotate(self.sink)
        return True

    def close(self):
        self.sink.close()


class Capture(object):
    name = None

    def __init__(self, context: CaptureContext):
        self.context = context

    def step(self):
        raise NotImplementedError

    def close(self):
        self.context.close()

    def run(self, iterations: int = 0) -> int:
        '''
        Run forever, or for the given number of steps when iterations is set.
        '''
        count = 0
        while True:
            self.step()
            count += 1
            if iterations and count >= iterations:
                return count


class KmsgCapture(Capture):
    name = 'kmsg'

    def __init__(self, context: CaptureContext, source: Optional[KernelSource] = None):
        Capture.__init__(self, context)
        self.source = source or KernelSource(context.config.kmsg_path)

    def close(self):
        self.source.close()
        Capture.close(self)

    def step(self) -> int:
        chunk = self.source.read_chunk()
        self.context.maybe_print_start()
        written = self.context.write(chunk)
        self.context.maybe_rotate()
        return written


class DmesgCapture(Capture):
    name = 'dmesg'

    def __init__(self, context: CaptureContext, sleep: Callable[[float], None] = time.sleep):
        Capture.__init__(self, context)
        if context.sink.is_stdout:
            raise CaptureError("dmesg mode needs an output file")
        self.cmd = list(context.config.drain_cmd)
        self.period = context.config.period
        self.sleep = sleep

    def drain(self):
        try:
            out = open(self.context.path, "ab")
        except OSError as e:
            raise CaptureError(f"couldn't open output file {self.context.path}", e.errno)
        with out:
            try:
                proc = subprocess.run(self.cmd, stdout=out, stderr=subprocess.PIPE)
            except OSError as e:
                raise CaptureError(f"could not run {self.cmd[0]}", e.errno)
        if proc.returncode:
            err = proc.stderr.decode("utf-8", errors="replace").strip()
            log(f"{' '.join(self.cmd)} exited with {proc.returncode}: {err}", "WARNING")

    def step(self) -> bool:
        self.drain()
        self.context.permissions.apply(self.context.path)
        rotated = self.context.maybe_rotate(initial_byte_count(self.context.path))
        self.sleep(self.period)
        return rotated


STRATEGIES = {
    KmsgCapture.name: KmsgCapture,
    DmesgCapture.name: DmesgCapture,
}


def select_mode(config: CaptureConfig) -> str:
    if config.mode != 'auto':
        return config.mode
    if os.access(config.kmsg_path, os.R_OK):
        return KmsgCapture.name
    return DmesgCapture.name


def build_capture(config: CaptureConfig) -> Capture:
    mode = select_mode(config)
    if mode not in STRATEGIES:
        raise CaptureError(f"unknown capture mode {mode}")
    context = CaptureContext(config)
    try:
        return STRATEGIES[mode](context)
    except CaptureError:
        context.close()
        raise
