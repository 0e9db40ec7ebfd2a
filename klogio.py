#! /usr/bin/env python3
'''
Plumbing shared by the klogcat modules: the fatal error type, the
retry-on-interrupt wrapper for system calls and stderr reporting.
'''

import os
import sys
from datetime import datetime
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class CaptureError(Exception):
    '''
    A condition the capture loop cannot recover from.  Whoever catches this
    is expected to report it and stop the process.
    '''
    def __init__(self, msg: str, err: Optional[int] = None):
        Exception.__init__(self, msg)
        self.msg = msg
        self.err = err

    def __str__(self):
        if self.err is None:
            return self.msg
        return f"{self.msg}: {os.strerror(self.err)}"


def failure_retry(func: Callable[..., T], *args) -> T:
    '''
    Call func until it is not interrupted by a signal.
    '''
    while True:
        try:
            return func(*args)
        except InterruptedError:
            continue


def human_ts() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def log(msg: str, level: Optional[str] = None):
    prefix = f"[{human_ts()}] "
    if level:
        prefix += f"{level}: "
    sys.stderr.write(prefix + msg + "\n")
    sys.stderr.flush()
