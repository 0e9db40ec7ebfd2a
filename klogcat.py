#! /usr/bin/env python3
'''
klogcat - copy the kernel log into a size bounded set of rotating files.

    klogcat -r 8192 -n 4 -f /data/lckt/logging/kernel.log

Runs until killed.  Anything it cannot recover from is reported on stderr and
ends the process with a non-zero status.
'''

import argparse
import os
import sys
from typing import List, Optional

from klogio import CaptureError, log
from klogloop import DEFAULT_PERIOD, CaptureConfig, build_capture
from klogsource import KMSG_PATH

DEFAULT_ROTATE_KB = 8192
DEFAULT_MAX_ROTATED = 4
DEFAULT_FILE_NAME = "kernel.log"
DEFAULT_DEST = "/data/lckt/logging"

EXIT_FATAL = 255
EXIT_INTERRUPTED = 130


def _count(flag: str):
    def parse(value: str) -> int:
        if not value.isdigit():
            raise argparse.ArgumentTypeError(f"Invalid parameter to {flag}")
        return int(value)
    return parse


def parse_args(argv: Optional[List[str]] = None) -> CaptureConfig:
    default_file = os.path.join(os.environ.get("KLOGCAT_DEST", DEFAULT_DEST), DEFAULT_FILE_NAME)
    ap = argparse.ArgumentParser(
        prog="klogcat",
        description="Capture the kernel log into rotating files.",
        epilog="example: 8MB per file, max 4 rotated files, to /data/lckt/logging\n"
               "$ klogcat -r 8192 -n 4 -f /data/lckt/logging/kernel.log",
        formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument("-f", "--file", default=None,
                    help=f"Log to file ('-' for stdout). Default: {default_file}")
    ap.add_argument("-r", "--rotate-kbytes", nargs="?", type=_count("-r"),
                    const=DEFAULT_ROTATE_KB, default=DEFAULT_ROTATE_KB,
                    help=f"Rotate log every kbytes ({DEFAULT_ROTATE_KB} if unspecified, 0 disables).")
    ap.add_argument("-n", "--max-rotated", type=_count("-n"), default=DEFAULT_MAX_ROTATED,
                    help=f"Sets max number of rotated logs, default {DEFAULT_MAX_ROTATED}.")
    ap.add_argument("-m", "--mode", choices=["auto", "kmsg", "dmesg"], default="auto",
                    help="Read the kernel device or poll dmesg (auto picks the device when readable).")
    ap.add_argument("-d", "--device", default=KMSG_PATH,
                    help=f"Kernel log device (default {KMSG_PATH}).")
    ap.add_argument("-p", "--period", type=float, default=DEFAULT_PERIOD,
                    help=f"Seconds between dmesg drains (default {DEFAULT_PERIOD}).")
    args = ap.parse_args(argv)

    output_path = args.file
    if output_path is None:
        log(f"Destination file name set to default! {default_file}")
        output_path = default_file
    elif output_path == "-":
        output_path = ""

    return CaptureConfig(output_path=output_path, rotate_kb=args.rotate_kbytes,
                         max_rotated=args.max_rotated, mode=args.mode,
                         kmsg_path=args.device, period=args.period)


def print_args(config: CaptureConfig):
    sys.stderr.write(f"rotate_kb={config.rotate_kb}\n")
    sys.stderr.write(f"max_rotated={config.max_rotated}\n")
    sys.stderr.write(f"output_path={config.output_path or '<stdout>'}\n")
    sys.stderr.write(f"mode={config.mode}\n")
    sys.stderr.flush()


def main(argv: Optional[List[str]] = None) -> int:
    config = parse_args(argv)
    print_args(config)
    capture = None
    try:
        capture = build_capture(config)
        log(f"Capturing with {capture.name}")
        capture.run()
    except CaptureError as e:
        log(str(e), "ERROR")
        return EXIT_FATAL
    except KeyboardInterrupt:
        log("Interrupted")
        return EXIT_INTERRUPTED
    finally:
        if capture:
            capture.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
