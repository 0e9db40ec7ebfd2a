#! /usr/bin/env python3
'''
Tests for the command line front end.
'''

import errno
import io
import os
import tempfile
import unittest
from unittest import mock

import klogcat


class TestParseArgs(unittest.TestCase):
    '''
    Tests for parse_args
    '''
    def test_defaults(self):
        '''
        No options gives the default file under the destination directory
        '''
        with mock.patch.dict(os.environ, {'KLOGCAT_DEST': '/var/log/klog'}), \
                mock.patch('sys.stderr', new_callable=io.StringIO) as err:
            config = klogcat.parse_args([])
        self.assertEqual(config.output_path, '/var/log/klog/kernel.log')
        self.assertEqual(config.rotate_kb, 8192)
        self.assertEqual(config.max_rotated, 4)
        self.assertEqual(config.mode, 'auto')
        self.assertIn('Destination file name set to default!', err.getvalue())

    def test_options(self):
        '''
        Explicit options are carried into the configuration
        '''
        config = klogcat.parse_args(['-f', '/tmp/k.log', '-r', '16', '-n', '2',
                                     '-m', 'dmesg', '-p', '0.5', '-d', '/dev/kmsg'])
        self.assertEqual(config.output_path, '/tmp/k.log')
        self.assertEqual(config.rotate_kb, 16)
        self.assertEqual(config.max_rotated, 2)
        self.assertEqual(config.mode, 'dmesg')
        self.assertEqual(config.period, 0.5)
        self.assertEqual(config.kmsg_path, '/dev/kmsg')

    def test_bare_rotate_flag(self):
        '''
        -r without a value uses the default threshold
        '''
        config = klogcat.parse_args(['-f', '/tmp/k.log', '-r'])
        self.assertEqual(config.rotate_kb, klogcat.DEFAULT_ROTATE_KB)

    def test_dash_is_stdout(self):
        '''
        '-' selects standard output
        '''
        self.assertEqual(klogcat.parse_args(['-f', '-']).output_path, '')

    def test_invalid_counts(self):
        '''
        Non-numeric thresholds and counts are rejected
        '''
        for argv in (['-r', 'big'], ['-n', 'x'], ['-n', '-1'], ['-n', '1x'], ['-r', '16k']):
            with mock.patch('sys.stderr', new_callable=io.StringIO) as err:
                with self.assertRaises(SystemExit) as ctx:
                    klogcat.parse_args(['-f', '/tmp/k.log'] + argv)
            self.assertNotEqual(ctx.exception.code, 0)
            self.assertIn('Invalid parameter to', err.getvalue())


class TestMain(unittest.TestCase):
    '''
    Tests for main
    '''
    def test_fatal_exit_status(self):
        '''
        A device that cannot be opened ends the run with a diagnostic
        '''
        with tempfile.TemporaryDirectory() as tmp:
            argv = ['-f', os.path.join(tmp, 'kernel.log'), '-m', 'kmsg',
                    '-d', os.path.join(tmp, 'missing')]
            with mock.patch('sys.stderr', new_callable=io.StringIO) as err:
                status = klogcat.main(argv)
        self.assertEqual(status, klogcat.EXIT_FATAL)
        self.assertIn('Error! Open failed.', err.getvalue())
        self.assertIn('max_rotated=4', err.getvalue())

    def test_unopenable_drain_output(self):
        '''
        An output file the dmesg drain cannot open ends the run with a diagnostic
        '''
        with tempfile.TemporaryDirectory() as tmp:
            argv = ['-f', os.path.join(tmp, 'kernel.log'), '-m', 'dmesg']
            with mock.patch('builtins.open', side_effect=PermissionError(errno.EACCES, 'denied')), \
                    mock.patch('sys.stderr', new_callable=io.StringIO) as err:
                status = klogcat.main(argv)
        self.assertEqual(status, klogcat.EXIT_FATAL)
        self.assertIn("couldn't open output file", err.getvalue())

    def test_interrupted(self):
        '''
        Ctrl-C is reported and exits with the interrupt status
        '''
        with tempfile.TemporaryDirectory() as tmp:
            argv = ['-f', os.path.join(tmp, 'kernel.log'), '-m', 'kmsg']
            with mock.patch('klogloop.Capture.run', side_effect=KeyboardInterrupt), \
                    mock.patch('sys.stderr', new_callable=io.StringIO) as err:
                status = klogcat.main(argv)
        self.assertEqual(status, klogcat.EXIT_INTERRUPTED)
        self.assertIn('Interrupted', err.getvalue())


if __name__ == '__main__':
    unittest.main()
