#!/usr/bin/env python3
"""
check_digitemp is a Nagios/Icinga plugin to monitor temperatures of 1-wire
sensors read with digitemp (DS9097 serial adapters)

The plugin reads every sensor on the bus, compares each temperature against
a warning and a critical threshold and reports the most severe state.

Dependencies:
- digitemp_DS9097 binary in PATH (e.g. apt-get install digitemp)
- sudo rule for the nagios user:
    nagios ALL=(ALL) NOPASSWD: /usr/bin/digitemp_DS9097

Copyright (c) 2010 Stefan Schatz (http://www.osbg.at/)
Copyright (c) 2017 jaka (http://github.com/jaka/)
Converted to Python 2026.

This module is free software; you can redistribute it and/or modify it
under the terms of GNU general public license (gpl) version 3.
"""

import argparse
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass, replace
from datetime import datetime
from functools import reduce
from pathlib import Path
from typing import List, Optional, Sequence, Tuple


__version__ = '0.7.0'

# Nagios exit codes
NAGIOS_OK = 0
NAGIOS_WARNING = 1
NAGIOS_CRITICAL = 2
NAGIOS_UNKNOWN = 3

STATUS_LABELS = {
    NAGIOS_OK: 'OK',
    NAGIOS_WARNING: 'WARNING',
    NAGIOS_CRITICAL: 'CRITICAL',
    NAGIOS_UNKNOWN: 'UNKNOWN',
}

DEFAULT_WARNING = '25.00'
DEFAULT_CRITICAL = '30.00'
DEFAULT_SERIAL_PORT = '/dev/ttyUSB0'
DEFAULT_TIMEOUT = 30

DIGITEMP_BINARY = 'digitemp_DS9097'
USB_SERIAL_MODULE = 'pl2303'

# digitemp prints one value per sensor, e.g. "21.81 22,50"
THRESHOLD_PATTERN = re.compile(r'^[0-9]?[0-9][,:.][0-9][0-9]$')
TOKEN_PATTERN = re.compile(r'^-?[0-9]+[,:.]?[0-9]+$')
FIXED_WIDTH_PATTERN = re.compile(r'^(-?)([0-9]{1,2})[,:.]([0-9]{2})$')


class DigitempError(Exception):
    """Base class for conditions that end a check as UNKNOWN"""


class InvalidThreshold(DigitempError):
    def __init__(self, option: str, value: str):
        super().__init__(f"bad option {option} {value}!")
        self.option = option
        self.value = value


class MalformedReading(DigitempError):
    def __init__(self, raw: str, message: Optional[str] = None):
        super().__init__(message or f"Unknown value from sensor :{raw}.")
        self.raw = raw


class NoReadings(MalformedReading):
    def __init__(self, raw: str = ''):
        super().__init__(raw, "No value from sensor.")


class SensorError(DigitempError):
    """digitemp could not be found, started or finished in time"""


def normalize_value(token: str) -> int:
    """
    Convert a temperature token to its fixed-width ordinal value.

    The decimal separator is dropped and 4-character tokens are padded with
    a leading zero, so "7.50" -> 0750, "21,81" -> 2181 and "-1.50" -> -150.
    Only 4- and 5-character tokens with two fractional digits have a
    fixed-width form; anything else raises ValueError.
    """
    match = FIXED_WIDTH_PATTERN.match(token)
    if not match or len(token) not in (4, 5):
        raise ValueError(f"no fixed-width form for {token!r}")
    sign, whole, fraction = match.groups()
    return int(f"{sign}{whole:0>2}{fraction}")


@dataclass(frozen=True)
class Threshold:
    """Warning or critical boundary as given on the command line"""
    raw: str
    value: int

    @classmethod
    def parse(cls, text: str, option: str) -> 'Threshold':
        if text is None or not THRESHOLD_PATTERN.match(text):
            raise InvalidThreshold(option, text)
        return cls(raw=text, value=normalize_value(text))


@dataclass(frozen=True)
class Reading:
    """One temperature from one sensor channel"""
    index: int
    raw: str
    value: int


def parse_readings(raw: str) -> List[Reading]:
    """Split digitemp output into readings, channel 0 first"""
    tokens = raw.split() if raw else []
    if not tokens:
        raise NoReadings(raw or '')

    if not all(TOKEN_PATTERN.match(token) for token in tokens):
        raise MalformedReading(' '.join(tokens))

    readings = []
    for index, token in enumerate(tokens):
        try:
            value = normalize_value(token)
        except ValueError:
            raise MalformedReading(' '.join(tokens))
        readings.append(Reading(index=index, raw=token, value=value))
    return readings


def classify(reading: Reading, warning: Threshold, critical: Threshold) -> int:
    if reading.value >= critical.value:
        return NAGIOS_CRITICAL
    if reading.value >= warning.value:
        return NAGIOS_WARNING
    return NAGIOS_OK


@dataclass(frozen=True)
class RunResult:
    """Outcome of one check: overall status plus what gets printed"""
    status: int = NAGIOS_OK
    entries: Tuple[str, ...] = ()
    statuses: Tuple[int, ...] = ()
    perfdata: Tuple[str, ...] = ()
    reason: Optional[str] = None

    @classmethod
    def unknown(cls, reason: str) -> 'RunResult':
        return cls(status=NAGIOS_UNKNOWN, reason=reason)

    @property
    def exit_code(self) -> int:
        return self.status

    @property
    def label(self) -> str:
        return STATUS_LABELS[self.status]

    @property
    def report(self) -> str:
        return ';'.join(self.entries)

    @property
    def message(self) -> str:
        if self.status == NAGIOS_UNKNOWN:
            return f"TEMP - UNKNOWN - {self.reason}"
        message = f"TEMP {self.label} - {self.report} C"
        if self.perfdata:
            message += f" | {' '.join(self.perfdata)}"
        return message


def evaluate(readings: Sequence[Reading], warning: Threshold, critical: Threshold,
             perfdata: bool = False) -> RunResult:
    """
    Classify every reading and fold the results into one RunResult.

    The overall status is the most severe per-reading status. Callers are
    expected to pass critical >= warning; it is not checked here.
    """
    if not readings:
        raise NoReadings()

    def add_reading(result: RunResult, reading: Reading) -> RunResult:
        status = classify(reading, warning, critical)
        metrics = result.perfdata
        if perfdata:
            metrics += (f"'temp'={reading.index};{reading.raw};{warning.raw};{critical.raw}",)
        return replace(
            result,
            status=max(result.status, status),
            entries=result.entries + (f"{reading.index}:{reading.raw}",),
            statuses=result.statuses + (status,),
            perfdata=metrics,
        )

    return reduce(add_reading, readings, RunResult())


def check_temperature(raw: str, warning: str = DEFAULT_WARNING, critical: str = DEFAULT_CRITICAL,
                      perfdata: bool = False) -> RunResult:
    """Validate thresholds, parse raw sensor output and classify it"""
    try:
        warn = Threshold.parse(warning, '-w')
        crit = Threshold.parse(critical, '-c')
        return evaluate(parse_readings(raw), warn, crit, perfdata)
    except DigitempError as e:
        return RunResult.unknown(str(e))


class DigitempReader:
    """Runs digitemp_DS9097 and prepares the host for it"""

    def __init__(self, binary: Optional[str] = None, serial_port: str = DEFAULT_SERIAL_PORT,
                 config_file: Optional[str] = None, debug_log: Optional[str] = None,
                 use_sudo: bool = True, timeout: Optional[int] = DEFAULT_TIMEOUT,
                 verbose: bool = False):
        self.binary = binary or shutil.which(DIGITEMP_BINARY)
        self.serial_port = serial_port
        self.config_file = Path(config_file) if config_file else Path.home() / '.digitemprc'
        if debug_log is None:
            self.debug_log = Path.home() / 'check_digitemp_debug.log'
        else:
            self.debug_log = Path(debug_log) if debug_log else None
        self.use_sudo = use_sudo
        self.timeout = timeout or None
        self.verbose = verbose

    def debug(self, message: str):
        if self.verbose:
            print(f"DEBUG: {message}")

    def command(self, *options: str) -> List[str]:
        """digitemp command line, prefixed with sudo when enabled"""
        cmd = ['sudo'] if self.use_sudo else []
        cmd.append(self.binary)
        cmd.extend(options)
        return cmd

    def check_binary(self):
        if not self.binary or not os.path.isfile(self.binary) or not os.access(self.binary, os.X_OK):
            raise SensorError("Digitemp binary was not found!")
        self.debug(f"digitemp found at {self.binary}")

    def _run_quietly(self, cmd: List[str]) -> bool:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (subprocess.TimeoutExpired, OSError) as e:
            self.debug(f"{' '.join(cmd)} failed: {e}")
            return False
        return result.returncode == 0

    def module_loaded(self, modules_file: str = '/proc/modules') -> bool:
        try:
            with open(modules_file, 'r') as f:
                return any(line.split(' ', 1)[0] == USB_SERIAL_MODULE for line in f)
        except (IOError, OSError):
            return False

    def load_driver(self):
        """Load the USB-serial driver of the 1-wire adapter if it is missing"""
        if self.module_loaded():
            return
        ok = self._run_quietly(['modprobe', USB_SERIAL_MODULE])
        self.debug(f"Loading module {USB_SERIAL_MODULE}: {'OK' if ok else 'FAILED'}")

    def generate_config(self):
        """Let digitemp scan the bus and write its config file, once"""
        if self.config_file.exists():
            return
        cmd = self.command('-i', '-s', self.serial_port, '-c', str(self.config_file))
        ok = self._run_quietly(cmd)
        self.debug(f"{' '.join(cmd)}: {'OK' if ok else 'FAILED'}")

    def prepare(self):
        self.check_binary()
        self.load_driver()
        self.generate_config()

    def write_debug_log(self, returncode, output: str):
        if self.debug_log is None:
            return
        stamp = datetime.now().strftime('%Y%m%d-%H%M%S')
        try:
            with open(self.debug_log, 'a') as f:
                f.write(f"{stamp} - RTC: {returncode} | TEMPERATURE: {' '.join(output.split())}\n")
        except (IOError, OSError) as e:
            self.debug(f"could not write {self.debug_log}: {e}")

    def read(self) -> str:
        """Read all sensors on the bus, returns digitemp's raw output"""
        cmd = self.command('-a', '-s', self.serial_port, '-r', '750', '-n', '1', '-q',
                           '-o%.2C', '-c', str(self.config_file))
        self.debug(f"Running command: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self.write_debug_log('timeout', '')
            raise SensorError(f"Sensor read timed out after {self.timeout} seconds")
        except OSError as e:
            raise SensorError(f"Could not run {self.binary}: {e}")

        self.debug(f"Command exit code: {result.returncode}")
        if result.stderr:
            self.debug(f"stderr: {result.stderr.strip()}")

        self.write_debug_log(result.returncode, result.stdout)
        return result.stdout.strip()


def check_digitemp(args, reader: Optional[DigitempReader] = None) -> Tuple[int, str]:
    """Run the complete check and return Nagios result"""
    if os.geteuid() == 0:
        return NAGIOS_UNKNOWN, "TEMP - UNKNOWN - User should not be root!"

    try:
        warning = Threshold.parse(args.warning, '-w')
        critical = Threshold.parse(args.critical, '-c')

        if args.debug:
            print("DEBUG: debug mode enabled")
            print(f"DEBUG: Warning State: >= {warning.raw} C")
            print(f"DEBUG: Critical State: >= {critical.raw} C")
            if args.perfdata:
                print("DEBUG: sending perfdata")

        if reader is None:
            reader = DigitempReader(
                binary=args.digitemp_bin,
                serial_port=args.serial_port,
                config_file=args.config,
                debug_log=args.debug_log,
                use_sudo=not args.no_sudo,
                timeout=args.timeout,
                verbose=args.debug
            )

        reader.prepare()
        raw = reader.read()
        result = evaluate(parse_readings(raw), warning, critical, args.perfdata)

    except DigitempError as e:
        result = RunResult.unknown(str(e))

    except Exception as e:
        if args.debug:
            import traceback
            traceback.print_exc()
        result = RunResult.unknown(f"Unexpected error: {e}")

    return result.exit_code, result.message


class PluginArgumentParser(argparse.ArgumentParser):
    """ArgumentParser reporting usage errors as UNKNOWN instead of exit code 2"""

    def error(self, message):
        self.print_help(sys.stderr)
        print(f"TEMP - UNKNOWN - {message}")
        sys.exit(NAGIOS_UNKNOWN)


def build_parser() -> argparse.ArgumentParser:
    parser = PluginArgumentParser(
        description='1-Wire temperature monitor plugin with digitemp for Nagios/Icinga',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Thresholds use two decimals; '.', ',' and ':' are accepted as separator.
Every sensor on the bus is checked, the worst state is reported.

Examples:
  %(prog)s -w 22.10 -c 25.00 -p
  %(prog)s -w 30,00 -c 50,00 -s /dev/ttyUSB1
  %(prog)s --no-sudo --config /etc/digitemprc -d

Exit codes:
  0 OK        temperature checked and everything is ok
  1 WARNING   temperature at or above the warning threshold
  2 CRITICAL  temperature at or above the critical threshold
  3 UNKNOWN   invalid arguments or the sensor could not be read
"""
    )

    parser.add_argument('-w', '--warning', default=DEFAULT_WARNING,
                        help=f'Threshold for warning temperature (default: {DEFAULT_WARNING})')
    parser.add_argument('-c', '--critical', default=DEFAULT_CRITICAL,
                        help=f'Threshold for critical temperature (default: {DEFAULT_CRITICAL})')
    parser.add_argument('-p', '--perfdata', action='store_true',
                        help='Send perfdata to nagios')
    parser.add_argument('-d', '--debug', action='store_true',
                        help='Debug mode')
    parser.add_argument('-v', '--version', action='version',
                        version=f'%(prog)s {__version__} - 1-wire temperature check for Nagios')

    parser.add_argument('-s', '--serial-port', default=DEFAULT_SERIAL_PORT,
                        help=f'Serial port of the 1-wire adapter (default: {DEFAULT_SERIAL_PORT})')
    parser.add_argument('--digitemp-bin', type=str,
                        help=f'Path to {DIGITEMP_BINARY} binary')
    parser.add_argument('--config', type=str,
                        help='digitemp config file (default: ~/.digitemprc)')
    parser.add_argument('--debug-log', type=str,
                        help="Log of raw sensor reads (default: ~/check_digitemp_debug.log, '' disables)")
    parser.add_argument('--no-sudo', action='store_true',
                        help='Run digitemp without sudo')
    parser.add_argument('-t', '--timeout', type=int, default=DEFAULT_TIMEOUT,
                        help=f'Seconds allowed for one sensor read, 0 waits forever (default: {DEFAULT_TIMEOUT})')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Validate arguments
    if args.timeout < 0:
        print("TEMP - UNKNOWN - Timeout must not be negative")
        sys.exit(NAGIOS_UNKNOWN)

    exit_code, message = check_digitemp(args)
    print(message)
    sys.exit(exit_code)


if __name__ == '__main__':
    main()
