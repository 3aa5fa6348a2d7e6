"""Shared test fixtures."""

import subprocess
import sys
from pathlib import Path

import pytest

# Add project root to path for plugin imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import check_digitemp  # noqa: E402


class FakeRun:
    """Stands in for subprocess.run, records every command it is given."""

    def __init__(self, stdout: str = '', returncode: int = 0, exc: Exception = None):
        self.stdout = stdout
        self.returncode = returncode
        self.exc = exc
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(list(cmd))
        if self.exc is not None:
            raise self.exc
        return subprocess.CompletedProcess(cmd, returncode=self.returncode,
                                           stdout=self.stdout, stderr='')


class FakeReader:
    """Sensor reader returning canned digitemp output."""

    def __init__(self, output: str = '', error: Exception = None):
        self.output = output
        self.error = error
        self.prepared = False
        self.reads = 0

    def prepare(self):
        self.prepared = True

    def read(self) -> str:
        self.reads += 1
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture()
def fake_run(monkeypatch):
    run = FakeRun()
    monkeypatch.setattr(check_digitemp.subprocess, 'run', run)
    return run


@pytest.fixture()
def digitemp_bin(tmp_path):
    binary = tmp_path / 'digitemp_DS9097'
    binary.write_text('#!/bin/sh\n')
    binary.chmod(0o755)
    return binary


@pytest.fixture()
def not_root(monkeypatch):
    monkeypatch.setattr(check_digitemp.os, 'geteuid', lambda: 1000)
