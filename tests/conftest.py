"""Shared fixtures: an in-memory transport and sleep patching"""
import pytest
import sys
import os
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from peripage_transport import Transport


class RecordingTransport(Transport):
    """Transport that records every write and answers reads from a queue."""

    def __init__(self, responses=None):
        self.writes = []
        self.responses = list(responses or [])
        self.connected = False
        self.connect_calls = 0
        self.close_calls = 0

    @property
    def is_connected(self):
        return self.connected

    def connect(self):
        self.connect_calls += 1
        self.connected = True

    def write(self, data):
        self._require_connected()
        self.writes.append(bytes(data))

    def available_read(self):
        self._require_connected()
        return self.responses.pop(0) if self.responses else b""

    def close(self):
        self.close_calls += 1
        self.connected = False

    @property
    def stream(self):
        return b"".join(self.writes)


@pytest.fixture
def transport():
    t = RecordingTransport()
    t.connected = True
    return t


@pytest.fixture
def no_sleep():
    with patch("time.sleep") as mock_sleep:
        yield mock_sleep
