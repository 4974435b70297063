"""
Pytest configuration for the signaling relay tests.

Provides a fresh in-memory store and router per test so router and store
tests never share rooms.
"""

import uuid

import pytest

from backend import MemoryRoomStore
from signaling import SignalingRouter


@pytest.fixture
def store():
    return MemoryRoomStore()


@pytest.fixture
def router(store):
    return SignalingRouter(store)


@pytest.fixture
def room_id():
    return f"room-{uuid.uuid4().hex[:8]}"
