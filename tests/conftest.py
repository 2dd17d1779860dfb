"""Shared pytest fixtures and configuration for pytest."""

import asyncio
import sys

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for platform-specific tests."""
    config.addinivalue_line("markers", "unix_only: mark test to run only on Unix")


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Auto-skip tests based on platform markers."""
    skip_unix = pytest.mark.skip(reason="Unix-only test")

    for item in items:
        if "unix_only" in item.keywords and sys.platform == "win32":
            item.add_marker(skip_unix)


class FakeStreamWriter:
    """In-memory stand-in for asyncio.StreamWriter.

    Args:
        fail_writes: Raise ConnectionResetError on every write.
        drain_delay: Seconds each drain() suspends for.
    """

    def __init__(self, fail_writes: bool = False, drain_delay: float = 0.0) -> None:
        self.buffer = bytearray()
        self.closed = False
        self.close_calls = 0
        self.fail_writes = fail_writes
        self.drain_delay = drain_delay

    def write(self, data: bytes) -> None:
        if self.closed or self.fail_writes:
            raise ConnectionResetError("connection reset")
        self.buffer.extend(data)

    async def drain(self) -> None:
        if self.drain_delay:
            await asyncio.sleep(self.drain_delay)

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1

    async def wait_closed(self) -> None:
        pass

    def is_closing(self) -> bool:
        return self.closed

    def text(self) -> str:
        return self.buffer.decode("utf-8")


@pytest.fixture
def fake_writer() -> FakeStreamWriter:
    return FakeStreamWriter()


@pytest.fixture
def make_writer():
    """Factory for FakeStreamWriter with custom behavior."""

    def _make(**kwargs) -> FakeStreamWriter:
        return FakeStreamWriter(**kwargs)

    return _make
