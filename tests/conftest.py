"""
Pytest configuration and shared fixtures for genstream tests.
"""

from pathlib import Path
from typing import Generator

import pytest

from genstream.utils.config import StreamSettings
from tests.fixtures.streaming_fixtures import FakeClock, RecordingSink, StreamingFixtures


@pytest.fixture
def fixtures() -> type:
    return StreamingFixtures


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def quiet_settings() -> StreamSettings:
    """Settings whose watchdog never fires during a test."""
    return StreamSettings(stall_threshold=3600, check_interval=3600)


@pytest.fixture
def config_dir(tmp_path: Path) -> Generator[Path, None, None]:
    """Directory for configuration files."""
    path = tmp_path / "config"
    path.mkdir()
    yield path
