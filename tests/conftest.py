"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from dnstest.types import Endpoint
from dnstest.utils.logging import clear_run_id
from tests.fixtures.probe_doubles import FakeEchoTransport, RecordingSink, ScriptedProber


@pytest.fixture(autouse=True)
def _reset_run_id() -> Iterator[None]:
    """Keep run ids from leaking between tests."""
    clear_run_id()
    yield
    clear_run_id()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def prober() -> ScriptedProber:
    return ScriptedProber()


@pytest.fixture
def transport() -> FakeEchoTransport:
    return FakeEchoTransport()


@pytest.fixture
def google() -> Endpoint:
    return Endpoint(name="Google", address="8.8.8.8")
