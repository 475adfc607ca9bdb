"""Shared pytest fixtures for Holding Space payments tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from tests.helpers import WEBHOOK_SECRET, FakeStore  # noqa: E402


@pytest.fixture
def store(monkeypatch):
    """In-memory store patched over every repository call and txn()."""
    fake = FakeStore()
    fake.install(monkeypatch)
    return fake


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.delenv("STRIPE_WEBHOOK_TOLERANCE", raising=False)
    return WEBHOOK_SECRET
