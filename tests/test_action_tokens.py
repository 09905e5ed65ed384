"""
Tests: one-time e-mail action tokens (in-memory backend).
"""

import time

import pytest

from opexhub.core.exceptions import NotFoundError, ValidationError
from opexhub.services.action_tokens import ActionTokenStore, _MemoryBackend


@pytest.fixture()
def store():
    return ActionTokenStore(backend=_MemoryBackend(), ttl_seconds=60)


def test_issue_then_consume_returns_claim(store):
    token = store.issue(17, "approved", "ravi.kumar@godeepak.com")

    claim = store.consume(token)

    assert claim["transaction_id"] == 17
    assert claim["decision"] == "approve"
    assert claim["recipient"] == "ravi.kumar@godeepak.com"


def test_token_is_single_use(store):
    token = store.issue(17, "reject", "ravi.kumar@godeepak.com")
    store.consume(token)

    with pytest.raises(NotFoundError):
        store.consume(token)


def test_unknown_token_is_not_found(store):
    with pytest.raises(NotFoundError):
        store.consume("does-not-exist")
    with pytest.raises(NotFoundError):
        store.consume("")


def test_expired_token_is_not_found(monkeypatch, store):
    token = store.issue(17, "approve", "ravi.kumar@godeepak.com")
    real_time = time.time
    monkeypatch.setattr(time, "time", lambda: real_time() + 61)

    with pytest.raises(NotFoundError):
        store.consume(token)


def test_purge_expired_drops_only_stale_entries(monkeypatch, store):
    store.issue(1, "approve", "a@godeepak.com")
    store.issue(2, "approve", "b@godeepak.com")
    real_time = time.time
    monkeypatch.setattr(time, "time", lambda: real_time() + 61)
    fresh = store.issue(3, "approve", "c@godeepak.com")

    assert store.purge_expired() == 2
    assert store.consume(fresh)["transaction_id"] == 3


def test_issue_rejects_unknown_decision(store):
    with pytest.raises(ValidationError):
        store.issue(1, "escalate", "a@godeepak.com")


def test_app_store_uses_memory_backend_in_testing(app):
    store = app.extensions["action_tokens"]
    assert store.backend_name == "memory"
    assert store.ttl_seconds == 72 * 3600
