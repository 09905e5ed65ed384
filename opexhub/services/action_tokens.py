"""
One-time e-mail action tokens.

A notification carries an "approve" and a "reject" link; each link embeds a
token that maps back to ``(transaction_id, decision, recipient)``.  Tokens
are single use and expire after ``ACTION_TOKEN_TTL_SECONDS``.

Uses Redis when ``REDIS_URL`` points at a reachable server, otherwise an
in-process dict.  The store is created per app and kept in
``app.extensions["action_tokens"]``.
"""

from __future__ import annotations

import json
import logging
import secrets
import threading
import time

import redis
from flask import current_app

from opexhub.core.exceptions import NotFoundError, ValidationError
from opexhub.models.workflow import DECISIONS

logger = logging.getLogger(__name__)

_KEY_PREFIX = "opexhub:action-token:"


class _MemoryBackend:
    """Dict-backed store for dev/testing; entries are (value, expire_ts)."""

    def __init__(self):
        self._store: dict = {}
        self._lock = threading.Lock()

    def setex(self, key, ttl_seconds, value):
        with self._lock:
            self._store[key] = (value, time.time() + ttl_seconds)

    def getdel(self, key):
        with self._lock:
            entry = self._store.pop(key, None)
        if entry is None:
            return None
        value, expires = entry
        if time.time() > expires:
            return None
        return value

    def purge_expired(self):
        now = time.time()
        with self._lock:
            expired = [k for k, (_, expires) in self._store.items() if now > expires]
            for k in expired:
                del self._store[k]
        return len(expired)

    def ping(self):
        return True


def _connect(redis_url):
    if not redis_url or redis_url.startswith("memory://"):
        return _MemoryBackend()
    try:
        client = redis.from_url(redis_url, decode_responses=True)
        client.ping()
        logger.info("Action tokens: using Redis at %s", redis_url.split("@")[-1])
        return client
    except redis.RedisError as exc:
        logger.warning("Redis unavailable (%s); action tokens kept in memory", exc)
        return _MemoryBackend()


class ActionTokenStore:
    """Issue and redeem one-time decision tokens."""

    def __init__(self, backend=None, ttl_seconds: int = 72 * 3600):
        self.backend = backend if backend is not None else _MemoryBackend()
        self.ttl_seconds = ttl_seconds

    @property
    def backend_name(self) -> str:
        return "memory" if isinstance(self.backend, _MemoryBackend) else "redis"

    def issue(self, transaction_id: int, decision: str, recipient: str) -> str:
        canonical = DECISIONS.get((decision or "").lower())
        if canonical is None:
            raise ValidationError(f"Unknown decision {decision!r}")
        token = secrets.token_urlsafe(32)
        payload = {
            "transaction_id": transaction_id,
            "decision": canonical,
            "recipient": recipient,
            "issued_at": int(time.time()),
        }
        self.backend.setex(_KEY_PREFIX + token, self.ttl_seconds, json.dumps(payload))
        return token

    def consume(self, token: str) -> dict:
        """Redeem a token exactly once.

        Raises:
            NotFoundError: unknown, already used or expired.
        """
        raw = self.backend.getdel(_KEY_PREFIX + token) if token else None
        if raw is None:
            raise NotFoundError(resource="ActionToken")
        return json.loads(raw)

    def purge_expired(self) -> int:
        """Drop expired entries.  Redis expires keys by itself, so this is 0 there."""
        if isinstance(self.backend, _MemoryBackend):
            return self.backend.purge_expired()
        return 0


def init_action_tokens(app) -> ActionTokenStore:
    store = ActionTokenStore(
        backend=_connect(app.config.get("REDIS_URL")),
        ttl_seconds=app.config.get("ACTION_TOKEN_TTL_SECONDS", 72 * 3600),
    )
    app.extensions["action_tokens"] = store
    return store


def get_token_store() -> ActionTokenStore:
    return current_app.extensions["action_tokens"]
