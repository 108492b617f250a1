"""
Authentication Session Store

In-memory key/value state scoped to one authentication ceremony, used to
carry continuation data (pending domain, external key, fields) across the
request/response round trips of multi-step login flows.

Design choices
--------------
- In-memory only (no persistence across process restarts).
- Thread-safe access using a re-entrant lock.
- Copy-on-read semantics (callers cannot mutate internal state).
- Last write wins per key; there is no other concurrency guarantee.
"""

from __future__ import annotations

import copy
import uuid
from threading import RLock
from typing import Any, Dict, List, Optional


class AuthSessionStore:
    """
    In-memory store mapping ceremony ids to small dictionaries of state.

    For horizontally scaled deployments this class can be replaced with a
    shared-cache implementation exposing the same interface.
    """

    def __init__(self) -> None:
        self._store: Dict[str, Dict[str, Any]] = {}
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, ceremony_id: str, key: str, default: Any = None) -> Any:
        """
        Return a stored value, or `default` if unknown.

        The value is deep-copied to prevent callers from mutating internal
        state.
        """
        with self._lock:
            data = self._store.get(ceremony_id, {})
            if key not in data:
                return default
            return copy.deepcopy(data[key])

    def set(self, ceremony_id: str, key: str, value: Any) -> None:
        with self._lock:
            self._store.setdefault(ceremony_id, {})[key] = copy.deepcopy(value)

    def remove(self, ceremony_id: str, key: str) -> None:
        with self._lock:
            data = self._store.get(ceremony_id)
            if data is None:
                return
            data.pop(key, None)
            if not data:
                del self._store[ceremony_id]

    def clear(self, ceremony_id: str) -> None:
        with self._lock:
            self._store.pop(ceremony_id, None)

    # ------------------------------------------------------------------
    # Introspection / utilities
    # ------------------------------------------------------------------

    def keys(self, ceremony_id: str) -> List[str]:
        with self._lock:
            return list(self._store.get(ceremony_id, {}))

    def ceremony_ids(self) -> List[str]:
        with self._lock:
            return list(self._store.keys())

    def session(self, ceremony_id: Optional[str] = None) -> "AuthSession":
        """Bind a view to one ceremony, creating a fresh id when omitted."""
        return AuthSession(self, ceremony_id or uuid.uuid4().hex)


class AuthSession:
    """View of one ceremony's state with get/set/remove."""

    def __init__(self, store: AuthSessionStore, ceremony_id: str) -> None:
        self._store = store
        self.id = ceremony_id

    def get(self, key: str, default: Any = None) -> Any:
        return self._store.get(self.id, key, default)

    def set(self, key: str, value: Any) -> None:
        self._store.set(self.id, key, value)

    def remove(self, key: str) -> None:
        self._store.remove(self.id, key)

    def clear(self) -> None:
        self._store.clear(self.id)
