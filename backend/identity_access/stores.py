"""
In-memory stores for login state and sessions.

Why: Keep PKCE verifiers, nonces and session data server-side; the cookie only
carries an opaque id. Sessions hold the identity (sub, name, email) but no
role: roles live on the profile row and are read fresh by the record store on
every request, so a role change applies on the next request.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import secrets
import threading
import time


def _now() -> int:
    return int(time.time())


@dataclass
class StateRecord:
    state: str
    code_verifier: str
    nonce: Optional[str]
    redirect: Optional[str]
    expires_at: int


class StateStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, StateRecord] = {}

    def create(
        self,
        *,
        code_verifier: str,
        nonce: Optional[str] = None,
        redirect: Optional[str] = None,
        ttl_seconds: int = 900,
    ) -> StateRecord:
        rec = StateRecord(
            state=secrets.token_urlsafe(24),
            code_verifier=code_verifier,
            nonce=nonce,
            redirect=redirect,
            expires_at=_now() + ttl_seconds,
        )
        with self._lock:
            self._data[rec.state] = rec
        return rec

    def pop_valid(self, state: str) -> Optional[StateRecord]:
        """Consume a state entry; expired or unknown entries return None."""
        with self._lock:
            rec = self._data.pop(state, None)
        if not rec or rec.expires_at < _now():
            return None
        return rec


@dataclass
class SessionRecord:
    session_id: str
    sub: str
    name: str
    email: str
    expires_at: Optional[int]
    id_token: Optional[str] = None
    ttl_seconds: int = 3600


class SessionStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, SessionRecord] = {}

    def create(
        self,
        *,
        sub: str,
        name: str = "",
        email: str = "",
        id_token: Optional[str] = None,
        ttl_seconds: int = 3600,
    ) -> SessionRecord:
        rec = SessionRecord(
            session_id=secrets.token_urlsafe(24),
            sub=sub,
            name=name,
            email=email,
            expires_at=_now() + ttl_seconds,
            id_token=id_token,
            ttl_seconds=ttl_seconds,
        )
        with self._lock:
            self._data[rec.session_id] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            rec = self._data.get(session_id)
            if rec and rec.expires_at and rec.expires_at < _now():
                self._data.pop(session_id, None)
                return None
            return rec

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)
