"""
ID token verification: RS256 only, key rotation refresh, claim checks.

JOSE calls are monkeypatched; these tests cover the control flow around them.
"""

from __future__ import annotations

import pytest
from jose.exceptions import JOSEError

from backend.identity_access import tokens as tokens_mod
from backend.identity_access.oidc import OIDCConfig
from backend.identity_access.tokens import (
    IDTokenVerificationError,
    JWKSCache,
    identity_from_claims,
    verify_id_token,
)

CFG = OIDCConfig(
    base_url="http://kc:8080", realm="admissions", client_id="admissions-web", redirect_uri="http://app/auth/callback"
)


class FakeCache:
    def __init__(self, *key_sets):
        self.key_sets = list(key_sets)
        self.calls = []

    def get(self, cfg, *, force: bool = False):
        self.calls.append(force)
        return self.key_sets.pop(0) if len(self.key_sets) > 1 else self.key_sets[0]


def _keys(*kids):
    return {"keys": [{"kid": k, "kty": "RSA", "alg": "HS256"} for k in kids]}


def test_verify_enforces_rs256_and_client_audience(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(tokens_mod.jwt, "get_unverified_header", lambda _: {"kid": "kid1"})
    captured = {}

    def fake_decode(token, key, algorithms=None, **kwargs):
        captured.update(algorithms=list(algorithms or []), **kwargs)
        return {"sub": "u1", "exp": 2_000_000_000}

    monkeypatch.setattr(tokens_mod.jwt, "decode", fake_decode)
    claims = verify_id_token(id_token="t", cfg=CFG, cache=FakeCache(_keys("kid1")))
    assert claims["sub"] == "u1"
    assert captured["algorithms"] == ["RS256"]
    assert captured["audience"] == "admissions-web"
    assert captured["issuer"] == "http://kc:8080/realms/admissions"
    assert captured["options"]["leeway"] == tokens_mod.MAX_CLOCK_SKEW_SECONDS


def test_unknown_kid_forces_one_refresh(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(tokens_mod.jwt, "get_unverified_header", lambda _: {"kid": "new"})
    monkeypatch.setattr(tokens_mod.jwt, "decode", lambda *a, **k: {"sub": "u1", "exp": 2_000_000_000})
    cache = FakeCache(_keys("old"), _keys("old", "new"))
    assert verify_id_token(id_token="t", cfg=CFG, cache=cache)["sub"] == "u1"
    assert cache.calls == [False, True]

    stale = FakeCache(_keys("old"))
    with pytest.raises(IDTokenVerificationError) as exc:
        verify_id_token(id_token="t", cfg=CFG, cache=stale)
    assert exc.value.code == "unknown_kid"


@pytest.mark.parametrize(
    "header, decoded, code",
    [
        ({}, None, "missing_kid"),
        ({"kid": "kid1"}, JOSEError("bad signature"), "invalid_id_token"),
        ({"kid": "kid1"}, {"sub": "u1", "exp": "soon"}, "invalid_id_token"),
        ({"kid": "kid1"}, {"exp": 2_000_000_000}, "missing_sub"),
    ],
)
def test_verification_error_codes(monkeypatch: pytest.MonkeyPatch, header, decoded, code):
    monkeypatch.setattr(tokens_mod.jwt, "get_unverified_header", lambda _: header)

    def fake_decode(*a, **k):
        if isinstance(decoded, Exception):
            raise decoded
        return decoded

    monkeypatch.setattr(tokens_mod.jwt, "decode", fake_decode)
    with pytest.raises(IDTokenVerificationError) as exc:
        verify_id_token(id_token="t", cfg=CFG, cache=FakeCache(_keys("kid1")))
    assert exc.value.code == code


def test_malformed_header_is_invalid_token(monkeypatch: pytest.MonkeyPatch):
    def boom(_):
        raise JOSEError("not a jwt")

    monkeypatch.setattr(tokens_mod.jwt, "get_unverified_header", boom)
    with pytest.raises(IDTokenVerificationError) as exc:
        verify_id_token(id_token="garbage", cfg=CFG, cache=FakeCache(_keys("kid1")))
    assert exc.value.code == "invalid_id_token"


class _Resp:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


def test_jwks_cache_reuses_until_forced(monkeypatch: pytest.MonkeyPatch):
    calls = []

    def fake_get(url, timeout=None):
        calls.append((url, timeout))
        return _Resp(200, _keys("kid1"))

    monkeypatch.setattr(tokens_mod.requests, "get", fake_get)
    cache = JWKSCache(ttl_seconds=60)
    cache.get(CFG)
    cache.get(CFG)
    assert len(calls) == 1
    cache.get(CFG, force=True)
    assert len(calls) == 2
    assert calls[0] == (CFG.jwks_uri, 5)


@pytest.mark.parametrize(
    "resp, code",
    [
        (_Resp(503, {}), "jwks_fetch_failed"),
        (_Resp(200, ValueError("not json")), "jwks_invalid"),
        (_Resp(200, {"keys": "nope"}), "jwks_invalid"),
    ],
)
def test_jwks_fetch_errors(monkeypatch: pytest.MonkeyPatch, resp, code):
    monkeypatch.setattr(tokens_mod.requests, "get", lambda url, timeout=None: resp)
    with pytest.raises(IDTokenVerificationError) as exc:
        JWKSCache().get(CFG)
    assert exc.value.code == code


def test_identity_from_claims_fallbacks():
    full = identity_from_claims({"sub": "u1", "email": "a@b.test", "name": "Asha Admin"})
    assert (full.sub, full.email, full.name) == ("u1", "a@b.test", "Asha Admin")
    parts = identity_from_claims({"sub": "u2", "given_name": "Ben", "family_name": "Employee"})
    assert parts.name == "Ben Employee"
    assert identity_from_claims({"sub": "u3", "preferred_username": "carla@academy.test"}).name == "carla"
    assert identity_from_claims({"sub": "u4"}).name == "User"
