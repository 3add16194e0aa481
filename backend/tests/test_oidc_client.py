"""
OIDC client: endpoint layout, PKCE helpers and the token exchange.
"""
from __future__ import annotations

import base64
import hashlib
from urllib.parse import parse_qs, urlparse

import pytest

from backend.identity_access import oidc as oidc_mod
from backend.identity_access.oidc import OIDCClient, OIDCConfig


def _cfg(**overrides) -> OIDCConfig:
    values = dict(
        base_url="http://keycloak:8080",
        realm="admissions",
        client_id="admissions-web",
        redirect_uri="https://app.localhost/auth/callback",
        public_base_url="https://id.localhost",
    )
    values.update(overrides)
    return OIDCConfig(**values)


def test_browser_endpoints_use_public_host_and_server_calls_internal():
    cfg = _cfg()
    assert cfg.issuer == "https://id.localhost/realms/admissions"
    assert cfg.auth_endpoint.startswith("https://id.localhost/")
    assert cfg.logout_endpoint.startswith("https://id.localhost/")
    assert cfg.token_endpoint == "http://keycloak:8080/realms/admissions/protocol/openid-connect/token"
    assert cfg.jwks_uri == "http://keycloak:8080/realms/admissions/protocol/openid-connect/certs"


def test_from_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("KC_BASE_URL", "http://kc:8080/")
    monkeypatch.delenv("KC_PUBLIC_BASE_URL", raising=False)
    monkeypatch.setenv("KC_REALM", "academy")
    monkeypatch.setenv("POST_LOGOUT_REDIRECT_URI", "https://app.localhost/")
    cfg = OIDCConfig.from_env()
    assert cfg.base_url == "http://kc:8080"
    assert cfg.public_base_url == "http://kc:8080"
    assert cfg.issuer == "http://kc:8080/realms/academy"
    assert cfg.post_logout_redirect_uri == "https://app.localhost/"


def test_pkce_challenge_matches_s256():
    verifier = OIDCClient.generate_code_verifier()
    assert 43 <= len(verifier) <= 128
    expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")
    assert OIDCClient.code_challenge_s256(verifier) == expected
    assert OIDCClient.generate_nonce() != OIDCClient.generate_nonce()


def test_authorization_and_logout_urls():
    client = OIDCClient(_cfg(post_logout_redirect_uri="https://app.localhost/"))
    auth = urlparse(client.build_authorization_url(state="s1", code_challenge="c1", nonce="n1"))
    qs = parse_qs(auth.query)
    assert qs["scope"] == ["openid email profile"]
    assert qs["redirect_uri"] == ["https://app.localhost/auth/callback"]
    assert (qs["state"], qs["code_challenge"], qs["nonce"]) == (["s1"], ["c1"], ["n1"])

    logout = parse_qs(urlparse(client.build_logout_url(id_token_hint="tok")).query)
    assert logout == {
        "client_id": ["admissions-web"],
        "post_logout_redirect_uri": ["https://app.localhost/"],
        "id_token_hint": ["tok"],
    }


class _Resp:
    def __init__(self, status_code: int, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body


def test_token_exchange_posts_to_internal_endpoint_with_timeout(monkeypatch: pytest.MonkeyPatch):
    captured = {}

    def fake_post(url, data=None, headers=None, timeout=None):
        captured.update(url=url, data=data, timeout=timeout)
        return _Resp(200, {"id_token": "tok"})

    monkeypatch.setattr(oidc_mod.http, "post", fake_post)
    tokens = OIDCClient(_cfg()).exchange_code_for_tokens(code="abc", code_verifier="ver")
    assert tokens == {"id_token": "tok"}
    assert captured["url"].startswith("http://keycloak:8080/")
    assert captured["timeout"] == 5
    assert captured["data"]["code_verifier"] == "ver"
    assert captured["data"]["grant_type"] == "authorization_code"


@pytest.mark.parametrize("status, body", [(400, {"error": "invalid_grant"}), (200, ["not", "a", "dict"])])
def test_token_exchange_failure(monkeypatch: pytest.MonkeyPatch, status, body):
    monkeypatch.setattr(oidc_mod.http, "post", lambda *a, **k: _Resp(status, body))
    with pytest.raises(ValueError) as exc:
        OIDCClient(_cfg()).exchange_code_for_tokens(code="abc", code_verifier="ver")
    assert str(exc.value) == "token_exchange_failed"
