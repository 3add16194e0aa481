"""
Keycloak admin client: grant selection, user creation and deletion.
"""
from __future__ import annotations

import pytest

from backend.identity_access import admin_client as admin_mod
from backend.identity_access.admin_client import AdminClient
from backend.identity_access.oidc import OIDCConfig

CFG = OIDCConfig(
    base_url="https://id.academy.test", realm="admissions", client_id="admissions-web", redirect_uri="https://app/cb"
)


class _Resp:
    def __init__(self, status_code=200, body=None, headers=None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise admin_mod.requests.HTTPError(str(self.status_code))


@pytest.fixture
def secret_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("KC_ADMIN_CLIENT_SECRET", "s3cret")
    monkeypatch.delenv("KC_ADMIN_USERNAME", raising=False)
    monkeypatch.delenv("KC_ADMIN_PASSWORD", raising=False)
    monkeypatch.delenv("KEYCLOAK_CA_BUNDLE", raising=False)
    return monkeypatch


def _token_ok(url, data=None, timeout=None, verify=None, **kw):
    return _Resp(200, {"access_token": "adm"})


def test_create_user_uses_client_credentials_and_location_header(secret_env):
    posts = []

    def fake_post(url, data=None, json=None, headers=None, timeout=None, verify=None):
        posts.append({"url": url, "data": data, "json": json, "headers": headers})
        if url.endswith("/token"):
            return _Resp(200, {"access_token": "adm"})
        return _Resp(201, headers={"Location": f"{url}/3f1c-uuid"})

    secret_env.setattr(admin_mod.requests, "post", fake_post)
    user_id = AdminClient(CFG).create_user(email="nisha@academy.test", password="s3cretpass", display_name="Nisha")
    assert user_id == "3f1c-uuid"
    assert posts[0]["data"]["grant_type"] == "client_credentials"
    assert posts[1]["url"] == "https://id.academy.test/admin/realms/admissions/users"
    assert posts[1]["headers"]["Authorization"] == "Bearer adm"
    assert posts[1]["json"]["credentials"][0]["temporary"] is False
    assert posts[1]["json"]["firstName"] == "Nisha"


def test_create_user_falls_back_to_email_lookup(secret_env):
    def fake_post(url, **kw):
        return _Resp(200, {"access_token": "adm"}) if url.endswith("/token") else _Resp(201)

    secret_env.setattr(admin_mod.requests, "post", fake_post)
    secret_env.setattr(admin_mod.requests, "get", lambda url, **kw: _Resp(200, [{"id": "kc-9"}]))
    assert AdminClient(CFG).create_user(email="x@academy.test", password="s3cretpass") == "kc-9"

    secret_env.setattr(admin_mod.requests, "get", lambda url, **kw: _Resp(200, []))
    with pytest.raises(ValueError) as exc:
        AdminClient(CFG).create_user(email="x@academy.test", password="s3cretpass")
    assert str(exc.value) == "user_lookup_failed"


@pytest.mark.parametrize("status, code", [(409, "user_exists"), (400, "user_create_failed")])
def test_create_user_error_codes(secret_env, status, code):
    def fake_post(url, **kw):
        return _Resp(200, {"access_token": "adm"}) if url.endswith("/token") else _Resp(status)

    secret_env.setattr(admin_mod.requests, "post", fake_post)
    with pytest.raises(ValueError) as exc:
        AdminClient(CFG).create_user(email="x@academy.test", password="s3cretpass")
    assert str(exc.value) == code


@pytest.mark.parametrize("status, ok", [(204, True), (404, True), (500, False)])
def test_delete_user(secret_env, status, ok):
    secret_env.setattr(admin_mod.requests, "post", _token_ok)
    secret_env.setattr(admin_mod.requests, "delete", lambda url, **kw: _Resp(status))
    if ok:
        AdminClient(CFG).delete_user(user_id="kc-1")
    else:
        with pytest.raises(ValueError):
            AdminClient(CFG).delete_user(user_id="kc-1")


def test_password_grant_refused_in_prod(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("KC_ADMIN_CLIENT_SECRET", raising=False)
    monkeypatch.setenv("KC_ADMIN_USERNAME", "admin")
    monkeypatch.setenv("KC_ADMIN_PASSWORD", "admin")
    monkeypatch.setenv("ADMISSIONS_ENV", "prod")
    with pytest.raises(RuntimeError):
        AdminClient(CFG).delete_user(user_id="kc-1")


def test_password_grant_in_dev_and_ca_bundle(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("KC_ADMIN_CLIENT_SECRET", raising=False)
    monkeypatch.setenv("KC_ADMIN_USERNAME", "admin")
    monkeypatch.setenv("KC_ADMIN_PASSWORD", "admin")
    monkeypatch.setenv("KEYCLOAK_CA_BUNDLE", "/etc/ssl/academy-ca.pem")
    seen = {}

    def fake_post(url, data=None, timeout=None, verify=None, **kw):
        seen.update(grant=data["grant_type"], verify=verify)
        return _Resp(200, {"access_token": "adm"})

    monkeypatch.setattr(admin_mod.requests, "post", fake_post)
    monkeypatch.setattr(admin_mod.requests, "delete", lambda url, **kw: _Resp(204))
    AdminClient(CFG).delete_user(user_id="kc-1")
    assert seen == {"grant": "password", "verify": "/etc/ssl/academy-ca.pem"}


def test_missing_credentials_is_runtime_error(monkeypatch: pytest.MonkeyPatch):
    for var in ("KC_ADMIN_CLIENT_SECRET", "KC_ADMIN_USERNAME", "KC_ADMIN_PASSWORD"):
        monkeypatch.delenv(var, raising=False)
    with pytest.raises(RuntimeError):
        AdminClient(CFG).create_user(email="x@academy.test", password="s3cretpass")
