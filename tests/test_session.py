from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
from keystoneauth1 import exceptions as ks_exceptions

from fleetkeeper.core.exceptions import ActionFailed, AuthenticationFailure, InvalidCredentials
from fleetkeeper.providers.openstack import session as session_mod
from fleetkeeper.providers.openstack.session import (
    Credentials,
    KeystoneV2Session,
    KeystoneV3Session,
    StaticSession,
    session_class_for,
)

EXPIRES = datetime(2030, 5, 1, 12, 0, tzinfo=UTC)


class TestCredentials:
    @pytest.mark.parametrize(
        ("endpoint", "identity", "secret", "message"),
        [
            (None, "t:u", "s", "No endpoint specified"),
            ("  ", "t:u", "s", "No endpoint specified"),
            ("https://k", "", "s", "No identity specified"),
            ("https://k", "t:u", None, "No credential specified"),
            ("https://k", "t:u", " \t", "No credential specified"),
        ],
    )
    def test_rejects_blank_fields(self, endpoint, identity, secret, message):
        with pytest.raises(InvalidCredentials, match=message):
            Credentials.of(endpoint, identity, secret)

    def test_strips_whitespace(self):
        creds = Credentials.of(" https://k ", " t:u ", " s ", " ")
        assert creds.endpoint == "https://k"
        assert creds.identity == "t:u"
        assert creds.secret == "s"
        assert creds.region is None

    def test_v2_identity(self):
        creds = Credentials.of("https://k", "tenant:user", "s")
        assert (creds.tenant, creds.username, creds.domain) == ("tenant", "user", "")

    def test_v3_identity(self):
        creds = Credentials.of("https://k", "project:user:Default", "s")
        assert (creds.tenant, creds.username, creds.domain) == ("project", "user", "Default")

    def test_secret_hidden_from_repr(self):
        assert "hunter2" not in repr(Credentials.of("https://k", "t:u", "hunter2"))

    def test_fingerprint_is_deterministic(self):
        a = Credentials.of("https://k", "t:u", "s", "r1")
        b = Credentials.of("https://k", "t:u", "s", "r1")
        assert a.fingerprint == b.fingerprint

    @pytest.mark.parametrize(
        "other",
        [
            ("https://other", "t:u", "s", "r1"),
            ("https://k", "t:v", "s", "r1"),
            ("https://k", "t:u", "changed", "r1"),
            ("https://k", "t:u", "s", "r2"),
        ],
    )
    def test_fingerprint_changes_with_any_field(self, other):
        base = Credentials.of("https://k", "t:u", "s", "r1")
        assert Credentials.of(*other).fingerprint != base.fingerprint


class TestSessionClassFor:
    def test_domain_selects_v3(self):
        assert session_class_for(Credentials.of("https://k", "p:u:d", "s")) is KeystoneV3Session

    def test_no_domain_selects_v2(self):
        assert session_class_for(Credentials.of("https://k", "t:u", "s")) is KeystoneV2Session


class _Plugin:
    def __init__(self, result=None, error=None):
        self._result = result
        self._error = error

    def get_access(self, _session):
        if self._error is not None:
            raise self._error
        return self._result


class TestKeystoneSession:
    @pytest.fixture
    def credentials(self):
        return Credentials.of("https://keystone:5000/v3", "p:u:Default", "s", "RegionOne")

    def test_authenticate_captures_expiry(self, monkeypatch, credentials):
        access = SimpleNamespace(expires=EXPIRES)
        monkeypatch.setattr(KeystoneV3Session, "_password_plugin", classmethod(lambda cls, c: _Plugin(access)))

        session = KeystoneV3Session.authenticate(credentials)

        assert session.expires_at == EXPIRES

    def test_unauthorized_becomes_authentication_failure(self, monkeypatch, credentials):
        error = ks_exceptions.Unauthorized("bad password")
        monkeypatch.setattr(KeystoneV3Session, "_password_plugin", classmethod(lambda cls, c: _Plugin(error=error)))

        with pytest.raises(AuthenticationFailure, match="rejected") as exc:
            KeystoneV3Session.authenticate(credentials)
        assert exc.value.__cause__ is error

    def test_other_client_errors_become_action_failed(self, monkeypatch, credentials):
        error = ks_exceptions.ConnectFailure("unreachable")
        monkeypatch.setattr(KeystoneV3Session, "_password_plugin", classmethod(lambda cls, c: _Plugin(error=error)))

        with pytest.raises(ActionFailed, match="Unable to authenticate"):
            KeystoneV3Session.authenticate(credentials)

    def test_current_builds_a_new_connection_each_time(self, monkeypatch, credentials):
        built = []

        def fake_connection(**kwargs):
            built.append(kwargs)
            return object()

        monkeypatch.setattr(session_mod.connection, "Connection", fake_connection)
        session = KeystoneV3Session(SimpleNamespace(expires=EXPIRES), credentials)

        first, second = session.current(), session.current()

        assert first is not second
        assert [b["region_name"] for b in built] == ["RegionOne", "RegionOne"]

    def test_missing_expiry_is_an_assertion_error(self, credentials):
        session = KeystoneV2Session(SimpleNamespace(expires=None), credentials)
        with pytest.raises(AssertionError, match="No expiration specified"):
            _ = session.expires_at


class TestStaticSession:
    def test_returns_the_wrapped_connection(self):
        conn = object()
        session = StaticSession(conn, expires_at=EXPIRES)
        assert session.current() is conn
        assert session.current() is conn

    def test_reads_expiry_from_connection(self):
        conn = SimpleNamespace(session=SimpleNamespace(auth=SimpleNamespace(auth_ref=SimpleNamespace(expires=EXPIRES))))
        assert StaticSession(conn).expires_at == EXPIRES

    def test_unknown_expiry_fails_at_construction(self):
        with pytest.raises(AssertionError, match="No expiration specified"):
            StaticSession(object())
