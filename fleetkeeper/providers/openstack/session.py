"""Authenticated OpenStack sessions shared across threads.

A keystone token is obtained once and kept as an ``AccessInfo`` snapshot.
Every call to ``current()`` builds a brand new ``Connection`` on top of that
snapshot, because an openstacksdk connection must not be shared between
threads while the token itself can be.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Self

from keystoneauth1 import exceptions as ks_exceptions
from keystoneauth1 import session as ks_session
from keystoneauth1.identity import v2, v3
from keystoneauth1.identity.access import AccessInfoPlugin
from loguru import logger
from openstack import connection

from fleetkeeper.core.exceptions import ActionFailed, AuthenticationFailure, InvalidCredentials

if TYPE_CHECKING:
    from keystoneauth1.access import AccessInfo

log = logger.bind(component="session")


def _fix_empty(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True, slots=True)
class Credentials:
    """Everything needed to authenticate against one OpenStack endpoint.

    ``identity`` is ``tenant:user`` for keystone v2 or
    ``project:user:domain`` for keystone v3.
    """

    endpoint: str
    identity: str
    secret: str = field(repr=False)
    region: str | None = None

    @classmethod
    def of(
        cls,
        endpoint: str | None,
        identity: str | None,
        secret: str | None,
        region: str | None = None,
    ) -> Credentials:
        """Normalize raw input, rejecting blank endpoint, identity or secret."""
        endpoint = _fix_empty(endpoint)
        identity = _fix_empty(identity)
        secret = _fix_empty(secret)

        if endpoint is None:
            raise InvalidCredentials("No endpoint specified")
        if identity is None:
            raise InvalidCredentials("No identity specified")
        if secret is None:
            raise InvalidCredentials("No credential specified")

        return cls(endpoint=endpoint, identity=identity, secret=secret, region=_fix_empty(region))

    @property
    def _parts(self) -> list[str]:
        parts = self.identity.split(":", 2)
        return parts + [""] * (3 - len(parts))

    @property
    def tenant(self) -> str:
        return self._parts[0]

    @property
    def username(self) -> str:
        return self._parts[1]

    @property
    def domain(self) -> str:
        return self._parts[2]

    @property
    def fingerprint(self) -> str:
        """Deterministic digest identifying these credentials in caches."""
        raw = "\n".join((self.endpoint, self.identity, self.secret, self.region or ""))
        return hashlib.sha256(raw.encode()).hexdigest()


class SessionProvider(ABC):
    """Immutable source of live connections.

    Safe to share between threads: ``current()`` never re-authenticates and
    never hands out the same connection object twice.
    """

    @abstractmethod
    def current(self) -> connection.Connection:
        """Return a fresh connection view over the captured session."""

    @abstractmethod
    def _expiry(self) -> datetime | None: ...

    @property
    def expires_at(self) -> datetime:
        """Moment after which the captured token is no longer valid."""
        expires = self._expiry()
        if expires is None:
            raise AssertionError(f"No expiration specified in {self!r}")
        return expires


class _KeystoneSession(SessionProvider):
    def __init__(self, access: AccessInfo, credentials: Credentials) -> None:
        self._access = access
        self._endpoint = credentials.endpoint
        self._region = credentials.region

    @classmethod
    @abstractmethod
    def _password_plugin(cls, credentials: Credentials) -> Any: ...

    @classmethod
    def authenticate(cls, credentials: Credentials) -> Self:
        """Perform the single authentication round-trip for ``credentials``."""
        plugin = cls._password_plugin(credentials)
        try:
            access = plugin.get_access(ks_session.Session(auth=plugin))
        except ks_exceptions.Unauthorized as e:
            raise AuthenticationFailure(
                f"Authentication rejected by {credentials.endpoint} for {credentials.identity}: {e}"
            ) from e
        except ks_exceptions.ClientException as e:
            raise ActionFailed(f"Unable to authenticate against {credentials.endpoint}: {e}") from e

        log.debug("Openstack client created for {endpoint}", endpoint=credentials.endpoint)
        return cls(access, credentials)

    def current(self) -> connection.Connection:
        auth = AccessInfoPlugin(auth_ref=self._access, auth_url=self._endpoint)
        return connection.Connection(
            session=ks_session.Session(auth=auth),
            region_name=self._region,
        )

    def _expiry(self) -> datetime | None:
        return self._access.expires

    def __repr__(self) -> str:
        return f"{type(self).__name__}(endpoint={self._endpoint!r}, region={self._region!r})"


class KeystoneV2Session(_KeystoneSession):
    """Session scoped to a tenant by name (identity API v2)."""

    @classmethod
    def _password_plugin(cls, credentials: Credentials) -> Any:
        return v2.Password(
            auth_url=credentials.endpoint,
            username=credentials.username,
            password=credentials.secret,
            tenant_name=credentials.tenant,
        )


class KeystoneV3Session(_KeystoneSession):
    """Session scoped to a project within a domain (identity API v3)."""

    @classmethod
    def _password_plugin(cls, credentials: Credentials) -> Any:
        return v3.Password(
            auth_url=credentials.endpoint,
            username=credentials.username,
            password=credentials.secret,
            user_domain_name=credentials.domain,
            project_name=credentials.tenant,
            project_domain_name=credentials.domain,
        )


def session_class_for(credentials: Credentials) -> type[_KeystoneSession]:
    """Pick the identity API version from the shape of the identity string."""
    return KeystoneV3Session if credentials.domain else KeystoneV2Session


def authenticate(credentials: Credentials) -> SessionProvider:
    return session_class_for(credentials).authenticate(credentials)


class StaticSession(SessionProvider):
    """Wraps a connection that is already authenticated.

    The same connection is returned on every call, so the caller is
    responsible for its thread-safety. The expiry must be known: either
    passed explicitly or readable from the connection's auth reference.
    """

    def __init__(self, conn: Any, expires_at: datetime | None = None) -> None:
        self._conn = conn
        self._expires = expires_at if expires_at is not None else _expiry_of(conn)
        _ = self.expires_at  # fail fast

    def current(self) -> Any:
        return self._conn

    def _expiry(self) -> datetime | None:
        return self._expires

    def __repr__(self) -> str:
        return f"StaticSession({self._conn!r})"


def _expiry_of(conn: Any) -> datetime | None:
    auth = getattr(getattr(conn, "session", None), "auth", None)
    return getattr(getattr(auth, "auth_ref", None), "expires", None)
