"""Credential-keyed cache of authenticated sessions."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TypeAlias

from loguru import logger

from fleetkeeper.core.exceptions import AuthenticationFailure

from .session import Credentials, SessionProvider, authenticate

log = logger.bind(component="session-cache")

# Keystone's default token lifetime is one hour. Individual tokens may live
# shorter, which the expiry check below takes care of.
DEFAULT_TTL = timedelta(hours=1)

Clock: TypeAlias = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


class SessionFactory:
    """Wrapper for the session-creating callable (gives it a unique DI type)."""

    def __init__(self, create: Callable[[Credentials], SessionProvider] = authenticate) -> None:
        self._create = create

    def __call__(self, credentials: Credentials) -> SessionProvider:
        return self._create(credentials)


@dataclass(frozen=True, slots=True)
class _Entry:
    session: SessionProvider
    written_at: datetime


class SessionCache:
    """Amortizes authentication across lifecycle operations.

    Entries are keyed by the credentials fingerprint and replaced, never
    updated, once their token expires or the entry outlives ``ttl``.
    Stale entries are dropped on lookup and swept whenever a new one is
    written.
    Concurrent misses for the same key may both authenticate; the last
    write wins and both callers get an equivalent session.
    """

    def __init__(
        self,
        factory: SessionFactory,
        ttl: timedelta = DEFAULT_TTL,
        clock: Clock = utcnow,
    ) -> None:
        self._factory = factory
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def get(self, credentials: Credentials) -> SessionProvider:
        credentials = Credentials.of(
            credentials.endpoint, credentials.identity, credentials.secret, credentials.region
        )
        key = credentials.fingerprint
        now = self._clock()

        entry = self._entries.get(key)
        if entry is not None:
            if self._usable(entry, now):
                return entry.session
            del self._entries[key]

        log.debug(
            "Authenticating {identity} at {endpoint}",
            identity=credentials.identity,
            endpoint=credentials.endpoint,
        )
        try:
            session = self._factory(credentials)
        except AuthenticationFailure:
            self._entries.pop(key, None)
            raise

        self._sweep(now)
        self._entries[key] = _Entry(session=session, written_at=now)
        return session

    def _sweep(self, now: datetime) -> None:
        # Rotated credentials never ask for their old entry again.
        for key, entry in list(self._entries.items()):
            if not self._usable(entry, now):
                self._entries.pop(key, None)

    def _usable(self, entry: _Entry, now: datetime) -> bool:
        if now - entry.written_at >= self._ttl:
            return False
        return entry.session.expires_at > now

    def invalidate(self, credentials: Credentials) -> None:
        """Drop the session cached for ``credentials``, if any."""
        self._entries.pop(credentials.fingerprint, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
