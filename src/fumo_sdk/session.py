"""Authentication lifecycle for a profile: login, refresh, logout."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol

from fumo_sdk.credentials import Credential, utc_now
from fumo_sdk.errors import AuthRejectedError, StoreUnavailableError
from fumo_sdk.store import LocalStore, validate_profile_name

logger = logging.getLogger(__name__)

CREDENTIAL_KEY = "credential"
DEFAULT_EXPIRY_LEEWAY = 30.0


class AuthTransportProtocol(Protocol):
    def exchange(self, proof: str) -> Credential: ...

    def refresh(self, refresh_token: str) -> Credential: ...


class AuthState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


@dataclass(frozen=True)
class NeedsLogin:
    reason: str = "authentication required"


class _RefreshFlight:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Credential | NeedsLogin | None = None
        self.error: BaseException | None = None


class SessionManager:
    """Hands out a usable credential for a profile, refreshing when it can.

    ``current_credential`` is on the hot path of every request: a stored,
    unexpired credential is returned straight from the store. Only an expired
    credential with a refresh token triggers network I/O, and concurrent
    callers for the same profile share one in-flight refresh.
    """

    def __init__(
        self,
        store: LocalStore,
        transport: AuthTransportProtocol,
        *,
        clock: Callable[[], datetime] = utc_now,
        expiry_leeway: float = DEFAULT_EXPIRY_LEEWAY,
    ) -> None:
        self.store = store
        self.transport = transport
        self.clock = clock
        self.expiry_leeway = expiry_leeway
        self._flights: dict[str, _RefreshFlight] = {}
        self._flights_lock = threading.Lock()

    def _load(self, profile: str) -> Credential | None:
        raw = self.store.get(profile, CREDENTIAL_KEY)
        if raw is None:
            return None
        try:
            return Credential.from_dict(raw)
        except ValueError as exc:
            raise StoreUnavailableError(
                f"stored credential for profile {profile!r} is corrupt"
            ) from exc

    def _save(self, profile: str, credential: Credential) -> None:
        self.store.set(profile, CREDENTIAL_KEY, credential.to_dict())

    def _expired(self, credential: Credential) -> bool:
        return credential.is_expired(self.clock(), self.expiry_leeway)

    def login(self, profile: str, proof: str) -> Credential:
        validate_profile_name(profile)
        credential = self.transport.exchange(proof)
        self._save(profile, credential)
        logger.info("logged in profile %s", profile)
        return credential

    def login_with_token(
        self,
        profile: str,
        token: str,
        *,
        expires_at: datetime | None = None,
    ) -> Credential:
        """Store an already-issued session token without a login exchange."""
        validate_profile_name(profile)
        token = token.strip()
        if not token:
            raise AuthRejectedError("session token must not be empty")
        credential = Credential(token=token, issued_at=self.clock(), expires_at=expires_at)
        self._save(profile, credential)
        logger.info("stored session token for profile %s", profile)
        return credential

    def current_credential(self, profile: str) -> Credential | NeedsLogin:
        credential = self._load(profile)
        if credential is None:
            return NeedsLogin("no stored credential")
        if not self._expired(credential):
            return credential
        if not credential.can_refresh:
            self.invalidate(profile, credential)
            return NeedsLogin("credential expired")
        return self._refresh_single_flight(profile)

    def _refresh_single_flight(self, profile: str) -> Credential | NeedsLogin:
        with self._flights_lock:
            flight = self._flights.get(profile)
            leader = flight is None
            if leader:
                flight = _RefreshFlight()
                self._flights[profile] = flight

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.result

        try:
            flight.result = self._refresh(profile)
        except BaseException as exc:
            flight.error = exc
            raise
        finally:
            with self._flights_lock:
                self._flights.pop(profile, None)
            flight.done.set()
        return flight.result

    def _refresh(self, profile: str) -> Credential | NeedsLogin:
        # Another process (or an earlier flight) may have refreshed already.
        credential = self._load(profile)
        if credential is None:
            return NeedsLogin("no stored credential")
        if not self._expired(credential):
            return credential
        if not credential.can_refresh:
            self.invalidate(profile, credential)
            return NeedsLogin("credential expired")

        logger.info("refreshing expired credential for profile %s", profile)
        try:
            refreshed = self.transport.refresh(credential.refresh_token)
        except AuthRejectedError:
            logger.warning("refresh rejected for profile %s; login required", profile)
            self.invalidate(profile, credential)
            return NeedsLogin("refresh rejected")
        self._save(profile, refreshed)
        logger.info("credential refreshed for profile %s", profile)
        return refreshed

    def invalidate(self, profile: str, credential: Credential | None = None) -> bool:
        """Drop the stored credential, keeping cached entries.

        With ``credential`` given, only that credential is dropped: if the
        store already holds a different token (a concurrent refresh or login),
        it is kept and ``False`` is returned.
        """
        if credential is None:
            self.store.set(profile, CREDENTIAL_KEY, None)
            logger.info("credential dropped for profile %s", profile)
            return True

        def _same_token(raw: object) -> bool:
            return isinstance(raw, dict) and raw.get("token") == credential.token

        dropped = self.store.clear_if(profile, CREDENTIAL_KEY, _same_token)
        if dropped:
            logger.info("credential dropped for profile %s", profile)
        else:
            logger.info("credential for profile %s was replaced; keeping it", profile)
        return dropped

    def logout(self, profile: str) -> None:
        self.store.delete(profile)
        logger.info("logged out profile %s", profile)

    def auth_state(self, profile: str) -> AuthState:
        credential = self._load(profile)
        if credential is None:
            return AuthState.UNAUTHENTICATED
        if self._expired(credential):
            return AuthState.EXPIRED
        return AuthState.AUTHENTICATED
