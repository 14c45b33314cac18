"""Authorized request pipeline for the fumosclub API."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable

import requests

from fumo_sdk.credentials import Credential
from fumo_sdk.errors import ApiRequestError, ApiUnavailableError
from fumo_sdk.outcomes import (
    AuthExpired,
    FatalFailure,
    RateLimited,
    RequestOutcome,
    Success,
    TransientFailure,
)
from fumo_sdk.session import NeedsLogin, SessionManager
from fumo_sdk.transport import (
    DEFAULT_BASE_URL,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
    build_session,
    error_detail,
    join_url,
    parse_retry_after,
    response_body,
)

logger = logging.getLogger(__name__)

AUTH_SCHEMES = ("bearer", "cookie")
DEFAULT_RETRY_AFTER = 30.0
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

ACCOUNT_DETAILS_PATH = "/api/account/getdetails"
SCRIPT_LIST_PATH = "/api/script/home/getscripts"

_NOT_LOGGED_IN_MARKERS = ("not logged in", "not authenticated", "invalid session")


@dataclass(frozen=True)
class EndpointSpec:
    method: str
    path: str
    idempotent: bool | None = None
    idempotency_key: str | None = None

    @property
    def retry_safe(self) -> bool:
        if self.idempotent is not None:
            return self.idempotent
        return self.method.upper() in SAFE_METHODS or bool(self.idempotency_key)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with multiplicative jitter.

    ``delay(n)`` is the pause before retry ``n`` (1-based). With ``jitter < 1``
    each delay is strictly larger than the previous one until ``backoff_max``
    caps it.
    """

    retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if not 0.0 <= self.jitter < 1.0:
            raise ValueError("jitter must be in [0, 1)")

    @property
    def max_attempts(self) -> int:
        return 1 + self.retries

    def delay(self, retry_number: int, rng: random.Random) -> float:
        base = min(self.backoff_max, self.backoff_base * (2 ** (retry_number - 1)))
        return base * (1.0 + self.jitter * rng.random())


class _Retryable(Exception):
    def __init__(self, cause: str) -> None:
        super().__init__(cause)
        self.cause = cause


def apply_credential(headers: dict[str, str], credential: Credential, scheme: str) -> None:
    if scheme == "bearer":
        headers["Authorization"] = f"Bearer {credential.token}"
    elif scheme == "cookie":
        headers["Cookie"] = f"session={credential.token}"
    else:
        raise ValueError(f"unsupported auth scheme: {scheme}")


@dataclass
class ApiClient:
    sessions: SessionManager
    profile: str
    base_url: str = DEFAULT_BASE_URL
    auth_scheme: str = "bearer"
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        if self.auth_scheme not in AUTH_SCHEMES:
            raise ValueError(f"auth_scheme must be one of: {', '.join(AUTH_SCHEMES)}")
        self._session = build_session()

    def _url(self, path: str) -> str:
        return join_url(self.base_url, path)

    def call(self, endpoint: EndpointSpec, body: object | None = None) -> RequestOutcome:
        try:
            credential = self.sessions.current_credential(self.profile)
        except ApiUnavailableError as exc:
            if isinstance(exc, ApiRequestError) and exc.permanent:
                return FatalFailure(
                    cause=f"credential refresh failed: {exc}",
                    status_code=exc.status_code,
                    detail=exc.detail,
                )
            return TransientFailure(cause=f"credential refresh failed: {exc}", attempts=0)
        if isinstance(credential, NeedsLogin):
            return AuthExpired(reason=credential.reason)

        headers: dict[str, str] = {}
        apply_credential(headers, credential, self.auth_scheme)
        if endpoint.idempotency_key:
            headers["Idempotency-Key"] = endpoint.idempotency_key

        max_attempts = self.retry_policy.max_attempts if endpoint.retry_safe else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._attempt(endpoint, body, headers, credential)
            except _Retryable as exc:
                if attempt >= max_attempts:
                    logger.warning(
                        "%s %s failed after %d attempt(s): %s",
                        endpoint.method,
                        endpoint.path,
                        attempt,
                        exc.cause,
                    )
                    return TransientFailure(cause=exc.cause, attempts=attempt)
                delay = self.retry_policy.delay(attempt, self.rng)
                logger.info(
                    "%s %s attempt %d failed (%s); retrying in %.2fs",
                    endpoint.method,
                    endpoint.path,
                    attempt,
                    exc.cause,
                    delay,
                )
                self.sleep(delay)

    def _attempt(
        self,
        endpoint: EndpointSpec,
        body: object | None,
        headers: dict[str, str],
        credential: Credential,
    ) -> RequestOutcome:
        try:
            response = self._session.request(
                endpoint.method.upper(),
                self._url(endpoint.path),
                json=body,
                headers=headers,
                timeout=(self.connect_timeout, self.read_timeout),
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise _Retryable(f"network error: {type(exc).__name__}") from exc
        except requests.RequestException as exc:
            return FatalFailure(cause=f"request could not be sent: {type(exc).__name__}")
        return self._classify(response, credential)

    def _classify(self, response, credential: Credential) -> RequestOutcome:
        status = response.status_code
        payload = response_body(response)
        detail = error_detail(payload)

        if 200 <= status < 300:
            if isinstance(payload, dict) and payload.get("success") is False:
                return self._classify_app_error(status, detail, credential)
            return Success(payload=payload, status_code=status)
        if status in (401, 403):
            self.sessions.invalidate(self.profile, credential)
            return AuthExpired(reason=f"api rejected credential ({status})")
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is None:
                retry_after = DEFAULT_RETRY_AFTER
            return RateLimited(retry_after=retry_after)
        if status >= 500:
            raise _Retryable(f"server error: {status}")
        return FatalFailure(
            cause=f"api request failed: {status} {detail or ''}".rstrip(),
            status_code=status,
            detail=detail,
        )

    def _classify_app_error(
        self, status: int, detail: object | None, credential: Credential
    ) -> RequestOutcome:
        text = str(detail or "").lower()
        if any(marker in text for marker in _NOT_LOGGED_IN_MARKERS):
            self.sessions.invalidate(self.profile, credential)
            return AuthExpired(reason="api reported the session is not logged in")
        return FatalFailure(
            cause=f"api error: {detail or 'request was not successful'}",
            status_code=status,
            detail=detail,
        )

    def get_account_details(self) -> RequestOutcome:
        return self.call(EndpointSpec("GET", ACCOUNT_DETAILS_PATH))

    def list_scripts(self) -> RequestOutcome:
        return self.call(EndpointSpec("GET", SCRIPT_LIST_PATH))


__all__ = ["ApiClient", "EndpointSpec", "RetryPolicy", "apply_credential"]
