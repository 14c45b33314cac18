"""Login and refresh exchanges against the API's auth endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import requests

from fumo_sdk.credentials import Credential, utc_now
from fumo_sdk.errors import ApiRequestError, ApiUnavailableError, AuthRejectedError
from fumo_sdk.transport import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
    build_session,
    error_detail,
    join_url,
    response_body,
)

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_PATH = "/api/auth/login"
DEFAULT_REFRESH_PATH = "/api/auth/refresh"

# Statuses meaning "this proof/refresh token is no good", as opposed to "try later".
_REJECTION_STATUSES = frozenset({400, 401, 403, 422})


@dataclass
class AuthTransport:
    base_url: str
    login_path: str = DEFAULT_LOGIN_PATH
    refresh_path: str = DEFAULT_REFRESH_PATH
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    clock: Callable[[], datetime] = field(default=utc_now, repr=False)

    def __post_init__(self) -> None:
        self._session = build_session()

    def _post(self, path: str, payload: dict, *, action: str) -> dict:
        try:
            response = self._session.request(
                "POST",
                join_url(self.base_url, path),
                json=payload,
                timeout=(self.connect_timeout, self.read_timeout),
            )
        except requests.RequestException as exc:
            raise ApiUnavailableError(f"{action} request failed: {type(exc).__name__}") from exc

        body = response_body(response)
        detail = error_detail(body)
        if response.status_code in _REJECTION_STATUSES:
            raise AuthRejectedError(
                f"{action} rejected: {response.status_code} {detail or ''}".rstrip(),
                status_code=response.status_code,
                detail=detail,
            )
        if response.status_code >= 400:
            raise ApiRequestError(
                f"{action} request failed: {response.status_code} {detail or ''}".rstrip(),
                status_code=response.status_code,
                detail=detail,
                body=body,
            )
        if isinstance(body, dict) and body.get("success") is False:
            raise AuthRejectedError(
                f"{action} rejected: {detail or 'api reported failure'}",
                status_code=response.status_code,
                detail=detail,
            )
        if not isinstance(body, dict):
            raise ApiRequestError(
                f"{action} response was not a JSON object",
                status_code=response.status_code,
            )
        return body

    def _credential_from(self, body: dict, *, action: str) -> Credential:
        try:
            return Credential.from_token_response(body, now=self.clock())
        except ValueError as exc:
            raise ApiRequestError(f"malformed {action} response: {exc}") from exc

    def exchange(self, proof: str) -> Credential:
        """Trade an operator-supplied proof (one-time code or password) for a credential."""
        body = self._post(self.login_path, {"code": proof}, action="login")
        logger.debug("login exchange succeeded")
        return self._credential_from(body, action="login")

    def refresh(self, refresh_token: str) -> Credential:
        body = self._post(self.refresh_path, {"refresh_token": refresh_token}, action="refresh")
        credential = self._credential_from(body, action="refresh")
        if credential.refresh_token is None:
            # Non-rotating APIs keep accepting the previous refresh token.
            credential = Credential(
                token=credential.token,
                issued_at=credential.issued_at,
                expires_at=credential.expires_at,
                refresh_token=refresh_token,
            )
        return credential
