"""Credential model shared by the session manager and the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

_KNOWN_FIELDS = ("token", "issued_at", "expires_at", "refresh_token")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: object) -> datetime:
    """Accept ISO-8601 strings (``Z`` or offset) and epoch seconds."""
    if isinstance(value, bool):
        raise ValueError("timestamp must be a string or number")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValueError(f"timestamp out of range: {value!r}") from exc
    if not isinstance(value, str) or not value.strip():
        raise ValueError("timestamp must be a string or number")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
        raise ValueError(f"timestamp out of range: {value!r}") from exc


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


@dataclass(frozen=True)
class Credential:
    token: str = field(repr=False)
    issued_at: datetime
    expires_at: datetime | None = None
    refresh_token: str | None = field(default=None, repr=False)
    extra: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, now: datetime, leeway: float = 0.0) -> bool:
        if self.expires_at is None:
            return False
        try:
            return now >= self.expires_at - timedelta(seconds=leeway)
        except OverflowError:
            return True

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload["token"] = self.token
        payload["issued_at"] = format_timestamp(self.issued_at)
        payload["expires_at"] = format_timestamp(self.expires_at) if self.expires_at else None
        payload["refresh_token"] = self.refresh_token
        return payload

    @classmethod
    def from_dict(cls, payload: object) -> Credential:
        if not isinstance(payload, dict):
            raise ValueError("credential record must be a mapping")
        token = payload.get("token")
        if not isinstance(token, str) or not token:
            raise ValueError("credential record must contain a token")
        expires_raw = payload.get("expires_at")
        refresh_token = payload.get("refresh_token")
        return cls(
            token=token,
            issued_at=parse_timestamp(payload.get("issued_at")),
            expires_at=parse_timestamp(expires_raw) if expires_raw is not None else None,
            refresh_token=_optional_str(refresh_token),
            extra={k: v for k, v in payload.items() if k not in _KNOWN_FIELDS},
        )

    @classmethod
    def from_token_response(cls, payload: object, *, now: datetime) -> Credential:
        """Build a credential from a login or refresh response body."""
        if not isinstance(payload, dict):
            raise ValueError("token response must be a JSON object")

        token = None
        for name in ("access_token", "token", "session"):
            candidate = payload.get(name)
            if isinstance(candidate, str) and candidate:
                token = candidate
                break
        if token is None:
            raise ValueError("token response did not contain a token")

        expires_at: datetime | None = None
        if payload.get("expires_at") is not None:
            expires_at = parse_timestamp(payload["expires_at"])
        elif payload.get("expires_in") is not None:
            expires_in = payload["expires_in"]
            if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
                raise ValueError("expires_in must be a number of seconds")
            try:
                expires_at = now + timedelta(seconds=float(expires_in))
            except (OverflowError, ValueError) as exc:
                raise ValueError(f"expires_in out of range: {expires_in!r}") from exc

        refresh_token = payload.get("refresh_token")
        return cls(
            token=token,
            issued_at=now,
            expires_at=expires_at,
            refresh_token=_optional_str(refresh_token),
        )
