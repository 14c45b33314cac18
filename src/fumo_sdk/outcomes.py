"""Typed results returned by :meth:`fumo_sdk.client.ApiClient.call`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Success:
    payload: object
    status_code: int = 200


@dataclass(frozen=True)
class AuthExpired:
    """No usable credential; the operator has to log in again."""

    reason: str = "authentication required"


@dataclass(frozen=True)
class RateLimited:
    retry_after: float


@dataclass(frozen=True)
class TransientFailure:
    """Retries were exhausted (or not allowed) on a failure that may clear up."""

    cause: str
    attempts: int = 1


@dataclass(frozen=True)
class FatalFailure:
    """Retrying cannot change the outcome."""

    cause: str
    status_code: int | None = None
    detail: object | None = None


RequestOutcome = Union[Success, AuthExpired, RateLimited, TransientFailure, FatalFailure]

__all__ = [
    "Success",
    "AuthExpired",
    "RateLimited",
    "TransientFailure",
    "FatalFailure",
    "RequestOutcome",
]
