"""fumo SDK public surface."""

from fumo_sdk.auth import AuthTransport
from fumo_sdk.client import ApiClient, EndpointSpec, RetryPolicy
from fumo_sdk.credentials import Credential
from fumo_sdk.errors import (
    ApiRequestError,
    ApiUnavailableError,
    AuthRejectedError,
    FumoSDKError,
    InvalidProfileError,
    StoreUnavailableError,
)
from fumo_sdk.outcomes import (
    AuthExpired,
    FatalFailure,
    RateLimited,
    RequestOutcome,
    Success,
    TransientFailure,
)
from fumo_sdk.session import AuthState, NeedsLogin, SessionManager
from fumo_sdk.store import LocalStore

__all__ = [
    "FumoSDKError",
    "StoreUnavailableError",
    "InvalidProfileError",
    "AuthRejectedError",
    "ApiUnavailableError",
    "ApiRequestError",
    "Credential",
    "LocalStore",
    "AuthTransport",
    "SessionManager",
    "AuthState",
    "NeedsLogin",
    "ApiClient",
    "EndpointSpec",
    "RetryPolicy",
    "RequestOutcome",
    "Success",
    "AuthExpired",
    "RateLimited",
    "TransientFailure",
    "FatalFailure",
]
