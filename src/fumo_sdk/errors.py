"""SDK error types."""

from __future__ import annotations


class FumoSDKError(RuntimeError):
    """Base SDK error."""


class StoreUnavailableError(FumoSDKError):
    """Local profile store could not be read or written."""


class InvalidProfileError(FumoSDKError):
    """Profile name is not usable as a store namespace."""


class AuthRejectedError(FumoSDKError):
    """API refused the supplied login proof or refresh token."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: object | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ApiUnavailableError(FumoSDKError):
    """API could not be reached."""


class ApiRequestError(ApiUnavailableError):
    """API returned a structured HTTP error response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: object | None = None,
        body: object | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
        self.body = body

    @property
    def permanent(self) -> bool:
        """True when repeating the request cannot change the answer."""
        return self.status_code is None or self.status_code < 500
