"""Shared HTTP plumbing for the auth exchange and the request pipeline."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import requests
from urllib3.exceptions import InvalidHeader
from urllib3.util.retry import Retry

DEFAULT_BASE_URL = "https://fumosclubv1.vercel.app"
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_READ_TIMEOUT = 30.0


def sdk_version() -> str:
    try:
        return pkg_version("fumo-cli")
    except PackageNotFoundError:
        return "0.0.0+local"


USER_AGENT = f"fumo-cli/{sdk_version()} (github.com/techs-sus/fumosync)"


def build_session() -> requests.Session:
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    session.headers["Accept"] = "application/json"
    return session


def join_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def response_body(response) -> object | None:
    """Decoded JSON body, the raw text when it is not JSON, ``None`` when empty."""
    text = getattr(response, "text", None)
    try:
        return response.json()
    except ValueError:
        return text or None


def error_detail(body: object | None) -> object | None:
    if isinstance(body, dict):
        for name in ("detail", "error", "message"):
            if body.get(name) is not None:
                return body[name]
        return None
    if isinstance(body, str) and body.strip():
        return body.strip()
    return None


def parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP date)."""
    if not value:
        return None
    try:
        return max(0.0, float(Retry().parse_retry_after(value)))
    except InvalidHeader:
        return None
