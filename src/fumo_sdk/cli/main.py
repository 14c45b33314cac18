"""Command-line interface for fumo."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import re
import sys
from typing import Sequence

from fumo_sdk.auth import AuthTransport
from fumo_sdk.cli.config import CLIConfig, ConfigError, load_cli_config
from fumo_sdk.client import ApiClient, EndpointSpec, RetryPolicy
from fumo_sdk.credentials import format_timestamp, parse_timestamp
from fumo_sdk.errors import (
    ApiRequestError,
    ApiUnavailableError,
    AuthRejectedError,
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
from fumo_sdk.session import CREDENTIAL_KEY, SessionManager
from fumo_sdk.store import LocalStore
from fumo_sdk.transport import sdk_version

EXIT_SUCCESS = 0
EXIT_VALIDATION_ERROR = 1
EXIT_TRANSIENT_FAILURE = 2
EXIT_AUTH_REQUIRED = 3
EXIT_FATAL_FAILURE = 4
EXIT_RATE_LIMITED = 5
EXIT_STORE_ERROR = 6
EXIT_INTERRUPTED = 130

USER_ID_KEY = "user_id"
BASE_URL_KEY = "base_url"

_SENSITIVE_FIELDS = (
    "access_token",
    "refresh_token",
    "session",
    "secret",
    "token",
    "authorization",
)

_prompt_secret = getpass.getpass


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fumo", description="fumo is a cli tool for fumosclub")
    parser.add_argument("--version", action="version", version=f"fumo {sdk_version()}")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to CLI config TOML (default: ~/.fumo/config.toml)",
    )
    parser.add_argument("--profile", default=None, help="Profile to act as (default: from config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")

    sub = parser.add_subparsers(dest="command", required=True)

    version = sub.add_parser("version", help="Show CLI version")
    version.add_argument("--json", action="store_true", help="Print version details as JSON")

    login = sub.add_parser("login", help="Log in to fumosclub (overwrites the stored session)")
    login_source = login.add_mutually_exclusive_group()
    login_source.add_argument("--code", default=None, help="One-time login code to exchange")
    login_source.add_argument(
        "--token",
        default=None,
        help="Existing session token to store as-is (sensitive; avoid in shared shells)",
    )
    login.add_argument(
        "--expires-at",
        default=None,
        help="ISO-8601 expiry for --token (default: no local expiry)",
    )
    login.add_argument("--json", action="store_true")

    logout = sub.add_parser("logout", help="Forget the stored session and cached values")
    logout.add_argument("--json", action="store_true")

    status = sub.add_parser("status", help="Show local authentication state")
    status.add_argument("--json", action="store_true")

    view = sub.add_parser("view", help="Show information about the logged in account")
    view.add_argument("--json", action="store_true")

    list_cmd = sub.add_parser("list", help="List scripts under the logged in account")
    list_cmd.add_argument("--json", action="store_true")

    request = sub.add_parser("request", help="Send an authorized request to an API path")
    request.add_argument("method", help="HTTP method, e.g. GET or POST")
    request.add_argument("path", help="API path, e.g. /api/account/getdetails")
    request.add_argument("--data", default=None, help="JSON request body")
    request.add_argument(
        "--idempotency-key",
        default=None,
        help="Idempotency-Key header; makes a write safe to retry",
    )
    request.add_argument(
        "--idempotent",
        action="store_true",
        help="Treat the endpoint as safe to retry",
    )

    profiles = sub.add_parser("profiles", help="List locally stored profiles")
    profiles.add_argument("--json", action="store_true")

    return parser


def _emit_beta_warning(config: CLIConfig, command: str, stderr) -> None:
    if command == "version":
        return
    if not config.beta_mode:
        return
    print(
        "[beta] fumo is alpha software; please report bugs to https://github.com/techs-sus/fumo",
        file=stderr,
    )


def _configure_logging(config: CLIConfig, *, verbose: bool, stderr) -> None:
    level_name = "debug" if verbose else config.log_level
    logging.basicConfig(
        level=getattr(logging, level_name.upper()),
        stream=stderr,
        format="%(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _sanitize_error_text(value: str) -> str:
    redacted = value
    for field in _SENSITIVE_FIELDS:
        redacted = re.sub(
            rf"(?i)({field}\s*[=:]\s*)([^,\s]+)",
            r"\1[REDACTED]",
            redacted,
        )
    redacted = re.sub(r"(?i)(bearer\s+)(\S+)", r"\1[REDACTED]", redacted)
    return redacted


def _print_error(stderr, prefix: str, message: str, *, code: int) -> int:
    print(f"{prefix}: {_sanitize_error_text(message)}", file=stderr)
    return code


def outcome_exit_code(outcome: RequestOutcome) -> int:
    if isinstance(outcome, Success):
        return EXIT_SUCCESS
    if isinstance(outcome, AuthExpired):
        return EXIT_AUTH_REQUIRED
    if isinstance(outcome, RateLimited):
        return EXIT_RATE_LIMITED
    if isinstance(outcome, TransientFailure):
        return EXIT_TRANSIENT_FAILURE
    return EXIT_FATAL_FAILURE


def _print_outcome_error(stderr, outcome: RequestOutcome) -> int:
    code = outcome_exit_code(outcome)
    if isinstance(outcome, AuthExpired):
        return _print_error(
            stderr,
            "auth error",
            f"{outcome.reason}; run `fumo login` and try again",
            code=code,
        )
    if isinstance(outcome, RateLimited):
        return _print_error(
            stderr,
            "rate limited",
            f"retry after {outcome.retry_after:g} seconds",
            code=code,
        )
    if isinstance(outcome, TransientFailure):
        return _print_error(
            stderr,
            "api unavailable",
            f"{outcome.cause} (attempts={outcome.attempts}); try again later",
            code=code,
        )
    if isinstance(outcome, FatalFailure):
        return _print_error(stderr, "api error", outcome.cause, code=code)
    return code


class _Context:
    def __init__(self, config: CLIConfig, profile: str) -> None:
        self.config = config
        self.profile = profile
        self.store = LocalStore(config.store_dir)
        self.sessions = SessionManager(
            self.store,
            AuthTransport(
                base_url=config.base_url,
                login_path=config.login_path,
                refresh_path=config.refresh_path,
                connect_timeout=config.connect_timeout,
                read_timeout=config.read_timeout,
            ),
        )

    def client(self) -> ApiClient:
        return ApiClient(
            sessions=self.sessions,
            profile=self.profile,
            base_url=self.config.base_url,
            auth_scheme=self.config.auth_scheme,
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
            retry_policy=RetryPolicy(retries=self.config.retries),
        )


def _run_version(*, as_json: bool, stdout) -> int:
    payload = {"cli": "fumo", "version": sdk_version()}
    if as_json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"fumo {payload['version']}", file=stdout)
    return EXIT_SUCCESS


def _run_login(*, args, ctx: _Context, stdout, stderr) -> int:
    expires_at = None
    if args.expires_at is not None:
        if args.token is None:
            return _print_error(
                stderr,
                "login error",
                "--expires-at only applies to --token",
                code=EXIT_VALIDATION_ERROR,
            )
        try:
            expires_at = parse_timestamp(args.expires_at)
        except ValueError:
            return _print_error(
                stderr,
                "login error",
                "--expires-at must be an ISO-8601 timestamp",
                code=EXIT_VALIDATION_ERROR,
            )

    try:
        if args.token is not None:
            credential = ctx.sessions.login_with_token(
                ctx.profile, args.token, expires_at=expires_at
            )
        else:
            proof = args.code if args.code is not None else _prompt_secret("one-time code: ")
            if not proof.strip():
                return _print_error(
                    stderr,
                    "login error",
                    "login code must not be empty",
                    code=EXIT_VALIDATION_ERROR,
                )
            credential = ctx.sessions.login(ctx.profile, proof.strip())
        ctx.store.set(ctx.profile, BASE_URL_KEY, ctx.config.base_url)
    except AuthRejectedError as exc:
        return _print_error(stderr, "login error", str(exc), code=EXIT_VALIDATION_ERROR)
    except ApiRequestError as exc:
        if exc.permanent:
            return _print_error(stderr, "login error", str(exc), code=EXIT_FATAL_FAILURE)
        return _print_error(stderr, "api unavailable", str(exc), code=EXIT_TRANSIENT_FAILURE)
    except ApiUnavailableError as exc:
        return _print_error(stderr, "api unavailable", str(exc), code=EXIT_TRANSIENT_FAILURE)

    payload = {
        "profile": ctx.profile,
        "logged_in": True,
        "expires_at": format_timestamp(credential.expires_at) if credential.expires_at else None,
        "refreshable": credential.can_refresh,
    }
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return EXIT_SUCCESS

    print(f"logged in: profile={ctx.profile}", file=stdout)
    print(f"expires_at: {payload['expires_at'] or 'never'}", file=stdout)
    return EXIT_SUCCESS


def _run_logout(*, args, ctx: _Context, stdout) -> int:
    ctx.sessions.logout(ctx.profile)
    if args.json:
        print(json.dumps({"profile": ctx.profile, "logged_out": True}, sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    print(f"logged out: profile={ctx.profile}", file=stdout)
    return EXIT_SUCCESS


def _run_status(*, args, ctx: _Context, stdout) -> int:
    state = ctx.sessions.auth_state(ctx.profile)
    stored = ctx.store.get(ctx.profile, CREDENTIAL_KEY)
    expires_at = stored.get("expires_at") if isinstance(stored, dict) else None
    payload = {
        "profile": ctx.profile,
        "state": state.value,
        "expires_at": expires_at,
        "refreshable": bool(isinstance(stored, dict) and stored.get("refresh_token")),
        "user_id": ctx.store.get(ctx.profile, USER_ID_KEY),
        "base_url": ctx.config.base_url,
    }
    if args.json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
        return EXIT_SUCCESS

    print(f"profile: {payload['profile']}", file=stdout)
    print(f"state: {payload['state']}", file=stdout)
    print(f"expires_at: {payload['expires_at'] or 'never'}", file=stdout)
    print(f"refreshable: {payload['refreshable']}", file=stdout)
    print(f"user_id: {payload['user_id']}", file=stdout)
    print(f"base_url: {payload['base_url']}", file=stdout)
    return EXIT_SUCCESS


def _run_view(*, args, ctx: _Context, stdout, stderr) -> int:
    outcome = ctx.client().get_account_details()
    if not isinstance(outcome, Success):
        return _print_outcome_error(stderr, outcome)

    details = outcome.payload if isinstance(outcome.payload, dict) else {}
    user_id = details.get("id")
    if isinstance(user_id, str) and user_id:
        ctx.store.set(ctx.profile, USER_ID_KEY, user_id)

    if args.json:
        print(json.dumps(details, sort_keys=True), file=stdout)
        return EXIT_SUCCESS

    print(
        f"{details.get('name')} - {details.get('robloxUser')} - {details.get('id')}",
        file=stdout,
    )
    print(f"{details.get('numSessions', 0)} currently logged in sessions", file=stdout)
    return EXIT_SUCCESS


def _run_list(*, args, ctx: _Context, stdout, stderr) -> int:
    outcome = ctx.client().list_scripts()
    if not isinstance(outcome, Success):
        return _print_outcome_error(stderr, outcome)

    payload = outcome.payload if isinstance(outcome.payload, dict) else {}
    scripts = payload.get("scripts") or []
    if not isinstance(scripts, list) or not all(isinstance(item, dict) for item in scripts):
        return _print_error(
            stderr,
            "api error",
            "script list response was not a list of objects",
            code=EXIT_FATAL_FAILURE,
        )
    if args.json:
        print(json.dumps(scripts, sort_keys=True), file=stdout)
        return EXIT_SUCCESS

    for script in scripts:
        favorite = "★" if script.get("isFavorite") else "☆"
        lock = "🔓" if script.get("editable") else "🔐"
        print(
            f"{favorite} {script.get('name')} ({script.get('id')}) "
            f"by {script.get('creator')} {lock}",
            file=stdout,
        )
    return EXIT_SUCCESS


def _run_request(*, args, ctx: _Context, stdout, stderr) -> int:
    body = None
    if args.data is not None:
        try:
            body = json.loads(args.data)
        except json.JSONDecodeError as exc:
            return _print_error(
                stderr,
                "request error",
                f"--data must be valid JSON: {exc}",
                code=EXIT_VALIDATION_ERROR,
            )

    endpoint = EndpointSpec(
        method=args.method.upper(),
        path=args.path,
        idempotent=True if args.idempotent else None,
        idempotency_key=args.idempotency_key,
    )
    outcome = ctx.client().call(endpoint, body)
    if not isinstance(outcome, Success):
        return _print_outcome_error(stderr, outcome)

    if isinstance(outcome.payload, str):
        print(outcome.payload, file=stdout)
    else:
        print(json.dumps(outcome.payload, sort_keys=True, indent=2), file=stdout)
    return EXIT_SUCCESS


def _run_profiles(*, args, ctx: _Context, stdout) -> int:
    names = ctx.store.profiles()
    if args.json:
        print(json.dumps({"active": ctx.profile, "profiles": names}, sort_keys=True), file=stdout)
        return EXIT_SUCCESS
    for name in names:
        marker = "*" if name == ctx.profile else " "
        print(f"{marker} {name}", file=stdout)
    return EXIT_SUCCESS


def _dispatch(args, ctx: _Context, *, stdout, stderr) -> int:
    if args.command == "login":
        return _run_login(args=args, ctx=ctx, stdout=stdout, stderr=stderr)
    if args.command == "logout":
        return _run_logout(args=args, ctx=ctx, stdout=stdout)
    if args.command == "status":
        return _run_status(args=args, ctx=ctx, stdout=stdout)
    if args.command == "view":
        return _run_view(args=args, ctx=ctx, stdout=stdout, stderr=stderr)
    if args.command == "list":
        return _run_list(args=args, ctx=ctx, stdout=stdout, stderr=stderr)
    if args.command == "request":
        return _run_request(args=args, ctx=ctx, stdout=stdout, stderr=stderr)
    if args.command == "profiles":
        return _run_profiles(args=args, ctx=ctx, stdout=stdout)
    return _print_error(
        stderr, "usage error", f"unknown command: {args.command}", code=EXIT_VALIDATION_ERROR
    )


def main(argv: Sequence[str] | None = None, *, stdout=sys.stdout, stderr=sys.stderr) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_cli_config(args.config)
    except ConfigError as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_VALIDATION_ERROR)

    _configure_logging(config, verbose=args.verbose, stderr=stderr)
    _emit_beta_warning(config, args.command, stderr)

    if args.command == "version":
        return _run_version(as_json=args.json, stdout=stdout)

    profile = args.profile or config.profile
    try:
        return _dispatch(args, _Context(config, profile), stdout=stdout, stderr=stderr)
    except InvalidProfileError as exc:
        return _print_error(stderr, "profile error", str(exc), code=EXIT_VALIDATION_ERROR)
    except StoreUnavailableError as exc:
        return _print_error(stderr, "store error", str(exc), code=EXIT_STORE_ERROR)
    except KeyboardInterrupt:
        return _print_error(stderr, "interrupted", "operation cancelled", code=EXIT_INTERRUPTED)


def entrypoint() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    entrypoint()
