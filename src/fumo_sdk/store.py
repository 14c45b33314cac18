"""Per-profile key-value persistence for session and cache state."""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from fumo_sdk.errors import InvalidProfileError, StoreUnavailableError

if os.name == "posix":
    import fcntl

logger = logging.getLogger(__name__)

STORE_SCHEMA_VERSION = 1
PROFILES_DIRNAME = "profiles"

_PROFILE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_BYTES_TAG = "__bytes_b64__"


def validate_profile_name(profile: str) -> str:
    if not isinstance(profile, str) or not _PROFILE_NAME_RE.match(profile):
        raise InvalidProfileError(
            "profile name must start with a letter or digit and contain only "
            "letters, digits, '.', '_' or '-'"
        )
    return profile


def _encode_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {_BYTES_TAG: base64.b64encode(bytes(value)).decode("ascii")}
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict) and set(value) == {_BYTES_TAG}:
        return base64.b64decode(value[_BYTES_TAG])
    return value


def _chmod_owner_only(path: Path) -> None:
    if os.name != "posix":
        return
    path.chmod(0o600)


class LocalStore:
    """Durable key-value records, one JSON file per profile.

    Records live at ``{root}/profiles/{profile}.json`` with the shape::

        {"schema_version": 1, "entries": {...}}

    Keys the current version does not know about, at the top level or inside
    ``entries``, are carried through every rewrite. Writes go through a temp
    file plus ``os.replace`` under an exclusive ``flock`` on a sibling
    ``.lock`` file, so readers only ever see a complete record.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    @property
    def profiles_dir(self) -> Path:
        return self.root / PROFILES_DIRNAME

    def _record_path(self, profile: str) -> Path:
        return self.profiles_dir / f"{validate_profile_name(profile)}.json"

    def _lock_path(self, profile: str) -> Path:
        return self.profiles_dir / f"{validate_profile_name(profile)}.lock"

    @contextmanager
    def _locked(self, profile: str) -> Iterator[None]:
        lock_path = self._lock_path(profile)
        try:
            self.profiles_dir.mkdir(parents=True, exist_ok=True)
            handle = open(lock_path, "a+b")
        except OSError as exc:
            raise StoreUnavailableError(f"cannot open store lock: {lock_path}: {exc}") from exc
        try:
            if os.name == "posix":
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                except OSError as exc:
                    raise StoreUnavailableError(
                        f"cannot lock profile store: {lock_path}: {exc}"
                    ) from exc
            yield
        finally:
            if os.name == "posix":
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()

    def _read_record(self, profile: str) -> dict[str, Any]:
        path = self._record_path(profile)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {"schema_version": STORE_SCHEMA_VERSION, "entries": {}}
        except OSError as exc:
            raise StoreUnavailableError(f"cannot read profile store: {path}: {exc}") from exc

        try:
            record = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreUnavailableError(f"corrupt profile store: {path}") from exc
        if not isinstance(record, dict):
            raise StoreUnavailableError(f"corrupt profile store: {path}")
        entries = record.get("entries")
        if entries is None:
            record["entries"] = {}
        elif not isinstance(entries, dict):
            raise StoreUnavailableError(f"corrupt profile store: {path}")
        return record

    def _write_record(self, profile: str, record: dict[str, Any]) -> None:
        path = self._record_path(profile)
        serialized = json.dumps(record, sort_keys=True, indent=2) + "\n"
        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=str(self.profiles_dir)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(serialized)
                handle.flush()
                os.fsync(handle.fileno())
            _chmod_owner_only(Path(tmp_name))
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise StoreUnavailableError(f"cannot write profile store: {path}: {exc}") from exc
        finally:
            # Interrupted before the rename: the previous record stays in place.
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass

    def get(self, profile: str, key: str) -> Any | None:
        record = self._read_record(profile)
        if key not in record["entries"]:
            return None
        return _decode_value(record["entries"][key])

    def set(self, profile: str, key: str, value: Any | None) -> None:
        with self._locked(profile):
            record = self._read_record(profile)
            entries = record["entries"]
            if value is None:
                if key not in entries:
                    return
                del entries[key]
            else:
                entries[key] = _encode_value(value)
            record.setdefault("schema_version", STORE_SCHEMA_VERSION)
            self._write_record(profile, record)
        action = "cleared" if value is None else "written"
        logger.debug("store key %s %s for profile %s", key, action, profile)

    def clear_if(self, profile: str, key: str, matches: Callable[[Any], bool]) -> bool:
        """Remove ``key`` only while its current value satisfies ``matches``.

        The check and the removal happen under the profile lock, so a value
        written by another writer in between is left alone.
        """
        with self._locked(profile):
            record = self._read_record(profile)
            entries = record["entries"]
            if key not in entries or not matches(_decode_value(entries[key])):
                return False
            del entries[key]
            self._write_record(profile, record)
        logger.debug("store key %s cleared for profile %s", key, profile)
        return True

    def keys(self, profile: str) -> list[str]:
        return sorted(self._read_record(profile)["entries"])

    def delete(self, profile: str) -> None:
        path = self._record_path(profile)
        with self._locked(profile):
            try:
                path.unlink()
            except FileNotFoundError:
                return
            except OSError as exc:
                raise StoreUnavailableError(f"cannot delete profile store: {path}: {exc}") from exc
        logger.debug("store record removed for profile %s", profile)

    def profiles(self) -> list[str]:
        if not self.profiles_dir.exists():
            return []
        return sorted(
            path.stem
            for path in self.profiles_dir.glob("*.json")
            if _PROFILE_NAME_RE.match(path.stem)
        )
