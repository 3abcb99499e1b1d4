from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Optional, Protocol

from core import config
from core.logger import log_event
from core.state import InterviewMode
from orchestrator.session.errors import SessionDecodeError
from orchestrator.session.models import InterviewSession


class SessionRepository(Protocol):
    key: str

    def save(self, session: InterviewSession) -> None:
        ...

    def load(self, mode: Optional[InterviewMode] = None) -> Optional[InterviewSession]:
        ...

    def clear(self) -> None:
        ...


def encode_session(session: InterviewSession) -> str:
    return json.dumps(session.to_dict(), ensure_ascii=False)


def decode_session(raw: str) -> InterviewSession:
    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise SessionDecodeError("persisted session is not an object")
        return InterviewSession.from_dict(payload)
    except SessionDecodeError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise SessionDecodeError(f"persisted session is malformed: {exc}") from exc


def _restore(repo: SessionRepository, raw: Optional[str], mode: Optional[InterviewMode]) -> Optional[InterviewSession]:
    if not raw:
        return None
    try:
        session = decode_session(raw)
    except SessionDecodeError as exc:
        log_event("repository", "restore_discarded", "", level=logging.WARNING, key=repo.key, reason="decode_error", error=str(exc))
        repo.clear()
        return None

    if mode is not None and session.mode != InterviewMode(mode):
        log_event(
            "repository",
            "restore_discarded",
            session.id,
            key=repo.key,
            reason="mode_mismatch",
            expected=InterviewMode(mode).value,
            found=session.mode.value,
        )
        repo.clear()
        return None

    log_event("repository", "session_restored", session.id, key=repo.key, mode=session.mode.value)
    return session


_shared_memory_records: dict[str, str] = {}
_shared_memory_lock = Lock()


class InMemorySessionRepository:
    def __init__(self, key: str, records: dict[str, str] | None = None):
        self.key = str(key)
        self._records = records if records is not None else {}
        self._lock = _shared_memory_lock

    def save(self, session: InterviewSession) -> None:
        encoded = encode_session(session)
        with self._lock:
            self._records[self.key] = encoded

    def load(self, mode: Optional[InterviewMode] = None) -> Optional[InterviewSession]:
        with self._lock:
            raw = self._records.get(self.key)
        return _restore(self, raw, mode)

    def clear(self) -> None:
        with self._lock:
            self._records.pop(self.key, None)

    def raw(self) -> Optional[str]:
        with self._lock:
            return self._records.get(self.key)


class FileSessionRepository:
    """JSON file holding one serialized session per storage key."""

    _file_locks: dict[str, Lock] = {}
    _file_locks_guard = Lock()

    def __init__(self, key: str, path: Path):
        self.key = str(key)
        self._path = Path(path)
        with self._file_locks_guard:
            self._lock = self._file_locks.setdefault(str(self._path.resolve()), Lock())

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(k): v for k, v in payload.items() if isinstance(v, str)}

    def _write_all(self, records: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(records, ensure_ascii=False), encoding="utf-8")
        temp_path.replace(self._path)

    def save(self, session: InterviewSession) -> None:
        encoded = encode_session(session)
        with self._lock:
            records = self._read_all()
            records[self.key] = encoded
            self._write_all(records)

    def load(self, mode: Optional[InterviewMode] = None) -> Optional[InterviewSession]:
        with self._lock:
            raw = self._read_all().get(self.key)
        return _restore(self, raw, mode)

    def clear(self) -> None:
        with self._lock:
            records = self._read_all()
            if self.key not in records:
                return
            records.pop(self.key, None)
            self._write_all(records)


class RedisSessionRepository:
    def __init__(self, key: str, redis_url: str):
        try:
            import redis  # type: ignore
        except Exception as exc:
            raise RuntimeError("redis package not installed; install 'redis' to enable the redis session store") from exc

        self.key = str(key)
        self._redis = redis.Redis.from_url(redis_url, decode_responses=True)

    def save(self, session: InterviewSession) -> None:
        self._redis.set(self.key, encode_session(session))

    def load(self, mode: Optional[InterviewMode] = None) -> Optional[InterviewSession]:
        raw = self._redis.get(self.key)
        return _restore(self, raw, mode)

    def clear(self) -> None:
        self._redis.delete(self.key)


def storage_key(client_id: str) -> str:
    client = str(client_id or "").strip() or "default"
    return f"{config.SESSION_STORAGE_KEY}:{client}"


def build_session_repository(client_id: str) -> SessionRepository:
    key = storage_key(client_id)
    backend = config.SESSION_STORE_BACKEND

    if backend == "file":
        return FileSessionRepository(key, config.SESSION_STORE_PATH)
    if backend == "redis":
        if not config.REDIS_URL:
            raise RuntimeError("SESSION_STORE_BACKEND=redis requires REDIS_URL")
        return RedisSessionRepository(key, config.REDIS_URL)
    if backend != "memory":
        raise RuntimeError(f"unknown SESSION_STORE_BACKEND {backend!r}")
    return InMemorySessionRepository(key, records=_shared_memory_records)
