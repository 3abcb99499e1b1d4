from __future__ import annotations

import time
from threading import Lock
from typing import Callable, Optional

from core.logger import log_event
from orchestrator import system_metrics
from orchestrator.session.runtime import InterviewRuntime


RuntimeFactory = Callable[[str], InterviewRuntime]


class RuntimeRegistry:
    def __init__(self, factory: Optional[RuntimeFactory] = None):
        self._lock = Lock()
        self._runtimes: dict[str, dict] = {}
        self._factory: RuntimeFactory = factory or InterviewRuntime

    def get_or_create(self, client_id: str) -> InterviewRuntime:
        key = str(client_id or "default")
        with self._lock:
            entry = self._runtimes.get(key)
            if entry is not None:
                entry["updated_at"] = time.time()
                entry["active"] = True
                return entry["runtime"]

            runtime = self._factory(key)
            self._runtimes[key] = {
                "runtime": runtime,
                "created_at": time.time(),
                "updated_at": time.time(),
                "active": True,
            }
            system_metrics.set_metric("runtimes_active", len(self._runtimes))

        # pick up a session persisted by an earlier process, whatever its mode
        runtime.restore()
        return runtime

    def get(self, client_id: str) -> Optional[InterviewRuntime]:
        with self._lock:
            entry = self._runtimes.get(str(client_id or "default"))
            return entry["runtime"] if entry else None

    def touch(self, client_id: str) -> None:
        with self._lock:
            if client_id in self._runtimes:
                self._runtimes[client_id]["updated_at"] = time.time()

    def mark_inactive(self, client_id: str) -> None:
        with self._lock:
            if client_id in self._runtimes:
                self._runtimes[client_id]["active"] = False
                self._runtimes[client_id]["updated_at"] = time.time()

    def is_active(self, client_id: str) -> bool:
        with self._lock:
            entry = self._runtimes.get(client_id)
            return bool(entry and entry.get("active"))

    def remove(self, client_id: str) -> bool:
        with self._lock:
            entry = self._runtimes.pop(client_id, None)
            system_metrics.set_metric("runtimes_active", len(self._runtimes))
        if entry is None:
            return False
        entry["runtime"].close()
        return True

    def cleanup_inactive(self, ttl_sec: float) -> int:
        now_ts = time.time()
        cutoff = now_ts - max(30.0, float(ttl_sec or 900.0))
        removed: list[InterviewRuntime] = []
        with self._lock:
            for client_id, data in list(self._runtimes.items()):
                if bool((data or {}).get("active", False)):
                    continue
                updated_at = float((data or {}).get("updated_at") or 0.0)
                if updated_at <= cutoff:
                    removed.append(self._runtimes.pop(client_id)["runtime"])
            system_metrics.set_metric("runtimes_active", len(self._runtimes))

        for runtime in removed:
            runtime.close()
        if removed:
            log_event("registry", "runtimes_cleaned", "", removed=len(removed))
        return len(removed)

    def clear(self) -> None:
        with self._lock:
            runtimes = [entry["runtime"] for entry in self._runtimes.values()]
            self._runtimes.clear()
            system_metrics.set_metric("runtimes_active", 0)
        for runtime in runtimes:
            runtime.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._runtimes)


runtime_registry = RuntimeRegistry()
