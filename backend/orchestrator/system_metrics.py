import threading
import time
from typing import Any


_lock = threading.Lock()
_metrics: dict[str, float] = {
    "sessions_started": 0.0,
    "sessions_ended": 0.0,
    "sessions_restored": 0.0,
    "sessions_terminated": 0.0,
    "runtimes_active": 0.0,
    "events_applied": 0.0,
    "events_duplicate": 0.0,
    "events_dropped_no_session": 0.0,
    "events_rejected_invalid": 0.0,
    "code_attempts_reconciled": 0.0,
    "proctor_violations": 0.0,
    "proctor_final_warnings": 0.0,
    "sequence_violations": 0.0,
    "persist_failures": 0.0,
    "persist_total_ms": 0.0,
    "persist_samples": 0.0,
}


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def set_metric(name: str, value: float) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = max(0.0, float(value))


def observe_persist_latency_ms(value_ms: float) -> None:
    latency = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["persist_total_ms"] = float(_metrics.get("persist_total_ms", 0.0)) + latency
        _metrics["persist_samples"] = float(_metrics.get("persist_samples", 0.0)) + 1.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    persist_samples = max(1.0, float(data.get("persist_samples") or 0.0))

    payload: dict[str, Any] = {
        "generated_at": time.time(),
        "avg_persist_latency_ms": round(float(data.get("persist_total_ms") or 0.0) / persist_samples, 2),
    }
    for key, value in data.items():
        if key in {"persist_total_ms"}:
            payload[key] = float(value or 0.0)
            continue
        payload[key] = int(value or 0.0)

    if extra:
        payload.update(extra)
    return payload
