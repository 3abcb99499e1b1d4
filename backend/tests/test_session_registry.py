import time

from orchestrator.session.registry import RuntimeRegistry
from orchestrator.session.repository import InMemorySessionRepository
from orchestrator.session.runtime import InterviewRuntime


def _registry(records: dict) -> RuntimeRegistry:
    return RuntimeRegistry(
        factory=lambda client_id: InterviewRuntime(
            client_id,
            repository=InMemorySessionRepository(f"pytest:{client_id}", records=records),
        )
    )


def test_runtime_registry_get_touch_inactive_cleanup():
    registry = _registry({})

    runtime = registry.get_or_create("c1")
    assert registry.get_or_create("c1") is runtime
    assert registry.is_active("c1") is True

    before_touch = float(registry._runtimes["c1"]["updated_at"])
    time.sleep(0.01)
    registry.touch("c1")
    assert float(registry._runtimes["c1"]["updated_at"]) >= before_touch

    registry.mark_inactive("c1")
    assert registry.is_active("c1") is False

    # ttl=0 clamps internally to >=30s; force old timestamp for deterministic cleanup
    registry._runtimes["c1"]["updated_at"] = time.time() - 3600  # test-only direct mutation
    removed = registry.cleanup_inactive(ttl_sec=0)
    assert removed == 1
    assert registry.get("c1") is None
    assert runtime.closed


def test_active_runtimes_survive_cleanup():
    registry = _registry({})
    registry.get_or_create("c1")
    registry._runtimes["c1"]["updated_at"] = time.time() - 3600
    assert registry.cleanup_inactive(ttl_sec=0) == 0
    assert len(registry) == 1


def test_new_runtime_restores_persisted_session():
    records: dict = {}
    registry = _registry(records)
    started = registry.get_or_create("c1").start("test", "Asha", ["SQL"])
    registry.remove("c1")

    restored = registry.get_or_create("c1").session
    assert restored is not None
    assert restored.id == started.id


def test_clients_are_isolated():
    registry = _registry({})
    registry.get_or_create("c1").start("practice", "Asha", ["DSA"])
    assert registry.get_or_create("c2").session is None
