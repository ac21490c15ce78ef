"""Tests for debate lifecycle admission, cancellation and bookkeeping."""

from __future__ import annotations

import asyncio

import pytest

from config.settings import DebateConfig
from debate_engine.exceptions import (
    ConcurrencyLimitError,
    CooldownActiveError,
    DebateAlreadyRunningError,
    DebateNotFoundError,
    TooManyAgentsError,
    ValidationError,
)
from debate_engine.runner import DebateRunner
from debate_engine.store.keys import agent_memory_key, debate_messages_key
from debate_engine.store.redis_store import RedisStoreClient
from web.debate_manager import DebateManager
from conftest import FakeClock, FakeGenerator, GatedGenerator, RecordingSink


def make_manager(config: DebateConfig, sink: RecordingSink, clock: FakeClock | None = None) -> DebateManager:
    """Manager without a runner, so lifecycle rules are tested in isolation."""
    if clock is None:
        return DebateManager(config.model_copy(update={"start_cooldown_seconds": 0}), sink)
    return DebateManager(config, sink, clock=clock)


def test_start_debate_registers_instance(debate_config: DebateConfig, sink: RecordingSink) -> None:
    manager = make_manager(debate_config, sink)

    instance = asyncio.run(manager.start_debate("climate change policy", ["senatorbot", "reformerbot"], "d1"))

    assert instance.debate_id == "d1"
    assert instance.message_count == 0
    assert manager.is_active("d1")
    assert sink.types() == ["debate_started"]
    assert sink.events[0]["activeDebates"] == 1


def test_start_without_id_generates_one(debate_config: DebateConfig, sink: RecordingSink) -> None:
    manager = make_manager(debate_config, sink)

    instance = asyncio.run(manager.start_debate("climate change policy", ["senatorbot"]))

    assert instance.debate_id.startswith("debate_")
    assert manager.is_active(instance.debate_id)


def test_concurrent_starts_with_same_id_single_winner(debate_config: DebateConfig, sink: RecordingSink) -> None:
    """Exactly one of several simultaneous starts for one id succeeds."""
    manager = make_manager(debate_config, sink)

    async def scenario():
        return await asyncio.gather(
            *(manager.start_debate("topic one", ["senatorbot"], "shared") for _ in range(5)),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert all(isinstance(e, DebateAlreadyRunningError) for e in losers)
    assert losers[0].status_code == 409
    assert manager.active_count == 1


def test_ceiling_enforced(debate_config: DebateConfig, sink: RecordingSink) -> None:
    """N of N+1 starts succeed and the active list reports N."""
    manager = make_manager(debate_config, sink)
    ceiling = debate_config.max_concurrent_debates

    async def scenario():
        return await asyncio.gather(
            *(manager.start_debate(f"topic {i}", ["senatorbot"], f"d{i}") for i in range(ceiling + 1)),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], ConcurrencyLimitError)
    assert failures[0].retry_after >= 1
    assert len(manager.list_active()) == ceiling


def test_too_many_agents_rejected(debate_config: DebateConfig, sink: RecordingSink) -> None:
    manager = make_manager(debate_config, sink)
    agents = [f"agent{i}" for i in range(debate_config.max_agents + 1)]

    with pytest.raises(TooManyAgentsError) as exc_info:
        asyncio.run(manager.start_debate("topic", agents, "d1"))

    assert exc_info.value.status_code == 400
    assert manager.active_count == 0


def test_cooldown_blocks_until_elapsed(debate_config: DebateConfig, sink: RecordingSink, clock: FakeClock) -> None:
    """A second start inside the cooldown window fails; after it, succeeds."""
    manager = make_manager(debate_config, sink, clock)

    asyncio.run(manager.start_debate("topic", ["senatorbot"], "d1"))

    clock.advance(0.4)
    with pytest.raises(CooldownActiveError) as exc_info:
        asyncio.run(manager.start_debate("topic", ["senatorbot"], "d2"))
    assert exc_info.value.retry_after == 1
    assert exc_info.value.status_code == 429

    clock.advance(0.7)
    asyncio.run(manager.start_debate("topic", ["senatorbot"], "d2"))
    assert manager.active_count == 2


def test_rejected_start_does_not_move_cooldown(debate_config: DebateConfig, sink: RecordingSink, clock: FakeClock) -> None:
    manager = make_manager(debate_config, sink, clock)
    asyncio.run(manager.start_debate("topic", ["senatorbot"], "d1"))

    clock.advance(0.9)
    with pytest.raises(CooldownActiveError):
        asyncio.run(manager.start_debate("topic", ["senatorbot"], "d2"))

    clock.advance(0.2)
    asyncio.run(manager.start_debate("topic", ["senatorbot"], "d2"))


def test_cooldown_checked_before_collision(debate_config: DebateConfig, sink: RecordingSink, clock: FakeClock) -> None:
    manager = make_manager(debate_config, sink, clock)
    asyncio.run(manager.start_debate("topic", ["senatorbot"], "d1"))

    with pytest.raises(CooldownActiveError):
        asyncio.run(manager.start_debate("topic", ["senatorbot"], "d1"))


def test_stop_absent_debate_not_found(debate_config: DebateConfig, sink: RecordingSink) -> None:
    manager = make_manager(debate_config, sink)

    with pytest.raises(DebateNotFoundError) as exc_info:
        asyncio.run(manager.stop_debate("missing"))

    assert exc_info.value.status_code == 404
    assert exc_info.value.code.value == "validation"


def test_stop_removes_and_second_stop_not_found(debate_config: DebateConfig, sink: RecordingSink) -> None:
    manager = make_manager(debate_config, sink)

    async def scenario():
        await manager.start_debate("topic", ["senatorbot"], "d1")
        await manager.stop_debate("d1")
        await manager.stop_debate("d1")

    with pytest.raises(DebateNotFoundError):
        asyncio.run(scenario())

    assert not manager.is_active("d1")
    assert sink.types() == ["debate_started", "debate_stopped"]


def test_start_multiple_is_all_or_nothing(debate_config: DebateConfig, sink: RecordingSink) -> None:
    """A batch that would exceed the ceiling starts nothing."""
    manager = make_manager(debate_config, sink)
    asyncio.run(manager.start_debate("topic", ["senatorbot"], "d1"))

    with pytest.raises(ConcurrencyLimitError):
        asyncio.run(manager.start_multiple(["one", "two", "three"], ["senatorbot"]))
    assert manager.active_count == 1

    started = asyncio.run(manager.start_multiple(["one", "two"], ["senatorbot"]))
    assert len(started) == 2
    assert len({instance.debate_id for instance in started}) == 2
    assert manager.active_count == 3


def test_start_multiple_rejects_too_many_topics(debate_config: DebateConfig, sink: RecordingSink) -> None:
    manager = make_manager(debate_config, sink)
    topics = [f"topic {i}" for i in range(debate_config.max_batch_topics + 1)]

    with pytest.raises(ValidationError):
        asyncio.run(manager.start_multiple(topics, ["senatorbot"]))


def test_start_multiple_ignores_cooldown(debate_config: DebateConfig, sink: RecordingSink, clock: FakeClock) -> None:
    manager = make_manager(debate_config, sink, clock)
    asyncio.run(manager.start_debate("topic", ["senatorbot"], "d1"))

    started = asyncio.run(manager.start_multiple(["one"], ["senatorbot"]))

    assert len(started) == 1


def test_stop_all_clears_table(debate_config: DebateConfig, sink: RecordingSink) -> None:
    manager = make_manager(debate_config, sink)

    async def scenario():
        await manager.start_debate("topic", ["senatorbot"], "d1")
        await manager.start_debate("topic", ["senatorbot"], "d2")
        return await manager.stop_all()

    stopped = asyncio.run(scenario())

    assert sorted(stopped) == ["d1", "d2"]
    assert manager.list_active() == []


def test_late_events_for_removed_debate_are_dropped(debate_config: DebateConfig, sink: RecordingSink) -> None:
    manager = make_manager(debate_config, sink)

    async def scenario():
        instance = await manager.start_debate("topic", ["senatorbot"], "d1")
        manager.record_message("d1")
        await manager.stop_debate("d1")
        manager.record_message("d1")
        manager.record_fact_check("d1")
        return instance

    instance = asyncio.run(scenario())

    assert instance.message_count == 1
    assert instance.fact_checks == 0


def test_emit_failure_does_not_roll_back(debate_config: DebateConfig) -> None:
    """A broken sink is logged; the transition still happens."""

    class BrokenSink:
        def emit(self, event):
            raise RuntimeError("socket layer down")

    manager = DebateManager(debate_config.model_copy(update={"start_cooldown_seconds": 0}), BrokenSink())

    asyncio.run(manager.start_debate("topic", ["senatorbot"], "d1"))

    assert manager.is_active("d1")


def test_runner_completes_and_removes_debate(
    debate_config: DebateConfig, sink: RecordingSink, store: RedisStoreClient
) -> None:
    """A debate that runs all its rounds records its messages and leaves the table."""
    generator = FakeGenerator()
    runner = DebateRunner(store, generator, None, sink, debate_config)
    manager = DebateManager(debate_config, sink, runner)

    async def scenario():
        instance = await manager.start_debate("climate change policy", ["senatorbot", "reformerbot"], "d1")
        await manager.wait_for_tasks(timeout=5)
        entries = await store.log_read("debate:d1:messages", limit=100)
        return instance, entries

    instance, entries = asyncio.run(scenario())

    assert len(entries) == debate_config.rounds * 2
    assert instance.message_count == debate_config.rounds * 2
    assert not manager.is_active("d1")
    assert sink.types().count("new_message") == debate_config.rounds * 2
    assert sink.types()[-1] == "debate_ended"


def test_runner_counts_failed_turns(
    debate_config: DebateConfig, sink: RecordingSink, store: RedisStoreClient
) -> None:
    generator = FakeGenerator(failing={"reformerbot"})
    runner = DebateRunner(store, generator, None, sink, debate_config)
    manager = DebateManager(debate_config, sink, runner)

    async def scenario():
        instance = await manager.start_debate("topic", ["senatorbot", "reformerbot"], "d1")
        await manager.wait_for_tasks(timeout=5)
        return instance

    instance = asyncio.run(scenario())

    assert instance.failed_turns == debate_config.rounds
    assert instance.message_count == debate_config.rounds
    assert sink.types().count("error") == debate_config.rounds


def test_stop_halts_runner(debate_config: DebateConfig, sink: RecordingSink, store: RedisStoreClient) -> None:
    """After stop, at most the in-flight turn completes."""
    config = debate_config.model_copy(update={"message_cooldown_seconds": 30, "rounds": 5})
    generator = FakeGenerator()
    runner = DebateRunner(store, generator, None, sink, config)
    manager = DebateManager(config, sink, runner)

    async def scenario():
        await manager.start_debate("topic", ["senatorbot"], "d1")
        await asyncio.sleep(0.05)
        await manager.stop_debate("d1")
        await manager.wait_for_tasks(timeout=5)
        return await store.log_read("debate:d1:messages", limit=100)

    entries = asyncio.run(scenario())

    assert len(entries) == 1
    assert len(generator.calls) == 1
    assert "debate_ended" not in sink.types()


def test_stop_during_generation_discards_statement(
    debate_config: DebateConfig, sink: RecordingSink, store: RedisStoreClient
) -> None:
    """A statement generated after stop is never stored or broadcast."""
    config = debate_config.model_copy(update={"rounds": 5})
    generator = GatedGenerator()
    runner = DebateRunner(store, generator, None, sink, config)
    manager = DebateManager(config, sink, runner)

    async def scenario():
        generator.arm()
        await manager.start_debate("topic", ["senatorbot"], "d1")
        await generator.entered.wait()
        await manager.stop_debate("d1")
        generator.release.set()
        await manager.wait_for_tasks(timeout=5)
        messages = await store.log_read(debate_messages_key("d1"), limit=100)
        memory = await store.log_read(agent_memory_key("d1", "senatorbot"), limit=100)
        return messages, memory

    messages, memory = asyncio.run(scenario())

    assert messages == []
    assert memory == []
    assert generator.calls == 1
    assert sink.types() == ["debate_started", "debate_stopped"]


def test_start_racing_stop_all_leaves_consistent_table(debate_config: DebateConfig, sink: RecordingSink) -> None:
    """A start that meets stop-all either runs afterwards or collides, never half-applies."""
    manager = make_manager(debate_config, sink)

    async def scenario():
        await manager.start_debate("topic", ["senatorbot"], "d1")
        return await asyncio.gather(
            manager.stop_all(),
            manager.start_debate("new topic", ["senatorbot"], "d1"),
            return_exceptions=True,
        )

    stopped, started = asyncio.run(scenario())

    assert stopped == ["d1"]
    if isinstance(started, Exception):
        assert isinstance(started, DebateAlreadyRunningError)
        assert manager.active_count == 0
    else:
        assert manager.is_active("d1")
        assert manager.active_count == 1
        assert manager.list_active()[0]["topic"] == "new topic"


def test_restarted_id_survives_old_runner_finishing(
    debate_config: DebateConfig, sink: RecordingSink, store: RedisStoreClient
) -> None:
    """The stopped run's exit does not remove the new debate with the same id."""
    config = debate_config.model_copy(update={"start_cooldown_seconds": 0, "message_cooldown_seconds": 30})
    generator = GatedGenerator()
    runner = DebateRunner(store, generator, None, sink, config)
    manager = DebateManager(config, sink, runner)

    async def scenario():
        generator.arm()
        await manager.start_debate("topic", ["senatorbot"], "d1")
        await generator.entered.wait()
        await manager.stop_all()
        manager.runner = None
        await manager.start_debate("second run", ["senatorbot"], "d1")
        generator.release.set()
        await manager.wait_for_tasks(timeout=5)

    asyncio.run(scenario())

    assert manager.is_active("d1")
    assert manager.list_active()[0]["topic"] == "second run"
