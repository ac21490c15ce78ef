"""Lifecycle management for concurrently running debates."""

import asyncio
import logging
import secrets
import time
from collections.abc import Callable
from typing import Any

from config.settings import DebateConfig
from debate_engine.events import EventSink, make_event
from debate_engine.exceptions import (
    ConcurrencyLimitError,
    CooldownActiveError,
    DebateAlreadyRunningError,
    DebateNotFoundError,
    TooManyAgentsError,
    ValidationError,
)
from debate_engine.models import CancellationToken, DebateInstance
from debate_engine.runner import DebateRunner

logger = logging.getLogger(__name__)


def generate_debate_id() -> str:
    return f"debate_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class DebateManager:
    """Owns the table of active debates and the start cooldown baseline.

    Every check-then-mutate sequence runs under one ``asyncio.Lock`` with no
    await between the check and the mutation.
    """

    def __init__(
        self,
        config: DebateConfig,
        sink: EventSink,
        runner: DebateRunner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.sink = sink
        self.runner = runner
        self._clock = clock
        self._lock = asyncio.Lock()
        self._debates: dict[str, DebateInstance] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._last_start: float | None = None

    def _emit(self, event: dict[str, Any]) -> None:
        try:
            self.sink.emit(event)
        except Exception as e:
            logger.error(f"Failed to emit {event.get('type')} event: {e}")

    def _check_cooldown(self, now: float) -> None:
        if self._last_start is None:
            return
        remaining = self.config.start_cooldown_seconds - (now - self._last_start)
        if remaining > 0:
            raise CooldownActiveError(
                "Debate start cooldown active",
                retry_after=remaining,
                details={"cooldownSeconds": self.config.start_cooldown_seconds},
            )

    def _check_agents(self, agents: list[str]) -> None:
        if len(agents) > self.config.max_agents:
            raise TooManyAgentsError(
                f"Too many agents (max {self.config.max_agents})",
                details={"maxAgents": self.config.max_agents, "requested": len(agents)},
            )

    def _check_ceiling(self, requested: int) -> None:
        limit = self.config.max_concurrent_debates
        if len(self._debates) + requested > limit:
            raise ConcurrencyLimitError(
                f"Maximum concurrent debates ({limit}) reached",
                retry_after=self.config.ceiling_retry_after_seconds,
                details={
                    "activeDebates": len(self._debates),
                    "requested": requested,
                    "maxConcurrentDebates": limit,
                },
            )

    def _insert(self, debate_id: str, topic: str, agents: list[str]) -> DebateInstance:
        instance = DebateInstance(debate_id=debate_id, topic=topic, agents=list(agents))
        token = CancellationToken()
        self._debates[debate_id] = instance
        self._tokens[debate_id] = token
        self._spawn(instance, token)
        return instance

    def _spawn(self, instance: DebateInstance, token: CancellationToken) -> None:
        if self.runner is None:
            return
        task = asyncio.create_task(self._run_debate(instance.debate_id, instance.topic, instance.agents, token))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_debate(
        self, debate_id: str, topic: str, agents: list[str], token: CancellationToken
    ) -> None:
        assert self.runner is not None
        try:
            completed = await self.runner.run(debate_id, topic, agents, token, self)
        except asyncio.CancelledError:
            logger.info(f"Debate task {debate_id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Debate {debate_id} failed: {e}")
            self._emit(make_event("error", debateId=debate_id, message=str(e)))
            completed = True

        if completed:
            await self._finish(debate_id, token)

    async def _finish(self, debate_id: str, token: CancellationToken) -> None:
        """Remove a debate that ended on its own, unless the id was reused."""
        async with self._lock:
            if self._tokens.get(debate_id) is token:
                del self._debates[debate_id]
                del self._tokens[debate_id]
                logger.info(f"Debate {debate_id} finished and removed from active table")

    async def start_debate(
        self, topic: str, agents: list[str], debate_id: str | None = None
    ) -> DebateInstance:
        """Admit and launch a debate.

        Checks run in order: cooldown, id collision, participant count,
        concurrency ceiling.
        """
        debate_id = debate_id or generate_debate_id()
        async with self._lock:
            now = self._clock()
            self._check_cooldown(now)
            if debate_id in self._debates:
                raise DebateAlreadyRunningError(
                    f"Debate {debate_id} is already running", details={"debateId": debate_id}
                )
            self._check_agents(agents)
            self._check_ceiling(1)

            instance = self._insert(debate_id, topic, agents)
            self._last_start = now
            active = len(self._debates)

        logger.info(f"Started debate {debate_id}: {topic} ({active} active)")
        self._emit(
            make_event(
                "debate_started",
                debateId=debate_id,
                topic=topic,
                agents=list(agents),
                activeDebates=active,
            )
        )
        return instance

    async def start_multiple(self, topics: list[str], agents: list[str]) -> list[DebateInstance]:
        """Launch one debate per topic, all or nothing."""
        if len(topics) > self.config.max_batch_topics:
            raise ValidationError(
                f"Too many topics (max {self.config.max_batch_topics})",
                details={"maxTopics": self.config.max_batch_topics, "requested": len(topics)},
            )
        async with self._lock:
            self._check_agents(agents)
            self._check_ceiling(len(topics))

            started = []
            for topic in topics:
                debate_id = generate_debate_id()
                while debate_id in self._debates:
                    debate_id = generate_debate_id()
                started.append(self._insert(debate_id, topic, agents))
            active = len(self._debates)

        logger.info(f"Started {len(started)} debates ({active} active)")
        for instance in started:
            self._emit(
                make_event(
                    "debate_started",
                    debateId=instance.debate_id,
                    topic=instance.topic,
                    agents=list(agents),
                    activeDebates=active,
                )
            )
        return started

    async def stop_debate(self, debate_id: str) -> DebateInstance:
        """Cancel a running debate and drop it from the table."""
        async with self._lock:
            instance = self._debates.pop(debate_id, None)
            if instance is None:
                raise DebateNotFoundError(
                    f"Debate {debate_id} not found", details={"debateId": debate_id}
                )
            token = self._tokens.pop(debate_id)
            token.cancel()
            active = len(self._debates)

        logger.info(f"Stopped debate {debate_id} ({active} active)")
        self._emit(make_event("debate_stopped", debateId=debate_id, activeDebates=active))
        return instance

    async def stop_all(self) -> list[str]:
        """Cancel every running debate; returns the ids stopped."""
        async with self._lock:
            stopped = list(self._debates)
            tokens = list(self._tokens.values())
            self._debates.clear()
            self._tokens.clear()
            for token in tokens:
                token.cancel()

        if stopped:
            logger.info(f"Stopped all debates: {stopped}")
        self._emit(make_event("all_debates_stopped", stoppedDebates=stopped))
        return stopped

    def list_active(self) -> list[dict[str, Any]]:
        return [instance.snapshot() for instance in list(self._debates.values())]

    def is_active(self, debate_id: str) -> bool:
        return debate_id in self._debates

    @property
    def active_count(self) -> int:
        return len(self._debates)

    # Runner bookkeeping; synchronous so no suspension point splits the update

    def record_message(self, debate_id: str) -> None:
        instance = self._debates.get(debate_id)
        if instance is not None:
            instance.message_count += 1

    def record_fact_check(self, debate_id: str) -> None:
        instance = self._debates.get(debate_id)
        if instance is not None:
            instance.fact_checks += 1

    def record_failed_turn(self, debate_id: str) -> None:
        instance = self._debates.get(debate_id)
        if instance is not None:
            instance.failed_turns += 1

    async def wait_for_tasks(self, timeout: float | None = None) -> None:
        """Wait for runner tasks to wind down after cancellation."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
