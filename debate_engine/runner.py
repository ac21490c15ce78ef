"""Background turn loop for a single debate."""

import logging
import random
import time
from typing import Protocol

from config.settings import DebateConfig
from models.generation import MessageGenerator
from .events import EventSink, make_event
from .fact_checker import FactChecker
from .models import AgentProfile, CancellationToken, FactCheckResult, GeneratedMessage
from .store.base import BaseStoreClient
from .store.keys import (
    agent_memory_key,
    agent_profile_key,
    debate_messages_key,
    stance_series_key,
    topic_key,
)

logger = logging.getLogger(__name__)

DEFAULT_STANCE = 0.5
MAX_STANCE_DRIFT = 0.05


class DebateObserver(Protocol):
    """Counters the runner reports into. Unknown debate ids are ignored."""

    def record_message(self, debate_id: str) -> None: ...

    def record_fact_check(self, debate_id: str) -> None: ...

    def record_failed_turn(self, debate_id: str) -> None: ...


class DebateRunner:
    """Drives rounds of agent turns until completion or cancellation.

    The runner only ever holds the debate id and its cancellation token; all
    bookkeeping goes through the observer so a stopped debate's late events
    fall on the floor.
    """

    def __init__(
        self,
        store: BaseStoreClient,
        generator: MessageGenerator,
        fact_checker: FactChecker | None,
        sink: EventSink,
        config: DebateConfig,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.generator = generator
        self.fact_checker = fact_checker
        self.sink = sink
        self.config = config
        self._rng = rng or random.Random()

    def _emit(self, event: dict) -> None:
        try:
            self.sink.emit(event)
        except Exception as e:
            logger.error(f"Failed to emit {event.get('type')} event: {e}")

    async def run(
        self,
        debate_id: str,
        topic: str,
        agents: list[str],
        token: CancellationToken,
        observer: DebateObserver,
    ) -> bool:
        """Run every round. Returns True when the debate ran to completion."""
        logger.info(f"Starting debate {debate_id} on '{topic}' with {agents}")
        stances: dict[str, float] = {}

        for round_number in range(1, self.config.rounds + 1):
            for agent_id in agents:
                if token.cancelled:
                    logger.info(f"Debate {debate_id} stopped before {agent_id}'s turn in round {round_number}")
                    return False

                try:
                    await self._take_turn(debate_id, topic, agent_id, round_number, stances, token, observer)
                except Exception as e:
                    observer.record_failed_turn(debate_id)
                    logger.error(f"Turn failed for {agent_id} in debate {debate_id}: {type(e).__name__}: {e}")
                    self._emit(
                        make_event(
                            "error",
                            debateId=debate_id,
                            agentId=agent_id,
                            round=round_number,
                            message=f"Error generating message for {agent_id}: {e}",
                        )
                    )

                if await token.wait(self.config.message_cooldown_seconds):
                    logger.info(f"Debate {debate_id} stopped during round {round_number}")
                    return False

        logger.info(f"Debate {debate_id} completed after {self.config.rounds} rounds")
        self._emit(
            make_event("debate_ended", debateId=debate_id, topic=topic, totalRounds=self.config.rounds)
        )
        return True

    async def _take_turn(
        self,
        debate_id: str,
        topic: str,
        agent_id: str,
        round_number: int,
        stances: dict[str, float],
        token: CancellationToken,
        observer: DebateObserver,
    ) -> None:
        generated = await self.generator.generate(agent_id, debate_id, topic)
        if token.cancelled:
            logger.info(f"Discarding {agent_id}'s statement, debate {debate_id} was stopped mid-generation")
            return
        await self._append_message(debate_id, generated)
        observer.record_message(debate_id)

        fact = await self._fact_check(generated.text)
        if fact is not None:
            observer.record_fact_check(debate_id)

        profile = await self._load_profile(agent_id)
        stance_topic = topic_key(topic)
        previous = stances.get(agent_id)
        if previous is None:
            previous = profile.stance.get(stance_topic, DEFAULT_STANCE) if profile else DEFAULT_STANCE
        shift = self._rng.uniform(-MAX_STANCE_DRIFT, MAX_STANCE_DRIFT)
        stance = min(1.0, max(0.0, previous + shift))
        stances[agent_id] = stance

        # Stance history is optional; a missing time series module must not fail the turn
        stored = await self.store.series_append(
            stance_series_key(debate_id, agent_id, stance_topic),
            int(time.time() * 1000),
            stance,
            degrade=True,
        )
        if stored is None:
            logger.debug(f"Stance sample for {agent_id} in {debate_id} not recorded")

        self._emit(
            make_event(
                "new_message",
                debateId=debate_id,
                agentId=agent_id,
                agentName=profile.name if profile else agent_id,
                round=round_number,
                message=generated.text,
                cached=generated.cache_hit,
                similarity=generated.similarity,
                factCheck={"fact": fact.fact, "score": fact.score} if fact else None,
                stance={"topic": stance_topic, "value": stance, "change": stance - previous},
            )
        )
        logger.info(f"{agent_id} spoke in round {round_number} of {debate_id}: {generated.text[:50]}...")

    async def _append_message(self, debate_id: str, generated: GeneratedMessage) -> None:
        await self.store.log_append(
            debate_messages_key(debate_id),
            {
                "agent_id": generated.agent_id,
                "message": generated.text,
                "cached": "true" if generated.cache_hit else "false",
                "similarity": str(generated.similarity),
            },
        )
        await self.store.log_append(
            agent_memory_key(debate_id, generated.agent_id),
            {"type": "statement", "content": generated.text},
        )

    async def _fact_check(self, text: str) -> FactCheckResult | None:
        if self.fact_checker is None:
            return None
        try:
            return await self.fact_checker.check(text)
        except Exception as e:
            logger.warning(f"Fact check unavailable: {e}")
            return None

    async def _load_profile(self, agent_id: str) -> AgentProfile | None:
        data = await self.store.document_get(agent_profile_key(agent_id), fallback=None)
        if data is None:
            return None
        return AgentProfile.model_validate(data)
