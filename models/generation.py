"""Statement generation for debate agents."""

import logging
import os
from abc import ABC, abstractmethod

from openai import AsyncOpenAI, OpenAIError

from config.settings import OpenAIConfig
from debate_engine.exceptions import AgentNotFoundError, StorageError, UpstreamError
from debate_engine.models import AgentProfile, GeneratedMessage
from debate_engine.store.base import BaseStoreClient
from debate_engine.store.keys import agent_memory_key, agent_profile_key
from .semantic_cache import SemanticCache

logger = logging.getLogger(__name__)

MEMORY_CONTEXT_SIZE = 3


class MessageGenerator(ABC):
    """Produces one statement for an agent's turn."""

    @abstractmethod
    async def generate(self, agent_id: str, debate_id: str, topic: str) -> GeneratedMessage:
        pass


def build_persona_prompt(profile: AgentProfile, topic: str, memories: list[str]) -> str:
    """System prompt from the persona, its recent statements and the topic."""
    lines = [
        f"You are {profile.name}, a {profile.tone.value} {profile.role}.",
    ]
    if profile.biases:
        lines.append(f"You believe in {', '.join(profile.biases)}.")
    lines.append(f"Debate topic: {topic}.")
    lines.append("")

    if memories:
        lines.append("Previously, you said:")
        lines.extend(f"Memory {i}: {content}" for i, content in enumerate(memories, 1))
        lines.append("")

    lines.append(f'Reply with a short statement (1-2 sentences) to continue the debate on "{topic}".')
    lines.append("Stay focused on this specific topic and maintain your character's perspective.")
    return "\n".join(lines)


class OpenAIMessageGenerator(MessageGenerator):
    """Persona-driven generation through OpenAI chat completions, memoized by the cache."""

    def __init__(
        self,
        store: BaseStoreClient,
        cache: SemanticCache | None,
        config: OpenAIConfig,
        client: AsyncOpenAI | None = None,
    ):
        self.store = store
        self.cache = cache
        self.config = config
        api_key = config.api_key or os.getenv("OPENAI_API_KEY")
        if client is not None:
            self._client: AsyncOpenAI | None = client
        elif api_key:
            self._client = AsyncOpenAI(
                api_key=api_key,
                timeout=config.timeout,
                max_retries=config.max_retries,
            )
        else:
            logger.warning("No OpenAI API key found. Message generation is unavailable.")
            self._client = None

    async def _load_profile(self, agent_id: str) -> AgentProfile:
        data = await self.store.document_get(agent_profile_key(agent_id))
        if data is None:
            raise AgentNotFoundError(f"Agent profile not found for {agent_id}", details={"agentId": agent_id})
        return AgentProfile.model_validate(data)

    async def _recent_memories(self, agent_id: str, debate_id: str) -> list[str]:
        entries = await self.store.log_read(
            agent_memory_key(debate_id, agent_id), limit=MEMORY_CONTEXT_SIZE
        )
        # Newest first from the log; the prompt reads oldest first
        return [entry["fields"].get("content", "") for entry in reversed(entries)]

    async def _complete(self, prompt: str, topic: str) -> str:
        if self._client is None:
            raise UpstreamError("OpenAI client not configured", details={"service": "chat"})
        try:
            response = await self._client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": prompt},
                    {
                        "role": "user",
                        "content": f'What\'s your perspective on "{topic}"? Keep it brief and in character.',
                    },
                ],
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except OpenAIError as e:
            logger.error(f"Chat completion failed: {e}")
            raise UpstreamError(
                f"Chat completion failed: {type(e).__name__}",
                details={"service": "chat"},
            ) from e

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise UpstreamError("Model returned an empty response", details={"service": "chat"})
        return content.strip()

    async def generate(self, agent_id: str, debate_id: str, topic: str) -> GeneratedMessage:
        profile = await self._load_profile(agent_id)
        memories = await self._recent_memories(agent_id, debate_id)
        prompt = build_persona_prompt(profile, topic, memories)

        # Cache entries are scoped per agent so personas never share answers
        cache_topic = f"{agent_id}:{topic}:{profile.name}"

        # One embedding serves both the lookup and the store on a miss
        embedding = None
        if self.cache is not None:
            embedding = await self.cache.embed_prompt(prompt, cache_topic)
            hit = None
            if embedding is None:
                await self.cache.record_miss()
            else:
                hit = await self.cache.lookup(prompt, cache_topic, embedding=embedding)
            if hit is not None:
                logger.info(f"{agent_id} reused cached response ({hit.similarity:.1%} similarity)")
                return GeneratedMessage(
                    agent_id=agent_id,
                    text=hit.response,
                    cache_hit=True,
                    similarity=hit.similarity,
                    metadata={"cacheKey": hit.key},
                )

        text = await self._complete(prompt, topic)

        if self.cache is not None and embedding is not None:
            try:
                await self.cache.store(
                    prompt,
                    text,
                    cache_topic,
                    metadata={"agent_id": agent_id, "debate_id": debate_id},
                    embedding=embedding,
                )
            except (StorageError, UpstreamError) as e:
                logger.warning(f"Could not cache response for {agent_id}: {e}")

        return GeneratedMessage(agent_id=agent_id, text=text)
