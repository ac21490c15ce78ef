"""Store bootstrap: vector indexes and seed agent profiles."""

import logging

from config.settings import CacheConfig
from debate_engine.exceptions import StorageError
from debate_engine.models import DEFAULT_AGENT_PROFILES, AgentProfile
from .base import BaseStoreClient
from .keys import FACT_PREFIX, FACTS_INDEX, agent_profile_key

logger = logging.getLogger(__name__)


class StoreSchemaManager:
    """Creates the search indexes and seed documents the service expects."""

    def __init__(
        self,
        store: BaseStoreClient,
        cache_config: CacheConfig,
        seed_profiles: dict[str, AgentProfile] | None = None,
    ):
        self.store = store
        self.cache_config = cache_config
        self.seed_profiles = DEFAULT_AGENT_PROFILES if seed_profiles is None else seed_profiles

    async def ensure_indexes(self) -> list[str]:
        """Create missing indexes and return the names of those created."""
        created = []
        definitions = [
            (
                self.cache_config.index_name,
                self.cache_config.key_prefix,
                ["content", "response", "topic", "created_at"],
            ),
            (FACTS_INDEX, FACT_PREFIX, ["content", "source", "category"]),
        ]
        for index_name, prefix, text_fields in definitions:
            if await self.store.create_similarity_index(
                index_name, prefix, self.cache_config.embedding_dim, text_fields
            ):
                created.append(index_name)
        return created

    async def seed_agent_profiles(self) -> list[str]:
        """Write seed profiles that are not stored yet."""
        seeded = []
        for agent_id, profile in self.seed_profiles.items():
            key = agent_profile_key(agent_id)
            if await self.store.document_get(key) is not None:
                continue
            await self.store.document_set(key, profile.model_dump(mode="json"))
            seeded.append(agent_id)
            logger.info(f"Seeded agent profile {agent_id}")
        return seeded

    async def initialize(self) -> bool:
        """Run every bootstrap step; failures leave the service degraded."""
        try:
            created = await self.ensure_indexes()
            seeded = await self.seed_agent_profiles()
        except StorageError as e:
            logger.error(f"Store bootstrap failed, continuing degraded: {e}")
            return False
        logger.info(f"Store bootstrap complete (indexes created: {created}, agents seeded: {seeded})")
        return True
