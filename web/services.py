"""Process-wide service wiring shared by the API routers."""

import logging
from dataclasses import dataclass

from fastapi import Request, WebSocket

from config.settings import AppConfig
from debate_engine.fact_checker import FactChecker, VectorFactChecker
from debate_engine.runner import DebateRunner
from debate_engine.store.base import BaseStoreClient
from debate_engine.store.redis_store import RedisStoreClient
from debate_engine.store.schema import StoreSchemaManager
from models.embeddings import Embedder, OpenAIEmbedder
from models.generation import MessageGenerator, OpenAIMessageGenerator
from models.semantic_cache import SemanticCache
from web.admission import ConnectionGate, FixedWindowRateLimiter
from web.broadcaster import EventBroadcaster
from web.debate_manager import DebateManager

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: AppConfig
    store: BaseStoreClient
    broadcaster: EventBroadcaster
    manager: DebateManager
    schema: StoreSchemaManager
    cache: SemanticCache | None
    fact_checker: FactChecker
    general_limiter: FixedWindowRateLimiter | None
    api_limiter: FixedWindowRateLimiter | None
    generation_limiter: FixedWindowRateLimiter | None
    connection_gate: ConnectionGate


def build_services(
    config: AppConfig,
    store: BaseStoreClient | None = None,
    generator: MessageGenerator | None = None,
    fact_checker: FactChecker | None = None,
    embedder: Embedder | None = None,
) -> Services:
    """Wire the store, cache, generator, runner and manager together.

    Any collaborator may be injected; the rest default to the Redis and
    OpenAI implementations.
    """
    store = store or RedisStoreClient(config.store)
    broadcaster = EventBroadcaster(config.websocket.event_queue_size)

    embedder = embedder or OpenAIEmbedder(config.openai, config.cache)
    cache = SemanticCache(store, embedder, config.cache) if config.cache.enabled else None
    generator = generator or OpenAIMessageGenerator(store, cache, config.openai)
    if fact_checker is None:
        fact_checker = VectorFactChecker(store, embedder)

    runner = DebateRunner(store, generator, fact_checker, broadcaster, config.debate)
    manager = DebateManager(config.debate, broadcaster, runner)

    limits = config.rate_limit
    if limits.enabled:
        general = FixedWindowRateLimiter(limits.general, "general")
        api = FixedWindowRateLimiter(limits.api, "api")
        generation = FixedWindowRateLimiter(limits.generation, "generation")
    else:
        general = api = generation = None
        logger.info("Rate limiting disabled")

    return Services(
        config=config,
        store=store,
        broadcaster=broadcaster,
        manager=manager,
        schema=StoreSchemaManager(store, config.cache),
        cache=cache,
        fact_checker=fact_checker,
        general_limiter=general,
        api_limiter=api,
        generation_limiter=generation,
        connection_gate=ConnectionGate(config.websocket),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the application's services."""
    return request.app.state.services


def get_ws_services(websocket: WebSocket) -> Services:
    return websocket.app.state.services
