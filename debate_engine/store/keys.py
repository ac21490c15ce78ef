"""Redis key layout."""

CACHE_REGISTRY_KEY = "cache:registry"
CACHE_METRICS_KEY = "cache:metrics"
FACTS_INDEX = "facts-index"
FACT_PREFIX = "fact:"


def agent_profile_key(agent_id: str) -> str:
    return f"agent:{agent_id}:profile"


def debate_messages_key(debate_id: str) -> str:
    return f"debate:{debate_id}:messages"


def agent_memory_key(debate_id: str, agent_id: str) -> str:
    return f"debate:{debate_id}:agent:{agent_id}:memory"


def stance_series_key(debate_id: str, agent_id: str, topic_key: str) -> str:
    return f"debate:{debate_id}:agent:{agent_id}:stance:{topic_key}"


def topic_key(topic: str) -> str:
    """Normalise a free-text topic into a stance map key.

    >>> topic_key("Climate Change Policy")
    'climate_change_policy'
    """
    cleaned = "".join(ch if ch.isalnum() else "_" for ch in topic.strip().lower())
    parts = [part for part in cleaned.split("_") if part]
    return "_".join(parts) or "general"


def fact_key(fact_id: str) -> str:
    return f"{FACT_PREFIX}{fact_id}"
