"""Agent profile, memory and stance endpoints."""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query
from pydantic import ValidationError as PydanticValidationError

from debate_engine.events import make_event
from debate_engine.exceptions import AgentNotFoundError, StorageUnavailableError, ValidationError
from debate_engine.models import AgentProfile
from debate_engine.store.keys import agent_memory_key, agent_profile_key, stance_series_key
from web.admission import api_rate_limit
from web.agent_update_request import AgentUpdateRequest
from web.debate_start_request import ID_PATTERN
from web.endpoints.debates import entry_timestamp
from web.services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

AgentId = Annotated[str, Path(min_length=1, max_length=50, pattern=ID_PATTERN)]
DebateId = Annotated[str, Path(min_length=1, max_length=100, pattern=ID_PATTERN)]


async def load_profile(services: Services, agent_id: str) -> AgentProfile:
    """Stored profile, telling "unknown agent" apart from "store down"."""
    data = await services.store.document_get(agent_profile_key(agent_id), fallback=None)
    if data is None:
        if not services.store.is_connected:
            raise StorageUnavailableError(
                "Profile store unavailable", details={"agentId": agent_id}
            )
        raise AgentNotFoundError(f"Agent {agent_id} not found", details={"agentId": agent_id})
    return AgentProfile.model_validate(data)


@router.get("/agent/{agent_id}/profile")
async def get_agent_profile(agent_id: AgentId, services: Services = Depends(get_services)):
    profile = await load_profile(services, agent_id)
    return profile.model_dump(mode="json")


@router.post("/agent/{agent_id}/update", dependencies=[Depends(api_rate_limit)])
async def update_agent_profile(
    agent_id: AgentId,
    request: AgentUpdateRequest,
    services: Services = Depends(get_services),
):
    """Apply a partial update. Stance values are merged per topic."""
    changes = request.changes()
    if not changes:
        raise ValidationError("No profile fields supplied", details={"agentId": agent_id})

    # Existence check must not degrade; a read failure here is a 503
    data = await services.store.document_get(agent_profile_key(agent_id))
    if data is None:
        raise AgentNotFoundError(f"Agent {agent_id} not found", details={"agentId": agent_id})

    try:
        updated = AgentProfile.model_validate(data).merged_with(changes)
    except PydanticValidationError as e:
        raise ValidationError(
            "Profile update failed validation",
            details=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
        ) from e

    await services.store.document_set(agent_profile_key(agent_id), updated.model_dump(mode="json"))
    logger.info(f"Updated profile for {agent_id}: {sorted(changes)}")

    services.broadcaster.emit(
        make_event("agent_updated", agentId=agent_id, updates=changes)
    )
    return {"success": True, "agentId": agent_id, "profile": updated.model_dump(mode="json")}


@router.get("/agent/{agent_id}/memory/{debate_id}")
async def get_agent_memory(
    agent_id: AgentId,
    debate_id: DebateId,
    limit: int = Query(default=5, ge=1, le=100),
    services: Services = Depends(get_services),
):
    """Most recent memory entries, newest first."""
    entries = await services.store.log_read(agent_memory_key(debate_id, agent_id), limit=limit)
    memories = [
        {
            "id": entry["id"],
            "type": entry["fields"].get("type"),
            "content": entry["fields"].get("content"),
            "timestamp": entry_timestamp(entry["id"]),
        }
        for entry in entries
    ]
    return {
        "success": True,
        "agentId": agent_id,
        "debateId": debate_id,
        "memories": memories,
        "count": len(memories),
        "degraded": not services.store.is_connected,
    }


@router.get("/agent/{agent_id}/stance/{debate_id}/{topic}")
async def get_agent_stance(
    agent_id: AgentId,
    debate_id: DebateId,
    topic: Annotated[str, Path(min_length=1, max_length=200, pattern=ID_PATTERN)],
    services: Services = Depends(get_services),
):
    """Stance time series for one agent, debate and topic key."""
    samples = await services.store.series_range(stance_series_key(debate_id, agent_id, topic))
    points = [
        {
            "timestamp": sample["timestamp"],
            "time": datetime.fromtimestamp(sample["timestamp"] / 1000).isoformat(),
            "value": sample["value"],
        }
        for sample in samples
    ]
    return {
        "success": True,
        "agentId": agent_id,
        "debateId": debate_id,
        "topic": topic,
        "stance": points,
        "count": len(points),
        "degraded": not services.store.is_connected,
    }
