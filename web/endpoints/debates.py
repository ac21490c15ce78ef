"""Debate lifecycle, transcript and WebSocket endpoints."""

import json
import logging
from collections import Counter
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, WebSocket, WebSocketDisconnect

from debate_engine.events import make_event
from debate_engine.exceptions import NotFoundError, StorageUnavailableError
from debate_engine.store.base import LogEntry
from debate_engine.store.keys import debate_messages_key
from web.admission import POLICY_VIOLATION, api_rate_limit, generation_rate_limit, get_client_ip
from web.debate_start_request import ID_PATTERN, DebateStartRequest
from web.multi_debate_request import MultiDebateRequest
from web.services import Services, get_services, get_ws_services
from web.summarize_request import SummarizeRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
ws_router = APIRouter()

DebateId = Annotated[str, Path(min_length=1, max_length=100, pattern=ID_PATTERN)]


def entry_timestamp(entry_id: str) -> str | None:
    """ISO time encoded in a stream entry id (``<ms>-<seq>``)."""
    try:
        millis = int(entry_id.split("-")[0])
    except ValueError:
        return None
    return datetime.fromtimestamp(millis / 1000).isoformat()


def format_message(entry: LogEntry) -> dict:
    fields = entry["fields"]
    try:
        similarity = float(fields.get("similarity") or 0)
    except ValueError:
        similarity = 0.0
    return {
        "id": entry["id"],
        "agentId": fields.get("agent_id"),
        "message": fields.get("message"),
        "cached": fields.get("cached") == "true",
        "similarity": similarity,
        "timestamp": entry_timestamp(entry["id"]),
    }


@router.post(
    "/debate/start",
    status_code=201,
    dependencies=[Depends(api_rate_limit), Depends(generation_rate_limit)],
)
async def start_debate(request: DebateStartRequest, services: Services = Depends(get_services)):
    """Start a debate with the requested participants."""
    instance = await services.manager.start_debate(request.topic, request.agents, request.debateId)
    return {
        "success": True,
        "debateId": instance.debate_id,
        "topic": instance.topic,
        "agents": instance.agents,
        "activeDebates": services.manager.active_count,
    }


@router.post("/debate/{debate_id}/stop", dependencies=[Depends(api_rate_limit)])
async def stop_debate(debate_id: DebateId, services: Services = Depends(get_services)):
    """Stop a running debate."""
    instance = await services.manager.stop_debate(debate_id)
    return {
        "success": True,
        "debateId": instance.debate_id,
        "activeDebates": services.manager.active_count,
    }


@router.post("/debates/stop-all", dependencies=[Depends(api_rate_limit)])
async def stop_all_debates(services: Services = Depends(get_services)):
    """Stop every running debate."""
    stopped = await services.manager.stop_all()
    return {"success": True, "stoppedDebates": stopped}


@router.get("/debates/active")
async def get_active_debates(services: Services = Depends(get_services)):
    debates = services.manager.list_active()
    return {"success": True, "debates": debates, "totalActive": len(debates)}


@router.post(
    "/debates/start-multiple",
    status_code=201,
    dependencies=[Depends(api_rate_limit), Depends(generation_rate_limit)],
)
async def start_multiple_debates(request: MultiDebateRequest, services: Services = Depends(get_services)):
    """Start one debate per topic; either all start or none do."""
    started = await services.manager.start_multiple(request.topics, request.agents)
    return {
        "success": True,
        "debates": [
            {"debateId": instance.debate_id, "topic": instance.topic, "agents": instance.agents}
            for instance in started
        ],
        "totalActive": services.manager.active_count,
    }


@router.get("/debate/{debate_id}/messages")
async def get_debate_messages(
    debate_id: DebateId,
    limit: int = Query(default=10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    """Newest-first transcript. ``degraded`` marks results read while the store is down."""
    entries = await services.store.log_read(debate_messages_key(debate_id), limit=limit)
    messages = [format_message(entry) for entry in entries]
    return {
        "success": True,
        "debateId": debate_id,
        "messages": messages,
        "count": len(messages),
        "degraded": not services.store.is_connected,
    }


@router.post("/debate/{debate_id}/summarize", dependencies=[Depends(api_rate_limit)])
async def summarize_debate(
    debate_id: DebateId,
    request: SummarizeRequest | None = None,
    services: Services = Depends(get_services),
):
    """Plain-text summary of the most recent messages."""
    max_messages = request.max_messages if request else SummarizeRequest().max_messages
    entries = await services.store.log_read(debate_messages_key(debate_id), limit=max_messages)

    if not entries:
        if not services.store.is_connected:
            raise StorageUnavailableError(
                "Message store unavailable, cannot summarize", details={"debateId": debate_id}
            )
        raise NotFoundError("No messages found for this debate", details={"debateId": debate_id})

    speakers = Counter(entry["fields"].get("agent_id", "unknown") for entry in entries)
    cached = sum(1 for entry in entries if entry["fields"].get("cached") == "true")
    lines = [f"Debate summary for {debate_id}:", f"- {len(entries)} messages exchanged"]
    lines.extend(f"- {agent}: {count} statements" for agent, count in speakers.most_common())
    if cached:
        lines.append(f"- {cached} responses served from the semantic cache")
    summary = "\n".join(lines)

    services.broadcaster.emit(
        make_event("summary_generated", debateId=debate_id, summary=summary, messageCount=len(entries))
    )
    logger.info(f"Generated summary for {debate_id} from {len(entries)} messages")
    return {
        "success": True,
        "debateId": debate_id,
        "summary": summary,
        "messageCount": len(entries),
        "generatedAt": datetime.now().isoformat(),
    }


@ws_router.websocket("/ws")
async def realtime_events(websocket: WebSocket):
    """Stream every debate event to the client."""
    services = get_ws_services(websocket)
    gate = services.connection_gate
    client_ip = get_client_ip(websocket.headers, websocket.client)

    await websocket.accept()
    if not gate.admit(client_ip):
        await websocket.close(code=POLICY_VIOLATION, reason="Too many connections from this address")
        return

    budget = gate.message_budget()
    services.broadcaster.add_connection(websocket)
    logger.info(f"WebSocket client connected from {client_ip}")
    try:
        await websocket.send_json(
            make_event("connected", activeDebates=services.manager.active_count)
        )
        while True:
            data = await websocket.receive_text()
            if not budget.allow():
                logger.warning(f"Closing WebSocket from {client_ip}: message rate exceeded")
                await websocket.close(code=POLICY_VIOLATION, reason="Message rate exceeded")
                break
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json(make_event("pong"))
    except WebSocketDisconnect:
        logger.info(f"WebSocket client {client_ip} disconnected")
    finally:
        services.broadcaster.remove_connection(websocket)
        gate.release(client_ip)
