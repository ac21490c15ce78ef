"""Knowledge base endpoints."""

import logging

from fastapi import APIRouter, Depends

from debate_engine.events import make_event
from web.admission import api_rate_limit
from web.fact_add_request import FactAddRequest
from web.services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.post("/facts/add", status_code=201, dependencies=[Depends(api_rate_limit)])
async def add_fact(request: FactAddRequest, services: Services = Depends(get_services)):
    """Embed a fact and add it to the index the fact checker searches."""
    fact_id = await services.fact_checker.add_fact(request.fact, request.source, request.category)

    services.broadcaster.emit(
        make_event(
            "fact_added",
            factId=fact_id,
            fact=request.fact,
            source=request.source,
            category=request.category,
        )
    )
    return {
        "success": True,
        "factId": fact_id,
        "fact": request.fact,
        "source": request.source,
        "category": request.category,
    }
