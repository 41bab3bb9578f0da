"""
AIGate — Status Route Handlers
==============================

What:  Operator views of key pools, model cooldowns and token usage, plus
       the operator's reset and reorder controls.
Why:   When every key is cooling the first question is "for how long", and
       after rotating keys in the provider console the operator needs to
       clear stale cooldowns without a restart.
How:   Thin wrappers over InvocationOrchestrator's operator operations.
       Secrets never appear; credentials are shown by id only.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends

from aigate.routes.deps import get_registry
from aigate.schemas.invocation import ErrorResponse, ModelPriorityRequest, StatusResponse
from aigate.services.registry import OrchestratorRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/status", tags=["Status"])

_not_found = {404: {"description": "Unknown or disabled domain", "model": ErrorResponse}}


@router.get("", response_model=Dict[str, StatusResponse], summary="Status of every domain")
async def list_status(
    registry: OrchestratorRegistry = Depends(get_registry),
) -> Dict[str, StatusResponse]:
    return {domain: registry.get(domain).get_status() for domain in registry.domains}


@router.get("/{domain}", response_model=StatusResponse, responses=_not_found, summary="Status of one domain")
async def get_status(
    domain: str,
    registry: OrchestratorRegistry = Depends(get_registry),
) -> StatusResponse:
    return registry.get(domain).get_status()


@router.post(
    "/{domain}/cooldowns/reset",
    response_model=StatusResponse,
    responses=_not_found,
    summary="Clear every key and model cooldown of a domain",
)
async def reset_cooldowns(
    domain: str,
    registry: OrchestratorRegistry = Depends(get_registry),
) -> StatusResponse:
    orchestrator = registry.get(domain)
    orchestrator.reset_cooldowns()
    logger.warning("Cooldowns manually reset for %s", domain)
    return orchestrator.get_status()


@router.post(
    "/{domain}/budget/reset",
    response_model=StatusResponse,
    responses=_not_found,
    summary="Reset a domain's daily token counter",
)
async def reset_budget(
    domain: str,
    registry: OrchestratorRegistry = Depends(get_registry),
) -> StatusResponse:
    orchestrator = registry.get(domain)
    orchestrator.reset_token_budget()
    return orchestrator.get_status()


@router.post(
    "/{domain}/models/priority",
    response_model=StatusResponse,
    responses={404: {"description": "Unknown domain, or no listed model is known", "model": ErrorResponse}},
    summary="Reorder a domain's model preference",
)
async def set_model_priority(
    domain: str,
    body: ModelPriorityRequest,
    registry: OrchestratorRegistry = Depends(get_registry),
) -> StatusResponse:
    orchestrator = registry.get(domain)
    orchestrator.set_model_priority(body.order)
    return orchestrator.get_status()
