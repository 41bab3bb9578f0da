"""
AIGate — Generate Route Handler
===============================

What:  POST /api/generate/{domain} runs one generation through the domain's
       orchestrator.
Why:   Lets non-Python callers (the Node API, scripts, the operator) use the
       same key rotation and model fallback as in-process generators.
How:   Body → InvocationRequest → orchestrator.generate(). A successful
       result is returned as-is; a terminal failure is raised via
       `raise_for_error()` and rendered by the InvocationError handler:

           ALL_CREDENTIALS_RATE_LIMITED → 503 + Retry-After
           ALL_MODELS_UNAVAILABLE       → 503
           ALL_OPTIONS_EXHAUSTED        → 503
           FATAL                        → 503
           PAYLOAD_TOO_LARGE            → 413
           TIMEOUT                      → 408

       The batch endpoint runs its items concurrently and reports each
       item's result, failures included, with HTTP 200.
"""

import logging

from fastapi import APIRouter, Depends

from aigate.routes.deps import get_registry
from aigate.schemas.invocation import (
    BatchGenerateRequest,
    BatchGenerateResponse,
    ErrorResponse,
    GenerateRequest,
    InvocationResult,
)
from aigate.services.registry import OrchestratorRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Generate"])


@router.post(
    "/generate/{domain}",
    response_model=InvocationResult,
    responses={
        404: {"description": "Unknown or disabled domain", "model": ErrorResponse},
        408: {"description": "Deadline exceeded", "model": ErrorResponse},
        413: {"description": "Prompt too large for every model", "model": ErrorResponse},
        503: {"description": "Keys or models exhausted", "model": ErrorResponse},
    },
    summary="Generate text for a domain",
)
async def generate(
    domain: str,
    body: GenerateRequest,
    registry: OrchestratorRegistry = Depends(get_registry),
) -> InvocationResult:
    orchestrator = registry.get(domain)
    result = await orchestrator.generate(body.to_invocation(domain))
    return result.raise_for_error()


@router.post(
    "/generate/{domain}/batch",
    response_model=BatchGenerateResponse,
    responses={404: {"description": "Unknown or disabled domain", "model": ErrorResponse}},
    summary="Generate text for several requests of one domain",
)
async def generate_batch(
    domain: str,
    body: BatchGenerateRequest,
    registry: OrchestratorRegistry = Depends(get_registry),
) -> BatchGenerateResponse:
    orchestrator = registry.get(domain)
    results = await orchestrator.generate_many([item.to_invocation(domain) for item in body.requests])
    return BatchGenerateResponse(results=results, succeeded=sum(1 for r in results if r.success))
