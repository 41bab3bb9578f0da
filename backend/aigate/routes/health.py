"""
AIGate — Health Check Route
===========================

What:  GET /health reports, per domain, how many keys and models are usable.
Why:   A domain whose keys are all cooling is "up" as a process but cannot
       serve a request; load balancers and dashboards need to see that.
How:   Reads pool and catalog state (no provider traffic). `?check_providers=true`
       additionally calls each provider's health_check with a key of the
       domain that is not cooling.

Status levels:
    healthy:   every configured domain has a usable key and model
    degraded:  some domain is cooling, unreachable or disabled
    unhealthy: no domain can serve a request (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Depends, Query, Response

from aigate import __version__
from aigate.routes.deps import get_registry
from aigate.schemas.invocation import DomainHealth, HealthResponse
from aigate.services.registry import OrchestratorRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(
    response: Response,
    check_providers: bool = Query(default=False, description="Also call each provider with one key"),
    registry: OrchestratorRegistry = Depends(get_registry),
) -> HealthResponse:
    domains = {}
    for domain in registry.domains:
        orchestrator = registry.get(domain)
        credentials = orchestrator.pool.available_count()
        models = sum(1 for m in orchestrator.catalog.models if orchestrator.catalog.is_available(m.name))
        status = "available" if credentials and models else "degraded"

        credential = orchestrator.pool.first_available() if check_providers and status == "available" else None
        if credential is not None:
            if not await orchestrator.provider.health_check(credential.secret):
                logger.warning("Health check: %s provider unreachable", domain)
                status = "unreachable"

        domains[domain] = DomainHealth(
            status=status,
            available_credentials=credentials,
            available_models=models,
        )

    for domain in registry.disabled:
        domains[domain] = DomainHealth(status="disabled", available_credentials=0, available_models=0)

    serving = [d for d in domains.values() if d.status == "available"]
    if not serving:
        overall = "unhealthy"
        response.status_code = 503
    elif len(serving) < len(domains):
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        version=__version__,
        domains=domains,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
