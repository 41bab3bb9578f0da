"""FastAPI dependencies shared by route modules."""

from fastapi import Request

from aigate.services.registry import OrchestratorRegistry


def get_registry(request: Request) -> OrchestratorRegistry:
    """The registry built in the application lifespan (or injected by tests)."""
    return request.app.state.registry
