"""Request orchestration services."""

from inference_gateway.analysis.services.orchestrator_factory import build_orchestrator, build_routes
from inference_gateway.analysis.services.request_orchestrator import (
    ProviderAttempt,
    ProviderRoute,
    RequestOrchestrator,
)

__all__ = [
    "RequestOrchestrator",
    "ProviderRoute",
    "ProviderAttempt",
    "build_orchestrator",
    "build_routes",
]
