from inference_gateway.analysis.models.analysis import (
    AnalysisRequest,
    CallerIdentity,
    NormalizedResult,
    Provenance,
    ProviderCredential,
    TokenUsage,
)

__all__ = [
    "AnalysisRequest",
    "CallerIdentity",
    "NormalizedResult",
    "Provenance",
    "ProviderCredential",
    "TokenUsage",
]
