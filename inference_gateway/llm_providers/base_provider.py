#!/usr/bin/env python3
"""
Base Provider Abstract Class

This module defines the capability interface every inference provider
implements: ``analyze(request, credential) -> NormalizedResult``.

Architectural Decision: Abstract base class with a template method
- The orchestrator depends only on this interface
- ``analyze`` guarantees that nothing but a classified failure escapes:
  any unexpected exception from a concrete provider becomes a
  ProviderTerminalError
- Credentials are passed per call, so one provider instance serves every key
  of its pool
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from inference_gateway.analysis.models.analysis import (
    AnalysisRequest,
    NormalizedResult,
    ProviderCredential,
)
from inference_gateway.core.exceptions import InvalidInputError, ProviderError, ProviderTerminalError
from inference_gateway.core.logging.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """
    Configuration for an inference provider.

    Attributes:
        name: Provider name
        base_url: Base URL for API
        model: Model identifier sent to the provider
        timeout: Request timeout in seconds
    """
    name: str
    base_url: str
    model: str
    timeout: float = 30.0


class BaseProvider(ABC):
    """
    Abstract base class for inference providers.

    STAGE-4: Provider base class

    Subclasses must implement:
    - _analyze_internal(): build the wire request, call, parse
    - close(): release HTTP resources
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.name = config.name
        self.model = config.model

        logger.info(
            "Provider initialized",
            stage="4.0",
            provider=config.name,
            model=config.model,
            base_url=config.base_url[:50] + "..." if len(config.base_url) > 50 else config.base_url,
        )

    async def analyze(
        self, request: AnalysisRequest, credential: ProviderCredential
    ) -> NormalizedResult:
        """
        Run one analysis call with the given credential.

        STAGE-5: Provider call

        Raises:
            ProviderError: Always a classified subclass (timeout, transport,
                quota, authentication or terminal)
            InvalidInputError: The provider rejected the image or prompt itself
        """
        started = time.perf_counter()
        logger.info(
            "Provider call started",
            stage="5.1",
            provider=self.name,
            key_id=credential.key_id,
            image_bytes=len(request.image),
        )

        try:
            result = await self._analyze_internal(request, credential)
        except (ProviderError, InvalidInputError) as e:
            logger.warning(
                "Provider call failed",
                stage="5.2",
                provider=self.name,
                key_id=credential.key_id,
                error_type=type(e).__name__,
                error=e.message,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            raise
        except Exception as e:
            logger.error(
                "Unclassified provider failure",
                stage="5.2",
                provider=self.name,
                key_id=credential.key_id,
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise ProviderTerminalError.from_exception(
                e, message=f"{self.name} call failed unexpectedly", provider=self.name
            ) from e

        logger.info(
            "Provider call completed",
            stage="5.2",
            provider=self.name,
            key_id=credential.key_id,
            finish_reason=result.finish_reason,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return result

    @abstractmethod
    async def _analyze_internal(
        self, request: AnalysisRequest, credential: ProviderCredential
    ) -> NormalizedResult:
        """Provider-specific request building, call and parsing."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release HTTP resources."""
        pass
